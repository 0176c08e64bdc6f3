"""
结算优惠接口
preview仅供展示；commit在订单提交时调用，重新计算并写入使用记录
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from promotions.models.order import CheckoutCommitResult, CheckoutPreview, OrderContext, OrderLine
from promotions.services.checkout_service import CheckoutService
from promotions.api.deps import get_checkout_service

router = APIRouter(prefix="/checkout", tags=["结算优惠"])


class CheckoutRequest(BaseModel):
    """结算请求"""

    shop_id: Optional[str] = None
    lines: List[OrderLine] = Field(..., min_length=1)
    subtotal: Optional[Decimal] = Field(None, ge=0)
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    is_first_time_customer: bool = False
    candidate_codes: List[str] = Field(default_factory=list)
    shipping_cost: Optional[Decimal] = Field(None, ge=0)

    def to_context(self, ip_address: Optional[str]) -> OrderContext:
        return OrderContext(
            lines=self.lines,
            subtotal=self.subtotal,
            customer_id=self.customer_id,
            customer_email=self.customer_email,
            is_first_time_customer=self.is_first_time_customer,
            ip_address=ip_address,
            candidate_codes=self.candidate_codes,
            shipping_cost=self.shipping_cost,
        )


class CommitRequest(CheckoutRequest):
    """订单提交请求，order_id用于幂等"""

    order_id: str = Field(..., min_length=1, max_length=64)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post("/preview", response_model=CheckoutPreview)
async def preview_checkout(
    payload: CheckoutRequest,
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
):
    """结算预览"""
    return await service.preview(payload.to_context(client_ip(request)), shop_id=payload.shop_id)


@router.post("/commit", response_model=CheckoutCommitResult)
async def commit_checkout(
    payload: CommitRequest,
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
):
    """提交订单优惠；使用次数不足时返回409，订单应拒绝"""
    return await service.commit(
        payload.order_id,
        payload.to_context(client_ip(request)),
        shop_id=payload.shop_id,
    )


@router.post("/orders/{order_id}/reverse")
async def reverse_order(
    order_id: str,
    service: CheckoutService = Depends(get_checkout_service),
):
    """订单取消/退款时冲正优惠使用记录"""
    records = await service.reverse(order_id)
    return {
        "order_id": order_id,
        "reversed_rule_ids": [record.rule_id for record in records],
        "reversed_count": len(records),
    }
