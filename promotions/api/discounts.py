"""
优惠规则接口：卖家端增删改查 + 顾客端优惠码校验
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from promotions.models.discount import (
    DiscountRule,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    DiscountType,
    RuleKind,
    RuleListStatus,
)
from promotions.models.order import CodeValidationResult, OrderLine
from promotions.services.code_validation_service import CodeValidationService
from promotions.services.discount_rule_service import DiscountRuleService
from promotions.api.deps import get_code_validation_service, get_discount_rule_service

router = APIRouter(prefix="/discounts", tags=["优惠规则"])


class ValidateCodeRequest(BaseModel):
    """优惠码校验请求"""

    code: str = Field(..., min_length=1, max_length=50)
    cart_total: Decimal = Field(..., ge=0)
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    is_first_time_customer: bool = False
    lines: Optional[List[OrderLine]] = None
    shipping_cost: Optional[Decimal] = Field(None, ge=0)


class ActiveToggleRequest(BaseModel):
    is_active: bool


@router.post("/validate", response_model=CodeValidationResult)
async def validate_code(
    payload: ValidateCodeRequest,
    request: Request,
    service: CodeValidationService = Depends(get_code_validation_service),
):
    """校验优惠码（不计入使用次数）"""
    return await service.validate(
        code=payload.code,
        cart_total=payload.cart_total,
        customer_id=payload.customer_id,
        lines=payload.lines,
        customer_email=payload.customer_email,
        is_first_time_customer=payload.is_first_time_customer,
        ip_address=request.client.host if request.client else None,
        shipping_cost=payload.shipping_cost,
    )


@router.post("", response_model=DiscountRule, status_code=201)
async def create_rule(
    payload: DiscountRuleCreate,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """创建优惠规则"""
    return await service.create_rule(payload)


@router.get("")
async def list_rules(
    shop_id: Optional[str] = None,
    kind: Optional[RuleKind] = None,
    discount_type: Optional[DiscountType] = None,
    search: Optional[str] = Query(None, max_length=100),
    status: RuleListStatus = RuleListStatus.ALL,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """卖家端规则列表"""
    return await service.list_rules(
        shop_id=shop_id,
        kind=kind,
        discount_type=discount_type,
        search=search,
        status=status,
        page=page,
        page_size=page_size,
    )


@router.get("/{rule_id}", response_model=DiscountRule)
async def get_rule(
    rule_id: str,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    return await service.get_rule(rule_id)


@router.get("/{rule_id}/usage")
async def get_rule_usage(
    rule_id: str,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """规则使用次数"""
    return await service.get_usage(rule_id)


@router.patch("/{rule_id}", response_model=DiscountRule)
async def update_rule(
    rule_id: str,
    payload: DiscountRuleUpdate,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """更新优惠规则"""
    return await service.update_rule(rule_id, payload)


@router.post("/{rule_id}/active", response_model=DiscountRule)
async def set_rule_active(
    rule_id: str,
    payload: ActiveToggleRequest,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """启用/停用优惠规则"""
    return await service.set_active(rule_id, payload.is_active)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    service: DiscountRuleService = Depends(get_discount_rule_service),
):
    """删除优惠规则（已使用的规则只能停用）"""
    await service.delete_rule(rule_id)
