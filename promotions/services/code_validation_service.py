"""
优惠码校验服务
单个优惠码的资格检查 + 折扣计算，供购物车页面实时校验；
结果仅供参考，不写入使用记录
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from promotions.core.money import ZERO, to_money
from promotions.models.discount import RuleKind, normalize_code, utc_now
from promotions.models.order import (
    REASON_MESSAGES,
    CodeValidationResult,
    OrderContext,
    OrderLine,
    ReasonCode,
)
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.repositories.usage_ledger import UsageLedger
from promotions.services.calculator import DiscountCalculator, discount_calculator
from promotions.services.eligibility import EligibilityChecker
from promotions.services.rate_limiter import CodeValidationRateLimiter, code_rate_limiter

logger = logging.getLogger(__name__)

CART_LINE_ID = "cart"


class CodeValidationService:
    """优惠码校验服务"""

    def __init__(
        self,
        rule_repo: DiscountRuleRepository,
        event_repo: EventRepository,
        ledger: UsageLedger,
        rate_limiter: Optional[CodeValidationRateLimiter] = None,
        calculator: Optional[DiscountCalculator] = None,
    ):
        self.rule_repo = rule_repo
        self.event_repo = event_repo
        self.ledger = ledger
        self.rate_limiter = rate_limiter or code_rate_limiter
        self.calculator = calculator or discount_calculator

    async def validate(
        self,
        code: str,
        cart_total: Decimal,
        customer_id: Optional[str] = None,
        lines: Optional[List[OrderLine]] = None,
        customer_email: Optional[str] = None,
        is_first_time_customer: bool = False,
        ip_address: Optional[str] = None,
        shipping_cost: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> CodeValidationResult:
        """
        校验优惠码
        未提供购物车行时，以整单金额作为一个适用全部商品的行
        """
        now = now or utc_now()
        code = normalize_code(code)

        if not await self.rate_limiter.allow(ip_address):
            return self._invalid(code, [ReasonCode.RATE_LIMITED])

        db_rule = await self.rule_repo.get_by_code(code)
        if db_rule is None or db_rule.kind != RuleKind.CODE.value:
            logger.info(f"优惠码不存在: {code}")
            return self._invalid(code, [ReasonCode.CODE_NOT_FOUND])
        rule = self.rule_repo.to_model(db_rule)

        if not lines:
            lines = [OrderLine(
                line_id=CART_LINE_ID,
                product_id=CART_LINE_ID,
                quantity=1,
                unit_price=to_money(cart_total),
            )]
        ctx = OrderContext(
            lines=lines,
            subtotal=to_money(cart_total),
            customer_id=customer_id,
            customer_email=customer_email,
            is_first_time_customer=is_first_time_customer,
            ip_address=ip_address,
            candidate_codes=[code],
            shipping_cost=shipping_cost,
        )

        snapshot = await self.ledger.snapshot([rule.rule_id], customer_id, ip_address)
        events = {}
        if rule.event_id:
            db_event = await self.event_repo.get_by_id(rule.event_id)
            if db_event is not None:
                events[rule.event_id] = self.event_repo.to_model(db_event)

        checker = EligibilityChecker(usage=snapshot, events=events)
        eligibility = checker.is_eligible(rule, ctx, now)
        if not eligibility.eligible:
            return self._invalid(code, eligibility.reason_codes, rule_id=rule.rule_id)

        line_discounts = self.calculator.compute_line_discounts(rule, ctx)
        discount_amount = sum(line_discounts.values(), ZERO)
        _, free_shipping = self.calculator.compute_shipping_discount(rule, ctx)

        return CodeValidationResult(
            valid=True,
            code=code,
            rule_id=rule.rule_id,
            discount_amount=discount_amount,
            final_amount=max(ZERO, to_money(ctx.subtotal) - discount_amount),
            free_shipping=free_shipping,
        )

    def _invalid(
        self,
        code: str,
        reasons: List[ReasonCode],
        rule_id: Optional[str] = None,
    ) -> CodeValidationResult:
        return CodeValidationResult(
            valid=False,
            code=code,
            rule_id=rule_id,
            errors=reasons,
            messages=[REASON_MESSAGES[reason] for reason in reasons],
        )
