"""
优惠资格检查
纯同步计算：使用次数来自预先读取的快照，活动来自预先加载的映射，
相同输入多次调用结果一致
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from promotions.core.money import to_money
from promotions.models.discount import DiscountRule, RuleKind, ensure_utc
from promotions.models.event import PromotionEvent
from promotions.models.order import EligibilityResult, OrderContext, ReasonCode
from promotions.repositories.usage_ledger import EMPTY_SNAPSHOT, UsageSnapshot
from promotions.services.event_lifecycle import EventLifecycle, event_lifecycle

logger = logging.getLogger(__name__)


def qualifying_subtotal(rule: DiscountRule, ctx: OrderContext) -> Decimal:
    """最低金额比较基数：全场适用时取订单小计，否则只取适用行"""
    applicability = rule.applicability
    if applicability.applies_to_all and not applicability.exclude_products:
        return to_money(ctx.subtotal)
    return to_money(sum(
        (line.line_total for line in rule.applicable_lines(ctx.lines)),
        Decimal("0"),
    ))


class EligibilityChecker:
    """资格检查器，返回全部不满足的原因码"""

    def __init__(
        self,
        usage: Optional[UsageSnapshot] = None,
        events: Optional[Mapping[str, PromotionEvent]] = None,
        lifecycle: Optional[EventLifecycle] = None,
    ):
        self.usage = usage or EMPTY_SNAPSHOT
        self.events: Mapping[str, PromotionEvent] = events or {}
        self.lifecycle = lifecycle or event_lifecycle

    def is_eligible(
        self,
        rule: DiscountRule,
        ctx: OrderContext,
        now: datetime,
    ) -> EligibilityResult:
        """检查单条规则"""
        now = ensure_utc(now)
        reasons: List[ReasonCode] = []

        if not rule.is_active:
            reasons.append(ReasonCode.RULE_INACTIVE)

        if now < rule.valid_from:
            reasons.append(ReasonCode.NOT_STARTED)
        elif rule.valid_until is not None and now > rule.valid_until:
            reasons.append(ReasonCode.EXPIRED)

        if rule.kind == RuleKind.EVENT:
            event = self.events.get(rule.event_id)
            if event is None:
                reasons.append(ReasonCode.EVENT_NOT_FOUND)
            elif not self.lifecycle.is_live(event, now):
                reasons.append(ReasonCode.EVENT_NOT_ACTIVE)

        if not rule.applicable_lines(ctx.lines):
            reasons.append(ReasonCode.NOT_APPLICABLE)
        elif rule.minimum_order_amount is not None:
            if qualifying_subtotal(rule, ctx) < rule.minimum_order_amount:
                reasons.append(ReasonCode.MINIMUM_NOT_MET)

        reasons.extend(self._check_customer(rule, ctx))
        reasons.extend(self._check_usage(rule, ctx))

        return EligibilityResult(
            rule_id=rule.rule_id,
            eligible=not reasons,
            reason_codes=reasons,
        )

    def _check_customer(self, rule: DiscountRule, ctx: OrderContext) -> List[ReasonCode]:
        restriction = rule.customer_restriction
        reasons = []
        if restriction.first_time_only and not ctx.is_first_time_customer:
            reasons.append(ReasonCode.FIRST_TIME_ONLY)
        if restriction.email_domains is not None and ctx.email_domain not in restriction.email_domains:
            reasons.append(ReasonCode.EMAIL_DOMAIN_NOT_ALLOWED)
        return reasons

    def _check_usage(self, rule: DiscountRule, ctx: OrderContext) -> List[ReasonCode]:
        reasons = []
        if rule.usage_limit_total is not None and self.usage.total(rule.rule_id) >= rule.usage_limit_total:
            reasons.append(ReasonCode.USAGE_LIMIT_REACHED)

        if rule.usage_limit_per_user is not None:
            if ctx.customer_id:
                used = self.usage.for_customer(rule.rule_id)
            elif ctx.ip_address:
                used = self.usage.for_ip(rule.rule_id)
            else:
                used = 0
            if used >= rule.usage_limit_per_user:
                reasons.append(ReasonCode.USER_USAGE_LIMIT_REACHED)
        return reasons

    def partition(
        self,
        rules: Iterable[DiscountRule],
        ctx: OrderContext,
        now: datetime,
    ) -> Tuple[List[DiscountRule], List[EligibilityResult]]:
        """拆分为 (符合资格的规则, 不符合资格的检查结果)"""
        eligible, ineligible = [], []
        for rule in rules:
            result = self.is_eligible(rule, ctx, now)
            if result.eligible:
                eligible.append(rule)
            else:
                logger.debug("规则不符合资格: %s %s", rule.rule_id, result.reason_codes)
                ineligible.append(result)
        return eligible, ineligible


def events_by_id(events: Iterable[PromotionEvent]) -> Dict[str, PromotionEvent]:
    return {event.event_id: event for event in events}
