"""
结算优惠服务
预览只做计算；提交时重新完整计算，再原子写入使用记录，
使用记录写入失败时订单提交中止
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from promotions.core.exceptions import OrderReversedError
from promotions.models.discount import DiscountRule, RuleKind, utc_now
from promotions.models.order import (
    CheckoutCommitResult,
    CheckoutPreview,
    EligibilityResult,
    OrderContext,
    ReasonCode,
    ResolutionResult,
)
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.repositories.usage_ledger import (
    EMPTY_SNAPSHOT,
    STATUS_COMMITTED,
    UsageClaim,
    UsageLedger,
    UsageRecord,
    UsageSnapshot,
)
from promotions.services.conflict_resolver import ConflictResolver, conflict_resolver
from promotions.services.eligibility import EligibilityChecker

logger = logging.getLogger(__name__)


class CheckoutService:
    """结算优惠服务"""

    def __init__(
        self,
        rule_repo: DiscountRuleRepository,
        event_repo: EventRepository,
        ledger: UsageLedger,
        resolver: Optional[ConflictResolver] = None,
    ):
        self.rule_repo = rule_repo
        self.event_repo = event_repo
        self.ledger = ledger
        self.resolver = resolver or conflict_resolver

    async def preview(
        self,
        ctx: OrderContext,
        shop_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutPreview:
        """结算前预览（仅供参考）"""
        now = now or utc_now()
        resolution, ineligible, _ = await self._evaluate(ctx, shop_id, now)
        return CheckoutPreview(resolution=resolution, ineligible=ineligible, evaluated_at=now)

    async def commit(
        self,
        order_id: str,
        ctx: OrderContext,
        shop_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutCommitResult:
        """
        提交订单优惠
        同一订单重复提交时按已提交的规则重算并返回，不重复计数；
        使用次数在提交时被其他订单用完会抛出UsageLimitExceededError
        """
        now = now or utc_now()

        records = await self.ledger.get_order_records(order_id)
        existing = [record for record in records if record.status == STATUS_COMMITTED]
        if existing:
            logger.info("订单已提交过优惠，按已有记录返回: %s", order_id)
            return await self._replay(order_id, ctx, existing, now)
        if records:
            # 仅剩已冲正记录
            raise OrderReversedError(order_id)

        resolution, ineligible, rules = await self._evaluate(ctx, shop_id, now)
        claims = [
            UsageClaim(
                rule_id=applied.rule_id,
                customer_id=ctx.customer_id,
                ip_address=ctx.ip_address,
                usage_limit_total=rules[applied.rule_id].usage_limit_total,
                usage_limit_per_user=rules[applied.rule_id].usage_limit_per_user,
                discount_amount=applied.amount + applied.shipping_amount,
            )
            for applied in resolution.applied_rules
        ]

        replayed = False
        if claims:
            outcome = await self.ledger.commit_usage(order_id, claims)
            replayed = outcome.replayed

        logger.info(
            "订单优惠已提交: %s rules=%s discount=%s",
            order_id, resolution.applied_rule_ids, resolution.total_discount,
        )
        return CheckoutCommitResult(
            order_id=order_id,
            resolution=resolution,
            ineligible=ineligible,
            committed_rule_ids=[claim.rule_id for claim in claims],
            replayed=replayed,
            committed_at=now,
        )

    async def reverse(self, order_id: str) -> List[UsageRecord]:
        """订单取消/退款时冲正使用记录"""
        records = await self.ledger.reverse_usage(order_id)
        logger.info(f"订单优惠已冲正: {order_id} count={len(records)}")
        return records

    async def _replay(
        self,
        order_id: str,
        ctx: OrderContext,
        records: List[UsageRecord],
        now: datetime,
    ) -> CheckoutCommitResult:
        """按已提交的规则重算结果，使用次数已计入本订单，不再检查上限"""
        rules = []
        for record in records:
            db_rule = await self.rule_repo.get_by_id(record.rule_id)
            if db_rule is not None:
                rules.append(self.rule_repo.to_model(db_rule))
        resolution = self.resolver.resolve(rules, ctx)
        return CheckoutCommitResult(
            order_id=order_id,
            resolution=resolution,
            committed_rule_ids=[record.rule_id for record in records],
            replayed=True,
            committed_at=now,
        )

    async def _evaluate(
        self,
        ctx: OrderContext,
        shop_id: Optional[str],
        now: datetime,
    ) -> Tuple[ResolutionResult, List[EligibilityResult], Dict[str, DiscountRule]]:
        """加载候选规则 → 资格检查 → 冲突处理"""
        candidates, ineligible = await self._load_candidates(ctx, shop_id)
        events = await self._load_events(candidates)
        snapshot = await self._load_usage(candidates, ctx)

        checker = EligibilityChecker(usage=snapshot, events=events)
        eligible, rejected = checker.partition(candidates, ctx, now)
        for result in rejected:
            result.code = next(
                (rule.code for rule in candidates if rule.rule_id == result.rule_id), None
            )
        ineligible.extend(rejected)

        resolution = self.resolver.resolve(eligible, ctx)
        return resolution, ineligible, {rule.rule_id: rule for rule in candidates}

    async def _load_candidates(
        self,
        ctx: OrderContext,
        shop_id: Optional[str],
    ) -> Tuple[List[DiscountRule], List[EligibilityResult]]:
        db_rules = list(await self.rule_repo.get_automatic_rules(shop_id))
        code_rules = await self.rule_repo.get_by_codes(ctx.candidate_codes)
        found_codes = set()
        for db_rule in code_rules:
            if db_rule.kind == RuleKind.CODE.value:
                db_rules.append(db_rule)
                found_codes.add(db_rule.code)

        not_found = [
            EligibilityResult(code=code, eligible=False, reason_codes=[ReasonCode.CODE_NOT_FOUND])
            for code in ctx.candidate_codes
            if code not in found_codes
        ]
        return [self.rule_repo.to_model(db_rule) for db_rule in db_rules], not_found

    async def _load_events(self, rules: List[DiscountRule]):
        event_ids = sorted({rule.event_id for rule in rules if rule.kind == RuleKind.EVENT and rule.event_id})
        db_events = await self.event_repo.get_by_ids(event_ids)
        return {db_event.event_id: self.event_repo.to_model(db_event) for db_event in db_events}

    async def _load_usage(self, rules: List[DiscountRule], ctx: OrderContext) -> UsageSnapshot:
        limited = [
            rule.rule_id for rule in rules
            if rule.usage_limit_total is not None or rule.usage_limit_per_user is not None
        ]
        if not limited:
            return EMPTY_SNAPSHOT
        return await self.ledger.snapshot(limited, ctx.customer_id, ctx.ip_address)
