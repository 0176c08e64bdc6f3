"""
优惠冲突处理
决定哪些符合资格的规则可以同时生效、按什么顺序生效；
被丢弃的规则连同原因一起返回
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from promotions.core.money import ZERO, allocate, to_money
from promotions.models.discount import KIND_RANK, DiscountRule, DiscountType, RuleKind
from promotions.models.order import (
    AppliedRule,
    DroppedRule,
    OrderContext,
    ReasonCode,
    ResolutionResult,
)
from promotions.services.calculator import DiscountCalculator, discount_calculator, initial_remaining

logger = logging.getLogger(__name__)


def resolution_order(rule: DiscountRule) -> Tuple[int, int, str]:
    """优先级降序，同优先级按 商品 > 活动 > 优惠码，最后按规则ID保证确定性"""
    return (-rule.priority, -KIND_RANK[rule.kind], rule.rule_id)


class ConflictResolver:
    """冲突处理器"""

    def __init__(self, calculator: Optional[DiscountCalculator] = None):
        self.calculator = calculator or discount_calculator

    def resolve(self, eligible_rules: List[DiscountRule], ctx: OrderContext) -> ResolutionResult:
        """合并符合资格的规则，得到订单最终优惠"""
        subtotal = to_money(ctx.subtotal)
        dropped: List[DroppedRule] = []

        candidates, code_dropped = self._select_code(eligible_rules, ctx)
        dropped.extend(code_dropped)

        remaining = initial_remaining(ctx)
        line_owner: Dict[str, str] = {}
        applied: List[AppliedRule] = []
        shipping_discount = ZERO
        free_shipping = False

        for rule in sorted(candidates, key=resolution_order):
            touched = {line.line_id for line in rule.applicable_lines(ctx.lines)}

            if not rule.stackable:
                blocking = self._first_owner(touched, line_owner)
                if blocking is not None:
                    logger.info(f"不可叠加规则被丢弃: {rule.rule_id} (冲突规则 {blocking})")
                    dropped.append(DroppedRule(
                        rule_id=rule.rule_id,
                        reason=ReasonCode.NON_STACKABLE_CONFLICT,
                        blocking_rule_id=blocking,
                    ))
                    continue

            line_discounts = self.calculator.compute_line_discounts(rule, ctx, remaining)
            for line_id, amount in line_discounts.items():
                remaining[line_id] = remaining[line_id] - amount
            for line_id in touched:
                line_owner.setdefault(line_id, rule.rule_id)

            shipping_amount = ZERO
            if rule.discount_type == DiscountType.FREE_SHIPPING:
                amount, flag = self.calculator.compute_shipping_discount(rule, ctx)
                # 运费只能免一次
                if not free_shipping:
                    shipping_amount = amount
                    shipping_discount = amount
                free_shipping = free_shipping or flag

            applied.append(AppliedRule(
                rule_id=rule.rule_id,
                kind=rule.kind.value,
                discount_type=rule.discount_type.value,
                name=rule.name,
                amount=sum(line_discounts.values(), ZERO),
                shipping_amount=shipping_amount,
                line_discounts=line_discounts,
            ))

        per_line = {
            line.line_id: to_money(line.line_total) - remaining[line.line_id]
            for line in ctx.lines
        }
        total_discount = sum(per_line.values(), ZERO)
        if total_discount > subtotal:
            # 调用方提供的小计低于行合计时，按比例压缩到小计
            total_discount = subtotal
            per_line = allocate(subtotal, per_line)

        return ResolutionResult(
            applied_rules=applied,
            dropped_rules=dropped,
            total_discount=total_discount,
            per_line_discount=per_line,
            shipping_discount=shipping_discount,
            free_shipping=free_shipping,
            subtotal=subtotal,
            final_amount=subtotal - total_discount,
        )

    def _select_code(
        self,
        eligible_rules: List[DiscountRule],
        ctx: OrderContext,
    ) -> Tuple[List[DiscountRule], List[DroppedRule]]:
        """每单最多一个优惠码：按顾客提交顺序保留第一个，其余丢弃"""
        code_rules = [rule for rule in eligible_rules if rule.kind == RuleKind.CODE]
        others = [rule for rule in eligible_rules if rule.kind != RuleKind.CODE]
        if len(code_rules) <= 1:
            return others + code_rules, []

        submitted = {code: index for index, code in enumerate(ctx.candidate_codes)}
        code_rules.sort(key=lambda rule: (
            submitted.get(rule.code, len(submitted)),
            resolution_order(rule),
        ))
        kept, rest = code_rules[0], code_rules[1:]
        dropped = [
            DroppedRule(
                rule_id=rule.rule_id,
                reason=ReasonCode.ONE_CODE_PER_ORDER,
                blocking_rule_id=kept.rule_id,
            )
            for rule in rest
        ]
        return others + [kept], dropped

    @staticmethod
    def _first_owner(touched: Set[str], line_owner: Dict[str, str]) -> Optional[str]:
        for line_id in sorted(touched):
            if line_id in line_owner:
                return line_owner[line_id]
        return None


# 全局冲突处理器实例
conflict_resolver = ConflictResolver()
