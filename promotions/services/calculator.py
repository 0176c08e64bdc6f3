"""
折扣计算
每种折扣类型一个公式，所有调用方共用；
金额按行计算，remaining为各行当前剩余价格（多条可叠加规则依次作用时使用）
"""

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from promotions.core.money import ZERO, allocate, clamp_money, percent_of, round_money, to_money
from promotions.models.discount import DiscountRule, DiscountTier, DiscountType
from promotions.models.order import OrderContext, OrderLine

LineAmounts = Dict[str, Decimal]


def initial_remaining(ctx: OrderContext) -> LineAmounts:
    """各行折前价格"""
    return {line.line_id: to_money(line.line_total) for line in ctx.lines}


def buy_x_get_y_free_units(units: int, buy_quantity: int, free_quantity: int) -> int:
    """
    买X送Y的免费件数
    每组 X+Y 件中Y件免费；末尾不满一组但已达X件的部分同样获得Y件免费，
    至少X件需付费
    """
    if buy_quantity <= 0 or free_quantity <= 0 or units <= buy_quantity:
        return 0
    groups, rest = divmod(units, buy_quantity + free_quantity)
    earned = groups * free_quantity
    if rest >= buy_quantity:
        earned += free_quantity
    return min(earned, units - buy_quantity)


def select_tier(tiers: List[DiscountTier], quantity: int, amount: Decimal) -> Optional[DiscountTier]:
    """选择已达标档位中折扣最大的一档"""
    met = [tier for tier in tiers if tier.is_met(quantity, amount)]
    if not met:
        return None
    return max(met, key=lambda tier: tier.percent)


class DiscountCalculator:
    """折扣计算器（调用前规则应已通过资格检查）"""

    def compute_discount(
        self,
        rule: DiscountRule,
        ctx: OrderContext,
        remaining: Optional[LineAmounts] = None,
    ) -> Decimal:
        """规则的折扣金额；免运费返回运费折扣"""
        if rule.discount_type == DiscountType.FREE_SHIPPING:
            amount, _ = self.compute_shipping_discount(rule, ctx)
            return amount
        line_discounts = self.compute_line_discounts(rule, ctx, remaining)
        return sum(line_discounts.values(), ZERO)

    def applicable_base(
        self,
        rule: DiscountRule,
        ctx: OrderContext,
        remaining: Optional[LineAmounts] = None,
    ) -> LineAmounts:
        """适用行的剩余价格"""
        remaining = remaining if remaining is not None else initial_remaining(ctx)
        return {
            line.line_id: remaining.get(line.line_id, ZERO)
            for line in rule.applicable_lines(ctx.lines)
        }

    def compute_line_discounts(
        self,
        rule: DiscountRule,
        ctx: OrderContext,
        remaining: Optional[LineAmounts] = None,
    ) -> LineAmounts:
        """按行计算折扣，每行结果在 [0, 行剩余价格] 之内"""
        base = self.applicable_base(rule, ctx, remaining)
        lines = [line for line in ctx.lines if line.line_id in base]
        base_total = sum(base.values(), ZERO)
        if not lines or base_total <= 0:
            return {line.line_id: ZERO for line in lines}

        discount_type = rule.discount_type
        if discount_type == DiscountType.PERCENTAGE:
            amount = percent_of(base_total, rule.value)
            if rule.maximum_discount_amount is not None:
                amount = min(amount, to_money(rule.maximum_discount_amount))
            result = allocate(clamp_money(amount, ZERO, base_total), base)

        elif discount_type == DiscountType.FIXED_AMOUNT:
            amount = min(to_money(rule.value), base_total)
            result = allocate(amount, base)

        elif discount_type == DiscountType.SPECIAL_PRICE:
            result = self._special_price(rule, lines, base)

        elif discount_type == DiscountType.BUY_X_GET_Y:
            result = self._buy_x_get_y(rule, lines, base)

        elif discount_type == DiscountType.TIERED:
            result = self._tiered(rule, lines, base, base_total)

        else:
            # 免运费不影响商品行
            result = {line.line_id: ZERO for line in lines}

        return {
            line_id: clamp_money(amount, ZERO, base[line_id])
            for line_id, amount in result.items()
        }

    def compute_shipping_discount(
        self,
        rule: DiscountRule,
        ctx: OrderContext,
    ) -> Tuple[Decimal, bool]:
        """
        运费折扣，返回 (金额, 是否免运费)
        运费由调用方提供；运费未知时金额为0，仅以标记表示
        """
        if rule.discount_type != DiscountType.FREE_SHIPPING:
            return ZERO, False
        if ctx.shipping_cost is None:
            return ZERO, True
        return to_money(ctx.shipping_cost), True

    def _special_price(
        self,
        rule: DiscountRule,
        lines: List[OrderLine],
        base: LineAmounts,
    ) -> LineAmounts:
        """特价：每行折扣 = max(0, 剩余价格 - 特价 × 数量)"""
        special = to_money(rule.value)
        return {
            line.line_id: max(ZERO, round_money(base[line.line_id] - special * line.quantity))
            for line in lines
        }

    def _buy_x_get_y(
        self,
        rule: DiscountRule,
        lines: List[OrderLine],
        base: LineAmounts,
    ) -> LineAmounts:
        """买X送Y：免费件数按整数计算，优先免最便宜的件"""
        units = sum(line.quantity for line in lines)
        free_units = buy_x_get_y_free_units(units, rule.min_quantity or 0, int(rule.value))
        result = {line.line_id: ZERO for line in lines}
        if free_units == 0:
            return result

        by_unit_price = sorted(
            lines,
            key=lambda line: (base[line.line_id] / line.quantity, line.line_id),
        )
        for line in by_unit_price:
            if free_units == 0:
                break
            take = min(line.quantity, free_units)
            free_units -= take
            if take == line.quantity:
                result[line.line_id] = base[line.line_id]
            else:
                result[line.line_id] = round_money(base[line.line_id] * take / line.quantity)
        return result

    def _tiered(
        self,
        rule: DiscountRule,
        lines: List[OrderLine],
        base: LineAmounts,
        base_total: Decimal,
    ) -> LineAmounts:
        """阶梯：门槛按折前数量/金额判断，折扣率作用于剩余价格"""
        quantity = sum(line.quantity for line in lines)
        amount = to_money(sum((line.line_total for line in lines), Decimal("0")))
        tier = select_tier(rule.tiers, quantity, amount)
        if tier is None:
            return {line.line_id: ZERO for line in lines}
        return allocate(percent_of(base_total, tier.percent), base)


# 全局计算器实例
discount_calculator = DiscountCalculator()
