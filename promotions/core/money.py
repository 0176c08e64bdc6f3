"""
金额与数量基础运算
所有金额使用Decimal定点数，禁止二进制浮点参与货币计算
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN
from typing import Dict, Union

from promotions.core.config import settings

Number = Union[Decimal, int, str, float]

# 最小货币单位，例如 Decimal("0.01")
MONEY_QUANTUM = Decimal(1).scaleb(-settings.currency_decimal_places)
ZERO = Decimal(0).quantize(MONEY_QUANTUM)
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """转换为Decimal，float先转字符串避免二进制误差"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """四舍五入(half-up)到最小货币单位"""
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_money(value: Number) -> Decimal:
    """规范化为金额"""
    return round_money(value)


def percent_of(amount: Number, percent: Number) -> Decimal:
    """计算百分比金额，只在最后舍入一次"""
    return round_money(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def clamp_money(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """限制金额在 [lower, upper] 区间"""
    if upper < lower:
        upper = lower
    return max(lower, min(value, upper))


def allocate(total: Decimal, weights: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """
    按权重把已舍入的总额分摊到各行（最大余数法）
    分摊结果之和严格等于total，且每行不超过自身权重
    """
    result = {key: ZERO for key in weights}
    weight_sum = sum(weights.values(), Decimal(0))
    if total <= 0 or weight_sum <= 0:
        return result

    total = min(total, weight_sum)
    remainders = []
    allocated = Decimal(0)
    for key, weight in weights.items():
        exact = total * weight / weight_sum
        share = exact.quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)
        result[key] = share
        allocated += share
        remainders.append((exact - share, key))

    # 剩余的最小单位按余数从大到小逐个补齐
    leftover = int(((total - allocated) / MONEY_QUANTUM).to_integral_value())
    remainders.sort(key=lambda item: item[0], reverse=True)
    for _, key in remainders:
        if leftover <= 0:
            break
        if result[key] + MONEY_QUANTUM <= weights[key]:
            result[key] += MONEY_QUANTUM
            leftover -= 1
    return result
