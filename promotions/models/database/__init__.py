"""
数据库模型包初始化文件
"""

from .discount_db import DiscountRuleDB
from .event_db import PromotionEventDB
from .usage_db import DiscountUsageRecordDB, DiscountUsageCounterDB

__all__ = [
    "DiscountRuleDB",
    "PromotionEventDB",
    "DiscountUsageRecordDB",
    "DiscountUsageCounterDB"
]
