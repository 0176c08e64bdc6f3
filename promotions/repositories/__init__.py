"""
仓库包初始化文件 - 数据库访问层
"""

from .discount_repository import DiscountRuleRepository
from .event_repository import EventRepository
from .usage_ledger import (
    UsageLedger,
    UsageClaim,
    UsageRecord,
    UsageSnapshot,
    CommitOutcome,
    InMemoryUsageLedger,
    SqlUsageLedger,
)

__all__ = [
    "DiscountRuleRepository",
    "EventRepository",
    "UsageLedger",
    "UsageClaim",
    "UsageRecord",
    "UsageSnapshot",
    "CommitOutcome",
    "InMemoryUsageLedger",
    "SqlUsageLedger",
]
