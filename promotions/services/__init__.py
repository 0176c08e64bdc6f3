"""
服务包初始化文件
"""

from .event_lifecycle import EventLifecycle, derive_event_status, event_lifecycle
from .eligibility import EligibilityChecker
from .calculator import DiscountCalculator, discount_calculator
from .conflict_resolver import ConflictResolver, conflict_resolver

__all__ = [
    "EventLifecycle",
    "derive_event_status",
    "event_lifecycle",
    "EligibilityChecker",
    "DiscountCalculator",
    "discount_calculator",
    "ConflictResolver",
    "conflict_resolver",
]
