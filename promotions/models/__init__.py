"""
数据模型包初始化文件
"""

from .order import (
    ReasonCode,
    REASON_MESSAGES,
    OrderLine,
    OrderContext,
    EligibilityResult,
    AppliedRule,
    DroppedRule,
    ResolutionResult,
    CodeValidationResult,
    CheckoutPreview,
    CheckoutCommitResult,
)
from .discount import (
    RuleKind,
    DiscountType,
    DiscountTier,
    Applicability,
    CustomerRestriction,
    DiscountRule,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    RuleListStatus,
)
from .event import (
    EventType,
    EventStatus,
    ScheduleMode,
    PromotionEvent,
    EventCreate,
    EventUpdate,
    EventStatusView,
    EventListStatus,
)

__all__ = [
    "ReasonCode",
    "REASON_MESSAGES",
    "OrderLine",
    "OrderContext",
    "EligibilityResult",
    "AppliedRule",
    "DroppedRule",
    "ResolutionResult",
    "CodeValidationResult",
    "CheckoutPreview",
    "CheckoutCommitResult",
    "RuleKind",
    "DiscountType",
    "DiscountTier",
    "Applicability",
    "CustomerRestriction",
    "DiscountRule",
    "DiscountRuleCreate",
    "DiscountRuleUpdate",
    "RuleListStatus",
    "EventType",
    "EventStatus",
    "ScheduleMode",
    "PromotionEvent",
    "EventCreate",
    "EventUpdate",
    "EventStatusView",
    "EventListStatus",
]
