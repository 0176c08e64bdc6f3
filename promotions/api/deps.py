"""
API依赖注入
"""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promotions.core.config import LedgerBackend, settings
from promotions.core.database import get_db_session, get_session_maker
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.repositories.usage_ledger import InMemoryUsageLedger, SqlUsageLedger, UsageLedger
from promotions.services.checkout_service import CheckoutService
from promotions.services.code_validation_service import CodeValidationService
from promotions.services.discount_rule_service import DiscountRuleService
from promotions.services.event_service import EventService

_usage_ledger: Optional[UsageLedger] = None


def get_usage_ledger() -> UsageLedger:
    """使用记录实例（进程内单例）"""
    global _usage_ledger
    if _usage_ledger is None:
        if settings.usage_ledger_backend == LedgerBackend.MEMORY:
            _usage_ledger = InMemoryUsageLedger()
        else:
            _usage_ledger = SqlUsageLedger(get_session_maker())
    return _usage_ledger


def reset_usage_ledger() -> None:
    """应用关闭时释放"""
    global _usage_ledger
    _usage_ledger = None


def get_rule_repository(db: AsyncSession = Depends(get_db_session)) -> DiscountRuleRepository:
    return DiscountRuleRepository(db)


def get_event_repository(db: AsyncSession = Depends(get_db_session)) -> EventRepository:
    return EventRepository(db)


def get_discount_rule_service(
    rule_repo: DiscountRuleRepository = Depends(get_rule_repository),
    event_repo: EventRepository = Depends(get_event_repository),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> DiscountRuleService:
    return DiscountRuleService(rule_repo, event_repo, ledger)


def get_event_service(
    event_repo: EventRepository = Depends(get_event_repository),
    rule_repo: DiscountRuleRepository = Depends(get_rule_repository),
) -> EventService:
    return EventService(event_repo, rule_repo)


def get_code_validation_service(
    rule_repo: DiscountRuleRepository = Depends(get_rule_repository),
    event_repo: EventRepository = Depends(get_event_repository),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> CodeValidationService:
    return CodeValidationService(rule_repo, event_repo, ledger)


def get_checkout_service(
    rule_repo: DiscountRuleRepository = Depends(get_rule_repository),
    event_repo: EventRepository = Depends(get_event_repository),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> CheckoutService:
    return CheckoutService(rule_repo, event_repo, ledger)
