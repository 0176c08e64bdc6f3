"""
促销活动业务服务层（卖家端）
排期校验在创建/更新时完成；状态始终由生命周期推导
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from promotions.core.exceptions import BusinessException, RuleValidationError
from promotions.models.discount import utc_now
from promotions.models.event import (
    EventCreate,
    EventListStatus,
    EventStatusView,
    EventType,
    EventUpdate,
    PromotionEvent,
)
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.services.common_cache import event_cache
from promotions.services.event_lifecycle import EventLifecycle, event_lifecycle

logger = logging.getLogger(__name__)


class EventService:
    """促销活动业务服务"""

    def __init__(
        self,
        event_repo: EventRepository,
        rule_repo: DiscountRuleRepository,
        lifecycle: Optional[EventLifecycle] = None,
    ):
        self.event_repo = event_repo
        self.rule_repo = rule_repo
        self.lifecycle = lifecycle or event_lifecycle
        self.cache = event_cache
        self.cache_prefix = "event"

    async def create_event(self, data: EventCreate, now: Optional[datetime] = None) -> PromotionEvent:
        """创建活动：立即开始或指定时间开始"""
        now = now or utc_now()
        starting_date, ending_date = self.lifecycle.validate_schedule(
            data.starting_date, data.ending_date, data.schedule_mode, now
        )
        event = self._build(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            title=data.title,
            description=data.description,
            event_type=data.event_type,
            shop_id=data.shop_id,
            product_ids=data.product_ids,
            starting_date=starting_date,
            ending_date=ending_date,
            auto_start=data.auto_start,
            auto_end=data.auto_end,
            is_active=data.is_active,
            created_at=now,
            updated_at=now,
        )
        db_event = await self.event_repo.create(event)
        logger.info(f"创建活动: {event.event_id} {starting_date.isoformat()} ~ {ending_date.isoformat()}")
        return self.event_repo.to_model(db_event)

    async def get_event(self, event_id: str, use_cache: bool = True) -> PromotionEvent:
        """获取活动详情"""
        cache_key = f"{self.cache_prefix}:{event_id}"
        if use_cache:
            cached = await self.cache.get(cache_key)
            if cached:
                return PromotionEvent(**cached)

        db_event = await self.event_repo.get_by_id(event_id)
        if not db_event:
            raise BusinessException("EVENT_NOT_FOUND", f"活动 {event_id} 不存在", status_code=404)
        event = self.event_repo.to_model(db_event)

        if use_cache:
            await self.cache.set(cache_key, event.model_dump(mode="json"))
        return event

    async def list_events(
        self,
        shop_id: Optional[str] = None,
        status: EventListStatus = EventListStatus.ALL,
        event_type: Optional[EventType] = None,
        page: int = 1,
        page_size: int = 20,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """卖家端活动列表，附带推导状态"""
        now = now or utc_now()
        db_events, total = await self.event_repo.list_events(
            shop_id=shop_id,
            status=status,
            event_type=event_type,
            limit=page_size,
            offset=(page - 1) * page_size,
            current_time=now,
        )
        events = [self.event_repo.to_model(db_event) for db_event in db_events]
        return {
            "items": [
                {"event": event, "status": self.lifecycle.describe(event, now)}
                for event in events
            ],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def update_event(
        self,
        event_id: str,
        data: EventUpdate,
    ) -> PromotionEvent:
        """更新活动；修改时间窗口时重新校验时长"""
        current = await self.get_event(event_id, use_cache=False)
        changes = data.model_dump(exclude_unset=True)

        merged = current.model_dump()
        merged.update(changes)
        if "starting_date" in changes or "ending_date" in changes:
            self.lifecycle.validate_window(merged["starting_date"], merged["ending_date"])
        event = self._build(**merged)

        logger.info(f"更新活动: {event_id} fields={sorted(changes)}")
        return await self._save(event)

    async def start_now(self, event_id: str, now: Optional[datetime] = None) -> PromotionEvent:
        """立即开始"""
        event = await self.get_event(event_id, use_cache=False)
        return await self._save(self.lifecycle.start_now(event, now))

    async def end_now(self, event_id: str, now: Optional[datetime] = None) -> PromotionEvent:
        """立即结束"""
        event = await self.get_event(event_id, use_cache=False)
        return await self._save(self.lifecycle.end_now(event, now))

    async def pause(self, event_id: str, now: Optional[datetime] = None) -> PromotionEvent:
        """暂停活动"""
        event = await self.get_event(event_id, use_cache=False)
        return await self._save(self.lifecycle.set_active(event, False, now))

    async def resume(self, event_id: str, now: Optional[datetime] = None) -> PromotionEvent:
        """恢复活动"""
        event = await self.get_event(event_id, use_cache=False)
        return await self._save(self.lifecycle.set_active(event, True, now))

    async def get_status(self, event_id: str, now: Optional[datetime] = None) -> EventStatusView:
        """活动当前状态（不使用缓存中的状态，每次推导）"""
        event = await self.get_event(event_id)
        return self.lifecycle.describe(event, now)

    async def delete_event(self, event_id: str) -> None:
        """删除活动；仍有关联规则时拒绝"""
        await self.get_event(event_id, use_cache=False)
        if await self.rule_repo.get_event_rules(event_id):
            raise BusinessException(
                "EVENT_HAS_RULES",
                "活动下仍有优惠规则，请先删除或停用规则",
                status_code=409,
            )
        await self.event_repo.delete(event_id)
        await self.cache.delete(f"{self.cache_prefix}:{event_id}")
        logger.info(f"删除活动: {event_id}")

    async def _save(self, event: PromotionEvent) -> PromotionEvent:
        db_event = await self.event_repo.save(event)
        if db_event is None:
            raise BusinessException("EVENT_NOT_FOUND", f"活动 {event.event_id} 不存在", status_code=404)
        await self.cache.delete(f"{self.cache_prefix}:{event.event_id}")
        return self.event_repo.to_model(db_event)

    @staticmethod
    def _build(**fields) -> PromotionEvent:
        try:
            return PromotionEvent(**fields)
        except ValidationError as e:
            messages = "; ".join(error["msg"] for error in e.errors())
            raise RuleValidationError(messages) from e
