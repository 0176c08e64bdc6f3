"""
活动生命周期
状态由 (开始时间, 结束时间, 启用开关, 自动开始, 自动结束, 当前时间) 纯函数推导，
除启用开关外不保存任何可变状态
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from promotions.core.config import settings
from promotions.core.exceptions import EventTransitionError, RuleValidationError
from promotions.models.discount import ensure_utc, utc_now
from promotions.models.event import EventStatus, EventStatusView, PromotionEvent, ScheduleMode

logger = logging.getLogger(__name__)


def derive_event_status(
    starting_date: datetime,
    ending_date: datetime,
    is_active: bool,
    auto_start: bool,
    auto_end: bool,
    now: datetime,
) -> EventStatus:
    """推导活动状态"""
    now = ensure_utc(now)
    starting_date = ensure_utc(starting_date)
    ending_date = ensure_utc(ending_date)

    # 未到开始时间，或未开启自动开始（等待手动开始）
    if now < starting_date or not auto_start:
        return EventStatus.UPCOMING

    if now > ending_date:
        # 关闭自动结束的活动过了结束时间后保持暂停，直到手动结束
        return EventStatus.ENDED if auto_end else EventStatus.PAUSED

    return EventStatus.ACTIVE if is_active else EventStatus.PAUSED


class EventLifecycle:
    """活动状态机"""

    def __init__(
        self,
        min_duration: Optional[timedelta] = None,
        max_duration: Optional[timedelta] = None,
    ):
        self.min_duration = min_duration or timedelta(hours=settings.event_min_duration_hours)
        self.max_duration = max_duration or timedelta(days=settings.event_max_duration_days)

    def status(self, event: PromotionEvent, now: Optional[datetime] = None) -> EventStatus:
        """获取活动当前状态"""
        return derive_event_status(
            event.starting_date,
            event.ending_date,
            event.is_active,
            event.auto_start,
            event.auto_end,
            now or utc_now(),
        )

    def is_live(self, event: PromotionEvent, now: Optional[datetime] = None) -> bool:
        """活动折扣仅在进行中时可用"""
        return self.status(event, now) == EventStatus.ACTIVE

    def validate_schedule(
        self,
        starting_date: Optional[datetime],
        ending_date: datetime,
        mode: ScheduleMode,
        now: Optional[datetime] = None,
    ) -> Tuple[datetime, datetime]:
        """
        验证活动排期，返回规范化后的 (开始时间, 结束时间)
        与当前状态无关，仅在创建/更新时调用
        """
        now = ensure_utc(now or utc_now())
        ending_date = ensure_utc(ending_date)

        if mode == ScheduleMode.NOW:
            starting_date = now
        elif starting_date is None:
            raise RuleValidationError("指定时间开始的活动必须设置开始时间")
        else:
            starting_date = ensure_utc(starting_date)
            if starting_date < now:
                raise RuleValidationError("活动开始时间不能早于当前时间")

        self._validate_duration(starting_date, ending_date)
        return starting_date, ending_date

    def validate_window(self, starting_date: datetime, ending_date: datetime) -> None:
        """更新时验证时间窗口（不限制开始时间是否已过）"""
        self._validate_duration(ensure_utc(starting_date), ensure_utc(ending_date))

    def _validate_duration(self, starting_date: datetime, ending_date: datetime) -> None:
        if ending_date <= starting_date:
            raise RuleValidationError("结束时间必须晚于开始时间")

        duration = ending_date - starting_date
        if duration < self.min_duration:
            raise RuleValidationError(f"活动时长不能少于 {self.min_duration}")
        if duration > self.max_duration:
            raise RuleValidationError(f"活动时长不能超过 {self.max_duration.days} 天")

    def start_now(self, event: PromotionEvent, now: Optional[datetime] = None) -> PromotionEvent:
        """立即开始：开始时间设为当前时间并立即进入进行中"""
        now = ensure_utc(now or utc_now())
        current = self.status(event, now)
        if current != EventStatus.UPCOMING:
            raise EventTransitionError(f"活动当前状态为 {current.value}，无法立即开始")
        if ensure_utc(event.ending_date) <= now:
            raise EventTransitionError("活动结束时间已过，无法开始")

        logger.info(f"活动立即开始: {event.event_id}")
        return event.model_copy(update={
            "starting_date": now,
            "auto_start": True,
            "is_active": True,
            "updated_at": now,
        })

    def end_now(self, event: PromotionEvent, now: Optional[datetime] = None) -> PromotionEvent:
        """立即结束：结束时间设为当前时间，结束为终态"""
        now = ensure_utc(now or utc_now())
        current = self.status(event, now)
        if current == EventStatus.ENDED:
            raise EventTransitionError("活动已结束")

        # 已过结束时间的活动保留原结束时间
        ending_date = min(ensure_utc(event.ending_date), now)
        update = {"ending_date": ending_date, "auto_end": True, "updated_at": now}
        if current == EventStatus.UPCOMING:
            # 未开始的活动直接结束，开始时间前移以保持时间窗口合法
            update["starting_date"] = now - timedelta(microseconds=1)
            update["auto_start"] = True
        logger.info(f"活动立即结束: {event.event_id}")
        return event.model_copy(update=update)

    def set_active(
        self,
        event: PromotionEvent,
        active: bool,
        now: Optional[datetime] = None,
    ) -> PromotionEvent:
        """暂停/恢复，仅在结束时间之前可逆"""
        now = ensure_utc(now or utc_now())
        current = self.status(event, now)
        if current == EventStatus.ENDED:
            raise EventTransitionError("活动已结束，无法暂停或恢复")
        if now > ensure_utc(event.ending_date):
            raise EventTransitionError("活动已过结束时间，无法暂停或恢复")

        logger.info(f"活动启用状态变更: {event.event_id} -> {active}")
        return event.model_copy(update={"is_active": active, "updated_at": now})

    def describe(self, event: PromotionEvent, now: Optional[datetime] = None) -> EventStatusView:
        """状态展示：进度与剩余时间"""
        now = ensure_utc(now or utc_now())
        status = self.status(event, now)
        start = ensure_utc(event.starting_date)
        end = ensure_utc(event.ending_date)

        view = EventStatusView(
            event_id=event.event_id,
            status=status,
            is_live=status == EventStatus.ACTIVE,
        )
        if status == EventStatus.UPCOMING and now < start:
            view.seconds_until_start = int((start - now).total_seconds())
        elif status in (EventStatus.ACTIVE, EventStatus.PAUSED):
            total = (end - start).total_seconds()
            elapsed = (now - start).total_seconds()
            view.progress_percent = round(min(max(elapsed / total, 0.0), 1.0) * 100, 2)
            view.seconds_remaining = max(int((end - now).total_seconds()), 0)
        elif status == EventStatus.ENDED:
            view.progress_percent = 100.0
            view.seconds_remaining = 0
        return view


# 全局状态机实例
event_lifecycle = EventLifecycle()
