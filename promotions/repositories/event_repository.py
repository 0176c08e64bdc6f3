"""
促销活动数据库操作层
"""

from typing import List, Optional, Tuple
from datetime import datetime

from sqlalchemy import select, update, delete, and_, desc, func, true
from sqlalchemy.ext.asyncio import AsyncSession

from promotions.models.discount import utc_now
from promotions.models.event import EventListStatus, EventType, PromotionEvent
from promotions.models.database.event_db import PromotionEventDB


class EventRepository:
    """促销活动数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, event_id: str) -> Optional[PromotionEventDB]:
        """根据活动ID获取活动"""
        result = await self.db.execute(
            select(PromotionEventDB).where(PromotionEventDB.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, event_ids: List[str]) -> List[PromotionEventDB]:
        """批量获取活动"""
        if not event_ids:
            return []
        result = await self.db.execute(
            select(PromotionEventDB).where(PromotionEventDB.event_id.in_(event_ids))
        )
        return result.scalars().all()

    async def list_events(
        self,
        shop_id: Optional[str] = None,
        status: EventListStatus = EventListStatus.ALL,
        event_type: Optional[EventType] = None,
        limit: int = 20,
        offset: int = 0,
        current_time: Optional[datetime] = None,
    ) -> Tuple[List[PromotionEventDB], int]:
        """按时间窗口筛选活动列表，返回 (当前页, 总数)"""
        if current_time is None:
            current_time = utc_now()

        conditions = []
        if shop_id:
            conditions.append(PromotionEventDB.shop_id == shop_id)
        if event_type:
            conditions.append(PromotionEventDB.event_type == event_type.value)

        if status == EventListStatus.ACTIVE:
            conditions.extend([
                PromotionEventDB.starting_date <= current_time,
                PromotionEventDB.ending_date >= current_time,
            ])
        elif status == EventListStatus.UPCOMING:
            conditions.append(PromotionEventDB.starting_date > current_time)
        elif status == EventListStatus.EXPIRED:
            conditions.append(PromotionEventDB.ending_date < current_time)

        where_clause = and_(*conditions) if conditions else true()

        count_result = await self.db.execute(
            select(func.count(PromotionEventDB.event_id)).where(where_clause)
        )
        total = count_result.scalar() or 0

        query = select(PromotionEventDB).where(where_clause).order_by(
            desc(PromotionEventDB.starting_date), PromotionEventDB.event_id
        ).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return result.scalars().all(), total

    async def create(self, event: PromotionEvent) -> PromotionEventDB:
        """创建活动"""
        db_event = PromotionEventDB(
            event_id=event.event_id,
            title=event.title,
            description=event.description,
            event_type=event.event_type.value,
            shop_id=event.shop_id,
            product_ids=list(event.product_ids),
            starting_date=event.starting_date,
            ending_date=event.ending_date,
            auto_start=event.auto_start,
            auto_end=event.auto_end,
            is_active=event.is_active,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )
        self.db.add(db_event)
        await self.db.flush()
        return db_event

    async def save(self, event: PromotionEvent) -> Optional[PromotionEventDB]:
        """以完整模型覆盖保存活动"""
        result = await self.db.execute(
            update(PromotionEventDB)
            .where(PromotionEventDB.event_id == event.event_id)
            .values(
                title=event.title,
                description=event.description,
                event_type=event.event_type.value,
                product_ids=list(event.product_ids),
                starting_date=event.starting_date,
                ending_date=event.ending_date,
                auto_start=event.auto_start,
                auto_end=event.auto_end,
                is_active=event.is_active,
                updated_at=utc_now(),
            )
        )
        if result.rowcount == 0:
            return None
        await self.db.flush()
        db_event = await self.get_by_id(event.event_id)
        await self.db.refresh(db_event)
        return db_event

    async def delete(self, event_id: str) -> bool:
        """删除活动"""
        result = await self.db.execute(
            delete(PromotionEventDB).where(PromotionEventDB.event_id == event_id)
        )
        return result.rowcount > 0

    def to_model(self, db_event: PromotionEventDB) -> PromotionEvent:
        """转换为Pydantic模型"""
        return PromotionEvent(
            event_id=db_event.event_id,
            title=db_event.title,
            description=db_event.description,
            event_type=db_event.event_type,
            shop_id=db_event.shop_id,
            product_ids=db_event.product_ids or [],
            starting_date=db_event.starting_date,
            ending_date=db_event.ending_date,
            auto_start=bool(db_event.auto_start),
            auto_end=bool(db_event.auto_end),
            is_active=bool(db_event.is_active),
            created_at=db_event.created_at or utc_now(),
            updated_at=db_event.updated_at or utc_now(),
        )
