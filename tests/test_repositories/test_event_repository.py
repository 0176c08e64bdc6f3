"""
促销活动Repository数据库操作测试 - 使用真实数据库
"""

import pytest
from datetime import timedelta

from promotions.models.event import EventListStatus, EventType
from promotions.repositories.event_repository import EventRepository

from factories import NOW, make_event


@pytest.mark.asyncio
class TestEventRepository:
    """促销活动Repository数据库操作测试类"""

    async def test_create_and_get_event(self, db_session):
        """测试创建和获取活动"""
        event_repo = EventRepository(db_session)
        event = make_event(product_ids=["P1", "P2"], event_type=EventType.SEASONAL)

        await event_repo.create(event)
        await db_session.commit()

        db_event = await event_repo.get_by_id("evt_001")
        restored = event_repo.to_model(db_event)

        assert restored.title == "春季限时抢购"
        assert restored.event_type == EventType.SEASONAL
        assert restored.product_ids == ["P1", "P2"]
        assert restored.starting_date == event.starting_date
        assert restored.ending_date == event.ending_date

    async def test_get_by_ids(self, db_session):
        event_repo = EventRepository(db_session)
        await event_repo.create(make_event("evt_a"))
        await event_repo.create(make_event("evt_b"))

        events = await event_repo.get_by_ids(["evt_a", "evt_x"])

        assert [event.event_id for event in events] == ["evt_a"]
        assert await event_repo.get_by_ids([]) == []

    async def test_list_events_by_window(self, db_session):
        """测试按时间窗口筛选"""
        event_repo = EventRepository(db_session)
        await event_repo.create(make_event("evt_live"))
        await event_repo.create(make_event(
            "evt_next",
            starting_date=NOW + timedelta(days=1),
            ending_date=NOW + timedelta(days=2),
        ))
        await event_repo.create(make_event(
            "evt_past",
            starting_date=NOW - timedelta(days=2),
            ending_date=NOW - timedelta(days=1),
        ))

        active, _ = await event_repo.list_events(status=EventListStatus.ACTIVE, current_time=NOW)
        upcoming, _ = await event_repo.list_events(status=EventListStatus.UPCOMING, current_time=NOW)
        expired, _ = await event_repo.list_events(status=EventListStatus.EXPIRED, current_time=NOW)
        everything, total = await event_repo.list_events(current_time=NOW)

        assert [e.event_id for e in active] == ["evt_live"]
        assert [e.event_id for e in upcoming] == ["evt_next"]
        assert [e.event_id for e in expired] == ["evt_past"]
        assert total == 3
        assert [e.event_id for e in everything] == ["evt_next", "evt_live", "evt_past"]

    async def test_save_and_delete(self, db_session):
        event_repo = EventRepository(db_session)
        event = make_event()
        await event_repo.create(event)

        saved = await event_repo.save(event.model_copy(update={"is_active": False, "title": "已暂停"}))

        assert saved.is_active is False
        assert saved.title == "已暂停"
        assert await event_repo.delete("evt_001") is True
        assert await event_repo.save(event) is None
