"""
EventService业务逻辑测试
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from promotions.core.exceptions import BusinessException, EventTransitionError, RuleValidationError
from promotions.models.discount import RuleKind
from promotions.models.event import EventCreate, EventStatus, EventUpdate, ScheduleMode
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.services.event_service import EventService

from factories import NOW, make_event, make_rule


@pytest.mark.asyncio
class TestEventService:
    """EventService业务逻辑测试类"""

    @pytest.fixture
    def mock_event_repo(self):
        """模拟EventRepository，活动模型直接作为数据库对象返回"""
        repo = AsyncMock(spec=EventRepository)
        repo.to_model = MagicMock(side_effect=lambda db_event: db_event)
        repo.create.side_effect = lambda event: event
        repo.save.side_effect = lambda event: event
        repo.get_by_id.return_value = make_event()
        return repo

    @pytest.fixture
    def mock_rule_repo(self):
        repo = AsyncMock(spec=DiscountRuleRepository)
        repo.get_event_rules.return_value = []
        return repo

    @pytest.fixture
    def mock_cache(self):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        return cache

    @pytest.fixture
    def event_service(self, mock_event_repo, mock_rule_repo, mock_cache):
        service = EventService(mock_event_repo, mock_rule_repo)
        service.cache = mock_cache
        return service

    async def test_create_event_now(self, event_service, mock_event_repo):
        """测试立即开始的活动"""
        data = EventCreate(
            title="周末闪购",
            schedule_mode=ScheduleMode.NOW,
            ending_date=NOW + timedelta(days=2),
        )

        # 调用方法
        event = await event_service.create_event(data, now=NOW)

        # 验证结果
        assert event.event_id.startswith("evt_")
        assert event.starting_date == NOW
        assert event.ending_date == NOW + timedelta(days=2)
        mock_event_repo.create.assert_called_once()

    async def test_create_event_later_in_past_rejected(self, event_service, mock_event_repo):
        data = EventCreate(
            title="过去的活动",
            starting_date=NOW - timedelta(days=1),
            ending_date=NOW + timedelta(days=1),
        )

        with pytest.raises(RuleValidationError):
            await event_service.create_event(data, now=NOW)

        mock_event_repo.create.assert_not_called()

    async def test_create_event_too_long_rejected(self, event_service):
        data = EventCreate(
            title="超长活动",
            schedule_mode=ScheduleMode.NOW,
            ending_date=NOW + timedelta(days=91),
        )

        with pytest.raises(RuleValidationError):
            await event_service.create_event(data, now=NOW)

    async def test_get_event_not_found(self, event_service, mock_event_repo):
        mock_event_repo.get_by_id.return_value = None

        with pytest.raises(BusinessException) as exc_info:
            await event_service.get_event("missing")

        assert exc_info.value.code == "EVENT_NOT_FOUND"

    async def test_update_event_window_validated(self, event_service):
        """测试修改时间窗口时校验时长"""
        with pytest.raises(RuleValidationError):
            await event_service.update_event(
                "evt_001", EventUpdate(ending_date=NOW - timedelta(minutes=30))
            )

    async def test_update_event_title(self, event_service, mock_cache):
        event = await event_service.update_event("evt_001", EventUpdate(title="新标题"))

        assert event.title == "新标题"
        mock_cache.delete.assert_called_once_with("event:evt_001")

    async def test_pause_and_resume(self, event_service, mock_event_repo):
        paused = await event_service.pause("evt_001", now=NOW)
        assert paused.is_active is False

        mock_event_repo.get_by_id.return_value = paused
        resumed = await event_service.resume("evt_001", now=NOW)
        assert resumed.is_active is True

    async def test_start_now_running_event_rejected(self, event_service):
        with pytest.raises(EventTransitionError):
            await event_service.start_now("evt_001", now=NOW)

    async def test_end_now(self, event_service):
        ended = await event_service.end_now("evt_001", now=NOW)
        assert ended.ending_date == NOW

    async def test_get_status(self, event_service):
        view = await event_service.get_status("evt_001", now=NOW)

        assert view.status == EventStatus.ACTIVE
        assert view.is_live is True

    async def test_delete_event_with_rules_rejected(self, event_service, mock_event_repo, mock_rule_repo):
        """测试仍有关联规则的活动不能删除"""
        mock_rule_repo.get_event_rules.return_value = [make_rule(kind=RuleKind.EVENT, event_id="evt_001")]

        with pytest.raises(BusinessException) as exc_info:
            await event_service.delete_event("evt_001")

        assert exc_info.value.code == "EVENT_HAS_RULES"
        mock_event_repo.delete.assert_not_called()

    async def test_delete_event(self, event_service, mock_event_repo):
        await event_service.delete_event("evt_001")
        mock_event_repo.delete.assert_called_once_with("evt_001")

    async def test_list_events_includes_status(self, event_service, mock_event_repo):
        mock_event_repo.list_events.return_value = ([make_event()], 1)

        result = await event_service.list_events(now=NOW)

        assert result["total"] == 1
        assert result["items"][0]["status"].status == EventStatus.ACTIVE
