"""
活动生命周期测试
"""

import pytest
from datetime import timedelta

from promotions.core.exceptions import EventTransitionError, RuleValidationError
from promotions.models.event import EventStatus, ScheduleMode
from promotions.services.event_lifecycle import EventLifecycle, derive_event_status

from factories import NOW, make_event


class TestDeriveEventStatus:
    """状态推导测试类"""

    def test_active_between_start_and_end(self):
        status = derive_event_status(NOW - timedelta(hours=1), NOW + timedelta(hours=1), True, True, True, NOW)
        assert status == EventStatus.ACTIVE

    def test_paused_when_disabled(self):
        status = derive_event_status(NOW - timedelta(hours=1), NOW + timedelta(hours=1), False, True, True, NOW)
        assert status == EventStatus.PAUSED

    def test_upcoming_before_start(self):
        status = derive_event_status(NOW + timedelta(hours=1), NOW + timedelta(hours=3), True, True, True, NOW)
        assert status == EventStatus.UPCOMING

    def test_upcoming_without_auto_start(self):
        """测试未开启自动开始时等待手动开始"""
        status = derive_event_status(NOW - timedelta(hours=1), NOW + timedelta(hours=1), True, False, True, NOW)
        assert status == EventStatus.UPCOMING

    def test_ended_after_end(self):
        status = derive_event_status(NOW - timedelta(hours=3), NOW - timedelta(hours=1), True, True, True, NOW)
        assert status == EventStatus.ENDED

    def test_no_auto_end_holds_paused_after_end(self):
        """测试关闭自动结束时过了结束时间保持暂停，不再进行中"""
        status = derive_event_status(NOW - timedelta(days=2), NOW - timedelta(days=1), True, True, False, NOW)
        assert status == EventStatus.PAUSED

    def test_ended_even_when_paused(self):
        status = derive_event_status(NOW - timedelta(hours=3), NOW - timedelta(hours=1), False, True, True, NOW)
        assert status == EventStatus.ENDED

    def test_end_boundary_still_active(self):
        status = derive_event_status(NOW - timedelta(hours=1), NOW, True, True, True, NOW)
        assert status == EventStatus.ACTIVE


class TestEventLifecycle:
    """状态迁移与排期校验测试类"""

    @pytest.fixture
    def lifecycle(self):
        return EventLifecycle()

    def test_is_live_only_when_active(self, lifecycle):
        assert lifecycle.is_live(make_event(), NOW)
        assert not lifecycle.is_live(make_event(is_active=False), NOW)

    def test_start_now(self, lifecycle):
        """测试立即开始未开始的活动"""
        event = make_event(
            starting_date=NOW + timedelta(hours=2),
            ending_date=NOW + timedelta(hours=5),
        )

        # 调用方法
        started = lifecycle.start_now(event, NOW)

        # 验证结果
        assert started.starting_date == NOW
        assert lifecycle.status(started, NOW) == EventStatus.ACTIVE
        assert event.starting_date == NOW + timedelta(hours=2)

    def test_start_now_rejects_running_event(self, lifecycle):
        with pytest.raises(EventTransitionError):
            lifecycle.start_now(make_event(), NOW)

    def test_end_now_active_event(self, lifecycle):
        ended = lifecycle.end_now(make_event(), NOW)

        assert ended.ending_date == NOW
        assert lifecycle.status(ended, NOW + timedelta(seconds=1)) == EventStatus.ENDED

    def test_end_now_upcoming_event(self, lifecycle):
        """测试未开始的活动可直接结束"""
        event = make_event(
            starting_date=NOW + timedelta(hours=2),
            ending_date=NOW + timedelta(hours=5),
        )

        ended = lifecycle.end_now(event, NOW)

        assert ended.starting_date < ended.ending_date == NOW
        assert lifecycle.status(ended, NOW + timedelta(seconds=1)) == EventStatus.ENDED

    def test_event_past_end_without_auto_end_not_live(self, lifecycle):
        event = make_event(
            starting_date=NOW - timedelta(days=2),
            ending_date=NOW - timedelta(days=1),
            auto_end=False,
        )

        assert not lifecycle.is_live(event, NOW)

    def test_end_now_past_end_keeps_ending_date(self, lifecycle):
        """测试手动结束已过结束时间的活动时保留原结束时间"""
        event = make_event(
            starting_date=NOW - timedelta(days=2),
            ending_date=NOW - timedelta(days=1),
            auto_end=False,
        )

        ended = lifecycle.end_now(event, NOW)

        assert ended.ending_date == NOW - timedelta(days=1)
        assert lifecycle.status(ended, NOW) == EventStatus.ENDED

    def test_end_now_rejects_ended_event(self, lifecycle):
        event = make_event(starting_date=NOW - timedelta(hours=3), ending_date=NOW - timedelta(hours=1))
        with pytest.raises(EventTransitionError):
            lifecycle.end_now(event, NOW)

    def test_pause_and_resume(self, lifecycle):
        """测试暂停与恢复可逆"""
        paused = lifecycle.set_active(make_event(), False, NOW)
        assert lifecycle.status(paused, NOW) == EventStatus.PAUSED

        resumed = lifecycle.set_active(paused, True, NOW)
        assert lifecycle.status(resumed, NOW) == EventStatus.ACTIVE

    def test_pause_after_end_rejected(self, lifecycle):
        event = make_event(
            starting_date=NOW - timedelta(hours=3),
            ending_date=NOW - timedelta(hours=1),
            auto_end=False,
        )
        with pytest.raises(EventTransitionError):
            lifecycle.set_active(event, False, NOW)

    def test_validate_schedule_now_mode(self, lifecycle):
        start, end = lifecycle.validate_schedule(None, NOW + timedelta(days=1), ScheduleMode.NOW, NOW)
        assert start == NOW
        assert end == NOW + timedelta(days=1)

    def test_validate_schedule_later_requires_future_start(self, lifecycle):
        with pytest.raises(RuleValidationError):
            lifecycle.validate_schedule(None, NOW + timedelta(days=1), ScheduleMode.LATER, NOW)
        with pytest.raises(RuleValidationError):
            lifecycle.validate_schedule(
                NOW - timedelta(minutes=1), NOW + timedelta(days=1), ScheduleMode.LATER, NOW
            )

    @pytest.mark.parametrize("duration", [timedelta(minutes=59), timedelta(days=91)])
    def test_validate_schedule_duration_bounds(self, lifecycle, duration):
        """测试活动时长在1小时到90天之间"""
        with pytest.raises(RuleValidationError):
            lifecycle.validate_schedule(NOW, NOW + duration, ScheduleMode.LATER, NOW)

    def test_validate_schedule_accepts_bounds(self, lifecycle):
        lifecycle.validate_schedule(NOW, NOW + timedelta(hours=1), ScheduleMode.LATER, NOW)
        lifecycle.validate_schedule(NOW, NOW + timedelta(days=90), ScheduleMode.LATER, NOW)

    def test_describe(self, lifecycle):
        view = lifecycle.describe(make_event(), NOW)

        assert view.status == EventStatus.ACTIVE
        assert view.is_live is True
        assert view.progress_percent == 50.0
        assert view.seconds_remaining == 3600

    def test_describe_upcoming(self, lifecycle):
        event = make_event(starting_date=NOW + timedelta(minutes=10), ending_date=NOW + timedelta(hours=2))

        view = lifecycle.describe(event, NOW)

        assert view.status == EventStatus.UPCOMING
        assert view.seconds_until_start == 600
