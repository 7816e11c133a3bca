"""Tests for stayvia.core.rating_reminder."""

import pytest
from datetime import date, datetime
from zoneinfo import ZoneInfo

from stayvia.core.rating_reminder import rating_instant, schedule_rating_reminder

TZ = ZoneInfo("Asia/Manila")


def test_rating_instant_is_one_week_after_move_in_at_reminder_hour():
    assert rating_instant(date(2024, 1, 10), TZ) == datetime(2024, 1, 17, 9, tzinfo=TZ)


class TestScheduleRatingReminder:
    @pytest.mark.asyncio
    async def test_future_instant_is_scheduled_for_tenant(self, notifier, lease):
        handle = await schedule_rating_reminder(
            notifier, lease, now=datetime(2024, 1, 1, tzinfo=TZ),
        )
        user_id, text, when, data = notifier.scheduled[handle]
        assert user_id == lease.tenant_id
        assert "Sunny Loft" in text
        assert when == datetime(2024, 1, 17, 9, tzinfo=TZ)
        assert data == {"type": "rating_reminder", "lease_id": lease.id, "user_id": lease.tenant_id}

    @pytest.mark.asyncio
    async def test_past_instant_fires_now_by_default(self, notifier, lease):
        handle = await schedule_rating_reminder(
            notifier, lease, now=datetime(2024, 3, 1, tzinfo=TZ),
        )
        assert handle is None
        assert notifier.scheduled == {}
        [(user_id, text, _data)] = notifier.sent
        assert user_id == lease.tenant_id
        assert "rate" in text

    @pytest.mark.asyncio
    async def test_past_instant_can_be_skipped(self, notifier, lease):
        handle = await schedule_rating_reminder(
            notifier, lease, now=datetime(2024, 3, 1, tzinfo=TZ), policy="skip",
        )
        assert handle is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_scheduling_failure_falls_back_to_immediate_send(self, notifier, lease):
        async def broken(*args, **kwargs):
            raise RuntimeError("job queue unavailable")

        notifier.schedule_message = broken
        handle = await schedule_rating_reminder(
            notifier, lease, now=datetime(2024, 1, 1, tzinfo=TZ),
        )
        assert handle is None
        assert len(notifier.sent) == 1
