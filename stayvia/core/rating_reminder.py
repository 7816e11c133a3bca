"""
StayVia Reminders — Rating reminder.

One week (configurable) after move-in, the tenant is asked to rate the stay.
A lease confirmed long after its start date still gets the prompt: with the
default "fire_now" policy it is sent immediately instead of being dropped.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stayvia.config import settings
from stayvia.core.reminder_messages import RATING_REMINDER, rating_text
from stayvia.data.models import PastDuePolicy

if TYPE_CHECKING:
    from stayvia.data.models import Lease
    from stayvia.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def rating_instant(start_date: date, tz: ZoneInfo | None = None) -> datetime:
    """Move-in + RATING_REMINDER_DELAY_DAYS, at the reminder hour."""
    tz = tz or ZoneInfo(settings.TIMEZONE)
    day = start_date + timedelta(days=settings.RATING_REMINDER_DELAY_DAYS)
    return datetime.combine(day, time(hour=settings.REMINDER_HOUR), tzinfo=tz)


async def schedule_rating_reminder(
    notifier: NotificationPort,
    lease: Lease,
    now: datetime | None = None,
    policy: PastDuePolicy | str | None = None,
) -> str | None:
    """Schedule the tenant's rate-your-stay prompt for a lease.

    Returns the schedule handle, or None when the prompt was sent right away
    or skipped.
    """
    tz = ZoneInfo(settings.TIMEZONE)
    now = now or datetime.now(tz)
    policy = PastDuePolicy(policy or settings.RATING_PAST_DUE_POLICY)

    when = rating_instant(date.fromisoformat(lease.start_date), tz)
    text = rating_text(lease.property_title)
    data = {"type": RATING_REMINDER, "lease_id": lease.id, "user_id": lease.tenant_id}

    if when < now:
        if policy is PastDuePolicy.SKIP:
            logger.info("Lease #%d: rating reminder time already passed, skipping", lease.id)
            return None
        await notifier.send_message(lease.tenant_id, text, data)
        logger.info("Lease #%d: rating reminder sent immediately", lease.id)
        return None

    try:
        handle = await notifier.schedule_message(lease.tenant_id, text, when, data)
    except Exception as exc:
        logger.error(
            "Failed to schedule rating reminder for lease #%d, sending now: %s", lease.id, exc,
        )
        await notifier.send_message(lease.tenant_id, text, data)
        return None

    logger.info("Lease #%d: rating reminder scheduled for %s", lease.id, when.isoformat())
    return handle
