"""
StayVia Reminders — Payment Reminder Scheduler.

For every payment obligation, asks the notification platform to deliver
three reminders (3 days before, 1 day before, and on the due date, each at
the configured reminder hour) to both the tenant and the landlord.

Each of the six requests is isolated: one failing request is logged and
counted, and the others carry on. The tenant-facing handle of each tier is
returned so the caller can persist it for later cancellation.

This module is provider-agnostic: it depends on the NotificationPort
protocol, not on a specific implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stayvia.config import settings
from stayvia.core.reminder_messages import reminder_payload, reminder_text
from stayvia.data.models import PastDuePolicy, ReminderTier, Role

if TYPE_CHECKING:
    from stayvia.data.models import Payment, User
    from stayvia.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class ScheduleResult:
    """Outcome of scheduling one payment's reminders."""

    handles: dict[ReminderTier, str | None] = field(
        default_factory=lambda: {tier: None for tier in ReminderTier}
    )
    scheduled: int = 0
    fired_now: int = 0
    skipped: int = 0
    failed: int = 0


def reminder_instants(
    due_date: date,
    tz: ZoneInfo | None = None,
    hour: int | None = None,
) -> dict[ReminderTier, datetime]:
    """Return the delivery instant of each tier, at `hour`:00 local time."""
    tz = tz or ZoneInfo(settings.TIMEZONE)
    at = time(hour=settings.REMINDER_HOUR if hour is None else hour)
    return {
        tier: datetime.combine(due_date - timedelta(days=tier.days_before), at, tzinfo=tz)
        for tier in ReminderTier
    }


async def schedule_payment_reminders(
    notifier: NotificationPort,
    payment: Payment,
    tenant: User,
    landlord: User,
    property_title: str,
    now: datetime | None = None,
    policy: PastDuePolicy | str | None = None,
) -> ScheduleResult:
    """Schedule the 3-day, 1-day and due-date reminders for one payment.

    Args:
        notifier: Notification platform.
        payment: The obligation being reminded about.
        tenant: Payer; receives the tenant wording.
        landlord: Payee; receives the landlord wording.
        property_title: Shown in tenant-facing texts.
        now: Scheduling time. Defaults to the current time in TIMEZONE.
        policy: What to do with a tier whose instant is already in the past.
            Defaults to PAYMENT_PAST_DUE_POLICY ("skip": no backfill).

    Returns:
        ScheduleResult with the tenant-facing handle per tier (None where the
        tier was skipped, fired immediately, or failed) and outcome counts.
    """
    tz = ZoneInfo(settings.TIMEZONE)
    now = now or datetime.now(tz)
    policy = PastDuePolicy(policy or settings.PAYMENT_PAST_DUE_POLICY)

    instants = reminder_instants(date.fromisoformat(payment.due_date), tz)
    result = ScheduleResult()
    audiences = ((Role.TENANT, tenant), (Role.LANDLORD, landlord))

    for tier, when in instants.items():
        in_past = when < now
        if in_past and policy is PastDuePolicy.SKIP:
            logger.debug(
                "Payment #%d: %s reminder instant %s already passed, skipping",
                payment.id, tier.value, when.isoformat(),
            )
            result.skipped += len(audiences)
            continue

        for audience, user in audiences:
            text = reminder_text(
                tier, audience, payment.amount, property_title, tenant.display_name,
            )
            data = reminder_payload(payment.id, audience, tier, user.telegram_user_id)
            try:
                if in_past:
                    await notifier.send_message(user.telegram_user_id, text, data)
                    result.fired_now += 1
                    continue
                handle = await notifier.schedule_message(
                    user.telegram_user_id, text, when, data,
                )
            except Exception as exc:
                logger.error(
                    "Failed to schedule %s %s reminder for payment #%d: %s",
                    tier.value, audience.value, payment.id, exc,
                )
                result.failed += 1
                continue

            result.scheduled += 1
            if audience is Role.TENANT:
                result.handles[tier] = handle

    logger.info(
        "Payment #%d (due %s): %d scheduled, %d sent now, %d skipped, %d failed",
        payment.id, payment.due_date,
        result.scheduled, result.fired_now, result.skipped, result.failed,
    )
    return result


async def cancel_payment_reminders(
    notifier: NotificationPort,
    handles: Iterable[str | None],
) -> int:
    """Cancel every scheduled reminder in `handles`.

    Empty handles are ignored. A failure to cancel one handle is logged and
    does not stop the rest. Returns the number of successful cancellations.
    """
    cancelled = 0
    for handle in handles:
        if not handle:
            continue
        try:
            await notifier.cancel_scheduled(handle)
            cancelled += 1
        except Exception as exc:
            logger.error("Failed to cancel scheduled reminder %s: %s", handle, exc)
    return cancelled
