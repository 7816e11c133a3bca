"""
StayVia Reminders — Calendar sync.

Mirrors each lease's payment schedule onto a dedicated calendar on the user's
calendar provider, and reports whether that mirror is still intact.

Sync status is a reconciliation, not a stored fact: the locally mapped event
ids are intersected with what the provider currently has in the lookahead
window. Events deleted on the provider side are simply counted as missing,
and a provider that cannot be reached reports "none" so the user is offered
a re-sync rather than false confidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stayvia.config import settings
from stayvia.core.payment_dates import PaymentDate, generate_payment_dates, parse_iso_date
from stayvia.core.reminder_messages import format_amount
from stayvia.data.models import SyncStatus
from stayvia.ports.calendar_port import CalendarError, PaymentEvent

if TYPE_CHECKING:
    from stayvia.data.db import CalendarMappingDB
    from stayvia.data.models import Lease
    from stayvia.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Aggregate outcome of a multi-lease sync, for logs and user replies."""

    total: int = 0
    synced: int = 0
    failed: int = 0


def classify_sync(mapped_ids: list[str], existing_ids: set[str]) -> SyncStatus:
    """Classify by how many mapped ids the provider still has."""
    if not mapped_ids:
        return SyncStatus.NONE
    present = sum(1 for eid in mapped_ids if eid in existing_ids)
    if present == len(mapped_ids):
        return SyncStatus.SYNCED
    if present > 0:
        return SyncStatus.PARTIAL
    return SyncStatus.NONE


async def get_sync_status(
    calendar: CalendarPort,
    mapping_db: CalendarMappingDB,
    lease_id: int,
    now: datetime | None = None,
) -> SyncStatus:
    """Report whether a lease's calendar events are all, some, or not present.

    Never raises: a provider failure is logged and reported as NONE.
    """
    mapped = mapping_db.get(lease_id)
    if not mapped:
        return SyncStatus.NONE

    now = now or datetime.now(ZoneInfo(settings.TIMEZONE))
    window_end = now + timedelta(days=settings.SYNC_LOOKAHEAD_DAYS)
    try:
        calendar_id = await calendar.get_or_create_calendar(settings.CALENDAR_NAME)
        events = await calendar.list_events(calendar_id, now, window_end)
    except Exception as exc:
        logger.error("Sync status check failed for lease #%d: %s", lease_id, exc)
        return SyncStatus.NONE

    status = classify_sync(mapped, {ev.get("id") for ev in events})
    logger.debug("Lease #%d calendar sync status: %s", lease_id, status.value)
    return status


def build_payment_event(lease: Lease, entry: PaymentDate) -> PaymentEvent:
    """Calendar event for one payment, at the reminder hour on its due date."""
    start = datetime.combine(
        entry.date, time(hour=settings.REMINDER_HOUR), tzinfo=ZoneInfo(settings.TIMEZONE),
    )
    return PaymentEvent(
        title=f"Rent Payment - {lease.property_title}",
        start=start,
        notes=(
            f"Monthly rent payment of {format_amount(entry.amount)} for {lease.property_title}\n"
            f"Rental ID: {lease.id}"
        ),
    )


async def _delete_events(
    calendar: CalendarPort, calendar_id: str, event_ids: list[str],
) -> int:
    deleted = 0
    for event_id in event_ids:
        try:
            await calendar.delete_event(calendar_id, event_id)
            deleted += 1
        except CalendarError as exc:
            # Already gone on the provider side counts as stale data, not failure
            logger.warning("Could not delete calendar event %s: %s", event_id, exc)
    return deleted


async def sync_lease_to_calendar(
    calendar: CalendarPort,
    mapping_db: CalendarMappingDB,
    lease: Lease,
) -> list[str]:
    """Create one calendar event per payment date and record the mapping.

    Any previously mapped events are removed first, so a partial sync is
    repaired rather than duplicated. If creation fails midway, the events
    created so far are still recorded (the lease then reports PARTIAL) and
    the CalendarError propagates.

    Returns the created event ids, in due-date order.
    """
    if not await calendar.request_permission():
        raise CalendarError("Calendar permission not granted")

    entries = generate_payment_dates(
        parse_iso_date(lease.start_date, "start date"),
        parse_iso_date(lease.end_date, "end date"),
        lease.payment_day_of_month,
        lease.monthly_rent_amount,
    )
    if not entries:
        logger.info("No payment dates to sync for lease #%d", lease.id)
        return []

    calendar_id = await calendar.get_or_create_calendar(settings.CALENDAR_NAME)

    stale = mapping_db.get(lease.id)
    if stale:
        await _delete_events(calendar, calendar_id, stale)
        mapping_db.remove(lease.id)

    created: list[str] = []
    try:
        for entry in entries:
            created.append(
                await calendar.create_event(calendar_id, build_payment_event(lease, entry))
            )
    finally:
        if created:
            mapping_db.put(lease.id, created)

    logger.info("Synced lease #%d with %d payment event(s)", lease.id, len(created))
    return created


async def remove_lease_from_calendar(
    calendar: CalendarPort,
    mapping_db: CalendarMappingDB,
    lease_id: int,
) -> int:
    """Delete the lease's calendar events and forget the mapping.

    Returns how many events were deleted on the provider.
    """
    mapped = mapping_db.get(lease_id)
    if not mapped:
        return 0

    calendar_id = await calendar.get_or_create_calendar(settings.CALENDAR_NAME)
    deleted = await _delete_events(calendar, calendar_id, mapped)
    mapping_db.remove(lease_id)
    logger.info("Removed %d/%d calendar event(s) for lease #%d", deleted, len(mapped), lease_id)
    return deleted


async def sync_all_leases(
    calendar: CalendarPort,
    mapping_db: CalendarMappingDB,
    leases: list[Lease],
    now: datetime | None = None,
) -> SyncSummary:
    """Sync every lease that is not already fully synced.

    Failures are isolated per lease and only counted.
    """
    summary = SyncSummary(total=len(leases))
    for lease in leases:
        try:
            status = await get_sync_status(calendar, mapping_db, lease.id, now=now)
            if status is SyncStatus.SYNCED:
                logger.info("Lease #%d already synced", lease.id)
                summary.synced += 1
                continue

            if await sync_lease_to_calendar(calendar, mapping_db, lease):
                summary.synced += 1
        except Exception as exc:
            logger.error("Failed to sync lease #%d: %s", lease.id, exc)
            summary.failed += 1

    logger.info(
        "Calendar sync complete: %d synced, %d failed (of %d)",
        summary.synced, summary.failed, summary.total,
    )
    return summary
