"""
StayVia Reminders — Foreground reminder poll.

Fallback delivery path for reminders the platform never scheduled (the tier's
instant had already passed, scheduling failed, or the lease predates the
scheduler). Runs shortly after startup, on a repeating timer, and whenever a
user interacts with the bot.

A tier is sent here only if its flag is false AND it has no schedule handle;
the flag is claimed before sending, so a racing delivered/tapped signal or a
second poll can never produce the same reminder twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stayvia.config import settings
from stayvia.core.reminder_messages import (
    LANDLORD_OVERDUE,
    TENANT_OVERDUE,
    overdue_text,
    reminder_payload,
    reminder_text,
)
from stayvia.data.models import ReminderTier, Role

if TYPE_CHECKING:
    from stayvia.core.deduplicator import ReminderDeduplicator
    from stayvia.data.db import LeaseDB, PaymentDB, UserDB
    from stayvia.data.models import Payment
    from stayvia.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_OVERDUE_TYPES = {Role.TENANT: TENANT_OVERDUE, Role.LANDLORD: LANDLORD_OVERDUE}


@dataclass
class PollResult:
    """What one poll of one user delivered."""

    user_id: int
    reminders_sent: int = 0
    overdue_sent: int = 0


class ReminderPoller:
    """Re-evaluates due dates for a user and sends whatever is still owed."""

    def __init__(
        self,
        payment_db: PaymentDB,
        lease_db: LeaseDB,
        user_db: UserDB,
        notifier: NotificationPort,
        deduplicator: ReminderDeduplicator,
    ) -> None:
        self._payments = payment_db
        self._leases = lease_db
        self._users = user_db
        self._notifier = notifier
        self._dedup = deduplicator
        self._in_flight: set[int] = set()

    async def poll_user(self, user_id: int, today: date | None = None) -> PollResult | None:
        """Poll one user's payments.

        Returns None without doing any work if a poll for the same user is
        already running (rapid activity bursts collapse into one poll).
        """
        if user_id in self._in_flight:
            logger.debug("Poll for user %d already in flight, skipping", user_id)
            return None

        self._in_flight.add(user_id)
        try:
            return await self._poll(user_id, today)
        finally:
            self._in_flight.discard(user_id)

    async def poll_all(self, today: date | None = None) -> list[PollResult]:
        """Poll every user that has picked a role. Failures are per user."""
        results: list[PollResult] = []
        for user in self._users.list_users():
            if not user.role:
                continue
            try:
                result = await self.poll_user(user.telegram_user_id, today)
            except Exception as exc:
                logger.error("Reminder poll failed for user %d: %s", user.telegram_user_id, exc)
                continue
            if result is not None:
                results.append(result)
        return results

    async def _poll(self, user_id: int, today: date | None) -> PollResult:
        result = PollResult(user_id=user_id)
        user = self._users.get_user(user_id)
        if user is None or not user.role:
            return result

        if today is None:
            today = datetime.now(ZoneInfo(settings.TIMEZONE)).date()

        # 1. Pre-due reminders: T-3, T-1, T-0
        for tier in ReminderTier:
            target = (today + timedelta(days=tier.days_before)).isoformat()
            candidates = self._payments.find_due_for_reminder(user_id, user.role, tier, target)
            for payment in candidates:
                if not self._dedup.needs_poll_delivery(payment, tier):
                    continue
                if not self._dedup.claim(payment.id, tier):
                    continue
                await self._send_reminder(payment, tier)
                result.reminders_sent += 1

        # 2. Overdue: at most one notice per payment, however long it stays unpaid
        for payment in self._payments.find_overdue_unnotified(user_id, user.role, today.isoformat()):
            if not self._dedup.claim_overdue(payment.id):
                continue
            days_overdue = (today - date.fromisoformat(payment.due_date)).days
            await self._send_overdue(payment, days_overdue)
            result.overdue_sent += 1

        if result.reminders_sent or result.overdue_sent:
            logger.info(
                "Poll for user %d: %d reminder(s), %d overdue notice(s)",
                user_id, result.reminders_sent, result.overdue_sent,
            )
        return result

    def _names(self, payment: Payment) -> tuple[str, str]:
        lease = self._leases.get_lease(payment.lease_id)
        tenant = self._users.get_user(payment.tenant_id)
        title = lease.property_title if lease else "Your rental"
        tenant_name = tenant.display_name if tenant else "Tenant"
        return title, tenant_name

    async def _send_reminder(self, payment: Payment, tier: ReminderTier) -> None:
        title, tenant_name = self._names(payment)
        for audience, uid in ((Role.TENANT, payment.tenant_id), (Role.LANDLORD, payment.landlord_id)):
            text = reminder_text(tier, audience, payment.amount, title, tenant_name)
            try:
                await self._notifier.send_message(
                    uid, text, reminder_payload(payment.id, audience, tier, uid),
                )
            except Exception as exc:
                logger.error(
                    "Failed to send %s %s reminder for payment #%d: %s",
                    tier.value, audience.value, payment.id, exc,
                )

    async def _send_overdue(self, payment: Payment, days_overdue: int) -> None:
        title, tenant_name = self._names(payment)
        for audience, uid in ((Role.TENANT, payment.tenant_id), (Role.LANDLORD, payment.landlord_id)):
            text = overdue_text(audience, payment.amount, title, tenant_name, days_overdue)
            data = {"type": _OVERDUE_TYPES[audience], "payment_id": payment.id, "user_id": uid}
            try:
                await self._notifier.send_message(uid, text, data)
            except Exception as exc:
                logger.error(
                    "Failed to send overdue notice (%s) for payment #%d: %s",
                    audience.value, payment.id, exc,
                )
