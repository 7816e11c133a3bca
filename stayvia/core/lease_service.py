"""
StayVia Reminders — Lease service.

Orchestrates the lifecycle of a lease's payment schedule: confirming a lease
generates its payments and schedules every reminder; editing the terms
rebuilds the unsettled part of the schedule; marking a payment paid or
cancelled retires its outstanding reminders.

Provider-agnostic: notifications go through NotificationPort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stayvia.config import settings
from stayvia.core.payment_dates import (
    LeaseValidationError,
    generate_payment_dates,
    validate_lease_terms,
)
from stayvia.core.rating_reminder import schedule_rating_reminder
from stayvia.core.reminder_messages import PAYMENT_RECEIVED, payment_received_text
from stayvia.core.reminder_scheduler import cancel_payment_reminders, schedule_payment_reminders
from stayvia.data.models import PaymentStatus

if TYPE_CHECKING:
    from stayvia.data.db import LeaseDB, PaymentDB, UserDB
    from stayvia.data.models import Lease, Payment, User
    from stayvia.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_SETTLED = {PaymentStatus.PAID.value, PaymentStatus.PARTIAL.value}
_RETIRING = {PaymentStatus.PAID, PaymentStatus.CANCELLED}


@dataclass
class LeaseSchedule:
    """A lease together with the payments generated for it."""

    lease: Lease
    payments: list[Payment] = field(default_factory=list)
    reminders_failed: int = 0


class LeaseService:
    """Confirms leases and keeps their payment reminders consistent."""

    def __init__(
        self,
        lease_db: LeaseDB,
        payment_db: PaymentDB,
        user_db: UserDB,
        notifier: NotificationPort,
    ) -> None:
        self._leases = lease_db
        self._payments = payment_db
        self._users = user_db
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_lease(
        self,
        tenant_id: int,
        landlord_id: int,
        property_title: str,
        start_date: str,
        end_date: str,
        monthly_rent_amount: float,
        payment_day_of_month: int | None = None,
        now: datetime | None = None,
    ) -> LeaseSchedule:
        """Persist a confirmed lease, its payments and all of their reminders.

        Raises:
            LeaseValidationError: Bad dates, payment day or amount, or a
                party that has not registered with the bot.
        """
        start, end = validate_lease_terms(
            start_date, end_date, payment_day_of_month, monthly_rent_amount,
        )
        tenant, landlord = self._parties(tenant_id, landlord_id)

        lease = self._leases.add_lease(
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            property_title=property_title.strip(),
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            monthly_rent_amount=monthly_rent_amount,
            payment_day_of_month=payment_day_of_month,
        )
        entries = generate_payment_dates(start, end, payment_day_of_month, monthly_rent_amount)
        payments = self._payments.add_payments(lease, entries)

        schedule = LeaseSchedule(lease=lease, payments=payments)
        schedule.reminders_failed = await self._schedule_all(
            payments, tenant, landlord, lease.property_title, now,
        )

        try:
            await schedule_rating_reminder(self._notifier, lease, now=now)
        except Exception as exc:
            logger.error("Rating reminder for lease #%d could not be sent: %s", lease.id, exc)

        logger.info(
            "Lease #%d confirmed with %d payment(s) (%d reminder request(s) failed)",
            lease.id, len(payments), schedule.reminders_failed,
        )
        return schedule

    # ------------------------------------------------------------------
    # Administrative edit
    # ------------------------------------------------------------------

    async def update_lease_terms(
        self,
        lease_id: int,
        start_date: str,
        end_date: str,
        monthly_rent_amount: float,
        payment_day_of_month: int | None = None,
        now: datetime | None = None,
    ) -> LeaseSchedule:
        """Change a lease's dates, payment day or rent and rebuild its schedule.

        Settled payments (paid or partial) are kept as they are. Every other
        payment has its reminders cancelled and is regenerated from the new
        terms, skipping due dates a settled payment already covers.
        """
        lease = self._leases.get_lease(lease_id)
        if lease is None:
            raise LeaseValidationError(f"Lease {lease_id} not found")

        start, end = validate_lease_terms(
            start_date, end_date, payment_day_of_month, monthly_rent_amount,
        )
        tenant, landlord = self._parties(lease.tenant_id, lease.landlord_id)

        existing = self._payments.list_for_lease(lease_id)
        settled = [p for p in existing if p.status in _SETTLED]
        stale = [p for p in existing if p.status not in _SETTLED]

        for payment in stale:
            await cancel_payment_reminders(self._notifier, payment.handles())
        self._payments.delete_payments([p.id for p in stale])

        lease = self._leases.update_terms(
            lease_id, start.isoformat(), end.isoformat(),
            payment_day_of_month, monthly_rent_amount,
        )

        settled_dates = {p.due_date for p in settled}
        entries = [
            e for e in generate_payment_dates(start, end, payment_day_of_month, monthly_rent_amount)
            if e.date.isoformat() not in settled_dates
        ]
        payments = self._payments.add_payments(lease, entries)

        schedule = LeaseSchedule(lease=lease, payments=payments)
        schedule.reminders_failed = await self._schedule_all(
            payments, tenant, landlord, lease.property_title, now,
        )
        logger.info(
            "Lease #%d rescheduled: %d replaced, %d settled kept, %d new",
            lease_id, len(stale), len(settled), len(payments),
        )
        return schedule

    # ------------------------------------------------------------------
    # Payment status
    # ------------------------------------------------------------------

    async def set_payment_status(
        self,
        payment_id: int,
        status: PaymentStatus | str,
        notes: str | None = None,
    ) -> Payment:
        """Record a landlord's status change for one payment.

        "paid" stamps today's date; "paid" and "cancelled" cancel whatever
        reminders are still scheduled, and "paid" tells the tenant.
        """
        status = PaymentStatus(status)
        payment = self._payments.get_payment(payment_id)
        if payment is None:
            raise ValueError(f"Payment {payment_id} not found")

        paid_on = None
        if status is PaymentStatus.PAID:
            paid_on = datetime.now(ZoneInfo(settings.TIMEZONE)).date().isoformat()

        updated = self._payments.update_status(payment_id, status.value, paid_on=paid_on, notes=notes)

        if status in _RETIRING:
            cancelled = await cancel_payment_reminders(self._notifier, payment.handles())
            logger.info(
                "Payment #%d %s: cancelled %d scheduled reminder(s)",
                payment_id, status.value, cancelled,
            )

        if status is PaymentStatus.PAID:
            lease = self._leases.get_lease(payment.lease_id)
            title = lease.property_title if lease else "your rental"
            try:
                await self._notifier.send_message(
                    payment.tenant_id,
                    payment_received_text(payment.amount, title),
                    {"type": PAYMENT_RECEIVED, "payment_id": payment_id,
                     "user_id": payment.tenant_id},
                )
            except Exception as exc:
                logger.error("Failed to send payment-received notice for #%d: %s", payment_id, exc)

        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parties(self, tenant_id: int, landlord_id: int) -> tuple[User, User]:
        tenant = self._users.get_user(tenant_id)
        if tenant is None:
            raise LeaseValidationError(f"Tenant {tenant_id} has not registered with the bot")
        landlord = self._users.get_user(landlord_id)
        if landlord is None:
            raise LeaseValidationError(f"Landlord {landlord_id} has not registered with the bot")
        return tenant, landlord

    async def _schedule_all(
        self,
        payments: list[Payment],
        tenant: User,
        landlord: User,
        property_title: str,
        now: datetime | None,
    ) -> int:
        failed = 0
        for payment in payments:
            result = await schedule_payment_reminders(
                self._notifier, payment, tenant, landlord, property_title, now=now,
            )
            self._payments.set_notification_handles(payment.id, result.handles)
            for tier, handle in result.handles.items():
                setattr(payment, tier.handle_column, handle)
            failed += result.failed
        return failed
