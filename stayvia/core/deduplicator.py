"""Reminder delivery deduplicator.

Two independent producers report that a payment reminder reached its user:
the notification platform's delivered event, and the user tapping the
reminder's acknowledge button. Either may fire first, both may fire, and the
foreground poll may be about to send the same reminder itself.

All of them funnel into one idempotent operation: a compare-and-set that
flips the tier's flag from false to true. Whoever flips it wins; everyone
else observes it already set and does nothing. Flags are never reset.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stayvia.core.reminder_messages import PAYMENT_REMINDER_TYPES
from stayvia.data.models import PaymentStatus, ReminderTier

if TYPE_CHECKING:
    from stayvia.data.db import PaymentDB
    from stayvia.data.models import Payment

logger = logging.getLogger(__name__)


class ReminderDeduplicator:
    """Guards each (payment, tier) reminder so it is recorded at most once."""

    def __init__(self, payment_db: PaymentDB) -> None:
        self._payments = payment_db

    def claim(self, payment_id: int, tier: ReminderTier) -> bool:
        """Flip NOT_SENT → SENT. True only for the caller that flipped it."""
        won = self._payments.mark_reminder_sent(payment_id, tier)
        if won:
            logger.info("Payment #%d: %s reminder marked sent", payment_id, tier.value)
        return won

    def claim_overdue(self, payment_id: int) -> bool:
        """Same as claim(), for the payment's single overdue notice."""
        won = self._payments.mark_overdue_notified(payment_id)
        if won:
            logger.info("Payment #%d: overdue notice marked sent", payment_id)
        return won

    @staticmethod
    def needs_poll_delivery(payment: Payment, tier: ReminderTier) -> bool:
        """Whether the poll path should deliver this tier itself.

        Not if any path already delivered it, and not if the scheduler has
        claimed it with a platform handle.
        """
        return not payment.reminder_sent(tier) and payment.handle_for(tier) is None

    def is_still_due(self, payload: dict) -> bool:
        """Whether a scheduled payment reminder should still go out.

        Reminders for payments that were since paid, cancelled or deleted are
        dropped at delivery time. Other messages always go out.
        """
        if payload.get("type") not in PAYMENT_REMINDER_TYPES:
            return True
        payment = self._payments.get_payment(payload.get("payment_id"))
        if payment is None:
            return False
        return payment.status not in (PaymentStatus.PAID.value, PaymentStatus.CANCELLED.value)

    async def record_delivery(
        self, payload: dict, acting_user_id: int, source: str,
    ) -> bool:
        """Consume a delivered/tapped signal for a payment reminder.

        Args:
            payload: Data attached to the notification (see reminder_payload).
            acting_user_id: User whose device/chat observed the event.
            source: "received" or "tapped", for logging only.

        Returns:
            True if this signal flipped the flag; False for duplicates,
            foreign users, and payloads that are not payment reminders.
        """
        if payload.get("type") not in PAYMENT_REMINDER_TYPES:
            return False

        if payload.get("user_id") != acting_user_id:
            logger.info(
                "Skipping %s signal: reminder for user %s observed by %s",
                source, payload.get("user_id"), acting_user_id,
            )
            return False

        tier = ReminderTier.from_days(payload.get("days_until_due"))
        if tier is None:
            logger.warning(
                "Unknown days_until_due %r in %s signal", payload.get("days_until_due"), source,
            )
            return False

        payment_id = payload.get("payment_id")
        won = self.claim(payment_id, tier)
        if not won:
            logger.debug(
                "Payment #%s %s already marked sent (%s signal ignored)",
                payment_id, tier.value, source,
            )
        return won
