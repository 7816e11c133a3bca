"""Reminder message texts and notification payloads.

Both delivery paths (scheduled jobs and the foreground poll) build their
messages here so a tenant or landlord sees the same wording whichever path
delivers it.
"""

from __future__ import annotations

from stayvia.config import settings
from stayvia.data.models import ReminderTier, Role

TENANT_REMINDER = "payment_reminder_tenant"
LANDLORD_REMINDER = "payment_reminder_landlord"
TENANT_OVERDUE = "payment_overdue_tenant"
LANDLORD_OVERDUE = "payment_overdue_landlord"
RATING_REMINDER = "rating_reminder"
PAYMENT_RECEIVED = "payment_received"

PAYMENT_REMINDER_TYPES = frozenset({TENANT_REMINDER, LANDLORD_REMINDER})

_TITLES = {
    (ReminderTier.THREE_DAY, Role.TENANT): "💰 Payment Reminder",
    (ReminderTier.THREE_DAY, Role.LANDLORD): "💰 Upcoming Payment",
    (ReminderTier.ONE_DAY, Role.TENANT): "💰 Payment Due Tomorrow",
    (ReminderTier.ONE_DAY, Role.LANDLORD): "💰 Payment Due Tomorrow",
    (ReminderTier.DUE_DATE, Role.TENANT): "💰 Payment Due Today",
    (ReminderTier.DUE_DATE, Role.LANDLORD): "💰 Payment Due Today",
}


def format_amount(amount: float) -> str:
    """Format a rent amount with the configured currency symbol.

    Whole amounts drop the decimals: 15000 → "₱15,000", 99.5 → "₱99.50".
    """
    if float(amount).is_integer():
        return f"{settings.CURRENCY_SYMBOL}{amount:,.0f}"
    return f"{settings.CURRENCY_SYMBOL}{amount:,.2f}"


def _when_phrase(tier: ReminderTier) -> str:
    if tier is ReminderTier.THREE_DAY:
        return "due in 3 days"
    if tier is ReminderTier.ONE_DAY:
        return "due tomorrow"
    return "due today"


def reminder_text(
    tier: ReminderTier,
    audience: Role,
    amount: float,
    property_title: str,
    tenant_name: str,
) -> str:
    """Title + body for a pre-due payment reminder."""
    title = _TITLES[(tier, audience)]
    formatted = format_amount(amount)
    when = _when_phrase(tier)

    if audience is Role.LANDLORD:
        body = f"{tenant_name} - {formatted} {when}"
    elif tier is ReminderTier.THREE_DAY:
        body = f"Payment due in 3 days: {formatted} for {property_title}"
    else:
        body = f"{formatted} {when} for {property_title}"
    return f"{title}\n{body}"


def overdue_text(
    audience: Role,
    amount: float,
    property_title: str,
    tenant_name: str,
    days_overdue: int,
) -> str:
    formatted = format_amount(amount)
    if audience is Role.LANDLORD:
        return f"⚠️ Overdue Payment\n{tenant_name} - {formatted} is {days_overdue} day(s) overdue"
    return f"⚠️ Payment Overdue\n{formatted} for {property_title} is {days_overdue} day(s) overdue"


def rating_text(property_title: str) -> str:
    return (
        "⭐ Time to rate your stay!\n"
        f"It's time to rate your experience at {property_title}. Share your feedback!"
    )


def payment_received_text(amount: float, property_title: str) -> str:
    return (
        "✅ Payment Received\n"
        f"Your payment of {format_amount(amount)} for {property_title} has been received"
    )


def reminder_payload(
    payment_id: int, audience: Role, tier: ReminderTier, user_id: int,
) -> dict:
    """Data attached to a payment reminder; read back by the delivery listeners."""
    return {
        "type": TENANT_REMINDER if audience is Role.TENANT else LANDLORD_REMINDER,
        "payment_id": payment_id,
        "days_until_due": tier.days_before,
        "user_id": user_id,
    }
