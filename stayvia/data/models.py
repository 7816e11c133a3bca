"""
StayVia Reminders — Data Models.

Leases and their payment obligations persist in SQLite. Reminder delivery
state lives on the payment row as write-once flags, so both delivery paths
(scheduled jobs and the foreground poll) read and write the same record.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    TENANT = "tenant"
    LANDLORD = "landlord"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class ReminderTier(str, Enum):
    """One of the three pre-due reminders sent for every payment."""

    THREE_DAY = "3day"
    ONE_DAY = "1day"
    DUE_DATE = "duedate"

    @property
    def days_before(self) -> int:
        return {"3day": 3, "1day": 1, "duedate": 0}[self.value]

    @property
    def flag_column(self) -> str:
        return f"reminder_{self.value}_sent"

    @property
    def handle_column(self) -> str:
        return f"notification_{self.value}_id"

    @classmethod
    def from_days(cls, days: int) -> ReminderTier | None:
        """Map a days-until-due value back to its tier, or None if unknown."""
        for tier in cls:
            if tier.days_before == days:
                return tier
        return None


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PARTIAL = "partial"
    NONE = "none"


class PastDuePolicy(str, Enum):
    """What to do with a reminder whose delivery instant has already passed."""

    SKIP = "skip"
    FIRE_NOW = "fire_now"


@dataclass
class User:
    """A registered bot user: a tenant, a landlord, or not yet decided."""

    telegram_user_id: int
    display_name: str
    role: str | None = None                 # "tenant" | "landlord"
    calendar_token_json: str | None = None
    created_at: str = ""


@dataclass
class Lease:
    """A confirmed rental agreement between a tenant and a landlord."""

    id: int
    tenant_id: int
    landlord_id: int
    property_title: str
    start_date: str                         # ISO date YYYY-MM-DD
    end_date: str                           # ISO date YYYY-MM-DD
    monthly_rent_amount: float
    payment_day_of_month: int | None = None  # 1-31, None → start date's day
    confirmed: bool = True
    created_at: str = ""


@dataclass
class Payment:
    """A single rent obligation generated from a lease."""

    id: int
    lease_id: int
    tenant_id: int
    landlord_id: int
    due_date: str                           # ISO date YYYY-MM-DD
    amount: float
    status: str = PaymentStatus.UNPAID.value
    reminder_3day_sent: bool = False
    reminder_1day_sent: bool = False
    reminder_duedate_sent: bool = False
    overdue_notif_sent: bool = False
    notification_3day_id: str | None = None
    notification_1day_id: str | None = None
    notification_duedate_id: str | None = None
    paid_on: str | None = None
    notes: str | None = None

    def reminder_sent(self, tier: ReminderTier) -> bool:
        return bool(getattr(self, tier.flag_column))

    def handle_for(self, tier: ReminderTier) -> str | None:
        return getattr(self, tier.handle_column)

    def handles(self) -> list[str]:
        """All persisted schedule handles, in tier order, skipping empty ones."""
        return [h for h in (self.handle_for(t) for t in ReminderTier) if h]
