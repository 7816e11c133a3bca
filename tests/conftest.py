"""Shared test fixtures and configuration.

Sets up fake environment variables so stayvia.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a recording notifier.
"""

import os

# Patch env vars BEFORE any stayvia imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Manila")
os.environ.setdefault("REMINDER_HOUR", "9")
os.environ.setdefault("CURRENCY_SYMBOL", "₱")

import itertools
from datetime import datetime

import pytest

TENANT_ID = 111
LANDLORD_ID = 222


class FakeNotifier:
    """In-memory NotificationPort that records every call.

    `fail_on` holds (user_id, days_until_due) pairs whose send/schedule
    raises, to exercise per-request failure isolation.
    """

    def __init__(self):
        self.sent: list[tuple[int, str, dict | None]] = []
        self.scheduled: dict[str, tuple[int, str, datetime, dict | None]] = {}
        self.cancelled: list[str] = []
        self.listeners = []
        self.checks = []
        self.fail_on: set[tuple[int, int | None]] = set()
        self.fail_cancel: set[str] = set()
        self._ids = itertools.count(1)

    def _check(self, user_id, data):
        days = (data or {}).get("days_until_due")
        if (user_id, days) in self.fail_on:
            raise RuntimeError(f"delivery failed for {user_id}/{days}")

    async def send_message(self, user_id, text, data=None):
        self._check(user_id, data)
        self.sent.append((user_id, text, data))
        if data:
            for listener in self.listeners:
                await listener(data, user_id)

    async def schedule_message(self, user_id, text, when, data=None):
        self._check(user_id, data)
        handle = f"job-{next(self._ids)}"
        self.scheduled[handle] = (user_id, text, when, data)
        return handle

    async def cancel_scheduled(self, handle):
        if handle in self.fail_cancel:
            raise RuntimeError(f"cancel failed for {handle}")
        self.cancelled.append(handle)
        self.scheduled.pop(handle, None)

    def add_delivered_listener(self, listener):
        self.listeners.append(listener)

    def add_delivery_check(self, check):
        self.checks.append(check)

    async def deliver(self, handle):
        """Simulate the platform firing a scheduled message."""
        user_id, text, _when, data = self.scheduled.pop(handle)
        if data and not all(check(data) for check in self.checks):
            return
        await self.send_message(user_id, text, data)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all stores in a test."""
    return str(tmp_path / "test_stayvia.db")


@pytest.fixture
def user_db(db_path):
    from stayvia.data.db import UserDB
    return UserDB(db_path=db_path)


@pytest.fixture
def lease_db(db_path):
    from stayvia.data.db import LeaseDB
    return LeaseDB(db_path=db_path)


@pytest.fixture
def payment_db(db_path):
    from stayvia.data.db import PaymentDB
    return PaymentDB(db_path=db_path)


@pytest.fixture
def mapping_db(db_path):
    from stayvia.data.db import CalendarMappingDB
    return CalendarMappingDB(db_path=db_path)


@pytest.fixture
def parties(user_db):
    """A registered tenant and landlord."""
    tenant = user_db.add_user(TENANT_ID, "Maria", role="tenant")
    landlord = user_db.add_user(LANDLORD_ID, "Jose", role="landlord")
    return tenant, landlord


@pytest.fixture
def lease(lease_db, parties):
    return lease_db.add_lease(
        tenant_id=TENANT_ID,
        landlord_id=LANDLORD_ID,
        property_title="Sunny Loft",
        start_date="2024-01-10",
        end_date="2024-04-10",
        monthly_rent_amount=15000.0,
        payment_day_of_month=15,
    )
