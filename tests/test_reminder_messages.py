"""Tests for stayvia.core.reminder_messages — texts and payloads."""

import pytest

from stayvia.core.reminder_messages import (
    format_amount,
    overdue_text,
    payment_received_text,
    reminder_payload,
    reminder_text,
)
from stayvia.data.models import ReminderTier, Role


class TestFormatAmount:
    def test_whole_amount_has_thousands_separator(self):
        assert format_amount(15000) == "₱15,000"

    def test_fractional_amount_keeps_cents(self):
        assert format_amount(99.5) == "₱99.50"


class TestReminderText:
    def test_tenant_three_day(self):
        text = reminder_text(ReminderTier.THREE_DAY, Role.TENANT, 15000, "Sunny Loft", "Maria")
        assert text == "💰 Payment Reminder\nPayment due in 3 days: ₱15,000 for Sunny Loft"

    @pytest.mark.parametrize("tier, phrase", [
        (ReminderTier.ONE_DAY, "due tomorrow"),
        (ReminderTier.DUE_DATE, "due today"),
    ])
    def test_tenant_later_tiers(self, tier, phrase):
        text = reminder_text(tier, Role.TENANT, 15000, "Sunny Loft", "Maria")
        assert text.endswith(f"₱15,000 {phrase} for Sunny Loft")

    @pytest.mark.parametrize("tier, phrase", [
        (ReminderTier.THREE_DAY, "due in 3 days"),
        (ReminderTier.ONE_DAY, "due tomorrow"),
        (ReminderTier.DUE_DATE, "due today"),
    ])
    def test_landlord_names_tenant(self, tier, phrase):
        text = reminder_text(tier, Role.LANDLORD, 15000, "Sunny Loft", "Maria")
        assert text.endswith(f"Maria - ₱15,000 {phrase}")


class TestOtherTexts:
    def test_overdue_tenant(self):
        text = overdue_text(Role.TENANT, 15000, "Sunny Loft", "Maria", 4)
        assert "₱15,000 for Sunny Loft is 4 day(s) overdue" in text

    def test_overdue_landlord(self):
        text = overdue_text(Role.LANDLORD, 15000, "Sunny Loft", "Maria", 4)
        assert "Maria - ₱15,000 is 4 day(s) overdue" in text

    def test_payment_received(self):
        assert "₱15,000 for Sunny Loft has been received" in payment_received_text(15000, "Sunny Loft")


class TestReminderPayload:
    def test_tenant_payload(self):
        assert reminder_payload(7, Role.TENANT, ReminderTier.ONE_DAY, 111) == {
            "type": "payment_reminder_tenant",
            "payment_id": 7,
            "days_until_due": 1,
            "user_id": 111,
        }

    def test_landlord_payload_type(self):
        payload = reminder_payload(7, Role.LANDLORD, ReminderTier.DUE_DATE, 222)
        assert payload["type"] == "payment_reminder_landlord"
        assert payload["days_until_due"] == 0
