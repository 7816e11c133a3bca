"""Tests for stayvia.core.lease_service — lease confirmation, edits, payment status."""

import pytest
from datetime import datetime
from zoneinfo import ZoneInfo

from stayvia.core.lease_service import LeaseService
from stayvia.core.payment_dates import LeaseValidationError
from stayvia.data.models import PaymentStatus, ReminderTier

TZ = ZoneInfo("Asia/Manila")
NOW = datetime(2024, 1, 1, 8, tzinfo=TZ)
TENANT_ID = 111
LANDLORD_ID = 222


@pytest.fixture
def service(lease_db, payment_db, user_db, notifier, parties):
    return LeaseService(lease_db, payment_db, user_db, notifier)


async def _confirm(service, **overrides):
    terms = dict(
        tenant_id=TENANT_ID,
        landlord_id=LANDLORD_ID,
        property_title="Sunny Loft",
        start_date="2024-01-10",
        end_date="2024-04-10",
        monthly_rent_amount=15000.0,
        payment_day_of_month=15,
        now=NOW,
    )
    terms.update(overrides)
    return await service.confirm_lease(**terms)


class TestConfirmLease:
    @pytest.mark.asyncio
    async def test_persists_lease_and_payments(self, service, payment_db):
        schedule = await _confirm(service)
        stored = payment_db.list_for_lease(schedule.lease.id)
        assert [p.due_date for p in stored] == [
            "2024-01-10", "2024-02-15", "2024-03-15", "2024-04-10",
        ]
        assert all(p.status == "unpaid" and p.amount == 15000.0 for p in stored)

    @pytest.mark.asyncio
    async def test_persists_tenant_handles_for_every_tier(self, service, payment_db, notifier):
        schedule = await _confirm(service)
        for payment in payment_db.list_for_lease(schedule.lease.id):
            assert len(payment.handles()) == 3
            for handle in payment.handles():
                assert notifier.scheduled[handle][0] == TENANT_ID

    @pytest.mark.asyncio
    async def test_schedules_six_reminders_per_payment_plus_rating(self, service, notifier):
        await _confirm(service)
        types = [data["type"] for _u, _t, _w, data in notifier.scheduled.values()]
        assert types.count("payment_reminder_tenant") == 12
        assert types.count("payment_reminder_landlord") == 12
        assert types.count("rating_reminder") == 1

    @pytest.mark.asyncio
    async def test_trims_title(self, service):
        schedule = await _confirm(service, property_title="  Sunny Loft  ")
        assert schedule.lease.property_title == "Sunny Loft"

    @pytest.mark.asyncio
    async def test_invalid_terms_persist_nothing(self, service, lease_db):
        with pytest.raises(LeaseValidationError):
            await _confirm(service, end_date="2023-12-31")
        assert lease_db.list_for_user(TENANT_ID) == []

    @pytest.mark.asyncio
    async def test_unregistered_tenant_rejected(self, service, lease_db):
        with pytest.raises(LeaseValidationError, match="not registered"):
            await _confirm(service, tenant_id=999)
        assert lease_db.list_for_user(LANDLORD_ID) == []

    @pytest.mark.asyncio
    async def test_counts_failed_reminder_requests(self, service, notifier):
        notifier.fail_on.add((LANDLORD_ID, 1))
        schedule = await _confirm(service)
        assert schedule.reminders_failed == 4
        assert len(schedule.payments) == 4

    @pytest.mark.asyncio
    async def test_rating_failure_does_not_fail_confirmation(self, service, notifier, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("telegram down")

        monkeypatch.setattr("stayvia.core.lease_service.schedule_rating_reminder", broken)
        schedule = await _confirm(service)
        assert schedule.lease.id is not None


class TestUpdateLeaseTerms:
    @pytest.mark.asyncio
    async def test_keeps_settled_and_regenerates_the_rest(self, service, payment_db, notifier):
        schedule = await _confirm(service)
        first = schedule.payments[0]
        await service.set_payment_status(first.id, "paid")
        old_unpaid = [p for p in payment_db.list_for_lease(schedule.lease.id) if p.id != first.id]
        old_handles = [h for p in old_unpaid for h in p.handles()]
        notifier.cancelled.clear()

        updated = await service.update_lease_terms(
            schedule.lease.id, "2024-01-10", "2024-06-10", 15000.0, 15, now=NOW,
        )

        stored = payment_db.list_for_lease(schedule.lease.id)
        assert [p.due_date for p in stored] == [
            "2024-01-10", "2024-02-15", "2024-03-15", "2024-04-15", "2024-05-15", "2024-06-10",
        ]
        assert stored[0].id == first.id
        assert stored[0].status == "paid"
        assert len(updated.payments) == 5
        assert sorted(notifier.cancelled) == sorted(old_handles)
        assert all(payment_db.get_payment(p.id) is None for p in old_unpaid)

    @pytest.mark.asyncio
    async def test_new_payments_get_new_handles(self, service, payment_db):
        schedule = await _confirm(service)
        updated = await service.update_lease_terms(
            schedule.lease.id, "2024-01-10", "2024-03-10", 16000.0, 1, now=NOW,
        )
        for payment in updated.payments:
            stored = payment_db.get_payment(payment.id)
            assert stored.amount == 16000.0
            assert len(stored.handles()) == 3

    @pytest.mark.asyncio
    async def test_partial_payment_is_kept(self, service, payment_db):
        schedule = await _confirm(service)
        second = schedule.payments[1]
        await service.set_payment_status(second.id, "partial", notes="half")

        await service.update_lease_terms(
            schedule.lease.id, "2024-01-10", "2024-04-10", 15000.0, 15, now=NOW,
        )

        stored = payment_db.list_for_lease(schedule.lease.id)
        assert len(stored) == 4
        assert payment_db.get_payment(second.id).notes == "half"

    @pytest.mark.asyncio
    async def test_invalid_terms_leave_schedule_untouched(self, service, payment_db, notifier):
        schedule = await _confirm(service)
        with pytest.raises(LeaseValidationError):
            await service.update_lease_terms(
                schedule.lease.id, "2024-01-10", "2024-04-10", 15000.0, 40, now=NOW,
            )
        assert len(payment_db.list_for_lease(schedule.lease.id)) == 4
        assert notifier.cancelled == []

    @pytest.mark.asyncio
    async def test_unknown_lease(self, service):
        with pytest.raises(LeaseValidationError, match="not found"):
            await service.update_lease_terms(999, "2024-01-10", "2024-04-10", 1.0)


class TestSetPaymentStatus:
    @pytest.mark.asyncio
    async def test_paid_stamps_date_cancels_reminders_and_notifies(
        self, service, payment_db, notifier,
    ):
        schedule = await _confirm(service)
        payment = payment_db.get_payment(schedule.payments[1].id)

        updated = await service.set_payment_status(payment.id, PaymentStatus.PAID)

        assert updated.status == "paid"
        assert updated.paid_on is not None
        assert notifier.cancelled == payment.handles()
        [(user_id, text, data)] = notifier.sent
        assert user_id == TENANT_ID
        assert "Payment Received" in text
        assert data["type"] == "payment_received"

    @pytest.mark.asyncio
    async def test_cancelled_cancels_without_notice(self, service, payment_db, notifier):
        schedule = await _confirm(service)
        payment = payment_db.get_payment(schedule.payments[2].id)

        updated = await service.set_payment_status(payment.id, "cancelled")

        assert updated.paid_on is None
        assert len(notifier.cancelled) == 3
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_landlord_reminder_dropped_once_paid(self, service, payment_db, notifier):
        from stayvia.core.deduplicator import ReminderDeduplicator

        notifier.add_delivery_check(ReminderDeduplicator(payment_db).is_still_due)
        schedule = await _confirm(service)
        payment_id = schedule.payments[1].id
        landlord_jobs = [
            handle for handle, (uid, _t, _w, data) in notifier.scheduled.items()
            if uid == LANDLORD_ID and data.get("payment_id") == payment_id
        ]
        assert len(landlord_jobs) == 3

        await service.set_payment_status(payment_id, "paid")
        notifier.sent.clear()
        for handle in landlord_jobs:
            await notifier.deliver(handle)

        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_partial_keeps_reminders(self, service, notifier):
        schedule = await _confirm(service)
        await service.set_payment_status(schedule.payments[0].id, "partial", notes="5k")
        assert notifier.cancelled == []

    @pytest.mark.asyncio
    async def test_paid_does_not_touch_flags(self, service, payment_db):
        schedule = await _confirm(service)
        payment_id = schedule.payments[0].id
        payment_db.mark_reminder_sent(payment_id, ReminderTier.THREE_DAY)
        await service.set_payment_status(payment_id, "paid")
        assert payment_db.get_payment(payment_id).reminder_3day_sent is True

    @pytest.mark.asyncio
    async def test_unknown_payment(self, service):
        with pytest.raises(ValueError, match="not found"):
            await service.set_payment_status(999, "paid")

    @pytest.mark.asyncio
    async def test_unknown_status(self, service):
        with pytest.raises(ValueError):
            await service.set_payment_status(1, "refunded")
