"""Tests for stayvia.core.reminder_poller — foreground fallback delivery."""

import asyncio
from datetime import date

import pytest

from stayvia.core.deduplicator import ReminderDeduplicator
from stayvia.core.payment_dates import PaymentDate
from stayvia.core.reminder_messages import reminder_payload
from stayvia.core.reminder_poller import ReminderPoller
from stayvia.data.models import ReminderTier, Role

TENANT_ID = 111
LANDLORD_ID = 222


@pytest.fixture
def dedup(payment_db):
    return ReminderDeduplicator(payment_db)


@pytest.fixture
def poller(payment_db, lease_db, user_db, notifier, dedup):
    return ReminderPoller(payment_db, lease_db, user_db, notifier, dedup)


def _add(payment_db, lease, *isodates):
    return payment_db.add_payments(
        lease, [PaymentDate(date.fromisoformat(d), 15000.0) for d in isodates],
    )


class TestPreDueReminders:
    @pytest.mark.asyncio
    async def test_sends_due_tier_to_both_parties(self, poller, notifier, payment_db, lease):
        [payment] = _add(payment_db, lease, "2024-02-15")

        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))

        assert result.reminders_sent == 1
        recipients = {(uid, d["days_until_due"]) for uid, _t, d in notifier.sent}
        assert recipients == {(TENANT_ID, 1), (LANDLORD_ID, 1)}
        assert payment_db.get_payment(payment.id).reminder_1day_sent is True

    @pytest.mark.asyncio
    async def test_second_poll_does_not_resend(self, poller, notifier, payment_db, lease):
        _add(payment_db, lease, "2024-02-15")
        await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))
        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))
        assert result.reminders_sent == 0
        assert len(notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_other_party_poll_does_not_resend(self, poller, notifier, payment_db, lease):
        _add(payment_db, lease, "2024-02-15")
        await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))
        result = await poller.poll_user(LANDLORD_ID, today=date(2024, 2, 14))
        assert result.reminders_sent == 0
        assert len(notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_scheduled_tier_is_left_alone(self, poller, notifier, payment_db, lease):
        [payment] = _add(payment_db, lease, "2024-02-15")
        payment_db.set_notification_handles(payment.id, {ReminderTier.ONE_DAY: "job-1"})

        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))

        assert result.reminders_sent == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_handle_left_from_previous_run_is_polled_after_release(
        self, poller, notifier, payment_db, lease,
    ):
        [payment] = _add(payment_db, lease, "2024-02-15")
        payment_db.set_notification_handles(
            payment.id, {ReminderTier.ONE_DAY: "reminder-deadbeef"},
        )

        assert payment_db.release_pending_handles() == 1
        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))

        assert result.reminders_sent == 1
        assert {uid for uid, _t, _d in notifier.sent} == {TENANT_ID, LANDLORD_ID}

    @pytest.mark.asyncio
    async def test_received_and_tapped_then_poll_sends_nothing(
        self, poller, notifier, dedup, payment_db, lease,
    ):
        [payment] = _add(payment_db, lease, "2024-02-15")
        payload = reminder_payload(payment.id, Role.TENANT, ReminderTier.ONE_DAY, TENANT_ID)
        await dedup.record_delivery(payload, TENANT_ID, "tapped")
        await dedup.record_delivery(payload, TENANT_ID, "received")

        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))

        assert result.reminders_sent == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_paid_payment_is_not_reminded(self, poller, notifier, payment_db, lease):
        [payment] = _add(payment_db, lease, "2024-02-15")
        payment_db.update_status(payment.id, "paid", paid_on="2024-02-13")
        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))
        assert result.reminders_sent == 0

    @pytest.mark.asyncio
    async def test_send_failure_still_counts_as_claimed(self, poller, notifier, payment_db, lease):
        [payment] = _add(payment_db, lease, "2024-02-15")
        notifier.fail_on.add((LANDLORD_ID, 0))

        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 15))

        assert result.reminders_sent == 1
        assert [uid for uid, _t, _d in notifier.sent] == [TENANT_ID]
        assert payment_db.get_payment(payment.id).reminder_duedate_sent is True


class TestOverdue:
    @pytest.mark.asyncio
    async def test_overdue_notice_sent_once(self, poller, notifier, payment_db, lease):
        [payment] = _add(payment_db, lease, "2024-02-01")

        first = await poller.poll_user(TENANT_ID, today=date(2024, 2, 10))
        second = await poller.poll_user(TENANT_ID, today=date(2024, 2, 20))

        assert first.overdue_sent == 1
        assert second.overdue_sent == 0
        texts = [t for _u, t, _d in notifier.sent]
        assert len(texts) == 2
        assert all("9 day(s) overdue" in t for t in texts)
        assert payment_db.get_payment(payment.id).overdue_notif_sent is True

    @pytest.mark.asyncio
    async def test_overdue_payload_type(self, poller, notifier, payment_db, lease):
        _add(payment_db, lease, "2024-02-01")
        await poller.poll_user(LANDLORD_ID, today=date(2024, 2, 10))
        types = {uid: d["type"] for uid, _t, d in notifier.sent}
        assert types == {
            TENANT_ID: "payment_overdue_tenant",
            LANDLORD_ID: "payment_overdue_landlord",
        }


class TestInFlightGuard:
    @pytest.mark.asyncio
    async def test_overlapping_poll_for_same_user_is_skipped(
        self, poller, notifier, payment_db, lease,
    ):
        _add(payment_db, lease, "2024-02-15")
        gate = asyncio.Event()
        original_send = notifier.send_message

        async def slow_send(*args, **kwargs):
            await gate.wait()
            await original_send(*args, **kwargs)

        notifier.send_message = slow_send

        first = asyncio.create_task(poller.poll_user(TENANT_ID, today=date(2024, 2, 14)))
        for _ in range(3):
            await asyncio.sleep(0)

        assert await poller.poll_user(TENANT_ID, today=date(2024, 2, 14)) is None

        gate.set()
        result = await first
        assert result.reminders_sent == 1
        assert len(notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, poller, payment_db, lease, monkeypatch):
        async def boom(user_id, today):
            raise RuntimeError("db down")

        monkeypatch.setattr(poller, "_poll", boom)
        with pytest.raises(RuntimeError):
            await poller.poll_user(TENANT_ID)
        monkeypatch.undo()

        result = await poller.poll_user(TENANT_ID, today=date(2024, 2, 14))
        assert result is not None


class TestPollAll:
    @pytest.mark.asyncio
    async def test_polls_every_user_with_a_role(self, poller, user_db, payment_db, lease):
        user_db.add_user(333, "No Role Yet")
        _add(payment_db, lease, "2024-02-15")

        results = await poller.poll_all(today=date(2024, 2, 14))

        assert {r.user_id for r in results} == {TENANT_ID, LANDLORD_ID}
        assert sum(r.reminders_sent for r in results) == 1

    @pytest.mark.asyncio
    async def test_failure_for_one_user_does_not_stop_others(
        self, poller, payment_db, lease, monkeypatch,
    ):
        real_poll = poller._poll

        async def flaky(user_id, today):
            if user_id == TENANT_ID:
                raise RuntimeError("boom")
            return await real_poll(user_id, today)

        monkeypatch.setattr(poller, "_poll", flaky)
        _add(payment_db, lease, "2024-02-15")

        results = await poller.poll_all(today=date(2024, 2, 14))

        assert [r.user_id for r in results] == [LANDLORD_ID]
        assert results[0].reminders_sent == 1
