"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance (and, for scheduled messages, the
application's JobQueue) to satisfy the NotificationPort protocol.

A scheduled message is a one-shot job; its handle is the job name. Payment
reminders carry an acknowledge button whose callback data
("seen:<payment_id>:<days>") the bot routes to the deduplicator.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import ContextTypes, JobQueue

from stayvia.core.reminder_messages import PAYMENT_REMINDER_TYPES
from stayvia.ports.notification_port import DeliveredListener, DeliveryCheck

logger = logging.getLogger(__name__)

JOB_PREFIX = "reminder-"


def ack_keyboard(data: dict | None) -> InlineKeyboardMarkup | None:
    """Acknowledge button for payment reminders; None for anything else."""
    if not data or data.get("type") not in PAYMENT_REMINDER_TYPES:
        return None
    callback = f"seen:{data['payment_id']}:{data['days_until_due']}"
    return InlineKeyboardMarkup([[InlineKeyboardButton("✅ Got it", callback_data=callback)]])


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, job_queue: JobQueue | None = None) -> None:
        self._bot = bot
        self._job_queue = job_queue
        self._listeners: list[DeliveredListener] = []
        self._checks: list[DeliveryCheck] = []

    def add_delivered_listener(self, listener: DeliveredListener) -> None:
        self._listeners.append(listener)

    def add_delivery_check(self, check: DeliveryCheck) -> None:
        self._checks.append(check)

    async def send_message(self, user_id: int, text: str, data: dict | None = None) -> None:
        await self._bot.send_message(
            chat_id=user_id, text=text, reply_markup=ack_keyboard(data),
        )
        if data:
            await self._notify_delivered(data, user_id)

    async def schedule_message(
        self, user_id: int, text: str, when: datetime, data: dict | None = None,
    ) -> str:
        if self._job_queue is None:
            raise RuntimeError("TelegramNotifier was created without a JobQueue")

        name = f"{JOB_PREFIX}{uuid.uuid4().hex}"
        self._job_queue.run_once(
            self._deliver,
            when=when,
            data={"text": text, "payload": data or {}},
            name=name,
            chat_id=user_id,
        )
        logger.debug("Scheduled %s for user %d at %s", name, user_id, when.isoformat())
        return name

    async def cancel_scheduled(self, handle: str) -> None:
        if self._job_queue is None:
            raise RuntimeError("TelegramNotifier was created without a JobQueue")

        jobs = self._job_queue.get_jobs_by_name(handle)
        if not jobs:
            # Jobs live in memory; a restart leaves persisted handles dangling
            logger.info("No scheduled job named %s (already delivered or lost)", handle)
            return
        for job in jobs:
            job.schedule_removal()
        logger.debug("Cancelled scheduled job %s", handle)

    async def _deliver(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        """JobQueue callback for a scheduled message."""
        job = context.job
        payload = job.data.get("payload") or {}
        if payload and not all(check(payload) for check in self._checks):
            logger.info("Dropped scheduled message %s: no longer due", job.name)
            return
        await self.send_message(job.chat_id, job.data["text"], payload)

    async def _notify_delivered(self, data: dict, user_id: int) -> None:
        for listener in self._listeners:
            try:
                await listener(data, user_id)
            except Exception as exc:
                logger.error("Delivered listener failed for user %d: %s", user_id, exc)
