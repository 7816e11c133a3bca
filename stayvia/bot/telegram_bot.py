"""
StayVia Reminders — Telegram Bot.

Telegram is both the user interface and the delivery channel: landlords
confirm leases and mark payments here, tenants and landlords receive their
payment reminders here, and either can mirror due dates to a calendar.

Reminder delivery runs on two paths. Scheduled jobs fire at the reminder
hour; a foreground poll (at startup, on a timer, and whenever a user talks
to the bot) catches anything that was never scheduled. The deduplicator
keeps the two from ever double-sending.

Security-first: when ALLOWED_USER_IDS is set, other users are silently ignored.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    TypeHandler,
)

from stayvia.config import settings
from stayvia.core.payment_dates import LeaseValidationError
from stayvia.core.reminder_messages import format_amount, reminder_payload
from stayvia.data.models import PaymentStatus, ReminderTier, Role, SyncStatus
from stayvia.ports.calendar_port import CalendarError

if TYPE_CHECKING:
    from stayvia.data.models import User
    from stayvia.ports.calendar_port import CalendarPort
    from stayvia.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

CalendarFactory = Callable[[str | None], "CalendarPort"]

_SYNC_LABELS = {
    SyncStatus.SYNCED: "✅ synced",
    SyncStatus.PARTIAL: "⚠️ partially synced",
    SyncStatus.NONE: "❌ not synced",
}


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def _is_allowed(user_id: int | None) -> bool:
    if user_id is None:
        return False
    return not settings.ALLOWED_USER_IDS or user_id in settings.ALLOWED_USER_IDS


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or not _is_allowed(user.id):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _registered_user(
    update: Update, context: ContextTypes.DEFAULT_TYPE, role: Role | None = None,
) -> User | None:
    """Return the sender's User, replying with guidance if unusable."""
    user = context.bot_data["user_db"].get_user(update.effective_user.id)
    if user is None:
        await update.message.reply_text("Please send /start first.")
        return None
    if not user.role:
        await update.message.reply_text("Pick a role first: /role tenant or /role landlord")
        return None
    if role is not None and user.role != role.value:
        await update.message.reply_text(f"Only a {role.value} can do that.")
        return None
    return user


def _parse_day(raw: str) -> int | None:
    """Payment-day argument: a number, or "-" for the move-in day."""
    if raw == "-":
        return None
    return int(raw)


def _today() -> str:
    return datetime.now(ZoneInfo(settings.TIMEZONE)).date().isoformat()


# ---------------------------------------------------------------------------
# Command handlers: onboarding
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the user and explain the bot."""
    user_db = context.bot_data["user_db"]
    tg_user = update.effective_user
    if not user_db.is_registered(tg_user.id):
        user_db.add_user(tg_user.id, tg_user.first_name or str(tg_user.id))

    await update.message.reply_text(
        "Welcome to *StayVia Reminders*!\n\n"
        "I remind tenants and landlords about rent:\n"
        "• 3 days before, 1 day before and on every due date\n"
        "• once when a payment becomes overdue\n\n"
        f"Your Telegram ID is `{tg_user.id}`.\n"
        "Start with /role tenant or /role landlord. Type /help for all commands.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/role tenant|landlord — Choose your role\n"
        "/lease <tenant_id> <start> <end> <rent> <day|-> <title> — Confirm a lease (landlord)\n"
        "/editlease <lease_id> <start> <end> <rent> <day|-> — Change lease terms (landlord)\n"
        "/payments — Upcoming payments\n"
        "/setstatus <payment_id> <paid|partial|overdue|cancelled|unpaid> [notes] — "
        "Mark a payment (landlord)\n"
        "/connect — Connect your calendar\n"
        "/code <code> — Finish connecting Google Calendar\n"
        "/sync — Add payment dates to your calendar\n"
        "/syncstatus — Check which leases are on your calendar\n"
        "/unsync [lease_id] — Remove payment dates from your calendar\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_role(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /role <tenant|landlord>."""
    args = context.args
    try:
        role = Role(args[0].lower()) if args else None
    except ValueError:
        role = None
    if role is None:
        await update.message.reply_text("Usage: /role tenant or /role landlord")
        return

    user_db = context.bot_data["user_db"]
    try:
        user_db.set_role(update.effective_user.id, role.value)
    except ValueError:
        await update.message.reply_text("Please send /start first.")
        return
    await update.message.reply_text(f"✅ You are registered as a {role.value}.")


# ---------------------------------------------------------------------------
# Command handlers: leases and payments
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_lease(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /lease — landlord confirms a lease and its payment schedule."""
    landlord = await _registered_user(update, context, Role.LANDLORD)
    if landlord is None:
        return

    args = context.args or []
    if len(args) < 6:
        await update.message.reply_text(
            "Usage: /lease <tenant_id> <start YYYY-MM-DD> <end YYYY-MM-DD> "
            "<monthly rent> <payment day 1-31 or -> <property title>"
        )
        return

    try:
        tenant_id = int(args[0])
        rent = float(args[3].replace(",", ""))
        day = _parse_day(args[4])
    except ValueError:
        await update.message.reply_text("Tenant ID, rent and payment day must be numbers.")
        return

    service = context.bot_data["lease_service"]
    try:
        schedule = await service.confirm_lease(
            tenant_id=tenant_id,
            landlord_id=landlord.telegram_user_id,
            property_title=" ".join(args[5:]),
            start_date=args[1],
            end_date=args[2],
            monthly_rent_amount=rent,
            payment_day_of_month=day,
        )
    except LeaseValidationError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    lease = schedule.lease
    msg = (
        f"✅ Lease #{lease.id} confirmed: *{lease.property_title}*\n"
        f"{len(schedule.payments)} payment(s) of {format_amount(lease.monthly_rent_amount)}, "
        f"{lease.start_date} to {lease.end_date}."
    )
    if schedule.reminders_failed:
        msg += "\n⚠️ Some reminders couldn't be scheduled; they will be sent when due."
    await update.message.reply_text(msg, parse_mode="Markdown")


@authorized_only
async def cmd_editlease(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /editlease — change dates, rent or payment day of a lease."""
    landlord = await _registered_user(update, context, Role.LANDLORD)
    if landlord is None:
        return

    args = context.args or []
    if len(args) < 5:
        await update.message.reply_text(
            "Usage: /editlease <lease_id> <start> <end> <monthly rent> <payment day or ->"
        )
        return

    try:
        lease_id = int(args[0])
        rent = float(args[3].replace(",", ""))
        day = _parse_day(args[4])
    except ValueError:
        await update.message.reply_text("Lease ID, rent and payment day must be numbers.")
        return

    lease = context.bot_data["lease_db"].get_lease(lease_id)
    if lease is None or lease.landlord_id != landlord.telegram_user_id:
        await update.message.reply_text(f"Lease {lease_id} not found.")
        return

    try:
        schedule = await context.bot_data["lease_service"].update_lease_terms(
            lease_id, args[1], args[2], rent, day,
        )
    except LeaseValidationError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    await update.message.reply_text(
        f"✅ Lease #{lease_id} updated. {len(schedule.payments)} payment(s) rescheduled."
    )


@authorized_only
async def cmd_payments(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /payments — list payments from today onward."""
    user = await _registered_user(update, context)
    if user is None:
        return

    payments = context.bot_data["payment_db"].list_for_user(
        user.telegram_user_id, user.role, from_date=_today(),
    )
    if not payments:
        await update.message.reply_text("No upcoming payments.")
        return

    lines = ["*Upcoming payments:*\n"]
    for p in payments[:20]:
        lines.append(f"`{p.id}` — {p.due_date}  {format_amount(p.amount)}  ({p.status})")
    if len(payments) > 20:
        lines.append(f"…and {len(payments) - 20} more")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_setstatus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setstatus <payment_id> <status> [notes]."""
    landlord = await _registered_user(update, context, Role.LANDLORD)
    if landlord is None:
        return

    args = context.args or []
    try:
        payment_id = int(args[0])
        status = PaymentStatus(args[1].lower())
    except (IndexError, ValueError):
        await update.message.reply_text(
            "Usage: /setstatus <payment_id> <paid|partial|overdue|cancelled|unpaid> [notes]"
        )
        return

    payment = context.bot_data["payment_db"].get_payment(payment_id)
    if payment is None or payment.landlord_id != landlord.telegram_user_id:
        await update.message.reply_text(f"Payment {payment_id} not found.")
        return

    notes = " ".join(args[2:]) or None
    await context.bot_data["lease_service"].set_payment_status(payment_id, status, notes)
    await update.message.reply_text(f"✅ Payment #{payment_id} marked {status.value}.")


# ---------------------------------------------------------------------------
# Command handlers: calendar
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_connect(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /connect — link the user's calendar account."""
    user = await _registered_user(update, context)
    if user is None:
        return

    if settings.CALENDAR_PROVIDER.lower() == "caldav":
        args = context.args or []
        if len(args) != 3:
            await update.message.reply_text("Usage: /connect <caldav_url> <username> <password>")
            return
        creds = json.dumps({"url": args[0], "username": args[1], "password": args[2]})
        context.bot_data["user_db"].set_calendar_token(user.telegram_user_id, creds)
        await update.message.reply_text("✅ CalDAV account saved. Use /sync to add your payments.")
        return

    from stayvia.integrations.google_auth import get_google_auth_url

    try:
        auth_url, flow = get_google_auth_url()
    except FileNotFoundError as exc:
        logger.error("/connect error: %s", exc)
        await update.message.reply_text("Calendar connection is not configured on this bot.")
        return

    context.user_data["google_flow"] = flow
    await update.message.reply_text(
        "1. Open this link and allow calendar access:\n"
        f"{auth_url}\n\n"
        "2. Send me the code with /code <code>"
    )


@authorized_only
async def cmd_code(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /code <code> — finish the Google OAuth flow."""
    from stayvia.integrations.google_auth import exchange_google_auth_code

    flow = context.user_data.get("google_flow")
    if flow is None:
        await update.message.reply_text("Start with /connect first.")
        return
    if not context.args:
        await update.message.reply_text("Usage: /code <code>")
        return

    try:
        token_json = exchange_google_auth_code(flow, context.args[0])
    except Exception as exc:
        logger.error("Google auth code exchange failed: %s", exc)
        await update.message.reply_text("That code didn't work. Try /connect again.")
        return

    context.bot_data["user_db"].set_calendar_token(update.effective_user.id, token_json)
    context.user_data.pop("google_flow", None)
    await update.message.reply_text("✅ Google Calendar connected. Use /sync to add your payments.")


def _user_calendar(context: ContextTypes.DEFAULT_TYPE, user: User) -> CalendarPort:
    return context.bot_data["calendar_factory"](user.calendar_token_json)


@authorized_only
async def cmd_sync(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sync — mirror every lease's payment dates to the calendar."""
    from stayvia.core.calendar_sync import sync_all_leases

    user = await _registered_user(update, context)
    if user is None:
        return

    leases = context.bot_data["lease_db"].list_for_user(user.telegram_user_id, user.role)
    if not leases:
        await update.message.reply_text("You have no leases to sync.")
        return

    summary = await sync_all_leases(
        _user_calendar(context, user), context.bot_data["mapping_db"], leases,
    )
    msg = f"📅 Synced {summary.synced} of {summary.total} lease(s) to your calendar."
    if summary.failed:
        msg += f"\n⚠️ {summary.failed} failed. Check /connect and try again."
    await update.message.reply_text(msg)


@authorized_only
async def cmd_syncstatus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /syncstatus — report calendar state per lease."""
    from stayvia.core.calendar_sync import get_sync_status

    user = await _registered_user(update, context)
    if user is None:
        return

    leases = context.bot_data["lease_db"].list_for_user(user.telegram_user_id, user.role)
    if not leases:
        await update.message.reply_text("You have no leases.")
        return

    calendar = _user_calendar(context, user)
    lines = ["*Calendar sync:*\n"]
    for lease in leases:
        status = await get_sync_status(calendar, context.bot_data["mapping_db"], lease.id)
        lines.append(f"`{lease.id}` — {lease.property_title}: {_SYNC_LABELS[status]}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_unsync(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /unsync [lease_id] — remove payment events from the calendar."""
    from stayvia.core.calendar_sync import remove_lease_from_calendar

    user = await _registered_user(update, context)
    if user is None:
        return

    leases = context.bot_data["lease_db"].list_for_user(user.telegram_user_id, user.role)
    if context.args:
        try:
            wanted = int(context.args[0])
        except ValueError:
            await update.message.reply_text("Usage: /unsync [lease_id]")
            return
        leases = [lease for lease in leases if lease.id == wanted]
        if not leases:
            await update.message.reply_text(f"Lease {wanted} not found.")
            return

    calendar = _user_calendar(context, user)
    removed = 0
    try:
        for lease in leases:
            removed += await remove_lease_from_calendar(
                calendar, context.bot_data["mapping_db"], lease.id,
            )
    except CalendarError as exc:
        logger.error("/unsync calendar error: %s", exc)
        await update.message.reply_text("Couldn't reach your calendar. Please try again later.")
        return

    await update.message.reply_text(f"🗑 Removed {removed} payment event(s) from your calendar.")


# ---------------------------------------------------------------------------
# Reminder acknowledgement ("tapped") and activity-triggered poll
# ---------------------------------------------------------------------------


async def _handle_seen_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the "Got it" button on a payment reminder."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or not _is_allowed(user.id):
        return

    _, payment_id, days = query.data.split(":")
    payment = context.bot_data["payment_db"].get_payment(int(payment_id))
    tier = ReminderTier.from_days(int(days))
    if payment is None or tier is None:
        return

    if user.id == payment.tenant_id:
        audience = Role.TENANT
    elif user.id == payment.landlord_id:
        audience = Role.LANDLORD
    else:
        logger.warning(
            "User %d tapped a reminder for payment #%d they are not party to",
            user.id, payment.id,
        )
        return

    payload = reminder_payload(payment.id, audience, tier, user.id)
    await context.bot_data["deduplicator"].record_delivery(payload, user.id, "tapped")

    try:
        await query.edit_message_reply_markup(reply_markup=None)
    except Exception as exc:
        logger.debug("Could not remove acknowledge button: %s", exc)


async def _on_user_activity(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Any update from a registered user triggers a background poll for them."""
    user = update.effective_user
    if user is None or not _is_allowed(user.id):
        return
    if not context.bot_data["user_db"].is_registered(user.id):
        return
    context.application.create_task(
        context.bot_data["poller"].poll_user(user.id),
        update=update,
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    notifier: NotificationPort | None = None,
    calendar_factory: CalendarFactory | None = None,
    db_path: str | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance and job queue after build).
        calendar_factory: Maps a user's stored calendar credentials to a
                  CalendarPort. Defaults to create_calendar_adapter.
        db_path: SQLite path. Defaults to DATABASE_PATH.
    """
    from stayvia.core.deduplicator import ReminderDeduplicator
    from stayvia.core.lease_service import LeaseService
    from stayvia.core.reminder_poller import ReminderPoller
    from stayvia.data.db import CalendarMappingDB, LeaseDB, PaymentDB, UserDB

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    # Wire default adapters if not provided
    if notifier is None:
        from stayvia.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot, app.job_queue)

    if calendar_factory is None:
        from stayvia.adapters.calendar_factory import create_calendar_adapter
        calendar_factory = create_calendar_adapter

    user_db = UserDB(db_path)
    lease_db = LeaseDB(db_path)
    payment_db = PaymentDB(db_path)
    deduplicator = ReminderDeduplicator(payment_db)

    async def _on_delivered(data: dict, user_id: int) -> None:
        await deduplicator.record_delivery(data, user_id, "received")

    notifier.add_delivered_listener(_on_delivered)
    notifier.add_delivery_check(deduplicator.is_still_due)

    # Scheduled jobs do not survive a restart; free their tiers for the poll
    released = payment_db.release_pending_handles()
    if released:
        logger.info("Released %d reminder handle(s) left from a previous run", released)

    # Store ports and services in bot_data for handler access
    app.bot_data.update({
        "notifier": notifier,
        "calendar_factory": calendar_factory,
        "user_db": user_db,
        "lease_db": lease_db,
        "payment_db": payment_db,
        "mapping_db": CalendarMappingDB(db_path),
        "deduplicator": deduplicator,
        "lease_service": LeaseService(lease_db, payment_db, user_db, notifier),
        "poller": ReminderPoller(payment_db, lease_db, user_db, notifier, deduplicator),
    })

    # Every update, before any command handler runs
    app.add_handler(TypeHandler(Update, _on_user_activity), group=-1)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("role", cmd_role))
    app.add_handler(CommandHandler("lease", cmd_lease))
    app.add_handler(CommandHandler("editlease", cmd_editlease))
    app.add_handler(CommandHandler("payments", cmd_payments))
    app.add_handler(CommandHandler("setstatus", cmd_setstatus))
    app.add_handler(CommandHandler("connect", cmd_connect))
    app.add_handler(CommandHandler("code", cmd_code))
    app.add_handler(CommandHandler("sync", cmd_sync))
    app.add_handler(CommandHandler("syncstatus", cmd_syncstatus))
    app.add_handler(CommandHandler("unsync", cmd_unsync))
    app.add_handler(CallbackQueryHandler(_handle_seen_callback, pattern=r"^seen:\d+:\d+$"))

    _setup_reminder_polls(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminder_polls(app: Application) -> None:
    """Register the startup poll and the repeating poll of every user."""

    async def _poll_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        results = await context.bot_data["poller"].poll_all()
        sent = sum(r.reminders_sent + r.overdue_sent for r in results)
        logger.info("Reminder poll finished: %d user(s), %d message(s)", len(results), sent)

    app.job_queue.run_once(
        _poll_job_callback,
        when=settings.POLL_STARTUP_DELAY_SECONDS,
        name="startup_reminder_poll",
    )
    interval = settings.POLL_INTERVAL_MINUTES * 60
    app.job_queue.run_repeating(
        _poll_job_callback,
        interval=interval,
        first=interval,
        name="reminder_poll",
    )

    logger.info(
        "Reminder poll scheduled: first after %ds, then every %d min",
        settings.POLL_STARTUP_DELAY_SECONDS,
        settings.POLL_INTERVAL_MINUTES,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting StayVia Reminders bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
