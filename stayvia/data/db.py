"""
StayVia Reminders — SQLite storage.

Users, leases, payment obligations, and the lease → calendar-event mapping
all live in one SQLite file. Reminder flags are flipped with compare-and-set
updates so two racing delivery paths can never both claim the same tier.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from stayvia.data.models import Lease, Payment, PaymentStatus, ReminderTier, Role, User

if TYPE_CHECKING:
    from stayvia.core.payment_dates import PaymentDate

logger = logging.getLogger(__name__)

_ROLE_COLUMNS = {Role.TENANT: "tenant_id", Role.LANDLORD: "landlord_id"}


def _role_column(role: str | Role) -> str:
    return _ROLE_COLUMNS[Role(role)]


class _SQLiteStore:
    """Shared connection handling for the table-specific stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from stayvia.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class UserDB(_SQLiteStore):
    """SQLite-backed storage for registered bot users."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    telegram_user_id    INTEGER PRIMARY KEY,
                    display_name        TEXT NOT NULL,
                    role                TEXT,
                    calendar_token_json TEXT,
                    created_at          TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            telegram_user_id=row["telegram_user_id"],
            display_name=row["display_name"],
            role=row["role"],
            calendar_token_json=row["calendar_token_json"],
            created_at=row["created_at"],
        )

    def add_user(
        self, telegram_user_id: int, display_name: str, role: str | None = None,
    ) -> User:
        """Register a new user."""
        if role is not None:
            role = Role(role).value
        now = datetime.now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (telegram_user_id, display_name, role, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (telegram_user_id, display_name, role, now),
            )
        logger.info("User registered: %d '%s'", telegram_user_id, display_name)
        return User(
            telegram_user_id=telegram_user_id,
            display_name=display_name,
            role=role,
            created_at=now,
        )

    def get_user(self, telegram_user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def set_role(self, telegram_user_id: int, role: str) -> None:
        """Record whether the user is a tenant or a landlord."""
        role = Role(role).value
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET role = ? WHERE telegram_user_id = ?",
                (role, telegram_user_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"User {telegram_user_id} not found")
        logger.info("User %d role set to %s", telegram_user_id, role)

    def set_calendar_token(self, telegram_user_id: int, token_json: str) -> None:
        """Store calendar credentials for a user."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET calendar_token_json = ? WHERE telegram_user_id = ?",
                (token_json, telegram_user_id),
            )
        logger.info("Calendar token set for user %d", telegram_user_id)

    def list_users(self) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(r) for r in rows]

    def is_registered(self, telegram_user_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM users WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        return row is not None


class LeaseDB(_SQLiteStore):
    """SQLite-backed storage for confirmed rental agreements."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS leases (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id            INTEGER NOT NULL,
                    landlord_id          INTEGER NOT NULL,
                    property_title       TEXT    NOT NULL,
                    start_date           TEXT    NOT NULL,
                    end_date             TEXT    NOT NULL,
                    payment_day_of_month INTEGER,
                    monthly_rent_amount  REAL    NOT NULL,
                    confirmed            INTEGER NOT NULL DEFAULT 1,
                    created_at           TEXT    NOT NULL
                )
            """)
        logger.debug("Leases table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_lease(row: sqlite3.Row) -> Lease:
        return Lease(
            id=row["id"],
            tenant_id=row["tenant_id"],
            landlord_id=row["landlord_id"],
            property_title=row["property_title"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            payment_day_of_month=row["payment_day_of_month"],
            monthly_rent_amount=row["monthly_rent_amount"],
            confirmed=bool(row["confirmed"]),
            created_at=row["created_at"],
        )

    def add_lease(
        self,
        tenant_id: int,
        landlord_id: int,
        property_title: str,
        start_date: str,
        end_date: str,
        monthly_rent_amount: float,
        payment_day_of_month: int | None = None,
        confirmed: bool = True,
    ) -> Lease:
        now = datetime.now().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO leases
                    (tenant_id, landlord_id, property_title, start_date, end_date,
                     payment_day_of_month, monthly_rent_amount, confirmed, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tenant_id, landlord_id, property_title, start_date, end_date,
                    payment_day_of_month, monthly_rent_amount, int(confirmed), now,
                ),
            )
            lease_id = cursor.lastrowid

        logger.info(
            "Lease #%d added: '%s' %s..%s for tenant %d",
            lease_id, property_title, start_date, end_date, tenant_id,
        )
        return Lease(
            id=lease_id,
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            property_title=property_title,
            start_date=start_date,
            end_date=end_date,
            payment_day_of_month=payment_day_of_month,
            monthly_rent_amount=monthly_rent_amount,
            confirmed=confirmed,
            created_at=now,
        )

    def get_lease(self, lease_id: int) -> Lease | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM leases WHERE id = ?", (lease_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_lease(row)

    def list_for_user(self, user_id: int, role: str | None = None) -> list[Lease]:
        """Leases where the user is the tenant, the landlord, or either."""
        if role is None:
            query = "SELECT * FROM leases WHERE tenant_id = ? OR landlord_id = ?"
            params: list = [user_id, user_id]
        else:
            query = f"SELECT * FROM leases WHERE {_role_column(role)} = ?"
            params = [user_id]
        query += " ORDER BY start_date"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_lease(r) for r in rows]

    def update_terms(
        self,
        lease_id: int,
        start_date: str,
        end_date: str,
        payment_day_of_month: int | None,
        monthly_rent_amount: float,
    ) -> Lease:
        """Administrative edit of the lease's schedule-defining fields."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE leases
                   SET start_date = ?, end_date = ?,
                       payment_day_of_month = ?, monthly_rent_amount = ?
                 WHERE id = ?
                """,
                (start_date, end_date, payment_day_of_month, monthly_rent_amount, lease_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Lease {lease_id} not found")
        logger.info("Lease #%d terms updated: %s..%s", lease_id, start_date, end_date)
        return self.get_lease(lease_id)


class PaymentDB(_SQLiteStore):
    """SQLite-backed storage for payment obligations and their reminder state."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS payments (
                    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                    lease_id                INTEGER NOT NULL,
                    tenant_id               INTEGER NOT NULL,
                    landlord_id             INTEGER NOT NULL,
                    due_date                TEXT    NOT NULL,
                    amount                  REAL    NOT NULL,
                    status                  TEXT    NOT NULL DEFAULT 'unpaid',
                    reminder_3day_sent      INTEGER NOT NULL DEFAULT 0,
                    reminder_1day_sent      INTEGER NOT NULL DEFAULT 0,
                    reminder_duedate_sent   INTEGER NOT NULL DEFAULT 0,
                    overdue_notif_sent      INTEGER NOT NULL DEFAULT 0,
                    notification_3day_id    TEXT,
                    notification_1day_id    TEXT,
                    notification_duedate_id TEXT,
                    paid_on                 TEXT,
                    notes                   TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_due ON payments (due_date, status)"
            )
        logger.debug("Payments table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_payment(row: sqlite3.Row) -> Payment:
        return Payment(
            id=row["id"],
            lease_id=row["lease_id"],
            tenant_id=row["tenant_id"],
            landlord_id=row["landlord_id"],
            due_date=row["due_date"],
            amount=row["amount"],
            status=row["status"],
            reminder_3day_sent=bool(row["reminder_3day_sent"]),
            reminder_1day_sent=bool(row["reminder_1day_sent"]),
            reminder_duedate_sent=bool(row["reminder_duedate_sent"]),
            overdue_notif_sent=bool(row["overdue_notif_sent"]),
            notification_3day_id=row["notification_3day_id"],
            notification_1day_id=row["notification_1day_id"],
            notification_duedate_id=row["notification_duedate_id"],
            paid_on=row["paid_on"],
            notes=row["notes"],
        )

    def add_payments(self, lease: Lease, entries: list[PaymentDate]) -> list[Payment]:
        """Insert one unpaid obligation per generated payment date."""
        payments: list[Payment] = []
        with self._connect() as conn:
            for entry in entries:
                due = entry.date.isoformat()
                cursor = conn.execute(
                    """
                    INSERT INTO payments
                        (lease_id, tenant_id, landlord_id, due_date, amount, status)
                    VALUES (?, ?, ?, ?, ?, 'unpaid')
                    """,
                    (lease.id, lease.tenant_id, lease.landlord_id, due, entry.amount),
                )
                payments.append(
                    Payment(
                        id=cursor.lastrowid,
                        lease_id=lease.id,
                        tenant_id=lease.tenant_id,
                        landlord_id=lease.landlord_id,
                        due_date=due,
                        amount=entry.amount,
                    )
                )
        logger.info("Generated %d payment(s) for lease #%d", len(payments), lease.id)
        return payments

    def get_payment(self, payment_id: int) -> Payment | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM payments WHERE id = ?", (payment_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_payment(row)

    def list_for_lease(self, lease_id: int) -> list[Payment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM payments WHERE lease_id = ? ORDER BY due_date",
                (lease_id,),
            ).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def list_for_user(
        self,
        user_id: int,
        role: str,
        from_date: str | None = None,
        status: str | None = None,
    ) -> list[Payment]:
        """Payments where the user holds the given role, oldest due first."""
        query = f"SELECT * FROM payments WHERE {_role_column(role)} = ?"
        params: list = [user_id]
        if from_date is not None:
            query += " AND due_date >= ?"
            params.append(from_date)
        if status is not None:
            query += " AND status = ?"
            params.append(PaymentStatus(status).value)
        query += " ORDER BY due_date"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def find_due_for_reminder(
        self, user_id: int, role: str, tier: ReminderTier, due_date: str,
    ) -> list[Payment]:
        """Unpaid payments due on `due_date` whose tier is neither sent nor scheduled."""
        query = (
            f"SELECT * FROM payments WHERE {_role_column(role)} = ?"
            " AND status = 'unpaid'"
            f" AND {tier.flag_column} = 0"
            f" AND {tier.handle_column} IS NULL"
            " AND due_date = ?"
            " ORDER BY id"
        )
        with self._connect() as conn:
            rows = conn.execute(query, (user_id, due_date)).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def find_overdue_unnotified(self, user_id: int, role: str, today: str) -> list[Payment]:
        """Unpaid payments due before `today` that have not had an overdue notice."""
        query = (
            f"SELECT * FROM payments WHERE {_role_column(role)} = ?"
            " AND status = 'unpaid'"
            " AND overdue_notif_sent = 0"
            " AND due_date < ?"
            " ORDER BY due_date"
        )
        with self._connect() as conn:
            rows = conn.execute(query, (user_id, today)).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def mark_reminder_sent(self, payment_id: int, tier: ReminderTier) -> bool:
        """Flip the tier flag false → true. Returns False if it was already true."""
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE payments SET {tier.flag_column} = 1"
                f" WHERE id = ? AND {tier.flag_column} = 0",
                (payment_id,),
            )
        return cursor.rowcount > 0

    def mark_overdue_notified(self, payment_id: int) -> bool:
        """Flip the overdue flag false → true. Returns False if it was already true."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE payments SET overdue_notif_sent = 1"
                " WHERE id = ? AND overdue_notif_sent = 0",
                (payment_id,),
            )
        return cursor.rowcount > 0

    def set_notification_handles(
        self, payment_id: int, handles: dict[ReminderTier, str | None],
    ) -> None:
        """Persist schedule handles for the tiers that were actually scheduled."""
        present = {tier: h for tier, h in handles.items() if h}
        if not present:
            return
        assignments = ", ".join(f"{tier.handle_column} = ?" for tier in present)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE payments SET {assignments} WHERE id = ?",
                (*present.values(), payment_id),
            )
        logger.debug("Stored %d handle(s) for payment #%d", len(present), payment_id)

    def release_pending_handles(self) -> int:
        """Forget the handles of unpaid payments' tiers that were never delivered.

        The platform keeps scheduled jobs in memory only, so after a restart
        these handles name nothing. Clearing them lets the poll deliver the
        tiers. Returns the number of handles cleared.
        """
        released = 0
        with self._connect() as conn:
            for tier in ReminderTier:
                cursor = conn.execute(
                    f"UPDATE payments SET {tier.handle_column} = NULL"
                    " WHERE status = 'unpaid'"
                    f" AND {tier.flag_column} = 0"
                    f" AND {tier.handle_column} IS NOT NULL"
                )
                released += cursor.rowcount
        return released

    def update_status(
        self,
        payment_id: int,
        status: str,
        paid_on: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """Landlord-driven status change. Unspecified notes are left untouched."""
        status = PaymentStatus(status).value
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE payments
                   SET status = ?, paid_on = ?, notes = COALESCE(?, notes)
                 WHERE id = ?
                """,
                (status, paid_on, notes, payment_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Payment {payment_id} not found")
        logger.info("Payment #%d marked %s", payment_id, status)
        return self.get_payment(payment_id)

    def delete_payments(self, payment_ids: list[int]) -> int:
        if not payment_ids:
            return 0
        placeholders = ", ".join("?" for _ in payment_ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM payments WHERE id IN ({placeholders})", payment_ids,
            )
        logger.info("Deleted %d payment(s)", cursor.rowcount)
        return cursor.rowcount


class CalendarMappingDB(_SQLiteStore):
    """Lease → external calendar event ids, in creation order."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_event_mappings (
                    lease_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    event_id TEXT    NOT NULL,
                    PRIMARY KEY (lease_id, position)
                )
            """)
        logger.debug("Calendar mapping table initialized at %s", self._db_path)

    def get(self, lease_id: int) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT event_id FROM calendar_event_mappings"
                " WHERE lease_id = ? ORDER BY position",
                (lease_id,),
            ).fetchall()
        return [r["event_id"] for r in rows]

    def put(self, lease_id: int, event_ids: list[str]) -> None:
        """Replace the lease's mapping with `event_ids`."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM calendar_event_mappings WHERE lease_id = ?", (lease_id,),
            )
            conn.executemany(
                "INSERT INTO calendar_event_mappings (lease_id, position, event_id)"
                " VALUES (?, ?, ?)",
                [(lease_id, pos, eid) for pos, eid in enumerate(event_ids)],
            )
        logger.info("Stored %d calendar event id(s) for lease #%d", len(event_ids), lease_id)

    def remove(self, lease_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM calendar_event_mappings WHERE lease_id = ?", (lease_id,),
            )
        return cursor.rowcount > 0
