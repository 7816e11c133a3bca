"""Payment date generator — pure business logic.

Turns a lease's start date, end date and payment day-of-month into the
ordered list of rent due dates. The first payment coincides with move-in;
every following one lands on the payment day of each later month, clamped
to the month's length.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date


class LeaseValidationError(ValueError):
    """Raised when lease terms cannot produce a payment schedule."""


@dataclass(frozen=True)
class PaymentDate:
    """One generated due date and the amount owed on it."""

    date: date
    amount: float


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int, day: int | None = None) -> date:
    """Move `d` by `n` calendar months, landing on `day` (default d.day).

    The day is clamped to the target month's length: Jan 31 + 1 month is
    Feb 28 (29 in leap years).
    """
    index = d.year * 12 + (d.month - 1) + n
    year, month = index // 12, index % 12 + 1
    return date(year, month, min(day or d.day, days_in_month(year, month)))


def generate_payment_dates(
    start_date: date,
    end_date: date,
    payment_day_of_month: int | None = None,
    amount: float = 0.0,
) -> list[PaymentDate]:
    """Generate the lease's due dates, oldest first.

    Args:
        start_date: Move-in date; always the first due date.
        end_date: Last day of the lease (inclusive).
        payment_day_of_month: Day 1-31 for every later payment. None uses
            start_date's day. Clamped to each month's length, so day 31 in
            February becomes the 28th (29th in leap years).
        amount: Carried onto every entry unchanged.

    Returns:
        Strictly increasing PaymentDate entries within [start_date, end_date].
        When the payment day of end_date's own month falls after end_date,
        that last entry is capped at end_date. An inverted range yields [].
    """
    if end_date < start_date:
        return []

    day = payment_day_of_month or start_date.day
    entries = [PaymentDate(date=start_date, amount=amount)]

    offset = 1
    while True:
        candidate = add_months(start_date, offset, day)

        if candidate > end_date:
            # Final partial month: bill on the last day of the lease instead
            same_month = (candidate.year, candidate.month) == (end_date.year, end_date.month)
            if same_month and end_date > entries[-1].date:
                entries.append(PaymentDate(date=end_date, amount=amount))
            break

        entries.append(PaymentDate(date=candidate, amount=amount))
        offset += 1

    return entries


def parse_iso_date(value: str | date, field_name: str = "date") -> date:
    """Parse a YYYY-MM-DD string (or pass a date through).

    Raises LeaseValidationError on malformed input.
    """
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise LeaseValidationError(f"Invalid {field_name}: {value!r}") from exc


def validate_lease_terms(
    start_date: str | date,
    end_date: str | date,
    payment_day_of_month: int | None,
    monthly_rent_amount: float,
) -> tuple[date, date]:
    """Check lease terms before any schedule is generated.

    Returns the parsed (start, end) dates.
    """
    start = parse_iso_date(start_date, "start date")
    end = parse_iso_date(end_date, "end date")

    if end < start:
        raise LeaseValidationError(
            f"End date {end.isoformat()} is before start date {start.isoformat()}"
        )
    if payment_day_of_month is not None and not 1 <= payment_day_of_month <= 31:
        raise LeaseValidationError(
            f"Payment day must be between 1 and 31, got {payment_day_of_month}"
        )
    if monthly_rent_amount is None or monthly_rent_amount <= 0:
        raise LeaseValidationError(
            f"Monthly rent must be positive, got {monthly_rent_amount}"
        )
    return start, end
