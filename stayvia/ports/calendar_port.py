"""Calendar port — abstract interface for calendar operations.

Core modules depend on this protocol, never on a specific provider.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""


class PaymentEvent(BaseModel):
    """A rent payment as it appears on the user's calendar.

    JSON example:
    {
        "title": "Rent Payment - Sunny Loft",
        "start": "2024-02-15T09:00:00+08:00",
        "duration_minutes": 30,
        "notes": "Monthly rent payment of ₱15,000 for Sunny Loft\\nRental ID: 4",
        "alarm_offsets_minutes": [-1440, -60, 0]
    }
    """

    title: str
    start: datetime
    duration_minutes: int = 30
    notes: str = ""
    # Negative offsets fire before the event start
    alarm_offsets_minutes: list[int] = [-1440, -60, 0]


class CalendarPort(Protocol):
    """Abstract calendar interface used by core modules."""

    async def request_permission(self) -> bool: ...

    async def get_or_create_calendar(self, name: str) -> str: ...

    async def create_event(self, calendar_id: str, event: PaymentEvent) -> str: ...

    async def update_event(
        self, calendar_id: str, event_id: str, event: PaymentEvent
    ) -> None: ...

    async def delete_event(self, calendar_id: str, event_id: str) -> None: ...

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[dict]: ...
