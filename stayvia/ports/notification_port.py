"""Notification port — abstract interface for delivering messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
Scheduled messages are identified by opaque handles; a handle may stop
existing if the provider's store is cleared, so cancelling one that is gone
must not be treated as an error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

# Receives the delivered message's data payload and the recipient's user id.
DeliveredListener = Callable[[dict, int], Awaitable[Any]]

# Receives a scheduled message's data payload just before delivery; False drops it.
DeliveryCheck = Callable[[dict], bool]


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(
        self, user_id: int, text: str, data: dict | None = None
    ) -> None: ...

    async def schedule_message(
        self, user_id: int, text: str, when: datetime, data: dict | None = None
    ) -> str: ...

    async def cancel_scheduled(self, handle: str) -> None: ...

    def add_delivered_listener(self, listener: DeliveredListener) -> None: ...

    def add_delivery_check(self, check: DeliveryCheck) -> None: ...
