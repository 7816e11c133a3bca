"""Calendar adapter factory — maps CALENDAR_PROVIDER to a per-user adapter.

Every user mirrors payments into their own account, so the bot asks for a
fresh adapter per command, built from the credentials stored on the user.
Provider modules are imported on first use; a deployment only needs the
client library of the provider it runs.
"""

from __future__ import annotations

from typing import Callable

from stayvia.config import settings
from stayvia.ports.calendar_port import CalendarPort


def _google(credentials: str | None) -> CalendarPort:
    from stayvia.adapters.google_calendar import GoogleCalendarAdapter

    return GoogleCalendarAdapter(token_json=credentials)


def _caldav(credentials: str | None) -> CalendarPort:
    from stayvia.adapters.caldav_calendar import CalDAVCalendarAdapter

    return CalDAVCalendarAdapter(cred_json=credentials)


_BUILDERS: dict[str, Callable[[str | None], CalendarPort]] = {
    "google": _google,
    "caldav": _caldav,
}


def supported_providers() -> list[str]:
    return sorted(_BUILDERS)


def create_calendar_adapter(token_json: str | None = None) -> CalendarPort:
    """Return an adapter for the configured provider, bound to one user.

    Args:
        token_json: The user's stored credentials: a Google OAuth token, or
            CalDAV {"url", "username", "password"}. None falls back to the
            shared credentials from settings.

    Raises:
        ValueError: CALENDAR_PROVIDER names no known provider.
    """
    provider = settings.CALENDAR_PROVIDER.strip().lower()
    builder = _BUILDERS.get(provider)
    if builder is None:
        raise ValueError(
            f"Unknown CALENDAR_PROVIDER: {provider!r} "
            f"(supported: {', '.join(supported_providers())})"
        )
    return builder(token_json)
