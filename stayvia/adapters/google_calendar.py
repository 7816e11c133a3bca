"""Google Calendar adapter — implements CalendarPort for Google Calendar API.

All Google-specific logic lives here. Core modules never import this directly;
they depend on the CalendarPort protocol.

Payment events go to a dedicated secondary calendar (created on first use)
so they never mix with the user's own appointments.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from stayvia.config import settings
from stayvia.integrations.google_auth import (
    get_calendar_service,
    get_calendar_service_for_user,
)
from stayvia.ports.calendar_port import CalendarError, PaymentEvent

logger = logging.getLogger(__name__)


def _build_event_body(event: PaymentEvent) -> dict:
    """Construct a Google Calendar API event body from a PaymentEvent."""
    end = event.start + timedelta(minutes=event.duration_minutes)
    return {
        "summary": event.title,
        "description": event.notes,
        "start": {"dateTime": event.start.isoformat(), "timeZone": settings.TIMEZONE},
        "end": {"dateTime": end.isoformat(), "timeZone": settings.TIMEZONE},
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "popup", "minutes": abs(offset)}
                for offset in event.alarm_offsets_minutes
                if offset <= 0
            ],
        },
    }


def _to_event_dict(item: dict) -> dict:
    start = item.get("start", {})
    end = item.get("end", {})
    return {
        "id": item.get("id", ""),
        "summary": item.get("summary", "(no title)"),
        "start_time": start.get("dateTime", start.get("date", "")),
        "end_time": end.get("dateTime", end.get("date", "")),
        "description": item.get("description", ""),
    }


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarPort."""

    def __init__(self, token_json: str | None = None) -> None:
        self._token_json = token_json
        self._service = None
        self._calendar_ids: dict[str, str] = {}

    def _get_service(self):
        if self._service is None:
            if self._token_json:
                self._service = get_calendar_service_for_user(self._token_json)
            else:
                self._service = get_calendar_service()
        return self._service

    async def request_permission(self) -> bool:
        try:
            self._get_service()
        except Exception as exc:
            logger.warning("Google Calendar access unavailable: %s", exc)
            return False
        return True

    async def get_or_create_calendar(self, name: str) -> str:
        if name in self._calendar_ids:
            return self._calendar_ids[name]

        try:
            service = self._get_service()
            page_token = None
            while True:
                result = service.calendarList().list(pageToken=page_token).execute()
                for entry in result.get("items", []):
                    if entry.get("summary") == name:
                        self._calendar_ids[name] = entry["id"]
                        return entry["id"]
                page_token = result.get("nextPageToken")
                if not page_token:
                    break

            created = (
                service.calendars()
                .insert(body={"summary": name, "timeZone": settings.TIMEZONE})
                .execute()
            )
            logger.info("Created Google calendar '%s' (%s)", name, created["id"])
            self._calendar_ids[name] = created["id"]
            return created["id"]
        except Exception as exc:
            logger.error("Failed to get or create calendar '%s': %s", name, exc)
            raise CalendarError(f"Failed to get or create calendar: {exc}") from exc

    async def create_event(self, calendar_id: str, event: PaymentEvent) -> str:
        try:
            created = (
                self._get_service()
                .events()
                .insert(calendarId=calendar_id, body=_build_event_body(event))
                .execute()
            )
            logger.info(
                "Event created: '%s' on %s — %s",
                event.title, event.start.date().isoformat(), created.get("htmlLink", ""),
            )
            return created["id"]
        except Exception as exc:
            logger.error("Google Calendar API error: %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

    async def update_event(
        self, calendar_id: str, event_id: str, event: PaymentEvent
    ) -> None:
        try:
            self._get_service().events().patch(
                calendarId=calendar_id, eventId=event_id, body=_build_event_body(event),
            ).execute()
            logger.info("Event %s updated to %s", event_id, event.start.isoformat())
        except Exception as exc:
            logger.error("Failed to update event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to update event: {exc}") from exc

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            self._get_service().events().delete(
                calendarId=calendar_id, eventId=event_id
            ).execute()
            logger.info("Event with ID %s deleted successfully.", event_id)
        except Exception as exc:
            logger.error("Failed to delete event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[dict]:
        try:
            service = self._get_service()
            events: list[dict] = []
            page_token = None
            while True:
                result = (
                    service.events()
                    .list(
                        calendarId=calendar_id,
                        timeMin=start.isoformat(),
                        timeMax=end.isoformat(),
                        singleEvents=True,
                        orderBy="startTime",
                        pageToken=page_token,
                    )
                    .execute()
                )
                events.extend(_to_event_dict(item) for item in result.get("items", []))
                page_token = result.get("nextPageToken")
                if not page_token:
                    break

            logger.info(
                "Found %d event(s) in %s between %s and %s",
                len(events), calendar_id, start.date(), end.date(),
            )
            return events
        except Exception as exc:
            logger.error("Failed to list events in %s: %s", calendar_id, exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc
