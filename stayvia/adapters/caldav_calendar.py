"""CalDAV calendar adapter — implements CalendarPort for CalDAV servers.

Supports iCloud, Nextcloud, Fastmail, and any CalDAV-compliant server.
Uses the caldav library (sync) wrapped with asyncio.to_thread for async
compatibility.

Calendar ids are the calendar collection URLs; event ids are the VEVENT UIDs.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta

import caldav
from caldav.lib.error import NotFoundError
from icalendar import Alarm as iAlarm
from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent

from stayvia.config import settings
from stayvia.ports.calendar_port import CalendarError, PaymentEvent

logger = logging.getLogger(__name__)


def _build_vevent(event: PaymentEvent, uid: str | None = None) -> str:
    """Build an iCalendar VEVENT string with one VALARM per alarm offset."""
    cal = iCalendar()
    cal.add("prodid", "-//StayVia Reminders//EN")
    cal.add("version", "2.0")

    vevent = iEvent()
    vevent.add("uid", uid or str(uuid.uuid4()))
    vevent.add("summary", event.title)
    vevent.add("description", event.notes)
    vevent.add("dtstart", event.start)
    vevent.add("dtend", event.start + timedelta(minutes=event.duration_minutes))

    for offset in event.alarm_offsets_minutes:
        alarm = iAlarm()
        alarm.add("action", "DISPLAY")
        alarm.add("description", event.title)
        alarm.add("trigger", timedelta(minutes=offset))
        vevent.add_component(alarm)

    cal.add_component(vevent)
    return cal.to_ical().decode("utf-8")


def _parse_vevent(event_data: caldav.Event) -> dict:
    """Parse a CalDAV event into the standard dict format."""
    try:
        cal = iCalendar.from_ical(event_data.data)
    except Exception as exc:
        logger.warning("Unparseable CalDAV event skipped: %s", exc)
        return {"id": "", "summary": "(parse error)", "start_time": "", "end_time": "",
                "description": ""}

    for component in cal.walk("VEVENT"):
        dtstart = component.get("dtstart")
        dtend = component.get("dtend")
        return {
            "id": str(component.get("uid", "")),
            "summary": str(component.get("summary", "(no title)")),
            "start_time": dtstart.dt.isoformat() if dtstart else "",
            "end_time": dtend.dt.isoformat() if dtend else "",
            "description": str(component.get("description", "")),
        }

    return {"id": "", "summary": "(no event)", "start_time": "", "end_time": "",
            "description": ""}


class CalDAVCalendarAdapter:
    """CalDAV implementation of CalendarPort.

    Args:
        cred_json: Per-user credentials as JSON {"url", "username",
            "password"}. Missing keys fall back to the CALDAV_* settings.
    """

    def __init__(self, cred_json: str | None = None) -> None:
        creds = json.loads(cred_json) if cred_json else {}
        self._url = creds.get("url") or settings.CALDAV_URL
        self._username = creds.get("username") or settings.CALDAV_USERNAME
        self._password = creds.get("password") or settings.CALDAV_PASSWORD
        self._principal: caldav.Principal | None = None
        self._calendars: dict[str, caldav.Calendar] = {}

    def _get_principal(self) -> caldav.Principal:
        if self._principal is None:
            if not self._url:
                raise CalendarError("CALDAV_URL is not configured.")
            client = caldav.DAVClient(
                url=self._url, username=self._username, password=self._password,
            )
            self._principal = client.principal()
        return self._principal

    def _find_or_make(self, name: str) -> caldav.Calendar:
        principal = self._get_principal()
        for cal in principal.calendars():
            if cal.name == name:
                return cal
        logger.info("Creating CalDAV calendar '%s'", name)
        return principal.make_calendar(name=name)

    def _get_calendar(self, calendar_id: str) -> caldav.Calendar:
        if calendar_id not in self._calendars:
            self._calendars[calendar_id] = self._get_principal().calendar(cal_url=calendar_id)
        return self._calendars[calendar_id]

    async def request_permission(self) -> bool:
        try:
            await asyncio.to_thread(self._get_principal)
        except Exception as exc:
            logger.warning("CalDAV server unavailable: %s", exc)
            return False
        return True

    async def get_or_create_calendar(self, name: str) -> str:
        try:
            cal = await asyncio.to_thread(self._find_or_make, name)
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (get_or_create_calendar): %s", exc)
            raise CalendarError(f"Failed to get or create calendar: {exc}") from exc

        calendar_id = str(cal.url)
        self._calendars[calendar_id] = cal
        return calendar_id

    async def create_event(self, calendar_id: str, event: PaymentEvent) -> str:
        uid = str(uuid.uuid4())
        vcal = _build_vevent(event, uid=uid)
        try:
            cal = self._get_calendar(calendar_id)
            await asyncio.to_thread(cal.save_event, vcal)
            logger.info("CalDAV event created: '%s' on %s", event.title, event.start.date())
            return uid
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (create_event): %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

    async def update_event(
        self, calendar_id: str, event_id: str, event: PaymentEvent
    ) -> None:
        try:
            cal = self._get_calendar(calendar_id)
            existing = await asyncio.to_thread(cal.event_by_uid, event_id)
            existing.data = _build_vevent(event, uid=event_id)
            await asyncio.to_thread(existing.save)
            logger.info("CalDAV event %s updated to %s", event_id, event.start.isoformat())
        except NotFoundError as exc:
            raise CalendarError(f"Event with UID {event_id} not found.") from exc
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (update_event): %s", exc)
            raise CalendarError(f"Failed to update event: {exc}") from exc

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            cal = self._get_calendar(calendar_id)
            existing = await asyncio.to_thread(cal.event_by_uid, event_id)
            await asyncio.to_thread(existing.delete)
            logger.info("CalDAV event %s deleted.", event_id)
        except NotFoundError as exc:
            raise CalendarError(f"Event with UID {event_id} not found.") from exc
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (delete_event): %s", exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[dict]:
        try:
            cal = self._get_calendar(calendar_id)
            results = await asyncio.to_thread(cal.search, start=start, end=end, event=True)
            events = [_parse_vevent(ev) for ev in results]
            logger.info(
                "Found %d CalDAV event(s) between %s and %s", len(events), start.date(), end.date(),
            )
            return events
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (list_events): %s", exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc
