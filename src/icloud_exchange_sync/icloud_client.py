"""
iCloud CalDAV connectivity wrapper (the source side).
"""

import logging
from typing import Optional
from zoneinfo import ZoneInfo

import caldav
import requests
from caldav.lib import error as caldav_error

from .ical import build_event_ics
from .ical import events_from_ical
from .ical import merge_event_ics
from .models import AuthError
from .models import CalendarSyncError
from .models import NetworkError
from .models import NormalizedEvent
from .models import NotFoundError
from .models import SyncWindow

ICLOUD_CALDAV_URL = "https://caldav.icloud.com/"

# iCloud exposes these alongside real calendars; they are never sync targets.
EXCLUDED_CALENDARS = ("Holidays", "Birthdays", "Reminders")

REQUEST_TIMEOUT = 30

_logger = logging.getLogger(__name__)


def normalize_calendar_name(name: str | None) -> str:
    return (name or "").strip().strip("'\"").strip()


def public_feed_url(url: str) -> str:
    """Rewrite webcal:// subscription links to https://."""
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


class ICloudCalendarClient:
    """Wrapper for iCloud CalDAV calendar operations."""

    def __init__(
        self,
        username: str,
        password: str,
        timezone: str = "UTC",
        url: str = ICLOUD_CALDAV_URL,
    ):
        self.username = username
        self.password = password
        self.url = url
        self.tz = ZoneInfo(timezone)
        self.client: Optional[caldav.DAVClient] = None
        self.principal = None

    def _call(self, action: str, func, *args, **kwargs):
        """Run a caldav call, mapping its failures onto our error taxonomy."""
        try:
            return func(*args, **kwargs)
        except caldav_error.AuthorizationError as e:
            raise AuthError(f"iCloud rejected the credentials while {action}: {e}")
        except caldav_error.NotFoundError as e:
            raise NotFoundError(f"Not found while {action}: {e}")
        except caldav_error.DAVError as e:
            raise NetworkError(f"CalDAV error while {action}: {e}")
        except OSError as e:
            raise NetworkError(f"Network error while {action}: {e}")

    def connect(self, timeout: int = REQUEST_TIMEOUT):
        """Authenticate and resolve the CalDAV principal."""
        self.client = caldav.DAVClient(
            url=self.url,
            username=self.username,
            password=self.password,
            timeout=timeout,
        )
        self.principal = self._call("connecting to iCloud", self.client.principal)

    def _require_principal(self):
        if self.principal is None:
            raise CalendarSyncError("Client not connected")
        return self.principal

    def list_calendars(self) -> list:
        """Return the user's calendars, without iCloud's system calendars."""
        principal = self._require_principal()
        calendars = self._call("listing calendars", principal.calendars)
        return [
            cal
            for cal in calendars
            if normalize_calendar_name(cal.name) not in EXCLUDED_CALENDARS
        ]

    def find_calendar(self, name: str):
        """Return the calendar with this display name, or None."""
        wanted = normalize_calendar_name(name)
        calendars = self.list_calendars()
        for cal in calendars:
            if normalize_calendar_name(cal.name) == wanted:
                return cal
        available = ", ".join(normalize_calendar_name(cal.name) for cal in calendars)
        _logger.warning(f"iCloud calendar '{wanted}' not found (available: {available})")
        return None

    def list_in_window(self, calendar, window: SyncWindow) -> list[NormalizedEvent]:
        """Fetch events intersecting the window, recurring series expanded."""
        label = normalize_calendar_name(calendar.name)
        objects = self._call(
            f"searching '{label}'",
            calendar.search,
            start=window.start,
            end=window.end,
            event=True,
        )
        events = []
        for obj in objects:
            events.extend(events_from_ical(obj.data, label, self.tz, str(obj.url), window))
        return events

    def list_public(self, url: str, window: SyncWindow) -> list[NormalizedEvent]:
        """Fetch a public (webcal) feed and return its events in the window."""
        feed_url = public_feed_url(url)
        try:
            response = requests.get(feed_url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise NetworkError(f"Failed to fetch public calendar: {e}")
        if response.status_code == 404:
            raise NotFoundError(f"Public calendar not found: {feed_url}")
        if not response.ok:
            raise NetworkError(f"Public calendar returned HTTP {response.status_code}")
        return events_from_ical(response.content, "public", self.tz, None, window)

    def get(self, calendar, uid: str) -> NormalizedEvent | None:
        """Look an event up by uid regardless of the sync window."""
        try:
            obj = self._call(f"looking up {uid}", calendar.event_by_uid, uid)
        except NotFoundError:
            return None
        events = events_from_ical(obj.data, normalize_calendar_name(calendar.name), self.tz, str(obj.url))
        return events[0] if events else None

    def create(self, calendar, event: NormalizedEvent, opaque: bool = False) -> str:
        """Create the event (PUT by uid, so a retry overwrites) and return its URL."""
        ics = build_event_ics(event, opaque=opaque)
        obj = self._call(f"creating {event.uid}", calendar.save_event, ics)
        return str(obj.url)

    def update(self, handle: str, event: NormalizedEvent, opaque: bool = False):
        """Edit the stored object in place so properties we do not sync survive."""
        obj = caldav.Event(client=self.client, url=handle)
        self._call(f"loading {event.uid}", obj.load)
        try:
            obj.data = merge_event_ics(obj.data, event, opaque=opaque)
        except ValueError as e:
            raise NetworkError(f"Cannot update {event.uid}: stored object unusable ({e})")
        self._call(f"updating {event.uid}", obj.save)

    def delete(self, handle: str):
        obj = caldav.Event(client=self.client, url=handle)
        self._call(f"deleting {handle}", obj.delete)
