"""
Microsoft Graph calendar wrapper (the mirror side).
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Optional
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

import requests

from .models import AuthError
from .models import CalendarNotFoundError
from .models import CalendarSyncError
from .models import MirrorEvent
from .models import NetworkError
from .models import NotFoundError
from .models import SyncWindow

GRAPH_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

REQUEST_TIMEOUT = 30
PAGE_SIZE = 100

_EVENT_FIELDS = (
    "id",
    "subject",
    "iCalUId",
    "showAs",
    "start",
    "end",
    "isAllDay",
    "location",
    "lastModifiedDateTime",
)

_logger = logging.getLogger(__name__)


def _zone(name: str | None, fallback: ZoneInfo) -> ZoneInfo:
    if not name:
        return fallback
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return fallback


def _parse_wall_time(value: str) -> datetime:
    # Graph emits seven fractional digits ("2024-01-10T09:00:00.0000000"),
    # more than fromisoformat accepts on older interpreters.
    return datetime.fromisoformat(value[:19])


def format_graph_datetime(instant: datetime, tz: ZoneInfo) -> str:
    """Wall-clock representation of an instant in tz, as Graph expects it."""
    return instant.astimezone(tz).strftime("%Y-%m-%dT%H:%M:%S")


def _all_day_bounds(event: MirrorEvent) -> tuple[date, date]:
    start = event.start.astimezone(timezone.utc).date()
    end = event.end.astimezone(timezone.utc).date()
    if end <= start:
        end = start + timedelta(days=1)
    return start, end


def to_graph_payload(event: MirrorEvent, tz_name: str, preserve_availability: bool = False) -> dict[str, Any]:
    """Build the JSON body for creating or updating a mirror event."""
    tz = ZoneInfo(tz_name)
    if event.is_all_day:
        start_day, end_day = _all_day_bounds(event)
        start = {"dateTime": f"{start_day.isoformat()}T00:00:00", "timeZone": tz_name}
        end = {"dateTime": f"{end_day.isoformat()}T00:00:00", "timeZone": tz_name}
    else:
        start = {"dateTime": format_graph_datetime(event.start, tz), "timeZone": tz_name}
        end = {"dateTime": format_graph_datetime(event.end, tz), "timeZone": tz_name}

    payload: dict[str, Any] = {
        "subject": event.title,
        "start": start,
        "end": end,
        "isAllDay": event.is_all_day,
        "showAs": "free" if preserve_availability else "busy",
        "sensitivity": "private",
        "location": {"displayName": event.location or ""},
    }
    if event.body is not None:
        payload["body"] = {"contentType": "text", "content": event.body}
    return payload


def parse_graph_event(item: dict[str, Any], tz: ZoneInfo) -> MirrorEvent:
    """Convert a Graph event resource into a MirrorEvent with UTC instants."""
    is_all_day = bool(item.get("isAllDay"))
    start_info = item.get("start") or {}
    end_info = item.get("end") or {}

    if is_all_day:
        start_day = _parse_wall_time(start_info["dateTime"]).date()
        end_day = _parse_wall_time(end_info["dateTime"]).date()
        start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=timezone.utc)
        end = datetime(end_day.year, end_day.month, end_day.day, tzinfo=timezone.utc)
    else:
        start_tz = _zone(start_info.get("timeZone"), tz)
        end_tz = _zone(end_info.get("timeZone"), tz)
        start = _parse_wall_time(start_info["dateTime"]).replace(tzinfo=start_tz).astimezone(timezone.utc)
        end = _parse_wall_time(end_info["dateTime"]).replace(tzinfo=end_tz).astimezone(timezone.utc)
    if end < start:
        end = start

    last_modified = None
    if item.get("lastModifiedDateTime"):
        last_modified = _parse_wall_time(item["lastModifiedDateTime"]).replace(tzinfo=timezone.utc)

    body = item.get("body")
    return MirrorEvent(
        id=item["id"],
        title=item.get("subject") or "",
        start=start,
        end=end,
        availability=item.get("showAs") or "unknown",
        is_all_day=is_all_day,
        location=(item.get("location") or {}).get("displayName") or "",
        body=body.get("content") if body else None,
        identity=item.get("iCalUId"),
        last_modified=last_modified,
    )


class GraphCalendarClient:
    """Wrapper for Microsoft Graph calendar operations on one mailbox."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        user_id: str,
        timezone: str = "UTC",
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.user_id = user_id
        self.timezone = timezone
        self.tz = ZoneInfo(timezone)
        self.session = requests.Session()
        self.token: Optional[str] = None

    def connect(self):
        """Acquire an app-only access token (client-credentials grant)."""
        try:
            response = self.session.post(
                TOKEN_URL.format(tenant=self.tenant_id),
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": GRAPH_SCOPE,
                    "grant_type": "client_credentials",
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Failed to reach the Microsoft identity platform: {e}")
        if response.status_code in (400, 401, 403):
            raise AuthError(f"Graph token request rejected ({response.status_code}): {response.text[:200]}")
        if not response.ok:
            raise NetworkError(f"Graph token request failed with HTTP {response.status_code}")
        self.token = response.json()["access_token"]

    def _request(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        if not self.token:
            raise CalendarSyncError("Client not connected")
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Prefer": f'outlook.timezone="{self.timezone}", outlook.body-content-type="text"',
        }
        headers.update(kwargs.pop("headers", {}))
        try:
            response = self.session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"Network error while {action}: {e}")

        if response.status_code == 401:
            raise AuthError(f"Graph rejected the access token while {action}")
        if response.status_code == 403:
            raise AuthError(
                f"Graph denied access while {action}; the app registration needs the "
                f"Calendars.ReadWrite application permission with admin consent"
            )
        if response.status_code == 404:
            raise NotFoundError(f"Not found while {action}")
        if not response.ok:
            raise NetworkError(f"Graph returned HTTP {response.status_code} while {action}: {response.text[:200]}")
        return response

    def _paged(self, url: str, action: str, params: dict | None = None) -> list[dict]:
        items: list[dict] = []
        while url:
            data = self._request("GET", url, action, params=params).json()
            items.extend(data.get("value", []))
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
        return items

    def _calendar_url(self, calendar_id: str) -> str:
        return f"{GRAPH_URL}/users/{self.user_id}/calendars/{calendar_id}"

    def list_calendars(self) -> list[dict]:
        return self._paged(
            f"{GRAPH_URL}/users/{self.user_id}/calendars",
            "listing calendars",
            params={"$select": "id,name"},
        )

    def find_calendar(self, name: str) -> str:
        """Return the id of the calendar with this name; missing is fatal."""
        wanted = name.strip().strip("'\"").strip()
        calendars = self.list_calendars()
        for cal in calendars:
            if (cal.get("name") or "").strip() == wanted:
                return cal["id"]
        available = ", ".join(cal.get("name") or "?" for cal in calendars)
        raise CalendarNotFoundError(f"Calendar '{wanted}' not found in mailbox (available: {available})")

    def list_in_window(self, calendar_id: str, window: SyncWindow, include_body: bool = False) -> list[MirrorEvent]:
        """Events (recurrences expanded) intersecting the window."""
        fields = _EVENT_FIELDS + (("body",) if include_body else ())
        items = self._paged(
            f"{self._calendar_url(calendar_id)}/calendarView",
            "listing mirror events",
            params={
                "startDateTime": window.start.isoformat(),
                "endDateTime": window.end.isoformat(),
                "$select": ",".join(fields),
                "$top": PAGE_SIZE,
            },
        )
        return [parse_graph_event(item, self.tz) for item in items]

    def create(self, calendar_id: str, event: MirrorEvent) -> str:
        response = self._request(
            "POST",
            f"{self._calendar_url(calendar_id)}/events",
            f"creating '{event.title}'",
            json=to_graph_payload(event, self.timezone),
        )
        return response.json()["id"]

    def update(self, calendar_id: str, event_id: str, event: MirrorEvent, preserve_availability: bool = False):
        self._request(
            "PATCH",
            f"{self._calendar_url(calendar_id)}/events/{event_id}",
            f"updating '{event.title}'",
            json=to_graph_payload(event, self.timezone, preserve_availability),
        )

    def set_body(self, calendar_id: str, event_id: str, body: str):
        """Replace only the body; used to tag an existing mirror event."""
        self._request(
            "PATCH",
            f"{self._calendar_url(calendar_id)}/events/{event_id}",
            f"tagging {event_id}",
            json={"body": {"contentType": "text", "content": body}},
        )

    def delete(self, calendar_id: str, event_id: str):
        try:
            self._request("DELETE", f"{self._calendar_url(calendar_id)}/events/{event_id}", f"deleting {event_id}")
        except NotFoundError:
            _logger.debug(f"Mirror event {event_id} already gone")
