"""
Tests for Graph payload conversion and HTTP error mapping.

No network: the client's requests.Session is swapped for a scripted stub.
"""

from zoneinfo import ZoneInfo

import pytest

from icloud_exchange_sync.graph_client import GraphCalendarClient
from icloud_exchange_sync.graph_client import parse_graph_event
from icloud_exchange_sync.graph_client import to_graph_payload
from icloud_exchange_sync.models import AuthError
from icloud_exchange_sync.models import CalendarNotFoundError
from icloud_exchange_sync.models import NetworkError
from icloud_exchange_sync.models import NotFoundError
from icloud_exchange_sync.models import SyncWindow
from tests.conftest import make_mirror_event
from tests.conftest import utc

# ---------------------------------------------------------------------------
# Payload conversion
# ---------------------------------------------------------------------------


def test_timed_payload_uses_wall_time_in_configured_zone():
    event = make_mirror_event("", "Dentist", start=utc(2024, 1, 10, 14, 0), location="Main St", body="notes")
    payload = to_graph_payload(event, "America/New_York")
    assert payload["start"] == {"dateTime": "2024-01-10T09:00:00", "timeZone": "America/New_York"}
    assert payload["end"] == {"dateTime": "2024-01-10T10:00:00", "timeZone": "America/New_York"}
    assert payload["showAs"] == "busy"
    assert payload["sensitivity"] == "private"
    assert payload["location"] == {"displayName": "Main St"}
    assert payload["body"] == {"contentType": "text", "content": "notes"}
    assert payload["isAllDay"] is False


def test_payload_preserves_free_when_asked():
    event = make_mirror_event("", "Call")
    assert to_graph_payload(event, "UTC", preserve_availability=True)["showAs"] == "free"


def test_all_day_payload_uses_midnight_dates():
    event = make_mirror_event("", "Holiday", start=utc(2024, 1, 10), end=utc(2024, 1, 11), is_all_day=True)
    payload = to_graph_payload(event, "Europe/Berlin")
    assert payload["start"] == {"dateTime": "2024-01-10T00:00:00", "timeZone": "Europe/Berlin"}
    assert payload["end"] == {"dateTime": "2024-01-11T00:00:00", "timeZone": "Europe/Berlin"}
    assert payload["isAllDay"] is True


def test_parse_timed_event():
    item = {
        "id": "AAMk1",
        "subject": "Dentist",
        "iCalUId": "040000008200E00074C5B7101A82E008",
        "showAs": "tentative",
        "isAllDay": False,
        "start": {"dateTime": "2024-01-10T10:00:00.0000000", "timeZone": "Europe/Berlin"},
        "end": {"dateTime": "2024-01-10T11:00:00.0000000", "timeZone": "Europe/Berlin"},
        "location": {"displayName": "Main St"},
        "body": {"contentType": "text", "content": "notes\r\n\r\nSynced UID: CAL1 abc1"},
        "lastModifiedDateTime": "2024-01-09T08:00:00.1234567Z",
    }
    event = parse_graph_event(item, ZoneInfo("UTC"))
    assert event.id == "AAMk1"
    assert event.title == "Dentist"
    assert event.start == utc(2024, 1, 10, 9, 0)
    assert event.end == utc(2024, 1, 10, 10, 0)
    assert event.availability == "tentative"
    assert event.location == "Main St"
    assert event.identity == "040000008200E00074C5B7101A82E008"
    assert event.last_modified == utc(2024, 1, 9, 8, 0)
    assert event.meta.key == ("CAL1", "abc1")


def test_parse_all_day_event_keeps_local_dates():
    item = {
        "id": "AAMk2",
        "subject": "Holiday",
        "isAllDay": True,
        "start": {"dateTime": "2024-01-10T00:00:00.0000000", "timeZone": "Europe/Berlin"},
        "end": {"dateTime": "2024-01-11T00:00:00.0000000", "timeZone": "Europe/Berlin"},
    }
    event = parse_graph_event(item, ZoneInfo("Europe/Berlin"))
    assert event.is_all_day
    assert event.start == utc(2024, 1, 10)
    assert event.end == utc(2024, 1, 11)
    assert event.body is None
    assert event.availability == "unknown"


def test_parse_falls_back_to_client_zone_for_windows_names():
    item = {
        "id": "AAMk3",
        "subject": "Call",
        "start": {"dateTime": "2024-01-10T09:00:00.0000000", "timeZone": "Pacific Standard Time"},
        "end": {"dateTime": "2024-01-10T10:00:00.0000000", "timeZone": "Pacific Standard Time"},
    }
    event = parse_graph_event(item, ZoneInfo("America/Los_Angeles"))
    assert event.start == utc(2024, 1, 10, 17, 0)


# ---------------------------------------------------------------------------
# HTTP behaviour
# ---------------------------------------------------------------------------


class _Response:
    def __init__(self, status_code: int, payload: dict | None = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = str(self._payload)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


class _Session:
    """Replays scripted responses and records the requests made."""

    def __init__(self, *responses: _Response):
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


def _client(*responses: _Response) -> GraphCalendarClient:
    client = GraphCalendarClient("tenant", "client", "secret", "me@example.com", timezone="UTC")
    client.session = _Session(*responses)
    client.token = "token"
    return client


def test_connect_stores_token_and_rejects_bad_credentials():
    client = GraphCalendarClient("tenant", "client", "secret", "me@example.com")
    client.session = _Session(_Response(200, {"access_token": "abc"}))
    client.connect()
    assert client.token == "abc"

    client.session = _Session(_Response(401, {"error": "invalid_client"}))
    with pytest.raises(AuthError):
        client.connect()


def test_calendar_view_follows_next_link():
    client = _client(
        _Response(200, {
            "value": [{"id": "1", "subject": "A", "start": {"dateTime": "2024-01-10T09:00:00"},
                       "end": {"dateTime": "2024-01-10T10:00:00"}}],
            "@odata.nextLink": "https://graph.microsoft.com/v1.0/next-page",
        }),
        _Response(200, {
            "value": [{"id": "2", "subject": "B", "start": {"dateTime": "2024-01-11T09:00:00"},
                       "end": {"dateTime": "2024-01-11T10:00:00"}}],
        }),
    )
    events = client.list_in_window("cal", SyncWindow(utc(2024, 1, 1), utc(2024, 2, 1)), include_body=True)

    assert [event.id for event in events] == ["1", "2"]
    first_call, second_call = client.session.calls
    assert "body" in first_call[2]["params"]["$select"]
    assert second_call[1] == "https://graph.microsoft.com/v1.0/next-page"
    assert second_call[2]["params"] is None
    assert 'outlook.body-content-type="text"' in first_call[2]["headers"]["Prefer"]


@pytest.mark.parametrize(
    "status,error",
    [(401, AuthError), (403, AuthError), (404, NotFoundError), (500, NetworkError), (429, NetworkError)],
)
def test_status_codes_map_to_error_taxonomy(status, error):
    client = _client(_Response(status, {"error": {"code": "x"}}))
    with pytest.raises(error):
        client.update("cal", "id", make_mirror_event("", "Dentist"))


def test_forbidden_error_mentions_permission():
    client = _client(_Response(403))
    with pytest.raises(AuthError, match="Calendars.ReadWrite"):
        client.set_body("cal", "id", "body")


def test_delete_treats_missing_event_as_done():
    client = _client(_Response(404))
    client.delete("cal", "id")


def test_find_calendar_raises_with_available_names():
    client = _client(_Response(200, {"value": [{"id": "c1", "name": "Calendar"}, {"id": "c2", "name": "Mirror"}]}))
    assert client.find_calendar(' "Mirror" ') == "c2"

    client = _client(_Response(200, {"value": [{"id": "c1", "name": "Calendar"}]}))
    with pytest.raises(CalendarNotFoundError, match="Calendar"):
        client.find_calendar("Mirror")
