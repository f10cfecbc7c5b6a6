"""
In-memory fake calendar clients for testing.

Duck-type-compatible stand-ins for ICloudCalendarClient and
GraphCalendarClient.  No network connection is required: events are kept in
plain dicts, and every read hands out copies so the engine can never mutate
the "server" state except through the client methods.
"""

from dataclasses import replace
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from icloud_exchange_sync.metadata import decode_meta
from icloud_exchange_sync.models import AuthError
from icloud_exchange_sync.models import CalendarNotFoundError
from icloud_exchange_sync.models import MirrorEvent
from icloud_exchange_sync.models import NetworkError
from icloud_exchange_sync.models import NormalizedEvent
from icloud_exchange_sync.models import NotFoundError
from icloud_exchange_sync.models import SyncWindow


class FakeSourceClient:
    """In-memory stub that satisfies the ICloudCalendarClient duck-type contract."""

    def __init__(
        self,
        calendars: dict[str, list[NormalizedEvent]] | None = None,
        public_events: list[NormalizedEvent] | None = None,
    ):
        # calendar name → uid → event
        self._calendars: dict[str, dict[str, NormalizedEvent]] = {}
        self._handles: dict[str, tuple[str, str]] = {}
        for name, events in (calendars or {}).items():
            self._calendars[name] = {}
            for event in events:
                self._store(name, event)
        self.public_events = list(public_events or [])
        self.creates: list[str] = []
        self.updates: list[str] = []
        self.deletes: list[str] = []
        # uids whose create/update/delete raise NetworkError
        self.fail_uids: set[str] = set()
        # calendars whose listing raises NetworkError
        self.unreadable: set[str] = set()
        self.connected = False
        self.auth_error = False

    # ------------------------------------------------------------------ #
    # Internal helpers                                                      #
    # ------------------------------------------------------------------ #

    def _store(self, name: str, event: NormalizedEvent, handle: str | None = None) -> str:
        handle = handle or f"fake://{name}/{event.uid}.ics"
        self._calendars[name][event.uid] = replace(event, calendar=name, handle=handle)
        self._handles[handle] = (name, event.uid)
        return handle

    def _check_failure(self, uid: str):
        if uid in self.fail_uids:
            raise NetworkError(f"simulated failure for {uid}")

    # ------------------------------------------------------------------ #
    # ICloudCalendarClient interface                                       #
    # ------------------------------------------------------------------ #

    def connect(self):
        if self.auth_error:
            raise AuthError("iCloud rejected the credentials")
        self.connected = True

    def find_calendar(self, name: str):
        return name if name in self._calendars else None

    def list_in_window(self, calendar: str, window: SyncWindow) -> list[NormalizedEvent]:
        if calendar in self.unreadable:
            raise NetworkError(f"simulated read failure for {calendar}")
        return [
            replace(event)
            for event in self._calendars[calendar].values()
            if window.overlaps(event.start, event.end)
        ]

    def list_public(self, url: str, window: SyncWindow) -> list[NormalizedEvent]:
        return [replace(event) for event in self.public_events if window.overlaps(event.start, event.end)]

    def get(self, calendar: str, uid: str) -> NormalizedEvent | None:
        event = self._calendars[calendar].get(uid)
        return replace(event) if event else None

    def create(self, calendar: str, event: NormalizedEvent, opaque: bool = False) -> str:
        self._check_failure(event.uid)
        self.creates.append(event.uid)
        return self._store(calendar, event)

    def update(self, handle: str, event: NormalizedEvent, opaque: bool = False):
        self._check_failure(event.uid)
        if handle not in self._handles:
            raise NotFoundError(f"no object at {handle}")
        name, uid = self._handles[handle]
        del self._calendars[name][uid]
        self.updates.append(event.uid)
        self._store(name, event, handle)

    def delete(self, handle: str):
        if handle not in self._handles:
            raise NotFoundError(f"no object at {handle}")
        name, uid = self._handles[handle]
        self._check_failure(uid)
        del self._handles[handle]
        del self._calendars[name][uid]
        self.deletes.append(uid)

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def add(self, calendar: str, event: NormalizedEvent):
        self._calendars.setdefault(calendar, {})
        self._store(calendar, event)

    def events(self, calendar: str) -> list[NormalizedEvent]:
        return list(self._calendars[calendar].values())

    def event(self, calendar: str, uid: str) -> NormalizedEvent | None:
        return self._calendars[calendar].get(uid)

    def has_uid(self, calendar: str, uid: str) -> bool:
        return uid in self._calendars[calendar]

    def reset_counters(self):
        """Clear the create/update/delete lists between sync runs."""
        self.creates.clear()
        self.updates.clear()
        self.deletes.clear()


class FakeMirrorClient:
    """In-memory stub that satisfies the GraphCalendarClient duck-type contract.

    Calendars are addressed by name (the name doubles as the calendar id).
    Every write bumps ``last_modified`` from a fake clock.
    """

    def __init__(self, calendars: dict[str, list[MirrorEvent]] | None = None):
        self._calendars: dict[str, dict[str, MirrorEvent]] = {
            name: {event.id: replace(event) for event in events}
            for name, events in (calendars or {}).items()
        }
        self._counter = 0
        self._clock = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
        self.creates: list[str] = []
        self.updates: list[str] = []
        self.deletes: list[str] = []
        self.tags: list[str] = []
        # titles whose create/update raise NetworkError
        self.fail_titles: set[str] = set()
        # ids whose set_body raises NetworkError
        self.fail_tag_ids: set[str] = set()
        self.connected = False
        self.auth_error = False

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def _calendar(self, calendar_id: str) -> dict[str, MirrorEvent]:
        if calendar_id not in self._calendars:
            raise NotFoundError(f"no calendar {calendar_id}")
        return self._calendars[calendar_id]

    # ------------------------------------------------------------------ #
    # GraphCalendarClient interface                                        #
    # ------------------------------------------------------------------ #

    def connect(self):
        if self.auth_error:
            raise AuthError("Graph token request rejected (401)")
        self.connected = True

    def find_calendar(self, name: str) -> str:
        if name not in self._calendars:
            raise CalendarNotFoundError(f"Calendar '{name}' not found in mailbox")
        return name

    def list_in_window(self, calendar_id: str, window: SyncWindow, include_body: bool = False) -> list[MirrorEvent]:
        return [
            replace(event, body=event.body if include_body else None)
            for event in self._calendar(calendar_id).values()
            if window.overlaps(event.start, event.end)
        ]

    def create(self, calendar_id: str, event: MirrorEvent) -> str:
        if event.title in self.fail_titles:
            raise NetworkError(f"simulated failure creating '{event.title}'")
        self._counter += 1
        event_id = f"mirror-{self._counter}"
        self._calendar(calendar_id)[event_id] = replace(
            event,
            id=event_id,
            availability="busy",
            last_modified=self._tick(),
        )
        self.creates.append(event_id)
        return event_id

    def update(self, calendar_id: str, event_id: str, event: MirrorEvent, preserve_availability: bool = False):
        if event.title in self.fail_titles:
            raise NetworkError(f"simulated failure updating '{event.title}'")
        calendar = self._calendar(calendar_id)
        if event_id not in calendar:
            raise NotFoundError(f"no event {event_id}")
        previous = calendar[event_id]
        calendar[event_id] = replace(
            event,
            id=event_id,
            availability="free" if preserve_availability else "busy",
            identity=previous.identity,
            last_modified=self._tick(),
        )
        self.updates.append(event_id)

    def set_body(self, calendar_id: str, event_id: str, body: str):
        if event_id in self.fail_tag_ids:
            raise NetworkError(f"simulated failure tagging {event_id}")
        calendar = self._calendar(calendar_id)
        calendar[event_id] = replace(calendar[event_id], body=body, last_modified=self._tick())
        self.tags.append(event_id)

    def delete(self, calendar_id: str, event_id: str):
        calendar = self._calendar(calendar_id)
        if event_id not in calendar:
            raise NotFoundError(f"no event {event_id}")
        del calendar[event_id]
        self.deletes.append(event_id)

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def add(self, calendar_id: str, event: MirrorEvent):
        self._calendars.setdefault(calendar_id, {})[event.id] = replace(event)

    def events(self, calendar_id: str) -> list[MirrorEvent]:
        return list(self._calendar(calendar_id).values())

    def event(self, calendar_id: str, event_id: str) -> MirrorEvent | None:
        return self._calendar(calendar_id).get(event_id)

    def set_availability(self, calendar_id: str, event_id: str, availability: str):
        calendar = self._calendar(calendar_id)
        calendar[event_id] = replace(calendar[event_id], availability=availability, last_modified=self._tick())

    def claimed_by(self, calendar_id: str, tag: str, uid: str) -> list[MirrorEvent]:
        """Mirror events whose metadata decodes to (tag, uid)."""
        return [
            event
            for event in self._calendar(calendar_id).values()
            if decode_meta(event.body).key == (tag, uid)
        ]

    @property
    def event_count(self) -> int:
        return sum(len(events) for events in self._calendars.values())

    def reset_counters(self):
        """Clear the operation lists between sync runs."""
        self.creates.clear()
        self.updates.clear()
        self.deletes.clear()
        self.tags.clear()
