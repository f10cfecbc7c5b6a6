"""
Consistent read of both sides, taken before any flow mutates anything.

Flows keep the snapshot current as they write (a created source event is
upserted, a deleted one removed, a tagged mirror event gets its new body) so
that later flows in the same run decide from what the calendars now hold.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import Any

from icloud_exchange_sync.models import PUBLIC_TAG
from icloud_exchange_sync.models import MirrorEvent
from icloud_exchange_sync.models import NetworkError
from icloud_exchange_sync.models import NormalizedEvent
from icloud_exchange_sync.models import NotFoundError
from icloud_exchange_sync.models import SyncConfig
from icloud_exchange_sync.models import SyncWindow


@dataclass
class SourceSnapshot:
    """Events read from one iCloud calendar (or the public feed)."""

    tag: str | None
    name: str
    ref: Any = None
    events: list[NormalizedEvent] = field(default_factory=list)
    available: bool = False

    def __post_init__(self):
        self._index: dict[str, NormalizedEvent] = {}
        for event in self.events:
            self._index.setdefault(event.uid, event)

    def get(self, uid: str) -> NormalizedEvent | None:
        return self._index.get(uid)

    def uids(self) -> set[str]:
        return set(self._index)

    def upsert(self, event: NormalizedEvent):
        previous = self._index.get(event.uid)
        if previous is not None:
            self.events[self.events.index(previous)] = event
        else:
            self.events.append(event)
        self._index[event.uid] = event

    def remove(self, uid: str):
        previous = self._index.pop(uid, None)
        if previous is not None:
            self.events.remove(previous)


@dataclass
class Snapshot:
    window: SyncWindow
    mirror_calendar_id: str
    sources: dict[str, SourceSnapshot]
    mirror: list[MirrorEvent]
    busy_calendar_id: str | None = None
    busy_events: list[MirrorEvent] | None = None
    busy_target: SourceSnapshot | None = None

    @property
    def fetched_count(self) -> int:
        return sum(len(source.events) for source in self.sources.values())

    def known_uids(self) -> dict[str, set[str]]:
        return {tag: source.uids() for tag, source in self.sources.items() if source.available}

    def mirror_identities(self) -> set[str]:
        return {event.identity for event in self.mirror if event.identity}

    def retag(self, mirror_id: str, body: str):
        for event in self.mirror:
            if event.id == mirror_id:
                event.body = body


def _read_source(logger, source_client, tag: str | None, name: str, window: SyncWindow) -> SourceSnapshot:
    """Read one iCloud calendar; a missing or failing calendar is marked unavailable."""
    try:
        ref = source_client.find_calendar(name)
        if ref is None:
            return SourceSnapshot(tag, name)
        events = source_client.list_in_window(ref, window)
    except (NetworkError, NotFoundError) as e:
        logger.error(f"Failed to read iCloud calendar '{name}': {e}")
        return SourceSnapshot(tag, name)
    logger.info(f"Fetched {len(events)} events from '{name}'" + (f" ({tag})" if tag else ""))
    return SourceSnapshot(tag, name, ref, events, available=True)


def _read_public(logger, source_client, url: str, window: SyncWindow) -> SourceSnapshot:
    try:
        events = source_client.list_public(url, window)
    except (NetworkError, NotFoundError) as e:
        logger.error(f"Failed to read public calendar: {e}")
        return SourceSnapshot(PUBLIC_TAG, "public")
    logger.info(f"Fetched {len(events)} events from public calendar ({PUBLIC_TAG})")
    return SourceSnapshot(PUBLIC_TAG, "public", url, events, available=True)


def take_snapshot(
    config: SyncConfig,
    logger,
    source_client,
    mirror_client,
    window: SyncWindow,
) -> Snapshot:
    """Read every calendar the run needs.

    Locating the mirror (or the secondary availability calendar) and reading
    the mirror are fatal on failure; iCloud calendars degrade to unavailable.
    """
    mirror_calendar_id = mirror_client.find_calendar(config.ms_target_calendar)

    sources: dict[str, SourceSnapshot] = {}
    for tag, name in config.source_calendars.items():
        sources[tag] = _read_source(logger, source_client, tag, name, window)
    if config.icloud_public_url:
        sources[PUBLIC_TAG] = _read_public(logger, source_client, config.icloud_public_url, window)

    logger.info("Fetching mirror events...")
    mirror = mirror_client.list_in_window(mirror_calendar_id, window, include_body=True)
    logger.info(f"Fetched {len(mirror)} events from mirror calendar '{config.ms_target_calendar}'")

    snapshot = Snapshot(window, mirror_calendar_id, sources, mirror)

    if config.busy_blocks_enabled:
        snapshot.busy_calendar_id = mirror_client.find_calendar(config.busy_source_calendar)
        try:
            snapshot.busy_events = mirror_client.list_in_window(snapshot.busy_calendar_id, window)
        except (NetworkError, NotFoundError) as e:
            logger.error(f"Failed to read availability calendar '{config.busy_source_calendar}': {e}")

        target_name = config.busy_target_calendar.strip()
        for source in sources.values():
            if source.tag != PUBLIC_TAG and source.name.strip() == target_name:
                snapshot.busy_target = source
                break
        else:
            snapshot.busy_target = _read_source(logger, source_client, None, target_name, window)

    return snapshot
