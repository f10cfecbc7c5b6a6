"""
Stateless matching and indexing helpers shared by the sync flows.
"""

import hashlib
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone
from zoneinfo import ZoneInfo

from icloud_exchange_sync.models import BUSY_BLOCK_UID_PREFIX
from icloud_exchange_sync.models import WRITEBACK_UID_PREFIX
from icloud_exchange_sync.models import MirrorEvent
from icloud_exchange_sync.models import NormalizedEvent
from icloud_exchange_sync.models import SyncWindow


def calculate_sync_window(
    lookback_days: int,
    lookahead_days: int,
    timezone_name: str = "UTC",
    now: datetime | None = None,
) -> SyncWindow:
    """Window from local midnight lookback_days ago to the end of the day lookahead_days ahead."""
    tz = ZoneInfo(timezone_name)
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    first_day = local_now.date() - timedelta(days=lookback_days)
    last_day = local_now.date() + timedelta(days=lookahead_days)
    start = datetime.combine(first_day, time.min, tzinfo=tz)
    end = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=tz)
    return SyncWindow(start=start.astimezone(timezone.utc), end=end.astimezone(timezone.utc))


def compute_fingerprint(value: str) -> str:
    """Short, stable digest used to derive deterministic uids."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:24]


def busy_block_uid(secondary_event_id: str) -> str:
    return f"{BUSY_BLOCK_UID_PREFIX}{secondary_event_id}"


def busy_block_source_id(uid: str) -> str | None:
    if not is_busy_block_uid(uid):
        return None
    return uid[len(BUSY_BLOCK_UID_PREFIX):]


def is_busy_block_uid(uid: str | None) -> bool:
    return bool(uid) and uid.startswith(BUSY_BLOCK_UID_PREFIX)


def writeback_uid(mirror_event_id: str) -> str:
    """Deterministic uid for the source copy of a mirror-created event."""
    return f"{WRITEBACK_UID_PREFIX}{compute_fingerprint(mirror_event_id)}"


def is_writeback_uid(uid: str | None) -> bool:
    return bool(uid) and uid.startswith(WRITEBACK_UID_PREFIX)


def build_mirror_index(
    mirror_events: list[MirrorEvent],
) -> tuple[dict[tuple[str, str], MirrorEvent], list[MirrorEvent]]:
    """Index mirror events by decoded (tag, uid).

    The first event claiming a key wins; later claimants are returned
    separately as duplicates.  Events without valid metadata are left out.
    """
    index: dict[tuple[str, str], MirrorEvent] = {}
    duplicates: list[MirrorEvent] = []
    for event in mirror_events:
        key = event.meta.key
        if key is None:
            continue
        if key in index:
            duplicates.append(event)
        else:
            index[key] = event
    return index, duplicates


def build_identity_index(mirror_events: list[MirrorEvent]) -> dict[str, MirrorEvent]:
    """Unclaimed mirror events keyed by their cross-system identity."""
    index: dict[str, MirrorEvent] = {}
    for event in mirror_events:
        if event.identity and not event.meta.is_valid:
            index.setdefault(event.identity, event)
    return index


def events_differ(source: NormalizedEvent, mirror: MirrorEvent) -> bool:
    """True when title, timing or location disagree between the two copies."""
    return (
        (source.title or "") != (mirror.title or "")
        or source.start != mirror.start
        or source.end != mirror.end
        or source.is_all_day != mirror.is_all_day
        or (source.location or "") != (mirror.location or "")
    )


def mirror_is_newer(mirror: MirrorEvent, source: NormalizedEvent) -> bool:
    """Whether the mirror copy was edited after the source copy.

    Without both timestamps the source is assumed authoritative.
    """
    if mirror.last_modified is None or source.last_modified is None:
        return False
    return mirror.last_modified > source.last_modified


def record_error(errors: list[str], logger, label: str, error: Exception):
    """Log a per-item failure and append it to the flow's error list."""
    logger.error(f"{label}: {error}")
    errors.append(f"{label}: {error}")
