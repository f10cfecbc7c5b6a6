"""
Pure data models; no CalDAV or Graph imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path
from typing import Any

DEFAULT_CONFIG = Path.home() / ".config/icloud-exchange-sync.conf"

# Source tags embedded in mirror metadata.  CAL3 is the read-only public feed.
SOURCE_TAGS = ("CAL1", "CAL2", "CAL3")
WRITABLE_TAGS = ("CAL1", "CAL2")
PUBLIC_TAG = "CAL3"

BUSY_BLOCK_UID_PREFIX = "mirror-busy-"
BUSY_BLOCK_TITLE = "Busy"
WRITEBACK_UID_PREFIX = "mirror-writeback-"

# Graph showAs values, least to most restrictive ("unknown" sits outside the order).
AVAILABILITY_LEVELS = ("free", "tentative", "busy", "oof", "workingElsewhere")
AVAILABILITY_UNKNOWN = "unknown"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigError(CalendarSyncError):
    """Missing or malformed configuration; raised before any network call."""


class AuthError(CalendarSyncError):
    """A remote system rejected our credentials."""


class CalendarNotFoundError(CalendarSyncError):
    """A calendar required for the whole run does not exist."""


class NetworkError(CalendarSyncError):
    """A single remote call failed (transport error or unexpected status)."""


class NotFoundError(CalendarSyncError):
    """A remote calendar object does not exist."""


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for one sync run, built once and passed explicitly."""

    icloud_username: str
    icloud_password: str
    icloud_cal1: str
    icloud_cal2: str
    ms_tenant_id: str
    ms_client_id: str
    ms_client_secret: str
    ms_user_id: str
    ms_target_calendar: str
    lookback_days: int = 7
    lookahead_days: int = 60
    timezone: str = "UTC"
    icloud_public_url: str | None = None
    busy_source_calendar: str | None = None
    busy_target_calendar: str | None = None
    write_back_tag: str = "CAL1"
    dry_run: bool = False

    @property
    def source_calendars(self) -> dict[str, str]:
        """Writable iCloud calendar names keyed by source tag."""
        return {"CAL1": self.icloud_cal1, "CAL2": self.icloud_cal2}

    @property
    def busy_blocks_enabled(self) -> bool:
        return bool(self.busy_source_calendar and self.busy_target_calendar)


@dataclass(frozen=True)
class SyncWindow:
    """Half-open [start, end) interval of aware UTC instants."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        if start == end:
            return self.start <= start < self.end
        return start < self.end and end > self.start


@dataclass(frozen=True)
class SyncMeta:
    """(source tag, origin uid) pair recovered from a mirror event body."""

    source_tag: str | None = None
    origin_uid: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.origin_uid) and self.source_tag in SOURCE_TAGS

    @property
    def key(self) -> tuple[str, str] | None:
        if not self.is_valid:
            return None
        return (self.source_tag, self.origin_uid)


@dataclass
class NormalizedEvent:
    """A source calendar event with absolute UTC instants."""

    uid: str
    title: str
    start: datetime
    end: datetime
    description: str = ""
    is_all_day: bool = False
    location: str = ""
    calendar: str = ""
    handle: str | None = None
    last_modified: datetime | None = None
    recurrence_id: str | None = None

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Event {self.uid} ends before it starts")

    @property
    def is_occurrence(self) -> bool:
        return self.recurrence_id is not None


@dataclass
class MirrorEvent:
    """An event on the mirror calendar as reported by the Graph API."""

    id: str
    title: str
    start: datetime
    end: datetime
    availability: str = "busy"
    is_all_day: bool = False
    location: str = ""
    body: str | None = None
    identity: str | None = None
    last_modified: datetime | None = None

    @property
    def meta(self) -> SyncMeta:
        from icloud_exchange_sync.metadata import decode_meta

        return decode_meta(self.body)


@dataclass
class SyncStats:
    """Statistics for the forward sync and orphan sweep."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class WriteBackStats:
    """Statistics for write-back (mirror → iCloud)."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped_no_target: int = 0
    candidates: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class BusyBlockStats:
    """Statistics for derived busy blocks."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Outcome of one invocation, serialisable to the result payload."""

    success: bool
    duration_ms: int = 0
    stats: SyncStats | None = None
    write_back: WriteBackStats | None = None
    busy_blocks: BusyBlockStats | None = None
    window: SyncWindow | None = None
    error: str | None = None
    paused: bool = False
    dry_run: bool = False
    status_code: int = 200

    def to_dict(self) -> dict[str, Any]:
        if self.paused:
            return {"success": True, "paused": True}
        if not self.success:
            return {"success": False, "error": self.error, "durationMs": self.duration_ms}

        stats = self.stats or SyncStats()
        write_back = self.write_back or WriteBackStats()
        busy_blocks = self.busy_blocks or BusyBlockStats()

        payload: dict[str, Any] = {
            "success": True,
            "stats": {
                "fetched": stats.fetched,
                "created": stats.created,
                "updated": stats.updated,
                "skipped": stats.skipped,
                "deleted": stats.deleted,
                "durationMs": self.duration_ms,
            },
            "writeBack": {
                "created": write_back.created,
                "updated": write_back.updated,
                "deleted": write_back.deleted,
                "skippedNoTarget": write_back.skipped_no_target,
                "candidates": write_back.candidates,
            },
            "derivedBlocks": {
                "created": busy_blocks.created,
                "updated": busy_blocks.updated,
                "deleted": busy_blocks.deleted,
            },
        }
        if stats.errors:
            payload["stats"]["errors"] = list(stats.errors)
        if write_back.errors:
            payload["writeBack"]["errors"] = list(write_back.errors)
        if busy_blocks.errors:
            payload["derivedBlocks"]["errors"] = list(busy_blocks.errors)
        if self.window is not None:
            payload["window"] = {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
            }
        if self.dry_run:
            payload["dryRun"] = True
        return payload
