"""
Shared pytest fixtures and event helpers.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from icloud_exchange_sync.config import build_config
from icloud_exchange_sync.metadata import encode_meta
from icloud_exchange_sync.models import MirrorEvent
from icloud_exchange_sync.models import NormalizedEvent
from icloud_exchange_sync.sync.snapshot import take_snapshot
from icloud_exchange_sync.sync.utils import calculate_sync_window
from tests.fake_client import FakeMirrorClient
from tests.fake_client import FakeSourceClient

CAL1_NAME = "Home"
CAL2_NAME = "Family"
MIRROR_CAL = "iCloud Mirror"
BUSY_SOURCE_CAL = "Bookings"

# Fixed "current time" for every run: window is 2023-12-29 → 2024-02-05 (UTC).
NOW = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)

BASE_SETTINGS = {
    "ICLOUD_USERNAME": "user@example.com",
    "ICLOUD_APP_PASSWORD": "abcd-efgh-ijkl-mnop",
    "ICLOUD_CAL1": CAL1_NAME,
    "ICLOUD_CAL2": CAL2_NAME,
    "MS_TENANT_ID": "tenant",
    "MS_CLIENT_ID": "client",
    "MS_CLIENT_SECRET": "secret",
    "MS_USER_ID": "me@example.com",
    "MS_TARGET_CALENDAR_NAME": MIRROR_CAL,
    "SYNC_LOOKBACK_DAYS": "7",
    "SYNC_LOOKAHEAD_DAYS": "30",
    "TIMEZONE": "UTC",
}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_event(
    uid: str,
    title: str = "Test Event",
    start: datetime = utc(2024, 1, 10, 9, 0),
    end: datetime | None = None,
    **kwargs,
) -> NormalizedEvent:
    """Return a source event lasting one hour unless ``end`` is given."""
    return NormalizedEvent(uid=uid, title=title, start=start, end=end or start + timedelta(hours=1), **kwargs)


def make_mirror_event(
    event_id: str,
    title: str = "Test Event",
    start: datetime = utc(2024, 1, 10, 9, 0),
    end: datetime | None = None,
    tag: str | None = None,
    uid: str | None = None,
    **kwargs,
) -> MirrorEvent:
    """Return a mirror event, tagged with (tag, uid) when both are given."""
    if tag and uid:
        kwargs["body"] = encode_meta(tag, uid, kwargs.get("body") or "")
    return MirrorEvent(id=event_id, title=title, start=start, end=end or start + timedelta(hours=1), **kwargs)


def make_settings(**overrides) -> dict[str, str]:
    settings = dict(BASE_SETTINGS)
    settings.update(overrides)
    return settings


def read_snapshot(config, source_client, mirror_client, window):
    """Connect the fakes and take a snapshot the way the synchronizer does."""
    source_client.connect()
    mirror_client.connect()
    return take_snapshot(config, logging.getLogger("test_sync"), source_client, mirror_client, window)


@pytest.fixture
def sync_config():
    return build_config(BASE_SETTINGS)


@pytest.fixture
def dry_run_config():
    return build_config(BASE_SETTINGS, dry_run=True)


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def window():
    return calculate_sync_window(7, 30, "UTC", now=NOW)


@pytest.fixture
def source_client():
    return FakeSourceClient({CAL1_NAME: [], CAL2_NAME: []})


@pytest.fixture
def mirror_client():
    return FakeMirrorClient({MIRROR_CAL: []})
