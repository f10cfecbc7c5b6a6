"""
iCloud→mirror forward sync.
"""

from ..metadata import encode_meta
from ..models import MirrorEvent
from ..models import NetworkError
from ..models import NormalizedEvent
from ..models import NotFoundError
from ..models import SyncConfig
from ..models import SyncStats
from .snapshot import Snapshot
from .utils import build_identity_index
from .utils import build_mirror_index
from .utils import events_differ
from .utils import record_error


def _mirror_copy(tag: str, event: NormalizedEvent) -> MirrorEvent:
    return MirrorEvent(
        id="",
        title=event.title,
        start=event.start,
        end=event.end,
        availability="busy",
        is_all_day=event.is_all_day,
        location=event.location,
        body=encode_meta(tag, event.uid, event.description),
    )


def _process_create(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    snapshot: Snapshot,
    tag: str,
    event: NormalizedEvent,
    mirror_client,
    fresh_ids: set[str],
):
    """Create the mirror copy of a source event that has none yet."""
    if config.dry_run:
        logger.info(f"[DRY RUN] Would CREATE mirror event: {tag}/{event.uid} '{event.title}'")
        stats.created += 1
        return

    payload = _mirror_copy(tag, event)
    try:
        payload.id = mirror_client.create(snapshot.mirror_calendar_id, payload)
    except (NetworkError, NotFoundError) as e:
        record_error(stats.errors, logger, event.title or event.uid, e)
        return

    fresh_ids.add(payload.id)
    snapshot.mirror.append(payload)
    stats.created += 1
    logger.debug(f"Created mirror event {payload.id} for {tag}/{event.uid}")


def _process_update(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    snapshot: Snapshot,
    tag: str,
    event: NormalizedEvent,
    existing: MirrorEvent,
    mirror_client,
):
    """Overwrite a stale mirror copy, keeping a manual "free" override."""
    preserve_free = existing.availability == "free"

    if config.dry_run:
        logger.info(f"[DRY RUN] Would UPDATE mirror event {existing.id}: {tag}/{event.uid} '{event.title}'")
        stats.updated += 1
        return

    payload = _mirror_copy(tag, event)
    try:
        mirror_client.update(snapshot.mirror_calendar_id, existing.id, payload, preserve_availability=preserve_free)
    except (NetworkError, NotFoundError) as e:
        record_error(stats.errors, logger, event.title or event.uid, e)
        return

    existing.title = payload.title
    existing.start = payload.start
    existing.end = payload.end
    existing.is_all_day = payload.is_all_day
    existing.location = payload.location
    existing.body = payload.body
    existing.availability = "free" if preserve_free else "busy"
    stats.updated += 1
    logger.debug(f"Updated mirror event {existing.id} for {tag}/{event.uid}")


def run_forward_sync(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    snapshot: Snapshot,
    mirror_client,
    deferred: set[tuple[str, str]] | None = None,
) -> set[str]:
    """Execute forward sync (iCloud → mirror).

    Returns the ids of mirror events created by this run.
    """
    deferred = deferred or set()
    fresh_ids: set[str] = set()
    index, _ = build_mirror_index(snapshot.mirror)
    identities = build_identity_index(snapshot.mirror)

    for tag, source in snapshot.sources.items():
        if not source.available:
            logger.warning(f"Skipping forward sync for {tag}: calendar '{source.name}' unavailable")
            continue

        logger.info(f"Mirroring {len(source.events)} events from '{source.name}' ({tag})...")
        seen: set[str] = set()
        for event in list(source.events):
            if event.uid in seen:
                logger.error(f"Duplicate UID {event.uid} in {tag}; skipping '{event.title}'")
                stats.errors.append(f"{event.title or event.uid}: duplicate UID {event.uid} in {tag}")
                stats.skipped += 1
                continue
            seen.add(event.uid)

            if (tag, event.uid) in deferred:
                stats.skipped += 1
                continue

            existing = index.get((tag, event.uid))
            adopted = False
            if existing is None and event.uid in identities:
                # Metadata was lost but the identity still matches: adopt it.
                existing = identities.pop(event.uid)
                adopted = True

            if existing is None:
                _process_create(config, stats, logger, snapshot, tag, event, mirror_client, fresh_ids)
            elif adopted or events_differ(event, existing):
                _process_update(config, stats, logger, snapshot, tag, event, existing, mirror_client)
            else:
                stats.skipped += 1

    return fresh_ids
