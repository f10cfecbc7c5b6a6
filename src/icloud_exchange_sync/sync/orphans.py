"""
Orphan sweep on the mirror calendar.
"""

from ..models import NetworkError
from ..models import NotFoundError
from ..models import SyncConfig
from ..models import SyncStats
from .snapshot import Snapshot
from .utils import build_mirror_index
from .utils import record_error


def _delete_mirror_event(config, stats, logger, snapshot, mirror_client, event, reason: str) -> bool:
    if config.dry_run:
        logger.info(f"[DRY RUN] Would DELETE mirror event {event.id} '{event.title}' ({reason})")
        stats.deleted += 1
        return True
    try:
        mirror_client.delete(snapshot.mirror_calendar_id, event.id)
    except (NetworkError, NotFoundError) as e:
        record_error(stats.errors, logger, event.title or event.id, e)
        return False
    snapshot.mirror.remove(event)
    stats.deleted += 1
    logger.info(f"Deleted mirror event '{event.title}' ({reason})")
    return True


def run_orphan_sweep(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    snapshot: Snapshot,
    mirror_client,
    fresh_ids: set[str],
    restored: dict[str, set[str]],
):
    """Delete mirror events whose tagged source event no longer exists.

    A tag whose known-uid set is empty (and had nothing restored) is skipped
    entirely: an empty calendar is indistinguishable from a failed fetch.
    """
    _, duplicates = build_mirror_index(snapshot.mirror)
    # in a dry run deleted duplicates stay in the snapshot
    counted: set[str] = set()
    for event in duplicates:
        if event.id in fresh_ids:
            continue
        if _delete_mirror_event(config, stats, logger, snapshot, mirror_client, event, "duplicate"):
            counted.add(event.id)

    known = snapshot.known_uids()
    guarded: set[str] = set()

    for event in list(snapshot.mirror):
        key = event.meta.key
        if key is None or event.id in fresh_ids or event.id in counted:
            continue
        tag, uid = key
        known_uids = known.get(tag, set())
        restored_uids = restored.get(tag, set())

        if not known_uids and not restored_uids:
            if tag not in guarded:
                logger.warning(f"No known events for {tag}; skipping orphan sweep for it")
                guarded.add(tag)
            continue

        if uid in known_uids or uid in restored_uids:
            continue
        _delete_mirror_event(config, stats, logger, snapshot, mirror_client, event, f"orphan of {tag}/{uid}")
