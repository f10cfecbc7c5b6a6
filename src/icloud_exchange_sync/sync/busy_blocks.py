"""
Availability calendar → opaque "Busy" blocks on an iCloud calendar.
"""

from ..models import BUSY_BLOCK_TITLE
from ..models import BusyBlockStats
from ..models import MirrorEvent
from ..models import NetworkError
from ..models import NormalizedEvent
from ..models import NotFoundError
from ..models import SyncConfig
from .snapshot import Snapshot
from .utils import busy_block_source_id
from .utils import busy_block_uid
from .utils import is_busy_block_uid
from .utils import record_error


def _block_for(event: MirrorEvent, calendar_name: str) -> NormalizedEvent:
    return NormalizedEvent(
        uid=busy_block_uid(event.id),
        title=BUSY_BLOCK_TITLE,
        description="",
        start=event.start,
        end=event.end,
        is_all_day=event.is_all_day,
        calendar=calendar_name,
    )


def _same_range(block: NormalizedEvent, desired: NormalizedEvent) -> bool:
    return (
        block.start == desired.start
        and block.end == desired.end
        and block.is_all_day == desired.is_all_day
    )


def run_busy_blocks(
    config: SyncConfig,
    stats: BusyBlockStats,
    logger,
    snapshot: Snapshot,
    source_client,
):
    """Execute derived busy-block sync.

    Every non-free event on the availability calendar gets exactly one block;
    blocks whose event was deleted or marked free are removed.
    """
    target = snapshot.busy_target
    if target is None:
        return
    if snapshot.busy_events is None:
        logger.warning("Availability calendar could not be read; busy blocks left untouched")
        return
    if not target.available:
        record_error(
            stats.errors,
            logger,
            target.name,
            NotFoundError("busy-block target calendar unavailable"),
        )
        return

    kept = {event.id: event for event in snapshot.busy_events if event.availability != "free"}
    blocks = {event.uid: event for event in target.events if is_busy_block_uid(event.uid)}
    logger.info(f"Deriving busy blocks: {len(kept)} non-free events, {len(blocks)} existing blocks")

    for event_id, event in kept.items():
        desired = _block_for(event, target.name)
        existing = blocks.get(desired.uid)

        if existing is not None and _same_range(existing, desired):
            continue

        if existing is not None:
            if config.dry_run:
                logger.info(f"[DRY RUN] Would UPDATE busy block {desired.uid}")
                stats.updated += 1
                continue
            try:
                source_client.update(existing.handle, desired, opaque=True)
            except (NetworkError, NotFoundError) as e:
                record_error(stats.errors, logger, desired.uid, e)
                continue
            desired.handle = existing.handle
            target.upsert(desired)
            stats.updated += 1
            logger.debug(f"Updated busy block {desired.uid}")
            continue

        if config.dry_run:
            logger.info(f"[DRY RUN] Would CREATE busy block {desired.uid} ({desired.start} → {desired.end})")
            stats.created += 1
            continue
        try:
            desired.handle = source_client.create(target.ref, desired, opaque=True)
        except (NetworkError, NotFoundError) as e:
            record_error(stats.errors, logger, desired.uid, e)
            continue
        target.upsert(desired)
        stats.created += 1
        logger.debug(f"Created busy block {desired.uid}")

    for uid, block in blocks.items():
        if busy_block_source_id(uid) in kept:
            continue
        if config.dry_run:
            logger.info(f"[DRY RUN] Would DELETE busy block {uid}")
            stats.deleted += 1
            continue
        try:
            source_client.delete(block.handle)
        except NotFoundError:
            logger.debug(f"Busy block {uid} already gone")
        except NetworkError as e:
            record_error(stats.errors, logger, uid, e)
            continue
        target.remove(uid)
        stats.deleted += 1
        logger.debug(f"Deleted busy block {uid}")
