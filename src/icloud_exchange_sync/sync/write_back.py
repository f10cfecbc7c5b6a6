"""
Mirror→iCloud write-back.
"""

from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace

from ..ical import is_occurrence_uid
from ..metadata import encode_meta
from ..metadata import strip_meta
from ..models import PUBLIC_TAG
from ..models import WRITABLE_TAGS
from ..models import MirrorEvent
from ..models import NetworkError
from ..models import NormalizedEvent
from ..models import NotFoundError
from ..models import SyncConfig
from ..models import SyncMeta
from ..models import WriteBackStats
from .snapshot import Snapshot
from .snapshot import SourceSnapshot
from .utils import events_differ
from .utils import is_busy_block_uid
from .utils import is_writeback_uid
from .utils import mirror_is_newer
from .utils import record_error
from .utils import writeback_uid


@dataclass
class WriteBackOutcome:
    """What later flows in the same run need to know about write-back."""

    # uids recreated on iCloud this run, by tag; protects them from the orphan sweep
    restored: dict[str, set[str]] = field(default_factory=dict)
    # (tag, uid) pairs forward sync must leave alone this run
    deferred: set[tuple[str, str]] = field(default_factory=set)


def _source_copy(mirror_event: MirrorEvent, uid: str, target: SourceSnapshot) -> NormalizedEvent:
    return NormalizedEvent(
        uid=uid,
        title=mirror_event.title,
        description=strip_meta(mirror_event.body),
        start=mirror_event.start,
        end=mirror_event.end,
        is_all_day=mirror_event.is_all_day,
        location=mirror_event.location,
        calendar=target.name,
    )


def _process_candidate(
    config: SyncConfig,
    stats: WriteBackStats,
    logger,
    snapshot: Snapshot,
    mirror_event: MirrorEvent,
    outcome: WriteBackOutcome,
    pending_refs: set[tuple[str, str]],
    source_client,
    mirror_client,
):
    """Copy a mirror-created event to the default iCloud calendar, then tag it."""
    tag = config.write_back_tag
    target = snapshot.sources.get(tag)
    label = mirror_event.title or mirror_event.id
    if target is None or not target.available:
        logger.warning(f"No writable calendar available for '{label}'; write-back skipped")
        stats.skipped_no_target += 1
        return

    uid = writeback_uid(mirror_event.id)
    pending_refs.add((tag, uid))
    # A previous run may have created the source copy and then failed to tag.
    already_created = target.get(uid) is not None

    if config.dry_run:
        if already_created:
            logger.info(f"[DRY RUN] Would TAG mirror event '{label}' as {tag}/{uid}")
        else:
            logger.info(f"[DRY RUN] Would CREATE '{label}' in {target.name} as {uid}")
            stats.created += 1
        return

    if not already_created:
        event = _source_copy(mirror_event, uid, target)
        try:
            event.handle = source_client.create(target.ref, event)
        except (NetworkError, NotFoundError) as e:
            record_error(stats.errors, logger, label, e)
            return
        target.upsert(event)
        stats.created += 1
        logger.info(f"Wrote back '{label}' to '{target.name}' as {uid}")
    else:
        logger.info(f"Source copy {uid} already exists; re-tagging mirror event '{label}'")

    body = encode_meta(tag, uid, mirror_event.body)
    try:
        mirror_client.set_body(snapshot.mirror_calendar_id, mirror_event.id, body)
    except (NetworkError, NotFoundError) as e:
        # Untagged, the mirror event would look unclaimed to forward sync.
        outcome.deferred.add((tag, uid))
        record_error(stats.errors, logger, label, e)
        return
    snapshot.retag(mirror_event.id, body)


def _process_tagged(
    config: SyncConfig,
    stats: WriteBackStats,
    logger,
    snapshot: Snapshot,
    mirror_event: MirrorEvent,
    meta: SyncMeta,
    outcome: WriteBackOutcome,
    source_client,
):
    """Push a newer mirror edit to iCloud, or restore a source event deleted upstream."""
    tag, uid = meta.source_tag, meta.origin_uid
    source = snapshot.sources.get(tag)
    label = mirror_event.title or uid
    if source is None or not source.available:
        return
    # Derived blocks belong to the busy-block flow.
    if is_busy_block_uid(uid):
        return

    existing = source.get(uid)
    if existing is not None:
        if existing.is_occurrence:
            return
        if not events_differ(existing, mirror_event) or not mirror_is_newer(mirror_event, existing):
            return
        updated = replace(
            existing,
            title=mirror_event.title,
            start=mirror_event.start,
            end=mirror_event.end,
            is_all_day=mirror_event.is_all_day,
            location=mirror_event.location,
        )
        if config.dry_run:
            logger.info(f"[DRY RUN] Would UPDATE {tag}/{uid} from mirror edit '{label}'")
            stats.updated += 1
            outcome.deferred.add((tag, uid))
            return
        try:
            source_client.update(existing.handle, updated)
        except (NetworkError, NotFoundError) as e:
            outcome.deferred.add((tag, uid))
            record_error(stats.errors, logger, label, e)
            return
        source.upsert(updated)
        stats.updated += 1
        logger.info(f"Updated {tag}/{uid} from mirror edit '{label}'")
        return

    # A single occurrence of a series cannot be recreated on its own.
    if is_occurrence_uid(uid):
        return

    # Not in the window: make sure it was deleted rather than moved away.
    try:
        found = source_client.get(source.ref, uid)
    except NetworkError as e:
        record_error(stats.errors, logger, label, e)
        return
    if found is not None:
        logger.debug(f"{tag}/{uid} moved outside the sync window; not restoring")
        return

    restored = _source_copy(mirror_event, uid, source)
    if config.dry_run:
        logger.info(f"[DRY RUN] Would RESTORE {tag}/{uid} '{label}' in {source.name}")
        stats.created += 1
        outcome.restored.setdefault(tag, set()).add(uid)
        return
    try:
        restored.handle = source_client.create(source.ref, restored)
    except (NetworkError, NotFoundError) as e:
        record_error(stats.errors, logger, label, e)
        return
    source.upsert(restored)
    outcome.restored.setdefault(tag, set()).add(uid)
    stats.created += 1
    logger.info(f"Restored {tag}/{uid} '{label}' in '{source.name}'")


def _process_deletions(
    config: SyncConfig,
    stats: WriteBackStats,
    logger,
    snapshot: Snapshot,
    pending_refs: set[tuple[str, str]],
    source_client,
):
    """Delete mirror-born source events whose mirror entry is gone."""
    if not snapshot.mirror:
        logger.warning("Mirror calendar returned no events; skipping write-back deletions")
        return

    referenced = {event.meta.key for event in snapshot.mirror if event.meta.is_valid}
    referenced |= pending_refs
    identities = snapshot.mirror_identities()

    for tag in WRITABLE_TAGS:
        source = snapshot.sources.get(tag)
        if source is None or not source.available:
            continue
        for event in list(source.events):
            if not is_writeback_uid(event.uid):
                continue
            if (tag, event.uid) in referenced or event.uid in identities:
                continue

            if config.dry_run:
                logger.info(f"[DRY RUN] Would DELETE {tag}/{event.uid} '{event.title}' from {source.name}")
                stats.deleted += 1
                continue

            try:
                source_client.delete(event.handle)
            except NotFoundError:
                logger.debug(f"{tag}/{event.uid} already gone")
            except NetworkError as e:
                record_error(stats.errors, logger, event.title or event.uid, e)
                continue
            source.remove(event.uid)
            stats.deleted += 1
            logger.info(f"Deleted {tag}/{event.uid} '{event.title}' (removed from mirror)")


def run_write_back(
    config: SyncConfig,
    stats: WriteBackStats,
    logger,
    snapshot: Snapshot,
    source_client,
    mirror_client,
) -> WriteBackOutcome:
    """Execute write-back (mirror → iCloud)."""
    outcome = WriteBackOutcome()
    pending_refs: set[tuple[str, str]] = set()
    known_uids: set[str] = set()
    for uids in snapshot.known_uids().values():
        known_uids |= uids

    logger.info("Writing mirror changes back to iCloud...")
    for mirror_event in list(snapshot.mirror):
        meta = mirror_event.meta
        if not meta.is_valid:
            # Lost metadata on an event forward sync will re-adopt by identity.
            if mirror_event.identity and mirror_event.identity in known_uids:
                continue
            stats.candidates += 1
            _process_candidate(
                config, stats, logger, snapshot, mirror_event, outcome, pending_refs,
                source_client, mirror_client,
            )
            continue
        if meta.source_tag == PUBLIC_TAG:
            continue
        _process_tagged(config, stats, logger, snapshot, mirror_event, meta, outcome, source_client)

    _process_deletions(config, stats, logger, snapshot, pending_refs, source_client)
    return outcome
