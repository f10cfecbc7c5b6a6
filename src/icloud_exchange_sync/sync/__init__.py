"""
Sync orchestration: CalendarSynchronizer runs each flow module in turn.
"""

import logging
import time
from datetime import datetime
from typing import Mapping

from icloud_exchange_sync.config import build_config
from icloud_exchange_sync.config import is_paused
from icloud_exchange_sync.graph_client import GraphCalendarClient
from icloud_exchange_sync.icloud_client import ICloudCalendarClient
from icloud_exchange_sync.models import BusyBlockStats
from icloud_exchange_sync.models import CalendarSyncError
from icloud_exchange_sync.models import ConfigError
from icloud_exchange_sync.models import RunResult
from icloud_exchange_sync.models import SyncConfig
from icloud_exchange_sync.models import SyncStats
from icloud_exchange_sync.models import WriteBackStats
from icloud_exchange_sync.sync.busy_blocks import run_busy_blocks
from icloud_exchange_sync.sync.forward import run_forward_sync
from icloud_exchange_sync.sync.orphans import run_orphan_sweep
from icloud_exchange_sync.sync.snapshot import take_snapshot
from icloud_exchange_sync.sync.utils import calculate_sync_window
from icloud_exchange_sync.sync.write_back import run_write_back

_logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class CalendarSynchronizer:
    """Main synchronization engine."""

    def __init__(self, config: SyncConfig, source_client=None, mirror_client=None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.stats = SyncStats()
        self.write_back_stats = WriteBackStats()
        self.busy_block_stats = BusyBlockStats()
        self.source_client = source_client or ICloudCalendarClient(
            config.icloud_username,
            config.icloud_password,
            timezone=config.timezone,
        )
        self.mirror_client = mirror_client or GraphCalendarClient(
            config.ms_tenant_id,
            config.ms_client_id,
            config.ms_client_secret,
            config.ms_user_id,
            timezone=config.timezone,
        )

    def run(self, now: datetime | None = None) -> RunResult:
        """Execute one synchronization pass.

        Flows run in order: write-back, busy blocks, forward sync, orphan
        sweep.  Fatal errors are logged and re-raised.
        """
        started = time.monotonic()
        window = calculate_sync_window(
            self.config.lookback_days,
            self.config.lookahead_days,
            self.config.timezone,
            now=now,
        )
        self.logger.info(f"Sync window: {window.start.isoformat()} → {window.end.isoformat()}")

        try:
            self.logger.info("Connecting to iCloud and Microsoft Graph...")
            self.source_client.connect()
            self.mirror_client.connect()

            snapshot = take_snapshot(self.config, self.logger, self.source_client, self.mirror_client, window)
            self.stats.fetched = snapshot.fetched_count

            outcome = run_write_back(
                self.config,
                self.write_back_stats,
                self.logger,
                snapshot,
                self.source_client,
                self.mirror_client,
            )
            if self.config.busy_blocks_enabled:
                run_busy_blocks(self.config, self.busy_block_stats, self.logger, snapshot, self.source_client)
            fresh_ids = run_forward_sync(
                self.config,
                self.stats,
                self.logger,
                snapshot,
                self.mirror_client,
                deferred=outcome.deferred,
            )
            run_orphan_sweep(
                self.config,
                self.stats,
                self.logger,
                snapshot,
                self.mirror_client,
                fresh_ids,
                outcome.restored,
            )
        except CalendarSyncError as e:
            self.logger.error(f"Sync aborted: {e}")
            raise

        self.logger.info(
            f"Sync complete: {self.stats.created} created, {self.stats.updated} updated, "
            f"{self.stats.deleted} deleted, {self.stats.skipped} unchanged"
        )
        return RunResult(
            success=True,
            duration_ms=_elapsed_ms(started),
            stats=self.stats,
            write_back=self.write_back_stats,
            busy_blocks=self.busy_block_stats,
            window=window,
            dry_run=self.config.dry_run,
        )


def run_sync(
    settings: Mapping[str, str],
    dry_run: bool = False,
    source_client=None,
    mirror_client=None,
    now: datetime | None = None,
) -> RunResult:
    """Run once from raw settings and always return a RunResult.

    The kill switch is honoured before the configuration is even validated.
    """
    started = time.monotonic()
    if is_paused(settings):
        _logger.info("Sync paused by SYNC_PAUSED; nothing to do")
        return RunResult(success=True, paused=True)

    try:
        config = build_config(settings, dry_run=dry_run)
    except ConfigError as e:
        _logger.error(f"Configuration error: {e}")
        return RunResult(success=False, error=str(e), duration_ms=_elapsed_ms(started), status_code=400)

    try:
        return CalendarSynchronizer(config, source_client, mirror_client).run(now=now)
    except CalendarSyncError as e:
        return RunResult(success=False, error=str(e), duration_ms=_elapsed_ms(started), status_code=500)
    except Exception as e:
        _logger.exception(f"Unexpected error during sync: {e}")
        return RunResult(success=False, error=str(e), duration_ms=_elapsed_ms(started), status_code=500)
