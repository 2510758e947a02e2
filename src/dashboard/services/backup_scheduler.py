from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from src.dashboard.state import AppState

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def backup_scheduler_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop that drives cron-scheduled backups and automatic retries.

    Each tick runs BackupService.run_due in a worker thread (file and pymongo I/O are blocking).
    Ticks are no-ops while the backup service is stopped through the API.
    """
    backups = state.backups
    interval = max(1, int(state.config.backup_scheduler_interval_sec))
    logger.info("Backup scheduler started (interval=%ss)", interval)

    while not shutdown_event.is_set():
        tick_started = datetime.now(timezone.utc)
        try:
            if backups.is_running:
                executed = await asyncio.to_thread(backups.run_due)
                if executed:
                    logger.info("Backup scheduler ran %d job(s)", len(executed))
        except Exception:
            logger.exception("Backup scheduler tick failed")

        elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
        sleep_for = max(0.1, interval - elapsed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("Backup scheduler stopped")
