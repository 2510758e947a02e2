from __future__ import annotations

import asyncio
import logging

from src.dashboard.state import AppState

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def system_health_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop running the periodic system health checks.

    Waits one interval before each pass because starting monitoring already runs the first check.
    Passes are skipped while monitoring is stopped; the interval is re-read every time so a restart
    with a new interval takes effect. The blocking Mongo ping and psutil reads run in a worker thread.
    """
    health = state.system_health
    logger.info("System health monitor started (interval=%ss)", health.interval_sec)

    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=health.interval_sec)
            break
        except asyncio.TimeoutError:
            pass

        if not health.is_active:
            continue
        try:
            metrics = await asyncio.to_thread(health.perform_health_check)
            if metrics.system_status != "healthy":
                logger.info("System health is %s (score=%s)", metrics.system_status, metrics.performance_score)
        except Exception:
            logger.exception("System health tick failed")

    logger.info("System health monitor stopped")
