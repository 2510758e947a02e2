from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from src.dashboard.state import AppState

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def alerts_evaluator_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background alert-rule monitoring loop.

    Each tick:
    - skips evaluation while alert monitoring is stopped (toggled through the API)
    - evaluates enabled rules against the current performance summary
    - honours per-rule cooldowns (handled by the alert service)

    The tick interval is re-read every pass so a restart with a new interval takes effect.
    """
    alerts = state.alerts
    logger.info("Alerts evaluator started (interval=%ss)", alerts.interval_sec)

    while not shutdown_event.is_set():
        tick_started = datetime.now(timezone.utc)
        try:
            if alerts.is_active:
                created = await alerts.evaluate_rules()
                if created:
                    logger.info("Alerts evaluator raised %d alert(s)", len(created))
        except Exception:
            logger.exception("Alerts evaluator tick failed")

        elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
        sleep_for = max(0.1, alerts.interval_sec - elapsed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("Alerts evaluator stopped")
