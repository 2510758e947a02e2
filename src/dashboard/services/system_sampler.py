from __future__ import annotations

import asyncio
import logging
import time

from src.dashboard.state import AppState

logger = logging.getLogger(__name__)


async def _run_in_thread(func, *args, **kwargs):
    """Run blocking psutil calls in a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)


# PUBLIC_INTERFACE
async def system_sampler_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop that samples host memory and CPU into the performance monitor.

    Memory and CPU keep independent intervals. Samples are skipped while monitoring is stopped
    (the monitor itself ignores them). Errors are logged and non-fatal.
    """
    monitoring = state.monitoring
    mem_interval = max(1, int(state.config.system_memory_sample_interval_sec))
    cpu_interval = max(1, int(state.config.system_cpu_sample_interval_sec))

    logger.info("System sampler started (memory=%ss, cpu=%ss)", mem_interval, cpu_interval)

    # First sample immediately so the dashboard has something to show.
    next_mem = time.monotonic()
    next_cpu = time.monotonic()

    while not shutdown_event.is_set():
        now = time.monotonic()
        try:
            if now >= next_mem:
                next_mem = now + mem_interval
                await _run_in_thread(monitoring.record_memory_sample)
            if now >= next_cpu:
                next_cpu = now + cpu_interval
                await _run_in_thread(monitoring.record_cpu_sample)
        except Exception:
            logger.exception("System sampler tick failed")

        sleep_for = max(0.1, min(next_mem, next_cpu) - time.monotonic())
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("System sampler stopped")
