from __future__ import annotations

import asyncio
import logging
import random
from typing import Iterable, List, Sequence, TypeVar

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.schemas.optimization import WorkBreakdown, WorkSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


def breakdown(items: Sequence) -> WorkBreakdown:
    return WorkBreakdown(
        total=len(items),
        pending=sum(1 for i in items if i.status == "pending"),
        completed=sum(1 for i in items if i.status == "completed"),
        failed=sum(1 for i in items if i.status == "failed"),
    )


def merge_generated(existing: List[T], generated: List[T]) -> List[T]:
    """Replace the pending items with a fresh batch; processed ones stay as history."""
    return [item for item in existing if item.status != "pending"] + list(generated)


def summarize(groups: Iterable[WorkBreakdown]) -> WorkSummary:
    groups = list(groups)
    total = sum(g.total for g in groups)
    completed = sum(g.completed for g in groups)
    return WorkSummary(
        total_optimizations=total,
        pending=sum(g.pending for g in groups),
        completed=completed,
        failed=sum(g.failed for g in groups),
        success_rate=round(completed / total * 100, 2) if total else 100.0,
    )


# PUBLIC_INTERFACE
def claim_pending(items: List[T], item_id: str, label: str) -> T:
    """
    Find a generated item by id and move it to ``implementing``.

    Raises NotFoundError for unknown ids and ConflictError when the item was already processed.
    Callers hold their own lock around this call.
    """
    for item in items:
        if item.id == item_id:
            if item.status != "pending":
                raise ConflictError(f"Invalid {label} or already processed")
            item.status = "implementing"
            return item
    raise NotFoundError(f"{label[0].upper()}{label[1:]} {item_id} not found")


# Seconds of simulated effort per complexity; every run is capped at MAX_SIMULATED_WORK_SEC.
COMPLEXITY_DELAY_SEC = {"low": (0.5, 1.5), "medium": (1.0, 3.0), "high": (2.0, 7.0)}
MAX_SIMULATED_WORK_SEC = 1.0


def simulated_delay(rng: random.Random, complexity: str) -> float:
    low, high = COMPLEXITY_DELAY_SEC.get(complexity, (1.0, 1.0))
    return min(rng.uniform(low, high), MAX_SIMULATED_WORK_SEC)


# PUBLIC_INTERFACE
async def simulate_work(item, seconds: float, label: str) -> None:
    """
    Await the simulated implementation of a claimed item.

    A failure or a cancellation (client disconnect, shutdown) leaves the item ``failed`` rather than
    stuck in ``implementing``; the exception is re-raised either way.
    """
    try:
        await asyncio.sleep(seconds)
    except asyncio.CancelledError:
        logger.warning("%s %s cancelled while implementing", label, item.id)
        item.status = "failed"
        raise
    except Exception:
        logger.exception("%s %s failed", label, item.id)
        item.status = "failed"
        raise
