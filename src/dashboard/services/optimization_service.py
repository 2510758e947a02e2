from __future__ import annotations

import asyncio
import logging
import uuid
from threading import RLock
from typing import Any, Dict, List, Tuple

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.schemas.bottlenecks import PerformanceBottleneck
from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.optimization import (
    IMPACT_ORDER,
    PRIORITY_ORDER,
    OptimizationAction,
    OptimizationResult,
    OptimizationStatus,
    OptimizationSummary,
)
from src.dashboard.services.bottleneck_service import PerformanceBottleneckService
from src.dashboard.services.monitoring_service import PerformanceMonitoringService

logger = logging.getLogger(__name__)

# (bottleneck type, description keywords, description, type, target, priority, impact, minutes, risk)
_BOTTLENECK_ACTIONS: List[Tuple[str, Tuple[str, ...], str, str, str, str, str, int, str]] = [
    ("api", ("response time",), "Implement API response caching",
     "caching", "API endpoints", "high", "high", 120, "low"),
    ("api", ("response time",), "Review and optimize API endpoint logic",
     "code_optimization", "API controllers", "medium", "medium", 180, "medium"),
    ("api", ("error rate",), "Implement circuit breaker pattern",
     "code_optimization", "External service calls", "critical", "high", 240, "medium"),
    ("database", ("query time",), "Add database indexes for slow queries",
     "indexing", "Database schema", "high", "high", 60, "low"),
    ("database", ("query time",), "Optimize complex database queries",
     "query_optimization", "Database queries", "medium", "medium", 120, "medium"),
    ("database", ("slow queries", "slow database queries"), "Implement query result caching",
     "caching", "Database layer", "medium", "high", 180, "low"),
    ("system", ("memory",), "Implement memory leak detection and cleanup",
     "resource_management", "Application memory management", "critical", "high", 300, "high"),
    ("system", ("cpu",), "Optimize CPU-intensive operations",
     "code_optimization", "Application code", "high", "medium", 240, "medium"),
    ("frontend", ("load time",), "Implement frontend asset caching",
     "caching", "Frontend assets", "medium", "medium", 90, "low"),
    ("frontend", ("load time",), "Implement code splitting and lazy loading",
     "code_optimization", "Frontend bundle", "medium", "high", 180, "medium"),
]

_PROACTIVE_ACTIONS: List[Tuple[str, str, str, str, str, int, str]] = [
    ("Implement Redis caching layer for frequently accessed data",
     "caching", "Application data layer", "medium", "high", 240, "low"),
    ("Review and optimize database indexes based on query patterns",
     "indexing", "Database schema", "low", "medium", 120, "low"),
    ("Implement connection pooling and resource cleanup",
     "resource_management", "Application resources", "medium", "medium", 180, "low"),
]

_RESULT_NOTES = {
    "caching": "Cache hit rate improved by 15-25%.",
    "indexing": "Query performance improved by 30-50%.",
    "query_optimization": "Query execution time reduced by 20-40%.",
    "resource_management": "Resource utilization improved by 10-20%.",
    "code_optimization": "Code execution efficiency improved by 15-30%.",
}

# Simulated implementation never takes longer than this (seconds, before scaling).
MAX_SIMULATED_WORK_SEC = 1.0


def _action(description: str, atype: str, target: str, priority: str, impact: str, minutes: int, risk: str):
    return OptimizationAction(
        id=f"opt_{uuid.uuid4().hex[:16]}",
        type=atype,
        description=description,
        target=target,
        priority=priority,
        estimated_impact=impact,
        implementation_time=minutes,
        risk=risk,
        status="pending",
        created_at=utc_now(),
    )


def actions_for_bottleneck(bottleneck: PerformanceBottleneck) -> List[OptimizationAction]:
    description = bottleneck.description.lower()
    actions = []
    for btype, keywords, *spec in _BOTTLENECK_ACTIONS:
        if btype == bottleneck.type and any(k in description for k in keywords):
            actions.append(_action(*spec))
    return actions


def _pct_change(before: float, after: float) -> float:
    if before == 0:
        return 0.0 if after == 0 else 100.0
    return round((after - before) / before * 100, 2)


def _improvement(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
    def cur(summary: Dict[str, Any], section: str, key: str) -> float:
        return float(((summary.get(section) or {}).get(key) or {}).get("current") or 0)

    paths = {
        "api": ("responseTime", "errorRate", "throughput"),
        "database": ("queryTime", "errorRate", "slowQueries"),
        "system": ("memory", "cpu"),
    }
    return {
        section: {key: _pct_change(cur(before, section, key), cur(after, section, key)) for key in keys}
        for section, keys in paths.items()
    }


class PerformanceOptimizationService:
    """
    Turns detected bottlenecks into prioritized optimization actions and simulates executing them.

    Generated recommendations replace the pending list; executed actions are kept for history.
    """

    def __init__(
        self,
        monitoring: PerformanceMonitoringService,
        bottlenecks: PerformanceBottleneckService,
        time_scale: float = 1.0,
    ):
        self._monitoring = monitoring
        self._bottlenecks = bottlenecks
        self._time_scale = time_scale
        self._actions: List[OptimizationAction] = []
        self._results: List[OptimizationResult] = []
        self._lock = RLock()

    # PUBLIC_INTERFACE
    def generate_recommendations(self) -> List[OptimizationAction]:
        """Detect bottlenecks, map them to actions, add proactive actions and sort by priority then impact."""
        recommendations: List[OptimizationAction] = []
        for bottleneck in self._bottlenecks.detect():
            recommendations.extend(actions_for_bottleneck(bottleneck))
        recommendations.extend(_action(*spec) for spec in _PROACTIVE_ACTIONS)
        recommendations.sort(
            key=lambda a: (PRIORITY_ORDER[a.priority], IMPACT_ORDER[a.estimated_impact]), reverse=True
        )
        with self._lock:
            kept = [a for a in self._actions if a.status != "pending"]
            self._actions = kept + recommendations
        logger.info("Generated %d optimization recommendation(s)", len(recommendations))
        return recommendations

    def _mark_failed(self, action: OptimizationAction) -> None:
        with self._lock:
            action.status = "failed"
            action.result = "failed"
            action.completed_at = utc_now()

    # PUBLIC_INTERFACE
    async def execute(self, action_id: str) -> OptimizationResult:
        """Run one pending action through a simulated implementation and record the before/after delta."""
        with self._lock:
            action = self.action(action_id)
            if action.status != "pending":
                raise ConflictError(f"Optimization action {action_id} is not in pending status")
            action.status = "implementing"
            action.started_at = utc_now()

        before = self._monitoring.get_metrics_summary().model_dump(by_alias=True, mode="json")
        try:
            seconds = min(action.implementation_time * 60, MAX_SIMULATED_WORK_SEC)
            await asyncio.sleep(seconds * self._time_scale)
            notes = f"Successfully implemented {action.description}. {_RESULT_NOTES[action.type]}"
        except asyncio.CancelledError:
            logger.warning("Optimization action %s cancelled while implementing", action_id)
            self._mark_failed(action)
            raise
        except Exception:
            logger.exception("Optimization action %s failed", action_id)
            self._mark_failed(action)
            raise

        after = self._monitoring.get_metrics_summary().model_dump(by_alias=True, mode="json")
        result = OptimizationResult(
            action_id=action_id,
            success=True,
            before_metrics=before,
            after_metrics=after,
            improvement=_improvement(before, after),
            notes=notes,
            completed_at=utc_now(),
        )
        with self._lock:
            action.status = "completed"
            action.result = "success"
            action.notes = notes
            action.completed_at = result.completed_at
            self._results.append(result)
        logger.info("Optimization action %s completed type=%s", action_id, action.type)
        return result

    def actions(self) -> List[OptimizationAction]:
        with self._lock:
            return list(self._actions)

    def action(self, action_id: str) -> OptimizationAction:
        with self._lock:
            for a in self._actions:
                if a.id == action_id:
                    return a
        raise NotFoundError(f"Optimization action {action_id} not found")

    def results(self) -> List[OptimizationResult]:
        with self._lock:
            return list(self._results)

    def get_status(self) -> OptimizationStatus:
        with self._lock:
            actions = list(self._actions)
            results = list(self._results)

        def count(status: str) -> int:
            return sum(1 for a in actions if a.status == status)

        completed, failed = count("completed"), count("failed")
        finished = completed + failed
        return OptimizationStatus(
            summary=OptimizationSummary(
                total=len(actions),
                pending=count("pending"),
                implementing=count("implementing"),
                completed=completed,
                failed=failed,
                success_rate=round(completed / finished * 100, 2) if finished else 100.0,
            ),
            priority_breakdown={p: sum(1 for a in actions if a.priority == p) for p in PRIORITY_ORDER},
            type_breakdown={t: sum(1 for a in actions if a.type == t) for t in _RESULT_NOTES},
            recent_results=results[-5:],
        )
