from __future__ import annotations

import logging
import uuid
from threading import RLock
from typing import List, Optional

from src.dashboard.errors import NotFoundError
from src.dashboard.schemas.bottlenecks import (
    BottleneckThresholds,
    BottleneckThresholdsUpdate,
    PerformanceBottleneck,
)
from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.monitoring import PerformanceSummary
from src.dashboard.services.monitoring_service import PerformanceMonitoringService

logger = logging.getLogger(__name__)

AUTO_RESOLVE_NOTE = "Automatically resolved based on improved metrics"


def _bottleneck(btype: str, severity: str, description: str, metrics: dict, recommendations: List[str]):
    return PerformanceBottleneck(
        id=f"bottleneck_{uuid.uuid4().hex[:16]}",
        type=btype,
        severity=severity,
        description=description,
        metrics=metrics,
        detected_at=utc_now(),
        status="active",
        recommendations=recommendations,
    )


# PUBLIC_INTERFACE
def find_bottlenecks(summary: PerformanceSummary, t: BottleneckThresholds) -> List[PerformanceBottleneck]:
    """
    Compare summary KPIs with thresholds.

    Areas without samples in the last hour are skipped so an idle system is not reported
    as having zero throughput.
    """
    found: List[PerformanceBottleneck] = []

    api = summary.api
    if api.throughput.current > 0:
        rt = api.response_time.current
        if rt > t.api.response_time.critical:
            found.append(_bottleneck("api", "critical", "API response time is critically high", {"responseTime": rt}, [
                "Implement API response caching",
                "Review and optimize API endpoint logic",
                "Consider horizontal scaling",
            ]))
        elif rt > t.api.response_time.warning:
            found.append(_bottleneck("api", "high", "API response time is above warning threshold", {"responseTime": rt}, [
                "Monitor API performance trends",
                "Consider implementing caching strategies",
            ]))
        if api.error_rate.current > t.api.error_rate.critical:
            found.append(_bottleneck("api", "critical", "API error rate is critically high",
                                     {"errorRate": api.error_rate.current}, [
                "Implement circuit breaker pattern",
                "Review error handling and logging",
                "Check external service dependencies",
            ]))
        if api.throughput.current < t.api.throughput.critical:
            found.append(_bottleneck("api", "high", "API throughput is below critical threshold",
                                     {"throughput": api.throughput.current}, [
                "Investigate request processing bottlenecks",
                "Consider optimizing request handling",
                "Review server resources",
            ]))
        if api.availability.current < t.system.uptime.critical:
            found.append(_bottleneck("system", "critical", "System uptime is below critical threshold",
                                     {"uptime": api.availability.current}, [
                "Investigate system crashes",
                "Review error logs",
                "Implement health checks and auto-restart",
            ]))

    db = summary.database
    if db.throughput.current > 0:
        if db.query_time.current > t.database.query_time.critical:
            found.append(_bottleneck("database", "critical", "Database query time is critically high",
                                     {"queryTime": db.query_time.current}, [
                "Add database indexes for slow queries",
                "Optimize complex database queries",
                "Review database connection pooling",
            ]))
        if db.error_rate.current > t.database.error_rate.critical:
            found.append(_bottleneck("database", "critical", "Database error rate is critically high",
                                     {"errorRate": db.error_rate.current}, [
                "Check database connectivity",
                "Review database logs",
                "Verify database schema integrity",
            ]))
        slow_pct = db.slow_queries.current / db.throughput.current * 100
        if slow_pct > t.database.slow_queries.critical:
            found.append(_bottleneck("database", "high", "High percentage of slow database queries",
                                     {"slowQueries": round(slow_pct, 2)}, [
                "Implement query result caching",
                "Review and optimize slow queries",
                "Consider database query optimization",
            ]))

    system = summary.system
    if system.memory.current > t.system.memory.critical:
        found.append(_bottleneck("system", "critical", "System memory usage is critically high",
                                 {"memory": system.memory.current}, [
            "Implement memory leak detection and cleanup",
            "Review memory-intensive operations",
            "Consider increasing server memory",
        ]))
    if system.cpu.current > t.system.cpu.critical:
        found.append(_bottleneck("system", "critical", "System CPU usage is critically high",
                                 {"cpu": system.cpu.current}, [
            "Optimize CPU-intensive operations",
            "Review application performance",
            "Consider horizontal scaling",
        ]))

    fe = summary.frontend
    if fe.throughput.current > 0:
        if fe.load_time.current > t.frontend.load_time.critical:
            found.append(_bottleneck("frontend", "critical", "Frontend load time is critically high",
                                     {"loadTime": fe.load_time.current}, [
                "Implement frontend asset caching",
                "Optimize bundle size",
                "Consider CDN for static assets",
            ]))
        if fe.render_time.current > t.frontend.render_time.critical:
            found.append(_bottleneck("frontend", "high", "Frontend render time is above critical threshold",
                                     {"renderTime": fe.render_time.current}, [
                "Implement code splitting and lazy loading",
                "Optimize React component rendering",
                "Review component lifecycle methods",
            ]))
        if fe.error_rate.current > t.frontend.error_rate.critical:
            found.append(_bottleneck("frontend", "critical", "Frontend error rate is critically high",
                                     {"errorRate": fe.error_rate.current}, [
                "Implement error boundaries",
                "Review client-side error logging",
                "Check API integration points",
            ]))

    return found


class PerformanceBottleneckService:
    """Keeps the running list of bottlenecks derived from the monitoring summary."""

    def __init__(self, monitoring: PerformanceMonitoringService):
        self._monitoring = monitoring
        self._thresholds = BottleneckThresholds()
        self._bottlenecks: List[PerformanceBottleneck] = []
        self._lock = RLock()

    # PUBLIC_INTERFACE
    def detect(self) -> List[PerformanceBottleneck]:
        """Re-detect bottlenecks, auto-resolve the ones that cleared, and return the active set."""
        detected = find_bottlenecks(self._monitoring.get_metrics_summary(), self.get_thresholds())
        keys = {(b.type, b.description) for b in detected}
        with self._lock:
            now = utc_now()
            for existing in self._bottlenecks:
                if existing.status == "active" and (existing.type, existing.description) not in keys:
                    existing.status = "resolved"
                    existing.resolved_at = now
                    existing.resolution_notes = AUTO_RESOLVE_NOTE
            known = {(b.type, b.description) for b in self._bottlenecks}
            for b in detected:
                if (b.type, b.description) not in known:
                    self._bottlenecks.append(b)
                    logger.info("Bottleneck detected type=%s severity=%s: %s", b.type, b.severity, b.description)
            return [b for b in self._bottlenecks if b.status == "active"]

    def list(self) -> List[PerformanceBottleneck]:
        with self._lock:
            return list(self._bottlenecks)

    def active(self) -> List[PerformanceBottleneck]:
        with self._lock:
            return [b for b in self._bottlenecks if b.status == "active"]

    def get(self, bottleneck_id: str) -> PerformanceBottleneck:
        with self._lock:
            for b in self._bottlenecks:
                if b.id == bottleneck_id:
                    return b
        raise NotFoundError(f"Bottleneck {bottleneck_id} not found")

    def update_status(self, bottleneck_id: str, status: str, notes: Optional[str] = None) -> PerformanceBottleneck:
        with self._lock:
            b = self.get(bottleneck_id)
            b.status = status
            if status == "resolved":
                b.resolved_at = utc_now()
                b.resolution_notes = notes
            elif notes:
                b.resolution_notes = notes
        return b

    def get_thresholds(self) -> BottleneckThresholds:
        with self._lock:
            return self._thresholds.model_copy(deep=True)

    def update_thresholds(self, update: BottleneckThresholdsUpdate) -> BottleneckThresholds:
        """Merge per area: only the metrics present in the request change."""
        with self._lock:
            merged = {}
            for area in update.model_fields_set:
                area_update = getattr(update, area)
                if area_update is None:
                    continue
                current = getattr(self._thresholds, area)
                changes = {k: getattr(area_update, k) for k in area_update.model_fields_set}
                merged[area] = current.model_copy(update=changes)
            self._thresholds = self._thresholds.model_copy(update=merged)
            return self._thresholds.model_copy(deep=True)
