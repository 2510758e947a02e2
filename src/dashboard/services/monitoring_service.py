from __future__ import annotations

import logging
import math
import time
import uuid
from datetime import timedelta
from threading import RLock
from typing import Any, Dict, List, Optional

import psutil

from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.monitoring import (
    ApiSla,
    ApiSummary,
    ApiThroughput,
    CpuStats,
    DatabaseSla,
    DatabaseSummary,
    DatabaseThroughput,
    FrontendSla,
    FrontendSummary,
    FrontendThroughput,
    MemoryStats,
    MonitoringConfig,
    MonitoringConfigUpdate,
    OverallTrend,
    PerformanceMetric,
    PerformanceSummary,
    SlaCompliance,
    SystemSummary,
    ThresholdAlert,
    TimingStats,
    Trend,
    TrendSummary,
    UptimeStats,
    WindowCount,
)

logger = logging.getLogger(__name__)

MEMORY_METRIC = "Memory Usage"
CPU_METRIC = "CPU Usage"


def _new_id() -> str:
    return f"perf_{uuid.uuid4().hex[:16]}"


def _values(metrics: List[PerformanceMetric]) -> List[float]:
    return [m.value for m in metrics]


def _average(values: List[float]) -> float:
    if not values:
        return 0
    return round(sum(values) / len(values))


def _percentile(values: List[float], pct: float) -> float:
    if not values:
        return 0
    ordered = sorted(values)
    index = max(0, math.ceil(pct / 100 * len(ordered)) - 1)
    return ordered[min(index, len(ordered) - 1)]


def _error_rate(metrics: List[PerformanceMetric]) -> float:
    if not metrics:
        return 0
    failed = [m for m in metrics if m.metadata.get("failed") or m.metadata.get("error")]
    return len(failed) / len(metrics) * 100


def _render_time(metrics: List[PerformanceMetric]) -> float:
    values = []
    for m in metrics:
        raw = m.metadata.get("renderTime")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            values.append(float(raw))
    return _average(values)


def _timing(recent: List[PerformanceMetric], daily: List[PerformanceMetric]) -> TimingStats:
    values = _values(recent)
    return TimingStats(
        current=_average(values),
        daily=_average(_values(daily)),
        p95=_percentile(values, 95),
        p99=_percentile(values, 99),
        min=min(values) if values else 0,
        max=max(values) if values else 0,
    )


def _format_uptime(seconds: float) -> str:
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _trend(metrics: List[PerformanceMetric]) -> Trend:
    if len(metrics) < 2:
        return Trend()
    recent = metrics[-10:]
    older = metrics[-20:-10]
    if not older:
        return Trend()
    recent_avg = _average(_values(recent))
    older_avg = _average(_values(older))
    if older_avg == 0:
        return Trend()
    pct = (recent_avg - older_avg) / older_avg * 100
    # All tracked series are latencies: going up is getting worse.
    direction = "degrading" if pct > 5 else "improving" if pct < -5 else "stable"
    return Trend(direction=direction, percentage=round(pct, 2))


def _overall_trend(trends: List[Trend]) -> OverallTrend:
    improving = sum(1 for t in trends if t.direction == "improving")
    degrading = sum(1 for t in trends if t.direction == "degrading")
    stable = sum(1 for t in trends if t.direction == "stable")
    if degrading > improving:
        direction = "degrading"
    elif improving > degrading:
        direction = "improving"
    else:
        direction = "stable"
    return OverallTrend(
        direction=direction, improving=improving, degrading=degrading, stable=stable, total=len(trends)
    )


def _latency_compliance(p95: float, threshold: float) -> float:
    if threshold <= 0 or p95 <= threshold:
        return 100.0
    return max(0.0, 100 - (p95 - threshold) / threshold * 100)


class PerformanceMonitoringService:
    """
    In-memory performance monitor.

    Tracks api/database/frontend timings plus sampled system resources, raises threshold alerts,
    and summarizes everything into KPIs for the dashboard, the alert rules and bottleneck detection.
    """

    def __init__(self, config: Optional[MonitoringConfig] = None):
        self._config = config or MonitoringConfig()
        self._metrics: List[PerformanceMetric] = []
        self._alerts: List[ThresholdAlert] = []
        self._active = False
        self._lock = RLock()
        self._process = psutil.Process()

    # ---- lifecycle ----

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        logger.info("Performance monitoring started")

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        logger.info("Performance monitoring stopped")

    # ---- config ----

    def get_config(self) -> MonitoringConfig:
        return self._config.model_copy()

    def update_config(self, update: MonitoringConfigUpdate) -> MonitoringConfig:
        """Shallow-merge the provided fields into the current config."""
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        with self._lock:
            self._config = self._config.model_copy(update=changes)
        logger.info("Performance monitoring config updated fields=%s", sorted(changes))
        return self.get_config()

    # ---- tracking ----

    # PUBLIC_INTERFACE
    def track_api_call(
        self, name: str, start: float, end: float, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[PerformanceMetric]:
        """Record an API call; start/end are epoch milliseconds."""
        if not self._active:
            return None
        metric = self._add_metric("api", name, end - start, "ms", metadata or {})
        threshold = self._config.api_response_time_threshold
        if metric.value > threshold:
            self._create_alert(
                metric, "warning", f"API response time {metric.value:g}ms exceeds threshold {threshold:g}ms", threshold
            )
        return metric

    # PUBLIC_INTERFACE
    def track_database_query(
        self, query: str, start: float, end: float, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[PerformanceMetric]:
        """Record a database query timing; long queries are truncated in the metric name."""
        if not self._active:
            return None
        meta = {"fullQuery": query, **(metadata or {})}
        metric = self._add_metric("database", query[:100], end - start, "ms", meta)
        threshold = self._config.database_query_time_threshold
        if metric.value > threshold:
            self._create_alert(
                metric,
                "warning",
                f"Database query time {metric.value:g}ms exceeds threshold {threshold:g}ms",
                threshold,
            )
        return metric

    # PUBLIC_INTERFACE
    def track_frontend_performance(
        self, page: str, load_time_ms: float, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[PerformanceMetric]:
        """Record a frontend page load."""
        if not self._active:
            return None
        metric = self._add_metric("frontend", page, load_time_ms, "ms", metadata or {})
        threshold = self._config.frontend_load_time_threshold
        if metric.value > threshold:
            self._create_alert(
                metric,
                "warning",
                f"Frontend load time {metric.value:g}ms exceeds threshold {threshold:g}ms",
                threshold,
            )
        return metric

    def record_memory_sample(self) -> Optional[PerformanceMetric]:
        """Sample system memory usage (percent) via psutil."""
        if not self._active:
            return None
        vm = psutil.virtual_memory()
        metric = self._add_metric(
            "system",
            MEMORY_METRIC,
            float(vm.percent),
            "%",
            {"total": vm.total, "available": vm.available, "used": vm.used, "rss": self._process.memory_info().rss},
        )
        threshold = self._config.system_memory_threshold
        if metric.value > threshold:
            self._create_alert(
                metric, "critical", f"Memory usage {metric.value:.2f}% exceeds threshold {threshold:g}%", threshold
            )
        return metric

    def record_cpu_sample(self) -> Optional[PerformanceMetric]:
        """Sample system CPU usage (percent) via psutil."""
        if not self._active:
            return None
        pct = psutil.cpu_percent(interval=0.1)
        return self._add_metric("system", CPU_METRIC, float(pct), "%", {"cpuCount": psutil.cpu_count()})

    def _add_metric(self, mtype: str, name: str, value: float, unit: str, metadata: Dict[str, Any]) -> PerformanceMetric:
        metric = PerformanceMetric(
            id=_new_id(), type=mtype, name=name, value=float(value), unit=unit, timestamp=utc_now(), metadata=metadata
        )
        with self._lock:
            self._metrics.append(metric)
            self._cleanup_old()
        return metric

    def _cleanup_old(self) -> None:
        cutoff = utc_now() - timedelta(days=self._config.metrics_retention_days)
        self._metrics = [m for m in self._metrics if m.timestamp > cutoff]
        self._alerts = [a for a in self._alerts if a.timestamp > cutoff]

    def _create_alert(self, metric: PerformanceMetric, atype: str, message: str, threshold: float) -> None:
        if not self._config.alert_enabled:
            return
        alert = ThresholdAlert(
            id=_new_id(),
            metric_id=metric.id,
            type=atype,
            message=message,
            threshold=threshold,
            actual_value=metric.value,
            timestamp=utc_now(),
        )
        with self._lock:
            self._alerts.append(alert)
        logger.debug("Threshold alert type=%s metric=%s", atype, metric.name)

    # ---- queries ----

    def get_metrics(self, mtype: Optional[str] = None, limit: int = 100) -> List[PerformanceMetric]:
        """Return the most recent `limit` metrics (oldest first)."""
        with self._lock:
            items = [m for m in self._metrics if mtype is None or m.type == mtype]
        return items[-limit:] if limit > 0 else []

    def get_alerts(self, atype: Optional[str] = None, limit: int = 50) -> List[ThresholdAlert]:
        with self._lock:
            items = [a for a in self._alerts if atype is None or a.type == atype]
        return items[-limit:] if limit > 0 else []

    def uptime_seconds(self) -> float:
        return max(0.0, time.time() - self._process.create_time())

    # PUBLIC_INTERFACE
    def get_metrics_summary(self) -> PerformanceSummary:
        """
        Summarize tracked metrics into KPIs.

        Windows: "current" values use the last hour, "daily" the last 24h and trends the last 7 days.
        """
        now = utc_now()
        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(days=1)
        week_ago = now - timedelta(days=7)

        with self._lock:
            metrics = list(self._metrics)
            alerts = list(self._alerts)
            cfg = self._config.model_copy()

        recent = [m for m in metrics if m.timestamp > hour_ago]
        daily = [m for m in metrics if m.timestamp > day_ago]
        weekly = [m for m in metrics if m.timestamp > week_ago]

        def of_type(items: List[PerformanceMetric], mtype: str) -> List[PerformanceMetric]:
            return [m for m in items if m.type == mtype]

        api_recent, api_daily = of_type(recent, "api"), of_type(daily, "api")
        db_recent, db_daily = of_type(recent, "database"), of_type(daily, "database")
        fe_recent, fe_daily = of_type(recent, "frontend"), of_type(daily, "frontend")
        sys_recent = of_type(recent, "system")

        api_error_now = _error_rate(api_recent)
        api_error_daily = _error_rate(api_daily)
        api = ApiSummary(
            response_time=_timing(api_recent, api_daily),
            throughput=ApiThroughput(current=len(api_recent), daily=len(api_daily), rps=len(api_recent) / 3600),
            error_rate=WindowCount(current=api_error_now, daily=api_error_daily),
            availability=WindowCount(current=max(0.0, 100 - api_error_now), daily=max(0.0, 100 - api_error_daily)),
        )

        db_threshold = cfg.database_query_time_threshold
        database = DatabaseSummary(
            query_time=_timing(db_recent, db_daily),
            throughput=DatabaseThroughput(current=len(db_recent), daily=len(db_daily), qps=len(db_recent) / 3600),
            error_rate=WindowCount(current=_error_rate(db_recent), daily=_error_rate(db_daily)),
            slow_queries=WindowCount(
                current=sum(1 for m in db_recent if m.value > db_threshold),
                daily=sum(1 for m in db_daily if m.value > db_threshold),
            ),
        )

        fe_threshold = cfg.frontend_load_time_threshold
        frontend = FrontendSummary(
            load_time=_timing(fe_recent, fe_daily),
            throughput=FrontendThroughput(current=len(fe_recent), daily=len(fe_daily), pps=len(fe_recent) / 3600),
            slow_pages=WindowCount(
                current=sum(1 for m in fe_recent if m.value > fe_threshold),
                daily=sum(1 for m in fe_daily if m.value > fe_threshold),
            ),
            render_time=WindowCount(current=_render_time(fe_recent), daily=_render_time(fe_daily)),
            error_rate=WindowCount(current=_error_rate(fe_recent), daily=_error_rate(fe_daily)),
        )

        memory = _values([m for m in sys_recent if m.name == MEMORY_METRIC])
        cpu = _values([m for m in sys_recent if m.name == CPU_METRIC])
        uptime = self.uptime_seconds()
        system = SystemSummary(
            memory=MemoryStats(
                current=memory[-1] if memory else 0,
                average=_average(memory),
                max=max(memory) if memory else 0,
                threshold=cfg.system_memory_threshold,
            ),
            cpu=CpuStats(current=cpu[-1] if cpu else 0, average=_average(cpu), max=max(cpu) if cpu else 0),
            uptime=UptimeStats(current=uptime, formatted=_format_uptime(uptime)),
        )

        critical = sum(1 for a in alerts if a.type == "critical")
        warnings = sum(1 for a in alerts if a.type == "warning")
        if critical > 0:
            health = "critical"
        elif warnings > 5:
            health = "warning"
        else:
            health = "healthy"

        api_trend = _trend(of_type(weekly, "api"))
        db_trend = _trend(of_type(weekly, "database"))
        fe_trend = _trend(of_type(weekly, "frontend"))

        api_sla = ApiSla(
            response_time=_latency_compliance(api.response_time.p95, cfg.api_response_time_threshold),
            availability=api.availability.current,
            error_rate=max(0.0, 100 - api.error_rate.current),
            compliance=0,
        )
        api_sla.compliance = (api_sla.response_time + api_sla.availability + api_sla.error_rate) / 3

        db_sla = DatabaseSla(
            query_time=_latency_compliance(database.query_time.p95, db_threshold),
            error_rate=max(0.0, 100 - database.error_rate.current),
            slow_queries=max(
                0.0, 100 - database.slow_queries.current / max(database.throughput.current, 1) * 100
            ),
            compliance=0,
        )
        db_sla.compliance = (db_sla.query_time + db_sla.error_rate + db_sla.slow_queries) / 3

        fe_sla = FrontendSla(
            load_time=_latency_compliance(frontend.load_time.p95, fe_threshold),
            slow_pages=max(0.0, 100 - frontend.slow_pages.current / max(frontend.throughput.current, 1) * 100),
            compliance=0,
        )
        fe_sla.compliance = (fe_sla.load_time + fe_sla.slow_pages) / 2

        return PerformanceSummary(
            total_metrics=len(metrics),
            total_alerts=len(alerts),
            recent_metrics=len(recent),
            daily_metrics=len(daily),
            weekly_metrics=len(weekly),
            active_alerts=critical,
            warning_alerts=warnings,
            error_alerts=sum(1 for a in alerts if a.type == "error"),
            api=api,
            database=database,
            frontend=frontend,
            system=system,
            system_health=health,
            trends=TrendSummary(
                api=api_trend,
                database=db_trend,
                frontend=fe_trend,
                overall=_overall_trend([api_trend, db_trend, fe_trend]),
            ),
            sla_compliance=SlaCompliance(
                api=api_sla,
                database=db_sla,
                frontend=fe_sla,
                overall=(api_sla.compliance + db_sla.compliance + fe_sla.compliance) / 3,
            ),
        )
