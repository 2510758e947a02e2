from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Deque, Dict, List, Optional, Tuple

import psutil

from src.dashboard.db.mongo import MongoManager
from src.dashboard.errors import NotFoundError
from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.system_health import (
    AlertCounts,
    CpuUsage,
    HealthCheckCounts,
    HealthCheckResult,
    HealthMonitoringStatus,
    MemoryUsage,
    SystemAlert,
    SystemAlertCreate,
    SystemHealthMetrics,
    SystemHealthSnapshot,
    SystemHealthSummary,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
RETENTION = timedelta(days=1)

DB_PASS_MS = 100
DB_SLOW_MS = 1000
MEMORY_WARN_PCT = 80
MEMORY_CRITICAL_PCT = 90
MIN_UPTIME_SEC = 60

# Number of passes (including the current one) averaged into cpuUsage.average.
CPU_AVERAGE_WINDOW = 10

MIN_INTERVAL_SEC = 5
MAX_INTERVAL_SEC = 300


@dataclass(frozen=True)
class HostReadings:
    """Raw inputs of one health check pass."""

    uptime: float
    memory: MemoryUsage
    cpu_percent: float
    db_ok: bool
    db_response_ms: float
    db_error: Optional[str] = None


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    tail = f" {secs}s" if secs else ""
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m{tail}"
    if minutes:
        return f"{minutes}m{tail}"
    return f"{secs}s"


def database_status(readings: HostReadings) -> str:
    if not readings.db_ok:
        return "error"
    if readings.db_response_ms > DB_SLOW_MS:
        return "slow"
    return "connected"


# PUBLIC_INTERFACE
def run_checks(readings: HostReadings, now: datetime) -> List[HealthCheckResult]:
    """Grade the database, memory and uptime readings as pass/warn/fail."""
    if readings.db_ok:
        ms = readings.db_response_ms
        database = HealthCheckResult(
            name="database",
            status="pass" if ms < DB_PASS_MS else "warn" if ms < DB_SLOW_MS else "fail",
            message=f"Database response time: {round(ms)}ms",
            timestamp=now,
            response_time=ms,
            details={"responseTime": ms, "threshold": DB_SLOW_MS},
        )
    else:
        database = HealthCheckResult(
            name="database",
            status="fail",
            message="Database connection failed",
            timestamp=now,
            details={"error": readings.db_error or "Ping failed"},
        )

    pct = readings.memory.percentage
    memory = HealthCheckResult(
        name="memory",
        status="pass" if pct < MEMORY_WARN_PCT else "warn" if pct < MEMORY_CRITICAL_PCT else "fail",
        message=f"Memory usage: {pct:.2f}%",
        timestamp=now,
        details={"percentage": pct, "threshold": MEMORY_WARN_PCT},
    )

    uptime = HealthCheckResult(
        name="uptime",
        status="pass" if readings.uptime > MIN_UPTIME_SEC else "warn",
        message=f"System uptime: {format_uptime(readings.uptime)}",
        timestamp=now,
        details={"uptime": readings.uptime, "threshold": MIN_UPTIME_SEC},
    )
    return [database, memory, uptime]


def performance_score(checks: List[HealthCheckResult], memory_pct: float, db_status: str, api_status: str) -> int:
    score = 100
    score -= 25 * sum(1 for c in checks if c.status == "fail")
    score -= 10 * sum(1 for c in checks if c.status == "warn")

    if memory_pct > MEMORY_CRITICAL_PCT:
        score -= 20
    elif memory_pct > MEMORY_WARN_PCT:
        score -= 10

    if db_status == "error":
        score -= 30
    elif db_status == "slow":
        score -= 15

    if api_status == "down":
        score -= 25
    elif api_status == "degraded":
        score -= 10
    return max(0, score)


def analyze_status(checks: List[HealthCheckResult], memory_pct: float, db_status: str, api_status: str) -> str:
    if any(c.status == "fail" for c in checks):
        return "critical"
    if any(c.status == "warn" for c in checks) or db_status == "slow" or memory_pct > MEMORY_WARN_PCT:
        return "warning"
    if db_status == "connected" and api_status == "operational":
        return "healthy"
    return "unknown"


def alert_specs(
    checks: List[HealthCheckResult], memory_pct: float, db_status: str
) -> List[Tuple[Tuple[str, ...], Dict[str, Any]]]:
    """(dedupe key, alert fields) for every issue found in one pass."""
    specs = []
    for check in checks:
        if check.status == "fail":
            specs.append((("health-check", check.name), dict(
                type="critical", category="system", severity="critical", source="health-check",
                message=f"Critical health check failure: {check.message}", details=dict(check.details),
            )))
        elif check.status == "warn":
            specs.append((("health-check", check.name), dict(
                type="warning", category="system", severity="medium", source="health-check",
                message=f"Warning health check: {check.message}", details=dict(check.details),
            )))

    if memory_pct > MEMORY_CRITICAL_PCT:
        specs.append((("memory-monitor",), dict(
            type="critical", category="performance", severity="critical", source="memory-monitor",
            message=f"Critical memory usage: {memory_pct:.2f}%",
            details={"percentage": memory_pct, "threshold": MEMORY_CRITICAL_PCT},
        )))
    elif memory_pct > MEMORY_WARN_PCT:
        specs.append((("memory-monitor",), dict(
            type="warning", category="performance", severity="high", source="memory-monitor",
            message=f"High memory usage: {memory_pct:.2f}%",
            details={"percentage": memory_pct, "threshold": MEMORY_WARN_PCT},
        )))

    if db_status == "error":
        specs.append((("database-monitor",), dict(
            type="critical", category="database", severity="critical", source="database-monitor",
            message="Database connection error", details={"status": db_status},
        )))
    elif db_status == "slow":
        specs.append((("database-monitor",), dict(
            type="warning", category="database", severity="medium", source="database-monitor",
            message="Database performance degradation", details={"status": db_status},
        )))
    return specs


def _alert_id() -> str:
    return f"alert_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SystemHealthService:
    """
    Periodic component health checks aggregated into an overall system status.

    Each pass grades the database ping, host memory and process uptime, derives a 0-100 performance
    score and a healthy/warning/critical/unknown status, raises system alerts for the issues it finds
    and appends a snapshot to a bounded history. An issue that is still open (unacknowledged) from a
    previous pass is refreshed in place instead of being raised again.
    """

    def __init__(self, mongo: MongoManager, interval_sec: int = 30):
        self._mongo = mongo
        self._interval_sec = max(MIN_INTERVAL_SEC, min(MAX_INTERVAL_SEC, int(interval_sec)))
        self._process = psutil.Process()
        self._history: Deque[SystemHealthSnapshot] = deque(maxlen=HISTORY_LIMIT)
        self._alerts: Dict[str, SystemAlert] = {}
        self._open: Dict[Tuple[str, ...], str] = {}
        self._checks: List[HealthCheckResult] = []
        self._active = False
        self._lock = RLock()

    # ---- monitoring control ----

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def interval_sec(self) -> int:
        return self._interval_sec

    # PUBLIC_INTERFACE
    def start_monitoring(self, interval_ms: Optional[int] = None) -> None:
        """Activate periodic checks and run the first one right away. Starting twice is a no-op."""
        if self._active:
            logger.info("System health monitoring is already running")
            return
        if interval_ms:
            self._interval_sec = max(MIN_INTERVAL_SEC, min(MAX_INTERVAL_SEC, int(interval_ms) // 1000))
        self._active = True
        logger.info("System health monitoring started (interval=%ss)", self._interval_sec)
        self.perform_health_check()

    def stop_monitoring(self) -> None:
        if self._active:
            self._active = False
            logger.info("System health monitoring stopped")

    def monitoring_status(self) -> HealthMonitoringStatus:
        return HealthMonitoringStatus(
            is_active=self._active,
            status="monitoring" if self._active else "stopped",
            interval_ms=self._interval_sec * 1000,
        )

    # ---- checks ----

    def collect_readings(self) -> HostReadings:
        """Read process uptime and host memory/CPU through psutil and time a Mongo ping."""
        vm = psutil.virtual_memory()
        cpu = psutil.cpu_percent(interval=None)
        started = time.perf_counter()
        db_ok = self._mongo.ping()
        elapsed_ms = (time.perf_counter() - started) * 1000
        return HostReadings(
            uptime=max(0.0, time.time() - self._process.create_time()),
            memory=MemoryUsage(used=vm.used, total=vm.total, percentage=round(float(vm.percent), 2)),
            cpu_percent=float(cpu),
            db_ok=db_ok,
            db_response_ms=round(elapsed_ms, 2),
        )

    # PUBLIC_INTERFACE
    def perform_health_check(self) -> SystemHealthMetrics:
        """Run one pass. A pass whose host readings cannot be taken reports a critical status and is not stored."""
        now = utc_now()
        try:
            readings = self.collect_readings()
        except (psutil.Error, OSError):
            logger.exception("System health check failed")
            with self._lock:
                open_alerts = len(self._alerts)
            return SystemHealthMetrics(
                system_status="critical",
                uptime=0,
                memory_usage=MemoryUsage(),
                cpu_usage=CpuUsage(),
                database_status="error",
                api_status="error",
                last_health_check=now,
                active_alerts=open_alerts,
                performance_score=0,
            )
        return self.evaluate(readings, now)

    # PUBLIC_INTERFACE
    def evaluate(self, readings: HostReadings, now: Optional[datetime] = None) -> SystemHealthMetrics:
        """Grade a set of readings, raise alerts for the issues found and record the snapshot."""
        now = now or utc_now()
        checks = run_checks(readings, now)
        db_status = database_status(readings)
        # The API is served by this process; there is no separate reachability check.
        api_status = "operational"
        pct = readings.memory.percentage

        with self._lock:
            for key, fields in alert_specs(checks, pct, db_status):
                self._raise(key, now, **fields)
            self._checks = checks

            recent = [s.metrics.cpu_usage.current for s in list(self._history)[-(CPU_AVERAGE_WINDOW - 1):]]
            recent.append(readings.cpu_percent)
            metrics = SystemHealthMetrics(
                system_status=analyze_status(checks, pct, db_status, api_status),
                uptime=readings.uptime,
                memory_usage=readings.memory,
                cpu_usage=CpuUsage(
                    current=readings.cpu_percent,
                    average=round(sum(recent) / len(recent), 2),
                    percentage=readings.cpu_percent,
                ),
                database_status=db_status,
                api_status=api_status,
                last_health_check=now,
                active_alerts=len(self._alerts),
                performance_score=performance_score(checks, pct, db_status, api_status),
            )
            self._history.append(
                SystemHealthSnapshot(
                    timestamp=now, metrics=metrics, alerts=[a.model_copy() for a in self._alerts.values()]
                )
            )
        logger.debug(
            "Health check status=%s score=%s db=%s", metrics.system_status, metrics.performance_score, db_status
        )
        return metrics

    # ---- alerts ----

    def _raise(self, key: Tuple[str, ...], now: datetime, **fields) -> SystemAlert:
        existing = self._alerts.get(self._open.get(key, ""))
        if existing is not None and not existing.acknowledged:
            for name, value in fields.items():
                setattr(existing, name, value)
            existing.timestamp = now
            return existing
        alert = SystemAlert(id=_alert_id(), timestamp=now, **fields)
        self._alerts[alert.id] = alert
        self._open[key] = alert.id
        logger.warning("System alert %s raised: %s", alert.id, alert.message)
        return alert

    # PUBLIC_INTERFACE
    def create_alert(self, payload: SystemAlertCreate) -> SystemAlert:
        """Raise a system alert by hand."""
        alert = SystemAlert(id=_alert_id(), timestamp=utc_now(), **payload.model_dump())
        with self._lock:
            self._alerts[alert.id] = alert
        logger.info("System alert %s created by %s", alert.id, alert.source)
        return alert

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> SystemAlert:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError("Alert not found")
            alert.acknowledged = True
            alert.acknowledged_by = acknowledged_by
            alert.acknowledged_at = utc_now()
            self._open = {k: v for k, v in self._open.items() if v != alert_id}
        logger.info("System alert %s acknowledged by %s", alert_id, acknowledged_by)
        return alert

    # ---- queries ----

    def get_current_health(self) -> SystemHealthMetrics:
        with self._lock:
            if not self._history:
                raise NotFoundError("No health data available")
            return self._history[-1].metrics

    def get_history(self, limit: int = 100) -> List[SystemHealthSnapshot]:
        with self._lock:
            return list(self._history)[-limit:]

    def get_active_alerts(self) -> List[SystemAlert]:
        """Alerts still held by the service; acknowledged ones stay until cleanup."""
        with self._lock:
            return list(self._alerts.values())

    def get_health_checks(self) -> List[HealthCheckResult]:
        with self._lock:
            return list(self._checks)

    def get_summary(self) -> SystemHealthSummary:
        with self._lock:
            current = self._history[-1].metrics if self._history else None
            alerts = list(self._alerts.values())
            checks = list(self._checks)

        def severity(level: str) -> int:
            return sum(1 for a in alerts if a.severity == level)

        def graded(status: str) -> int:
            return sum(1 for c in checks if c.status == status)

        return SystemHealthSummary(
            current_health=current,
            active_alerts=AlertCounts(
                count=len(alerts),
                critical=severity("critical"),
                high=severity("high"),
                medium=severity("medium"),
                low=severity("low"),
            ),
            health_checks=HealthCheckCounts(
                total=len(checks), passed=graded("pass"), warnings=graded("warn"), failed=graded("fail")
            ),
            monitoring_status=self._active,
        )

    # PUBLIC_INTERFACE
    def cleanup(self, now: Optional[datetime] = None) -> datetime:
        """Drop snapshots older than a day and alerts acknowledged more than a day ago."""
        now = now or utc_now()
        cutoff = now - RETENTION
        with self._lock:
            kept = [s for s in self._history if s.timestamp > cutoff]
            self._history = deque(kept, maxlen=HISTORY_LIMIT)
            stale = [
                a.id for a in self._alerts.values()
                if a.acknowledged and a.acknowledged_at is not None and a.acknowledged_at < cutoff
            ]
            for alert_id in stale:
                del self._alerts[alert_id]
        logger.info("System health cleanup removed %d alert(s)", len(stale))
        return now
