from __future__ import annotations

from datetime import timedelta

import httpx
import psutil
import pytest

from src.dashboard.errors import NotFoundError
from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.system_health import MemoryUsage
from src.dashboard.services.system_health_service import (
    HostReadings,
    SystemHealthService,
    analyze_status,
    format_uptime,
    performance_score,
    run_checks,
)


def _readings(db_ms=20.0, memory=50.0, uptime=3600.0, cpu=10.0, db_ok=True) -> HostReadings:
    return HostReadings(
        uptime=uptime,
        memory=MemoryUsage(used=memory, total=100, percentage=memory),
        cpu_percent=cpu,
        db_ok=db_ok,
        db_response_ms=db_ms,
    )


def test_format_uptime():
    assert format_uptime(5.7) == "5s"
    assert format_uptime(120) == "2m"
    assert format_uptime(125) == "2m 5s"
    assert format_uptime(3660) == "1h 1m"
    assert format_uptime(3725) == "1h 2m 5s"
    assert format_uptime(90061) == "1d 1h 1m"


def test_healthy_readings_pass_every_check(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    metrics = svc.evaluate(_readings())
    assert metrics.system_status == "healthy"
    assert metrics.performance_score == 100
    assert metrics.database_status == "connected"
    assert metrics.active_alerts == 0
    checks = {c.name: c for c in svc.get_health_checks()}
    assert [c.status for c in checks.values()] == ["pass", "pass", "pass"]
    assert checks["database"].message == "Database response time: 20ms"
    assert checks["memory"].message == "Memory usage: 50.00%"
    assert checks["uptime"].message == "System uptime: 1h 0m"


def test_warnings_lower_score_and_raise_alerts(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    metrics = svc.evaluate(_readings(db_ms=500, memory=85, uptime=30))
    # Three warnings (-30) plus memory above 80% (-10).
    assert metrics.performance_score == 60
    assert metrics.system_status == "warning"
    assert metrics.database_status == "connected"

    alerts = svc.get_active_alerts()
    messages = sorted(a.message for a in alerts)
    assert messages == [
        "High memory usage: 85.00%",
        "Warning health check: Database response time: 500ms",
        "Warning health check: Memory usage: 85.00%",
        "Warning health check: System uptime: 30s",
    ]
    assert {a.severity for a in alerts if a.source == "memory-monitor"} == {"high"}
    assert all(a.id.startswith("alert_") for a in alerts)


def test_failures_drive_status_critical_and_score_to_zero(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    metrics = svc.evaluate(_readings(memory=95, db_ok=False))
    assert metrics.system_status == "critical"
    assert metrics.database_status == "error"
    assert metrics.performance_score == 0

    checks = {c.name: c.status for c in svc.get_health_checks()}
    assert checks == {"database": "fail", "memory": "fail", "uptime": "pass"}
    assert {a.source for a in svc.get_active_alerts()} == {"health-check", "memory-monitor", "database-monitor"}


def test_slow_database_is_flagged_without_failing_the_ping():
    now = utc_now()
    checks = run_checks(_readings(db_ms=1500), now)
    assert checks[0].status == "fail"
    assert performance_score(checks, 50, "slow", "operational") == 60
    assert analyze_status(checks, 50, "slow", "operational") == "critical"


def test_score_and_status_for_api_and_database_states():
    assert performance_score([], 10, "connected", "down") == 75
    assert performance_score([], 10, "connected", "degraded") == 90
    assert analyze_status([], 10, "disconnected", "operational") == "unknown"
    assert analyze_status([], 85, "connected", "operational") == "warning"


def test_open_issues_are_refreshed_not_duplicated(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    svc.evaluate(_readings(memory=95, db_ok=False))
    first = {a.id for a in svc.get_active_alerts()}
    assert len(first) == 4

    svc.evaluate(_readings(memory=97, db_ok=False))
    alerts = svc.get_active_alerts()
    assert {a.id for a in alerts} == first
    assert "Critical memory usage: 97.00%" in {a.message for a in alerts}

    memory_alert = next(a for a in alerts if a.source == "memory-monitor")
    svc.acknowledge_alert(memory_alert.id, "ops@example.com")
    svc.evaluate(_readings(memory=97, db_ok=False))
    assert len(svc.get_active_alerts()) == 5
    assert svc.get_summary().active_alerts.critical == 5


def test_cpu_average_spans_recent_passes(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    svc.evaluate(_readings(cpu=10))
    metrics = svc.evaluate(_readings(cpu=30))
    assert metrics.cpu_usage.current == 30
    assert metrics.cpu_usage.average == 20


def test_cleanup_drops_old_snapshots_and_acknowledged_alerts(fresh_state):
    svc = SystemHealthService(fresh_state.mongo)
    now = utc_now()
    svc.evaluate(_readings(memory=85), now=now - timedelta(days=2))
    svc.evaluate(_readings(memory=85), now=now)
    assert len(svc.get_history()) == 2

    alert = next(a for a in svc.get_active_alerts() if a.source == "memory-monitor")
    svc.acknowledge_alert(alert.id, "ops@example.com")
    alert.acknowledged_at = now - timedelta(days=2)
    kept_before = len(svc.get_active_alerts())

    svc.cleanup(now=now)
    assert [s.timestamp for s in svc.get_history()] == [now]
    assert len(svc.get_active_alerts()) == kept_before - 1
    with pytest.raises(NotFoundError):
        svc.acknowledge_alert(alert.id, "ops@example.com")


def test_unreadable_host_reports_critical_without_storing(fresh_state, monkeypatch):
    svc = SystemHealthService(fresh_state.mongo)

    def broken():
        raise psutil.AccessDenied()

    monkeypatch.setattr(svc, "collect_readings", broken)
    metrics = svc.perform_health_check()
    assert metrics.system_status == "critical"
    assert metrics.api_status == "error"
    assert metrics.performance_score == 0
    with pytest.raises(NotFoundError):
        svc.get_current_health()


def test_host_readings_come_from_psutil(fresh_state):
    readings = SystemHealthService(fresh_state.mongo).collect_readings()
    assert 0 <= readings.memory.percentage <= 100
    assert readings.memory.total > 0
    assert readings.uptime >= 0
    assert readings.db_response_ms >= 0


@pytest.mark.anyio
async def test_system_health_routes(client: httpx.AsyncClient, fresh_state, monkeypatch):
    monkeypatch.setattr(fresh_state.system_health, "collect_readings", lambda: _readings(memory=85))

    res = await client.get("/api/system-health/current")
    assert res.status_code == 404
    assert res.json()["error"]["message"] == "No health data available"

    res = await client.post("/api/system-health/monitoring/start", json={"intervalMs": 1000})
    assert res.status_code == 400
    res = await client.post("/api/system-health/monitoring/start", json={"intervalMs": 10000})
    assert res.status_code == 200, res.text
    assert res.json()["data"] == {"isActive": True, "status": "monitoring", "intervalMs": 10000}

    res = await client.get("/api/system-health/current")
    assert res.status_code == 200
    current = res.json()["data"]
    assert current["systemStatus"] == "warning"
    assert current["memoryUsage"]["percentage"] == 85
    assert current["performanceScore"] == 80

    res = await client.post("/api/system-health/health-check")
    assert res.json()["data"]["activeAlerts"] == 2
    res = await client.get("/api/system-health/history", params={"limit": 1})
    assert len(res.json()["data"]) == 1
    assert (await client.get("/api/system-health/history", params={"limit": 0})).status_code == 400

    res = await client.post(
        "/api/system-health/alerts",
        json={"type": "info", "category": "security", "message": "Key rotated", "severity": "low", "source": "ops"},
    )
    assert res.status_code == 201
    manual = res.json()["data"]
    assert manual["acknowledged"] is False
    res = await client.post(
        "/api/system-health/alerts",
        json={"type": "notice", "category": "security", "message": "x", "severity": "low", "source": "ops"},
    )
    assert res.status_code == 400

    res = await client.put(
        f"/api/system-health/alerts/{manual['id']}/acknowledge", json={"acknowledgedBy": "ops@example.com"}
    )
    assert res.json()["data"]["acknowledgedBy"] == "ops@example.com"
    res = await client.put("/api/system-health/alerts/alert_missing/acknowledge", json={"acknowledgedBy": "ops"})
    assert res.status_code == 404
    assert res.json()["error"]["message"] == "Alert not found"

    summary = (await client.get("/api/system-health/summary")).json()["data"]
    assert summary["activeAlerts"] == {"count": 3, "critical": 0, "high": 1, "medium": 1, "low": 1}
    assert summary["healthChecks"] == {"total": 3, "passed": 2, "warnings": 1, "failed": 0}
    assert summary["monitoringStatus"] is True

    checks = (await client.get("/api/system-health/health-checks")).json()["data"]
    assert [c["name"] for c in checks] == ["database", "memory", "uptime"]

    res = await client.post("/api/system-health/cleanup")
    assert res.json()["data"]["status"] == "completed"

    res = await client.post("/api/system-health/monitoring/stop")
    assert res.json()["data"]["status"] == "stopped"
    assert (await client.get("/api/system-health/monitoring/status")).json()["data"]["isActive"] is False


@pytest.mark.anyio
async def test_system_health_requires_token(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/system-health/summary")
    assert res.status_code == 401
