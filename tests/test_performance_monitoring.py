from __future__ import annotations

import httpx
import pytest

from src.dashboard.schemas.monitoring import MonitoringConfigUpdate
from src.dashboard.services.monitoring_service import PerformanceMonitoringService


def _started() -> PerformanceMonitoringService:
    svc = PerformanceMonitoringService()
    svc.start()
    return svc


def test_tracking_is_ignored_while_stopped():
    svc = PerformanceMonitoringService()
    assert svc.track_api_call("GET /x", 0, 500) is None
    assert svc.get_metrics() == []
    assert svc.get_alerts() == []


def test_slow_api_call_raises_warning_alert():
    svc = _started()
    metric = svc.track_api_call("GET /api/users", 1000, 1250, {"statusCode": 200})
    assert metric is not None and metric.value == 250 and metric.unit == "ms"

    alerts = svc.get_alerts()
    assert len(alerts) == 1
    assert alerts[0].type == "warning"
    assert alerts[0].metric_id == metric.id
    assert alerts[0].message == "API response time 250ms exceeds threshold 200ms"


def test_database_query_name_is_truncated_and_full_query_kept():
    svc = _started()
    query = "SELECT * FROM orders WHERE " + "x = 1 AND " * 20
    metric = svc.track_database_query(query, 0, 20)
    assert metric.name == query[:100]
    assert metric.metadata["fullQuery"] == query
    assert svc.get_alerts() == []


def test_host_samples_use_display_metric_names():
    svc = _started()
    memory = svc.record_memory_sample()
    cpu = svc.record_cpu_sample()
    assert memory.name == "Memory Usage" and memory.unit == "%"
    assert cpu.name == "CPU Usage" and cpu.unit == "%"
    assert {m.name for m in svc.get_metrics("system")} == {"Memory Usage", "CPU Usage"}


def test_get_metrics_returns_latest_oldest_first():
    svc = _started()
    for i in range(5):
        svc.track_frontend_performance(f"/page-{i}", 100 + i)
    latest = svc.get_metrics("frontend", limit=3)
    assert [m.name for m in latest] == ["/page-2", "/page-3", "/page-4"]


def test_summary_percentiles_trends_and_health():
    svc = _started()
    svc.update_config(MonitoringConfigUpdate(api_response_time_threshold=10_000))
    # 10 fast calls then 10 slow calls: latency rising means degrading.
    for _ in range(10):
        svc.track_api_call("GET /fast", 0, 100)
    for _ in range(10):
        svc.track_api_call("GET /slow", 0, 200)

    summary = svc.get_metrics_summary()
    assert summary.total_metrics == 20
    assert summary.api.throughput.current == 20
    assert summary.api.response_time.current == 150
    assert summary.api.response_time.p95 == 200
    assert summary.api.response_time.min == 100
    assert summary.trends.api.direction == "degrading"
    assert summary.trends.api.percentage == 100
    assert summary.trends.database.direction == "stable"
    assert summary.trends.overall.direction == "degrading"
    assert summary.system_health == "healthy"
    assert summary.sla_compliance.api.response_time == 100


def test_many_warnings_degrade_system_health():
    svc = _started()
    for _ in range(6):
        svc.track_frontend_performance("/slow", 5000)
    summary = svc.get_metrics_summary()
    assert summary.warning_alerts == 6
    assert summary.frontend.slow_pages.current == 6
    assert summary.system_health == "warning"
    assert summary.sla_compliance.frontend.slow_pages == 0


@pytest.mark.anyio
async def test_start_stop_and_report_timings(client: httpx.AsyncClient):
    res = await client.post("/api/performanceMonitoring/start")
    assert res.status_code == 200
    assert res.json()["data"] == {"isActive": True}

    res = await client.post(
        "/api/performanceMonitoring/metrics/database", json={"query": "SELECT 1", "durationMs": 250}
    )
    assert res.status_code == 201, res.text
    metric = res.json()["data"]
    assert metric["type"] == "database"
    assert metric["value"] == pytest.approx(250)

    res = await client.post(
        "/api/performanceMonitoring/metrics/frontend", json={"page": "/dashboard", "loadTimeMs": 1200}
    )
    assert res.status_code == 201

    res = await client.get("/api/performanceMonitoring/metrics/database")
    body = res.json()["data"]
    assert body["type"] == "database"
    assert body["count"] == 1

    res = await client.get("/api/performanceMonitoring/alerts", params={"type": "warning"})
    assert any(a["actualValue"] == pytest.approx(250) for a in res.json()["data"])

    res = await client.post("/api/performanceMonitoring/stop")
    assert res.json()["data"]["isActive"] is False
    res = await client.post(
        "/api/performanceMonitoring/metrics/frontend", json={"page": "/ignored", "loadTimeMs": 10}
    )
    assert res.status_code == 201
    assert res.json()["data"] is None


@pytest.mark.anyio
async def test_api_requests_are_tracked_by_middleware(client: httpx.AsyncClient):
    await client.post("/api/performanceMonitoring/start")
    await client.get("/api/performanceMonitoring/config")
    await client.get("/api/health")

    res = await client.get("/api/performanceMonitoring/metrics/api")
    names = [m["name"] for m in res.json()["data"]["metrics"]]
    assert "GET /api/performanceMonitoring/config" in names
    assert not any("/api/health" in n for n in names)

    tracked = next(m for m in res.json()["data"]["metrics"] if m["name"] == "GET /api/performanceMonitoring/config")
    assert tracked["metadata"]["statusCode"] == 200
    assert tracked["metadata"]["method"] == "GET"
    assert tracked["metadata"]["failed"] is False


@pytest.mark.anyio
async def test_invalid_metric_type_is_rejected(client: httpx.AsyncClient):
    res = await client.get("/api/performanceMonitoring/metrics/network")
    assert res.status_code == 400
    assert "Invalid metric type" in res.json()["error"]["message"]


@pytest.mark.anyio
async def test_config_shallow_merge_and_summary(client: httpx.AsyncClient):
    res = await client.put("/api/performanceMonitoring/config", json={"apiResponseTimeThreshold": 500})
    assert res.status_code == 200
    cfg = res.json()["data"]
    assert cfg["apiResponseTimeThreshold"] == 500
    assert cfg["databaseQueryTimeThreshold"] == 100

    res = await client.get("/api/performanceMonitoring/metrics/summary")
    assert res.status_code == 200
    summary = res.json()["data"]
    assert summary["systemHealth"] == "healthy"
    assert set(summary["slaCompliance"]) == {"api", "database", "frontend", "overall"}
    assert summary["system"]["memory"]["threshold"] == 80
    assert "formatted" in summary["system"]["uptime"]
