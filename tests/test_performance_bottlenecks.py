from __future__ import annotations

import httpx
import pytest

from src.dashboard.schemas.bottlenecks import BottleneckThresholdsUpdate
from src.dashboard.services.bottleneck_service import AUTO_RESOLVE_NOTE, PerformanceBottleneckService
from src.dashboard.services.monitoring_service import PerformanceMonitoringService


def _services():
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    return monitoring, PerformanceBottleneckService(monitoring)


def test_idle_system_reports_nothing():
    _, bottlenecks = _services()
    assert bottlenecks.detect() == []


def test_slow_api_is_detected_then_auto_resolved():
    monitoring, bottlenecks = _services()
    monitoring.track_api_call("GET /reports", 0, 1500)

    found = bottlenecks.detect()
    descriptions = {b.description for b in found}
    assert "API response time is critically high" in descriptions
    assert "API throughput is below critical threshold" in descriptions
    slow = next(b for b in found if b.description == "API response time is critically high")
    assert slow.severity == "critical"
    assert slow.metrics == {"responseTime": 1500}
    assert "Implement API response caching" in slow.recommendations

    # Detecting again does not duplicate.
    assert len(bottlenecks.detect()) == len(found)

    for _ in range(100):
        monitoring.track_api_call("GET /reports", 0, 10)
    assert bottlenecks.detect() == []

    resolved = bottlenecks.get(slow.id)
    assert resolved.status == "resolved"
    assert resolved.resolution_notes == AUTO_RESOLVE_NOTE
    assert resolved.resolved_at is not None


def test_slow_query_share_uses_percentage():
    monitoring, bottlenecks = _services()
    for _ in range(2):
        monitoring.track_database_query("SELECT * FROM orders", 0, 5)
    monitoring.track_database_query("SELECT * FROM orders o JOIN items i ON i.order_id = o.id", 0, 400)

    found = bottlenecks.detect()
    share = next(b for b in found if b.description == "High percentage of slow database queries")
    assert share.severity == "high"
    assert share.metrics["slowQueries"] == pytest.approx(33.33)


def test_threshold_update_merges_per_metric():
    _, bottlenecks = _services()
    update = BottleneckThresholdsUpdate.model_validate(
        {"api": {"responseTime": {"warning": 100, "critical": 200}}}
    )
    merged = bottlenecks.update_thresholds(update)
    assert merged.api.response_time.critical == 200
    assert merged.api.error_rate.critical == 10
    assert merged.database.query_time.critical == 500


@pytest.mark.anyio
async def test_bottleneck_api_flow(client: httpx.AsyncClient, fresh_state):
    fresh_state.monitoring.start()
    fresh_state.monitoring.track_frontend_performance("/checkout", 8000)

    res = await client.get("/api/performanceBottleneck/detect")
    assert res.status_code == 200
    body = res.json()
    assert body["message"].startswith("Detected ")
    load = next(b for b in body["data"] if b["description"] == "Frontend load time is critically high")

    res = await client.put(
        f"/api/performanceBottleneck/{load['id']}/status", json={"status": "investigating", "notes": "CDN team"}
    )
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "investigating"

    res = await client.get("/api/performanceBottleneck/active")
    assert load["id"] not in [b["id"] for b in res.json()["data"]]

    res = await client.put("/api/performanceBottleneck/thresholds", json={"frontend": {"loadTime": {"warning": 9000, "critical": 10000}}})
    assert res.status_code == 200
    assert res.json()["data"]["frontend"]["loadTime"]["critical"] == 10000
    assert res.json()["data"]["frontend"]["renderTime"]["critical"] == 2000

    res = await client.get("/api/performanceBottleneck/bottleneck_missing")
    assert res.status_code == 404
