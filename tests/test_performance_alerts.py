from __future__ import annotations

import httpx
import pytest

from src.dashboard.services.alerts_service import (
    PerformanceAlertService,
    evaluate_condition,
    extract_metric_value,
)
from src.dashboard.services.monitoring_service import PerformanceMonitoringService


def test_extract_metric_value_falls_back_to_current_average_value():
    section = {"responseTime": {"current": 120, "p95": 300}, "memory": {"average": 55}, "name": "x"}
    assert extract_metric_value(section, "responseTime") == 120
    assert extract_metric_value(section, "responseTime.p95") == 300
    assert extract_metric_value(section, "memory") == 55
    assert extract_metric_value(section, "name") is None
    assert extract_metric_value(section, "missing.path") is None


@pytest.mark.parametrize(
    "value,condition,threshold,expected",
    [
        (150, "above", 100, True),
        (150, "above", "200", False),
        (5, "below", 10, True),
        (10, "equals", "10", True),
        (10, "not_equals", 10, False),
        (1234, "contains", "23", True),
        (1234, "not_contains", "23", False),
    ],
)
def test_evaluate_condition(value, condition, threshold, expected):
    assert evaluate_condition(value, condition, threshold) is expected


@pytest.mark.anyio
async def test_rule_evaluation_fires_once_per_cooldown_and_notifies():
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    monitoring.track_api_call("GET /slow", 0, 2500)
    alerts = PerformanceAlertService(monitoring, time_scale=0.0001)

    created = await alerts.evaluate_rules()
    titles = {a.title for a in created}
    assert "API Response Time Critical" in titles
    assert "API Response Time Warning" in titles

    critical = next(a for a in created if a.metadata.rule_id == "api_response_time_critical")
    assert critical.type == "critical"
    assert critical.current_value == 2500
    assert critical.description == (
        "Alert when API response time exceeds critical threshold. Current value: 2500, Threshold: 2000"
    )
    channels = sorted(n.channel for n in alerts.get_notifications(critical.id))
    assert channels == ["dashboard", "email", "slack"]
    assert all(n.status == "sent" for n in alerts.get_notifications(critical.id))

    # Still inside every rule's cooldown window.
    assert await alerts.evaluate_rules() == []


@pytest.mark.anyio
async def test_alert_lifecycle_over_api(client: httpx.AsyncClient):
    res = await client.post(
        "/api/performanceAlert/custom",
        json={"title": "Disk almost full", "description": "Volume /data at 91%", "severity": "high"},
    )
    assert res.status_code == 201, res.text
    alert = res.json()["data"]
    assert alert["category"] == "custom"
    assert alert["type"] == "critical"
    assert alert["status"] == "active"
    alert_id = alert["id"]

    res = await client.put(f"/api/performanceAlert/{alert_id}/acknowledge", json={"acknowledgedBy": "ops"})
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "acknowledged"
    assert res.json()["data"]["acknowledgedBy"] == "ops"

    res = await client.put(f"/api/performanceAlert/{alert_id}/acknowledge", json={"acknowledgedBy": "ops"})
    assert res.status_code == 409
    assert res.json()["error"]["message"] == "Alert cannot be acknowledged in its current status"

    res = await client.put(
        f"/api/performanceAlert/{alert_id}/resolve", json={"resolvedBy": "ops", "resolutionNotes": "cleaned up"}
    )
    assert res.status_code == 200
    assert res.json()["data"]["resolutionNotes"] == "cleaned up"

    res = await client.put(f"/api/performanceAlert/{alert_id}/dismiss", json={"dismissedBy": "ops"})
    assert res.status_code == 409

    res = await client.get("/api/performanceAlert/summary")
    summary = res.json()["data"]
    assert summary["total"] == 1
    assert summary["resolved"] == 1
    assert summary["high"] == 1
    assert summary["byCategory"]["custom"] == 1

    res = await client.get("/api/performanceAlert/notifications/all", params={"alertId": alert_id})
    assert [n["channel"] for n in res.json()["data"]] == ["dashboard"]


@pytest.mark.anyio
async def test_alert_listing_filters_and_unknown_id(client: httpx.AsyncClient):
    for severity in ("low", "medium", "critical"):
        await client.post(
            "/api/performanceAlert/custom",
            json={"title": f"{severity} alert", "description": "d", "severity": severity},
        )

    res = await client.get("/api/performanceAlert", params={"severity": "critical"})
    body = res.json()["data"]
    assert body["total"] == 1
    assert body["alerts"][0]["title"] == "critical alert"

    res = await client.get("/api/performanceAlert", params={"limit": 2})
    body = res.json()["data"]
    assert body["total"] == 3 and len(body["alerts"]) == 2
    assert body["limit"] == 2 and body["offset"] == 0

    res = await client.get("/api/performanceAlert/alert_doesnotexist")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NotFound"


@pytest.mark.anyio
async def test_rule_crud(client: httpx.AsyncClient):
    res = await client.get("/api/performanceAlert/rules/all")
    assert len(res.json()["data"]) == 11

    res = await client.post(
        "/api/performanceAlert/rules",
        json={
            "name": "Slow pages",
            "category": "frontend",
            "metric": "loadTime.p95",
            "condition": "above",
            "threshold": "4000",
            "severity": "high",
            "cooldown": 120,
        },
    )
    assert res.status_code == 201, res.text
    rule = res.json()["data"]
    assert rule["id"]
    assert rule["notificationChannels"] == ["dashboard"]

    res = await client.put(f"/api/performanceAlert/rules/{rule['id']}", json={"enabled": False})
    assert res.status_code == 200
    assert res.json()["data"]["enabled"] is False
    assert res.json()["data"]["metric"] == "loadTime.p95"

    res = await client.delete(f"/api/performanceAlert/rules/{rule['id']}")
    assert res.status_code == 200
    res = await client.get(f"/api/performanceAlert/rules/{rule['id']}")
    assert res.status_code == 404


@pytest.mark.anyio
async def test_monitoring_start_conflict_and_stop(client: httpx.AsyncClient):
    res = await client.post("/api/performanceAlert/monitoring/start", json={"intervalMs": 5000})
    assert res.status_code == 200
    assert res.json()["data"] == {"isActive": True, "intervalMs": 5000}

    res = await client.post("/api/performanceAlert/monitoring/start")
    assert res.status_code == 409

    res = await client.post("/api/performanceAlert/monitoring/stop")
    assert res.json()["data"]["isActive"] is False
    res = await client.get("/api/performanceAlert/monitoring/status")
    assert res.json()["data"]["isActive"] is False
