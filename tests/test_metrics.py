from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.dashboard.services.metrics_service import period_key

RANGE = {"businessEntityId": "biz-1", "startDate": "2024-01-01T00:00:00Z", "endDate": "2024-01-31T23:59:59Z"}


def _metric(**overrides):
    body = {
        "businessEntityId": "biz-1",
        "metricType": "ga4_pageview",
        "metricName": "pageviews",
        "metricValue": 100,
        "metricUnit": "count",
        "source": "google_analytics",
        "date": "2024-01-02T10:00:00Z",
        "tags": ["web"],
    }
    body.update(overrides)
    return body


def _automation(**overrides):
    body = {
        "businessEntityId": "biz-1",
        "automationType": "n8n_workflow",
        "automationName": "Sync leads",
        "executionId": "exec-1",
        "status": "completed",
        "startTime": "2024-01-05T08:00:00Z",
        "endTime": "2024-01-05T08:00:30Z",
        "duration": 30,
        "triggerType": "scheduled",
    }
    body.update(overrides)
    return body


def test_period_keys():
    # 2024-01-03 is a Wednesday; its week starts Sunday 2023-12-31.
    day = datetime(2024, 1, 3, 12, 0)
    assert period_key(day, "daily") == "2024-01-03"
    assert period_key(day, "weekly") == "2023-12-31"
    assert period_key(day, "monthly") == "2024-01"
    assert period_key(datetime(2024, 1, 7), "weekly") == "2024-01-07"


@pytest.mark.anyio
async def test_metric_crud_and_soft_delete(client: httpx.AsyncClient):
    res = await client.post("/api/metrics", json=_metric())
    assert res.status_code == 201, res.text
    metric = res.json()["data"]
    assert metric["isArchived"] is False
    assert metric["timezone"] == "UTC"

    res = await client.put(f"/api/metrics/{metric['id']}", json={"metricValue": 150})
    assert res.status_code == 200
    assert res.json()["data"]["metricValue"] == 150
    assert res.json()["data"]["metricName"] == "pageviews"

    res = await client.delete(f"/api/metrics/{metric['id']}")
    assert res.status_code == 200
    assert res.json()["message"] == "Metric archived"

    res = await client.get(f"/api/metrics/{metric['id']}")
    assert res.json()["data"]["isArchived"] is True

    res = await client.get("/api/metrics", params={"businessEntityId": "biz-1"})
    assert res.json()["data"]["total"] == 0
    res = await client.get("/api/metrics", params={"businessEntityId": "biz-1", "isArchived": "true"})
    assert res.json()["data"]["total"] == 1

    res = await client.get("/api/metrics/507f1f77bcf86cd799439011")
    assert res.status_code == 404
    assert res.json()["error"]["message"] == "Metric not found"
    res = await client.delete("/api/metrics/not-an-id")
    assert res.status_code == 404


@pytest.mark.anyio
async def test_metric_list_filters_and_pagination(client: httpx.AsyncClient):
    for day in range(1, 6):
        await client.post("/api/metrics", json=_metric(date=f"2024-01-0{day}T09:00:00Z", tags=[f"d{day}"]))
    await client.post("/api/metrics", json=_metric(businessEntityId="biz-2"))

    res = await client.get("/api/metrics", params={"businessEntityId": "biz-1", "limit": 2, "offset": 2})
    page = res.json()["data"]
    assert page["total"] == 5
    assert page["page"] == 2
    assert page["hasMore"] is True
    # Newest first.
    assert [m["date"][:10] for m in page["metrics"]] == ["2024-01-03", "2024-01-02"]

    res = await client.get("/api/metrics", params=[("tags", "d1,d2"), ("tags", "d5")])
    assert res.json()["data"]["total"] == 3

    res = await client.get(
        "/api/metrics", params={"startDate": "2024-01-02T00:00:00Z", "endDate": "2024-01-03T23:59:59Z"}
    )
    assert res.json()["data"]["total"] == 3


@pytest.mark.anyio
async def test_summary_history_and_automation_performance(client: httpx.AsyncClient):
    await client.post("/api/metrics", json=_metric(metricValue=100, date="2024-01-02T10:00:00Z"))
    await client.post("/api/metrics", json=_metric(metricValue=50, date="2024-01-02T18:00:00Z"))
    await client.post("/api/metrics", json=_metric(metricType="ga4_session", metricName="sessions", metricValue=7))
    await client.post("/api/metrics", json=_metric(metricValue=30, date="2024-01-09T10:00:00Z"))

    await client.post("/api/metrics/automations", json=_automation())
    await client.post("/api/metrics/automations", json=_automation(executionId="exec-2", duration=10))
    await client.post(
        "/api/metrics/automations",
        json=_automation(executionId="exec-3", status="failed", automationType="custom_script", duration=None),
    )

    res = await client.get("/api/metrics/summary", params=RANGE)
    assert res.json()["data"] == {
        "totalMetrics": 4,
        "totalAutomations": 3,
        "successRate": 66.67,
        "averageExecutionTime": 20.0,
    }

    res = await client.get("/api/metrics/history", params={**RANGE, "aggregation": "daily"})
    history = res.json()["data"]
    assert [p["period"] for p in history] == ["2024-01-02", "2024-01-09"]
    pageviews = next(m for m in history[0]["metrics"] if m["metricName"] == "pageviews")
    assert pageviews == {
        "metricType": "ga4_pageview",
        "metricName": "pageviews",
        "totalValue": 150,
        "averageValue": 75,
        "count": 2,
    }

    res = await client.get("/api/metrics/history", params={**RANGE, "aggregation": "monthly", "metricType": "ga4_pageview"})
    monthly = res.json()["data"]
    assert len(monthly) == 1
    assert monthly[0]["metrics"][0]["count"] == 3

    res = await client.get("/api/metrics/automation/performance", params=RANGE)
    perf = res.json()["data"]
    assert perf["totalExecutions"] == 3
    assert perf["failedExecutions"] == 1
    assert [t["automationType"] for t in perf["byType"]] == ["custom_script", "n8n_workflow"]
    assert perf["byType"][1]["successRate"] == 100.0


@pytest.mark.anyio
async def test_missing_required_query_is_a_validation_error(client: httpx.AsyncClient):
    res = await client.get("/api/metrics/summary", params={"businessEntityId": "biz-1"})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "ValidationError"


@pytest.mark.anyio
async def test_exports_set_attachment_headers(client: httpx.AsyncClient):
    await client.post("/api/metrics", json=_metric(tags=["web", "paid"]))
    await client.post("/api/metrics/automations", json=_automation())

    res = await client.get("/api/metrics/export", params={**RANGE, "format": "csv"})
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    disposition = res.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="metrics_biz-1_')
    assert disposition.endswith('.csv"')
    rows = list(csv.reader(io.StringIO(res.text)))
    assert rows[0] == ["Date", "Metric Type", "Metric Name", "Value", "Unit", "Source", "Tags"]
    assert rows[1] == ["2024-01-02", "ga4_pageview", "pageviews", "100.0", "count", "google_analytics", "web;paid"]

    res = await client.get("/api/metrics/automation/export", params=RANGE)
    assert res.headers["content-type"].startswith("application/json")
    assert res.headers["content-disposition"].endswith('.json"')
    body = json.loads(res.text)
    assert body[0]["executionId"] == "exec-1"


@pytest.mark.anyio
async def test_automation_status_and_archives(client: httpx.AsyncClient):
    res = await client.post("/api/metrics/automations", json=_automation(status="running", endTime=None, duration=None))
    assert res.status_code == 201
    execution = res.json()["data"]

    res = await client.put(
        f"/api/metrics/automations/{execution['id']}/status",
        json={"status": "completed", "endTime": "2024-01-05T08:01:00Z", "duration": 60},
    )
    assert res.json()["data"]["status"] == "completed"
    assert res.json()["data"]["duration"] == 60

    res = await client.get("/api/metrics/automations/507f1f77bcf86cd799439011")
    assert res.status_code == 404
    assert res.json()["error"]["message"] == "Automation execution not found"

    res = await client.get("/api/metrics/automations", params={"status": "completed"})
    assert len(res.json()["data"]) == 1

    res = await client.post(
        "/api/metrics/archives",
        json={
            "businessEntityId": "biz-1",
            "archiveType": "automation_executions",
            "sourceTable": "automation_executions",
            "sourceRecordId": execution["id"],
            "retentionPolicy": "365_days",
        },
    )
    assert res.status_code == 201
    assert res.json()["data"]["archiveDate"]

    res = await client.get("/api/metrics/archives", params={"archiveType": "automation_executions"})
    assert len(res.json()["data"]) == 1


@pytest.mark.anyio
async def test_cleanup_archives_expired_metrics(client: httpx.AsyncClient, fresh_state):
    metrics = fresh_state.mongo.collections().metrics
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    for age_days, entity in ((400, "biz-1"), (400, "biz-2"), (5, "biz-1")):
        metrics.insert_one(
            {
                "businessEntityId": entity,
                "metricType": "custom",
                "metricName": "orders",
                "metricValue": 1,
                "source": "custom",
                "date": now - timedelta(days=age_days),
                "timezone": "UTC",
                "metadata": {},
                "tags": [],
                "isArchived": False,
                "createdAt": now,
                "updatedAt": now,
            }
        )

    res = await client.post("/api/metrics/cleanup", json={"businessEntityId": "biz-1", "retentionDays": 30})
    assert res.json()["data"] == {"archivedMetrics": 1, "retentionDays": 30}

    res = await client.post("/api/metrics/cleanup")
    assert res.json()["data"]["archivedMetrics"] == 1

    assert metrics.count_documents({"isArchived": True}) == 2
    res = await client.get("/api/metrics/archives", params={"archiveType": "metric_retention"})
    archives = res.json()["data"]
    assert len(archives) == 2
    assert {a["sourceTable"] for a in archives} == {"metrics"}
