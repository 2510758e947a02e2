from __future__ import annotations

import asyncio

import httpx
import pytest

from src.dashboard.services.bottleneck_service import PerformanceBottleneckService
from src.dashboard.services.monitoring_service import PerformanceMonitoringService
from src.dashboard.services.optimization_service import PerformanceOptimizationService


def _service(time_scale: float = 0.0001):
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    bottlenecks = PerformanceBottleneckService(monitoring)
    return monitoring, PerformanceOptimizationService(monitoring, bottlenecks, time_scale=time_scale)


def test_idle_system_gets_only_proactive_actions_sorted():
    _, svc = _service()
    actions = svc.generate_recommendations()
    assert [a.description for a in actions] == [
        "Implement Redis caching layer for frequently accessed data",
        "Implement connection pooling and resource cleanup",
        "Review and optimize database indexes based on query patterns",
    ]
    assert all(a.status == "pending" for a in actions)


def test_bottlenecks_map_to_prioritized_actions():
    monitoring, svc = _service()
    monitoring.track_database_query("SELECT * FROM orders WHERE note LIKE '%x%'", 0, 900)

    actions = svc.generate_recommendations()
    descriptions = [a.description for a in actions]
    assert "Add database indexes for slow queries" in descriptions
    assert "Implement query result caching" in descriptions
    # Priority first, impact second.
    assert descriptions[0] == "Add database indexes for slow queries"
    assert actions[0].type == "indexing"

    # Regenerating replaces pending actions instead of piling them up.
    again = svc.generate_recommendations()
    assert len(svc.actions()) == len(again)


@pytest.mark.anyio
async def test_execute_records_result_and_rejects_rerun():
    _, svc = _service()
    action = svc.generate_recommendations()[0]

    result = await svc.execute(action.id)
    assert result.success is True
    assert result.action_id == action.id
    assert result.notes.startswith("Successfully implemented Implement Redis caching layer")
    assert set(result.improvement) == {"api", "database", "system"}
    assert svc.action(action.id).status == "completed"
    assert svc.action(action.id).result == "success"

    status = svc.get_status()
    assert status.summary.completed == 1
    assert status.summary.pending == 2
    assert status.summary.success_rate == 100.0
    assert status.type_breakdown["caching"] == 1

    # Completed actions survive regeneration.
    svc.generate_recommendations()
    assert svc.action(action.id).status == "completed"


@pytest.mark.anyio
async def test_optimization_api(client: httpx.AsyncClient):
    res = await client.get("/api/performanceOptimization/recommendations")
    assert res.status_code == 200
    actions = res.json()["data"]
    assert len(actions) == 3
    action_id = actions[0]["id"]

    res = await client.post(f"/api/performanceOptimization/execute/{action_id}")
    assert res.status_code == 200, res.text
    assert res.json()["data"]["actionId"] == action_id

    res = await client.post(f"/api/performanceOptimization/execute/{action_id}")
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "Conflict"

    res = await client.post("/api/performanceOptimization/execute/opt_unknown")
    assert res.status_code == 404

    res = await client.get("/api/performanceOptimization/results")
    assert len(res.json()["data"]) == 1

    res = await client.get("/api/performanceOptimization/status")
    assert res.json()["data"]["summary"]["total"] == 3
    assert res.json()["data"]["priorityBreakdown"]["medium"] == 2


@pytest.mark.anyio
async def test_cancelled_execution_marks_action_failed():
    _, svc = _service(time_scale=1.0)
    action = svc.generate_recommendations()[0]

    task = asyncio.create_task(svc.execute(action.id))
    await asyncio.sleep(0)
    assert svc.action(action.id).status == "implementing"
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert svc.action(action.id).status == "failed"
    assert svc.action(action.id).result == "failed"
    assert svc.get_status().summary.failed == 1
