from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.services.api_optimization_service import (
    ApiOptimizationService,
    analyze_endpoint,
    cache_key,
    optimization_score,
)
from src.dashboard.services.monitoring_service import PerformanceMonitoringService


def _service(monitoring=None, time_scale: float = 0.0001) -> ApiOptimizationService:
    return ApiOptimizationService(
        monitoring or PerformanceMonitoringService(), time_scale=time_scale, rng=random.Random(3)
    )


def test_optimization_score_components_and_cap():
    assert optimization_score(150, 300, 500, 1000, 2) == 20
    assert optimization_score(2000, 4000, 8000, 100, 8) == 55
    assert optimization_score(5000, 20000, 30000, 5000, 50) == 100


def test_endpoint_analysis_labels_and_recommendations():
    analysis = analyze_endpoint("/api/reports", "GET", 2000, 4000, 8000, 100, 8)
    assert analysis.bottlenecks == ["Slow response time", "High error rate"]
    assert "Implement circuit breaker pattern" in analysis.recommendations
    assert analysis.estimated_improvement == 30

    healthy = analyze_endpoint("/api/ping", "GET", 20, 30, 40, 10, 0)
    assert healthy.bottlenecks == []
    assert healthy.recommendations == ["API performance appears to be well-optimized"]
    assert healthy.estimated_improvement == 5


def test_cache_key_normalizes_endpoint():
    assert cache_key("/api/Users/{id}") == "_api_users__id_"


def test_analysis_includes_live_traffic_when_present():
    idle = _service().analyze()
    assert [a.endpoint for a in idle] == ["/api/reports", "/api/orders", "/api/users"]

    monitoring = PerformanceMonitoringService()
    monitoring.start()
    for _ in range(5):
        monitoring.track_api_call("GET /api/slow", 0, 1800)
    live = _service(monitoring).analyze()
    assert live[0].endpoint in ("/api/*", "/api/reports")
    assert any(a.endpoint == "/api/*" and a.method == "ALL" for a in live)


def test_generated_strategies_follow_scores():
    svc = _service()
    caching = svc.generate_caching_strategies()
    by_endpoint = {s.endpoint: s for s in caching}
    assert set(by_endpoint) == {"/api/reports", "/api/orders", "/api/health", "/api/config"}
    assert by_endpoint["/api/reports"].strategy == "static_cache"
    assert by_endpoint["/api/reports"].ttl == 3600
    assert by_endpoint["/api/orders"].strategy == "query_cache"

    code = svc.generate_code_optimizations()
    assert [c.optimization_type for c in code] == ["async_await", "streaming", "compression", "connection_pooling"]

    balancing = svc.generate_load_balancing_strategies()
    assert [b.strategy for b in balancing] == ["health_based", "least_connections", "round_robin"]


@pytest.mark.anyio
async def test_execute_caching_and_code():
    svc = _service()
    strategy = svc.generate_caching_strategies()[0]
    done = await svc.execute_caching(strategy.id)
    assert done.status == "completed"
    assert 70 <= done.hit_rate <= 100
    assert 20 <= done.performance_impact <= 60

    with pytest.raises(ConflictError):
        await svc.execute_caching(strategy.id)
    with pytest.raises(NotFoundError):
        await svc.execute_code("api_opt_missing")

    opt = svc.generate_code_optimizations()[0]
    done = await svc.execute_code(opt.id)
    assert opt.estimated_improvement * 0.8 <= done.performance_impact <= opt.estimated_improvement * 1.2

    status = svc.get_status()
    assert status.summary.completed == 2
    assert status.breakdown.caching.completed == 1
    assert [a.endpoint for a in status.top_recommendations] == ["/api/reports"]


@pytest.mark.anyio
async def test_api_optimization_routes(client: httpx.AsyncClient):
    res = await client.post("/api/apiOptimization/analyze")
    assert res.status_code == 200
    assert len(res.json()["data"]) >= 3

    res = await client.post("/api/apiOptimization/code-optimizations")
    code_id = res.json()["data"][0]["id"]

    res = await client.post(f"/api/apiOptimization/execute-code/{code_id}")
    assert res.status_code == 200, res.text
    assert res.json()["data"]["status"] == "completed"

    res = await client.post(f"/api/apiOptimization/execute-code/{code_id}")
    assert res.status_code == 409
    assert res.json()["error"]["message"] == "Invalid code optimization or already processed"

    res = await client.get("/api/apiOptimization/code/optimizations")
    assert any(c["status"] == "completed" for c in res.json()["data"])

    res = await client.get("/api/apiOptimization/status")
    assert res.json()["data"]["summary"]["completed"] == 1


@pytest.mark.anyio
async def test_regeneration_keeps_processed_items():
    svc = _service()
    first = svc.generate_caching_strategies()
    done = await svc.execute_caching(first[0].id)

    second = svc.generate_caching_strategies()
    assert len(second) == len(first)
    kept = svc.get_caching_strategies()
    assert kept[0].id == done.id and kept[0].status == "completed"
    assert len(kept) == len(second) + 1
    assert svc.get_status().breakdown.caching.completed == 1


@pytest.mark.anyio
async def test_cancelled_code_optimization_is_marked_failed():
    svc = _service(time_scale=1.0)
    opt = svc.generate_code_optimizations()[0]

    task = asyncio.create_task(svc.execute_code(opt.id))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert opt.status == "failed"
    # A failed item cannot be executed again.
    with pytest.raises(ConflictError):
        await svc.execute_code(opt.id)
