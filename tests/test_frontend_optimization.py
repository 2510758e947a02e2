from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from src.dashboard.errors import ConflictError
from src.dashboard.services.frontend_optimization_service import (
    FrontendOptimizationService,
    analyze_page,
    optimization_score,
)
from src.dashboard.services.monitoring_service import PerformanceMonitoringService


def _service(monitoring=None, time_scale: float = 0.0001) -> FrontendOptimizationService:
    return FrontendOptimizationService(
        monitoring or PerformanceMonitoringService(), time_scale=time_scale, rng=random.Random(5)
    )


def test_page_scores():
    assert optimization_score(1200, 300, 256, 8) == 30
    assert optimization_score(3500, 1200, 1024, 25) == 90
    assert optimization_score(800, 200, 128, 5) == 10


def test_page_analysis_labels():
    reports = analyze_page("/reports", 3500, 1200, 1024, 25)
    assert reports.bottlenecks == ["Slow page load time", "Large bundle size", "High asset count"]
    assert reports.estimated_improvement == 70

    users = analyze_page("/users", 1200, 300, 256, 8)
    assert users.bottlenecks == ["Moderate load time"]
    assert users.recommendations == [
        "Consider implementing progressive loading",
        "Review and optimize critical rendering path",
    ]


def test_live_dashboard_page_is_analysed_when_reported():
    assert [a.page for a in _service().analyze()] == ["/reports", "/users", "/settings"]

    monitoring = PerformanceMonitoringService()
    monitoring.start()
    monitoring.track_frontend_performance("/dashboard", 2500)
    pages = [a.page for a in _service(monitoring).analyze()]
    assert "/dashboard" in pages
    assert len(pages) == 4


def test_generation_thresholds():
    svc = _service()
    bundle = svc.generate_bundle_optimizations()
    assert [b.optimization_type for b in bundle] == [
        "code_splitting",
        "tree_shaking",
        "lazy_loading",
        "minification",
        "compression",
    ]
    asset = svc.generate_asset_optimizations()
    assert [a.target for a in asset] == ["css", "javascript", "images", "static_files", "fonts", "static_files"]
    assert asset[-1].optimization_type == "caching"

    rendering = svc.generate_rendering_optimizations()
    assert [r.optimization_type for r in rendering] == [
        "memoization",
        "code_splitting",
        "virtualization",
        "debouncing",
        "code_splitting",
    ]


@pytest.mark.anyio
async def test_execute_each_kind_once():
    svc = _service()
    bundle = svc.generate_bundle_optimizations()[0]
    asset = svc.generate_asset_optimizations()[0]
    rendering = svc.generate_rendering_optimizations()[0]

    assert (await svc.execute_bundle(bundle.id)).status == "completed"
    assert (await svc.execute_asset(asset.id)).status == "completed"
    done = await svc.execute_rendering(rendering.id)
    assert 24 <= done.performance_impact <= 36

    with pytest.raises(ConflictError):
        await svc.execute_asset(asset.id)

    status = svc.get_status()
    assert status.summary.completed == 3
    assert status.summary.total_optimizations == 16
    assert [a.page for a in status.top_recommendations] == ["/reports"]


@pytest.mark.anyio
async def test_frontend_optimization_routes(client: httpx.AsyncClient):
    res = await client.post("/api/frontendOptimization/analyze")
    assert res.status_code == 200
    assert res.json()["data"][0]["page"] == "/reports"

    res = await client.post("/api/frontendOptimization/rendering-optimizations")
    rendering_id = res.json()["data"][0]["id"]

    res = await client.post(f"/api/frontendOptimization/execute-rendering/{rendering_id}")
    assert res.status_code == 200, res.text
    assert res.json()["data"]["status"] == "completed"

    res = await client.post("/api/frontendOptimization/execute-bundle/fe_opt_missing")
    assert res.status_code == 404

    res = await client.get("/api/frontendOptimization/rendering/optimizations")
    assert res.json()["data"][0]["status"] == "completed"


@pytest.mark.anyio
async def test_cancelled_bundle_optimization_is_marked_failed():
    svc = _service(time_scale=1.0)
    bundle = svc.generate_bundle_optimizations()[0]

    task = asyncio.create_task(svc.execute_bundle(bundle.id))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert bundle.status == "failed"
    # Regeneration keeps the failed item as history.
    fresh = svc.generate_bundle_optimizations()
    stored = svc.get_bundle_optimizations()
    assert stored[0].id == bundle.id and stored[0].status == "failed"
    assert len(stored) == len(fresh) + 1
