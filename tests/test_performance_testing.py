from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.schemas.testing import PerformanceTestConfig, PerformanceTestResult, ResourceUsage, ResponseTimeStats
from src.dashboard.services.testing_service import (
    PerformanceTestingService,
    build_result,
    compare_benchmark,
    simulate_resource_usage,
)

SMALL = PerformanceTestConfig(concurrent_users=2, duration=5, ramp_up_time=1, think_time=0.5, timeout=5)


def _service() -> PerformanceTestingService:
    return PerformanceTestingService(time_scale=0.0001, rng=random.Random(7))


def test_build_result_percentiles_and_rates():
    times = [float(v) for v in range(1, 101)]
    result = build_result(times, total=110, failed=10, duration=10, usage=ResourceUsage())
    assert result.response_time.min == 1
    assert result.response_time.max == 100
    assert result.response_time.p50 == 50
    assert result.response_time.p95 == 95
    assert result.response_time.p99 == 99
    assert result.throughput == 11
    assert result.error_rate == pytest.approx(9.09)
    assert result.successful_requests == 100


def test_resource_usage_formula():
    usage = simulate_resource_usage(users=10, duration=60)
    assert usage.cpu == 45
    assert usage.memory == 376
    assert usage.disk == 125
    assert usage.network == 110


def test_compare_benchmark_classification():
    base = PerformanceTestResult(throughput=10, response_time=ResponseTimeStats(average=200))
    faster = PerformanceTestResult(throughput=10, response_time=ResponseTimeStats(average=150))
    slower = PerformanceTestResult(throughput=10, response_time=ResponseTimeStats(average=260))
    same = PerformanceTestResult(throughput=10.5, response_time=ResponseTimeStats(average=205))

    assert compare_benchmark(None, faster) == ("stable", 0.0, 0.0)
    assert compare_benchmark(base, faster) == ("improved", 25.0, 0.0)
    assert compare_benchmark(base, slower) == ("regressed", 0.0, 30.0)
    assert compare_benchmark(base, same)[0] == "stable"


@pytest.mark.anyio
async def test_benchmark_uses_previous_run_as_baseline():
    svc = _service()
    first = await svc.run_benchmark("checkout", SMALL)
    assert first.status == "stable"
    assert first.baseline.total_requests == 0
    assert first.current.total_requests > 0

    second = await svc.run_benchmark("checkout", SMALL)
    assert second.baseline == first.current
    assert svc.get_status().completed_tests == 2
    assert svc.is_running is False


@pytest.mark.anyio
async def test_load_test_threshold_violations_mark_failure():
    svc = _service()
    test = await svc.run_load_test("scenario_1")
    assert test.type == "load_test"
    assert test.name == "Load Test: Light Load Test"
    assert test.status == "failed"
    assert any(v.startswith("CPU usage") for v in test.threshold_violations)
    assert test.completed_at is not None

    with pytest.raises(NotFoundError):
        await svc.run_load_test("scenario_9")


@pytest.mark.anyio
async def test_only_one_test_runs_at_a_time():
    svc = _service()
    running = asyncio.create_task(svc.run_stress_test(SMALL.model_copy(update={"concurrent_users": 4})))
    await asyncio.sleep(0)
    assert svc.is_running

    with pytest.raises(ConflictError):
        await svc.run_memory_test(SMALL)

    stress = await running
    assert stress.status == "completed"
    assert stress.results.total_requests > 0
    memory = await svc.run_memory_test(SMALL)
    assert memory.type == "memory_test"


@pytest.mark.anyio
async def test_testing_api(client: httpx.AsyncClient):
    res = await client.get("/api/performanceTesting/scenarios/all")
    assert [s["id"] for s in res.json()["data"]] == ["scenario_1", "scenario_2", "scenario_3"]
    assert res.json()["data"][0]["config"]["concurrentUsers"] == 10

    small = {"concurrentUsers": 2, "duration": 5, "rampUpTime": 1, "thinkTime": 0.5, "timeout": 5}
    res = await client.post("/api/performanceTesting/benchmark", json={"name": "api", "config": small})
    assert res.status_code == 201, res.text
    assert res.json()["data"]["name"] == "api"

    res = await client.post("/api/performanceTesting/stress-test", json=small)
    assert res.status_code == 201
    test_id = res.json()["data"]["id"]

    res = await client.get(f"/api/performanceTesting/{test_id}")
    assert res.json()["data"]["type"] == "stress_test"

    res = await client.get("/api/performanceTesting/status/summary")
    assert res.json()["data"] == {"isRunning": False, "totalTests": 2, "completedTests": 2, "failedTests": 0}

    res = await client.post("/api/performanceTesting/load-test/unknown")
    assert res.status_code == 404

    res = await client.delete("/api/performanceTesting/history")
    assert res.json()["success"] is True
    res = await client.get("/api/performanceTesting")
    assert res.json()["data"] == []
    res = await client.get(f"/api/performanceTesting/{test_id}")
    assert res.status_code == 404
