from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Request, status

from src.dashboard.schemas.common import DataResponse, ErrorResponse, MessageResponse, ok
from src.dashboard.schemas.testing import (
    BenchmarkRequest,
    BenchmarkResult,
    LoadTestScenario,
    PerformanceTest,
    PerformanceTestConfig,
    PerformanceTestingStatus,
)
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/performanceTesting",
    tags=["Performance Testing"],
    dependencies=[Depends(require_user)],
)

_BUSY = {409: {"model": ErrorResponse}}


@router.post(
    "/benchmark",
    response_model=DataResponse[BenchmarkResult],
    status_code=status.HTTP_201_CREATED,
    responses=_BUSY,
    summary="Run benchmark",
    description="Compares against the most recent benchmark with the same name (+/-10% band).",
    operation_id="run_benchmark",
)
async def run_benchmark(request: Request, payload: Optional[BenchmarkRequest] = None) -> DataResponse[BenchmarkResult]:
    payload = payload or BenchmarkRequest()
    result = await get_state(request.app).testing.run_benchmark(payload.name, payload.config)
    return ok(result, "Benchmark completed")


@router.post(
    "/load-test/{scenario_id}",
    response_model=DataResponse[PerformanceTest],
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Run load test scenario",
    description="Threshold violations are listed on the test and mark it failed.",
    operation_id="run_load_test",
)
async def run_load_test(
    request: Request, scenario_id: str = Path(..., description="Scenario id from /scenarios/all.")
) -> DataResponse[PerformanceTest]:
    test = await get_state(request.app).testing.run_load_test(scenario_id)
    return ok(test, f"Load test {test.status}")


@router.post(
    "/stress-test",
    response_model=DataResponse[PerformanceTest],
    status_code=status.HTTP_201_CREATED,
    responses=_BUSY,
    summary="Run stress test",
    operation_id="run_stress_test",
)
async def run_stress_test(
    request: Request, config: Optional[PerformanceTestConfig] = None
) -> DataResponse[PerformanceTest]:
    return ok(await get_state(request.app).testing.run_stress_test(config), "Stress test completed")


@router.post(
    "/memory-test",
    response_model=DataResponse[PerformanceTest],
    status_code=status.HTTP_201_CREATED,
    responses=_BUSY,
    summary="Run memory test",
    operation_id="run_memory_test",
)
async def run_memory_test(
    request: Request, config: Optional[PerformanceTestConfig] = None
) -> DataResponse[PerformanceTest]:
    return ok(await get_state(request.app).testing.run_memory_test(config), "Memory test completed")


@router.get(
    "",
    response_model=DataResponse[List[PerformanceTest]],
    summary="List performance tests",
    operation_id="list_performance_tests",
)
def list_tests(request: Request) -> DataResponse[List[PerformanceTest]]:
    return ok(get_state(request.app).testing.get_tests())


@router.get(
    "/status/summary",
    response_model=DataResponse[PerformanceTestingStatus],
    summary="Testing status",
    operation_id="get_performance_testing_status",
)
def get_status(request: Request) -> DataResponse[PerformanceTestingStatus]:
    return ok(get_state(request.app).testing.get_status())


@router.get(
    "/benchmarks/all",
    response_model=DataResponse[List[BenchmarkResult]],
    summary="List benchmarks",
    operation_id="list_benchmarks",
)
def list_benchmarks(request: Request) -> DataResponse[List[BenchmarkResult]]:
    return ok(get_state(request.app).testing.get_benchmarks())


@router.get(
    "/scenarios/all",
    response_model=DataResponse[List[LoadTestScenario]],
    summary="List load test scenarios",
    operation_id="list_load_test_scenarios",
)
def list_scenarios(request: Request) -> DataResponse[List[LoadTestScenario]]:
    return ok(get_state(request.app).testing.get_scenarios())


@router.delete(
    "/history",
    response_model=MessageResponse,
    summary="Clear test history",
    description="Removes stored tests and benchmarks. Scenarios are kept.",
    operation_id="clear_performance_test_history",
)
def clear_history(request: Request) -> MessageResponse:
    get_state(request.app).testing.clear_history()
    return MessageResponse(message="Performance test history cleared")


@router.get(
    "/{test_id}",
    response_model=DataResponse[PerformanceTest],
    responses={404: {"model": ErrorResponse}},
    summary="Get performance test",
    operation_id="get_performance_test",
)
def get_test(request: Request, test_id: str = Path(..., description="Test id.")) -> DataResponse[PerformanceTest]:
    return ok(get_state(request.app).testing.get_test(test_id))
