from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

TestType = Literal["benchmark", "load_test", "stress_test", "memory_test", "cpu_test"]
TestStatus = Literal["pending", "running", "completed", "failed"]
BenchmarkStatus = Literal["improved", "regressed", "stable"]


class PerformanceTestConfig(CamelModel):
    """Simulated load profile. Times are nominal seconds; wall-clock time is scaled separately."""

    target_url: str = "http://localhost:3000"
    concurrent_users: int = Field(10, ge=1, le=1000)
    duration: float = Field(60, gt=0, le=3600)
    ramp_up_time: float = Field(10, ge=0, le=3600)
    think_time: float = Field(1, ge=0, le=60)
    timeout: float = Field(30, gt=0, le=600)
    headers: Dict[str, str] = Field(default_factory=dict)
    payload: Optional[Any] = None


class ResponseTimeStats(CamelModel):
    min: float = 0
    max: float = 0
    average: float = 0
    p50: float = 0
    p95: float = 0
    p99: float = 0


class ResourceUsage(CamelModel):
    cpu: float = 0
    memory: float = 0
    disk: float = 0
    network: float = 0


class PerformanceTestResult(CamelModel):
    throughput: float = 0
    response_time: ResponseTimeStats = Field(default_factory=ResponseTimeStats)
    error_rate: float = 0
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    success_rate: float = 0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0


class PerformanceTest(CamelModel):
    id: str
    name: str
    type: TestType
    status: TestStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: float
    results: PerformanceTestResult = Field(default_factory=PerformanceTestResult)
    configuration: PerformanceTestConfig
    threshold_violations: List[str] = Field(default_factory=list)


class BenchmarkResult(CamelModel):
    id: str
    name: str
    timestamp: datetime
    baseline: PerformanceTestResult
    current: PerformanceTestResult
    improvement: float = 0
    regression: float = 0
    status: BenchmarkStatus = "stable"


class ScenarioThresholds(CamelModel):
    max_response_time: float
    max_error_rate: float
    min_throughput: float
    max_cpu_usage: float
    max_memory_usage: float


class LoadTestScenario(CamelModel):
    id: str
    name: str
    description: str
    config: PerformanceTestConfig
    thresholds: ScenarioThresholds


class BenchmarkRequest(CamelModel):
    name: str = Field("Default Benchmark", min_length=1)
    config: Optional[PerformanceTestConfig] = None


class PerformanceTestingStatus(CamelModel):
    is_running: bool
    total_tests: int
    completed_tests: int
    failed_tests: int
