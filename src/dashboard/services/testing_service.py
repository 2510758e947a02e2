from __future__ import annotations

import asyncio
import logging
import math
import random
import uuid
from threading import RLock
from typing import Awaitable, Callable, List, Optional

import psutil

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.testing import (
    BenchmarkResult,
    LoadTestScenario,
    PerformanceTest,
    PerformanceTestConfig,
    PerformanceTestingStatus,
    PerformanceTestResult,
    ResourceUsage,
    ResponseTimeStats,
    ScenarioThresholds,
)

logger = logging.getLogger(__name__)

# Probability that a simulated request fails.
FAILURE_RATE = 0.05

# (users share, duration share) per stress phase.
STRESS_PHASES = ((0.25, 0.3), (0.5, 0.3), (0.75, 0.2), (1.0, 0.2))

DEFAULT_BENCHMARK_CONFIG = PerformanceTestConfig(
    target_url="http://localhost:3000", concurrent_users=10, duration=60, ramp_up_time=10, think_time=1, timeout=30
)
DEFAULT_STRESS_CONFIG = PerformanceTestConfig(
    concurrent_users=50, duration=120, ramp_up_time=20, think_time=0.5, timeout=60
)
DEFAULT_MEMORY_CONFIG = PerformanceTestConfig(
    concurrent_users=20, duration=90, ramp_up_time=15, think_time=1, timeout=45
)


def default_scenarios() -> List[LoadTestScenario]:
    def scenario(sid, name, description, url, users, duration, ramp, think, timeout, thresholds):
        max_rt, max_err, min_thr, max_cpu, max_mem = thresholds
        return LoadTestScenario(
            id=sid,
            name=name,
            description=description,
            config=PerformanceTestConfig(
                target_url=url,
                concurrent_users=users,
                duration=duration,
                ramp_up_time=ramp,
                think_time=think,
                timeout=timeout,
            ),
            thresholds=ScenarioThresholds(
                max_response_time=max_rt,
                max_error_rate=max_err,
                min_throughput=min_thr,
                max_cpu_usage=max_cpu,
                max_memory_usage=max_mem,
            ),
        )

    return [
        scenario("scenario_1", "Light Load Test", "Test system performance under light load conditions",
                 "/api/health", 10, 60, 10, 1, 30, (200, 1, 3, 30, 512)),
        scenario("scenario_2", "Medium Load Test", "Test system performance under medium load conditions",
                 "/api/users", 50, 120, 20, 0.5, 30, (500, 2, 15, 60, 1024)),
        scenario("scenario_3", "Heavy Load Test", "Test system performance under heavy load conditions",
                 "/api/reports", 100, 180, 30, 0.2, 60, (1500, 5, 30, 80, 2048)),
    ]


def _percentile(ordered: List[float], pct: float) -> float:
    if not ordered:
        return 0
    index = math.ceil(pct / 100 * len(ordered)) - 1
    return ordered[max(0, min(index, len(ordered) - 1))]


def simulate_resource_usage(users: int, duration: float) -> ResourceUsage:
    minutes = duration / 60
    return ResourceUsage(
        cpu=round(min(100, 20 + users * 2 + minutes * 5)),
        memory=round(256 + users * 10 + minutes * 20),
        disk=round(100 + users * 2 + minutes * 5),
        network=round(50 + users * 5 + minutes * 10),
    )


def build_result(
    response_times: List[float], total: int, failed: int, duration: float, usage: ResourceUsage
) -> PerformanceTestResult:
    ordered = sorted(response_times)
    stats = ResponseTimeStats()
    if ordered:
        stats = ResponseTimeStats(
            min=ordered[0],
            max=ordered[-1],
            average=round(sum(ordered) / len(ordered), 2),
            p50=_percentile(ordered, 50),
            p95=_percentile(ordered, 95),
            p99=_percentile(ordered, 99),
        )
    successful = total - failed
    return PerformanceTestResult(
        throughput=round(total / duration, 2) if duration > 0 else 0,
        response_time=stats,
        error_rate=round(failed / total * 100, 2) if total else 0,
        resource_usage=usage,
        success_rate=round(successful / total * 100, 2) if total else 0,
        total_requests=total,
        successful_requests=successful,
        failed_requests=failed,
    )


def threshold_violations(result: PerformanceTestResult, t: ScenarioThresholds) -> List[str]:
    violations = []
    if result.response_time.average > t.max_response_time:
        violations.append(
            f"Response time {result.response_time.average}ms exceeds threshold {t.max_response_time}ms"
        )
    if result.error_rate > t.max_error_rate:
        violations.append(f"Error rate {result.error_rate}% exceeds threshold {t.max_error_rate}%")
    if result.throughput < t.min_throughput:
        violations.append(f"Throughput {result.throughput} req/s below threshold {t.min_throughput} req/s")
    if result.resource_usage.cpu > t.max_cpu_usage:
        violations.append(f"CPU usage {result.resource_usage.cpu}% exceeds threshold {t.max_cpu_usage}%")
    if result.resource_usage.memory > t.max_memory_usage:
        violations.append(
            f"Memory usage {result.resource_usage.memory}MB exceeds threshold {t.max_memory_usage}MB"
        )
    return violations


def compare_benchmark(baseline: Optional[PerformanceTestResult], current: PerformanceTestResult):
    """Return (status, improvement, regression) comparing average response time and throughput."""
    if baseline is None:
        return "stable", 0.0, 0.0
    rt_base = baseline.response_time.average
    rt_diff = (rt_base - current.response_time.average) / rt_base * 100 if rt_base else 0.0
    thr_diff = (current.throughput - baseline.throughput) / baseline.throughput * 100 if baseline.throughput else 0.0
    if rt_diff > 10 or thr_diff > 10:
        return "improved", round(max(rt_diff, thr_diff), 2), 0.0
    if rt_diff < -10 or thr_diff < -10:
        return "regressed", 0.0, round(abs(min(rt_diff, thr_diff)), 2)
    return "stable", 0.0, 0.0


class PerformanceTestingService:
    """
    Simulated performance tests.

    Virtual users issue fake requests with random latency and a fixed failure rate. All reported
    timings are nominal; wall-clock sleeps are multiplied by ``time_scale`` so tests can run fast.
    Only one test runs at a time.
    """

    def __init__(self, time_scale: float = 1.0, rng: Optional[random.Random] = None):
        self._time_scale = time_scale
        self._rng = rng or random.Random()
        self._tests: List[PerformanceTest] = []
        self._benchmarks: List[BenchmarkResult] = []
        self._scenarios = default_scenarios()
        self._running = False
        self._lock = RLock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds * self._time_scale)

    # ---- simulation ----

    async def _simulate_user(self, config: PerformanceTestConfig, times: List[float], counts: dict) -> None:
        elapsed = 0.0
        while elapsed < config.duration:
            latency_ms = self._rng.uniform(50, 150) + self._rng.uniform(100, 300)
            await self._sleep(latency_ms / 1000)
            elapsed += latency_ms / 1000
            counts["total"] += 1
            if self._rng.random() < FAILURE_RATE:
                counts["failed"] += 1
                continue
            times.append(round(latency_ms, 2))
            if config.think_time > 0:
                await self._sleep(config.think_time)
                elapsed += config.think_time

    async def _run_users(self, config: PerformanceTestConfig):
        times: List[float] = []
        counts = {"total": 0, "failed": 0}
        users = []
        stagger = config.ramp_up_time / config.concurrent_users if config.concurrent_users else 0
        for i in range(config.concurrent_users):
            users.append(asyncio.create_task(self._simulate_user(config, times, counts)))
            if i < config.concurrent_users - 1:
                await self._sleep(stagger)
        if users:
            await asyncio.gather(*users)
        return times, counts["total"], counts["failed"]

    async def execute_test(self, config: PerformanceTestConfig) -> PerformanceTestResult:
        times, total, failed = await self._run_users(config)
        usage = simulate_resource_usage(config.concurrent_users, config.duration)
        return build_result(times, total, failed, config.duration, usage)

    async def execute_stress(self, config: PerformanceTestConfig) -> PerformanceTestResult:
        all_times: List[float] = []
        total = failed = 0
        usages: List[ResourceUsage] = []
        for users_share, duration_share in STRESS_PHASES:
            phase = config.model_copy(
                update={
                    "concurrent_users": int(config.concurrent_users * users_share),
                    "duration": config.duration * duration_share,
                }
            )
            logger.info("Stress phase users=%s duration=%ss", phase.concurrent_users, phase.duration)
            times, phase_total, phase_failed = await self._run_users(phase)
            all_times.extend(times)
            total += phase_total
            failed += phase_failed
            usages.append(simulate_resource_usage(phase.concurrent_users, phase.duration))
        usage = ResourceUsage(
            cpu=round(sum(u.cpu for u in usages) / len(usages), 2),
            memory=round(sum(u.memory for u in usages) / len(usages), 2),
            disk=round(sum(u.disk for u in usages) / len(usages), 2),
            network=round(sum(u.network for u in usages) / len(usages), 2),
        )
        return build_result(all_times, total, failed, config.duration, usage)

    async def execute_memory(self, config: PerformanceTestConfig) -> PerformanceTestResult:
        process = psutil.Process()
        start_rss = process.memory_info().rss
        for _ in range(config.concurrent_users):
            await self._sleep(0.1)
        end_rss = process.memory_info().rss
        result = await self.execute_test(config)
        result.resource_usage.memory = round((end_rss - start_rss) / 1024 / 1024, 2)
        return result

    # ---- runs ----

    def _begin(self, name: str, ttype: str, config: PerformanceTestConfig) -> PerformanceTest:
        with self._lock:
            if self._running:
                raise ConflictError("Another performance test is currently running")
            self._running = True
            test = PerformanceTest(
                id=f"perf_test_{uuid.uuid4().hex[:16]}",
                name=name,
                type=ttype,
                status="running",
                started_at=utc_now(),
                duration=config.duration,
                configuration=config,
            )
            self._tests.append(test)
        logger.info("Performance test started id=%s type=%s", test.id, ttype)
        return test

    async def _run(
        self, test: PerformanceTest, work: Callable[[], Awaitable[PerformanceTestResult]]
    ) -> PerformanceTest:
        try:
            test.results = await work()
            test.status = "completed"
        except Exception:
            logger.exception("Performance test %s failed", test.id)
            test.status = "failed"
            raise
        finally:
            test.completed_at = utc_now()
            with self._lock:
                self._running = False
        logger.info("Performance test finished id=%s status=%s", test.id, test.status)
        return test

    # PUBLIC_INTERFACE
    async def run_benchmark(
        self, name: str = "Default Benchmark", config: Optional[PerformanceTestConfig] = None
    ) -> BenchmarkResult:
        """Run a benchmark and compare it with the latest benchmark of the same name."""
        config = config or DEFAULT_BENCHMARK_CONFIG.model_copy()
        test = self._begin(f"Benchmark: {name}", "benchmark", config)
        await self._run(test, lambda: self.execute_test(config))

        with self._lock:
            previous = [b for b in self._benchmarks if b.name == name]
        baseline = max(previous, key=lambda b: b.timestamp).current if previous else None
        status, improvement, regression = compare_benchmark(baseline, test.results)
        benchmark = BenchmarkResult(
            id=f"benchmark_{uuid.uuid4().hex[:16]}",
            name=name,
            timestamp=utc_now(),
            baseline=baseline or PerformanceTestResult(),
            current=test.results,
            improvement=improvement,
            regression=regression,
            status=status,
        )
        with self._lock:
            self._benchmarks.append(benchmark)
        return benchmark

    # PUBLIC_INTERFACE
    async def run_load_test(self, scenario_id: str) -> PerformanceTest:
        """Run a predefined scenario; threshold violations mark the test failed."""
        scenario = self.get_scenario(scenario_id)
        test = self._begin(f"Load Test: {scenario.name}", "load_test", scenario.config)
        await self._run(test, lambda: self.execute_test(scenario.config))
        test.threshold_violations = threshold_violations(test.results, scenario.thresholds)
        if test.threshold_violations:
            test.status = "failed"
            logger.warning(
                "Load test %s failed %d threshold(s): %s",
                test.id,
                len(test.threshold_violations),
                "; ".join(test.threshold_violations),
            )
        return test

    # PUBLIC_INTERFACE
    async def run_stress_test(self, config: Optional[PerformanceTestConfig] = None) -> PerformanceTest:
        config = config or DEFAULT_STRESS_CONFIG.model_copy()
        test = self._begin("Stress Test", "stress_test", config)
        return await self._run(test, lambda: self.execute_stress(config))

    # PUBLIC_INTERFACE
    async def run_memory_test(self, config: Optional[PerformanceTestConfig] = None) -> PerformanceTest:
        config = config or DEFAULT_MEMORY_CONFIG.model_copy()
        test = self._begin("Memory Test", "memory_test", config)
        return await self._run(test, lambda: self.execute_memory(config))

    # ---- queries ----

    def get_tests(self) -> List[PerformanceTest]:
        with self._lock:
            return list(self._tests)

    def get_test(self, test_id: str) -> PerformanceTest:
        with self._lock:
            for t in self._tests:
                if t.id == test_id:
                    return t
        raise NotFoundError("Performance test not found")

    def get_benchmarks(self) -> List[BenchmarkResult]:
        with self._lock:
            return list(self._benchmarks)

    def get_scenarios(self) -> List[LoadTestScenario]:
        return list(self._scenarios)

    def get_scenario(self, scenario_id: str) -> LoadTestScenario:
        for s in self._scenarios:
            if s.id == scenario_id:
                return s
        raise NotFoundError("Load test scenario not found")

    def get_status(self) -> PerformanceTestingStatus:
        with self._lock:
            tests = list(self._tests)
            running = self._running
        return PerformanceTestingStatus(
            is_running=running,
            total_tests=len(tests),
            completed_tests=sum(1 for t in tests if t.status == "completed"),
            failed_tests=sum(1 for t in tests if t.status == "failed"),
        )

    def clear_history(self) -> None:
        with self._lock:
            self._tests.clear()
            self._benchmarks.clear()
        logger.info("Performance test history cleared")
