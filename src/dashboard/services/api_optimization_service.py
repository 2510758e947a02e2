from __future__ import annotations

import logging
import random
import re
import uuid
from threading import RLock
from typing import List, Optional

from src.dashboard.schemas.api_optimization import (
    ApiEndpointAnalysis,
    ApiOptimizationBreakdown,
    ApiOptimizationStatus,
    CachingStrategy,
    CodeOptimization,
    LoadBalancingStrategy,
)
from src.dashboard.schemas.common import utc_now
from src.dashboard.services.monitoring_service import PerformanceMonitoringService
from src.dashboard.services.work_items import (
    MAX_SIMULATED_WORK_SEC,
    breakdown,
    claim_pending,
    merge_generated,
    simulate_work,
    simulated_delay,
    summarize,
)

logger = logging.getLogger(__name__)

# Representative endpoints analysed alongside live traffic: (endpoint, method, avg, p95, p99, requests, error rate)
ENDPOINT_PATTERNS = (
    ("/api/users", "GET", 150, 300, 500, 1000, 2),
    ("/api/orders", "POST", 800, 1500, 2500, 500, 5),
    ("/api/reports", "GET", 2000, 4000, 8000, 100, 8),
)

_RECOMMENDATIONS = {
    "Slow response time": [
        "Implement response caching",
        "Optimize database queries",
        "Add database indexes",
        "Implement connection pooling",
    ],
    "High response time variance": [
        "Implement request queuing",
        "Add rate limiting",
        "Optimize resource allocation",
    ],
    "High error rate": [
        "Implement circuit breaker pattern",
        "Add retry logic with exponential backoff",
        "Improve error handling and logging",
    ],
    "Moderate response time": [
        "Consider response caching for frequently accessed data",
        "Review database query performance",
    ],
}


def _new_id() -> str:
    return f"api_opt_{uuid.uuid4().hex[:16]}"


def optimization_score(avg: float, p95: float, p99: float, requests: float, error_rate: float) -> int:
    score = 0
    if avg > 1000:
        score += 40
    elif avg > 500:
        score += 30
    elif avg > 200:
        score += 20
    elif avg > 100:
        score += 10

    if p95 > avg * 3:
        score += 20
    if p99 > avg * 5:
        score += 15

    if error_rate > 10:
        score += 25
    elif error_rate > 5:
        score += 15
    elif error_rate > 2:
        score += 10

    if requests > 1000:
        score += 15
    elif requests > 500:
        score += 10
    elif requests > 100:
        score += 5
    return min(score, 100)


def detect_bottlenecks(avg: float, p95: float, error_rate: float) -> List[str]:
    labels = []
    if avg > 500:
        labels.append("Slow response time")
    if p95 > avg * 3:
        labels.append("High response time variance")
    if error_rate > 5:
        labels.append("High error rate")
    if 200 < avg <= 500:
        labels.append("Moderate response time")
    return labels


def estimated_improvement(score: int) -> int:
    if score >= 80:
        return 70
    if score >= 60:
        return 50
    if score >= 40:
        return 30
    if score >= 20:
        return 15
    return 5


def cache_key(endpoint: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", endpoint).lower()


def analyze_endpoint(
    endpoint: str, method: str, avg: float, p95: float, p99: float, requests: float, error_rate: float
) -> ApiEndpointAnalysis:
    score = optimization_score(avg, p95, p99, requests, error_rate)
    labels = detect_bottlenecks(avg, p95, error_rate)
    recommendations = [r for label in labels for r in _RECOMMENDATIONS[label]]
    return ApiEndpointAnalysis(
        id=_new_id(),
        endpoint=endpoint,
        method=method,
        avg_response_time=avg,
        p95_response_time=p95,
        p99_response_time=p99,
        request_count=requests,
        error_rate=error_rate,
        optimization_score=score,
        bottlenecks=labels,
        recommendations=recommendations or ["API performance appears to be well-optimized"],
        estimated_improvement=estimated_improvement(score),
    )


def caching_strategy_for(analysis: ApiEndpointAnalysis) -> CachingStrategy:
    if "/reports" in analysis.endpoint:
        strategy, ttl, rules = "static_cache", 3600, ["on_schedule", "on_admin_action"]
    elif "/users" in analysis.endpoint:
        strategy, ttl, rules = "dynamic_cache", 1800, ["on_user_update", "on_profile_change"]
    elif analysis.method == "POST":
        strategy, ttl, rules = "query_cache", 60, ["on_data_change"]
    else:
        strategy, ttl, rules = "response_cache", 300, ["on_data_change"]
    return CachingStrategy(
        id=_new_id(),
        endpoint=analysis.endpoint,
        strategy=strategy,
        ttl=ttl,
        invalidation_rules=rules,
        cache_key=cache_key(analysis.endpoint),
    )


def code_optimizations_for(analysis: ApiEndpointAnalysis) -> List[CodeOptimization]:
    def opt(otype, description, improvement, complexity):
        return CodeOptimization(
            id=_new_id(),
            endpoint=analysis.endpoint,
            optimization_type=otype,
            description=description,
            estimated_improvement=improvement,
            implementation_complexity=complexity,
        )

    opts = []
    if analysis.avg_response_time > 500:
        opts.append(opt("async_await", "Convert synchronous operations to async/await for better performance", 30, "medium"))
        opts.append(opt("streaming", "Implement streaming for large data responses", 40, "high"))
    if analysis.request_count > 500:
        opts.append(opt("pagination", "Implement pagination for large result sets", 25, "low"))
    if analysis.avg_response_time > 200:
        opts.append(opt("compression", "Enable response compression (gzip/brotli)", 20, "low"))
    return opts


class ApiOptimizationService:
    """Scores API endpoints and generates (simulated) caching, code and load-balancing work."""

    def __init__(
        self,
        monitoring: PerformanceMonitoringService,
        time_scale: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        self._monitoring = monitoring
        self._time_scale = time_scale
        self._rng = rng or random.Random()
        self._analyses: List[ApiEndpointAnalysis] = []
        self._caching: List[CachingStrategy] = []
        self._code: List[CodeOptimization] = []
        self._load_balancing: List[LoadBalancingStrategy] = []
        self._lock = RLock()

    # PUBLIC_INTERFACE
    def analyze(self) -> List[ApiEndpointAnalysis]:
        """Analyse live API traffic plus the representative endpoint patterns, highest score first."""
        analyses = []
        api = self._monitoring.get_metrics_summary().api
        avg = api.response_time.current
        if avg:
            analyses.append(
                analyze_endpoint(
                    "/api/*",
                    "ALL",
                    avg,
                    api.response_time.p95 or avg * 1.5,
                    api.response_time.p99 or avg * 2,
                    api.throughput.current or 100,
                    api.error_rate.current,
                )
            )
        analyses.extend(analyze_endpoint(*pattern) for pattern in ENDPOINT_PATTERNS)
        analyses.sort(key=lambda a: a.optimization_score, reverse=True)
        with self._lock:
            self._analyses = analyses
        return analyses

    def _current_analyses(self) -> List[ApiEndpointAnalysis]:
        with self._lock:
            analyses = list(self._analyses)
        return analyses or self.analyze()

    def generate_caching_strategies(self) -> List[CachingStrategy]:
        strategies = [caching_strategy_for(a) for a in self._current_analyses() if a.optimization_score > 40]
        strategies.append(
            CachingStrategy(
                id=_new_id(),
                endpoint="/api/health",
                strategy="response_cache",
                ttl=30,
                invalidation_rules=["on_schedule"],
                cache_key="health_check",
            )
        )
        strategies.append(
            CachingStrategy(
                id=_new_id(),
                endpoint="/api/config",
                strategy="static_cache",
                ttl=3600,
                invalidation_rules=["on_config_change"],
                cache_key="app_config",
            )
        )
        with self._lock:
            self._caching = merge_generated(self._caching, strategies)
        return strategies

    def generate_code_optimizations(self) -> List[CodeOptimization]:
        opts: List[CodeOptimization] = []
        for analysis in self._current_analyses():
            if analysis.optimization_score > 50:
                opts.extend(code_optimizations_for(analysis))
        opts.append(
            CodeOptimization(
                id=_new_id(),
                endpoint="/api/*",
                optimization_type="connection_pooling",
                description="Implement database connection pooling for better resource management",
                estimated_improvement=25,
                implementation_complexity="medium",
            )
        )
        with self._lock:
            self._code = merge_generated(self._code, opts)
        return opts

    def generate_load_balancing_strategies(self) -> List[LoadBalancingStrategy]:
        strategies = [
            LoadBalancingStrategy(
                id=_new_id(),
                target="api_endpoints",
                strategy="health_based",
                health_check_endpoint="/api/health",
                health_check_interval=30,
            ),
            LoadBalancingStrategy(
                id=_new_id(), target="database_connections", strategy="least_connections", health_check_interval=60
            ),
            LoadBalancingStrategy(
                id=_new_id(), target="external_services", strategy="round_robin", health_check_interval=45
            ),
        ]
        with self._lock:
            self._load_balancing = merge_generated(self._load_balancing, strategies)
        return strategies

    # PUBLIC_INTERFACE
    async def execute_caching(self, strategy_id: str) -> CachingStrategy:
        """Simulate rolling out a caching strategy and record its hit rate and impact."""
        with self._lock:
            strategy = claim_pending(self._caching, strategy_id, "caching strategy")
        delay = min(self._rng.uniform(1.0, 3.0), MAX_SIMULATED_WORK_SEC)
        await simulate_work(strategy, delay * self._time_scale, "Caching strategy")
        with self._lock:
            strategy.status = "completed"
            strategy.implemented_at = utc_now()
            strategy.performance_impact = round(self._rng.uniform(20, 60), 2)
            strategy.hit_rate = round(self._rng.uniform(70, 100), 2)
        logger.info("Caching strategy %s implemented for %s", strategy_id, strategy.endpoint)
        return strategy

    # PUBLIC_INTERFACE
    async def execute_code(self, optimization_id: str) -> CodeOptimization:
        """Simulate a code optimization; impact lands within 80-120% of the estimate."""
        with self._lock:
            opt = claim_pending(self._code, optimization_id, "code optimization")
        delay = simulated_delay(self._rng, opt.implementation_complexity)
        await simulate_work(opt, delay * self._time_scale, "Code optimization")
        with self._lock:
            opt.status = "completed"
            opt.implemented_at = utc_now()
            opt.performance_impact = round(opt.estimated_improvement * self._rng.uniform(0.8, 1.2), 2)
        logger.info("Code optimization %s implemented type=%s", optimization_id, opt.optimization_type)
        return opt

    def get_status(self) -> ApiOptimizationStatus:
        with self._lock:
            analyses = list(self._analyses)
            parts = ApiOptimizationBreakdown(
                caching=breakdown(self._caching),
                code=breakdown(self._code),
                load_balancing=breakdown(self._load_balancing),
            )
        top = sorted(
            (a for a in analyses if a.optimization_score > 50), key=lambda a: a.optimization_score, reverse=True
        )
        return ApiOptimizationStatus(
            summary=summarize([parts.caching, parts.code, parts.load_balancing]),
            breakdown=parts,
            recent_analyses=analyses[-5:],
            top_recommendations=top[:5],
        )

    def get_analyses(self) -> List[ApiEndpointAnalysis]:
        with self._lock:
            return list(self._analyses)

    def get_caching_strategies(self) -> List[CachingStrategy]:
        with self._lock:
            return list(self._caching)

    def get_code_optimizations(self) -> List[CodeOptimization]:
        with self._lock:
            return list(self._code)

    def get_load_balancing_strategies(self) -> List[LoadBalancingStrategy]:
        with self._lock:
            return list(self._load_balancing)
