from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel
from src.dashboard.schemas.optimization import WorkBreakdown, WorkSummary

WorkStatus = Literal["pending", "implementing", "completed", "failed"]
Complexity = Literal["low", "medium", "high"]


class ApiEndpointAnalysis(CamelModel):
    id: str
    endpoint: str
    method: str
    avg_response_time: float
    p95_response_time: float
    p99_response_time: float
    request_count: float
    error_rate: float
    optimization_score: int
    bottlenecks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    estimated_improvement: int


class CachingStrategy(CamelModel):
    id: str
    endpoint: str
    strategy: Literal["response_cache", "query_cache", "static_cache", "dynamic_cache"]
    ttl: int = Field(..., description="Seconds.")
    invalidation_rules: List[str] = Field(default_factory=list)
    cache_key: str
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    hit_rate: Optional[float] = None
    performance_impact: Optional[float] = None


class CodeOptimization(CamelModel):
    id: str
    endpoint: str
    optimization_type: Literal["async_await", "streaming", "pagination", "compression", "connection_pooling"]
    description: str
    estimated_improvement: float
    implementation_complexity: Complexity
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    performance_impact: Optional[float] = None


class LoadBalancingStrategy(CamelModel):
    id: str
    target: Literal["api_endpoints", "database_connections", "external_services"]
    strategy: Literal["round_robin", "least_connections", "weighted", "health_based"]
    health_check_endpoint: Optional[str] = None
    health_check_interval: int = Field(..., description="Seconds.")
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    performance_impact: Optional[float] = None


class ApiOptimizationBreakdown(CamelModel):
    caching: WorkBreakdown
    code: WorkBreakdown
    load_balancing: WorkBreakdown


class ApiOptimizationStatus(CamelModel):
    summary: WorkSummary
    breakdown: ApiOptimizationBreakdown
    recent_analyses: List[ApiEndpointAnalysis]
    top_recommendations: List[ApiEndpointAnalysis]
