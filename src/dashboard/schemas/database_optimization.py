from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel
from src.dashboard.schemas.optimization import WorkBreakdown, WorkSummary

WorkStatus = Literal["pending", "implementing", "completed", "failed"]


class QueryAnalysis(CamelModel):
    id: str
    query: str
    execution_time: float
    frequency: int
    table_scans: bool
    index_usage: List[str] = Field(default_factory=list)
    optimization_score: int
    recommendations: List[str] = Field(default_factory=list)
    estimated_improvement: float


class IndexRecommendation(CamelModel):
    id: str
    table: str
    columns: List[str]
    type: Literal["single", "composite", "partial", "covering"]
    priority: Literal["low", "medium", "high", "critical"]
    estimated_improvement: float
    creation_sql: str = Field(..., alias="creationSQL")
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    performance_impact: Optional[float] = None


class QueryOptimization(CamelModel):
    id: str
    original_query: str
    optimized_query: str
    optimization_type: Literal["rewrite", "parameterization", "subquery_elimination", "join_optimization"]
    estimated_improvement: float
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    performance_impact: Optional[float] = None


class CacheStrategy(CamelModel):
    id: str
    target: Literal["query_results", "api_responses", "static_data", "session_data"]
    strategy: Literal["ttl", "lru", "write_through", "write_behind"]
    ttl: int = Field(..., description="Seconds.")
    max_size: int = Field(..., description="Megabytes.")
    invalidation_rules: List[str] = Field(default_factory=list)
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    hit_rate: Optional[float] = None


class DatabaseOptimizationBreakdown(CamelModel):
    indexes: WorkBreakdown
    queries: WorkBreakdown
    caching: WorkBreakdown


class DatabaseOptimizationStatus(CamelModel):
    summary: WorkSummary
    breakdown: DatabaseOptimizationBreakdown
    recent_analyses: List[QueryAnalysis]
    top_recommendations: List[IndexRecommendation]
