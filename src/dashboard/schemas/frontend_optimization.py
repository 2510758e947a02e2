from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel
from src.dashboard.schemas.optimization import WorkBreakdown, WorkSummary

WorkStatus = Literal["pending", "implementing", "completed", "failed"]
Complexity = Literal["low", "medium", "high"]


class FrontendPerformanceAnalysis(CamelModel):
    id: str
    page: str
    load_time: float
    render_time: float
    bundle_size: float = Field(..., description="Kilobytes.")
    asset_count: int
    optimization_score: int
    bottlenecks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    estimated_improvement: int


class FrontendWorkItem(CamelModel):
    """Fields shared by bundle, asset and rendering optimizations."""

    id: str
    description: str
    estimated_improvement: float
    implementation_complexity: Complexity
    status: WorkStatus = "pending"
    implemented_at: Optional[datetime] = None
    performance_impact: Optional[float] = None


class BundleOptimization(FrontendWorkItem):
    target: Literal["main_bundle", "vendor_bundle", "chunk_bundle", "lazy_loaded"]
    optimization_type: Literal["code_splitting", "tree_shaking", "minification", "compression", "lazy_loading"]


class AssetOptimization(FrontendWorkItem):
    target: Literal["images", "fonts", "css", "javascript", "static_files"]
    optimization_type: Literal["compression", "format_conversion", "cdn_deployment", "caching", "lazy_loading"]


class RenderingOptimization(FrontendWorkItem):
    target: Literal["react_components", "dom_manipulation", "event_handling", "state_management"]
    optimization_type: Literal["memoization", "virtualization", "debouncing", "throttling", "code_splitting"]


class FrontendOptimizationBreakdown(CamelModel):
    bundle: WorkBreakdown
    asset: WorkBreakdown
    rendering: WorkBreakdown


class FrontendOptimizationStatus(CamelModel):
    summary: WorkSummary
    breakdown: FrontendOptimizationBreakdown
    recent_analyses: List[FrontendPerformanceAnalysis]
    top_recommendations: List[FrontendPerformanceAnalysis]
