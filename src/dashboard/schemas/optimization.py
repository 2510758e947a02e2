from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

OptimizationType = Literal["caching", "indexing", "query_optimization", "resource_management", "code_optimization"]
Priority = Literal["low", "medium", "high", "critical"]
Impact = Literal["low", "medium", "high"]
Risk = Literal["low", "medium", "high"]
ActionStatus = Literal["pending", "implementing", "completed", "failed"]
ActionResult = Literal["success", "partial", "failed"]

PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}
IMPACT_ORDER = {"high": 3, "medium": 2, "low": 1}


class OptimizationAction(CamelModel):
    """A recommended remediation step; execution is simulated."""

    id: str
    type: OptimizationType
    description: str
    target: str
    priority: Priority
    estimated_impact: Impact
    implementation_time: int = Field(..., description="Estimated effort in minutes.")
    risk: Risk = "low"
    status: ActionStatus = "pending"
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[ActionResult] = None
    notes: Optional[str] = None


class OptimizationResult(CamelModel):
    action_id: str
    success: bool
    before_metrics: Dict[str, Any]
    after_metrics: Dict[str, Any]
    improvement: Dict[str, Dict[str, float]]
    notes: str
    completed_at: datetime


class OptimizationSummary(CamelModel):
    total: int
    pending: int
    implementing: int
    completed: int
    failed: int
    success_rate: float


class OptimizationStatus(CamelModel):
    summary: OptimizationSummary
    # Keys are the literal priority and type names.
    priority_breakdown: Dict[str, int]
    type_breakdown: Dict[str, int]
    recent_results: List[OptimizationResult]


class WorkBreakdown(CamelModel):
    """Counts for one kind of generated optimization work."""

    total: int = 0
    pending: int = 0
    completed: int = 0
    failed: int = 0


class WorkSummary(CamelModel):
    total_optimizations: int
    pending: int
    completed: int
    failed: int
    success_rate: float
