from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

BottleneckType = Literal["api", "database", "system", "frontend"]
BottleneckSeverity = Literal["low", "medium", "high", "critical"]
BottleneckStatus = Literal["active", "resolved", "investigating"]


class PerformanceBottleneck(CamelModel):
    """A detected performance problem and what to do about it."""

    id: str
    type: BottleneckType
    severity: BottleneckSeverity
    description: str
    metrics: Dict[str, float] = Field(default_factory=dict)
    detected_at: datetime
    status: BottleneckStatus = "active"
    recommendations: List[str] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class ThresholdPair(CamelModel):
    warning: float
    critical: float


class ApiThresholds(CamelModel):
    response_time: ThresholdPair = ThresholdPair(warning=500, critical=1000)
    error_rate: ThresholdPair = ThresholdPair(warning=5, critical=10)
    # Lower is worse for throughput.
    throughput: ThresholdPair = ThresholdPair(warning=100, critical=50)


class DatabaseThresholds(CamelModel):
    query_time: ThresholdPair = ThresholdPair(warning=100, critical=500)
    error_rate: ThresholdPair = ThresholdPair(warning=2, critical=5)
    slow_queries: ThresholdPair = ThresholdPair(warning=10, critical=25)


class SystemThresholds(CamelModel):
    memory: ThresholdPair = ThresholdPair(warning=80, critical=90)
    cpu: ThresholdPair = ThresholdPair(warning=80, critical=90)
    # Percent availability; lower is worse.
    uptime: ThresholdPair = ThresholdPair(warning=99.5, critical=99.0)


class FrontendThresholds(CamelModel):
    load_time: ThresholdPair = ThresholdPair(warning=3000, critical=5000)
    render_time: ThresholdPair = ThresholdPair(warning=1000, critical=2000)
    error_rate: ThresholdPair = ThresholdPair(warning=2, critical=5)


class BottleneckThresholds(CamelModel):
    api: ApiThresholds = Field(default_factory=ApiThresholds)
    database: DatabaseThresholds = Field(default_factory=DatabaseThresholds)
    system: SystemThresholds = Field(default_factory=SystemThresholds)
    frontend: FrontendThresholds = Field(default_factory=FrontendThresholds)


class BottleneckThresholdsUpdate(CamelModel):
    """Partial update; omitted areas and omitted metrics keep their current thresholds."""

    api: Optional[ApiThresholds] = None
    database: Optional[DatabaseThresholds] = None
    system: Optional[SystemThresholds] = None
    frontend: Optional[FrontendThresholds] = None


class BottleneckStatusUpdate(CamelModel):
    status: BottleneckStatus
    notes: Optional[str] = None
