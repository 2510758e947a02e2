from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

MetricType = Literal["api", "database", "system", "frontend"]
ThresholdAlertType = Literal["warning", "error", "critical"]
TrendDirection = Literal["improving", "degrading", "stable"]
SystemHealth = Literal["healthy", "warning", "critical"]


class PerformanceMetric(CamelModel):
    """A single in-memory performance observation."""

    id: str
    type: MetricType
    name: str
    value: float
    unit: str
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ThresholdAlert(CamelModel):
    """Alert raised when a tracked metric crosses its configured threshold."""

    id: str
    metric_id: str
    type: ThresholdAlertType
    message: str
    threshold: float
    actual_value: float
    timestamp: datetime


class MonitoringConfig(CamelModel):
    """Thresholds and retention used by the performance monitor."""

    api_response_time_threshold: float = Field(200, ge=0, description="ms")
    database_query_time_threshold: float = Field(100, ge=0, description="ms")
    frontend_load_time_threshold: float = Field(3000, ge=0, description="ms")
    system_memory_threshold: float = Field(80, ge=0, le=100, description="percent")
    alert_enabled: bool = True
    metrics_retention_days: int = Field(30, ge=1, le=3650)


class MonitoringConfigUpdate(CamelModel):
    """Partial update for MonitoringConfig (shallow merge)."""

    api_response_time_threshold: Optional[float] = Field(default=None, ge=0)
    database_query_time_threshold: Optional[float] = Field(default=None, ge=0)
    frontend_load_time_threshold: Optional[float] = Field(default=None, ge=0)
    system_memory_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    alert_enabled: Optional[bool] = None
    metrics_retention_days: Optional[int] = Field(default=None, ge=1, le=3650)


class MonitoringStatus(CamelModel):
    is_active: bool


class MetricsList(CamelModel):
    metrics: List[PerformanceMetric]
    count: int
    type: str = Field(..., description="Metric type filter or 'all'.")


class DatabaseQueryReport(CamelModel):
    """Client-reported database query timing."""

    query: str = Field(..., min_length=1)
    duration_ms: float = Field(..., ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FrontendTimingReport(CamelModel):
    """Client-reported page load timing."""

    page: str = Field(..., min_length=1)
    load_time_ms: float = Field(..., ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---- Summary ----


class TimingStats(CamelModel):
    current: float = 0
    daily: float = 0
    p95: float = 0
    p99: float = 0
    min: float = 0
    max: float = 0


class WindowCount(CamelModel):
    current: float = 0
    daily: float = 0


class ApiThroughput(WindowCount):
    rps: float = 0


class DatabaseThroughput(WindowCount):
    qps: float = 0


class FrontendThroughput(WindowCount):
    pps: float = 0


class ApiSummary(CamelModel):
    response_time: TimingStats
    throughput: ApiThroughput
    error_rate: WindowCount
    availability: WindowCount


class DatabaseSummary(CamelModel):
    query_time: TimingStats
    throughput: DatabaseThroughput
    error_rate: WindowCount
    slow_queries: WindowCount


class FrontendSummary(CamelModel):
    load_time: TimingStats
    throughput: FrontendThroughput
    slow_pages: WindowCount
    # Averaged from reported metadata.renderTime; zero when clients do not send it.
    render_time: WindowCount = Field(default_factory=WindowCount)
    error_rate: WindowCount = Field(default_factory=WindowCount)


class MemoryStats(CamelModel):
    current: float = 0
    average: float = 0
    max: float = 0
    threshold: float = 0


class CpuStats(CamelModel):
    current: float = 0
    average: float = 0
    max: float = 0


class UptimeStats(CamelModel):
    current: float = Field(..., description="Process uptime in seconds.")
    formatted: str


class SystemSummary(CamelModel):
    memory: MemoryStats
    cpu: CpuStats
    uptime: UptimeStats


class Trend(CamelModel):
    direction: TrendDirection = "stable"
    percentage: float = 0


class OverallTrend(CamelModel):
    direction: TrendDirection
    improving: int
    degrading: int
    stable: int
    total: int


class TrendSummary(CamelModel):
    api: Trend
    database: Trend
    frontend: Trend
    overall: OverallTrend


class ApiSla(CamelModel):
    response_time: float
    availability: float
    error_rate: float
    compliance: float


class DatabaseSla(CamelModel):
    query_time: float
    error_rate: float
    slow_queries: float
    compliance: float


class FrontendSla(CamelModel):
    load_time: float
    slow_pages: float
    compliance: float


class SlaCompliance(CamelModel):
    api: ApiSla
    database: DatabaseSla
    frontend: FrontendSla
    overall: float


class PerformanceSummary(CamelModel):
    """Aggregated KPIs consumed by the dashboard, alert rules and bottleneck detection."""

    total_metrics: int
    total_alerts: int
    recent_metrics: int
    daily_metrics: int
    weekly_metrics: int

    active_alerts: int
    warning_alerts: int
    error_alerts: int

    api: ApiSummary
    database: DatabaseSummary
    frontend: FrontendSummary
    system: SystemSummary

    system_health: SystemHealth
    trends: TrendSummary
    sla_compliance: SlaCompliance
