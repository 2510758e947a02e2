from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

CheckStatus = Literal["pass", "warn", "fail"]
SystemStatus = Literal["healthy", "warning", "critical", "unknown"]
DatabaseStatus = Literal["connected", "disconnected", "slow", "error"]
ApiStatus = Literal["operational", "degraded", "down", "error"]
SystemAlertType = Literal["info", "warning", "critical", "error"]
SystemAlertCategory = Literal["system", "performance", "database", "api", "security"]
SystemAlertSeverity = Literal["low", "medium", "high", "critical"]


class MemoryUsage(CamelModel):
    used: float = 0
    total: float = 0
    percentage: float = 0


class CpuUsage(CamelModel):
    current: float = 0
    average: float = 0
    percentage: float = 0


class SystemHealthMetrics(CamelModel):
    """Aggregated result of one health check pass."""

    system_status: SystemStatus
    uptime: float = Field(..., description="Process uptime in seconds.")
    memory_usage: MemoryUsage
    cpu_usage: CpuUsage
    database_status: DatabaseStatus
    api_status: ApiStatus
    last_health_check: datetime
    active_alerts: int
    performance_score: int = Field(..., ge=0, le=100)


class HealthCheckResult(CamelModel):
    """Outcome of one component check (database, memory, uptime)."""

    name: str
    status: CheckStatus
    message: str
    timestamp: datetime
    response_time: float = Field(0, description="Milliseconds the check itself took.")
    details: Dict[str, Any] = Field(default_factory=dict)


class SystemAlert(CamelModel):
    id: str
    type: SystemAlertType
    category: SystemAlertCategory
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    severity: SystemAlertSeverity
    source: str
    business_entity_id: Optional[str] = None


class SystemHealthSnapshot(CamelModel):
    """History entry: the metrics of one pass and the alerts open at that moment."""

    timestamp: datetime
    metrics: SystemHealthMetrics
    alerts: List[SystemAlert] = Field(default_factory=list)


class SystemAlertCreate(CamelModel):
    """Request body for raising a system alert by hand."""

    type: SystemAlertType
    category: SystemAlertCategory
    message: str = Field(..., min_length=1, max_length=500)
    severity: SystemAlertSeverity
    source: str = Field(..., min_length=1, max_length=100)
    business_entity_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class StartHealthMonitoringRequest(CamelModel):
    interval_ms: Optional[int] = Field(
        default=None, ge=5000, le=300000, description="Check interval; 5 to 300 seconds."
    )


class HealthMonitoringStatus(CamelModel):
    is_active: bool
    status: Literal["monitoring", "stopped"]
    interval_ms: int


class AlertCounts(CamelModel):
    count: int
    critical: int
    high: int
    medium: int
    low: int


class HealthCheckCounts(CamelModel):
    total: int
    passed: int
    warnings: int
    failed: int


class SystemHealthSummary(CamelModel):
    current_health: Optional[SystemHealthMetrics] = None
    active_alerts: AlertCounts
    health_checks: HealthCheckCounts
    monitoring_status: bool


class CleanupResult(CamelModel):
    timestamp: datetime
    status: Literal["completed"] = "completed"
