from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

AlertType = Literal["critical", "warning", "info"]
AlertCategory = Literal["api", "database", "system", "frontend", "custom"]
AlertSeverity = Literal["low", "medium", "high", "critical"]
AlertStatus = Literal["active", "acknowledged", "resolved", "dismissed"]
RuleCondition = Literal["above", "below", "equals", "not_equals", "contains", "not_contains"]
NotificationChannel = Literal["email", "slack", "webhook", "sms", "dashboard"]
NotificationStatus = Literal["pending", "sent", "failed"]


class AlertMetadata(CamelModel):
    rule_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)


class PerformanceAlert(CamelModel):
    """An alert raised by a rule (or created manually) with its lifecycle stamps."""

    id: str
    type: AlertType
    category: AlertCategory
    title: str
    description: str
    metric: str
    current_value: Union[float, str, None] = None
    threshold: Union[float, str, None] = None
    severity: AlertSeverity
    status: AlertStatus = "active"
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_by: Optional[str] = None
    dismissed_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    dismissal_reason: Optional[str] = None
    metadata: AlertMetadata = Field(default_factory=AlertMetadata)


class AlertRuleBase(CamelModel):
    """Common fields for an alert rule."""

    name: str = Field(..., description="Human-friendly rule name.")
    description: str = Field("", description="Rule description; used in alert text.")
    category: AlertCategory = Field(..., description="Summary section the metric path is resolved in.")
    metric: str = Field(..., description="Dotted metric path inside the category summary (e.g. 'responseTime.p95').")
    condition: RuleCondition = Field("above", description="Comparator applied to value vs threshold.")
    threshold: Union[float, str] = Field(..., description="Numeric or string threshold.")
    severity: AlertSeverity = Field("medium", description="Severity of alerts raised by the rule.")
    enabled: bool = Field(True, description="Whether the rule is evaluated.")
    cooldown: int = Field(300, ge=0, le=7 * 24 * 3600, description="Seconds before the rule may fire again.")
    notification_channels: List[NotificationChannel] = Field(default_factory=lambda: ["dashboard"])
    tags: List[str] = Field(default_factory=list)


class AlertRuleCreate(AlertRuleBase):
    """Request model for creating a rule; id is generated when omitted."""

    id: Optional[str] = Field(default=None, description="Optional explicit rule id.")


class AlertRuleUpdate(CamelModel):
    """Partial update for an alert rule (merge)."""

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[AlertCategory] = None
    metric: Optional[str] = None
    condition: Optional[RuleCondition] = None
    threshold: Union[float, str, None] = None
    severity: Optional[AlertSeverity] = None
    enabled: Optional[bool] = None
    cooldown: Optional[int] = Field(default=None, ge=0, le=7 * 24 * 3600)
    notification_channels: Optional[List[NotificationChannel]] = None
    tags: Optional[List[str]] = None


class AlertRule(AlertRuleBase):
    """Stored alert rule."""

    id: str
    last_triggered: Optional[datetime] = None


class AlertNotification(CamelModel):
    id: str
    alert_id: str
    channel: str
    status: NotificationStatus = "pending"
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CustomAlertCreate(CamelModel):
    """Manually raised alert."""

    category: AlertCategory = "custom"
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    severity: AlertSeverity = "medium"
    metric: str = "custom"
    current_value: Union[float, str, None] = None
    threshold: Union[float, str, None] = None
    tags: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class AcknowledgeRequest(CamelModel):
    acknowledged_by: str = Field(..., min_length=1)


class ResolveRequest(CamelModel):
    resolved_by: str = Field(..., min_length=1)
    resolution_notes: Optional[str] = None


class DismissRequest(CamelModel):
    dismissed_by: str = Field(..., min_length=1)
    dismissal_reason: Optional[str] = None


class AlertList(CamelModel):
    alerts: List[PerformanceAlert]
    total: int
    limit: int
    offset: int


class AlertSummary(CamelModel):
    total: int
    active: int
    acknowledged: int
    resolved: int
    dismissed: int
    critical: int
    high: int
    medium: int
    low: int
    by_category: Dict[str, int]
    by_severity: Dict[str, int]
    recent_alerts: List[PerformanceAlert]


class AlertMonitoringStatus(CamelModel):
    is_active: bool
    interval_ms: int


class StartMonitoringRequest(CamelModel):
    interval_ms: Optional[int] = Field(default=None, ge=1000, le=24 * 3600 * 1000)
