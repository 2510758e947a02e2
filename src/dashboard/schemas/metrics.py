from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

MetricType = Literal["ga4_pageview", "ga4_session", "ga4_user", "n8n_workflow_execution", "custom"]
MetricSource = Literal["google_analytics", "n8n", "custom"]
AutomationType = Literal["n8n_workflow", "zapier_automation", "custom_script"]
AutomationStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
TriggerType = Literal["scheduled", "manual", "webhook", "event_based"]
Aggregation = Literal["daily", "weekly", "monthly"]
ExportFormat = Literal["json", "csv"]


class MetricCreate(CamelModel):
    """Request body for recording a business metric."""

    business_entity_id: str = Field(..., min_length=1, description="Business entity the metric belongs to.")
    metric_type: MetricType
    metric_name: str = Field(..., min_length=1)
    metric_value: float
    metric_unit: Optional[str] = None
    source: MetricSource
    source_id: Optional[str] = None
    date: datetime = Field(..., description="When the observation applies (UTC when no offset is given).")
    timezone: str = "UTC"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)


class MetricUpdate(CamelModel):
    """Partial update of a metric."""

    metric_type: Optional[MetricType] = None
    metric_name: Optional[str] = Field(default=None, min_length=1)
    metric_value: Optional[float] = None
    metric_unit: Optional[str] = None
    source: Optional[MetricSource] = None
    source_id: Optional[str] = None
    date: Optional[datetime] = None
    timezone: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None


class MetricOut(MetricCreate):
    id: str
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime


class MetricListResponse(CamelModel):
    metrics: List[MetricOut]
    total: int = Field(..., ge=0, description="Matches before pagination.")
    page: int
    limit: int
    has_more: bool


class AutomationExecutionCreate(CamelModel):
    business_entity_id: str = Field(..., min_length=1)
    automation_type: AutomationType
    automation_name: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1, description="Identifier assigned by the external automation platform.")
    status: AutomationStatus = "pending"
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0, description="Seconds.")
    trigger_type: TriggerType
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(3, ge=0)
    next_retry_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)


class AutomationExecutionOut(AutomationExecutionCreate):
    id: str
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime


class AutomationStatusUpdate(CamelModel):
    status: AutomationStatus
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0)


class DataArchiveCreate(CamelModel):
    business_entity_id: str = Field(..., min_length=1)
    archive_type: str = Field(..., min_length=1, description="e.g. metrics, automation_executions, metric_retention.")
    source_table: str = Field(..., min_length=1)
    source_record_id: str = Field(..., min_length=1)
    archived_data: Dict[str, Any] = Field(default_factory=dict)
    archive_date: Optional[datetime] = None
    retention_policy: str = Field(..., min_length=1)
    compression_ratio: Optional[float] = None
    storage_location: Optional[str] = None
    is_restorable: bool = True


class DataArchiveOut(DataArchiveCreate):
    id: str
    archive_date: datetime
    created_at: datetime


class MetricsSummary(CamelModel):
    total_metrics: int
    total_automations: int
    success_rate: float
    average_execution_time: float


class AggregatedMetric(CamelModel):
    metric_type: str
    metric_name: str
    total_value: float
    average_value: float
    count: int


class HistoryPeriod(CamelModel):
    period: str = Field(..., description="YYYY-MM-DD (daily, week starting Sunday) or YYYY-MM (monthly).")
    metrics: List[AggregatedMetric]


class AutomationTypePerformance(CamelModel):
    automation_type: str
    total: int
    completed: int
    failed: int
    success_rate: float
    average_duration: float


class AutomationPerformance(CamelModel):
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    average_execution_time: float
    by_type: List[AutomationTypePerformance]


class MetricsCleanupRequest(CamelModel):
    business_entity_id: Optional[str] = Field(default=None, description="Limit cleanup to one entity.")
    retention_days: Optional[int] = Field(
        default=None, ge=1, description="Defaults to METRICS_RETENTION_DAYS when omitted."
    )


class MetricsCleanupResult(CamelModel):
    archived_metrics: int
    retention_days: int
