from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response, status

from src.dashboard.schemas.common import DataResponse, ErrorResponse, MessageResponse, ok, utc_now
from src.dashboard.schemas.metrics import (
    Aggregation,
    AutomationExecutionCreate,
    AutomationExecutionOut,
    AutomationPerformance,
    AutomationStatusUpdate,
    DataArchiveCreate,
    DataArchiveOut,
    ExportFormat,
    HistoryPeriod,
    MetricCreate,
    MetricListResponse,
    MetricOut,
    MetricsCleanupRequest,
    MetricsCleanupResult,
    MetricsSummary,
    MetricUpdate,
)
from src.dashboard.security import require_user
from src.dashboard.services import metrics_service

router = APIRouter(prefix="/api/metrics", tags=["Metrics"], dependencies=[Depends(require_user)])

_NOT_FOUND = {404: {"model": ErrorResponse}}
_CONTENT_TYPES = {"csv": "text/csv", "json": "application/json"}


def _split_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    """Accept both repeated ?tags=a&tags=b and ?tags=a,b."""
    if not tags:
        return None
    out = [t.strip() for raw in tags for t in raw.split(",") if t.strip()]
    return out or None


def _export_response(body: str, fmt: str, prefix: str, business_entity_id: str) -> Response:
    filename = f"{prefix}_{business_entity_id}_{utc_now().strftime('%Y-%m-%d')}.{fmt}"
    return Response(
        content=body,
        media_type=_CONTENT_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---- Metrics ----


@router.post(
    "",
    response_model=DataResponse[MetricOut],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Record metric",
    description="Store a business metric (GA4, n8n or custom).",
    operation_id="create_metric",
)
def create_metric(request: Request, payload: MetricCreate) -> DataResponse[MetricOut]:
    """Create a metric."""
    return ok(metrics_service.create_metric(request, payload), "Metric created")


@router.get(
    "",
    response_model=DataResponse[MetricListResponse],
    summary="List metrics",
    description="Live metrics newest first. Tags match when the metric carries any of them.",
    operation_id="list_metrics",
)
def list_metrics(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    metric_type: Optional[str] = Query(default=None, alias="metricType"),
    source: Optional[str] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    tags: Optional[List[str]] = Query(default=None, description="Repeated or comma-separated."),
    is_archived: bool = Query(default=False, alias="isArchived"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[MetricListResponse]:
    result = metrics_service.list_metrics(
        request,
        business_entity_id=business_entity_id,
        metric_type=metric_type,
        source=source,
        start_date=start_date,
        end_date=end_date,
        tags=_split_tags(tags),
        is_archived=is_archived,
        limit=limit,
        offset=offset,
    )
    return ok(result)


# ---- Analytics ----


@router.get(
    "/summary",
    response_model=DataResponse[MetricsSummary],
    responses={400: {"model": ErrorResponse}},
    summary="Metrics summary",
    description="Metric and automation counts, automation success rate and mean duration in a date range.",
    operation_id="get_metrics_summary",
)
def get_summary(
    request: Request,
    business_entity_id: str = Query(..., alias="businessEntityId"),
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
) -> DataResponse[MetricsSummary]:
    return ok(metrics_service.get_summary(request, business_entity_id, start_date, end_date))


@router.get(
    "/history",
    response_model=DataResponse[List[HistoryPeriod]],
    responses={400: {"model": ErrorResponse}},
    summary="Metrics history",
    description="Daily, weekly (Sunday start) or monthly buckets aggregated per metricType:metricName.",
    operation_id="get_metrics_history",
)
def get_history(
    request: Request,
    business_entity_id: str = Query(..., alias="businessEntityId"),
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    metric_type: Optional[str] = Query(default=None, alias="metricType"),
    aggregation: Aggregation = Query("daily"),
) -> DataResponse[List[HistoryPeriod]]:
    history = metrics_service.get_history(
        request, business_entity_id, start_date, end_date, metric_type=metric_type, aggregation=aggregation
    )
    return ok(history)


@router.get(
    "/automation/performance",
    response_model=DataResponse[AutomationPerformance],
    responses={400: {"model": ErrorResponse}},
    summary="Automation performance",
    operation_id="get_automation_performance",
)
def automation_performance(
    request: Request,
    business_entity_id: str = Query(..., alias="businessEntityId"),
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    automation_type: Optional[str] = Query(default=None, alias="automationType"),
) -> DataResponse[AutomationPerformance]:
    performance = metrics_service.get_automation_performance(
        request, business_entity_id, start_date, end_date, automation_type
    )
    return ok(performance)


# ---- Export ----


@router.get(
    "/export",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}, "application/json": {}}}, 400: {"model": ErrorResponse}},
    summary="Export metrics",
    description="Download metrics in a date range as CSV or JSON.",
    operation_id="export_metrics",
)
def export_metrics(
    request: Request,
    business_entity_id: str = Query(..., alias="businessEntityId"),
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    fmt: ExportFormat = Query("json", alias="format"),
    metric_type: Optional[str] = Query(default=None, alias="metricType"),
) -> Response:
    body = metrics_service.export_metrics(request, business_entity_id, start_date, end_date, fmt, metric_type)
    return _export_response(body, fmt, "metrics", business_entity_id)


@router.get(
    "/automation/export",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}, "application/json": {}}}, 400: {"model": ErrorResponse}},
    summary="Export automation executions",
    operation_id="export_automation_executions",
)
def export_automations(
    request: Request,
    business_entity_id: str = Query(..., alias="businessEntityId"),
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    fmt: ExportFormat = Query("json", alias="format"),
    automation_type: Optional[str] = Query(default=None, alias="automationType"),
) -> Response:
    body = metrics_service.export_automations(
        request, business_entity_id, start_date, end_date, fmt, automation_type
    )
    return _export_response(body, fmt, "automations", business_entity_id)


# ---- Retention ----


@router.post(
    "/cleanup",
    response_model=DataResponse[MetricsCleanupResult],
    summary="Archive expired metrics",
    description="Copies metrics older than the retention window into data archives and flags them archived.",
    operation_id="cleanup_metrics",
)
def cleanup(request: Request, payload: Optional[MetricsCleanupRequest] = None) -> DataResponse[MetricsCleanupResult]:
    payload = payload or MetricsCleanupRequest()
    result = metrics_service.cleanup(
        request, retention_days=payload.retention_days, business_entity_id=payload.business_entity_id
    )
    return ok(result, f"Archived {result.archived_metrics} metric(s)")


# ---- Automation executions ----


@router.post(
    "/automations",
    response_model=DataResponse[AutomationExecutionOut],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Record automation execution",
    operation_id="create_automation_execution",
)
def create_automation(request: Request, payload: AutomationExecutionCreate) -> DataResponse[AutomationExecutionOut]:
    return ok(metrics_service.create_automation(request, payload), "Automation execution recorded")


@router.get(
    "/automations",
    response_model=DataResponse[List[AutomationExecutionOut]],
    summary="List automation executions",
    operation_id="list_automation_executions",
)
def list_automations(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    automation_type: Optional[str] = Query(default=None, alias="automationType"),
    execution_status: Optional[str] = Query(default=None, alias="status"),
    trigger_type: Optional[str] = Query(default=None, alias="triggerType"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[List[AutomationExecutionOut]]:
    items = metrics_service.list_automations(
        request,
        business_entity_id=business_entity_id,
        automation_type=automation_type,
        status=execution_status,
        trigger_type=trigger_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return ok(items)


@router.get(
    "/automations/{execution_id}",
    response_model=DataResponse[AutomationExecutionOut],
    responses=_NOT_FOUND,
    summary="Get automation execution",
    operation_id="get_automation_execution",
)
def get_automation(
    request: Request, execution_id: str = Path(..., description="Execution record id (Mongo ObjectId string).")
) -> DataResponse[AutomationExecutionOut]:
    execution = metrics_service.get_automation(request, execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Automation execution not found")
    return ok(execution)


@router.put(
    "/automations/{execution_id}/status",
    response_model=DataResponse[AutomationExecutionOut],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update automation execution status",
    operation_id="update_automation_execution_status",
)
def update_automation_status(
    request: Request,
    payload: AutomationStatusUpdate,
    execution_id: str = Path(..., description="Execution record id (Mongo ObjectId string)."),
) -> DataResponse[AutomationExecutionOut]:
    execution = metrics_service.update_automation_status(request, execution_id, payload)
    if not execution:
        raise HTTPException(status_code=404, detail="Automation execution not found")
    return ok(execution, "Automation execution status updated")


# ---- Data archives ----


@router.post(
    "/archives",
    response_model=DataResponse[DataArchiveOut],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create data archive",
    operation_id="create_data_archive",
)
def create_archive(request: Request, payload: DataArchiveCreate) -> DataResponse[DataArchiveOut]:
    return ok(metrics_service.create_archive(request, payload), "Data archive created")


@router.get(
    "/archives",
    response_model=DataResponse[List[DataArchiveOut]],
    summary="List data archives",
    operation_id="list_data_archives",
)
def list_archives(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    archive_type: Optional[str] = Query(default=None, alias="archiveType"),
    source_table: Optional[str] = Query(default=None, alias="sourceTable"),
    is_restorable: Optional[bool] = Query(default=None, alias="isRestorable"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[List[DataArchiveOut]]:
    items = metrics_service.list_archives(
        request,
        business_entity_id=business_entity_id,
        archive_type=archive_type,
        source_table=source_table,
        is_restorable=is_restorable,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return ok(items)


# ---- Single metric (registered last so static paths win) ----


@router.get(
    "/{metric_id}",
    response_model=DataResponse[MetricOut],
    responses=_NOT_FOUND,
    summary="Get metric",
    operation_id="get_metric",
)
def get_metric(
    request: Request, metric_id: str = Path(..., description="Metric id (Mongo ObjectId string).")
) -> DataResponse[MetricOut]:
    metric = metrics_service.get_metric(request, metric_id)
    if not metric:
        raise HTTPException(status_code=404, detail="Metric not found")
    return ok(metric)


@router.put(
    "/{metric_id}",
    response_model=DataResponse[MetricOut],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update metric",
    description="Partial update; stamps updatedAt.",
    operation_id="update_metric",
)
def update_metric(
    request: Request,
    payload: MetricUpdate,
    metric_id: str = Path(..., description="Metric id (Mongo ObjectId string)."),
) -> DataResponse[MetricOut]:
    metric = metrics_service.update_metric(request, metric_id, payload)
    if not metric:
        raise HTTPException(status_code=404, detail="Metric not found")
    return ok(metric, "Metric updated")


@router.delete(
    "/{metric_id}",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
    summary="Delete metric",
    description="Soft delete: the metric is flagged isArchived and drops out of lists and analytics.",
    operation_id="delete_metric",
)
def delete_metric(
    request: Request, metric_id: str = Path(..., description="Metric id (Mongo ObjectId string).")
) -> MessageResponse:
    if not metrics_service.archive_metric(request, metric_id):
        raise HTTPException(status_code=404, detail="Metric not found")
    return MessageResponse(message="Metric archived")
