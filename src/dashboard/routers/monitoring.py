from __future__ import annotations

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status

from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.schemas.monitoring import (
    DatabaseQueryReport,
    FrontendTimingReport,
    MetricsList,
    MonitoringConfig,
    MonitoringConfigUpdate,
    MonitoringStatus,
    PerformanceMetric,
    PerformanceSummary,
    ThresholdAlert,
)
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/performanceMonitoring",
    tags=["Performance Monitoring"],
    dependencies=[Depends(require_user)],
)

METRIC_TYPES = ("api", "database", "system", "frontend")


@router.get(
    "/metrics",
    response_model=DataResponse[MetricsList],
    summary="List performance metrics",
    description="Most recent tracked metrics across all types, oldest first.",
    operation_id="list_performance_metrics",
)
def list_metrics(
    request: Request, limit: int = Query(100, ge=1, le=10000, description="Maximum number of metrics.")
) -> DataResponse[MetricsList]:
    metrics = get_state(request.app).monitoring.get_metrics(None, limit)
    return ok(MetricsList(metrics=metrics, count=len(metrics), type="all"))


@router.get(
    "/metrics/summary",
    response_model=DataResponse[PerformanceSummary],
    summary="Performance summary",
    description="Windowed statistics, trends, SLA compliance and system health.",
    operation_id="get_performance_summary",
)
def get_summary(request: Request) -> DataResponse[PerformanceSummary]:
    """Return the aggregated performance summary."""
    return ok(get_state(request.app).monitoring.get_metrics_summary())


@router.get(
    "/metrics/{metric_type}",
    response_model=DataResponse[MetricsList],
    responses={400: {"model": ErrorResponse}},
    summary="List metrics by type",
    operation_id="list_performance_metrics_by_type",
)
def list_metrics_by_type(
    request: Request,
    metric_type: str = Path(..., description="One of api, database, system, frontend."),
    limit: int = Query(100, ge=1, le=10000),
) -> DataResponse[MetricsList]:
    if metric_type not in METRIC_TYPES:
        raise HTTPException(
            status_code=400, detail=f"Invalid metric type. Must be one of: {', '.join(METRIC_TYPES)}"
        )
    metrics = get_state(request.app).monitoring.get_metrics(metric_type, limit)
    return ok(MetricsList(metrics=metrics, count=len(metrics), type=metric_type))


@router.post(
    "/metrics/database",
    response_model=DataResponse[Optional[PerformanceMetric]],
    status_code=status.HTTP_201_CREATED,
    summary="Report a database query timing",
    operation_id="report_database_query",
)
def report_database_query(request: Request, payload: DatabaseQueryReport) -> DataResponse[Optional[PerformanceMetric]]:
    """Record a client-measured query; ignored (data null) while monitoring is stopped."""
    end = time.time() * 1000.0
    metric = get_state(request.app).monitoring.track_database_query(
        payload.query, end - payload.duration_ms, end, payload.metadata
    )
    return ok(metric, "Database query recorded" if metric else "Monitoring is stopped; sample ignored")


@router.post(
    "/metrics/frontend",
    response_model=DataResponse[Optional[PerformanceMetric]],
    status_code=status.HTTP_201_CREATED,
    summary="Report a frontend page timing",
    operation_id="report_frontend_timing",
)
def report_frontend_timing(request: Request, payload: FrontendTimingReport) -> DataResponse[Optional[PerformanceMetric]]:
    metric = get_state(request.app).monitoring.track_frontend_performance(
        payload.page, payload.load_time_ms, payload.metadata
    )
    return ok(metric, "Frontend timing recorded" if metric else "Monitoring is stopped; sample ignored")


@router.get(
    "/alerts",
    response_model=DataResponse[List[ThresholdAlert]],
    summary="List threshold alerts",
    operation_id="list_threshold_alerts",
)
def list_alerts(
    request: Request,
    alert_type: Optional[str] = Query(default=None, alias="type", description="warning, error or critical."),
    limit: int = Query(50, ge=1, le=1000),
) -> DataResponse[List[ThresholdAlert]]:
    return ok(get_state(request.app).monitoring.get_alerts(alert_type, limit))


@router.get(
    "/config",
    response_model=DataResponse[MonitoringConfig],
    summary="Get monitoring configuration",
    operation_id="get_monitoring_config",
)
def get_config(request: Request) -> DataResponse[MonitoringConfig]:
    return ok(get_state(request.app).monitoring.get_config())


@router.put(
    "/config",
    response_model=DataResponse[MonitoringConfig],
    responses={400: {"model": ErrorResponse}},
    summary="Update monitoring configuration",
    description="Shallow merge of the supplied fields.",
    operation_id="update_monitoring_config",
)
def update_config(request: Request, payload: MonitoringConfigUpdate) -> DataResponse[MonitoringConfig]:
    return ok(get_state(request.app).monitoring.update_config(payload), "Monitoring configuration updated")


@router.post(
    "/start",
    response_model=DataResponse[MonitoringStatus],
    summary="Start performance monitoring",
    operation_id="start_performance_monitoring",
)
def start_monitoring(request: Request) -> DataResponse[MonitoringStatus]:
    monitoring = get_state(request.app).monitoring
    monitoring.start()
    return ok(MonitoringStatus(is_active=monitoring.is_active), "Performance monitoring started")


@router.post(
    "/stop",
    response_model=DataResponse[MonitoringStatus],
    summary="Stop performance monitoring",
    operation_id="stop_performance_monitoring",
)
def stop_monitoring(request: Request) -> DataResponse[MonitoringStatus]:
    monitoring = get_state(request.app).monitoring
    monitoring.stop()
    return ok(MonitoringStatus(is_active=monitoring.is_active), "Performance monitoring stopped")
