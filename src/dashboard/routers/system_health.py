from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from src.dashboard.schemas.alerts import AcknowledgeRequest
from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.schemas.system_health import (
    CleanupResult,
    HealthCheckResult,
    HealthMonitoringStatus,
    StartHealthMonitoringRequest,
    SystemAlert,
    SystemAlertCreate,
    SystemHealthMetrics,
    SystemHealthSnapshot,
    SystemHealthSummary,
)
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/system-health",
    tags=["System Health"],
    dependencies=[Depends(require_user)],
)

_NOT_FOUND = {404: {"model": ErrorResponse}}


@router.get(
    "/current",
    response_model=DataResponse[SystemHealthMetrics],
    responses=_NOT_FOUND,
    summary="Current system health",
    description="Metrics of the latest health check; 404 before the first check has run.",
    operation_id="get_current_system_health",
)
def get_current(request: Request) -> DataResponse[SystemHealthMetrics]:
    return ok(get_state(request.app).system_health.get_current_health(), "System health retrieved successfully")


@router.get(
    "/history",
    response_model=DataResponse[List[SystemHealthSnapshot]],
    summary="System health history",
    operation_id="get_system_health_history",
)
def get_history(
    request: Request, limit: int = Query(100, ge=1, le=1000, description="Newest snapshots to return.")
) -> DataResponse[List[SystemHealthSnapshot]]:
    return ok(get_state(request.app).system_health.get_history(limit), "Health history retrieved successfully")


@router.get(
    "/alerts",
    response_model=DataResponse[List[SystemAlert]],
    summary="System alerts",
    description="Alerts held by the health service; acknowledged ones stay until cleanup.",
    operation_id="list_system_alerts",
)
def get_alerts(request: Request) -> DataResponse[List[SystemAlert]]:
    return ok(get_state(request.app).system_health.get_active_alerts(), "Active alerts retrieved successfully")


@router.post(
    "/alerts",
    response_model=DataResponse[SystemAlert],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create system alert",
    operation_id="create_system_alert",
)
def create_alert(request: Request, payload: SystemAlertCreate) -> DataResponse[SystemAlert]:
    return ok(get_state(request.app).system_health.create_alert(payload), "Alert created successfully")


@router.put(
    "/alerts/{alert_id}/acknowledge",
    response_model=DataResponse[SystemAlert],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Acknowledge system alert",
    operation_id="acknowledge_system_alert",
)
def acknowledge_alert(
    request: Request, payload: AcknowledgeRequest, alert_id: str = Path(..., description="Alert id.")
) -> DataResponse[SystemAlert]:
    alert = get_state(request.app).system_health.acknowledge_alert(alert_id, payload.acknowledged_by)
    return ok(alert, "Alert acknowledged successfully")


@router.get(
    "/health-checks",
    response_model=DataResponse[List[HealthCheckResult]],
    summary="Component health checks",
    description="Database, memory and uptime results of the latest pass.",
    operation_id="list_system_health_checks",
)
def get_health_checks(request: Request) -> DataResponse[List[HealthCheckResult]]:
    return ok(get_state(request.app).system_health.get_health_checks(), "Health check results retrieved successfully")


@router.post(
    "/health-check",
    response_model=DataResponse[SystemHealthMetrics],
    summary="Run a health check now",
    operation_id="perform_system_health_check",
)
def perform_health_check(request: Request) -> DataResponse[SystemHealthMetrics]:
    return ok(get_state(request.app).system_health.perform_health_check(), "Health check performed successfully")


@router.get(
    "/summary",
    response_model=DataResponse[SystemHealthSummary],
    summary="System health summary",
    description="Current health plus alert counts by severity and check counts by outcome.",
    operation_id="get_system_health_summary",
)
def get_summary(request: Request) -> DataResponse[SystemHealthSummary]:
    return ok(get_state(request.app).system_health.get_summary(), "Health summary retrieved successfully")


@router.get(
    "/monitoring/status",
    response_model=DataResponse[HealthMonitoringStatus],
    summary="Health monitoring status",
    operation_id="get_system_health_monitoring_status",
)
def monitoring_status(request: Request) -> DataResponse[HealthMonitoringStatus]:
    return ok(get_state(request.app).system_health.monitoring_status())


@router.post(
    "/monitoring/start",
    response_model=DataResponse[HealthMonitoringStatus],
    responses={400: {"model": ErrorResponse}},
    summary="Start health monitoring",
    description="Runs a first check immediately. Starting while already running keeps the current interval.",
    operation_id="start_system_health_monitoring",
)
def start_monitoring(
    request: Request, payload: Optional[StartHealthMonitoringRequest] = None
) -> DataResponse[HealthMonitoringStatus]:
    health = get_state(request.app).system_health
    health.start_monitoring(payload.interval_ms if payload else None)
    return ok(health.monitoring_status(), "System health monitoring started successfully")


@router.post(
    "/monitoring/stop",
    response_model=DataResponse[HealthMonitoringStatus],
    summary="Stop health monitoring",
    operation_id="stop_system_health_monitoring",
)
def stop_monitoring(request: Request) -> DataResponse[HealthMonitoringStatus]:
    health = get_state(request.app).system_health
    health.stop_monitoring()
    return ok(health.monitoring_status(), "System health monitoring stopped successfully")


@router.post(
    "/cleanup",
    response_model=DataResponse[CleanupResult],
    summary="Clean up health data",
    description="Drops snapshots older than a day and alerts acknowledged more than a day ago.",
    operation_id="cleanup_system_health",
)
def cleanup(request: Request) -> DataResponse[CleanupResult]:
    finished = get_state(request.app).system_health.cleanup()
    return ok(CleanupResult(timestamp=finished), "Cleanup completed successfully")
