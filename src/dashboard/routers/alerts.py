from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from src.dashboard.schemas.alerts import (
    AcknowledgeRequest,
    AlertList,
    AlertMonitoringStatus,
    AlertNotification,
    AlertRule,
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertSummary,
    CustomAlertCreate,
    DismissRequest,
    PerformanceAlert,
    ResolveRequest,
    StartMonitoringRequest,
)
from src.dashboard.schemas.common import DataResponse, ErrorResponse, MessageResponse, ok
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/performanceAlert",
    tags=["Performance Alerts"],
    dependencies=[Depends(require_user)],
)

_NOT_FOUND = {404: {"model": ErrorResponse}}
_TRANSITION = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _status(request: Request) -> AlertMonitoringStatus:
    return AlertMonitoringStatus(**get_state(request.app).alerts.monitoring_status())


@router.get(
    "/summary",
    response_model=DataResponse[AlertSummary],
    summary="Alert summary",
    description="Counts by status, severity and category plus the 10 newest alerts.",
    operation_id="get_alert_summary",
)
def get_summary(request: Request) -> DataResponse[AlertSummary]:
    return ok(get_state(request.app).alerts.get_summary())


@router.get(
    "",
    response_model=DataResponse[AlertList],
    summary="List alerts",
    description="Alerts newest first, optionally filtered by status, severity and category.",
    operation_id="list_performance_alerts",
)
def list_alerts(
    request: Request,
    alert_status: Optional[str] = Query(default=None, alias="status"),
    severity: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[AlertList]:
    """List alerts with paging."""
    items, total = get_state(request.app).alerts.get_alerts(alert_status, severity, category, limit, offset)
    return ok(AlertList(alerts=items, total=total, limit=limit, offset=offset))


@router.post(
    "/custom",
    response_model=DataResponse[PerformanceAlert],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create custom alert",
    operation_id="create_custom_alert",
)
def create_custom_alert(request: Request, payload: CustomAlertCreate) -> DataResponse[PerformanceAlert]:
    return ok(get_state(request.app).alerts.create_custom_alert(payload), "Custom alert created")


# ---- Rules ----


@router.get(
    "/rules/all",
    response_model=DataResponse[List[AlertRule]],
    summary="List alert rules",
    operation_id="list_performance_alert_rules",
)
def list_rules(request: Request) -> DataResponse[List[AlertRule]]:
    return ok(get_state(request.app).alerts.get_rules())


@router.get(
    "/rules/{rule_id}",
    response_model=DataResponse[AlertRule],
    responses=_NOT_FOUND,
    summary="Get alert rule",
    operation_id="get_performance_alert_rule",
)
def get_rule(request: Request, rule_id: str = Path(..., description="Rule id.")) -> DataResponse[AlertRule]:
    return ok(get_state(request.app).alerts.get_rule(rule_id))


@router.post(
    "/rules",
    response_model=DataResponse[AlertRule],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create alert rule",
    description="An id is generated when the body omits one.",
    operation_id="create_performance_alert_rule",
)
def create_rule(request: Request, payload: AlertRuleCreate) -> DataResponse[AlertRule]:
    return ok(get_state(request.app).alerts.create_rule(payload), "Alert rule created")


@router.put(
    "/rules/{rule_id}",
    response_model=DataResponse[AlertRule],
    responses=_NOT_FOUND,
    summary="Update alert rule",
    description="Merge the supplied fields into the rule.",
    operation_id="update_performance_alert_rule",
)
def update_rule(
    request: Request, payload: AlertRuleUpdate, rule_id: str = Path(..., description="Rule id.")
) -> DataResponse[AlertRule]:
    return ok(get_state(request.app).alerts.update_rule(rule_id, payload), "Alert rule updated")


@router.delete(
    "/rules/{rule_id}",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
    summary="Delete alert rule",
    operation_id="delete_performance_alert_rule",
)
def delete_rule(request: Request, rule_id: str = Path(..., description="Rule id.")) -> MessageResponse:
    get_state(request.app).alerts.delete_rule(rule_id)
    return MessageResponse(message="Alert rule deleted")


# ---- Notifications & monitoring ----


@router.get(
    "/notifications/all",
    response_model=DataResponse[List[AlertNotification]],
    summary="List notifications",
    operation_id="list_alert_notifications",
)
def list_notifications(
    request: Request,
    alert_id: Optional[str] = Query(default=None, alias="alertId", description="Only notifications for this alert."),
) -> DataResponse[List[AlertNotification]]:
    return ok(get_state(request.app).alerts.get_notifications(alert_id))


@router.get(
    "/monitoring/status",
    response_model=DataResponse[AlertMonitoringStatus],
    summary="Alert monitoring status",
    operation_id="get_alert_monitoring_status",
)
def monitoring_status(request: Request) -> DataResponse[AlertMonitoringStatus]:
    return ok(_status(request))


@router.post(
    "/monitoring/start",
    response_model=DataResponse[AlertMonitoringStatus],
    responses={409: {"model": ErrorResponse}},
    summary="Start alert monitoring",
    description="409 when monitoring is already active.",
    operation_id="start_alert_monitoring",
)
def start_monitoring(
    request: Request, payload: Optional[StartMonitoringRequest] = None
) -> DataResponse[AlertMonitoringStatus]:
    interval_ms = payload.interval_ms if payload else None
    get_state(request.app).alerts.start_monitoring(interval_ms)
    return ok(_status(request), "Alert monitoring started")


@router.post(
    "/monitoring/stop",
    response_model=DataResponse[AlertMonitoringStatus],
    summary="Stop alert monitoring",
    operation_id="stop_alert_monitoring",
)
def stop_monitoring(request: Request) -> DataResponse[AlertMonitoringStatus]:
    get_state(request.app).alerts.stop_monitoring()
    return ok(_status(request), "Alert monitoring stopped")


# ---- Single alert (registered last so static paths win) ----


@router.get(
    "/{alert_id}",
    response_model=DataResponse[PerformanceAlert],
    responses=_NOT_FOUND,
    summary="Get alert",
    operation_id="get_performance_alert",
)
def get_alert(request: Request, alert_id: str = Path(..., description="Alert id.")) -> DataResponse[PerformanceAlert]:
    return ok(get_state(request.app).alerts.get_alert(alert_id))


@router.put(
    "/{alert_id}/acknowledge",
    response_model=DataResponse[PerformanceAlert],
    responses=_TRANSITION,
    summary="Acknowledge alert",
    description="Only active alerts can be acknowledged.",
    operation_id="acknowledge_performance_alert",
)
def acknowledge(
    request: Request, payload: AcknowledgeRequest, alert_id: str = Path(..., description="Alert id.")
) -> DataResponse[PerformanceAlert]:
    alert = get_state(request.app).alerts.acknowledge(alert_id, payload.acknowledged_by)
    return ok(alert, "Alert acknowledged")


@router.put(
    "/{alert_id}/resolve",
    response_model=DataResponse[PerformanceAlert],
    responses=_TRANSITION,
    summary="Resolve alert",
    operation_id="resolve_performance_alert",
)
def resolve(
    request: Request, payload: ResolveRequest, alert_id: str = Path(..., description="Alert id.")
) -> DataResponse[PerformanceAlert]:
    alert = get_state(request.app).alerts.resolve(alert_id, payload.resolved_by, payload.resolution_notes)
    return ok(alert, "Alert resolved")


@router.put(
    "/{alert_id}/dismiss",
    response_model=DataResponse[PerformanceAlert],
    responses=_TRANSITION,
    summary="Dismiss alert",
    operation_id="dismiss_performance_alert",
)
def dismiss(
    request: Request, payload: DismissRequest, alert_id: str = Path(..., description="Alert id.")
) -> DataResponse[PerformanceAlert]:
    alert = get_state(request.app).alerts.dismiss(alert_id, payload.dismissed_by, payload.dismissal_reason)
    return ok(alert, "Alert dismissed")
