from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.dashboard.config import sanitize_mongo_uri
from src.dashboard.schemas.common import HealthResponse, utc_now
from src.dashboard.state import get_state

router = APIRouter(tags=["Health"])


class MongoConnectivityResponse(BaseModel):
    """Response model for backend↔Mongo connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the backend can successfully ping MongoDB.")
    mongo_uri_sanitized: str = Field(..., alias="mongoUriSanitized", description="MongoDB URI with credentials masked.")
    mongo_db_name: str = Field(..., alias="mongoDbName", description="Application database name.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")

    model_config = {"populate_by_name": True}


class ComponentsHealthResponse(HealthResponse):
    """Liveness plus the on/off state of the background subsystems."""

    performance_monitoring: bool = Field(..., alias="performanceMonitoring")
    alert_monitoring: bool = Field(..., alias="alertMonitoring")
    backup_scheduler: bool = Field(..., alias="backupScheduler")
    system_health_monitoring: bool = Field(..., alias="systemHealthMonitoring")

    model_config = {"populate_by_name": True}


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment and the frontend.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health",
    response_model=ComponentsHealthResponse,
    summary="Subsystem health",
    description="Liveness plus whether monitoring, alert evaluation, scheduled backups and health checks are running.",
    operation_id="components_health_check",
)
def components_health(request: Request) -> ComponentsHealthResponse:
    state = get_state(request.app)
    return ComponentsHealthResponse(
        status="ok",
        message="Healthy",
        timestamp=utc_now(),
        performance_monitoring=state.monitoring.is_active,
        alert_monitoring=state.alerts.is_active,
        backup_scheduler=state.backups.is_running,
        system_health_monitoring=state.system_health.is_active,
    )


@router.get(
    "/api/health/mongo",
    response_model=MongoConnectivityResponse,
    summary="Mongo connectivity check",
    description="Pings the configured MongoDB. Credentials in the reported URI are masked.",
    operation_id="mongo_connectivity_check",
)
def mongo_connectivity_check(request: Request) -> MongoConnectivityResponse:
    """Connectivity check endpoint to validate backend↔Mongo."""
    state = get_state(request.app)
    return MongoConnectivityResponse(
        ok=state.mongo.ping(),
        mongo_uri_sanitized=sanitize_mongo_uri(state.config.mongo_uri),
        mongo_db_name=state.mongo.db_name,
        timestamp=utc_now().isoformat(),
    )
