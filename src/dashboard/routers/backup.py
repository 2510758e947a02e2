from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from src.dashboard.schemas.backup import (
    BackupConfigCreate,
    BackupConfigOut,
    BackupConfigUpdate,
    BackupJobCreate,
    BackupJobOut,
    BackupMetrics,
    BackupServiceStatus,
    BackupVerificationOut,
    CleanupResult,
    RecoveryJobCreate,
    RecoveryJobOut,
    RecoveryMetrics,
)
from src.dashboard.schemas.common import DataResponse, ErrorResponse, HealthResponse, MessageResponse, ok, utc_now
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(prefix="/api/backup", tags=["Backup"], dependencies=[Depends(require_user)])

# Liveness check for the backup subsystem; reachable without a token.
public_router = APIRouter(prefix="/api/backup", tags=["Backup"])

_NOT_FOUND = {404: {"model": ErrorResponse}}
_EXECUTE = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


# ---- Configurations ----


@router.post(
    "/configs",
    response_model=DataResponse[BackupConfigOut],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create backup configuration",
    description="The schedule must be a valid cron expression.",
    operation_id="create_backup_config",
)
def create_config(request: Request, payload: BackupConfigCreate) -> DataResponse[BackupConfigOut]:
    return ok(get_state(request.app).backups.create_config(payload), "Backup configuration created")


@router.get(
    "/configs",
    response_model=DataResponse[List[BackupConfigOut]],
    summary="List backup configurations",
    operation_id="list_backup_configs",
)
def list_configs(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    backup_type: Optional[str] = Query(default=None, alias="backupType"),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
) -> DataResponse[List[BackupConfigOut]]:
    configs = get_state(request.app).backups.list_configs(business_entity_id, backup_type, is_active)
    return ok(configs)


@router.get(
    "/configs/{config_id}",
    response_model=DataResponse[BackupConfigOut],
    responses=_NOT_FOUND,
    summary="Get backup configuration",
    operation_id="get_backup_config",
)
def get_config(
    request: Request, config_id: str = Path(..., description="Config id (Mongo ObjectId string).")
) -> DataResponse[BackupConfigOut]:
    return ok(get_state(request.app).backups.get_config(config_id))


@router.put(
    "/configs/{config_id}",
    response_model=DataResponse[BackupConfigOut],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update backup configuration",
    description="Partial update; a new schedule is validated first.",
    operation_id="update_backup_config",
)
def update_config(
    request: Request,
    payload: BackupConfigUpdate,
    config_id: str = Path(..., description="Config id (Mongo ObjectId string)."),
) -> DataResponse[BackupConfigOut]:
    return ok(get_state(request.app).backups.update_config(config_id, payload), "Backup configuration updated")


@router.delete(
    "/configs/{config_id}",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
    summary="Delete backup configuration",
    operation_id="delete_backup_config",
)
def delete_config(
    request: Request, config_id: str = Path(..., description="Config id (Mongo ObjectId string).")
) -> MessageResponse:
    get_state(request.app).backups.delete_config(config_id)
    return MessageResponse(message="Backup configuration deleted")


# ---- Jobs ----


@router.post(
    "/jobs",
    response_model=DataResponse[BackupJobOut],
    status_code=status.HTTP_201_CREATED,
    responses=_NOT_FOUND,
    summary="Create backup job",
    description="Creates a pending job for an existing configuration. Run it with /jobs/{id}/execute.",
    operation_id="create_backup_job",
)
def create_job(request: Request, payload: BackupJobCreate) -> DataResponse[BackupJobOut]:
    return ok(get_state(request.app).backups.create_job(payload), "Backup job created")


@router.get(
    "/jobs",
    response_model=DataResponse[List[BackupJobOut]],
    summary="List backup jobs",
    operation_id="list_backup_jobs",
)
def list_jobs(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    job_status: Optional[str] = Query(default=None, alias="status"),
    backup_type: Optional[str] = Query(default=None, alias="backupType"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[List[BackupJobOut]]:
    jobs = get_state(request.app).backups.list_jobs(business_entity_id, job_status, backup_type, limit, offset)
    return ok(jobs)


@router.get(
    "/jobs/{job_id}",
    response_model=DataResponse[BackupJobOut],
    responses=_NOT_FOUND,
    summary="Get backup job",
    operation_id="get_backup_job",
)
def get_job(request: Request, job_id: str = Path(..., description="Job id.")) -> DataResponse[BackupJobOut]:
    return ok(get_state(request.app).backups.get_job(job_id))


@router.post(
    "/jobs/{job_id}/execute",
    response_model=DataResponse[BackupJobOut],
    responses=_EXECUTE,
    summary="Execute backup job",
    description=(
        "Runs a pending or failed job and verifies the result. A failed run is returned with "
        "status=failed, errorCode and nextRetryAt rather than as an error response."
    ),
    operation_id="execute_backup_job",
)
def execute_job(request: Request, job_id: str = Path(..., description="Job id.")) -> DataResponse[BackupJobOut]:
    job = get_state(request.app).backups.execute_job(job_id)
    return ok(job, f"Backup job {job.status}")


@router.post(
    "/jobs/{job_id}/verify",
    response_model=DataResponse[BackupVerificationOut],
    responses=_EXECUTE,
    summary="Verify backup job",
    description="Checksum, integrity and (for database_full) restore-parse checks. Only completed jobs.",
    operation_id="verify_backup_job",
)
def verify_job(
    request: Request, job_id: str = Path(..., description="Job id.")
) -> DataResponse[BackupVerificationOut]:
    verification = get_state(request.app).backups.verify(job_id)
    return ok(verification, f"Verification {verification.status}")


# ---- Recovery ----


@router.post(
    "/recovery",
    response_model=DataResponse[RecoveryJobOut],
    status_code=status.HTTP_201_CREATED,
    responses=_NOT_FOUND,
    summary="Create recovery job",
    operation_id="create_recovery_job",
)
def create_recovery(request: Request, payload: RecoveryJobCreate) -> DataResponse[RecoveryJobOut]:
    return ok(get_state(request.app).backups.create_recovery(payload), "Recovery job created")


@router.get(
    "/recovery",
    response_model=DataResponse[List[RecoveryJobOut]],
    summary="List recovery jobs",
    operation_id="list_recovery_jobs",
)
def list_recoveries(
    request: Request,
    business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId"),
    job_status: Optional[str] = Query(default=None, alias="status"),
    recovery_type: Optional[str] = Query(default=None, alias="recoveryType"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> DataResponse[List[RecoveryJobOut]]:
    items = get_state(request.app).backups.list_recoveries(
        business_entity_id, job_status, recovery_type, limit, offset
    )
    return ok(items)


@router.post(
    "/recovery/{recovery_id}/execute",
    response_model=DataResponse[RecoveryJobOut],
    responses=_EXECUTE,
    summary="Execute recovery job",
    description="A failed restore is returned with status=failed and errorCode RECOVERY_EXECUTION_FAILED.",
    operation_id="execute_recovery_job",
)
def execute_recovery(
    request: Request, recovery_id: str = Path(..., description="Recovery job id.")
) -> DataResponse[RecoveryJobOut]:
    recovery = get_state(request.app).backups.execute_recovery(recovery_id)
    return ok(recovery, f"Recovery job {recovery.status}")


# ---- Metrics, status and maintenance ----


@router.get(
    "/metrics/backup",
    response_model=DataResponse[BackupMetrics],
    summary="Backup metrics",
    operation_id="get_backup_metrics",
)
def backup_metrics(
    request: Request, business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId")
) -> DataResponse[BackupMetrics]:
    return ok(get_state(request.app).backups.backup_metrics(business_entity_id))


@router.get(
    "/metrics/recovery",
    response_model=DataResponse[RecoveryMetrics],
    summary="Recovery metrics",
    operation_id="get_recovery_metrics",
)
def recovery_metrics(
    request: Request, business_entity_id: Optional[str] = Query(default=None, alias="businessEntityId")
) -> DataResponse[RecoveryMetrics]:
    return ok(get_state(request.app).backups.recovery_metrics(business_entity_id))


@router.get(
    "/status",
    response_model=DataResponse[BackupServiceStatus],
    summary="Backup service status",
    operation_id="get_backup_service_status",
)
def service_status(request: Request) -> DataResponse[BackupServiceStatus]:
    return ok(get_state(request.app).backups.status())


@router.post(
    "/service/start",
    response_model=DataResponse[BackupServiceStatus],
    summary="Start scheduled backups",
    operation_id="start_backup_service",
)
def start_service(request: Request) -> DataResponse[BackupServiceStatus]:
    backups = get_state(request.app).backups
    backups.start()
    return ok(backups.status(), "Backup service started")


@router.post(
    "/service/stop",
    response_model=DataResponse[BackupServiceStatus],
    summary="Stop scheduled backups",
    operation_id="stop_backup_service",
)
def stop_service(request: Request) -> DataResponse[BackupServiceStatus]:
    backups = get_state(request.app).backups
    backups.stop()
    return ok(backups.status(), "Backup service stopped")


@router.post(
    "/maintenance/cleanup",
    response_model=DataResponse[CleanupResult],
    summary="Remove expired backups",
    description="Deletes completed backups older than their configuration's retentionDays.",
    operation_id="cleanup_backups",
)
def cleanup(request: Request) -> DataResponse[CleanupResult]:
    deleted = get_state(request.app).backups.cleanup()
    return ok(CleanupResult(deleted=deleted), f"Removed {deleted} expired backup(s)")


@public_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Backup service health",
    operation_id="backup_health",
)
def backup_health(request: Request) -> HealthResponse:
    running = get_state(request.app).backups.is_running
    return HealthResponse(
        status="healthy",
        message="Backup scheduler is running" if running else "Backup scheduler is stopped",
        timestamp=utc_now(),
    )
