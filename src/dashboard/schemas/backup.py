from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import Field

from src.dashboard.schemas.common import CamelModel

BackupType = Literal[
    "database_full",
    "database_incremental",
    "file_system",
    "application_data",
    "configuration",
    "logs",
]
StorageLocation = Literal["local", "s3", "gcs", "azure_blob", "ftp", "sftp"]
BackupStatus = Literal["pending", "running", "completed", "failed", "cancelled", "verifying"]
VerificationStatus = Literal["pending", "running", "passed", "failed"]
VerificationType = Literal["checksum", "integrity", "restore_test", "full_verification"]
RecoveryType = Literal["full_restore", "point_in_time", "selective_restore", "disaster_recovery"]
RecoveryStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


class BackupConfigBase(CamelModel):
    business_entity_id: str = Field(..., min_length=1, description="Owning business entity.")
    backup_type: BackupType
    schedule: str = Field(..., min_length=1, description="Cron expression, e.g. '0 2 * * *'.")
    retention_days: int = Field(30, ge=1, le=3650, description="Completed backups older than this are cleaned up.")
    compression_enabled: bool = True
    encryption_enabled: bool = Field(False, description="Recorded only; backup files are not encrypted.")
    storage_location: StorageLocation = Field(
        "local", description="Recorded only; files are always written to the local backup directory."
    )
    is_active: bool = True


class BackupConfigCreate(BackupConfigBase):
    """Request body for creating a backup configuration."""


class BackupConfigUpdate(CamelModel):
    """Partial update of a backup configuration."""

    backup_type: Optional[BackupType] = None
    schedule: Optional[str] = Field(default=None, min_length=1)
    retention_days: Optional[int] = Field(default=None, ge=1, le=3650)
    compression_enabled: Optional[bool] = None
    encryption_enabled: Optional[bool] = None
    storage_location: Optional[StorageLocation] = None
    is_active: Optional[bool] = None


class BackupConfigOut(BackupConfigBase):
    id: str
    last_scheduled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class BackupJobCreate(CamelModel):
    business_entity_id: str = Field(..., min_length=1)
    backup_config_id: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BackupJobOut(CamelModel):
    id: str
    business_entity_id: str
    backup_config_id: str
    status: BackupStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, description="Milliseconds.")
    file_size: Optional[int] = Field(default=None, description="Bytes.")
    file_path: Optional[str] = None
    checksum: Optional[str] = Field(default=None, description="sha256 hex digest of the backup file.")
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class BackupVerificationOut(CamelModel):
    id: str
    backup_job_id: str
    verification_type: VerificationType
    status: VerificationStatus
    checksum_verified: bool = False
    integrity_verified: bool = False
    restore_tested: bool = False
    error_message: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    created_at: datetime


class RecoveryJobCreate(CamelModel):
    business_entity_id: str = Field(..., min_length=1)
    backup_job_id: str = Field(..., min_length=1)
    recovery_type: RecoveryType
    target_location: str = Field("local", description="Where the data is restored; the app database when local.")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="'collections' for selective_restore, 'pointInTime' (ISO-8601) for point_in_time.",
    )


class RecoveryJobOut(CamelModel):
    id: str
    business_entity_id: str
    backup_job_id: str
    recovery_type: RecoveryType
    status: RecoveryStatus
    target_location: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    recovered_records: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class BackupMetrics(CamelModel):
    total_backups: int
    successful_backups: int
    failed_backups: int
    total_size: int
    average_duration: float
    success_rate: float
    last_backup_at: Optional[datetime] = None
    next_scheduled_backup: Optional[datetime] = None


class RecoveryMetrics(CamelModel):
    total_recoveries: int
    successful_recoveries: int
    failed_recoveries: int
    average_recovery_time: float
    rto_compliance: float
    rpo_compliance: float
    last_recovery_at: Optional[datetime] = None


class BackupServiceStatus(CamelModel):
    is_running: bool
    scheduled_configs: int
    active_jobs: int


class CleanupResult(CamelModel):
    deleted: int
