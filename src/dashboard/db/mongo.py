from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    # Business analytics
    metrics: Collection
    automation_executions: Collection
    data_archives: Collection

    # Backup / recovery
    backup_configs: Collection
    backup_jobs: Collection
    backup_verifications: Collection
    recovery_jobs: Collection


# Collections exported by a database_full backup (and restorable from one).
BACKED_UP_COLLECTIONS = (
    "metrics",
    "automation_executions",
    "data_archives",
    "backup_configs",
)


class MongoManager:
    """
    MongoDB connection manager.

    Maintains one lazily-created MongoClient for the dashboard's storage DB.
    """

    def __init__(self, app_mongo_uri: str, db_name: str):
        self._app_mongo_uri = app_mongo_uri
        self._db_name = db_name
        self._app_client: Optional[MongoClient] = None
        self._lock = RLock()

    @property
    def db_name(self) -> str:
        return self._db_name

    def connect_app(self) -> None:
        """Initialize app Mongo client if needed."""
        with self._lock:
            if self._app_client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._app_client = MongoClient(self._app_mongo_uri, connect=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """
        Ping the configured MongoDB to validate connectivity.

        This is used by startup validation and the connectivity-check endpoint.
        """
        try:
            if self._app_client is None:
                self.connect_app()
            assert self._app_client is not None
            self._app_client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False

    def close(self) -> None:
        """Close the app Mongo client."""
        with self._lock:
            if self._app_client is not None:
                try:
                    self._app_client.close()
                except PyMongoError:
                    logger.exception("Error closing app MongoClient")
                self._app_client = None

    def app_db(self) -> Database:
        """Return the dashboard database handle."""
        if self._app_client is None:
            self.connect_app()
        assert self._app_client is not None
        return self._app_client[self._db_name]

    def collections(self) -> MongoCollections:
        """Return app collections."""
        db = self.app_db()
        return MongoCollections(
            metrics=db["metrics"],
            automation_executions=db["automation_executions"],
            data_archives=db["data_archives"],
            backup_configs=db["backup_configs"],
            backup_jobs=db["backup_jobs"],
            backup_verifications=db["backup_verifications"],
            recovery_jobs=db["recovery_jobs"],
        )

    def init_indexes(self) -> None:
        """Create required indexes (idempotent)."""
        cols = self.collections()

        # ---- Metrics ----
        # Common query: entity + archived flag + date range, newest first.
        cols.metrics.create_index(
            [("businessEntityId", ASCENDING), ("isArchived", ASCENDING), ("date", DESCENDING)],
            name="idx_metrics_entity_archived_date",
        )
        cols.metrics.create_index([("metricType", ASCENDING)], name="idx_metrics_type")
        cols.metrics.create_index([("source", ASCENDING)], name="idx_metrics_source")
        cols.metrics.create_index([("tags", ASCENDING)], name="idx_metrics_tags")

        # ---- Automation executions ----
        cols.automation_executions.create_index(
            [("businessEntityId", ASCENDING), ("startTime", DESCENDING)],
            name="idx_automations_entity_start",
        )
        cols.automation_executions.create_index([("status", ASCENDING)], name="idx_automations_status")
        cols.automation_executions.create_index([("automationType", ASCENDING)], name="idx_automations_type")

        # ---- Data archives ----
        cols.data_archives.create_index(
            [("businessEntityId", ASCENDING), ("archiveDate", DESCENDING)],
            name="idx_archives_entity_date",
        )
        cols.data_archives.create_index([("sourceTable", ASCENDING)], name="idx_archives_source_table")

        # ---- Backups ----
        cols.backup_configs.create_index([("businessEntityId", ASCENDING)], name="idx_backup_configs_entity")
        cols.backup_configs.create_index([("isActive", ASCENDING)], name="idx_backup_configs_active")
        cols.backup_jobs.create_index(
            [("businessEntityId", ASCENDING), ("createdAt", DESCENDING)],
            name="idx_backup_jobs_entity_createdAt_desc",
        )
        cols.backup_jobs.create_index([("backupConfigId", ASCENDING)], name="idx_backup_jobs_config")
        cols.backup_jobs.create_index([("status", ASCENDING)], name="idx_backup_jobs_status")
        cols.backup_verifications.create_index([("backupJobId", ASCENDING)], name="idx_backup_verifications_job")
        cols.recovery_jobs.create_index(
            [("businessEntityId", ASCENDING), ("createdAt", DESCENDING)],
            name="idx_recovery_jobs_entity_createdAt_desc",
        )
