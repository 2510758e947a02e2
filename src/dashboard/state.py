from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from src.dashboard.config import BackendConfig
from src.dashboard.db.mongo import MongoManager
from src.dashboard.services.alerts_service import PerformanceAlertService
from src.dashboard.services.api_optimization_service import ApiOptimizationService
from src.dashboard.services.backup_service import BackupService
from src.dashboard.services.bottleneck_service import PerformanceBottleneckService
from src.dashboard.services.database_optimization_service import DatabaseOptimizationService
from src.dashboard.services.frontend_optimization_service import FrontendOptimizationService
from src.dashboard.services.monitoring_service import PerformanceMonitoringService
from src.dashboard.services.optimization_service import PerformanceOptimizationService
from src.dashboard.services.rate_limiter import RequestRateLimiter
from src.dashboard.services.system_health_service import SystemHealthService
from src.dashboard.services.testing_service import PerformanceTestingService


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    mongo: MongoManager
    rate_limiter: RequestRateLimiter

    monitoring: PerformanceMonitoringService
    alerts: PerformanceAlertService
    bottlenecks: PerformanceBottleneckService
    optimization: PerformanceOptimizationService
    testing: PerformanceTestingService
    api_optimization: ApiOptimizationService
    database_optimization: DatabaseOptimizationService
    frontend_optimization: FrontendOptimizationService
    backups: BackupService
    system_health: SystemHealthService

    sampler_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles
    alerts_task: Optional[object] = None  # asyncio.Task for alert rule monitoring
    backup_task: Optional[object] = None  # asyncio.Task for the backup scheduler
    health_task: Optional[object] = None  # asyncio.Task for periodic system health checks


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: BackendConfig) -> None:
    """Initialize app.state with Mongo manager, config and the service singletons."""
    mongo = MongoManager(config.mongo_uri, config.mongo_db_name)
    scale = config.simulation_time_scale

    monitoring = PerformanceMonitoringService()
    bottlenecks = PerformanceBottleneckService(monitoring)
    database_optimization = DatabaseOptimizationService(monitoring, time_scale=scale)

    app.state.state = AppState(
        config=config,
        mongo=mongo,
        rate_limiter=RequestRateLimiter(
            window_ms=config.rate_limit_window_ms,
            max_requests=config.rate_limit_max_requests,
            storage_uri=config.rate_limit_storage_uri,
        ),
        monitoring=monitoring,
        alerts=PerformanceAlertService(
            monitoring, interval_sec=config.alert_monitoring_interval_sec, time_scale=scale
        ),
        bottlenecks=bottlenecks,
        optimization=PerformanceOptimizationService(monitoring, bottlenecks, time_scale=scale),
        testing=PerformanceTestingService(time_scale=scale),
        api_optimization=ApiOptimizationService(monitoring, time_scale=scale),
        database_optimization=database_optimization,
        frontend_optimization=FrontendOptimizationService(monitoring, time_scale=scale),
        backups=BackupService(mongo, backup_dir=config.backup_dir, source_dir=config.backup_source_dir),
        system_health=SystemHealthService(mongo, interval_sec=config.system_health_interval_sec),
    )


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
