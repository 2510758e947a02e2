from __future__ import annotations

import asyncio
import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.dashboard.config import load_config
from src.dashboard.errors import install_error_handlers
from src.dashboard.middleware import install_middleware
from src.dashboard.routers import (
    alerts,
    api_optimization,
    backup,
    bottlenecks,
    database_optimization,
    frontend_optimization,
    health,
    metrics,
    monitoring,
    optimization,
    system_health,
    testing,
)
from src.dashboard.services.alerts_evaluator import alerts_evaluator_loop
from src.dashboard.services.backup_scheduler import backup_scheduler_loop
from src.dashboard.services.health_monitor import system_health_loop
from src.dashboard.services.system_sampler import system_sampler_loop
from src.dashboard.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and liveness."},
    {"name": "Performance Monitoring", "description": "Request, query, page and host metrics with threshold alerts."},
    {"name": "Performance Alerts", "description": "Rule-driven alerts, their lifecycle and notifications."},
    {"name": "Performance Bottlenecks", "description": "Threshold-based bottleneck detection."},
    {"name": "Performance Optimization", "description": "Optimization recommendations and simulated execution."},
    {"name": "Performance Testing", "description": "Simulated benchmarks, load, stress and memory tests."},
    {"name": "API Optimization", "description": "Endpoint analysis, caching, code and load balancing strategies."},
    {"name": "Database Optimization", "description": "Slow query analysis, index and query rewrite suggestions."},
    {"name": "Frontend Optimization", "description": "Page analysis and bundle, asset and rendering suggestions."},
    {"name": "Backup", "description": "Backup configurations, jobs, verification and recovery."},
    {"name": "Metrics", "description": "Business metrics, automation executions, archives and exports."},
    {"name": "System Health", "description": "Component health checks, overall status, history and system alerts."},
]

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Business Dashboard API",
    description=(
        "Backend API for the business dashboard. Business metrics, automation executions and backups "
        "are stored in MongoDB; performance monitoring, alerting, bottleneck detection, optimization "
        "and testing run in-process with background loops for sampling, alert evaluation and scheduled backups."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
)

# Initialize typed app state (config, Mongo manager, service singletons)
init_state(app, load_config())
install_error_handlers(app)
install_middleware(app)


@app.on_event("startup")
async def _on_startup() -> None:
    """Startup hook: connect to Mongo, validate connectivity, ensure indexes, and start background loops."""
    state = get_state(app)

    # Connect + verify early so misconfigured Mongo doesn't silently break background tasks.
    state.mongo.connect_app()
    if not state.mongo.ping():
        raise RuntimeError("Mongo connectivity check failed during startup. Verify BACKEND_MONGO_URI.")

    state.mongo.init_indexes()

    if state.config.perf_monitoring_autostart:
        state.monitoring.start()
    if state.config.alert_monitoring_autostart:
        state.alerts.start_monitoring()
    if state.config.backup_scheduler_enabled:
        state.backups.start()
    if state.config.system_health_autostart:
        state.system_health.start_monitoring()

    app.state._sampler_shutdown = asyncio.Event()
    state.sampler_task = asyncio.create_task(system_sampler_loop(state, app.state._sampler_shutdown))

    app.state._alerts_shutdown = asyncio.Event()
    state.alerts_task = asyncio.create_task(alerts_evaluator_loop(state, app.state._alerts_shutdown))

    app.state._backup_shutdown = asyncio.Event()
    state.backup_task = asyncio.create_task(backup_scheduler_loop(state, app.state._backup_shutdown))

    app.state._health_shutdown = asyncio.Event()
    state.health_task = asyncio.create_task(system_health_loop(state, app.state._health_shutdown))


async def _stop_loop(event_attr: str, task, label: str) -> None:
    shutdown = getattr(app.state, event_attr, None)
    if shutdown is not None:
        shutdown.set()
    if task is not None:
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except Exception:
            logger.exception("Error stopping %s task", label)


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    """Shutdown hook: stop the background loops and close Mongo connections."""
    state = get_state(app)

    await _stop_loop("_sampler_shutdown", state.sampler_task, "system sampler")
    await _stop_loop("_alerts_shutdown", state.alerts_task, "alerts evaluator")
    await _stop_loop("_backup_shutdown", state.backup_task, "backup scheduler")
    await _stop_loop("_health_shutdown", state.health_task, "system health monitor")

    state.monitoring.stop()
    state.alerts.stop_monitoring()
    state.backups.stop()
    state.system_health.stop_monitoring()
    state.mongo.close()


def _env_frontend_url() -> str | None:
    # Support both:
    # - standardized: FRONTEND_URL
    # - legacy: REACT_APP_FRONTEND_URL
    return os.getenv("FRONTEND_URL") or os.getenv("REACT_APP_FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


# CORS: allow local frontend by default, plus explicit frontend URL and optional extra origins.
allowed_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
frontend_url = _env_frontend_url()
if frontend_url:
    allowed_origins.append(frontend_url)
allowed_origins.extend(_env_cors_extra_origins())

# De-dupe while preserving order
_seen = set()
allowed_origins = [o for o in allowed_origins if not (o in _seen or _seen.add(o))]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset", "Retry-After"],
)

app.include_router(health.router)
app.include_router(monitoring.router)
app.include_router(alerts.router)
app.include_router(bottlenecks.router)
app.include_router(optimization.router)
app.include_router(testing.router)
app.include_router(api_optimization.router)
app.include_router(database_optimization.router)
app.include_router(frontend_optimization.router)
app.include_router(backup.public_router)
app.include_router(backup.router)
app.include_router(metrics.router)
app.include_router(system_health.router)
