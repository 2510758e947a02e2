"""Business-logic layer.

MongoDB-backed:
- metrics_service.py (business metrics, automation executions, archives, exports, retention)
- backup_service.py (backup configs, jobs, verification, recovery)

In-process (state lives on AppState):
- monitoring_service.py, alerts_service.py, bottleneck_service.py, optimization_service.py
- testing_service.py and the api/database/frontend optimization services

Background loops: system_sampler.py, alerts_evaluator.py, backup_scheduler.py.
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
