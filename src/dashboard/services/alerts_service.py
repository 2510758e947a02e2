from __future__ import annotations

import asyncio
import logging
import uuid
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple

from src.dashboard.errors import ConflictError, NotFoundError
from src.dashboard.schemas.alerts import (
    AlertMetadata,
    AlertNotification,
    AlertRule,
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertSummary,
    CustomAlertCreate,
    PerformanceAlert,
)
from src.dashboard.schemas.common import utc_now
from src.dashboard.services.monitoring_service import PerformanceMonitoringService

logger = logging.getLogger(__name__)

# Categories whose summary section rules are evaluated against.
EVALUATED_CATEGORIES = ("api", "database", "system", "frontend")

# Simulated delivery latency per external channel (ms).
_CHANNEL_DELAY_MS = {"email": 100, "slack": 100, "webhook": 100, "sms": 100}

_SEVERITY_TO_TYPE = {"critical": "critical", "high": "critical", "medium": "warning", "low": "info"}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _rule(
    rule_id: str,
    name: str,
    description: str,
    category: str,
    metric: str,
    condition: str,
    threshold: float,
    severity: str,
    cooldown: int,
    channels: List[str],
    tags: List[str],
) -> AlertRule:
    return AlertRule(
        id=rule_id,
        name=name,
        description=description,
        category=category,
        metric=metric,
        condition=condition,
        threshold=threshold,
        severity=severity,
        enabled=True,
        cooldown=cooldown,
        notification_channels=channels,
        tags=tags,
    )


_LOUD = ["email", "slack", "dashboard"]
_QUIET = ["dashboard"]


def default_rules() -> List[AlertRule]:
    """Built-in rule set seeded when the service starts."""
    return [
        _rule("api_response_time_critical", "API Response Time Critical",
              "Alert when API response time exceeds critical threshold",
              "api", "responseTime", "above", 2000, "critical", 300, _LOUD, ["api", "performance", "critical"]),
        _rule("api_response_time_warning", "API Response Time Warning",
              "Alert when API response time exceeds warning threshold",
              "api", "responseTime", "above", 1000, "medium", 300, _QUIET, ["api", "performance", "warning"]),
        _rule("api_error_rate_critical", "API Error Rate Critical",
              "Alert when API error rate exceeds critical threshold",
              "api", "errorRate", "above", 10, "critical", 60, _LOUD, ["api", "errors", "critical"]),
        _rule("api_throughput_low", "API Throughput Low",
              "Alert when API throughput falls below threshold",
              "api", "throughput", "below", 10, "medium", 300, _QUIET, ["api", "throughput", "warning"]),
        _rule("db_query_time_critical", "Database Query Time Critical",
              "Alert when database query time exceeds critical threshold",
              "database", "queryTime", "above", 1000, "critical", 300, _LOUD, ["database", "performance", "critical"]),
        _rule("db_connection_pool_high", "Database Connection Pool High",
              "Alert when database connection pool usage is high",
              "database", "connectionPoolUsage", "above", 80, "medium", 300, _QUIET, ["database", "connections"]),
        _rule("cpu_usage_critical", "CPU Usage Critical",
              "Alert when CPU usage exceeds critical threshold",
              "system", "cpu", "above", 90, "critical", 60, _LOUD, ["system", "cpu", "critical"]),
        _rule("memory_usage_warning", "Memory Usage Warning",
              "Alert when memory usage exceeds warning threshold",
              "system", "memory", "above", 80, "medium", 300, _QUIET, ["system", "memory", "warning"]),
        _rule("disk_usage_warning", "Disk Usage Warning",
              "Alert when disk usage exceeds warning threshold",
              "system", "diskUsage", "above", 85, "medium", 600, _QUIET, ["system", "disk", "warning"]),
        _rule("frontend_load_time_critical", "Frontend Load Time Critical",
              "Alert when frontend page load time exceeds critical threshold",
              "frontend", "loadTime", "above", 5000, "critical", 300, _LOUD, ["frontend", "performance", "critical"]),
        _rule("frontend_bundle_size_large", "Frontend Bundle Size Large",
              "Alert when frontend bundle size exceeds threshold",
              "frontend", "bundleSize", "above", 2048, "medium", 600, _QUIET, ["frontend", "bundle", "warning"]),
    ]


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


# PUBLIC_INTERFACE
def extract_metric_value(section: Any, path: str) -> Optional[float]:
    """
    Resolve a dotted path inside a summary section.

    A dict result falls back to its current/average/value keys; anything non-numeric yields None.
    """
    value = section
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return None
    if isinstance(value, dict):
        for key in ("current", "average", "value"):
            if key in value:
                value = value[key]
                break
    return float(value) if _is_number(value) else None


def _threshold_number(threshold: Any) -> float:
    if _is_number(threshold):
        return float(threshold)
    try:
        return float(str(threshold).strip())
    except ValueError:
        return 0.0


def _fmt(v: Any) -> str:
    return f"{v:g}" if _is_number(v) else str(v)


# PUBLIC_INTERFACE
def evaluate_condition(value: float, condition: str, threshold: Any) -> bool:
    """Apply a rule comparator; string thresholds are parsed as floats for numeric comparators."""
    limit = _threshold_number(threshold)
    if condition == "above":
        return value > limit
    if condition == "below":
        return value < limit
    if condition == "equals":
        return value == limit
    if condition == "not_equals":
        return value != limit
    if condition == "contains":
        return _fmt(threshold) in _fmt(value)
    if condition == "not_contains":
        return _fmt(threshold) not in _fmt(value)
    return False


class PerformanceAlertService:
    """Rule-driven alerting over the monitoring summary, with a simple alert lifecycle."""

    def __init__(self, monitoring: PerformanceMonitoringService, interval_sec: int = 30, time_scale: float = 1.0):
        self._monitoring = monitoring
        self._time_scale = time_scale
        self._rules: List[AlertRule] = default_rules()
        self._alerts: List[PerformanceAlert] = []
        self._notifications: List[AlertNotification] = []
        self._interval_sec = max(1, int(interval_sec))
        self._active = False
        self._lock = RLock()

    # ---- monitoring control ----

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def interval_sec(self) -> int:
        return self._interval_sec

    def start_monitoring(self, interval_ms: Optional[int] = None) -> None:
        if self._active:
            raise ConflictError("Alert monitoring is already active")
        if interval_ms:
            self._interval_sec = max(1, int(interval_ms) // 1000)
        self._active = True
        logger.info("Alert monitoring started (interval=%ss)", self._interval_sec)

    def stop_monitoring(self) -> None:
        if self._active:
            self._active = False
            logger.info("Alert monitoring stopped")

    def monitoring_status(self) -> Dict[str, Any]:
        return {"is_active": self._active, "interval_ms": self._interval_sec * 1000}

    # ---- evaluation ----

    @staticmethod
    def _cooled_down(rule: AlertRule, now) -> bool:
        if rule.last_triggered is None:
            return True
        return (now - rule.last_triggered).total_seconds() >= rule.cooldown

    # PUBLIC_INTERFACE
    async def evaluate_rules(self) -> List[PerformanceAlert]:
        """
        Evaluate every enabled rule against the current monitoring summary.

        Rules are checked in list order per category; a rule inside its cooldown window is skipped.
        Returns the alerts created by this pass.
        """
        summary = self._monitoring.get_metrics_summary().model_dump(by_alias=True, mode="json")
        created: List[PerformanceAlert] = []
        with self._lock:
            rules = [r for r in self._rules if r.enabled and r.category in EVALUATED_CATEGORIES]

        for category in EVALUATED_CATEGORIES:
            section = summary.get(category) or {}
            for rule in (r for r in rules if r.category == category):
                now = utc_now()
                if not self._cooled_down(rule, now):
                    continue
                value = extract_metric_value(section, rule.metric)
                if value is None or not evaluate_condition(value, rule.condition, rule.threshold):
                    continue
                alert = self._new_rule_alert(rule, value, section)
                rule.last_triggered = now
                await self._send_notifications(alert, rule.notification_channels, rule.id)
                created.append(alert)
        return created

    def _new_rule_alert(self, rule: AlertRule, value: float, context: Dict[str, Any]) -> PerformanceAlert:
        alert = PerformanceAlert(
            id=_new_id("alert"),
            type=_SEVERITY_TO_TYPE.get(rule.severity, "info"),
            category=rule.category,
            title=rule.name,
            description=f"{rule.description}. Current value: {_fmt(value)}, Threshold: {_fmt(rule.threshold)}",
            metric=rule.metric,
            current_value=value,
            threshold=rule.threshold if _is_number(rule.threshold) else _threshold_number(rule.threshold),
            severity=rule.severity,
            status="active",
            created_at=utc_now(),
            metadata=AlertMetadata(rule_id=rule.id, context=context, tags=list(rule.tags)),
        )
        with self._lock:
            self._alerts.append(alert)
        logger.info("Performance alert created title=%s severity=%s", alert.title, alert.severity)
        return alert

    async def _send_notifications(self, alert: PerformanceAlert, channels: List[str], rule_id: Optional[str]) -> None:
        for channel in channels:
            notification = AlertNotification(
                id=_new_id("notif"),
                alert_id=alert.id,
                channel=channel,
                status="pending",
                metadata={"ruleId": rule_id, "severity": alert.severity},
            )
            with self._lock:
                self._notifications.append(notification)
            try:
                await self._deliver(channel)
                notification.status = "sent"
                notification.sent_at = utc_now()
            except ValueError as exc:
                notification.status = "failed"
                notification.failed_at = utc_now()
                notification.error_message = str(exc)
                logger.error("Failed to send notification via %s: %s", channel, exc)

    async def _deliver(self, channel: str) -> None:
        if channel == "dashboard":
            # Rendered by the frontend from the alerts feed.
            return
        if channel not in _CHANNEL_DELAY_MS:
            raise ValueError(f"Unsupported notification channel: {channel}")
        await asyncio.sleep(_CHANNEL_DELAY_MS[channel] / 1000 * self._time_scale)

    # ---- alerts ----

    def create_custom_alert(self, payload: CustomAlertCreate) -> PerformanceAlert:
        alert = PerformanceAlert(
            id=_new_id("alert"),
            type=_SEVERITY_TO_TYPE.get(payload.severity, "info"),
            category=payload.category,
            title=payload.title.strip(),
            description=payload.description.strip(),
            metric=payload.metric,
            current_value=payload.current_value,
            threshold=payload.threshold,
            severity=payload.severity,
            status="active",
            created_at=utc_now(),
            metadata=AlertMetadata(context=payload.context, tags=payload.tags),
        )
        with self._lock:
            self._alerts.append(alert)
            self._notifications.append(
                AlertNotification(
                    id=_new_id("notif"),
                    alert_id=alert.id,
                    channel="dashboard",
                    status="sent",
                    sent_at=utc_now(),
                    metadata={"severity": alert.severity},
                )
            )
        return alert

    def get_alert(self, alert_id: str) -> PerformanceAlert:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        raise NotFoundError(f"Alert {alert_id} not found")

    def get_alerts(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[PerformanceAlert], int]:
        """Filter alerts, newest first; returns (page, total matching)."""
        with self._lock:
            items = [
                a
                for a in self._alerts
                if (status is None or a.status == status)
                and (severity is None or a.severity == severity)
                and (category is None or a.category == category)
            ]
        items.sort(key=lambda a: a.created_at, reverse=True)
        return items[offset : offset + limit], len(items)

    def acknowledge(self, alert_id: str, by: str) -> PerformanceAlert:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert.status != "active":
                raise ConflictError("Alert cannot be acknowledged in its current status")
            alert.status = "acknowledged"
            alert.acknowledged_at = utc_now()
            alert.acknowledged_by = by
        return alert

    def resolve(self, alert_id: str, by: str, notes: Optional[str] = None) -> PerformanceAlert:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert.status in ("resolved", "dismissed"):
                raise ConflictError("Alert cannot be resolved in its current status")
            alert.status = "resolved"
            alert.resolved_at = utc_now()
            alert.resolved_by = by
            alert.resolution_notes = notes
        return alert

    def dismiss(self, alert_id: str, by: str, reason: Optional[str] = None) -> PerformanceAlert:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert.status in ("resolved", "dismissed"):
                raise ConflictError("Alert cannot be dismissed in its current status")
            alert.status = "dismissed"
            alert.dismissed_at = utc_now()
            alert.dismissed_by = by
            alert.dismissal_reason = reason
        return alert

    def get_summary(self) -> AlertSummary:
        with self._lock:
            alerts = list(self._alerts)

        def count(field: str, value: str) -> int:
            return sum(1 for a in alerts if getattr(a, field) == value)

        by_category: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for a in alerts:
            by_category[a.category] = by_category.get(a.category, 0) + 1
            by_severity[a.severity] = by_severity.get(a.severity, 0) + 1

        recent = sorted(alerts, key=lambda a: a.created_at, reverse=True)[:10]
        return AlertSummary(
            total=len(alerts),
            active=count("status", "active"),
            acknowledged=count("status", "acknowledged"),
            resolved=count("status", "resolved"),
            dismissed=count("status", "dismissed"),
            critical=count("severity", "critical"),
            high=count("severity", "high"),
            medium=count("severity", "medium"),
            low=count("severity", "low"),
            by_category=by_category,
            by_severity=by_severity,
            recent_alerts=recent,
        )

    # ---- rules ----

    def get_rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules)

    def get_rule(self, rule_id: str) -> AlertRule:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    return rule
        raise NotFoundError(f"Alert rule {rule_id} not found")

    def create_rule(self, payload: AlertRuleCreate) -> AlertRule:
        data = payload.model_dump(exclude={"id"})
        rule = AlertRule(id=payload.id or _new_id("rule"), **data)
        with self._lock:
            if any(r.id == rule.id for r in self._rules):
                raise ConflictError(f"Alert rule {rule.id} already exists")
            self._rules.append(rule)
        logger.info("Alert rule created id=%s metric=%s.%s", rule.id, rule.category, rule.metric)
        return rule

    def update_rule(self, rule_id: str, payload: AlertRuleUpdate) -> AlertRule:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        with self._lock:
            for i, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    updated = rule.model_copy(update=changes)
                    self._rules[i] = updated
                    return updated
        raise NotFoundError(f"Alert rule {rule_id} not found")

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.id != rule_id]
            if len(self._rules) == before:
                raise NotFoundError(f"Alert rule {rule_id} not found")

    def get_notifications(self, alert_id: Optional[str] = None) -> List[AlertNotification]:
        with self._lock:
            return [n for n in self._notifications if alert_id is None or n.alert_id == alert_id]
