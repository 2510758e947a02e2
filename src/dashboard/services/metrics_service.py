from __future__ import annotations

import csv
import io
import json
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Request
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.metrics import (
    AggregatedMetric,
    AutomationExecutionCreate,
    AutomationExecutionOut,
    AutomationPerformance,
    AutomationStatusUpdate,
    AutomationTypePerformance,
    DataArchiveCreate,
    DataArchiveOut,
    HistoryPeriod,
    MetricCreate,
    MetricListResponse,
    MetricOut,
    MetricsCleanupResult,
    MetricsSummary,
    MetricUpdate,
)
from src.dashboard.state import get_state

logger = logging.getLogger(__name__)

METRIC_CSV_HEADERS = ["Date", "Metric Type", "Metric Name", "Value", "Unit", "Source", "Tags"]
AUTOMATION_CSV_HEADERS = [
    "Start Time",
    "End Time",
    "Duration",
    "Status",
    "Automation Type",
    "Execution ID",
    "Automation Name",
    "Error Message",
]
RETENTION_ARCHIVE_TYPE = "metric_retention"


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC, the form pymongo stores and returns."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _oid(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


def _public(doc: dict) -> dict:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def _range(field: str, start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    bounds = {}
    if start is not None:
        bounds["$gte"] = _utc(start)
    if end is not None:
        bounds["$lte"] = _utc(end)
    return {field: bounds} if bounds else {}


def _cols(request: Request):
    return get_state(request.app).mongo.collections()


# ---- Metrics ----


# PUBLIC_INTERFACE
def create_metric(request: Request, payload: MetricCreate) -> MetricOut:
    """Store a business metric."""
    now = utc_now()
    doc = payload.model_dump(by_alias=True)
    doc.update({"date": _utc(payload.date), "isArchived": False, "createdAt": now, "updatedAt": now})
    doc["_id"] = _cols(request).metrics.insert_one(doc).inserted_id
    return MetricOut.model_validate(_public(doc))


# PUBLIC_INTERFACE
def list_metrics(
    request: Request,
    business_entity_id: Optional[str] = None,
    metric_type: Optional[str] = None,
    source: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    tags: Optional[List[str]] = None,
    is_archived: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> MetricListResponse:
    """List metrics newest first; a metric matches the tag filter when it carries any of the tags."""
    query: Dict[str, Any] = {"isArchived": is_archived}
    if business_entity_id:
        query["businessEntityId"] = business_entity_id
    if metric_type:
        query["metricType"] = metric_type
    if source:
        query["source"] = source
    if tags:
        query["tags"] = {"$in": tags}
    query.update(_range("date", start_date, end_date))

    cols = _cols(request)
    total = cols.metrics.count_documents(query)
    docs = cols.metrics.find(query).sort("date", DESCENDING).skip(offset).limit(limit)
    return MetricListResponse(
        metrics=[MetricOut.model_validate(_public(d)) for d in docs],
        total=total,
        page=offset // limit + 1,
        limit=limit,
        has_more=offset + limit < total,
    )


# PUBLIC_INTERFACE
def get_metric(request: Request, metric_id: str) -> Optional[MetricOut]:
    """Get a single metric by id. Returns None if not found."""
    oid = _oid(metric_id)
    doc = _cols(request).metrics.find_one({"_id": oid}) if oid else None
    return MetricOut.model_validate(_public(doc)) if doc else None


# PUBLIC_INTERFACE
def update_metric(request: Request, metric_id: str, payload: MetricUpdate) -> Optional[MetricOut]:
    """Apply a partial update. Returns None if not found."""
    oid = _oid(metric_id)
    if oid is None:
        return None
    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if "date" in changes:
        changes["date"] = _utc(changes["date"])
    changes["updatedAt"] = utc_now()
    doc = _cols(request).metrics.find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return MetricOut.model_validate(_public(doc)) if doc else None


# PUBLIC_INTERFACE
def archive_metric(request: Request, metric_id: str) -> bool:
    """Soft-delete a metric by flagging it archived. Returns False if not found."""
    oid = _oid(metric_id)
    if oid is None:
        return False
    res = _cols(request).metrics.update_one({"_id": oid}, {"$set": {"isArchived": True, "updatedAt": utc_now()}})
    return res.matched_count > 0


# ---- Automation executions ----


# PUBLIC_INTERFACE
def create_automation(request: Request, payload: AutomationExecutionCreate) -> AutomationExecutionOut:
    """Record an automation execution reported by an external platform."""
    now = utc_now()
    doc = payload.model_dump(by_alias=True)
    doc.update(
        {
            "startTime": _utc(payload.start_time),
            "endTime": _utc(payload.end_time),
            "nextRetryAt": _utc(payload.next_retry_at),
            "isArchived": False,
            "createdAt": now,
            "updatedAt": now,
        }
    )
    doc["_id"] = _cols(request).automation_executions.insert_one(doc).inserted_id
    return AutomationExecutionOut.model_validate(_public(doc))


# PUBLIC_INTERFACE
def list_automations(
    request: Request,
    business_entity_id: Optional[str] = None,
    automation_type: Optional[str] = None,
    status: Optional[str] = None,
    trigger_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AutomationExecutionOut]:
    query: Dict[str, Any] = {"isArchived": False}
    if business_entity_id:
        query["businessEntityId"] = business_entity_id
    if automation_type:
        query["automationType"] = automation_type
    if status:
        query["status"] = status
    if trigger_type:
        query["triggerType"] = trigger_type
    query.update(_range("startTime", start_date, end_date))
    docs = _cols(request).automation_executions.find(query).sort("startTime", DESCENDING).skip(offset).limit(limit)
    return [AutomationExecutionOut.model_validate(_public(d)) for d in docs]


# PUBLIC_INTERFACE
def get_automation(request: Request, execution_id: str) -> Optional[AutomationExecutionOut]:
    oid = _oid(execution_id)
    doc = _cols(request).automation_executions.find_one({"_id": oid}) if oid else None
    return AutomationExecutionOut.model_validate(_public(doc)) if doc else None


# PUBLIC_INTERFACE
def update_automation_status(
    request: Request, execution_id: str, payload: AutomationStatusUpdate
) -> Optional[AutomationExecutionOut]:
    """Move an execution to a new status, optionally stamping endTime and duration."""
    oid = _oid(execution_id)
    if oid is None:
        return None
    changes: Dict[str, Any] = {"status": payload.status, "updatedAt": utc_now()}
    if payload.end_time is not None:
        changes["endTime"] = _utc(payload.end_time)
    if payload.duration is not None:
        changes["duration"] = payload.duration
    doc = _cols(request).automation_executions.find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if doc:
        logger.info("Automation execution %s moved to %s", execution_id, payload.status)
    return AutomationExecutionOut.model_validate(_public(doc)) if doc else None


# ---- Data archives ----


def _insert_archive(cols, payload: DataArchiveCreate) -> DataArchiveOut:
    now = utc_now()
    doc = payload.model_dump(by_alias=True)
    doc.update({"archiveDate": _utc(payload.archive_date) or _utc(now), "createdAt": now})
    doc["_id"] = cols.data_archives.insert_one(doc).inserted_id
    return DataArchiveOut.model_validate(_public(doc))


# PUBLIC_INTERFACE
def create_archive(request: Request, payload: DataArchiveCreate) -> DataArchiveOut:
    """Store a retained copy of a record."""
    return _insert_archive(_cols(request), payload)


# PUBLIC_INTERFACE
def list_archives(
    request: Request,
    business_entity_id: Optional[str] = None,
    archive_type: Optional[str] = None,
    source_table: Optional[str] = None,
    is_restorable: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[DataArchiveOut]:
    query: Dict[str, Any] = {}
    if business_entity_id:
        query["businessEntityId"] = business_entity_id
    if archive_type:
        query["archiveType"] = archive_type
    if source_table:
        query["sourceTable"] = source_table
    if is_restorable is not None:
        query["isRestorable"] = is_restorable
    query.update(_range("archiveDate", start_date, end_date))
    docs = _cols(request).data_archives.find(query).sort("archiveDate", DESCENDING).skip(offset).limit(limit)
    return [DataArchiveOut.model_validate(_public(d)) for d in docs]


# ---- Analytics ----


def _automation_query(business_entity_id: str, start: datetime, end: datetime, automation_type: Optional[str] = None):
    query: Dict[str, Any] = {"businessEntityId": business_entity_id, "isArchived": False}
    query.update(_range("startTime", start, end))
    if automation_type:
        query["automationType"] = automation_type
    return query


def _metric_query(business_entity_id: str, start: datetime, end: datetime, metric_type: Optional[str] = None):
    query: Dict[str, Any] = {"businessEntityId": business_entity_id, "isArchived": False}
    query.update(_range("date", start, end))
    if metric_type:
        query["metricType"] = metric_type
    return query


def _avg_duration(executions: List[dict]) -> float:
    durations = [float(e["duration"]) for e in executions if e.get("duration") is not None]
    return round(sum(durations) / len(durations), 2) if durations else 0.0


def _success_rate(completed: int, total: int) -> float:
    return round(completed / total * 100, 2) if total else 0.0


# PUBLIC_INTERFACE
def get_summary(request: Request, business_entity_id: str, start: datetime, end: datetime) -> MetricsSummary:
    """Counts of live metrics and automations in range, with automation success rate and mean duration."""
    cols = _cols(request)
    total_metrics = cols.metrics.count_documents(_metric_query(business_entity_id, start, end))
    executions = list(cols.automation_executions.find(_automation_query(business_entity_id, start, end)))
    completed = sum(1 for e in executions if e.get("status") == "completed")
    return MetricsSummary(
        total_metrics=total_metrics,
        total_automations=len(executions),
        success_rate=_success_rate(completed, len(executions)),
        average_execution_time=_avg_duration(executions),
    )


def period_key(date: datetime, aggregation: str) -> str:
    if aggregation == "weekly":
        # Weeks start on Sunday.
        week_start = date - timedelta(days=(date.weekday() + 1) % 7)
        return week_start.strftime("%Y-%m-%d")
    if aggregation == "monthly":
        return date.strftime("%Y-%m")
    return date.strftime("%Y-%m-%d")


# PUBLIC_INTERFACE
def get_history(
    request: Request,
    business_entity_id: str,
    start: datetime,
    end: datetime,
    metric_type: Optional[str] = None,
    aggregation: str = "daily",
) -> List[HistoryPeriod]:
    """Bucket metrics by period, then aggregate each bucket per metricType:metricName."""
    docs = _cols(request).metrics.find(_metric_query(business_entity_id, start, end, metric_type)).sort("date", ASCENDING)

    periods: Dict[str, "OrderedDict[str, List[float]]"] = {}
    for doc in docs:
        bucket = periods.setdefault(period_key(doc["date"], aggregation), OrderedDict())
        bucket.setdefault(f"{doc['metricType']}:{doc['metricName']}", []).append(float(doc["metricValue"]))

    history = []
    for period in sorted(periods):
        metrics = []
        for key, values in periods[period].items():
            metric_type_, metric_name = key.split(":", 1)
            total = sum(values)
            metrics.append(
                AggregatedMetric(
                    metric_type=metric_type_,
                    metric_name=metric_name,
                    total_value=total,
                    average_value=total / len(values),
                    count=len(values),
                )
            )
        history.append(HistoryPeriod(period=period, metrics=metrics))
    return history


# PUBLIC_INTERFACE
def get_automation_performance(
    request: Request,
    business_entity_id: str,
    start: datetime,
    end: datetime,
    automation_type: Optional[str] = None,
) -> AutomationPerformance:
    """Success rates and mean durations overall and per automationType."""
    executions = list(
        _cols(request).automation_executions.find(
            _automation_query(business_entity_id, start, end, automation_type)
        )
    )
    by_type: Dict[str, List[dict]] = {}
    for e in executions:
        by_type.setdefault(e["automationType"], []).append(e)

    breakdown = []
    for atype in sorted(by_type):
        group = by_type[atype]
        completed = sum(1 for e in group if e.get("status") == "completed")
        breakdown.append(
            AutomationTypePerformance(
                automation_type=atype,
                total=len(group),
                completed=completed,
                failed=sum(1 for e in group if e.get("status") == "failed"),
                success_rate=_success_rate(completed, len(group)),
                average_duration=_avg_duration(group),
            )
        )

    completed = sum(1 for e in executions if e.get("status") == "completed")
    return AutomationPerformance(
        total_executions=len(executions),
        successful_executions=completed,
        failed_executions=sum(1 for e in executions if e.get("status") == "failed"),
        success_rate=_success_rate(completed, len(executions)),
        average_execution_time=_avg_duration(executions),
        by_type=breakdown,
    )


# ---- Export ----


def _csv(headers: List[str], rows: List[List[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buf.getvalue()


def _iso(dt: Optional[datetime]) -> str:
    return dt.isoformat() if dt else ""


# PUBLIC_INTERFACE
def export_metrics(
    request: Request,
    business_entity_id: str,
    start: datetime,
    end: datetime,
    fmt: str,
    metric_type: Optional[str] = None,
) -> str:
    """Render live metrics in range as CSV or a JSON array, oldest first."""
    docs = _cols(request).metrics.find(_metric_query(business_entity_id, start, end, metric_type)).sort("date", ASCENDING)
    metrics = [MetricOut.model_validate(_public(d)) for d in docs]
    if fmt == "csv":
        rows = [
            [
                m.date.strftime("%Y-%m-%d"),
                m.metric_type,
                m.metric_name,
                m.metric_value,
                m.metric_unit or "",
                m.source,
                ";".join(m.tags),
            ]
            for m in metrics
        ]
        return _csv(METRIC_CSV_HEADERS, rows)
    return json.dumps([m.model_dump(mode="json", by_alias=True) for m in metrics], indent=2)


# PUBLIC_INTERFACE
def export_automations(
    request: Request,
    business_entity_id: str,
    start: datetime,
    end: datetime,
    fmt: str,
    automation_type: Optional[str] = None,
) -> str:
    """Render automation executions in range as CSV or a JSON array, oldest first."""
    docs = (
        _cols(request)
        .automation_executions.find(_automation_query(business_entity_id, start, end, automation_type))
        .sort("startTime", ASCENDING)
    )
    executions = [AutomationExecutionOut.model_validate(_public(d)) for d in docs]
    if fmt == "csv":
        rows = [
            [
                _iso(e.start_time),
                _iso(e.end_time),
                "" if e.duration is None else e.duration,
                e.status,
                e.automation_type,
                e.execution_id,
                e.automation_name,
                e.error_message or "",
            ]
            for e in executions
        ]
        return _csv(AUTOMATION_CSV_HEADERS, rows)
    return json.dumps([e.model_dump(mode="json", by_alias=True) for e in executions], indent=2)


# ---- Retention ----


# PUBLIC_INTERFACE
def cleanup(
    request: Request, retention_days: Optional[int] = None, business_entity_id: Optional[str] = None
) -> MetricsCleanupResult:
    """
    Archive live metrics older than the retention window.

    Each expired metric is copied into data_archives (archiveType metric_retention) and then
    flagged isArchived so list and analytics queries skip it.
    """
    state = get_state(request.app)
    days = int(retention_days or state.config.metrics_retention_days)
    cutoff = _utc(utc_now() - timedelta(days=days))
    cols = state.mongo.collections()

    query: Dict[str, Any] = {"isArchived": False, "date": {"$lt": cutoff}}
    if business_entity_id:
        query["businessEntityId"] = business_entity_id

    archived = 0
    for doc in list(cols.metrics.find(query)):
        snapshot = MetricOut.model_validate(_public(doc)).model_dump(mode="json", by_alias=True)
        _insert_archive(
            cols,
            DataArchiveCreate(
                business_entity_id=doc["businessEntityId"],
                archive_type=RETENTION_ARCHIVE_TYPE,
                source_table="metrics",
                source_record_id=str(doc["_id"]),
                archived_data=snapshot,
                retention_policy=f"{days}_days",
            ),
        )
        cols.metrics.update_one({"_id": doc["_id"]}, {"$set": {"isArchived": True, "updatedAt": utc_now()}})
        archived += 1

    if archived:
        logger.info("Archived %d metric(s) older than %d day(s)", archived, days)
    return MetricsCleanupResult(archived_metrics=archived, retention_days=days)
