from __future__ import annotations

import logging
import random
import re
import uuid
from collections import OrderedDict
from threading import RLock
from typing import List, Optional

from src.dashboard.schemas.common import utc_now
from src.dashboard.schemas.database_optimization import (
    CacheStrategy,
    DatabaseOptimizationBreakdown,
    DatabaseOptimizationStatus,
    IndexRecommendation,
    QueryAnalysis,
    QueryOptimization,
)
from src.dashboard.schemas.optimization import PRIORITY_ORDER
from src.dashboard.services.monitoring_service import PerformanceMonitoringService
from src.dashboard.services.work_items import (
    breakdown,
    claim_pending,
    merge_generated,
    simulate_work,
    summarize,
)

logger = logging.getLogger(__name__)

TABLE_SCAN_INDICATORS = (
    "where column like '%value%'",
    "where column != value",
    "where function(column)",
    "where column + 1 = value",
    "order by column",
    "group by column",
)

INDEX_HINTS = (
    ("where id =", "primary_key"),
    ("where email =", "email_index"),
    ("where created_at >", "created_at_index"),
    ("where status =", "status_index"),
    ("where user_id =", "user_id_index"),
)

_TABLE_RE = re.compile(r"from\s+(\w+)")
_WHERE_RE = re.compile(r"where\s+(.+?)(?:\s+order\s+by|\s+group\s+by|\s+limit|$)")
_COLUMN_RE = re.compile(r"(\w+)\s*[=<>!]")
_LEADING_WILDCARD_RE = re.compile(r"like\s+'%")
_SUBQUERY_RE = re.compile(r"\(\s*select\b")

# Upper bound on tracked database metrics considered per analysis.
MAX_ANALYZED_METRICS = 10000


def _new_id() -> str:
    return f"db_opt_{uuid.uuid4().hex[:16]}"


def detect_table_scans(sql: str) -> bool:
    return any(indicator in sql for indicator in TABLE_SCAN_INDICATORS)


def detect_index_usage(sql: str) -> List[str]:
    return [index for clause, index in INDEX_HINTS if clause in sql]


def has_subquery(sql: str) -> bool:
    return "subquery" in sql or bool(_SUBQUERY_RE.search(sql))


def optimization_score(sql: str, execution_time: float, table_scans: bool, frequency: int = 1) -> int:
    score = 0
    if execution_time > 1000:
        score += 40
    elif execution_time > 500:
        score += 30
    elif execution_time > 100:
        score += 20
    elif execution_time > 50:
        score += 10

    if table_scans:
        score += 25

    if frequency > 100:
        score += 15
    elif frequency > 50:
        score += 10
    elif frequency > 10:
        score += 5

    if "select *" in sql:
        score += 10
    if "distinct" in sql:
        score += 5
    if "union" in sql:
        score += 5
    if has_subquery(sql):
        score += 10
    return min(score, 100)


def query_recommendations(sql: str, table_scans: bool, index_usage: List[str]) -> List[str]:
    recs = []
    if table_scans:
        recs += ["Add appropriate indexes to eliminate table scans", "Rewrite query to use indexed columns in WHERE clause"]
    if "select *" in sql:
        recs += ["Replace SELECT * with specific column names", "Consider covering indexes for frequently accessed columns"]
    if _LEADING_WILDCARD_RE.search(sql):
        recs += ["Avoid leading wildcards in LIKE clauses", "Consider full-text search for text-based queries"]
    if "distinct" in sql:
        recs += ["Evaluate if DISTINCT is necessary", "Consider using GROUP BY instead if appropriate"]
    if "order by" in sql and not index_usage:
        recs += ["Add indexes for ORDER BY columns", "Consider composite indexes for WHERE + ORDER BY"]
    if "group by" in sql and not index_usage:
        recs += ["Add indexes for GROUP BY columns", "Consider composite indexes for WHERE + GROUP BY"]
    return recs or ["Query appears to be well-optimized"]


def estimated_improvement(score: int, frequency: int = 1) -> float:
    if score >= 80:
        improvement = 70.0
    elif score >= 60:
        improvement = 50.0
    elif score >= 40:
        improvement = 30.0
    elif score >= 20:
        improvement = 15.0
    else:
        improvement = 0.0
    if frequency > 100:
        improvement *= 1.2
    elif frequency > 50:
        improvement *= 1.1
    return round(min(improvement, 90.0), 2)


def analyze_query(query: str, execution_time: float, frequency: int = 1) -> QueryAnalysis:
    sql = query.lower()
    scans = detect_table_scans(sql)
    usage = detect_index_usage(sql)
    score = optimization_score(sql, execution_time, scans, frequency)
    return QueryAnalysis(
        id=_new_id(),
        query=query,
        execution_time=round(execution_time, 2),
        frequency=frequency,
        table_scans=scans,
        index_usage=usage,
        optimization_score=score,
        recommendations=query_recommendations(sql, scans, usage),
        estimated_improvement=estimated_improvement(score, frequency),
    )


def where_columns(where_clause: str) -> List[str]:
    columns: List[str] = []
    for column in _COLUMN_RE.findall(where_clause):
        if column not in columns:
            columns.append(column)
    return columns


def indexes_for(analysis: QueryAnalysis) -> List[IndexRecommendation]:
    sql = analysis.query.lower()
    table_match = _TABLE_RE.search(sql)
    where_match = _WHERE_RE.search(sql)
    if not table_match or not where_match:
        return []
    table = table_match.group(1)
    columns = where_columns(where_match.group(1))
    if not columns:
        return []

    priority = "critical" if analysis.optimization_score > 70 else "high"
    recs = []
    if len(columns) == 1:
        recs.append(
            IndexRecommendation(
                id=_new_id(),
                table=table,
                columns=columns,
                type="single",
                priority=priority,
                estimated_improvement=analysis.estimated_improvement,
                creation_sql=f"CREATE INDEX idx_{table}_{columns[0]} ON {table}({columns[0]});",
            )
        )
    else:
        recs.append(
            IndexRecommendation(
                id=_new_id(),
                table=table,
                columns=columns,
                type="composite",
                priority=priority,
                estimated_improvement=analysis.estimated_improvement,
                creation_sql=f"CREATE INDEX idx_{table}_{'_'.join(columns)} ON {table}({', '.join(columns)});",
            )
        )
    if "select *" in sql:
        covering = columns + (["id"] if "id" not in columns else [])
        recs.append(
            IndexRecommendation(
                id=_new_id(),
                table=table,
                columns=covering,
                type="covering",
                priority="medium",
                estimated_improvement=round(analysis.estimated_improvement * 0.8, 2),
                creation_sql=(
                    f"CREATE INDEX idx_{table}_covering_{'_'.join(columns)} ON {table}({', '.join(covering)});"
                ),
            )
        )
    return recs


def optimize_query(analysis: QueryAnalysis) -> Optional[QueryOptimization]:
    sql = analysis.query.lower()
    optimized = analysis.query
    otype = "rewrite"
    improvement = analysis.estimated_improvement

    if "select *" in sql:
        optimized = re.sub(r"select \*", "SELECT id, name, email, created_at", optimized, count=1, flags=re.I)
        improvement += 10
    if _LEADING_WILDCARD_RE.search(sql):
        optimized = re.sub(r"like\s+'%([^'%]+)%?'", r"LIKE '\1%'", optimized, flags=re.I)
        improvement += 15
    if "distinct" in sql:
        optimized = re.sub(r"distinct", "GROUP BY", optimized, count=1, flags=re.I)
        improvement += 20
    if has_subquery(sql):
        optimized = re.sub(
            r"where id in \(select user_id from orders\)",
            "JOIN orders ON users.id = orders.user_id",
            optimized,
            flags=re.I,
        )
        otype = "subquery_elimination"
        improvement += 25

    if optimized == analysis.query:
        return None
    return QueryOptimization(
        id=_new_id(),
        original_query=analysis.query,
        optimized_query=optimized,
        optimization_type=otype,
        estimated_improvement=round(min(improvement, 90), 2),
    )


class DatabaseOptimizationService:
    """
    Analyses tracked database query timings and generates index, rewrite and caching suggestions.

    Index creation is simulated; no SQL is executed.
    """

    def __init__(
        self,
        monitoring: PerformanceMonitoringService,
        time_scale: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        self._monitoring = monitoring
        self._time_scale = time_scale
        self._rng = rng or random.Random()
        self._analyses: List[QueryAnalysis] = []
        self._indexes: List[IndexRecommendation] = []
        self._queries: List[QueryOptimization] = []
        self._caches: List[CacheStrategy] = []
        self._lock = RLock()

    # PUBLIC_INTERFACE
    def analyze(self) -> List[QueryAnalysis]:
        """Analyse slow queries and per-query patterns from monitored database timings."""
        metrics = self._monitoring.get_metrics("database", MAX_ANALYZED_METRICS)
        threshold = self._monitoring.get_config().database_query_time_threshold

        slow: "OrderedDict[str, float]" = OrderedDict()
        patterns: "OrderedDict[str, List[float]]" = OrderedDict()
        for m in metrics:
            text = m.metadata.get("fullQuery") or m.name
            if m.value > threshold:
                slow[text] = max(slow.get(text, 0.0), m.value)
            patterns.setdefault(text, []).append(m.value)

        analyses = [analyze_query(text, value) for text, value in slow.items()]
        for text, values in patterns.items():
            analyses.append(analyze_query(text, sum(values) / len(values), len(values)))
        analyses.sort(key=lambda a: a.optimization_score, reverse=True)

        with self._lock:
            self._analyses = analyses
        logger.info("Analysed %d database query pattern(s)", len(analyses))
        return analyses

    def _current_analyses(self) -> List[QueryAnalysis]:
        with self._lock:
            analyses = list(self._analyses)
        return analyses or self.analyze()

    def generate_index_recommendations(self) -> List[IndexRecommendation]:
        recs: List[IndexRecommendation] = []
        # Indexes already created are not recommended again.
        with self._lock:
            seen = {(r.table, tuple(r.columns)) for r in self._indexes if r.status == "completed"}
        for analysis in self._current_analyses():
            if not (analysis.table_scans or analysis.optimization_score > 50):
                continue
            for rec in indexes_for(analysis):
                key = (rec.table, tuple(rec.columns))
                if key not in seen:
                    seen.add(key)
                    recs.append(rec)
        recs.sort(key=lambda r: PRIORITY_ORDER[r.priority], reverse=True)
        with self._lock:
            self._indexes = merge_generated(self._indexes, recs)
        return recs

    def generate_query_optimizations(self) -> List[QueryOptimization]:
        opts = [o for o in (optimize_query(a) for a in self._current_analyses() if a.optimization_score > 30) if o]
        opts.sort(key=lambda o: o.estimated_improvement, reverse=True)
        with self._lock:
            self._queries = merge_generated(self._queries, opts)
        return opts

    def generate_cache_strategies(self) -> List[CacheStrategy]:
        strategies: List[CacheStrategy] = []
        if any(a.execution_time > 100 and a.frequency > 10 for a in self._current_analyses()):
            strategies.append(
                CacheStrategy(
                    id=_new_id(),
                    target="query_results",
                    strategy="ttl",
                    ttl=300,
                    max_size=100,
                    invalidation_rules=["on_table_update", "on_schema_change"],
                )
            )
        strategies += [
            CacheStrategy(
                id=_new_id(),
                target="api_responses",
                strategy="ttl",
                ttl=60,
                max_size=50,
                invalidation_rules=["on_data_change", "on_user_action"],
            ),
            CacheStrategy(
                id=_new_id(),
                target="static_data",
                strategy="ttl",
                ttl=3600,
                max_size=25,
                invalidation_rules=["on_schedule", "on_admin_action"],
            ),
            CacheStrategy(
                id=_new_id(),
                target="session_data",
                strategy="lru",
                ttl=1800,
                max_size=75,
                invalidation_rules=["on_logout", "on_timeout"],
            ),
        ]
        with self._lock:
            self._caches = merge_generated(self._caches, strategies)
        return strategies

    # PUBLIC_INTERFACE
    async def execute_index(self, index_id: str) -> IndexRecommendation:
        """Simulate creating a recommended index and measure a before/after timing delta."""
        with self._lock:
            rec = claim_pending(self._indexes, index_id, "index recommendation")
        before = self._rng.uniform(50, 150)
        await simulate_work(rec, min(before / 100, 1.0) * self._time_scale, "Index creation")
        after = before * self._rng.uniform(0.3, 0.9)
        with self._lock:
            rec.status = "completed"
            rec.implemented_at = utc_now()
            rec.performance_impact = round((before - after) / before * 100, 2)
        logger.info("Index recommendation %s applied: %s", index_id, rec.creation_sql)
        return rec

    def get_status(self) -> DatabaseOptimizationStatus:
        with self._lock:
            analyses = list(self._analyses)
            pending = [r for r in self._indexes if r.status == "pending"]
            parts = DatabaseOptimizationBreakdown(
                indexes=breakdown(self._indexes),
                queries=breakdown(self._queries),
                caching=breakdown(self._caches),
            )
        pending.sort(key=lambda r: PRIORITY_ORDER[r.priority], reverse=True)
        return DatabaseOptimizationStatus(
            summary=summarize([parts.indexes, parts.queries, parts.caching]),
            breakdown=parts,
            recent_analyses=analyses[-5:],
            top_recommendations=pending[:5],
        )

    def get_analyses(self) -> List[QueryAnalysis]:
        with self._lock:
            return list(self._analyses)

    def get_index_recommendations(self) -> List[IndexRecommendation]:
        with self._lock:
            return list(self._indexes)

    def get_query_optimizations(self) -> List[QueryOptimization]:
        with self._lock:
            return list(self._queries)

    def get_cache_strategies(self) -> List[CacheStrategy]:
        with self._lock:
            return list(self._caches)
