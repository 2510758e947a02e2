from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from src.dashboard.services.database_optimization_service import (
    DatabaseOptimizationService,
    analyze_query,
    estimated_improvement,
    has_subquery,
    indexes_for,
    optimize_query,
)
from src.dashboard.services.monitoring_service import PerformanceMonitoringService

SLOW_ORDERS = "SELECT * FROM orders WHERE status = 'open' AND total > (SELECT AVG(total) FROM orders)"


def test_query_analysis_scores_and_hints():
    analysis = analyze_query("SELECT * FROM users WHERE email = 'a@b.c'", 600)
    assert analysis.optimization_score == 40
    assert analysis.table_scans is False
    assert analysis.index_usage == ["email_index"]
    assert "Replace SELECT * with specific column names" in analysis.recommendations
    assert analysis.estimated_improvement == 30.0

    fine = analyze_query("SELECT id FROM users WHERE id = 1", 5)
    assert fine.recommendations == ["Query appears to be well-optimized"]


def test_estimated_improvement_frequency_boost_is_capped():
    assert estimated_improvement(85, frequency=200) == 84.0
    assert estimated_improvement(65, frequency=60) == 55.0
    assert estimated_improvement(10) == 0.0


def test_subquery_detection():
    assert has_subquery("select name from users where id in (select user_id from orders)")
    assert has_subquery("select ( select 1 )")
    assert not has_subquery("select * from selections")


def test_index_recommendations_from_where_clause():
    single = indexes_for(analyze_query("SELECT * FROM users WHERE email = 'a@b.c'", 600))
    assert [r.type for r in single] == ["single", "covering"]
    assert single[0].creation_sql == "CREATE INDEX idx_users_email ON users(email);"
    assert single[0].priority == "high"
    assert single[1].columns == ["email", "id"]
    assert single[1].creation_sql == "CREATE INDEX idx_users_covering_email ON users(email, id);"

    composite = indexes_for(analyze_query("SELECT name FROM users WHERE org_id = 3 AND role = 'admin' LIMIT 5", 50))
    assert len(composite) == 1
    assert composite[0].columns == ["org_id", "role"]
    assert composite[0].creation_sql == "CREATE INDEX idx_users_org_id_role ON users(org_id, role);"

    assert indexes_for(analyze_query("SELECT 1", 2000)) == []


def test_query_rewrites():
    rewritten = optimize_query(analyze_query("SELECT * FROM users WHERE name LIKE '%ann%'", 200))
    assert rewritten.optimized_query == "SELECT id, name, email, created_at FROM users WHERE name LIKE 'ann%'"
    assert rewritten.optimization_type == "rewrite"

    joined = optimize_query(analyze_query("SELECT name FROM users WHERE id IN (SELECT user_id FROM orders)", 50))
    assert joined.optimized_query == "SELECT name FROM users JOIN orders ON users.id = orders.user_id"
    assert joined.optimization_type == "subquery_elimination"
    assert joined.estimated_improvement == 25

    assert optimize_query(analyze_query("SELECT id FROM users WHERE id = 1", 5)) is None


def _service_with_slow_queries() -> DatabaseOptimizationService:
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    monitoring.track_database_query(SLOW_ORDERS, 0, 1200)
    monitoring.track_database_query("SELECT id FROM users WHERE id = 1", 0, 3)
    return DatabaseOptimizationService(monitoring, time_scale=0.0001, rng=random.Random(11))


def test_analysis_groups_slow_queries_and_patterns():
    svc = _service_with_slow_queries()
    analyses = svc.analyze()
    # One slow-query entry and two per-query patterns.
    assert len(analyses) == 3
    assert analyses[0].query == SLOW_ORDERS
    assert analyses[0].optimization_score == 60
    assert analyses[-1].query == "SELECT id FROM users WHERE id = 1"


@pytest.mark.anyio
async def test_index_generation_is_deduplicated_and_executes():
    svc = _service_with_slow_queries()
    recs = svc.generate_index_recommendations()
    assert [r.type for r in recs] == ["composite", "covering"]
    assert recs[0].columns == ["status", "total"]
    assert recs[0].priority == "high"

    done = await svc.execute_index(recs[0].id)
    assert done.status == "completed"
    assert 10 <= done.performance_impact <= 70

    status = svc.get_status()
    assert status.breakdown.indexes.completed == 1
    assert [r.id for r in status.top_recommendations] == [recs[1].id]


def test_cache_strategies_add_query_results_for_hot_slow_queries():
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    for _ in range(11):
        monitoring.track_database_query("SELECT * FROM products", 0, 150)
    svc = DatabaseOptimizationService(monitoring)
    targets = [s.target for s in svc.generate_cache_strategies()]
    assert targets == ["query_results", "api_responses", "static_data", "session_data"]

    assert [s.target for s in _service_with_slow_queries().generate_cache_strategies()] == [
        "api_responses",
        "static_data",
        "session_data",
    ]


@pytest.mark.anyio
async def test_database_optimization_routes(client: httpx.AsyncClient, fresh_state):
    fresh_state.monitoring.start()
    fresh_state.monitoring.track_database_query(SLOW_ORDERS, 0, 1200)

    res = await client.post("/api/databaseOptimization/analyze")
    assert res.status_code == 200
    assert res.json()["data"][0]["query"] == SLOW_ORDERS

    res = await client.post("/api/databaseOptimization/index-recommendations")
    index_id = res.json()["data"][0]["id"]
    res = await client.post(f"/api/databaseOptimization/execute-index/{index_id}")
    assert res.status_code == 200, res.text
    assert res.json()["data"]["status"] == "completed"

    res = await client.post(f"/api/databaseOptimization/execute-index/{index_id}")
    assert res.status_code == 409
    res = await client.post("/api/databaseOptimization/execute-index/db_opt_missing")
    assert res.status_code == 404

    res = await client.post("/api/databaseOptimization/query-optimizations")
    assert res.json()["data"][0]["optimizationType"] == "subquery_elimination"

    res = await client.get("/api/databaseOptimization/status")
    assert res.json()["data"]["breakdown"]["indexes"]["completed"] == 1


@pytest.mark.anyio
async def test_created_index_is_kept_and_not_recommended_again():
    svc = _service_with_slow_queries()
    composite, covering = svc.generate_index_recommendations()
    await svc.execute_index(composite.id)

    again = svc.generate_index_recommendations()
    assert [r.type for r in again] == ["covering"]
    stored = svc.get_index_recommendations()
    assert [(r.type, r.status) for r in stored] == [("composite", "completed"), ("covering", "pending")]
    assert covering.id not in {r.id for r in stored}


@pytest.mark.anyio
async def test_cancelled_index_creation_is_marked_failed():
    monitoring = PerformanceMonitoringService()
    monitoring.start()
    monitoring.track_database_query(SLOW_ORDERS, 0, 1200)
    svc = DatabaseOptimizationService(monitoring, time_scale=1.0, rng=random.Random(11))
    rec = svc.generate_index_recommendations()[0]

    task = asyncio.create_task(svc.execute_index(rec.id))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert rec.status == "failed"
    assert svc.get_status().breakdown.indexes.failed == 1
