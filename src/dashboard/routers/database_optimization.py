from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request

from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.schemas.database_optimization import (
    CacheStrategy,
    DatabaseOptimizationStatus,
    IndexRecommendation,
    QueryAnalysis,
    QueryOptimization,
)
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/databaseOptimization",
    tags=["Database Optimization"],
    dependencies=[Depends(require_user)],
)


@router.post(
    "/analyze",
    response_model=DataResponse[List[QueryAnalysis]],
    summary="Analyze slow queries",
    description="Groups tracked slow queries by text and scores them; falls back to sample queries when none are slow.",
    operation_id="analyze_database_queries",
)
def analyze(request: Request) -> DataResponse[List[QueryAnalysis]]:
    analyses = get_state(request.app).database_optimization.analyze()
    return ok(analyses, f"Analyzed {len(analyses)} quer{'y' if len(analyses) == 1 else 'ies'}")


@router.post(
    "/index-recommendations",
    response_model=DataResponse[List[IndexRecommendation]],
    summary="Generate index recommendations",
    operation_id="generate_index_recommendations",
)
def index_recommendations(request: Request) -> DataResponse[List[IndexRecommendation]]:
    return ok(get_state(request.app).database_optimization.generate_index_recommendations())


@router.post(
    "/query-optimizations",
    response_model=DataResponse[List[QueryOptimization]],
    summary="Generate query rewrites",
    operation_id="generate_query_optimizations",
)
def query_optimizations(request: Request) -> DataResponse[List[QueryOptimization]]:
    return ok(get_state(request.app).database_optimization.generate_query_optimizations())


@router.post(
    "/cache-strategies",
    response_model=DataResponse[List[CacheStrategy]],
    summary="Generate database cache strategies",
    operation_id="generate_database_cache_strategies",
)
def cache_strategies(request: Request) -> DataResponse[List[CacheStrategy]]:
    return ok(get_state(request.app).database_optimization.generate_cache_strategies())


@router.post(
    "/execute-index/{index_id}",
    response_model=DataResponse[IndexRecommendation],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Apply index recommendation",
    operation_id="execute_index_recommendation",
)
async def execute_index(
    request: Request, index_id: str = Path(..., description="Index recommendation id.")
) -> DataResponse[IndexRecommendation]:
    rec = await get_state(request.app).database_optimization.execute_index(index_id)
    return ok(rec, "Index recommendation applied")


@router.get(
    "/status",
    response_model=DataResponse[DatabaseOptimizationStatus],
    summary="Database optimization status",
    operation_id="get_database_optimization_status",
)
def get_status(request: Request) -> DataResponse[DatabaseOptimizationStatus]:
    return ok(get_state(request.app).database_optimization.get_status())


@router.get(
    "/queries/analyses",
    response_model=DataResponse[List[QueryAnalysis]],
    summary="List query analyses",
    operation_id="list_query_analyses",
)
def list_analyses(request: Request) -> DataResponse[List[QueryAnalysis]]:
    return ok(get_state(request.app).database_optimization.get_analyses())


@router.get(
    "/indexes/recommendations",
    response_model=DataResponse[List[IndexRecommendation]],
    summary="List index recommendations",
    operation_id="list_index_recommendations",
)
def list_index_recommendations(request: Request) -> DataResponse[List[IndexRecommendation]]:
    return ok(get_state(request.app).database_optimization.get_index_recommendations())


@router.get(
    "/queries/optimizations",
    response_model=DataResponse[List[QueryOptimization]],
    summary="List query optimizations",
    operation_id="list_query_optimizations",
)
def list_query_optimizations(request: Request) -> DataResponse[List[QueryOptimization]]:
    return ok(get_state(request.app).database_optimization.get_query_optimizations())


@router.get(
    "/cache/strategies",
    response_model=DataResponse[List[CacheStrategy]],
    summary="List database cache strategies",
    operation_id="list_database_cache_strategies",
)
def list_cache_strategies(request: Request) -> DataResponse[List[CacheStrategy]]:
    return ok(get_state(request.app).database_optimization.get_cache_strategies())
