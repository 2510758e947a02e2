from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request

from src.dashboard.schemas.api_optimization import (
    ApiEndpointAnalysis,
    ApiOptimizationStatus,
    CachingStrategy,
    CodeOptimization,
    LoadBalancingStrategy,
)
from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/apiOptimization",
    tags=["API Optimization"],
    dependencies=[Depends(require_user)],
)

_EXECUTE = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post(
    "/analyze",
    response_model=DataResponse[List[ApiEndpointAnalysis]],
    summary="Analyze API endpoints",
    description="Scores live API traffic and the representative endpoint patterns, highest score first.",
    operation_id="analyze_api_endpoints",
)
def analyze(request: Request) -> DataResponse[List[ApiEndpointAnalysis]]:
    analyses = get_state(request.app).api_optimization.analyze()
    return ok(analyses, f"Analyzed {len(analyses)} endpoint(s)")


@router.post(
    "/caching-strategies",
    response_model=DataResponse[List[CachingStrategy]],
    summary="Generate caching strategies",
    operation_id="generate_api_caching_strategies",
)
def caching_strategies(request: Request) -> DataResponse[List[CachingStrategy]]:
    return ok(get_state(request.app).api_optimization.generate_caching_strategies())


@router.post(
    "/code-optimizations",
    response_model=DataResponse[List[CodeOptimization]],
    summary="Generate code optimizations",
    operation_id="generate_api_code_optimizations",
)
def code_optimizations(request: Request) -> DataResponse[List[CodeOptimization]]:
    return ok(get_state(request.app).api_optimization.generate_code_optimizations())


@router.post(
    "/load-balancing-strategies",
    response_model=DataResponse[List[LoadBalancingStrategy]],
    summary="Generate load balancing strategies",
    operation_id="generate_load_balancing_strategies",
)
def load_balancing_strategies(request: Request) -> DataResponse[List[LoadBalancingStrategy]]:
    return ok(get_state(request.app).api_optimization.generate_load_balancing_strategies())


@router.post(
    "/execute-caching/{strategy_id}",
    response_model=DataResponse[CachingStrategy],
    responses=_EXECUTE,
    summary="Implement caching strategy",
    operation_id="execute_api_caching_strategy",
)
async def execute_caching(
    request: Request, strategy_id: str = Path(..., description="Caching strategy id.")
) -> DataResponse[CachingStrategy]:
    strategy = await get_state(request.app).api_optimization.execute_caching(strategy_id)
    return ok(strategy, "Caching strategy implemented")


@router.post(
    "/execute-code/{optimization_id}",
    response_model=DataResponse[CodeOptimization],
    responses=_EXECUTE,
    summary="Implement code optimization",
    operation_id="execute_api_code_optimization",
)
async def execute_code(
    request: Request, optimization_id: str = Path(..., description="Code optimization id.")
) -> DataResponse[CodeOptimization]:
    opt = await get_state(request.app).api_optimization.execute_code(optimization_id)
    return ok(opt, "Code optimization implemented")


@router.get(
    "/status",
    response_model=DataResponse[ApiOptimizationStatus],
    summary="API optimization status",
    operation_id="get_api_optimization_status",
)
def get_status(request: Request) -> DataResponse[ApiOptimizationStatus]:
    return ok(get_state(request.app).api_optimization.get_status())


@router.get(
    "/endpoints/analyses",
    response_model=DataResponse[List[ApiEndpointAnalysis]],
    summary="List endpoint analyses",
    operation_id="list_api_endpoint_analyses",
)
def list_analyses(request: Request) -> DataResponse[List[ApiEndpointAnalysis]]:
    return ok(get_state(request.app).api_optimization.get_analyses())


@router.get(
    "/caching/strategies",
    response_model=DataResponse[List[CachingStrategy]],
    summary="List caching strategies",
    operation_id="list_api_caching_strategies",
)
def list_caching_strategies(request: Request) -> DataResponse[List[CachingStrategy]]:
    return ok(get_state(request.app).api_optimization.get_caching_strategies())


@router.get(
    "/code/optimizations",
    response_model=DataResponse[List[CodeOptimization]],
    summary="List code optimizations",
    operation_id="list_api_code_optimizations",
)
def list_code_optimizations(request: Request) -> DataResponse[List[CodeOptimization]]:
    return ok(get_state(request.app).api_optimization.get_code_optimizations())


@router.get(
    "/load-balancing/strategies",
    response_model=DataResponse[List[LoadBalancingStrategy]],
    summary="List load balancing strategies",
    operation_id="list_load_balancing_strategies",
)
def list_load_balancing_strategies(request: Request) -> DataResponse[List[LoadBalancingStrategy]]:
    return ok(get_state(request.app).api_optimization.get_load_balancing_strategies())
