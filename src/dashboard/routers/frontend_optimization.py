from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request

from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.schemas.frontend_optimization import (
    AssetOptimization,
    BundleOptimization,
    FrontendOptimizationStatus,
    FrontendPerformanceAnalysis,
    RenderingOptimization,
)
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/frontendOptimization",
    tags=["Frontend Optimization"],
    dependencies=[Depends(require_user)],
)

_EXECUTE = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post(
    "/analyze",
    response_model=DataResponse[List[FrontendPerformanceAnalysis]],
    summary="Analyze frontend pages",
    operation_id="analyze_frontend_pages",
)
def analyze(request: Request) -> DataResponse[List[FrontendPerformanceAnalysis]]:
    analyses = get_state(request.app).frontend_optimization.analyze()
    return ok(analyses, f"Analyzed {len(analyses)} page(s)")


@router.post(
    "/bundle-optimizations",
    response_model=DataResponse[List[BundleOptimization]],
    summary="Generate bundle optimizations",
    operation_id="generate_bundle_optimizations",
)
def bundle_optimizations(request: Request) -> DataResponse[List[BundleOptimization]]:
    return ok(get_state(request.app).frontend_optimization.generate_bundle_optimizations())


@router.post(
    "/asset-optimizations",
    response_model=DataResponse[List[AssetOptimization]],
    summary="Generate asset optimizations",
    operation_id="generate_asset_optimizations",
)
def asset_optimizations(request: Request) -> DataResponse[List[AssetOptimization]]:
    return ok(get_state(request.app).frontend_optimization.generate_asset_optimizations())


@router.post(
    "/rendering-optimizations",
    response_model=DataResponse[List[RenderingOptimization]],
    summary="Generate rendering optimizations",
    operation_id="generate_rendering_optimizations",
)
def rendering_optimizations(request: Request) -> DataResponse[List[RenderingOptimization]]:
    return ok(get_state(request.app).frontend_optimization.generate_rendering_optimizations())


@router.post(
    "/execute-bundle/{optimization_id}",
    response_model=DataResponse[BundleOptimization],
    responses=_EXECUTE,
    summary="Implement bundle optimization",
    operation_id="execute_bundle_optimization",
)
async def execute_bundle(
    request: Request, optimization_id: str = Path(..., description="Bundle optimization id.")
) -> DataResponse[BundleOptimization]:
    item = await get_state(request.app).frontend_optimization.execute_bundle(optimization_id)
    return ok(item, "Bundle optimization implemented")


@router.post(
    "/execute-asset/{optimization_id}",
    response_model=DataResponse[AssetOptimization],
    responses=_EXECUTE,
    summary="Implement asset optimization",
    operation_id="execute_asset_optimization",
)
async def execute_asset(
    request: Request, optimization_id: str = Path(..., description="Asset optimization id.")
) -> DataResponse[AssetOptimization]:
    item = await get_state(request.app).frontend_optimization.execute_asset(optimization_id)
    return ok(item, "Asset optimization implemented")


@router.post(
    "/execute-rendering/{optimization_id}",
    response_model=DataResponse[RenderingOptimization],
    responses=_EXECUTE,
    summary="Implement rendering optimization",
    operation_id="execute_rendering_optimization",
)
async def execute_rendering(
    request: Request, optimization_id: str = Path(..., description="Rendering optimization id.")
) -> DataResponse[RenderingOptimization]:
    item = await get_state(request.app).frontend_optimization.execute_rendering(optimization_id)
    return ok(item, "Rendering optimization implemented")


@router.get(
    "/status",
    response_model=DataResponse[FrontendOptimizationStatus],
    summary="Frontend optimization status",
    operation_id="get_frontend_optimization_status",
)
def get_status(request: Request) -> DataResponse[FrontendOptimizationStatus]:
    return ok(get_state(request.app).frontend_optimization.get_status())


@router.get(
    "/performance/analyses",
    response_model=DataResponse[List[FrontendPerformanceAnalysis]],
    summary="List page analyses",
    operation_id="list_frontend_analyses",
)
def list_analyses(request: Request) -> DataResponse[List[FrontendPerformanceAnalysis]]:
    return ok(get_state(request.app).frontend_optimization.get_analyses())


@router.get(
    "/bundle/optimizations",
    response_model=DataResponse[List[BundleOptimization]],
    summary="List bundle optimizations",
    operation_id="list_bundle_optimizations",
)
def list_bundle_optimizations(request: Request) -> DataResponse[List[BundleOptimization]]:
    return ok(get_state(request.app).frontend_optimization.get_bundle_optimizations())


@router.get(
    "/asset/optimizations",
    response_model=DataResponse[List[AssetOptimization]],
    summary="List asset optimizations",
    operation_id="list_asset_optimizations",
)
def list_asset_optimizations(request: Request) -> DataResponse[List[AssetOptimization]]:
    return ok(get_state(request.app).frontend_optimization.get_asset_optimizations())


@router.get(
    "/rendering/optimizations",
    response_model=DataResponse[List[RenderingOptimization]],
    summary="List rendering optimizations",
    operation_id="list_rendering_optimizations",
)
def list_rendering_optimizations(request: Request) -> DataResponse[List[RenderingOptimization]]:
    return ok(get_state(request.app).frontend_optimization.get_rendering_optimizations())
