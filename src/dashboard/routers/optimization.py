from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request

from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.schemas.optimization import OptimizationAction, OptimizationResult, OptimizationStatus
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/performanceOptimization",
    tags=["Performance Optimization"],
    dependencies=[Depends(require_user)],
)


@router.get(
    "/recommendations",
    response_model=DataResponse[List[OptimizationAction]],
    summary="Generate optimization recommendations",
    description=(
        "Detect bottlenecks, map each to optimization actions and add the proactive actions. "
        "Sorted by priority, then estimated impact. Replaces earlier pending actions."
    ),
    operation_id="generate_optimization_recommendations",
)
def recommendations(request: Request) -> DataResponse[List[OptimizationAction]]:
    return ok(get_state(request.app).optimization.generate_recommendations())


@router.post(
    "/execute/{action_id}",
    response_model=DataResponse[OptimizationResult],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Execute optimization action",
    description="Runs a pending action and reports the before/after metrics delta.",
    operation_id="execute_optimization_action",
)
async def execute(
    request: Request, action_id: str = Path(..., description="Action id from /recommendations.")
) -> DataResponse[OptimizationResult]:
    result = await get_state(request.app).optimization.execute(action_id)
    return ok(result, "Optimization action executed")


@router.get(
    "/status",
    response_model=DataResponse[OptimizationStatus],
    summary="Optimization status",
    operation_id="get_optimization_status",
)
def get_status(request: Request) -> DataResponse[OptimizationStatus]:
    return ok(get_state(request.app).optimization.get_status())


@router.get(
    "/actions",
    response_model=DataResponse[List[OptimizationAction]],
    summary="List optimization actions",
    operation_id="list_optimization_actions",
)
def list_actions(request: Request) -> DataResponse[List[OptimizationAction]]:
    return ok(get_state(request.app).optimization.actions())


@router.get(
    "/actions/{action_id}",
    response_model=DataResponse[OptimizationAction],
    responses={404: {"model": ErrorResponse}},
    summary="Get optimization action",
    operation_id="get_optimization_action",
)
def get_action(request: Request, action_id: str = Path(..., description="Action id.")) -> DataResponse[OptimizationAction]:
    return ok(get_state(request.app).optimization.action(action_id))


@router.get(
    "/results",
    response_model=DataResponse[List[OptimizationResult]],
    summary="List optimization results",
    operation_id="list_optimization_results",
)
def list_results(request: Request) -> DataResponse[List[OptimizationResult]]:
    return ok(get_state(request.app).optimization.results())
