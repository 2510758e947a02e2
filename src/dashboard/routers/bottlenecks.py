from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request

from src.dashboard.schemas.bottlenecks import (
    BottleneckStatusUpdate,
    BottleneckThresholds,
    BottleneckThresholdsUpdate,
    PerformanceBottleneck,
)
from src.dashboard.schemas.common import DataResponse, ErrorResponse, ok
from src.dashboard.security import require_user
from src.dashboard.state import get_state

router = APIRouter(
    prefix="/api/performanceBottleneck",
    tags=["Performance Bottlenecks"],
    dependencies=[Depends(require_user)],
)


@router.get(
    "/detect",
    response_model=DataResponse[List[PerformanceBottleneck]],
    summary="Detect bottlenecks",
    description="Evaluate the current performance summary against the thresholds and record what was found.",
    operation_id="detect_bottlenecks",
)
def detect(request: Request) -> DataResponse[List[PerformanceBottleneck]]:
    found = get_state(request.app).bottlenecks.detect()
    return ok(found, f"Detected {len(found)} bottleneck(s)")


@router.get(
    "",
    response_model=DataResponse[List[PerformanceBottleneck]],
    summary="List bottlenecks",
    operation_id="list_bottlenecks",
)
def list_bottlenecks(request: Request) -> DataResponse[List[PerformanceBottleneck]]:
    return ok(get_state(request.app).bottlenecks.list())


@router.get(
    "/active",
    response_model=DataResponse[List[PerformanceBottleneck]],
    summary="List active bottlenecks",
    operation_id="list_active_bottlenecks",
)
def list_active(request: Request) -> DataResponse[List[PerformanceBottleneck]]:
    return ok(get_state(request.app).bottlenecks.active())


@router.get(
    "/thresholds",
    response_model=DataResponse[BottleneckThresholds],
    summary="Get detection thresholds",
    operation_id="get_bottleneck_thresholds",
)
def get_thresholds(request: Request) -> DataResponse[BottleneckThresholds]:
    return ok(get_state(request.app).bottlenecks.get_thresholds())


@router.put(
    "/thresholds",
    response_model=DataResponse[BottleneckThresholds],
    responses={400: {"model": ErrorResponse}},
    summary="Update detection thresholds",
    description="Supplied warning/critical pairs replace the matching metrics; other metrics are kept.",
    operation_id="update_bottleneck_thresholds",
)
def update_thresholds(request: Request, payload: BottleneckThresholdsUpdate) -> DataResponse[BottleneckThresholds]:
    return ok(get_state(request.app).bottlenecks.update_thresholds(payload), "Thresholds updated")


@router.get(
    "/{bottleneck_id}",
    response_model=DataResponse[PerformanceBottleneck],
    responses={404: {"model": ErrorResponse}},
    summary="Get bottleneck",
    operation_id="get_bottleneck",
)
def get_bottleneck(
    request: Request, bottleneck_id: str = Path(..., description="Bottleneck id.")
) -> DataResponse[PerformanceBottleneck]:
    return ok(get_state(request.app).bottlenecks.get(bottleneck_id))


@router.put(
    "/{bottleneck_id}/status",
    response_model=DataResponse[PerformanceBottleneck],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update bottleneck status",
    description="Moving to resolved stamps resolvedAt and stores the notes.",
    operation_id="update_bottleneck_status",
)
def update_status(
    request: Request,
    payload: BottleneckStatusUpdate,
    bottleneck_id: str = Path(..., description="Bottleneck id."),
) -> DataResponse[PerformanceBottleneck]:
    updated = get_state(request.app).bottlenecks.update_status(bottleneck_id, payload.status, payload.notes)
    return ok(updated, "Bottleneck status updated")
