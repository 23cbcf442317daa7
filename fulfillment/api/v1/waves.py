"""Pick Wave API endpoints"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from fulfillment.api import deps
from fulfillment.models.enums import OrderPriority, WaveStatus
from fulfillment.schemas.common import PaginatedResponse, ReasonRequest
from fulfillment.schemas.orders import OrderSummary
from fulfillment.schemas.picking import PickTaskResponse
from fulfillment.schemas.wave import WaveCreate, WaveReleaseResponse, WaveResponse, WaveStats
from fulfillment.services.picking_service import PickingService
from fulfillment.services.wave_service import WaveService

router = APIRouter()


@router.get("/eligible-orders", response_model=List[OrderSummary])
async def eligible_orders(
    warehouse_id: int = Query(..., description="Warehouse to plan"),
    priority: Optional[OrderPriority] = Query(None),
    carrier: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(deps.get_db),
):
    """
    Orders ready for a wave.

    ALLOCATED or PARTIAL_ALLOCATION orders not in an active wave, most urgent
    first, then by SLA due date and age.
    """
    return WaveService(db).get_eligible_orders(
        warehouse_id,
        priority=priority.value if priority else None,
        carrier=carrier,
        limit=limit
    )


@router.post("", response_model=WaveResponse, status_code=status.HTTP_201_CREATED)
async def create_wave(
    wave_in: WaveCreate,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Create a PENDING wave from a set of eligible orders."""
    return WaveService(db, actor).create_wave(
        warehouse_id=wave_in.warehouse_id,
        order_ids=wave_in.order_ids,
        wave_type=wave_in.wave_type.value,
        wave_strategy=wave_in.wave_strategy.value,
        priority=wave_in.priority,
        carrier=wave_in.carrier,
        planned_start_time=wave_in.planned_start_time,
        notes=wave_in.notes
    )


@router.get("", response_model=PaginatedResponse[WaveResponse])
async def list_waves(
    warehouse_id: Optional[int] = Query(None),
    wave_status: Optional[WaveStatus] = Query(None, alias="status"),
    pagination: deps.Pagination = Depends(),
    db: Session = Depends(deps.get_db),
):
    """List waves, newest first."""
    waves, total = WaveService(db).list_waves(
        warehouse_id=warehouse_id,
        status=wave_status.value if wave_status else None,
        skip=pagination.skip,
        limit=pagination.page_size
    )
    return PaginatedResponse[WaveResponse].build(
        items=[WaveResponse.model_validate(w) for w in waves],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size
    )


@router.get("/stats", response_model=WaveStats)
async def wave_stats(
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(deps.get_db),
):
    """Wave counts by status and overall pick progress."""
    return WaveService(db).get_wave_stats(warehouse_id)


@router.get("/{wave_id}", response_model=WaveResponse)
async def get_wave(
    wave_id: int,
    db: Session = Depends(deps.get_db),
):
    return WaveService(db).get_wave(wave_id)


@router.get("/{wave_id}/tasks", response_model=List[PickTaskResponse])
async def get_wave_tasks(
    wave_id: int,
    db: Session = Depends(deps.get_db),
):
    """Tasks of a wave in pick path order."""
    WaveService(db).get_wave(wave_id)
    tasks, _ = PickingService(db).list_tasks(wave_id=wave_id, limit=None)
    return tasks


@router.post("/{wave_id}/release", response_model=WaveReleaseResponse)
async def release_wave(
    wave_id: int,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Generate and sequence pick tasks for a PENDING wave."""
    result = WaveService(db, actor).release_wave(wave_id)
    return WaveReleaseResponse(
        wave=WaveResponse.model_validate(result['wave']),
        tasks_created=result['tasks_created']
    )


@router.post("/{wave_id}/cancel", response_model=WaveResponse)
async def cancel_wave(
    wave_id: int,
    payload: Optional[ReasonRequest] = None,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Cancel a PENDING or RELEASED wave; its orders become eligible again."""
    reason = payload.reason if payload else None
    return WaveService(db, actor).cancel_wave(wave_id, reason)
