"""Pick Task API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from fulfillment.api import deps
from fulfillment.models.enums import TaskStatus
from fulfillment.schemas.common import PaginatedResponse
from fulfillment.schemas.picking import (
    CompletePickRequest, CompletePickResponse, PickTaskResponse,
    TaskAssignRequest, TaskClaimRequest
)
from fulfillment.services.picking_service import PickingService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[PickTaskResponse])
async def list_tasks(
    wave_id: Optional[int] = Query(None),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    assigned_to: Optional[str] = Query(None),
    pagination: deps.Pagination = Depends(),
    db: Session = Depends(deps.get_db),
):
    """List pick tasks in wave and pick sequence order."""
    tasks, total = PickingService(db).list_tasks(
        wave_id=wave_id,
        status=task_status.value if task_status else None,
        assigned_to=assigned_to,
        skip=pagination.skip,
        limit=pagination.page_size
    )
    return PaginatedResponse[PickTaskResponse].build(
        items=[PickTaskResponse.model_validate(t) for t in tasks],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size
    )


@router.get("/my-tasks", response_model=List[PickTaskResponse])
async def my_tasks(
    db: Session = Depends(deps.get_db),
    actor: str = Depends(deps.require_actor),
):
    """Open tasks assigned to the calling picker."""
    return PickingService(db, actor).get_my_tasks(actor)


@router.post("/assign", response_model=List[PickTaskResponse])
async def assign_tasks(
    request: TaskAssignRequest,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Assign PENDING tasks to a picker."""
    return PickingService(db, actor).assign_tasks(request.task_ids, request.user_id)


@router.post("/claim", response_model=PickTaskResponse)
async def claim_task(
    request: Optional[TaskClaimRequest] = None,
    db: Session = Depends(deps.get_db),
    actor: str = Depends(deps.require_actor),
):
    """Claim the next unassigned task on the pick path."""
    wave_id = request.wave_id if request else None
    return PickingService(db, actor).claim_next_task(actor, wave_id=wave_id)


@router.get("/{task_id}", response_model=PickTaskResponse)
async def get_task(
    task_id: int,
    db: Session = Depends(deps.get_db),
):
    return PickingService(db).get_task(task_id)


@router.post("/{task_id}/start", response_model=PickTaskResponse)
async def start_picking(
    task_id: int,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Start an ASSIGNED task."""
    return PickingService(db, actor).start_picking(task_id)


@router.post("/{task_id}/complete", response_model=CompletePickResponse)
async def complete_picking(
    task_id: int,
    request: CompletePickRequest,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """
    Confirm the picked quantity.

    A quantity below qty_to_pick records a short pick; replacement stock is
    reserved automatically unless the reason is DAMAGED_INVENTORY or EXPIRED.
    """
    result = PickingService(db, actor).complete_picking(
        task_id,
        request.qty_picked,
        short_pick_reason=request.short_pick_reason.value if request.short_pick_reason else None,
        notes=request.notes
    )
    return CompletePickResponse(
        task=PickTaskResponse.model_validate(result['task']),
        short_pick=result['short_pick'],
        qty_short=result['qty_short'],
        reallocation=result['reallocation']
    )
