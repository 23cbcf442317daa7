"""Stock Allocation API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from fulfillment.api import deps
from fulfillment.models.enums import AllocationStatus
from fulfillment.schemas.allocation import (
    AllocationReleaseResponse, AllocationResponse, AllocationStats
)
from fulfillment.schemas.common import ReasonRequest
from fulfillment.services.allocation_service import AllocationService

router = APIRouter()


@router.get("", response_model=List[AllocationResponse])
async def list_allocations(
    order_id: Optional[int] = Query(None, description="Filter by order"),
    status: Optional[AllocationStatus] = Query(None, description="Filter by status"),
    pagination: deps.Pagination = Depends(),
    db: Session = Depends(deps.get_db),
):
    """List stock allocations, oldest first."""
    return AllocationService(db).list_allocations(
        order_id=order_id,
        status=status.value if status else None,
        skip=pagination.skip,
        limit=pagination.page_size
    )


@router.get("/stats", response_model=AllocationStats)
async def allocation_stats(
    warehouse_id: Optional[int] = Query(None),
    sku_id: Optional[int] = Query(None),
    db: Session = Depends(deps.get_db),
):
    """Allocation counts and quantities by status."""
    return AllocationService(db).get_allocation_stats(warehouse_id=warehouse_id, sku_id=sku_id)


@router.post("/{allocation_id}/release", response_model=AllocationReleaseResponse)
async def release_allocation(
    allocation_id: int,
    payload: Optional[ReasonRequest] = None,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Release an ACTIVE allocation back to available stock."""
    reason = payload.reason if payload else None
    return AllocationService(db, actor).release_allocation(allocation_id, reason)
