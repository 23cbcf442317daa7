"""Sales Order fulfillment API endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from fulfillment.api import deps
from fulfillment.schemas.common import ReasonRequest
from fulfillment.schemas.orders import (
    OrderAllocationResult, OrderCancelResponse, OrderResponse, ReleaseAllocationsResponse
)
from fulfillment.services.allocation_service import AllocationService
from fulfillment.services.order_service import OrderService

router = APIRouter()


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(deps.get_db),
):
    """Get an order with its lines and fulfillment totals."""
    return OrderService(db).get_order(order_id)


@router.post("/{order_id}/confirm", response_model=OrderAllocationResult)
async def confirm_order(
    order_id: int,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """
    Confirm a DRAFT order.

    The order is allocated immediately; the response carries the per-line
    allocation result.
    """
    return OrderService(db, actor).confirm_order(order_id)


@router.post("/{order_id}/cancel", response_model=OrderCancelResponse)
async def cancel_order(
    order_id: int,
    payload: Optional[ReasonRequest] = None,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Cancel an order that is not in an active wave and release its stock."""
    reason = payload.reason if payload else None
    return OrderService(db, actor).cancel_order(order_id, reason)


@router.post("/{order_id}/allocate", response_model=OrderAllocationResult)
async def allocate_order(
    order_id: int,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Allocate (or top up the allocation of) a confirmed order."""
    return AllocationService(db, actor).allocate_order(order_id)


@router.post("/{order_id}/release-allocations", response_model=ReleaseAllocationsResponse)
async def release_order_allocations(
    order_id: int,
    payload: Optional[ReasonRequest] = None,
    db: Session = Depends(deps.get_db),
    actor: Optional[str] = Depends(deps.get_actor),
):
    """Release every active allocation of an order back to stock."""
    reason = payload.reason if payload else None
    return AllocationService(db, actor).release_order_allocations(order_id, reason)
