"""Pick Task Schemas"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from fulfillment.models.enums import ShortPickReason


class PickTaskResponse(BaseModel):
    id: int
    task_no: str
    wave_id: int
    order_id: int
    order_line_id: int
    allocation_id: int
    sku_id: int
    inventory_id: int
    source_location_id: int
    qty_to_pick: Decimal
    qty_picked: Decimal
    qty_short: Decimal
    batch_no: Optional[str] = None
    serial_no: Optional[str] = None
    expiry_date: Optional[date] = None
    priority: int
    pick_sequence: Optional[int] = None
    is_reallocation: bool
    status: str
    assigned_to: Optional[str] = None
    short_pick_reason: Optional[str] = None
    short_pick_notes: Optional[str] = None
    notes: Optional[str] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TaskAssignRequest(BaseModel):
    task_ids: List[int] = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, max_length=100)


class TaskClaimRequest(BaseModel):
    wave_id: Optional[int] = None


class CompletePickRequest(BaseModel):
    qty_picked: Decimal
    short_pick_reason: Optional[ShortPickReason] = None
    notes: Optional[str] = None


class ReallocationResult(BaseModel):
    reallocated: bool
    reason: Optional[str] = None
    qty_short: Optional[Decimal] = None
    allocation_id: Optional[int] = None
    allocation_no: Optional[str] = None
    task_id: Optional[int] = None
    task_no: Optional[str] = None
    inventory_id: Optional[int] = None
    location_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    unresolved_qty: Optional[Decimal] = None


class CompletePickResponse(BaseModel):
    task: PickTaskResponse
    short_pick: bool
    qty_short: Decimal
    reallocation: Optional[ReallocationResult] = None
