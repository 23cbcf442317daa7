"""Sales Order and Allocation Result Schemas"""

from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class OrderLineResponse(BaseModel):
    id: int
    line_no: int
    sku_id: int
    ordered_qty: Decimal
    allocated_qty: Decimal
    picked_qty: Decimal
    short_qty: Decimal
    allocation_rule: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class OrderSummary(BaseModel):
    id: int
    order_no: str
    warehouse_id: int
    client_id: Optional[int] = None
    customer_name: Optional[str] = None
    priority: str
    carrier: Optional[str] = None
    sla_due_date: Optional[datetime] = None
    status: str
    allocation_status: str
    total_lines: int
    total_ordered_units: Decimal
    total_allocated_units: Decimal
    total_picked_units: Decimal
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(OrderSummary):
    confirmed_at: Optional[datetime] = None
    allocated_at: Optional[datetime] = None
    picked_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    lines: List[OrderLineResponse] = []


class AllocationPlacement(BaseModel):
    allocation_id: int
    allocation_no: str
    inventory_id: int
    location_id: int
    quantity: Decimal


class LineAllocationResult(BaseModel):
    line_id: int
    sku_id: int
    ordered_qty: Decimal
    allocated_qty: Decimal
    newly_allocated: Decimal
    short_qty: Decimal
    status: str
    allocations: List[AllocationPlacement] = []


class OrderAllocationResult(BaseModel):
    order_id: int
    order_no: str
    status: str
    allocation_status: str
    fully_allocated: bool
    partially_allocated: bool
    no_allocation: bool
    lines: List[LineAllocationResult] = []


class OrderCancelResponse(BaseModel):
    order_id: int
    order_no: str
    status: str
    released_count: int
    total_qty_released: Decimal


class ReleaseAllocationsResponse(BaseModel):
    order_id: int
    released_count: int
    total_qty_released: Decimal
