"""Stock Allocation Schemas"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional
from datetime import date, datetime
from decimal import Decimal


class AllocationResponse(BaseModel):
    id: int
    allocation_no: str
    order_id: int
    order_line_id: int
    sku_id: int
    inventory_id: int
    location_id: int
    warehouse_id: int
    allocated_qty: Decimal
    consumed_qty: Decimal
    remaining_qty: Decimal
    batch_no: Optional[str] = None
    serial_no: Optional[str] = None
    expiry_date: Optional[date] = None
    allocation_rule: str
    status: str
    allocated_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    released_reason: Optional[str] = None
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AllocationReleaseResponse(BaseModel):
    allocation_id: int
    allocation_no: str
    status: str
    released_qty: Decimal


class AllocationStatusStats(BaseModel):
    count: int
    allocated_qty: Decimal
    consumed_qty: Decimal
    remaining_qty: Decimal


class AllocationStats(BaseModel):
    total_allocations: int
    by_status: Dict[str, AllocationStatusStats] = Field(default_factory=dict)
