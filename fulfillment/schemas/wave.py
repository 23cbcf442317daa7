"""Pick Wave Schemas"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from fulfillment.models.enums import WaveStrategy, WaveType


class WaveCreate(BaseModel):
    warehouse_id: int
    order_ids: List[int] = Field(..., min_length=1)
    wave_type: WaveType = WaveType.MANUAL
    wave_strategy: WaveStrategy = WaveStrategy.BATCH
    priority: Optional[int] = Field(None, ge=1, le=10)
    carrier: Optional[str] = Field(None, max_length=50)
    planned_start_time: Optional[datetime] = None
    notes: Optional[str] = None


class WaveResponse(BaseModel):
    id: int
    wave_no: str
    warehouse_id: int
    wave_type: str
    wave_strategy: str
    priority: int
    carrier: Optional[str] = None
    status: str
    total_orders: int
    total_lines: int
    total_units: Decimal
    picked_units: Decimal
    total_tasks: int
    completed_tasks: int
    order_ids: List[int] = []
    planned_start_time: Optional[datetime] = None
    released_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_by: Optional[str] = None
    released_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WaveReleaseResponse(BaseModel):
    wave: WaveResponse
    tasks_created: int


class WaveStats(BaseModel):
    total_waves: int
    total_tasks: int
    completed_tasks: int
    total_units: Decimal
    picked_units: Decimal
    by_status: Dict[str, int] = Field(default_factory=dict)
