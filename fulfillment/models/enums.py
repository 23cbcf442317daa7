"""
Fulfillment status and code enumerations
Stored as their string values in String columns
"""
from enum import Enum


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    ALLOCATED = "ALLOCATED"
    PARTIAL_ALLOCATION = "PARTIAL_ALLOCATION"
    PICKING = "PICKING"
    PICKED = "PICKED"
    PACKING = "PACKING"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class AllocationOutcome(str, Enum):
    """Order-level allocation sub-status"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    FULL = "FULL"
    FAILED = "FAILED"


class OrderPriority(str, Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class LineStatus(str, Enum):
    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PARTIAL_ALLOCATION = "PARTIAL_ALLOCATION"
    PICKING = "PICKING"
    PICKED = "PICKED"
    SHORT = "SHORT"
    CANCELLED = "CANCELLED"


class AllocationRule(str, Enum):
    FIFO = "FIFO"
    FEFO = "FEFO"
    LIFO = "LIFO"


class AllocationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


class InventoryStatus(str, Enum):
    HEALTHY = "HEALTHY"
    LOW_STOCK = "LOW_STOCK"
    EXPIRY_RISK = "EXPIRY_RISK"
    QC_HOLD = "QC_HOLD"
    DAMAGED = "DAMAGED"


class TransactionType(str, Enum):
    PICK = "PICK"
    SHORT_PICK = "SHORT_PICK"
    ADJUSTMENT = "ADJUSTMENT"
    MOVE = "MOVE"
    HOLD = "HOLD"
    RELEASE = "RELEASE"
    DAMAGE = "DAMAGE"


class WaveStatus(str, Enum):
    PENDING = "PENDING"
    RELEASED = "RELEASED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class WaveType(str, Enum):
    TIME_BASED = "TIME_BASED"
    CARRIER_BASED = "CARRIER_BASED"
    ZONE_BASED = "ZONE_BASED"
    PRIORITY_BASED = "PRIORITY_BASED"
    MANUAL = "MANUAL"


class WaveStrategy(str, Enum):
    BATCH = "BATCH"
    ZONE_PICKING = "ZONE_PICKING"
    CLUSTER_PICKING = "CLUSTER_PICKING"
    WAVE_PICKING = "WAVE_PICKING"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SHORT_PICK = "SHORT_PICK"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ShortPickReason(str, Enum):
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DAMAGED_INVENTORY = "DAMAGED_INVENTORY"
    LOCATION_EMPTY = "LOCATION_EMPTY"
    WRONG_BATCH = "WRONG_BATCH"
    EXPIRED = "EXPIRED"
    OTHER = "OTHER"


ACTIVE_WAVE_STATUSES = (
    WaveStatus.PENDING.value,
    WaveStatus.RELEASED.value,
    WaveStatus.IN_PROGRESS.value,
)

OPEN_TASK_STATUSES = (
    TaskStatus.PENDING.value,
    TaskStatus.ASSIGNED.value,
    TaskStatus.IN_PROGRESS.value,
)

DONE_TASK_STATUSES = (
    TaskStatus.COMPLETED.value,
    TaskStatus.SHORT_PICK.value,
)


def check_in(column: str, enum_cls) -> str:
    """Build a CHECK constraint body restricting a column to an enum's values"""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"
