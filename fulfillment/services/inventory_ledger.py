"""
Inventory Ledger Service
Candidate selection, row locking and quantity mutations on inventory records.
Every mutation that changes physical stock writes an InventoryTransaction.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from fulfillment.core.exceptions import NotFoundError, ValidationError
from fulfillment.models.enums import (
    AllocationRule, InventoryStatus, ShortPickReason, TransactionType
)
from fulfillment.models.inventory import InventoryRecord, InventoryTransaction
from fulfillment.models.wave import PickTask
from .quantities import ZERO, to_qty
from .sequence_service import SequenceGenerator, TRANSACTION_PREFIX

logger = logging.getLogger(__name__)

DAMAGED_BUCKET = "damaged"
HOLD_BUCKET = "hold"


def short_bucket(reason: Optional[str]) -> str:
    """Where the unpicked units of a short pick are parked until a cycle count resolves them"""
    if reason == ShortPickReason.DAMAGED_INVENTORY.value:
        return DAMAGED_BUCKET
    return HOLD_BUCKET


class InventoryLedger:
    """
    Reservation bookkeeping for inventory records.
    Callers are expected to hold the record's row lock (see lock/find_candidates).
    """

    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor
        self.sequence = SequenceGenerator(db)

    def find_candidates(
        self,
        warehouse_id: int,
        sku_id: int,
        rule: str,
        exclude_ids: Iterable[int] = (),
        lock: bool = True,
        limit: Optional[int] = None
    ) -> List[InventoryRecord]:
        """
        Allocatable records for a SKU in rule order.

        FIFO: received_at ascending
        FEFO: expiry_date ascending, records without an expiry are skipped
        LIFO: received_at descending
        Ties break on record id.
        """
        query = self.db.query(InventoryRecord).filter(
            InventoryRecord.warehouse_id == warehouse_id,
            InventoryRecord.sku_id == sku_id,
            InventoryRecord.status == InventoryStatus.HEALTHY.value,
            InventoryRecord.available_qty > 0
        )

        exclude_ids = [i for i in exclude_ids if i is not None]
        if exclude_ids:
            query = query.filter(InventoryRecord.id.notin_(exclude_ids))

        if rule == AllocationRule.FIFO.value:
            query = query.order_by(InventoryRecord.received_at.asc(), InventoryRecord.id.asc())
        elif rule == AllocationRule.FEFO.value:
            query = query.filter(InventoryRecord.expiry_date.isnot(None)).order_by(
                InventoryRecord.expiry_date.asc(), InventoryRecord.id.asc()
            )
        elif rule == AllocationRule.LIFO.value:
            query = query.order_by(InventoryRecord.received_at.desc(), InventoryRecord.id.asc())
        else:
            raise ValidationError(f"Unknown allocation rule: {rule}", rule=rule)

        if limit:
            query = query.limit(limit)
        if lock:
            query = query.with_for_update()

        return query.all()

    def lock(self, inventory_id: int) -> InventoryRecord:
        record = self.db.query(InventoryRecord).filter(
            InventoryRecord.id == inventory_id
        ).with_for_update().first()

        if not record:
            raise NotFoundError(f"Inventory record {inventory_id} not found", inventory_id=inventory_id)
        return record

    def reserve(self, record: InventoryRecord, qty: Decimal):
        """Add a reservation; qty must not exceed the record's available quantity"""
        qty = to_qty(qty)
        if qty <= 0:
            raise ValidationError("Reservation quantity must be positive")
        if qty > to_qty(record.available_qty):
            raise ValidationError(
                f"Cannot reserve {qty} from inventory {record.id}, only {record.available_qty} available",
                inventory_id=record.id
            )
        record.allocated_qty = to_qty(record.allocated_qty) + qty

    def unreserve(self, record: InventoryRecord, qty: Decimal):
        """Return reserved quantity to available stock"""
        qty = to_qty(qty)
        record.allocated_qty = max(ZERO, to_qty(record.allocated_qty) - qty)

    def pick(self, record: InventoryRecord, qty: Decimal, task: PickTask) -> Optional[InventoryTransaction]:
        """Remove picked units from stock and from the reservation"""
        qty = to_qty(qty)
        if qty <= 0:
            return None

        record.on_hand_qty = to_qty(record.on_hand_qty) - qty
        record.allocated_qty = max(ZERO, to_qty(record.allocated_qty) - qty)

        return self._record_movement(
            record, TransactionType.PICK.value, qty, task,
            notes=f"Picked for task {task.task_no}"
        )

    def short(
        self,
        record: InventoryRecord,
        qty: Decimal,
        reason: Optional[str],
        task: PickTask
    ) -> Optional[InventoryTransaction]:
        """
        Close the unpicked part of a reservation.

        The units are moved out of allocated into damaged (DAMAGED_INVENTORY)
        or hold (any other reason) so they are not offered to later allocations.
        """
        qty = to_qty(qty)
        if qty <= 0:
            return None

        record.allocated_qty = max(ZERO, to_qty(record.allocated_qty) - qty)
        if short_bucket(reason) == DAMAGED_BUCKET:
            record.damaged_qty = to_qty(record.damaged_qty) + qty
        else:
            record.hold_qty = to_qty(record.hold_qty) + qty

        logger.info(
            f"Short pick of {qty} on inventory {record.id} ({reason or 'no reason'}) "
            f"for task {task.task_no}"
        )
        return self._record_movement(
            record, TransactionType.SHORT_PICK.value, qty, task,
            notes=f"Short pick on task {task.task_no}: {reason or 'unspecified'}"
        )

    def _record_movement(
        self,
        record: InventoryRecord,
        transaction_type: str,
        qty: Decimal,
        task: PickTask,
        notes: Optional[str] = None
    ) -> InventoryTransaction:
        movement = InventoryTransaction(
            transaction_no=self.sequence.next_code(TRANSACTION_PREFIX),
            warehouse_id=record.warehouse_id,
            sku_id=record.sku_id,
            inventory_id=record.id,
            transaction_type=transaction_type,
            from_location_id=record.location_id,
            quantity=qty,
            batch_no=record.batch_no,
            serial_no=record.serial_no,
            reference_type="PICK_TASK",
            reference_id=task.id,
            notes=notes,
            performed_by=self.actor
        )
        self.db.add(movement)
        return movement
