"""
Stock Allocation Service
Reserves inventory against sales order lines (FIFO, FEFO, LIFO) and
releases reservations back to stock
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fulfillment.core.config import settings
from fulfillment.core.database import unit_of_work
from fulfillment.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from fulfillment.models.allocation import StockAllocation
from fulfillment.models.enums import (
    ACTIVE_WAVE_STATUSES, OPEN_TASK_STATUSES,
    AllocationOutcome, AllocationRule, AllocationStatus, LineStatus, OrderStatus
)
from fulfillment.models.inventory import InventoryRecord
from fulfillment.models.orders import SalesOrder, SalesOrderLine
from fulfillment.models.wave import PickTask, PickWave, PickWaveOrder
from . import events
from .inventory_ledger import InventoryLedger
from .quantities import ZERO, to_qty, utcnow
from .sequence_service import SequenceGenerator, ALLOCATION_PREFIX

logger = logging.getLogger(__name__)

ALLOCATABLE_ORDER_STATUSES = (
    OrderStatus.CONFIRMED.value,
    OrderStatus.PARTIAL_ALLOCATION.value,
    OrderStatus.ALLOCATED.value,
)

PRE_PICK_LINE_STATUSES = (
    LineStatus.PENDING.value,
    LineStatus.ALLOCATED.value,
    LineStatus.PARTIAL_ALLOCATION.value,
)


def line_allocation_status(line: SalesOrderLine) -> str:
    allocated = to_qty(line.allocated_qty)
    if allocated <= 0:
        return LineStatus.PENDING.value
    if allocated >= to_qty(line.ordered_qty):
        return LineStatus.ALLOCATED.value
    return LineStatus.PARTIAL_ALLOCATION.value


class AllocationService:
    """
    Stock allocation engine
    Greedy first-fit over rule-ordered, row-locked inventory candidates
    """

    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor
        self.ledger = InventoryLedger(db, actor)
        self.sequence = SequenceGenerator(db)

    def allocate_order(self, order_id: int) -> Dict:
        """
        Allocate stock for every open line of an order.

        Lines already covered by active allocations are skipped, so running
        this twice without inventory changes allocates nothing the second time.
        A line that cannot be covered stays under-allocated; that is reported,
        not raised.
        """
        try:
            with unit_of_work(self.db):
                order = self._lock_order(order_id)

                if order.status not in ALLOCATABLE_ORDER_STATUSES:
                    raise InvalidStateError(
                        f"Cannot allocate order {order.order_no} with status {order.status}",
                        order_id=order.id, status=order.status
                    )

                lines = self._lock_lines(order.id)
                line_results = []
                for line in lines:
                    if line.status == LineStatus.CANCELLED.value:
                        continue
                    line_results.append(self._allocate_line(order, line))

                open_lines = [l for l in lines if l.status != LineStatus.CANCELLED.value]
                fully_allocated = bool(open_lines) and all(
                    to_qty(l.allocated_qty) >= to_qty(l.ordered_qty) for l in open_lines
                )
                no_allocation = all(to_qty(l.allocated_qty) <= 0 for l in open_lines)
                partially_allocated = not fully_allocated and not no_allocation

                self._apply_order_allocation_status(order, fully_allocated, no_allocation)
                self._recompute_order_totals(order)

                newly_allocated = sum((r['newly_allocated'] for r in line_results), ZERO)
                if newly_allocated > 0:
                    events.publish_event(self.db, events.ORDER_ALLOCATED, {
                        'order_id': order.id,
                        'order_no': order.order_no,
                        'allocation_status': order.allocation_status,
                        'allocated_units': str(newly_allocated),
                    })

                logger.info(
                    f"Allocated order {order.order_no}: status={order.status} "
                    f"allocation_status={order.allocation_status} new_units={newly_allocated}"
                )

                return {
                    'order_id': order.id,
                    'order_no': order.order_no,
                    'status': order.status,
                    'allocation_status': order.allocation_status,
                    'fully_allocated': fully_allocated,
                    'partially_allocated': partially_allocated,
                    'no_allocation': no_allocation,
                    'lines': line_results,
                }

        except Exception as e:
            logger.error(f"Error allocating order {order_id}: {e}")
            raise

    def _allocate_line(self, order: SalesOrder, line: SalesOrderLine) -> Dict:
        """Allocate stock for an individual order line"""
        rule = (line.allocation_rule or settings.DEFAULT_ALLOCATION_RULE).upper()
        if rule not in AllocationRule.__members__:
            raise ValidationError(
                f"Unknown allocation rule {line.allocation_rule} on line {line.id}",
                line_id=line.id, rule=line.allocation_rule
            )

        ordered = to_qty(line.ordered_qty)
        remaining = ordered - self.active_allocated_qty(line.id)
        allocations = []
        total_allocated = ZERO

        if remaining > 0:
            candidates = self.ledger.find_candidates(order.warehouse_id, line.sku_id, rule)

            for record in candidates:
                if remaining <= 0:
                    break

                available = to_qty(record.available_qty)
                if available <= 0:
                    continue

                alloc_qty = min(remaining, available)
                allocation = self.reserve_inventory(order, line, record, alloc_qty, rule)

                allocations.append({
                    'allocation_id': allocation.id,
                    'allocation_no': allocation.allocation_no,
                    'inventory_id': record.id,
                    'location_id': record.location_id,
                    'quantity': alloc_qty,
                })
                remaining -= alloc_qty
                total_allocated += alloc_qty

            if remaining > 0:
                logger.warning(
                    f"Line {line.id} (SKU {line.sku_id}) short by {remaining} after {rule} allocation"
                )

        if line.status in PRE_PICK_LINE_STATUSES:
            line.status = line_allocation_status(line)

        return {
            'line_id': line.id,
            'sku_id': line.sku_id,
            'ordered_qty': ordered,
            'allocated_qty': to_qty(line.allocated_qty),
            'newly_allocated': total_allocated,
            'short_qty': max(ZERO, ordered - to_qty(line.allocated_qty)),
            'status': line.status,
            'allocations': allocations,
        }

    def reserve_inventory(
        self,
        order: SalesOrder,
        line: SalesOrderLine,
        record: InventoryRecord,
        qty: Decimal,
        rule: str
    ) -> StockAllocation:
        """Create an ACTIVE allocation and book it on the record and the line"""
        qty = to_qty(qty)
        self.ledger.reserve(record, qty)

        allocation = StockAllocation(
            allocation_no=self.sequence.next_code(ALLOCATION_PREFIX),
            order_id=order.id,
            order_line_id=line.id,
            sku_id=line.sku_id,
            inventory_id=record.id,
            location_id=record.location_id,
            warehouse_id=record.warehouse_id,
            allocated_qty=qty,
            consumed_qty=ZERO,
            remaining_qty=qty,
            batch_no=record.batch_no,
            serial_no=record.serial_no,
            expiry_date=record.expiry_date,
            allocation_rule=rule,
            status=AllocationStatus.ACTIVE.value,
            allocated_at=utcnow(),
            created_by=self.actor
        )
        self.db.add(allocation)

        line.allocated_qty = to_qty(line.allocated_qty) + qty
        self.db.flush()
        return allocation

    def active_allocated_qty(self, line_id: int) -> Decimal:
        self.db.flush()
        total = self.db.query(func.coalesce(func.sum(StockAllocation.allocated_qty), 0)).filter(
            StockAllocation.order_line_id == line_id,
            StockAllocation.status == AllocationStatus.ACTIVE.value
        ).scalar()
        return to_qty(total)

    def release_allocation(self, allocation_id: int, reason: Optional[str] = None) -> Dict:
        """
        Release an ACTIVE allocation back to available stock.
        Any other status is an InvalidStateError and nothing changes.
        """
        try:
            with unit_of_work(self.db):
                allocation = self._lock_allocation(allocation_id)
                if allocation.status != AllocationStatus.ACTIVE.value:
                    raise InvalidStateError(
                        f"Allocation {allocation.allocation_no} is {allocation.status}, only ACTIVE allocations can be released",
                        allocation_id=allocation.id, status=allocation.status
                    )

                self._ensure_no_open_tasks(allocation)
                order = self._lock_order(allocation.order_id)
                self.ensure_not_in_active_wave(order)

                released_qty = self._release(allocation, reason)

                self.refresh_order_allocation_status(order)
                self._recompute_order_totals(order)

                logger.info(f"Released allocation {allocation.allocation_no}: {released_qty} units ({reason})")

                return {
                    'allocation_id': allocation.id,
                    'allocation_no': allocation.allocation_no,
                    'status': allocation.status,
                    'released_qty': released_qty,
                }

        except Exception as e:
            logger.error(f"Error releasing allocation {allocation_id}: {e}")
            raise

    def release_order_allocations(self, order_id: int, reason: Optional[str] = None) -> Dict:
        """Release every ACTIVE allocation of an order"""
        try:
            with unit_of_work(self.db):
                order = self._lock_order(order_id)
                self.ensure_not_in_active_wave(order)

                allocations = self.db.query(StockAllocation).filter(
                    StockAllocation.order_id == order.id,
                    StockAllocation.status == AllocationStatus.ACTIVE.value
                ).order_by(StockAllocation.id).with_for_update().all()

                for allocation in allocations:
                    self._ensure_no_open_tasks(allocation)

                total_released = ZERO
                for allocation in allocations:
                    total_released += self._release(allocation, reason)

                self.refresh_order_allocation_status(order)
                self._recompute_order_totals(order)

                logger.info(
                    f"Released {len(allocations)} allocations ({total_released} units) "
                    f"for order {order.order_no}"
                )

                return {
                    'order_id': order.id,
                    'released_count': len(allocations),
                    'total_qty_released': total_released,
                }

        except Exception as e:
            logger.error(f"Error releasing allocations for order {order_id}: {e}")
            raise

    def active_wave_for(self, order: SalesOrder) -> Optional[PickWave]:
        return self.db.query(PickWave).join(
            PickWaveOrder, PickWaveOrder.wave_id == PickWave.id
        ).filter(
            PickWaveOrder.order_id == order.id,
            PickWave.status.in_(ACTIVE_WAVE_STATUSES)
        ).first()

    def ensure_not_in_active_wave(self, order: SalesOrder):
        """Orders inside an active wave keep their reservations until the wave is cancelled"""
        active_wave = self.active_wave_for(order)
        if active_wave:
            raise InvalidStateError(
                f"Order {order.order_no} is in active wave {active_wave.wave_no}",
                order_id=order.id, wave_id=active_wave.id
            )

    def _ensure_no_open_tasks(self, allocation: StockAllocation):
        task = self.db.query(PickTask).filter(
            PickTask.allocation_id == allocation.id,
            PickTask.status.in_(OPEN_TASK_STATUSES)
        ).first()
        if task:
            raise InvalidStateError(
                f"Allocation {allocation.allocation_no} has open pick task {task.task_no}",
                allocation_id=allocation.id, task_id=task.id, task_status=task.status
            )

    def _release(self, allocation: StockAllocation, reason: Optional[str]) -> Decimal:
        qty = to_qty(allocation.remaining_qty)

        record = self.ledger.lock(allocation.inventory_id)
        self.ledger.unreserve(record, qty)

        allocation.remaining_qty = ZERO
        allocation.status = AllocationStatus.RELEASED.value
        allocation.released_at = utcnow()
        allocation.released_reason = reason

        line = self._lock_line(allocation.order_line_id)
        line.allocated_qty = max(ZERO, to_qty(line.allocated_qty) - qty)
        if line.status in PRE_PICK_LINE_STATUSES:
            line.status = line_allocation_status(line)

        events.publish_event(self.db, events.ALLOCATION_RELEASED, {
            'allocation_id': allocation.id,
            'allocation_no': allocation.allocation_no,
            'order_id': allocation.order_id,
            'released_qty': str(qty),
            'reason': reason,
        })
        return qty

    def refresh_order_allocation_status(self, order: SalesOrder, from_picking: bool = False):
        """
        Re-derive an order's allocation status from its lines.
        Only applies while the order is between confirmation and picking;
        from_picking also lets a PICKING order fall back (wave cancellation).
        """
        allowed = ALLOCATABLE_ORDER_STATUSES
        if from_picking:
            allowed = allowed + (OrderStatus.PICKING.value,)
        if order.status not in allowed:
            return

        open_lines = [l for l in order.lines if l.status != LineStatus.CANCELLED.value]
        fully_allocated = bool(open_lines) and all(
            to_qty(l.allocated_qty) >= to_qty(l.ordered_qty) for l in open_lines
        )
        no_allocation = all(to_qty(l.allocated_qty) <= 0 for l in open_lines)

        if no_allocation:
            order.status = OrderStatus.CONFIRMED.value
            order.allocation_status = AllocationOutcome.PENDING.value
        else:
            self._apply_order_allocation_status(order, fully_allocated, no_allocation)

    def _apply_order_allocation_status(self, order: SalesOrder, fully_allocated: bool, no_allocation: bool):
        if fully_allocated:
            order.status = OrderStatus.ALLOCATED.value
            order.allocation_status = AllocationOutcome.FULL.value
            order.allocated_at = order.allocated_at or utcnow()
        elif no_allocation:
            # Nothing could be reserved; the order stays confirmed
            order.status = OrderStatus.CONFIRMED.value
            order.allocation_status = AllocationOutcome.FAILED.value
        else:
            order.status = OrderStatus.PARTIAL_ALLOCATION.value
            order.allocation_status = AllocationOutcome.PARTIAL.value
            order.allocated_at = order.allocated_at or utcnow()

    def update_order_totals(self, order_id: int) -> SalesOrder:
        """Recompute an order's line count and unit totals from its lines"""
        with unit_of_work(self.db):
            order = self._lock_order(order_id)
            self._recompute_order_totals(order)
            return order

    def _recompute_order_totals(self, order: SalesOrder):
        self.db.flush()
        total_lines, ordered, allocated = self.db.query(
            func.count(SalesOrderLine.id),
            func.coalesce(func.sum(SalesOrderLine.ordered_qty), 0),
            func.coalesce(func.sum(SalesOrderLine.allocated_qty), 0)
        ).filter(SalesOrderLine.order_id == order.id).one()

        order.total_lines = total_lines
        order.total_ordered_units = to_qty(ordered)
        order.total_allocated_units = to_qty(allocated)

    def list_allocations(
        self,
        order_id: Optional[int] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[StockAllocation]:
        query = self.db.query(StockAllocation)
        if order_id is not None:
            query = query.filter(StockAllocation.order_id == order_id)
        if status:
            query = query.filter(StockAllocation.status == status)
        return query.order_by(StockAllocation.id).offset(skip).limit(limit).all()

    def get_allocation_stats(self, warehouse_id: Optional[int] = None, sku_id: Optional[int] = None) -> Dict:
        """Allocation counts and quantities grouped by status"""
        query = self.db.query(
            StockAllocation.status,
            func.count(StockAllocation.id),
            func.coalesce(func.sum(StockAllocation.allocated_qty), 0),
            func.coalesce(func.sum(StockAllocation.consumed_qty), 0),
            func.coalesce(func.sum(StockAllocation.remaining_qty), 0)
        )
        if warehouse_id is not None:
            query = query.filter(StockAllocation.warehouse_id == warehouse_id)
        if sku_id is not None:
            query = query.filter(StockAllocation.sku_id == sku_id)

        by_status = {}
        total = 0
        for status, count, allocated, consumed, remaining in query.group_by(StockAllocation.status).all():
            by_status[status] = {
                'count': count,
                'allocated_qty': to_qty(allocated),
                'consumed_qty': to_qty(consumed),
                'remaining_qty': to_qty(remaining),
            }
            total += count

        return {'total_allocations': total, 'by_status': by_status}

    def _lock_order(self, order_id: int) -> SalesOrder:
        order = self.db.query(SalesOrder).filter(SalesOrder.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    def _lock_lines(self, order_id: int) -> List[SalesOrderLine]:
        return self.db.query(SalesOrderLine).filter(
            SalesOrderLine.order_id == order_id
        ).order_by(SalesOrderLine.line_no, SalesOrderLine.id).with_for_update().all()

    def _lock_line(self, line_id: int) -> SalesOrderLine:
        line = self.db.query(SalesOrderLine).filter(SalesOrderLine.id == line_id).with_for_update().first()
        if not line:
            raise NotFoundError(f"Order line {line_id} not found", line_id=line_id)
        return line

    def _lock_allocation(self, allocation_id: int) -> StockAllocation:
        allocation = self.db.query(StockAllocation).filter(
            StockAllocation.id == allocation_id
        ).with_for_update().first()
        if not allocation:
            raise NotFoundError(f"Allocation {allocation_id} not found", allocation_id=allocation_id)
        return allocation
