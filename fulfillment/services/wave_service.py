"""
Pick Wave Service
Groups allocated orders into waves, releases them as sequenced pick tasks
and cancels waves that have not started picking
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from fulfillment.core.database import unit_of_work
from fulfillment.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from fulfillment.models.allocation import StockAllocation
from fulfillment.models.enums import (
    ACTIVE_WAVE_STATUSES, AllocationStatus, LineStatus, OrderPriority, OrderStatus,
    TaskStatus, WaveStatus, WaveStrategy, WaveType
)
from fulfillment.models.orders import SalesOrder, SalesOrderLine
from fulfillment.models.wave import PickTask, PickWave, PickWaveOrder
from . import events
from .allocation_service import AllocationService, line_allocation_status
from .quantities import ZERO, to_qty, utcnow
from .sequence_service import SequenceGenerator, TASK_PREFIX, WAVE_PREFIX

logger = logging.getLogger(__name__)

WAVE_ELIGIBLE_ORDER_STATUSES = (
    OrderStatus.ALLOCATED.value,
    OrderStatus.PARTIAL_ALLOCATION.value,
)

CANCELLABLE_WAVE_STATUSES = (
    WaveStatus.PENDING.value,
    WaveStatus.RELEASED.value,
)

# Task priority by order priority, 1 = highest
TASK_PRIORITY = {
    OrderPriority.URGENT.value: 1,
    OrderPriority.HIGH.value: 3,
}
DEFAULT_TASK_PRIORITY = 5


def task_priority_for(order_priority: Optional[str]) -> int:
    return TASK_PRIORITY.get(order_priority, DEFAULT_TASK_PRIORITY)


def _location_component_key(value: Optional[str]) -> Tuple:
    # Numeric components compare as numbers; missing components sort last
    if value is None or value == "":
        return (2, 0, "")
    if value.isdigit():
        return (0, int(value), "")
    return (1, 0, value)


def pick_path_key(task: PickTask) -> Tuple:
    """Sort key walking zone, aisle, rack, level; task id breaks ties"""
    location = task.source_location
    components = (
        (location.zone, location.aisle, location.rack, location.level)
        if location is not None else (None, None, None, None)
    )
    return tuple(_location_component_key(c) for c in components) + (task.id,)


class WaveService:
    """
    Wave planning and release
    """

    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor
        self.sequence = SequenceGenerator(db)
        self.allocation_service = AllocationService(db, actor)

    def _active_wave_order_ids(self):
        return self.db.query(PickWaveOrder.order_id).join(
            PickWave, PickWave.id == PickWaveOrder.wave_id
        ).filter(PickWave.status.in_(ACTIVE_WAVE_STATUSES))

    def get_eligible_orders(
        self,
        warehouse_id: int,
        priority: Optional[str] = None,
        carrier: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SalesOrder]:
        """
        Allocated orders not yet in an active wave.
        Ordered URGENT, HIGH, NORMAL, then by SLA due date, then age.
        """
        priority_rank = case(
            (SalesOrder.priority == OrderPriority.URGENT.value, 0),
            (SalesOrder.priority == OrderPriority.HIGH.value, 1),
            else_=2
        )

        query = self.db.query(SalesOrder).filter(
            SalesOrder.warehouse_id == warehouse_id,
            SalesOrder.status.in_(WAVE_ELIGIBLE_ORDER_STATUSES),
            SalesOrder.id.notin_(self._active_wave_order_ids().statement)
        )
        if priority:
            query = query.filter(SalesOrder.priority == priority)
        if carrier:
            query = query.filter(SalesOrder.carrier == carrier)

        query = query.order_by(
            priority_rank,
            SalesOrder.sla_due_date.is_(None),
            SalesOrder.sla_due_date.asc(),
            SalesOrder.created_at.asc(),
            SalesOrder.id.asc()
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def create_wave(
        self,
        warehouse_id: int,
        order_ids: List[int],
        wave_type: str = WaveType.MANUAL.value,
        wave_strategy: str = WaveStrategy.BATCH.value,
        priority: Optional[int] = None,
        carrier: Optional[str] = None,
        planned_start_time: Optional[datetime] = None,
        notes: Optional[str] = None
    ) -> PickWave:
        """
        Snapshot a set of eligible orders into a PENDING wave.
        Every order must exist, belong to the warehouse, be ALLOCATED or
        PARTIAL_ALLOCATION and not already sit in an active wave.
        """
        try:
            with unit_of_work(self.db):
                if not order_ids:
                    raise ValidationError("A wave needs at least one order")
                if len(set(order_ids)) != len(order_ids):
                    raise ValidationError("Duplicate order ids in wave request")
                if wave_type not in WaveType.__members__:
                    raise ValidationError(f"Unknown wave type {wave_type}")
                if wave_strategy not in WaveStrategy.__members__:
                    raise ValidationError(f"Unknown wave strategy {wave_strategy}")

                orders = self.db.query(SalesOrder).filter(
                    SalesOrder.id.in_(order_ids)
                ).order_by(SalesOrder.id).with_for_update().all()

                found = {o.id for o in orders}
                missing = [oid for oid in order_ids if oid not in found]
                if missing:
                    raise ValidationError(f"Orders not found: {missing}", order_ids=missing)

                for order in orders:
                    if order.warehouse_id != warehouse_id:
                        raise ValidationError(
                            f"Order {order.order_no} belongs to warehouse {order.warehouse_id}",
                            order_id=order.id
                        )
                    if order.status not in WAVE_ELIGIBLE_ORDER_STATUSES:
                        raise ValidationError(
                            f"Order {order.order_no} with status {order.status} is not eligible for a wave",
                            order_id=order.id, status=order.status
                        )

                in_wave = self._active_wave_order_ids().filter(
                    PickWaveOrder.order_id.in_(order_ids)
                ).all()
                if in_wave:
                    raise ValidationError(
                        f"Orders already in an active wave: {sorted(r[0] for r in in_wave)}",
                        order_ids=[r[0] for r in in_wave]
                    )

                open_lines = [
                    line for order in orders for line in order.lines
                    if line.status != LineStatus.CANCELLED.value
                ]

                if priority is None:
                    priority = min(task_priority_for(o.priority) for o in orders)

                wave = PickWave(
                    wave_no=self.sequence.next_code(WAVE_PREFIX),
                    warehouse_id=warehouse_id,
                    wave_type=wave_type,
                    wave_strategy=wave_strategy,
                    priority=priority,
                    carrier=carrier,
                    planned_start_time=planned_start_time,
                    notes=notes,
                    total_orders=len(orders),
                    total_lines=len(open_lines),
                    total_units=sum((to_qty(l.allocated_qty) for l in open_lines), ZERO),
                    picked_units=ZERO,
                    total_tasks=0,
                    completed_tasks=0,
                    status=WaveStatus.PENDING.value,
                    created_by=self.actor
                )
                for order in orders:
                    wave.wave_orders.append(PickWaveOrder(order_id=order.id))
                self.db.add(wave)
                self.db.flush()

                events.publish_event(self.db, events.WAVE_CREATED, {
                    'wave_id': wave.id,
                    'wave_no': wave.wave_no,
                    'order_ids': [o.id for o in orders],
                })
                logger.info(f"Created wave {wave.wave_no} with {len(orders)} orders")
                return wave

        except Exception as e:
            logger.error(f"Error creating wave for warehouse {warehouse_id}: {e}")
            raise

    def release_wave(self, wave_id: int) -> Dict:
        """
        Release a PENDING wave: one pick task per ACTIVE allocation of the
        member orders, sequenced along the pick path.
        """
        try:
            with unit_of_work(self.db):
                wave = self._lock_wave(wave_id)
                if wave.status != WaveStatus.PENDING.value:
                    raise InvalidStateError(
                        f"Only PENDING waves can be released, wave {wave.wave_no} is {wave.status}",
                        wave_id=wave.id, status=wave.status
                    )

                order_ids = wave.order_ids
                orders = {
                    o.id: o for o in self.db.query(SalesOrder).filter(
                        SalesOrder.id.in_(order_ids)
                    ).with_for_update().all()
                }

                allocations = self.db.query(StockAllocation).join(
                    SalesOrderLine, SalesOrderLine.id == StockAllocation.order_line_id
                ).filter(
                    StockAllocation.order_id.in_(order_ids),
                    StockAllocation.status == AllocationStatus.ACTIVE.value,
                    StockAllocation.remaining_qty > 0,
                    SalesOrderLine.status != LineStatus.CANCELLED.value
                ).order_by(
                    StockAllocation.order_id, SalesOrderLine.line_no, StockAllocation.id
                ).with_for_update().all()

                if not allocations:
                    raise ValidationError(
                        f"Wave {wave.wave_no} has no active allocations to pick",
                        wave_id=wave.id
                    )

                picking_line_ids = set()
                picking_order_ids = set()
                for allocation in allocations:
                    order = orders[allocation.order_id]
                    self.db.add(self._build_task(wave, order, allocation))
                    picking_line_ids.add(allocation.order_line_id)
                    picking_order_ids.add(order.id)
                self.db.flush()

                sequenced = self.optimize_pick_sequence(wave.id)

                wave.status = WaveStatus.RELEASED.value
                wave.released_at = utcnow()
                wave.released_by = self.actor
                wave.total_tasks = sequenced
                wave.completed_tasks = 0

                # Members without tasks keep their status
                for order_id in picking_order_ids:
                    order = orders[order_id]
                    order.status = OrderStatus.PICKING.value
                    for line in order.lines:
                        if line.id in picking_line_ids:
                            line.status = LineStatus.PICKING.value

                events.publish_event(self.db, events.WAVE_RELEASED, {
                    'wave_id': wave.id,
                    'wave_no': wave.wave_no,
                    'total_tasks': sequenced,
                })
                logger.info(f"Released wave {wave.wave_no}: {sequenced} pick tasks")

                return {'wave': wave, 'tasks_created': len(allocations)}

        except Exception as e:
            logger.error(f"Error releasing wave {wave_id}: {e}")
            raise

    def _build_task(self, wave: PickWave, order: SalesOrder, allocation: StockAllocation) -> PickTask:
        return PickTask(
            task_no=self.sequence.next_code(TASK_PREFIX),
            wave_id=wave.id,
            order_id=order.id,
            order_line_id=allocation.order_line_id,
            allocation_id=allocation.id,
            sku_id=allocation.sku_id,
            inventory_id=allocation.inventory_id,
            source_location_id=allocation.location_id,
            warehouse_id=allocation.warehouse_id,
            qty_to_pick=to_qty(allocation.remaining_qty),
            qty_picked=ZERO,
            qty_short=ZERO,
            batch_no=allocation.batch_no,
            serial_no=allocation.serial_no,
            expiry_date=allocation.expiry_date,
            priority=task_priority_for(order.priority),
            is_reallocation=False,
            status=TaskStatus.PENDING.value
        )

    def optimize_pick_sequence(self, wave_id: int) -> int:
        """
        Number the wave's live tasks 1..N along the location hierarchy.
        This is a deterministic walk order, not a shortest-path solve.
        Returns the number of tasks sequenced.
        """
        tasks = self.db.query(PickTask).filter(
            PickTask.wave_id == wave_id,
            PickTask.status != TaskStatus.CANCELLED.value
        ).all()

        for seq, task in enumerate(sorted(tasks, key=pick_path_key), 1):
            task.pick_sequence = seq

        self.db.flush()
        return len(tasks)

    def cancel_wave(self, wave_id: int, reason: Optional[str] = None) -> PickWave:
        """
        Cancel a PENDING or RELEASED wave.
        Unstarted tasks are cancelled; allocations stay ACTIVE so the member
        orders become eligible for another wave.
        """
        try:
            with unit_of_work(self.db):
                wave = self._lock_wave(wave_id)
                if wave.status not in CANCELLABLE_WAVE_STATUSES:
                    raise InvalidStateError(
                        f"Cannot cancel wave {wave.wave_no} with status {wave.status}",
                        wave_id=wave.id, status=wave.status
                    )

                cancelled_tasks = 0
                tasks = self.db.query(PickTask).filter(
                    PickTask.wave_id == wave.id,
                    PickTask.status.in_((TaskStatus.PENDING.value, TaskStatus.ASSIGNED.value))
                ).with_for_update().all()
                for task in tasks:
                    task.status = TaskStatus.CANCELLED.value
                    cancelled_tasks += 1

                orders = self.db.query(SalesOrder).filter(
                    SalesOrder.id.in_(wave.order_ids)
                ).with_for_update().all()
                for order in orders:
                    for line in order.lines:
                        if line.status == LineStatus.PICKING.value:
                            line.status = line_allocation_status(line)
                    self.allocation_service.refresh_order_allocation_status(order, from_picking=True)

                wave.status = WaveStatus.CANCELLED.value
                wave.cancelled_at = utcnow()
                wave.cancellation_reason = reason

                events.publish_event(self.db, events.WAVE_CANCELLED, {
                    'wave_id': wave.id,
                    'wave_no': wave.wave_no,
                    'reason': reason,
                    'cancelled_tasks': cancelled_tasks,
                })
                logger.info(f"Cancelled wave {wave.wave_no} ({cancelled_tasks} tasks): {reason}")
                return wave

        except Exception as e:
            logger.error(f"Error cancelling wave {wave_id}: {e}")
            raise

    def get_wave(self, wave_id: int) -> PickWave:
        wave = self.db.query(PickWave).filter(PickWave.id == wave_id).first()
        if not wave:
            raise NotFoundError(f"Wave {wave_id} not found", wave_id=wave_id)
        return wave

    def list_waves(
        self,
        warehouse_id: Optional[int] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[PickWave], int]:
        query = self.db.query(PickWave)
        if warehouse_id is not None:
            query = query.filter(PickWave.warehouse_id == warehouse_id)
        if status:
            query = query.filter(PickWave.status == status)

        total = query.count()
        waves = query.order_by(PickWave.id.desc()).offset(skip).limit(limit).all()
        return waves, total

    def get_wave_stats(self, warehouse_id: Optional[int] = None) -> Dict:
        """Wave counts by status plus task and unit progress totals"""
        query = self.db.query(
            PickWave.status,
            func.count(PickWave.id),
            func.coalesce(func.sum(PickWave.total_tasks), 0),
            func.coalesce(func.sum(PickWave.completed_tasks), 0),
            func.coalesce(func.sum(PickWave.total_units), 0),
            func.coalesce(func.sum(PickWave.picked_units), 0)
        )
        if warehouse_id is not None:
            query = query.filter(PickWave.warehouse_id == warehouse_id)

        by_status = {}
        totals = {'total_waves': 0, 'total_tasks': 0, 'completed_tasks': 0,
                  'total_units': ZERO, 'picked_units': ZERO}
        for status, count, tasks, done, units, picked in query.group_by(PickWave.status).all():
            by_status[status] = count
            totals['total_waves'] += count
            totals['total_tasks'] += int(tasks)
            totals['completed_tasks'] += int(done)
            totals['total_units'] += to_qty(units)
            totals['picked_units'] += to_qty(picked)

        totals['by_status'] = by_status
        return totals

    def _lock_wave(self, wave_id: int) -> PickWave:
        wave = self.db.query(PickWave).filter(PickWave.id == wave_id).with_for_update().first()
        if not wave:
            raise NotFoundError(f"Wave {wave_id} not found", wave_id=wave_id)
        return wave
