"""
Pick Execution Service
Task assignment, pick confirmation and short pick recovery
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from fulfillment.core.config import settings
from fulfillment.core.database import unit_of_work
from fulfillment.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from fulfillment.models.allocation import StockAllocation
from fulfillment.models.enums import (
    AllocationRule, AllocationStatus, ShortPickReason, TaskStatus, WaveStatus
)
from fulfillment.models.inventory import InventoryTransaction
from fulfillment.models.orders import SalesOrder, SalesOrderLine
from fulfillment.models.wave import PickTask, PickWave
from . import events
from .allocation_service import AllocationService
from .inventory_ledger import InventoryLedger, short_bucket
from .progress_service import ProgressService
from .quantities import ZERO, to_qty, utcnow
from .sequence_service import SequenceGenerator, TASK_PREFIX

logger = logging.getLogger(__name__)

CLAIMABLE_WAVE_STATUSES = (
    WaveStatus.RELEASED.value,
    WaveStatus.IN_PROGRESS.value,
)


class PickingService:
    """
    Pick task execution
    Confirms picks against the ledger and re-sources short picked quantity
    """

    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor
        self.ledger = InventoryLedger(db, actor)
        self.sequence = SequenceGenerator(db)
        self.allocation_service = AllocationService(db, actor)
        self.progress = ProgressService(db)

    def assign_tasks(self, task_ids: List[int], user_id: str) -> List[PickTask]:
        """Assign PENDING tasks to a picker; any other status rejects the whole batch"""
        try:
            with unit_of_work(self.db):
                if not task_ids:
                    raise ValidationError("No tasks to assign")
                if not user_id:
                    raise ValidationError("A user id is required to assign tasks")

                tasks = self.db.query(PickTask).filter(
                    PickTask.id.in_(task_ids)
                ).order_by(PickTask.id).with_for_update().all()

                found = {t.id for t in tasks}
                missing = [tid for tid in task_ids if tid not in found]
                if missing:
                    raise NotFoundError(f"Pick tasks not found: {missing}", task_ids=missing)

                not_pending = [t.task_no for t in tasks if t.status != TaskStatus.PENDING.value]
                if not_pending:
                    raise InvalidStateError(
                        f"Only PENDING tasks can be assigned: {not_pending}",
                        task_nos=not_pending
                    )

                now = utcnow()
                for task in tasks:
                    task.status = TaskStatus.ASSIGNED.value
                    task.assigned_to = user_id
                    task.assigned_at = now

                logger.info(f"Assigned {len(tasks)} pick tasks to {user_id}")
                return tasks

        except Exception as e:
            logger.error(f"Error assigning tasks {task_ids}: {e}")
            raise

    def claim_next_task(self, actor: Optional[str] = None, wave_id: Optional[int] = None) -> PickTask:
        """
        Self-assign the next unassigned task on the pick path.
        Rows locked by a concurrent claim are skipped rather than waited on.
        """
        actor = actor or self.actor
        try:
            with unit_of_work(self.db):
                if not actor:
                    raise ValidationError("An actor id is required to claim a task")

                query = self.db.query(PickTask).join(
                    PickWave, PickWave.id == PickTask.wave_id
                ).filter(
                    PickTask.status == TaskStatus.PENDING.value,
                    PickTask.assigned_to.is_(None),
                    PickWave.status.in_(CLAIMABLE_WAVE_STATUSES)
                )
                if wave_id is not None:
                    query = query.filter(PickTask.wave_id == wave_id)

                task = query.order_by(
                    PickTask.pick_sequence.asc(), PickTask.id.asc()
                ).with_for_update(skip_locked=True, of=PickTask).first()

                if not task:
                    raise NotFoundError("No pick tasks available", wave_id=wave_id)

                task.status = TaskStatus.ASSIGNED.value
                task.assigned_to = actor
                task.assigned_at = utcnow()

                logger.info(f"Task {task.task_no} claimed by {actor}")
                return task

        except NotFoundError:
            raise
        except Exception as e:
            logger.error(f"Error claiming task for {actor}: {e}")
            raise

    def start_picking(self, task_id: int) -> PickTask:
        """ASSIGNED -> IN_PROGRESS; the first started task moves its wave to IN_PROGRESS"""
        try:
            with unit_of_work(self.db):
                task = self._lock_task(task_id)
                if task.status != TaskStatus.ASSIGNED.value:
                    raise InvalidStateError(
                        f"Task {task.task_no} must be ASSIGNED to start, it is {task.status}",
                        task_id=task.id, status=task.status
                    )

                now = utcnow()
                task.status = TaskStatus.IN_PROGRESS.value
                task.started_at = now

                wave = self._lock_wave(task.wave_id)
                if wave.status == WaveStatus.RELEASED.value:
                    wave.status = WaveStatus.IN_PROGRESS.value
                    wave.started_at = now
                    logger.info(f"Wave {wave.wave_no} in progress")

                return task

        except Exception as e:
            logger.error(f"Error starting task {task_id}: {e}")
            raise

    def complete_picking(
        self,
        task_id: int,
        qty_picked,
        short_pick_reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Dict:
        """
        Confirm the quantity picked for an IN_PROGRESS task.

        Picked units leave the ledger; on a short pick the unpicked part of the
        reservation is closed and, unless the reason rules it out or the task
        is itself a reallocation, replacement stock is reserved with a new task.
        Line, order and wave progress are recomputed before returning.
        """
        try:
            with unit_of_work(self.db):
                task = self._lock_task(task_id)
                if task.status != TaskStatus.IN_PROGRESS.value:
                    raise InvalidStateError(
                        f"Task {task.task_no} must be IN_PROGRESS to complete, it is {task.status}",
                        task_id=task.id, status=task.status
                    )

                qty_picked = self._validate_qty(qty_picked, task)
                qty_to_pick = to_qty(task.qty_to_pick)
                qty_short = qty_to_pick - qty_picked
                is_short = qty_short > 0

                if is_short and short_pick_reason is not None \
                        and short_pick_reason not in ShortPickReason.__members__:
                    raise ValidationError(
                        f"Unknown short pick reason {short_pick_reason}",
                        reason=short_pick_reason
                    )

                # Task
                task.qty_picked = qty_picked
                task.qty_short = qty_short
                task.status = TaskStatus.SHORT_PICK.value if is_short else TaskStatus.COMPLETED.value
                task.completed_at = utcnow()
                if is_short:
                    task.short_pick_reason = short_pick_reason
                    task.short_pick_notes = notes
                elif notes:
                    task.notes = notes

                allocation = self._lock_allocation(task.allocation_id)
                if allocation.status != AllocationStatus.ACTIVE.value:
                    raise InvalidStateError(
                        f"Allocation {allocation.allocation_no} of task {task.task_no} is {allocation.status}",
                        task_id=task.id, allocation_id=allocation.id, status=allocation.status
                    )
                record = self.ledger.lock(task.inventory_id)
                line = self._lock_line(task.order_line_id)

                # Allocation and ledger
                allocation.consumed_qty = to_qty(allocation.consumed_qty) + qty_picked
                allocation.remaining_qty = max(ZERO, to_qty(allocation.remaining_qty) - qty_picked)
                self.ledger.pick(record, qty_picked, task)

                movement = None
                if is_short:
                    movement = self._close_short_remainder(allocation, record, line, task, short_pick_reason)
                elif allocation.remaining_qty <= 0:
                    allocation.status = AllocationStatus.CONSUMED.value
                    allocation.consumed_at = utcnow()

                # Order line
                line.picked_qty = to_qty(line.picked_qty) + qty_picked
                line.short_qty = to_qty(line.short_qty) + qty_short

                reallocation = None
                if is_short:
                    events.publish_event(self.db, events.SHORT_PICK_RECORDED, {
                        'task_id': task.id,
                        'task_no': task.task_no,
                        'order_id': task.order_id,
                        'order_line_id': task.order_line_id,
                        'qty_short': str(qty_short),
                        'reason': short_pick_reason,
                        'inventory_id': record.id,
                        'location_id': record.location_id,
                        'held_qty': str(movement.quantity) if movement else str(ZERO),
                        'held_as': short_bucket(short_pick_reason),
                        'transaction_no': movement.transaction_no if movement else None,
                    })
                    if self._can_reallocate(task, short_pick_reason):
                        reallocation = self.attempt_reallocation(task, qty_short)

                self.progress.update_line_pick_status(line)
                self.progress.update_order_pick_totals(task.order_id)
                wave = self.progress.update_wave_progress(task.wave_id)

                logger.info(
                    f"Task {task.task_no} {task.status}: picked={qty_picked} short={qty_short} "
                    f"wave {wave.wave_no} {wave.completed_tasks}/{wave.total_tasks}"
                )

                return {
                    'task': task,
                    'short_pick': is_short,
                    'qty_short': qty_short,
                    'reallocation': reallocation,
                }

        except Exception as e:
            logger.error(f"Error completing task {task_id}: {e}")
            raise

    def _validate_qty(self, qty_picked, task: PickTask) -> Decimal:
        if qty_picked is None:
            raise ValidationError("qty_picked is required", task_id=task.id)
        try:
            qty = to_qty(qty_picked)
        except ArithmeticError:
            raise ValidationError(f"Invalid qty_picked: {qty_picked}", task_id=task.id)
        if qty < 0 or qty > to_qty(task.qty_to_pick):
            raise ValidationError(
                f"qty_picked must be between 0 and {task.qty_to_pick}, got {qty}",
                task_id=task.id, qty_picked=str(qty)
            )
        return qty

    def _close_short_remainder(
        self,
        allocation: StockAllocation,
        record,
        line: SalesOrderLine,
        task: PickTask,
        reason: Optional[str]
    ) -> Optional[InventoryTransaction]:
        """
        Take the unpicked remainder out of the reservation so the allocation
        only accounts for what was actually picked.
        Returns the SHORT_PICK movement when units were parked.
        """
        movement = None
        remainder = to_qty(allocation.remaining_qty)
        if remainder > 0:
            movement = self.ledger.short(record, remainder, reason, task)
            line.allocated_qty = max(ZERO, to_qty(line.allocated_qty) - remainder)
            allocation.remaining_qty = ZERO

        now = utcnow()
        if to_qty(allocation.consumed_qty) > 0:
            allocation.status = AllocationStatus.CONSUMED.value
            allocation.consumed_at = now
        else:
            allocation.status = AllocationStatus.RELEASED.value
            allocation.released_at = now
            allocation.released_reason = reason or "SHORT_PICK"
        return movement

    def _can_reallocate(self, task: PickTask, reason: Optional[str]) -> bool:
        if task.is_reallocation:
            logger.info(f"Task {task.task_no} is a reallocation, not reallocating again")
            return False
        if reason in settings.NON_REALLOCATABLE_SHORT_REASONS:
            logger.info(f"Short pick on {task.task_no} ({reason}) is not reallocated")
            return False
        return True

    def attempt_reallocation(self, task: PickTask, short_qty: Decimal) -> Dict:
        """
        Reserve replacement stock for a short pick and queue a new task.

        Looks for the oldest other HEALTHY record of the SKU in the warehouse,
        skipping the record just picked from and any record already actively
        allocated to the line. No candidate is not an error; the shortage is
        returned unresolved.
        """
        short_qty = to_qty(short_qty)
        line = self._lock_line(task.order_line_id)

        self.db.flush()
        excluded = {task.inventory_id}
        excluded.update(
            row[0] for row in self.db.query(StockAllocation.inventory_id).filter(
                StockAllocation.order_line_id == line.id,
                StockAllocation.status == AllocationStatus.ACTIVE.value
            ).all()
        )

        candidates = self.ledger.find_candidates(
            task.warehouse_id, task.sku_id, AllocationRule.FIFO.value,
            exclude_ids=excluded, lock=True, limit=1
        )
        if not candidates:
            logger.warning(f"No alternative stock for short pick on task {task.task_no}, {short_qty} unresolved")
            return {
                'reallocated': False,
                'reason': 'No alternative inventory available',
                'qty_short': short_qty,
            }

        record = candidates[0]
        qty = min(short_qty, to_qty(record.available_qty))
        order = self.db.query(SalesOrder).filter(SalesOrder.id == task.order_id).first()

        allocation = self.allocation_service.reserve_inventory(
            order, line, record, qty, (line.allocation_rule or settings.DEFAULT_ALLOCATION_RULE).upper()
        )

        new_task, wave = self._append_reallocation_task(task, allocation, qty)

        events.publish_event(self.db, events.STOCK_REALLOCATED, {
            'original_task_id': task.id,
            'task_id': new_task.id,
            'task_no': new_task.task_no,
            'allocation_id': allocation.id,
            'inventory_id': record.id,
            'quantity': str(qty),
        })
        logger.info(
            f"Reallocated {qty} of {short_qty} short on {task.task_no} to inventory {record.id}, "
            f"new task {new_task.task_no}"
        )

        return {
            'reallocated': True,
            'allocation_id': allocation.id,
            'allocation_no': allocation.allocation_no,
            'task_id': new_task.id,
            'task_no': new_task.task_no,
            'inventory_id': record.id,
            'location_id': record.location_id,
            'quantity': qty,
            'unresolved_qty': short_qty - qty,
        }

    def _append_reallocation_task(
        self,
        task: PickTask,
        allocation: StockAllocation,
        qty: Decimal
    ) -> Tuple[PickTask, PickWave]:
        wave = self._lock_wave(task.wave_id)

        self.db.flush()
        max_sequence = self.db.query(func.coalesce(func.max(PickTask.pick_sequence), 0)).filter(
            PickTask.wave_id == wave.id
        ).scalar()

        new_task = PickTask(
            task_no=self.sequence.next_code(TASK_PREFIX),
            wave_id=wave.id,
            order_id=task.order_id,
            order_line_id=task.order_line_id,
            allocation_id=allocation.id,
            sku_id=allocation.sku_id,
            inventory_id=allocation.inventory_id,
            source_location_id=allocation.location_id,
            warehouse_id=allocation.warehouse_id,
            qty_to_pick=qty,
            qty_picked=ZERO,
            qty_short=ZERO,
            batch_no=allocation.batch_no,
            serial_no=allocation.serial_no,
            expiry_date=allocation.expiry_date,
            priority=settings.REALLOCATION_TASK_PRIORITY,
            pick_sequence=max_sequence + 1,
            is_reallocation=True,
            status=TaskStatus.PENDING.value,
            notes=f"Reallocation for short pick on {task.task_no}"
        )
        self.db.add(new_task)
        self.db.flush()

        wave.total_tasks = self.db.query(func.count(PickTask.id)).filter(
            PickTask.wave_id == wave.id,
            PickTask.status != TaskStatus.CANCELLED.value
        ).scalar()

        return new_task, wave

    def get_task(self, task_id: int) -> PickTask:
        task = self.db.query(PickTask).filter(PickTask.id == task_id).first()
        if not task:
            raise NotFoundError(f"Pick task {task_id} not found", task_id=task_id)
        return task

    def list_tasks(
        self,
        wave_id: Optional[int] = None,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[PickTask], int]:
        query = self.db.query(PickTask)
        if wave_id is not None:
            query = query.filter(PickTask.wave_id == wave_id)
        if status:
            query = query.filter(PickTask.status == status)
        if assigned_to:
            query = query.filter(PickTask.assigned_to == assigned_to)

        total = query.count()
        tasks = query.order_by(
            PickTask.wave_id, PickTask.pick_sequence, PickTask.id
        ).offset(skip).limit(limit).all()
        return tasks, total

    def get_my_tasks(self, actor: str) -> List[PickTask]:
        """Open tasks assigned to the actor, in pick path order"""
        return self.db.query(PickTask).filter(
            PickTask.assigned_to == actor,
            PickTask.status.in_((TaskStatus.ASSIGNED.value, TaskStatus.IN_PROGRESS.value))
        ).order_by(PickTask.priority, PickTask.pick_sequence, PickTask.id).all()

    def _lock_task(self, task_id: int) -> PickTask:
        task = self.db.query(PickTask).filter(PickTask.id == task_id).with_for_update().first()
        if not task:
            raise NotFoundError(f"Pick task {task_id} not found", task_id=task_id)
        return task

    def _lock_wave(self, wave_id: int) -> PickWave:
        wave = self.db.query(PickWave).filter(PickWave.id == wave_id).with_for_update().first()
        if not wave:
            raise NotFoundError(f"Wave {wave_id} not found", wave_id=wave_id)
        return wave

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
