"""
Pick Progress Service
Rolls task completion up into line, order and wave status.
All counters are recomputed from task and line rows.
"""
import logging

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from fulfillment.core.exceptions import NotFoundError
from fulfillment.models.enums import (
    DONE_TASK_STATUSES, OPEN_TASK_STATUSES, LineStatus, OrderStatus, WaveStatus
)
from fulfillment.models.orders import SalesOrder, SalesOrderLine
from fulfillment.models.wave import PickTask, PickWave
from . import events
from .quantities import to_qty, utcnow

logger = logging.getLogger(__name__)


class ProgressService:

    def __init__(self, db: Session):
        self.db = db

    def update_line_pick_status(self, line: SalesOrderLine) -> str:
        """Once a line has no open tasks it is PICKED when fully picked, else SHORT"""
        self.db.flush()
        open_tasks = self.db.query(func.count(PickTask.id)).filter(
            PickTask.order_line_id == line.id,
            PickTask.status.in_(OPEN_TASK_STATUSES)
        ).scalar()

        if open_tasks == 0 and line.status != LineStatus.CANCELLED.value:
            if to_qty(line.picked_qty) >= to_qty(line.ordered_qty):
                line.status = LineStatus.PICKED.value
            else:
                line.status = LineStatus.SHORT.value

        return line.status

    def update_order_pick_totals(self, order_id: int) -> SalesOrder:
        self.db.flush()
        order = self.db.query(SalesOrder).filter(SalesOrder.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        picked = self.db.query(func.coalesce(func.sum(SalesOrderLine.picked_qty), 0)).filter(
            SalesOrderLine.order_id == order_id
        ).scalar()
        order.total_picked_units = to_qty(picked)
        return order

    def update_wave_progress(self, wave_id: int) -> PickWave:
        """
        Recompute completed_tasks and picked_units for a wave.

        When every task is done the wave is COMPLETED and each member order
        becomes PICKED; OrderPicked and WaveCompleted events are written.
        """
        self.db.flush()
        wave = self.db.query(PickWave).filter(PickWave.id == wave_id).with_for_update().first()
        if not wave:
            raise NotFoundError(f"Wave {wave_id} not found", wave_id=wave_id)

        completed, picked = self.db.query(
            func.coalesce(func.sum(case((PickTask.status.in_(DONE_TASK_STATUSES), 1), else_=0)), 0),
            func.coalesce(func.sum(PickTask.qty_picked), 0)
        ).filter(PickTask.wave_id == wave.id).one()

        wave.completed_tasks = int(completed)
        wave.picked_units = to_qty(picked)

        active = (WaveStatus.RELEASED.value, WaveStatus.IN_PROGRESS.value)
        if wave.status in active and wave.total_tasks > 0 and wave.completed_tasks >= wave.total_tasks:
            self._complete_wave(wave)

        return wave

    def _complete_wave(self, wave: PickWave):
        now = utcnow()
        wave.status = WaveStatus.COMPLETED.value
        wave.completed_at = now

        orders = self.db.query(SalesOrder).filter(
            SalesOrder.id.in_(wave.order_ids)
        ).order_by(SalesOrder.id).with_for_update().all()

        for order in orders:
            if order.status == OrderStatus.CANCELLED.value:
                continue
            order.status = OrderStatus.PICKED.value
            order.picked_at = now
            events.publish_event(self.db, events.ORDER_PICKED, {
                'order_id': order.id,
                'order_no': order.order_no,
                'wave_id': wave.id,
                'total_picked_units': str(to_qty(order.total_picked_units)),
            })

        events.publish_event(self.db, events.WAVE_COMPLETED, {
            'wave_id': wave.id,
            'wave_no': wave.wave_no,
            'completed_tasks': wave.completed_tasks,
            'picked_units': str(wave.picked_units),
        })
        logger.info(f"Wave {wave.wave_no} completed: {wave.completed_tasks} tasks, {wave.picked_units} units")

