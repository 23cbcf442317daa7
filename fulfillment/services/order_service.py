"""
Sales Order Lifecycle Service
Confirmation (with automatic allocation) and cancellation of sales orders
"""
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from fulfillment.core.database import unit_of_work
from fulfillment.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from fulfillment.models.enums import LineStatus, OrderStatus
from fulfillment.models.orders import SalesOrder
from . import events
from .allocation_service import AllocationService
from .quantities import utcnow

logger = logging.getLogger(__name__)

CANCELLABLE_ORDER_STATUSES = (
    OrderStatus.DRAFT.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.ALLOCATED.value,
    OrderStatus.PARTIAL_ALLOCATION.value,
)


class OrderService:
    """Order state transitions that involve the allocation engine"""

    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor
        self.allocation_service = AllocationService(db, actor)

    def get_order(self, order_id: int) -> SalesOrder:
        order = self.db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    def confirm_order(self, order_id: int) -> Dict:
        """
        Confirm a DRAFT order and allocate it in the same transaction.

        Returns the allocation result; an order that could not be allocated at
        all remains CONFIRMED with allocation_status FAILED.
        """
        try:
            with unit_of_work(self.db):
                order = self._lock_order(order_id)

                if order.status != OrderStatus.DRAFT.value:
                    raise InvalidStateError(
                        f"Only DRAFT orders can be confirmed, order {order.order_no} is {order.status}",
                        order_id=order.id, status=order.status
                    )
                if not order.lines:
                    raise ValidationError(f"Order {order.order_no} has no lines", order_id=order.id)

                order.status = OrderStatus.CONFIRMED.value
                order.confirmed_at = utcnow()
                self.db.flush()

                events.publish_event(self.db, events.ORDER_CONFIRMED, {
                    'order_id': order.id,
                    'order_no': order.order_no,
                })
                logger.info(f"Order {order.order_no} confirmed")

                return self.allocation_service.allocate_order(order.id)

        except Exception as e:
            logger.error(f"Error confirming order {order_id}: {e}")
            raise

    def cancel_order(self, order_id: int, reason: Optional[str] = None) -> Dict:
        """
        Cancel an order that has not started picking.
        Active allocations are released back to stock first.
        """
        try:
            with unit_of_work(self.db):
                order = self._lock_order(order_id)

                if order.status not in CANCELLABLE_ORDER_STATUSES:
                    raise InvalidStateError(
                        f"Cannot cancel order {order.order_no} with status {order.status}",
                        order_id=order.id, status=order.status
                    )

                self.allocation_service.ensure_not_in_active_wave(order)

                released = self.allocation_service.release_order_allocations(
                    order.id, reason=f"Order cancelled: {reason}" if reason else "Order cancelled"
                )

                for line in order.lines:
                    line.status = LineStatus.CANCELLED.value

                order.status = OrderStatus.CANCELLED.value
                order.cancelled_at = utcnow()
                order.cancellation_reason = reason

                events.publish_event(self.db, events.ORDER_CANCELLED, {
                    'order_id': order.id,
                    'order_no': order.order_no,
                    'reason': reason,
                    'released_count': released['released_count'],
                })
                logger.info(f"Order {order.order_no} cancelled, {released['released_count']} allocations released")

                return {
                    'order_id': order.id,
                    'order_no': order.order_no,
                    'status': order.status,
                    'released_count': released['released_count'],
                    'total_qty_released': released['total_qty_released'],
                }

        except Exception as e:
            logger.error(f"Error cancelling order {order_id}: {e}")
            raise

    def update_order_totals(self, order_id: int) -> SalesOrder:
        """Recompute line count and unit totals, e.g. after upstream line edits"""
        return self.allocation_service.update_order_totals(order_id)

    def _lock_order(self, order_id: int) -> SalesOrder:
        order = self.db.query(SalesOrder).filter(SalesOrder.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order
