"""
Event Outbox
Transition events are stored as rows in the caller's transaction and
delivered to downstream consumers (billing, notifications) out of band.
"""
import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from fulfillment.models.system import OutboxEvent

logger = logging.getLogger(__name__)

ORDER_CONFIRMED = "OrderConfirmed"
ORDER_ALLOCATED = "OrderAllocated"
ORDER_CANCELLED = "OrderCancelled"
ALLOCATION_RELEASED = "AllocationReleased"
WAVE_CREATED = "WaveCreated"
WAVE_RELEASED = "WaveReleased"
WAVE_CANCELLED = "WaveCancelled"
WAVE_COMPLETED = "WaveCompleted"
ORDER_PICKED = "OrderPicked"
SHORT_PICK_RECORDED = "ShortPickRecorded"
STOCK_REALLOCATED = "StockReallocated"


def publish_event(db: Session, topic: str, payload: Dict[str, Any]) -> OutboxEvent:
    """Append an event to the outbox; committed or rolled back with the caller"""
    event = OutboxEvent(topic=topic, payload=payload)
    db.add(event)
    logger.debug(f"Outbox event {topic}: {payload}")
    return event

