"""
Fulfillment System Models
Document number counters and the transactional event outbox
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index
from sqlalchemy.sql import func

from fulfillment.core.database import Base


class DocumentSequence(Base):
    """
    Document Sequence - one counter row per document prefix
    Read with SELECT ... FOR UPDATE and incremented in the caller's transaction
    """
    __tablename__ = "document_sequences"

    prefix = Column(String(20), primary_key=True, doc="Document prefix, e.g. ALLOC")
    next_value = Column(Integer, nullable=False, default=1, doc="Next number to issue")
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())


class OutboxEvent(Base):
    """
    Outbox Event - state transition published for downstream consumers
    Written in the same transaction as the change it describes.
    """
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    topic = Column(String(128), nullable=False, doc="Event name, e.g. OrderPicked")
    payload = Column(JSON, nullable=False, default=dict)
    delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        Index('ix_outbox_events_topic_created', 'topic', 'created_at'),
        Index('ix_outbox_events_delivered', 'delivered'),
    )
