"""
Fulfillment Order Models
Sales orders and their lines as seen by the allocation and picking engine
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fulfillment.core.database import Base
from .enums import (
    OrderStatus, AllocationOutcome, OrderPriority, LineStatus, AllocationRule, check_in
)


class SalesOrder(Base):
    """
    Sales Order - customer demand to be fulfilled from one warehouse
    """
    __tablename__ = "sales_orders"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Order ID")
    order_no = Column(String(30), nullable=False, unique=True, doc="Order number")

    # Customer and Warehouse
    warehouse_id = Column(Integer, nullable=False, doc="Fulfilling warehouse")
    client_id = Column(Integer, doc="Client (stock owner) ID")
    customer_name = Column(String(200), doc="Ship-to customer")

    # Shipping
    priority = Column(String(10), nullable=False, default=OrderPriority.NORMAL.value, doc="NORMAL, HIGH, URGENT")
    carrier = Column(String(50), doc="Carrier code")
    sla_due_date = Column(DateTime(timezone=True), doc="Ship-by deadline")

    # Status and Control
    status = Column(String(20), nullable=False, default=OrderStatus.DRAFT.value, doc="Order status")
    allocation_status = Column(String(10), nullable=False, default=AllocationOutcome.PENDING.value, doc="PENDING, PARTIAL, FULL, FAILED")

    # Totals
    total_lines = Column(Integer, nullable=False, default=0)
    total_ordered_units = Column(Numeric(15, 3), nullable=False, default=0)
    total_allocated_units = Column(Numeric(15, 3), nullable=False, default=0)
    total_picked_units = Column(Numeric(15, 3), nullable=False, default=0)

    # Lifecycle
    confirmed_at = Column(DateTime(timezone=True))
    allocated_at = Column(DateTime(timezone=True))
    picked_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    # Audit Trail
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    lines = relationship("SalesOrderLine", back_populates="order", order_by="SalesOrderLine.line_no")

    __table_args__ = (
        CheckConstraint(check_in("status", OrderStatus), name='status'),
        CheckConstraint(check_in("priority", OrderPriority), name='priority'),
        CheckConstraint(check_in("allocation_status", AllocationOutcome), name='allocation_status'),
        Index('ix_sales_orders_wh_status', 'warehouse_id', 'status'),
    )

    def __repr__(self):
        return f"<SalesOrder {self.order_no} {self.status}>"


class SalesOrderLine(Base):
    """
    Sales Order Line - demand for one SKU
    """
    __tablename__ = "sales_order_lines"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Line ID")
    order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)
    line_no = Column(Integer, nullable=False, default=1)

    # Item
    sku_id = Column(Integer, nullable=False, doc="SKU ID")

    # Quantities
    ordered_qty = Column(Numeric(15, 3), nullable=False, doc="Ordered quantity")
    allocated_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Allocated to the line, picked or still reserved")
    picked_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Picked to date")
    short_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Short picked to date")

    # Control
    allocation_rule = Column(String(10), nullable=False, default=AllocationRule.FIFO.value, doc="FIFO, FEFO, LIFO")
    status = Column(String(20), nullable=False, default=LineStatus.PENDING.value, doc="Line status")

    # Audit Trail
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    order = relationship("SalesOrder", back_populates="lines")

    __table_args__ = (
        CheckConstraint(check_in("status", LineStatus), name='status'),
        CheckConstraint('ordered_qty > 0', name='ordered_qty'),
        Index('ix_sales_order_lines_order', 'order_id'),
    )
