"""
Fulfillment Allocation Model
A reservation of specific inventory against one order line
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Date, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fulfillment.core.database import Base
from .enums import AllocationStatus, check_in


class StockAllocation(Base):
    """
    Stock Allocation - reserved quantity of one inventory record for one line
    remaining_qty = allocated_qty - consumed_qty - released quantity
    Rows are never deleted; CONSUMED, RELEASED and EXPIRED are history.
    """
    __tablename__ = "stock_allocations"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Allocation ID")
    allocation_no = Column(String(30), nullable=False, unique=True, doc="ALLOC-00001")

    # References
    order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False)
    order_line_id = Column(Integer, ForeignKey("sales_order_lines.id"), nullable=False)
    sku_id = Column(Integer, nullable=False)
    inventory_id = Column(Integer, ForeignKey("inventory.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    warehouse_id = Column(Integer, nullable=False)

    # Quantities
    allocated_qty = Column(Numeric(15, 3), nullable=False, doc="Quantity reserved")
    consumed_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Quantity picked")
    remaining_qty = Column(Numeric(15, 3), nullable=False, doc="Quantity still reserved")

    # Batch snapshot
    batch_no = Column(String(50))
    serial_no = Column(String(100))
    expiry_date = Column(Date)

    # Control
    allocation_rule = Column(String(10), nullable=False, doc="Rule used to select the inventory")
    status = Column(String(10), nullable=False, default=AllocationStatus.ACTIVE.value, doc="ACTIVE, CONSUMED, RELEASED, EXPIRED")

    # Lifecycle
    allocated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    consumed_at = Column(DateTime(timezone=True))
    released_at = Column(DateTime(timezone=True))
    released_reason = Column(Text)

    # Audit Trail
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    order = relationship("SalesOrder")
    order_line = relationship("SalesOrderLine")
    inventory = relationship("InventoryRecord")
    location = relationship("Location")

    __table_args__ = (
        CheckConstraint(check_in("status", AllocationStatus), name='status'),
        CheckConstraint('remaining_qty >= 0', name='remaining_qty'),
        CheckConstraint('allocated_qty > 0', name='allocated_qty'),
        Index('ix_stock_allocations_line_status', 'order_line_id', 'status'),
        Index('ix_stock_allocations_order', 'order_id'),
        Index('ix_stock_allocations_inventory', 'inventory_id'),
    )

    def __repr__(self):
        return f"<StockAllocation {self.allocation_no} {self.status} remaining={self.remaining_qty}>"
