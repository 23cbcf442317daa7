"""
Fulfillment Inventory Models
Storage locations, stock records and the inventory movement ledger
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Date, Text, Boolean,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fulfillment.core.database import Base
from .enums import InventoryStatus, TransactionType, check_in


class Location(Base):
    """
    Storage Location - master data, read-only for the fulfillment engine
    The zone/aisle/rack/level hierarchy drives pick path sequencing
    """
    __tablename__ = "locations"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Location ID")

    # Identity
    warehouse_id = Column(Integer, nullable=False, doc="Warehouse ID")
    location_code = Column(String(50), nullable=False, doc="Location barcode, e.g. A-01-02-3")

    # Hierarchy
    zone = Column(String(20), doc="Zone")
    aisle = Column(String(20), doc="Aisle")
    rack = Column(String(20), doc="Rack / bay")
    level = Column(String(20), doc="Shelf level")

    # Control
    location_type = Column(String(20), default="PICK", doc="PICK, BULK, STAGING, ...")
    is_pickable = Column(Boolean, default=True, doc="Whether picks may be directed here")

    # Audit Trail
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        Index('ix_locations_warehouse_code', 'warehouse_id', 'location_code', unique=True),
    )

    def __repr__(self):
        return f"<Location {self.location_code}>"


class InventoryRecord(Base):
    """
    Inventory - stock of one SKU/batch at one location
    available = on_hand - allocated - hold - damaged
    """
    __tablename__ = "inventory"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Inventory record ID")

    # Ownership and Placement
    warehouse_id = Column(Integer, nullable=False, doc="Warehouse ID")
    client_id = Column(Integer, doc="Client (stock owner) ID")
    sku_id = Column(Integer, nullable=False, doc="SKU ID")
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, doc="Location ID")

    # Batch Tracking
    batch_no = Column(String(50), doc="Batch / lot number")
    serial_no = Column(String(100), doc="Serial number")
    expiry_date = Column(Date, doc="Expiry date")
    received_at = Column(DateTime(timezone=True), nullable=False, server_default=func.current_timestamp(), doc="Receipt timestamp")

    # Quantities
    on_hand_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Physically present")
    allocated_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Reserved by active allocations")
    hold_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Held (QC, unresolved short picks)")
    damaged_qty = Column(Numeric(15, 3), nullable=False, default=0, doc="Damaged")

    # Status
    status = Column(String(20), nullable=False, default=InventoryStatus.HEALTHY.value, doc="Inventory status")

    # Audit Trail
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    location = relationship("Location")

    __table_args__ = (
        CheckConstraint(check_in("status", InventoryStatus), name='status'),
        CheckConstraint('on_hand_qty >= 0', name='on_hand_qty'),
        CheckConstraint('allocated_qty >= 0', name='allocated_qty'),
        Index('ix_inventory_wh_sku_status', 'warehouse_id', 'sku_id', 'status'),
        Index('ix_inventory_expiry', 'expiry_date'),
    )

    @hybrid_property
    def available_qty(self):
        """Quantity free to allocate"""
        return self.on_hand_qty - self.allocated_qty - self.hold_qty - self.damaged_qty

    def __repr__(self):
        return f"<InventoryRecord {self.id} sku={self.sku_id} loc={self.location_id}>"


class InventoryTransaction(Base):
    """
    Inventory Movement - append-only audit row for every stock mutation
    """
    __tablename__ = "inventory_transactions"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Transaction ID")
    transaction_no = Column(String(30), nullable=False, unique=True, doc="TXN-00000001")

    # What moved
    warehouse_id = Column(Integer, nullable=False, doc="Warehouse ID")
    sku_id = Column(Integer, nullable=False, doc="SKU ID")
    inventory_id = Column(Integer, ForeignKey("inventory.id"), doc="Inventory record ID")
    transaction_type = Column(String(20), nullable=False, doc="Movement type")
    from_location_id = Column(Integer, ForeignKey("locations.id"), doc="Source location")
    to_location_id = Column(Integer, ForeignKey("locations.id"), doc="Destination location")
    quantity = Column(Numeric(15, 3), nullable=False, doc="Quantity moved")
    batch_no = Column(String(50))
    serial_no = Column(String(100))

    # Source document
    reference_type = Column(String(30), doc="PICK_TASK, ...")
    reference_id = Column(Integer, doc="Source document ID")
    notes = Column(Text)

    # Audit Trail
    performed_by = Column(String(100), doc="Actor ID")
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint(check_in("transaction_type", TransactionType), name='transaction_type'),
        Index('ix_inventory_txn_reference', 'reference_type', 'reference_id'),
        Index('ix_inventory_txn_sku', 'warehouse_id', 'sku_id'),
    )
