"""
Fulfillment Wave Models
Pick waves, their member orders and the generated pick tasks
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Date, Text, Boolean,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fulfillment.core.database import Base
from .enums import WaveStatus, WaveType, WaveStrategy, TaskStatus, ShortPickReason, check_in


class PickWave(Base):
    """
    Pick Wave - a batch of allocated orders released to the floor together
    """
    __tablename__ = "pick_waves"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Wave ID")
    wave_no = Column(String(30), nullable=False, unique=True, doc="PW-00001")

    # Planning
    warehouse_id = Column(Integer, nullable=False)
    wave_type = Column(String(20), nullable=False, default=WaveType.MANUAL.value)
    wave_strategy = Column(String(20), nullable=False, default=WaveStrategy.BATCH.value)
    priority = Column(Integer, nullable=False, default=5, doc="1 = highest")
    carrier = Column(String(50))
    planned_start_time = Column(DateTime(timezone=True))
    notes = Column(Text)

    # Counters (recomputed from member rows)
    total_orders = Column(Integer, nullable=False, default=0)
    total_lines = Column(Integer, nullable=False, default=0)
    total_units = Column(Numeric(15, 3), nullable=False, default=0)
    picked_units = Column(Numeric(15, 3), nullable=False, default=0)
    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)

    # Status
    status = Column(String(20), nullable=False, default=WaveStatus.PENDING.value)

    # Lifecycle
    released_at = Column(DateTime(timezone=True))
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    # Audit Trail
    created_by = Column(String(100))
    released_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    wave_orders = relationship("PickWaveOrder", back_populates="wave", cascade="all, delete-orphan")
    tasks = relationship("PickTask", back_populates="wave", order_by="PickTask.pick_sequence")

    __table_args__ = (
        CheckConstraint(check_in("status", WaveStatus), name='status'),
        CheckConstraint(check_in("wave_type", WaveType), name='wave_type'),
        CheckConstraint(check_in("wave_strategy", WaveStrategy), name='wave_strategy'),
        Index('ix_pick_waves_wh_status', 'warehouse_id', 'status'),
    )

    @property
    def order_ids(self):
        return [wo.order_id for wo in self.wave_orders]

    def __repr__(self):
        return f"<PickWave {self.wave_no} {self.status}>"


class PickWaveOrder(Base):
    """Wave membership of one order"""
    __tablename__ = "pick_wave_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wave_id = Column(Integer, ForeignKey("pick_waves.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    wave = relationship("PickWave", back_populates="wave_orders")
    order = relationship("SalesOrder")

    __table_args__ = (
        UniqueConstraint('wave_id', 'order_id', name='uq_pick_wave_orders_wave_order'),
        Index('ix_pick_wave_orders_order', 'order_id'),
    )


class PickTask(Base):
    """
    Pick Task - pick one allocation's quantity from one location
    Terminal tasks satisfy qty_picked + qty_short = qty_to_pick.
    """
    __tablename__ = "pick_tasks"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Task ID")
    task_no = Column(String(30), nullable=False, unique=True, doc="PICK-00001")

    # References
    wave_id = Column(Integer, ForeignKey("pick_waves.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False)
    order_line_id = Column(Integer, ForeignKey("sales_order_lines.id"), nullable=False)
    allocation_id = Column(Integer, ForeignKey("stock_allocations.id"), nullable=False)
    sku_id = Column(Integer, nullable=False)
    inventory_id = Column(Integer, ForeignKey("inventory.id"), nullable=False)
    source_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    warehouse_id = Column(Integer, nullable=False)

    # Quantities
    qty_to_pick = Column(Numeric(15, 3), nullable=False)
    qty_picked = Column(Numeric(15, 3), nullable=False, default=0)
    qty_short = Column(Numeric(15, 3), nullable=False, default=0)

    # Batch snapshot
    batch_no = Column(String(50))
    serial_no = Column(String(100))
    expiry_date = Column(Date)

    # Sequencing
    priority = Column(Integer, nullable=False, default=5, doc="1 = highest")
    pick_sequence = Column(Integer, doc="Position on the wave pick path")
    is_reallocation = Column(Boolean, nullable=False, default=False, doc="Created by short pick recovery")

    # Execution
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)
    assigned_to = Column(String(100), doc="Picker actor ID")
    short_pick_reason = Column(String(30))
    short_pick_notes = Column(Text)
    notes = Column(Text)

    # Lifecycle
    assigned_at = Column(DateTime(timezone=True))
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    # Audit Trail
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    wave = relationship("PickWave", back_populates="tasks")
    order = relationship("SalesOrder")
    order_line = relationship("SalesOrderLine")
    allocation = relationship("StockAllocation")
    inventory = relationship("InventoryRecord")
    source_location = relationship("Location")

    __table_args__ = (
        CheckConstraint(check_in("status", TaskStatus), name='status'),
        CheckConstraint(
            "short_pick_reason IS NULL OR " + check_in("short_pick_reason", ShortPickReason),
            name='short_pick_reason'
        ),
        CheckConstraint('qty_to_pick > 0', name='qty_to_pick'),
        Index('ix_pick_tasks_wave_status', 'wave_id', 'status'),
        Index('ix_pick_tasks_wave_sequence', 'wave_id', 'pick_sequence'),
        Index('ix_pick_tasks_assigned', 'assigned_to', 'status'),
        Index('ix_pick_tasks_line', 'order_line_id'),
    )

    def __repr__(self):
        return f"<PickTask {self.task_no} {self.status}>"
