"""
Fulfillment SQLAlchemy Models
Database models for the order fulfillment engine
"""

# Import all models to ensure they are registered with SQLAlchemy
from .inventory import Location, InventoryRecord, InventoryTransaction
from .orders import SalesOrder, SalesOrderLine
from .allocation import StockAllocation
from .wave import PickWave, PickWaveOrder, PickTask
from .system import DocumentSequence, OutboxEvent

__all__ = [
    "Location",
    "InventoryRecord",
    "InventoryTransaction",
    "SalesOrder",
    "SalesOrderLine",
    "StockAllocation",
    "PickWave",
    "PickWaveOrder",
    "PickTask",
    "DocumentSequence",
    "OutboxEvent",
]
