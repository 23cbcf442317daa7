"""
Test Configuration and Fixtures
Shared testing infrastructure for the fulfillment engine
"""

import os

# Settings are read at import time; point the application at SQLite first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_FILE"] = "false"

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Generator, Iterable, Optional, Tuple
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from fulfillment.main import app
from fulfillment.api.deps import get_db
from fulfillment.core.database import Base
from fulfillment.models import (
    InventoryRecord, Location, OutboxEvent, PickTask, SalesOrder, SalesOrderLine, StockAllocation
)
from fulfillment.models.enums import AllocationStatus, OrderStatus

WAREHOUSE_ID = 1
SKU_ID = 100

# In-memory database shared by every session in a test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class FulfillmentFactory:
    """Builds committed master data, stock and orders for tests"""

    BASE_TIME = datetime(2024, 1, 1, 8, 0, 0)

    def __init__(self, db: Session):
        self.db = db
        self._order_seq = 0

    def location(
        self,
        code: str,
        zone: Optional[str] = "A",
        aisle: Optional[str] = "01",
        rack: Optional[str] = "01",
        level: Optional[str] = "1",
        warehouse_id: int = WAREHOUSE_ID
    ) -> Location:
        location = Location(
            warehouse_id=warehouse_id,
            location_code=code,
            zone=zone,
            aisle=aisle,
            rack=rack,
            level=level,
            location_type="PICK",
            is_pickable=True
        )
        self.db.add(location)
        self.db.commit()
        return location

    def inventory(
        self,
        location: Location,
        on_hand,
        sku_id: int = SKU_ID,
        received_days_ago: int = 0,
        expiry_date: Optional[date] = None,
        batch_no: Optional[str] = None,
        status: str = "HEALTHY",
        allocated=0,
        hold=0,
        damaged=0,
        warehouse_id: int = WAREHOUSE_ID
    ) -> InventoryRecord:
        record = InventoryRecord(
            warehouse_id=warehouse_id,
            client_id=1,
            sku_id=sku_id,
            location_id=location.id,
            batch_no=batch_no,
            expiry_date=expiry_date,
            received_at=self.BASE_TIME - timedelta(days=received_days_ago),
            on_hand_qty=Decimal(str(on_hand)),
            allocated_qty=Decimal(str(allocated)),
            hold_qty=Decimal(str(hold)),
            damaged_qty=Decimal(str(damaged)),
            status=status
        )
        self.db.add(record)
        self.db.commit()
        return record

    def order(
        self,
        lines: Iterable[Tuple] = ((SKU_ID, 10),),
        status: str = OrderStatus.DRAFT.value,
        priority: str = "NORMAL",
        carrier: Optional[str] = None,
        sla_due_date: Optional[datetime] = None,
        warehouse_id: int = WAREHOUSE_ID
    ) -> SalesOrder:
        """lines: (sku_id, ordered_qty) or (sku_id, ordered_qty, allocation_rule)"""
        self._order_seq += 1
        order = SalesOrder(
            order_no=f"SO-{self._order_seq:05d}",
            warehouse_id=warehouse_id,
            client_id=1,
            customer_name=f"Customer {self._order_seq}",
            priority=priority,
            carrier=carrier,
            sla_due_date=sla_due_date,
            status=status
        )
        for line_no, spec in enumerate(lines, 1):
            sku_id, qty = spec[0], spec[1]
            rule = spec[2] if len(spec) > 2 else "FIFO"
            order.lines.append(SalesOrderLine(
                line_no=line_no,
                sku_id=sku_id,
                ordered_qty=Decimal(str(qty)),
                allocation_rule=rule
            ))
        self.db.add(order)
        self.db.commit()
        return order

    def confirmed_order(self, lines: Iterable[Tuple] = ((SKU_ID, 10),), **kwargs) -> SalesOrder:
        return self.order(lines=lines, status=OrderStatus.CONFIRMED.value, **kwargs)


@pytest.fixture
def factory(db_session: Session) -> FulfillmentFactory:
    return FulfillmentFactory(db_session)


@pytest.fixture
def bin_a(factory: FulfillmentFactory) -> Location:
    return factory.location("A-01-01-1", zone="A", aisle="01", rack="01", level="1")


@pytest.fixture
def bin_b(factory: FulfillmentFactory) -> Location:
    return factory.location("B-02-01-1", zone="B", aisle="02", rack="01", level="1")


@pytest.fixture
def bin_c(factory: FulfillmentFactory) -> Location:
    return factory.location("C-01-03-2", zone="C", aisle="01", rack="03", level="2")


class DatabaseTestHelper:
    """Helper class for database assertions in tests"""

    @staticmethod
    def active_allocated(db_session: Session, line_id: int) -> Decimal:
        total = db_session.query(func.coalesce(func.sum(StockAllocation.allocated_qty), 0)).filter(
            StockAllocation.order_line_id == line_id,
            StockAllocation.status == AllocationStatus.ACTIVE.value
        ).scalar()
        return Decimal(str(total))

    @staticmethod
    def allocations_for(db_session: Session, order_id: int):
        return db_session.query(StockAllocation).filter(
            StockAllocation.order_id == order_id
        ).order_by(StockAllocation.id).all()

    @staticmethod
    def tasks_for_wave(db_session: Session, wave_id: int):
        return db_session.query(PickTask).filter(
            PickTask.wave_id == wave_id
        ).order_by(PickTask.pick_sequence, PickTask.id).all()

    @staticmethod
    def events(db_session: Session, topic: str):
        return db_session.query(OutboxEvent).filter(OutboxEvent.topic == topic).order_by(OutboxEvent.id).all()


class APITestHelper:
    """Helper class for API testing"""

    @staticmethod
    def assert_error_response(response, expected_status: int, expected_type: str = None):
        assert response.status_code == expected_status, response.text
        data = response.json()
        assert "detail" in data
        if expected_type:
            assert data["type"] == expected_type
        return data
