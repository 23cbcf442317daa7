"""
Tests for the Pick Wave Service
Eligibility, wave creation, release with pick sequencing, cancellation
"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session

from fulfillment.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from fulfillment.models import Location, PickTask, StockAllocation
from fulfillment.services.allocation_service import AllocationService
from fulfillment.services.wave_service import WaveService, pick_path_key, task_priority_for

from .conftest import SKU_ID, DatabaseTestHelper


def allocated_order(db_session: Session, factory, lines=((SKU_ID, 10),), **kwargs):
    order = factory.confirmed_order(lines=lines, **kwargs)
    AllocationService(db_session).allocate_order(order.id)
    return order


class TestEligibleOrders:
    """Test suite for WaveService.get_eligible_orders"""

    def test_priority_then_sla_ordering(self, db_session: Session, factory, bin_a):
        """Test URGENT before HIGH before NORMAL, then earliest SLA"""
        factory.inventory(bin_a, on_hand=1000)
        normal = allocated_order(db_session, factory)
        high_late = allocated_order(db_session, factory, priority="HIGH", sla_due_date=datetime(2024, 2, 2))
        urgent = allocated_order(db_session, factory, priority="URGENT")
        high_early = allocated_order(db_session, factory, priority="HIGH", sla_due_date=datetime(2024, 2, 1))

        eligible = WaveService(db_session).get_eligible_orders(warehouse_id=1)

        assert [o.id for o in eligible] == [urgent.id, high_early.id, high_late.id, normal.id]

    def test_excludes_unallocated_and_waved_orders(self, db_session: Session, factory, bin_a):
        """Test only allocated orders outside active waves are eligible"""
        factory.inventory(bin_a, on_hand=1000)
        waved = allocated_order(db_session, factory)
        free = allocated_order(db_session, factory)
        factory.confirmed_order()
        factory.order()
        service = WaveService(db_session)
        service.create_wave(warehouse_id=1, order_ids=[waved.id])

        eligible = service.get_eligible_orders(warehouse_id=1)

        assert [o.id for o in eligible] == [free.id]

    def test_partial_orders_are_eligible(self, db_session: Session, factory, bin_a):
        """Test PARTIAL_ALLOCATION orders can be waved"""
        factory.inventory(bin_a, on_hand=5)
        partial = allocated_order(db_session, factory, lines=[(SKU_ID, 10)])

        eligible = WaveService(db_session).get_eligible_orders(warehouse_id=1)

        assert partial.status == "PARTIAL_ALLOCATION"
        assert [o.id for o in eligible] == [partial.id]

    def test_filters(self, db_session: Session, factory, bin_a):
        """Test priority and carrier filters"""
        factory.inventory(bin_a, on_hand=1000)
        allocated_order(db_session, factory, carrier="UPS")
        dhl = allocated_order(db_session, factory, carrier="DHL", priority="HIGH")
        service = WaveService(db_session)

        assert [o.id for o in service.get_eligible_orders(1, carrier="DHL")] == [dhl.id]
        assert [o.id for o in service.get_eligible_orders(1, priority="HIGH")] == [dhl.id]
        assert service.get_eligible_orders(2) == []


class TestCreateWave:
    """Test suite for WaveService.create_wave"""

    def test_create_wave_snapshots_orders(self, db_session: Session, factory, bin_a):
        """Test wave counters are sums over the included orders"""
        factory.inventory(bin_a, on_hand=1000)
        first = allocated_order(db_session, factory, lines=[(SKU_ID, 10), (SKU_ID, 5)])
        second = allocated_order(db_session, factory, lines=[(SKU_ID, 7)], priority="HIGH")

        wave = WaveService(db_session, actor="planner").create_wave(
            warehouse_id=1, order_ids=[first.id, second.id], carrier="UPS"
        )

        assert wave.wave_no == "PW-00001"
        assert wave.status == "PENDING"
        assert wave.total_orders == 2
        assert wave.total_lines == 3
        assert wave.total_units == Decimal("22")
        assert wave.total_tasks == 0
        assert wave.priority == 3
        assert wave.created_by == "planner"
        assert sorted(wave.order_ids) == [first.id, second.id]
        assert len(DatabaseTestHelper.events(db_session, "WaveCreated")) == 1

    def test_create_wave_with_missing_order(self, db_session: Session, factory, bin_a):
        """Test every order id must exist"""
        factory.inventory(bin_a, on_hand=100)
        order = allocated_order(db_session, factory)

        with pytest.raises(ValidationError, match="not found"):
            WaveService(db_session).create_wave(warehouse_id=1, order_ids=[order.id, 999])

    def test_create_wave_wrong_warehouse(self, db_session: Session, factory, bin_a):
        """Test orders must belong to the wave's warehouse"""
        factory.inventory(bin_a, on_hand=100)
        order = allocated_order(db_session, factory)

        with pytest.raises(ValidationError, match="warehouse"):
            WaveService(db_session).create_wave(warehouse_id=2, order_ids=[order.id])

    def test_create_wave_ineligible_status(self, db_session: Session, factory):
        """Test unallocated orders are rejected"""
        order = factory.confirmed_order()

        with pytest.raises(ValidationError, match="not eligible"):
            WaveService(db_session).create_wave(warehouse_id=1, order_ids=[order.id])

    def test_create_wave_order_already_waved(self, db_session: Session, factory, bin_a):
        """Test an order cannot be in two active waves"""
        factory.inventory(bin_a, on_hand=100)
        order = allocated_order(db_session, factory)
        service = WaveService(db_session)
        service.create_wave(warehouse_id=1, order_ids=[order.id])

        with pytest.raises(ValidationError, match="already in an active wave"):
            service.create_wave(warehouse_id=1, order_ids=[order.id])

    def test_create_wave_requires_orders(self, db_session: Session):
        """Test an empty wave is rejected"""
        with pytest.raises(ValidationError):
            WaveService(db_session).create_wave(warehouse_id=1, order_ids=[])


class TestReleaseWave:
    """Test suite for WaveService.release_wave"""

    def test_release_creates_one_task_per_allocation(self, db_session: Session, factory, bin_a, bin_b):
        """Test tasks mirror active allocations and carry order priority"""
        factory.inventory(bin_a, on_hand=60, received_days_ago=10)
        factory.inventory(bin_b, on_hand=80, received_days_ago=1)
        urgent = allocated_order(db_session, factory, lines=[(SKU_ID, 100)], priority="URGENT")
        normal = allocated_order(db_session, factory, lines=[(SKU_ID, 10)])
        service = WaveService(db_session, actor="lead")
        wave = service.create_wave(warehouse_id=1, order_ids=[urgent.id, normal.id])

        result = service.release_wave(wave.id)

        assert result["tasks_created"] == 3
        assert wave.status == "RELEASED"
        assert wave.released_by == "lead"
        assert wave.total_tasks == 3
        assert wave.completed_tasks == 0

        tasks = DatabaseTestHelper.tasks_for_wave(db_session, wave.id)
        allocations = {a.id: a for a in db_session.query(StockAllocation).all()}
        for task in tasks:
            assert task.status == "PENDING"
            assert task.qty_to_pick == allocations[task.allocation_id].remaining_qty
            assert task.source_location_id == allocations[task.allocation_id].location_id
        assert sorted(t.priority for t in tasks if t.order_id == urgent.id) == [1, 1]
        assert [t.priority for t in tasks if t.order_id == normal.id] == [5]

        assert urgent.status == "PICKING"
        assert normal.status == "PICKING"
        assert urgent.lines[0].status == "PICKING"

    def test_release_sequences_along_location_hierarchy(self, db_session: Session, factory, bin_a, bin_b, bin_c):
        """Test pick_sequence walks zone, aisle, rack, level"""
        factory.inventory(bin_c, on_hand=10, sku_id=3)
        factory.inventory(bin_a, on_hand=10, sku_id=1)
        factory.inventory(bin_b, on_hand=10, sku_id=2)
        order = allocated_order(db_session, factory, lines=[(3, 5), (2, 5), (1, 5)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])

        service.release_wave(wave.id)

        tasks = DatabaseTestHelper.tasks_for_wave(db_session, wave.id)
        assert [t.pick_sequence for t in tasks] == [1, 2, 3]
        assert [t.source_location_id for t in tasks] == [bin_a.id, bin_b.id, bin_c.id]

    def test_release_skips_lines_without_stock(self, db_session: Session, factory, bin_a):
        """Test unallocated lines produce no tasks and keep their status"""
        factory.inventory(bin_a, on_hand=10)
        order = allocated_order(db_session, factory, lines=[(SKU_ID, 5), (999, 5)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])

        service.release_wave(wave.id)

        assert wave.total_tasks == 1
        assert order.lines[0].status == "PICKING"
        assert order.lines[1].status == "PENDING"

    def test_release_twice_rejected(self, db_session: Session, factory, bin_a):
        """Test only PENDING waves can be released"""
        factory.inventory(bin_a, on_hand=10)
        order = allocated_order(db_session, factory)
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        service.release_wave(wave.id)

        with pytest.raises(InvalidStateError):
            service.release_wave(wave.id)

        assert db_session.query(PickTask).count() == 1

    def test_release_without_active_allocations(self, db_session: Session, factory, bin_a):
        """Test a wave whose allocations expired cannot be released"""
        factory.inventory(bin_a, on_hand=10)
        order = allocated_order(db_session, factory)
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        DatabaseTestHelper.allocations_for(db_session, order.id)[0].status = "EXPIRED"
        db_session.commit()

        with pytest.raises(ValidationError, match="no active allocations"):
            service.release_wave(wave.id)

        assert wave.status == "PENDING"
        assert order.status == "ALLOCATED"
        assert db_session.query(PickTask).count() == 0

    def test_member_without_tasks_is_not_promoted(self, db_session: Session, factory, bin_a):
        """Test only orders that received pick tasks move to PICKING"""
        factory.inventory(bin_a, on_hand=100)
        picked = allocated_order(db_session, factory)
        idle = allocated_order(db_session, factory, lines=[(SKU_ID, 20)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[picked.id, idle.id])
        DatabaseTestHelper.allocations_for(db_session, idle.id)[0].status = "EXPIRED"
        db_session.commit()

        result = service.release_wave(wave.id)

        assert result["tasks_created"] == 1
        assert picked.status == "PICKING"
        assert idle.status == "ALLOCATED"
        assert idle.lines[0].status == "ALLOCATED"
        assert [t.order_id for t in DatabaseTestHelper.tasks_for_wave(db_session, wave.id)] == [picked.id]

    def test_waved_order_allocations_cannot_be_released(self, db_session: Session, factory, bin_a):
        """Test a PENDING wave member keeps its allocations until the wave is cancelled"""
        record = factory.inventory(bin_a, on_hand=100)
        first = allocated_order(db_session, factory)
        second = allocated_order(db_session, factory, lines=[(SKU_ID, 20)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[first.id, second.id])

        with pytest.raises(InvalidStateError):
            AllocationService(db_session).release_order_allocations(second.id)

        service.release_wave(wave.id)

        assert second.status == "PICKING"
        assert record.allocated_qty == Decimal("30")
        assert len([t for t in DatabaseTestHelper.tasks_for_wave(db_session, wave.id) if t.order_id == second.id]) == 1

    def test_release_unknown_wave(self, db_session: Session):
        with pytest.raises(NotFoundError):
            WaveService(db_session).release_wave(31)


class TestPickPathKey:
    """Test suite for pick path ordering"""

    @staticmethod
    def _task(task_id, zone=None, aisle=None, rack=None, level=None):
        location = Location(warehouse_id=1, location_code=f"L{task_id}", zone=zone, aisle=aisle, rack=rack, level=level)
        return PickTask(id=task_id, source_location=location)

    def test_numeric_components_compare_as_numbers(self):
        """Test aisle 2 comes before aisle 10"""
        tasks = [self._task(1, "A", "10", "1", "1"), self._task(2, "A", "2", "1", "1")]

        assert [t.id for t in sorted(tasks, key=pick_path_key)] == [2, 1]

    def test_missing_components_sort_last(self):
        """Test a location without a zone goes after zoned locations"""
        tasks = [self._task(1, None, "01"), self._task(2, "B", "01"), self._task(3, "A", "05")]

        assert [t.id for t in sorted(tasks, key=pick_path_key)] == [3, 2, 1]

    def test_task_id_breaks_ties(self):
        """Test identical locations keep task id order"""
        tasks = [self._task(9, "A", "01", "01", "1"), self._task(4, "A", "01", "01", "1")]

        assert [t.id for t in sorted(tasks, key=pick_path_key)] == [4, 9]

    def test_task_priority_mapping(self):
        assert task_priority_for("URGENT") == 1
        assert task_priority_for("HIGH") == 3
        assert task_priority_for("NORMAL") == 5


class TestCancelWave:
    """Test suite for WaveService.cancel_wave"""

    def test_cancel_released_wave(self, db_session: Session, factory, bin_a, bin_b):
        """Test tasks are cancelled and orders become eligible again"""
        factory.inventory(bin_a, on_hand=60, received_days_ago=10)
        factory.inventory(bin_b, on_hand=80, received_days_ago=1)
        order = allocated_order(db_session, factory, lines=[(SKU_ID, 100)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        service.release_wave(wave.id)

        service.cancel_wave(wave.id, reason="Carrier missed")

        assert wave.status == "CANCELLED"
        assert wave.cancellation_reason == "Carrier missed"
        assert all(t.status == "CANCELLED" for t in DatabaseTestHelper.tasks_for_wave(db_session, wave.id))
        assert order.status == "ALLOCATED"
        assert order.lines[0].status == "ALLOCATED"
        assert all(a.status == "ACTIVE" for a in DatabaseTestHelper.allocations_for(db_session, order.id))
        assert [o.id for o in service.get_eligible_orders(1)] == [order.id]

    def test_cancel_partial_order_returns_to_partial(self, db_session: Session, factory, bin_a):
        """Test a partially allocated order returns to PARTIAL_ALLOCATION"""
        factory.inventory(bin_a, on_hand=5)
        order = allocated_order(db_session, factory, lines=[(SKU_ID, 10)])
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        service.release_wave(wave.id)

        service.cancel_wave(wave.id)

        assert order.status == "PARTIAL_ALLOCATION"
        assert order.lines[0].status == "PARTIAL_ALLOCATION"

    def test_cancel_pending_wave_and_rewave(self, db_session: Session, factory, bin_a):
        """Test a cancelled wave's orders can join a new wave"""
        factory.inventory(bin_a, on_hand=10)
        order = allocated_order(db_session, factory)
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        service.cancel_wave(wave.id)

        second = service.create_wave(warehouse_id=1, order_ids=[order.id])

        assert second.wave_no == "PW-00002"

    def test_cancel_twice_rejected(self, db_session: Session, factory, bin_a):
        """Test a CANCELLED wave cannot be cancelled again"""
        factory.inventory(bin_a, on_hand=10)
        order = allocated_order(db_session, factory)
        service = WaveService(db_session)
        wave = service.create_wave(warehouse_id=1, order_ids=[order.id])
        service.cancel_wave(wave.id)

        with pytest.raises(InvalidStateError):
            service.cancel_wave(wave.id)


class TestWaveQueries:
    """Test suite for wave reads"""

    def test_get_wave_not_found(self, db_session: Session):
        with pytest.raises(NotFoundError):
            WaveService(db_session).get_wave(1)

    def test_list_waves_newest_first(self, db_session: Session, factory, bin_a):
        """Test listing with status filter and paging"""
        factory.inventory(bin_a, on_hand=100)
        service = WaveService(db_session)
        waves = [
            service.create_wave(warehouse_id=1, order_ids=[allocated_order(db_session, factory).id])
            for _ in range(3)
        ]
        service.cancel_wave(waves[0].id)

        pending, total = service.list_waves(warehouse_id=1, status="PENDING")
        page, all_total = service.list_waves(skip=1, limit=1)

        assert total == 2
        assert [w.id for w in pending] == [waves[2].id, waves[1].id]
        assert all_total == 3
        assert [w.id for w in page] == [waves[1].id]

    def test_wave_stats(self, db_session: Session, factory, bin_a):
        """Test stats count waves by status"""
        factory.inventory(bin_a, on_hand=100)
        service = WaveService(db_session)
        first = service.create_wave(warehouse_id=1, order_ids=[allocated_order(db_session, factory).id])
        service.create_wave(warehouse_id=1, order_ids=[allocated_order(db_session, factory).id])
        service.release_wave(first.id)

        stats = service.get_wave_stats(warehouse_id=1)

        assert stats["total_waves"] == 2
        assert stats["by_status"] == {"RELEASED": 1, "PENDING": 1}
        assert stats["total_tasks"] == 1
        assert stats["total_units"] == Decimal("20")
