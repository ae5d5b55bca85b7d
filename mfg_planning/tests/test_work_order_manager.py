"""
Tests for WorkOrderManager - lifecycle state machine and edits.
"""
from datetime import date

import pytest

from mfg_planning.config import PlanningConfig
from mfg_planning.engineering.engineering_models import BomLine
from mfg_planning.exceptions import InvalidWorkOrderStatusException, WorkOrderNotFoundException
from mfg_planning.hooks import PlanningEventType
from mfg_planning.mrp.mrp_models import PlannedOrder, ReplenishmentType
from mfg_planning.shopfloor.work_order_manager import TRANSITIONS, WorkOrderManager, allowed_statuses
from mfg_planning.shopfloor.work_order_models import WorkOrderAction, WorkOrderLineType, WorkOrderStatus

# Actions that bring a new order to each status
STEPS_TO = {
    WorkOrderStatus.PLANNED: [],
    WorkOrderStatus.RELEASED: ["release"],
    WorkOrderStatus.IN_PROGRESS: ["release", "start"],
    WorkOrderStatus.ON_HOLD: ["release", "hold"],
    WorkOrderStatus.COMPLETED: ["release", "start", "complete"],
    WorkOrderStatus.CLOSED: ["release", "start", "complete", "close"],
    WorkOrderStatus.CANCELLED: ["cancel"],
}


@pytest.fixture
def work_order(work_order_manager, monday):
    return work_order_manager.create("BIKE", 10, monday, date(2024, 1, 15))


class TestCreation:

    def test_created_as_planned(self, work_order):
        assert work_order.status == WorkOrderStatus.PLANNED
        assert work_order.order_number == "WO-000001"
        assert work_order.status_history[0].action == "create"

    def test_sequential_numbers(self, work_order_manager, work_order, monday):
        second = work_order_manager.create("BIKE", 5, monday, monday)
        assert second.order_number == "WO-000002"
        assert work_order_manager.get_by_number("WO-000002").id == second.id

    def test_configured_prefix(self, work_order_repository, monday):
        manager = WorkOrderManager(work_order_repository, config=PlanningConfig(work_order_prefix="MO"))
        assert manager.create("BIKE", 1, monday, monday).order_number == "MO-000001"

    def test_invalid_quantity(self, work_order_manager, monday):
        with pytest.raises(ValueError):
            work_order_manager.create("BIKE", 0, monday, monday)

    def test_from_planned_order(self, work_order_manager, monday):
        planned = PlannedOrder(
            product_id="BIKE",
            quantity=25,
            start_date=monday,
            due_date=date(2024, 1, 15),
            replenishment_type=ReplenishmentType.MANUFACTURE,
        )
        wo = work_order_manager.create_from_planned_order(planned)
        assert wo.planned_order_id == planned.id
        assert wo.planned_quantity == 25
        assert wo.planned_end_date == date(2024, 1, 15)

    def test_purchase_order_cannot_be_converted(self, work_order_manager, monday):
        planned = PlannedOrder("FRAME", 5, monday, monday, ReplenishmentType.PURCHASE)
        with pytest.raises(ValueError):
            work_order_manager.create_from_planned_order(planned)

    def test_not_found(self, work_order_manager):
        with pytest.raises(WorkOrderNotFoundException):
            work_order_manager.get_by_id("WOR-missing")
        with pytest.raises(WorkOrderNotFoundException):
            work_order_manager.release("WOR-missing")


class TestLifecycle:

    def test_happy_path(self, work_order_manager, work_order):
        """planned -> released -> in_progress -> completed -> closed."""
        wo = work_order_manager.release(work_order.id)
        assert wo.status == WorkOrderStatus.RELEASED
        wo = work_order_manager.start(wo.id)
        assert wo.status == WorkOrderStatus.IN_PROGRESS
        assert wo.actual_start is not None
        wo = work_order_manager.complete(wo.id)
        assert wo.actual_end is not None
        wo = work_order_manager.close(wo.id)

        assert wo.status == WorkOrderStatus.CLOSED
        assert wo.status.is_terminal
        assert [c.action for c in wo.status_history] == ["create", "release", "start", "complete", "close"]

    def test_start_requires_release(self, work_order_manager, work_order):
        """Invalid transitions report current and required status."""
        with pytest.raises(InvalidWorkOrderStatusException) as exc_info:
            work_order_manager.start(work_order.id)

        assert exc_info.value.current_status == "planned"
        assert exc_info.value.required_status == ["released"]
        assert work_order_manager.get_by_id(work_order.id).status == WorkOrderStatus.PLANNED

    def test_cancel_only_when_planned(self, work_order_manager, work_order):
        cancelled = work_order_manager.cancel(work_order.id, "customer withdrew")
        assert cancelled.status == WorkOrderStatus.CANCELLED
        assert cancelled.cancel_reason == "customer withdrew"

        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.release(work_order.id)

    def test_released_order_cannot_be_cancelled(self, work_order_manager, work_order):
        work_order_manager.release(work_order.id)
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.cancel(work_order.id)

    @pytest.mark.parametrize("before", ["release", "start"])
    def test_hold_resumes_previous_status(self, work_order_manager, work_order, before):
        """resume() returns to the status the order had before hold()."""
        work_order_manager.release(work_order.id)
        if before == "start":
            work_order_manager.start(work_order.id)
        expected = work_order_manager.get_by_id(work_order.id).status

        held = work_order_manager.hold(work_order.id, "material shortage")
        assert held.status == WorkOrderStatus.ON_HOLD
        assert held.status_history[-1].note == "material shortage"

        resumed = work_order_manager.resume(work_order.id)
        assert resumed.status == expected
        assert resumed.held_from_status is None

    def test_planned_order_cannot_be_held(self, work_order_manager, work_order):
        with pytest.raises(InvalidWorkOrderStatusException) as exc_info:
            work_order_manager.hold(work_order.id)
        assert exc_info.value.required_status == ["released", "in_progress"]

    def test_closed_is_terminal(self, work_order_manager, work_order):
        for step in ("release", "start", "complete", "close"):
            getattr(work_order_manager, step)(work_order.id)
        for action in WorkOrderAction:
            with pytest.raises(InvalidWorkOrderStatusException):
                getattr(work_order_manager, action.value)(work_order.id)

    @pytest.mark.parametrize("status,action", [
        (status, action)
        for status in WorkOrderStatus
        for action in WorkOrderAction
        if (status, action) not in TRANSITIONS
    ])
    def test_every_illegal_transition_refused(self, work_order_manager, work_order, status, action):
        """Actions outside the transition table raise and leave the order untouched."""
        for step in STEPS_TO[status]:
            getattr(work_order_manager, step)(work_order.id)
        before = work_order_manager.get_by_id(work_order.id)

        with pytest.raises(InvalidWorkOrderStatusException) as exc_info:
            getattr(work_order_manager, action.value)(work_order.id)

        after = work_order_manager.get_by_id(work_order.id)
        assert exc_info.value.current_status == status.value
        assert after.status == status
        assert len(after.status_history) == len(before.status_history)

    def test_status_change_events(self, work_order_manager, work_order, observer):
        work_order_manager.release(work_order.id)
        work_order_manager.start(work_order.id)

        events = observer.of_type(PlanningEventType.WORK_ORDER_STATUS_CHANGED)
        assert [(e.payload["from_status"], e.payload["to_status"]) for e in events] == [
            ("planned", "released"),
            ("released", "in_progress"),
        ]

    def test_allowed_statuses(self):
        assert allowed_statuses(WorkOrderAction.RESUME) == [WorkOrderStatus.ON_HOLD]


class TestEdits:

    def test_reschedule_until_started(self, work_order_manager, work_order):
        moved = work_order_manager.reschedule(work_order.id, date(2024, 1, 10), date(2024, 1, 17))
        assert moved.planned_start_date == date(2024, 1, 10)

        work_order_manager.release(work_order.id)
        work_order_manager.start(work_order.id)
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.reschedule(work_order.id, date(2024, 1, 11), date(2024, 1, 18))

    def test_change_quantity(self, work_order_manager, work_order):
        assert work_order_manager.change_quantity(work_order.id, 12).planned_quantity == 12
        with pytest.raises(ValueError):
            work_order_manager.change_quantity(work_order.id, -1)

    def test_report_output(self, work_order_manager, work_order):
        """Progress and yield from reported good and scrap quantities."""
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.report_output(work_order.id, 1)

        work_order_manager.release(work_order.id)
        work_order_manager.start(work_order.id)
        work_order_manager.report_output(work_order.id, 4, 1)
        work_order_manager.report_output(work_order.id, 4)

        progress = work_order_manager.get_progress(work_order.id)
        assert progress["completed_quantity"] == 8
        assert progress["remaining_quantity"] == 2
        assert progress["progress"] == pytest.approx(0.8)
        assert progress["yield_rate"] == pytest.approx(8 / 9)

    def test_negative_output_rejected(self, work_order_manager, work_order):
        with pytest.raises(ValueError):
            work_order_manager.report_output(work_order.id, -1)


@pytest.fixture
def lined_order(work_order_manager, bike_tree, bike_routing, monday):
    """
    BIKE x10 with lines from the bike BOM and routing:

        1: FRAME x10      100: op 10 WC-WELD  0h setup, 10h run
        2: WHEEL x20      101: op 20 WC-ASM   1h setup,  5h run
    """
    return work_order_manager.create("BIKE", 10, monday, date(2024, 1, 15))


class TestLines:
    """Material and operation lines."""

    def test_lines_from_bom_and_routing(self, lined_order, bike_tree, bike_routing):
        materials = lined_order.material_lines()
        operations = lined_order.operation_lines()

        assert [(l.line_number, l.product_id, l.planned_quantity) for l in materials] == [
            (1, "FRAME", 10),
            (2, "WHEEL", 20),
        ]
        assert [
            (l.line_number, l.operation_number, l.work_center_id, l.planned_setup_hours, l.planned_run_hours)
            for l in operations
        ] == [
            (100, 10, "WC-WELD", 0, 10),
            (101, 20, "WC-ASM", 1, 5),
        ]
        assert all(l.line_type == WorkOrderLineType.OPERATION for l in operations)
        assert lined_order.bom_id == bike_tree["BIKE"].id
        assert lined_order.routing_id == bike_routing.id

    def test_material_includes_scrap(self, work_order_manager, bom_manager, monday):
        box = bom_manager.create("BOX", [BomLine("SHEET", 2, scrap_percentage=10)])
        bom_manager.release(box.id)

        order = work_order_manager.create("BOX", 10, monday, monday)

        assert order.material_lines()[0].planned_quantity == pytest.approx(22.0)
        assert order.operation_lines() == []

    def test_no_lines_without_engineering_data(self, work_order_manager, monday):
        order = work_order_manager.create("GADGET", 3, monday, monday)
        assert order.lines == []
        assert order.bom_id is None
        assert order.routing_id is None

    def test_issue_material(self, work_order_manager, lined_order):
        """Issues accumulate per line with their lots; shortages list what is left."""
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.issue_material(lined_order.id, 1, 5)

        work_order_manager.release(lined_order.id)
        work_order_manager.issue_material(lined_order.id, 1, 6, lot_number="L1")
        order = work_order_manager.issue_material(lined_order.id, 1, 4, lot_number="L2")

        frame = order.get_line(1)
        assert frame.issued_quantity == 10
        assert frame.lot_numbers == ("L1", "L2")
        assert frame.is_complete
        assert work_order_manager.get_material_shortages(lined_order.id) == [{
            "line_number": 2,
            "product_id": "WHEEL",
            "planned_quantity": 20,
            "issued_quantity": 0,
            "remaining_quantity": 20,
            "uom": "EA",
        }]

    def test_issue_rejects_bad_lines(self, work_order_manager, lined_order):
        work_order_manager.release(lined_order.id)
        with pytest.raises(ValueError):
            work_order_manager.issue_material(lined_order.id, 100, 1)
        with pytest.raises(ValueError):
            work_order_manager.issue_material(lined_order.id, 7, 1)
        with pytest.raises(ValueError):
            work_order_manager.issue_material(lined_order.id, 1, 0)

    def test_report_material_consumption(self, work_order_manager, lined_order):
        work_order_manager.release(lined_order.id)
        order = work_order_manager.report_material_consumption(lined_order.id, "WHEEL", 5)
        assert order.get_line(2).issued_quantity == 5

        with pytest.raises(ValueError):
            work_order_manager.report_material_consumption(lined_order.id, "BELL", 1)

    def test_report_operation_starts_order(self, work_order_manager, lined_order):
        """The first report starts a released order; only the last operation completes units."""
        work_order_manager.release(lined_order.id)

        order = work_order_manager.report_operation(lined_order.id, 10, 10, run_hours=8)
        assert order.status == WorkOrderStatus.IN_PROGRESS
        assert order.actual_start is not None
        assert order.status_history[-1].action == "start"
        assert order.completed_quantity == 0

        order = work_order_manager.report_operation(lined_order.id, 20, 9, setup_hours=1, run_hours=5, scrap_quantity=1)
        assert order.completed_quantity == 9
        assert order.scrapped_quantity == 1
        assert order.get_line(101).scrap_quantity == 1

    def test_report_unknown_operation(self, work_order_manager, lined_order):
        """Nothing changes, not even the status, when the operation does not exist."""
        work_order_manager.release(lined_order.id)
        with pytest.raises(ValueError):
            work_order_manager.report_operation(lined_order.id, 30, 1)
        assert work_order_manager.get_by_id(lined_order.id).status == WorkOrderStatus.RELEASED

    def test_report_operation_requires_release(self, work_order_manager, lined_order):
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.report_operation(lined_order.id, 10, 1)

    def test_operation_progress(self, work_order_manager, lined_order):
        work_order_manager.release(lined_order.id)
        work_order_manager.report_operation(lined_order.id, 10, 10, run_hours=8)

        weld, assemble = work_order_manager.get_operation_progress(lined_order.id)

        assert weld["completion_percentage"] == 100
        assert weld["is_complete"] is True
        assert weld["planned_hours"] == 10
        assert weld["actual_hours"] == 8
        assert weld["labor_efficiency"] == pytest.approx(125.0)
        assert assemble["labor_efficiency"] is None
        assert assemble["completion_percentage"] == 0

        progress = work_order_manager.get_progress(lined_order.id)
        assert (progress["completed_operations"], progress["total_operations"]) == (1, 2)

    def test_variance(self, work_order_manager, lined_order):
        """Issued minus planned material, booked minus planned hours."""
        work_order_manager.release(lined_order.id)
        work_order_manager.issue_material(lined_order.id, 1, 11)
        work_order_manager.issue_material(lined_order.id, 2, 20)
        work_order_manager.report_operation(lined_order.id, 10, 10, run_hours=12)
        work_order_manager.report_operation(lined_order.id, 20, 10, setup_hours=1, run_hours=5)

        variance = work_order_manager.calculate_variance(lined_order.id)

        assert variance["material"] == pytest.approx(1.0)
        assert variance["labor"] == pytest.approx(2.0)
        assert variance["total"] == pytest.approx(3.0)


class TestSplitAndQuantity:

    def test_split(self, work_order_manager, lined_order):
        """The split quantity moves to a new PLANNED order; the original shrinks."""
        new_order = work_order_manager.split(lined_order.id, 4)
        original = work_order_manager.get_by_id(lined_order.id)

        assert original.planned_quantity == 6
        assert [l.planned_quantity for l in original.material_lines()] == [pytest.approx(6), pytest.approx(12)]
        assert original.get_line(101).planned_setup_hours == 1
        assert original.get_line(101).planned_run_hours == pytest.approx(3)

        assert new_order.order_number == "WO-000002"
        assert new_order.status == WorkOrderStatus.PLANNED
        assert new_order.planned_quantity == 4
        assert new_order.split_from_id == original.id
        assert new_order.routing_id == original.routing_id
        assert [l.planned_quantity for l in new_order.material_lines()] == [4, 8]

    @pytest.mark.parametrize("quantity", [0, 10, 12])
    def test_split_quantity_must_be_partial(self, work_order_manager, lined_order, quantity):
        with pytest.raises(ValueError):
            work_order_manager.split(lined_order.id, quantity)
        assert work_order_manager.get_by_id(lined_order.id).planned_quantity == 10

    def test_split_only_before_start(self, work_order_manager, lined_order):
        work_order_manager.release(lined_order.id)
        work_order_manager.start(lined_order.id)
        with pytest.raises(InvalidWorkOrderStatusException):
            work_order_manager.split(lined_order.id, 2)

    def test_change_quantity_keeps_issued(self, work_order_manager, lined_order):
        work_order_manager.release(lined_order.id)
        work_order_manager.issue_material(lined_order.id, 1, 5)

        order = work_order_manager.change_quantity(lined_order.id, 20)

        frame = order.get_line(1)
        assert (frame.planned_quantity, frame.issued_quantity) == (20, 5)
        assert order.get_line(100).planned_run_hours == pytest.approx(20)

    def test_change_quantity_not_below_completed(self, work_order_manager, work_order_repository, lined_order):
        work_order_repository.update(lined_order.with_changes(completed_quantity=8))
        with pytest.raises(ValueError):
            work_order_manager.change_quantity(lined_order.id, 7)
        assert work_order_manager.change_quantity(lined_order.id, 8).planned_quantity == 8
