"""
Tests for ChangeOrderManager - approval workflow and versioned implementation.
"""
from datetime import date

import pytest

from mfg_planning.engineering.change_order_manager import TRANSITIONS
from mfg_planning.engineering.change_order_models import (
    BomChange,
    BomChangeType,
    ChangeOrderAction,
    ChangeOrderStatus,
    RoutingChange,
    RoutingChangeType,
)
from mfg_planning.engineering.engineering_models import BomLine, DocumentStatus, Operation
from mfg_planning.exceptions import (
    ChangeOrderNotFoundException,
    ChangeOrderValidationError,
    InvalidChangeOrderStatusException,
)
from mfg_planning.hooks import PlanningEventType

TODAY = date(2024, 1, 1)
JUNE_1 = date(2024, 6, 1)


@pytest.fixture
def spoke_change(bike_tree):
    """Draft change order: WHEEL needs 40 spokes from June."""
    return BomChange(
        bike_tree["WHEEL"].id,
        BomChangeType.MODIFY_LINE,
        line_number=20,
        changes={"quantity_per_parent_unit": 40},
    )


@pytest.fixture
def draft_order(change_order_manager, spoke_change):
    change_order = change_order_manager.create("WHEEL", "40 spoke wheel", effective_date=JUNE_1)
    return change_order_manager.add_bom_change(change_order.id, spoke_change)


@pytest.fixture
def approved_order(change_order_manager, draft_order):
    change_order_manager.submit(draft_order.id)
    return change_order_manager.approve(draft_order.id, "engineering")


def _reach(manager, change_order_id, status):
    """Drive a change order with changes from DRAFT to status."""
    steps = {
        ChangeOrderStatus.DRAFT: [],
        ChangeOrderStatus.PENDING_APPROVAL: ["submit"],
        ChangeOrderStatus.APPROVED: ["submit", "approve"],
        ChangeOrderStatus.REJECTED: ["submit", "reject"],
        ChangeOrderStatus.IMPLEMENTED: ["submit", "approve", "implement"],
        ChangeOrderStatus.CANCELLED: ["cancel"],
    }
    for step in steps[status]:
        if step == "submit":
            manager.submit(change_order_id)
        elif step == "approve":
            manager.approve(change_order_id, "engineering")
        elif step == "reject":
            manager.reject(change_order_id, "engineering", "not needed")
        elif step == "implement":
            manager.implement(change_order_id, as_of=TODAY)
        else:
            manager.cancel(change_order_id, "superseded")
    return manager.get_by_id(change_order_id)


def _act(manager, change_order_id, action):
    if action == ChangeOrderAction.SUBMIT:
        return manager.submit(change_order_id)
    if action == ChangeOrderAction.APPROVE:
        return manager.approve(change_order_id, "engineering")
    if action == ChangeOrderAction.REJECT:
        return manager.reject(change_order_id, "engineering", "no")
    if action == ChangeOrderAction.IMPLEMENT:
        return manager.implement(change_order_id, as_of=TODAY)
    return manager.cancel(change_order_id, "no")


class TestWorkflow:
    """Status transitions and audit fields."""

    def test_create_draft(self, change_order_manager):
        """New change orders are numbered drafts."""
        first = change_order_manager.create("WHEEL", "first")
        second = change_order_manager.create("WHEEL", "second")

        assert first.status == ChangeOrderStatus.DRAFT
        assert first.order_number == "ECO-000001"
        assert second.order_number == "ECO-000002"
        assert change_order_manager.get_by_number("ECO-000002").id == second.id

    def test_approval_path(self, change_order_manager, draft_order, observer):
        """submit -> approve records who approved and publishes each change."""
        submitted = change_order_manager.submit(draft_order.id)
        assert submitted.status == ChangeOrderStatus.PENDING_APPROVAL
        assert submitted.submitted_at is not None

        approved = change_order_manager.approve(draft_order.id, "engineering")
        assert approved.status == ChangeOrderStatus.APPROVED
        assert approved.approved_by == "engineering"

        events = observer.of_type(PlanningEventType.CHANGE_ORDER_STATUS_CHANGED)
        assert [e.payload["to_status"] for e in events] == ["pending_approval", "approved"]
        assert events[0].payload["order_number"] == draft_order.order_number

    def test_reject_records_reason(self, change_order_manager, draft_order):
        change_order_manager.submit(draft_order.id)
        rejected = change_order_manager.reject(draft_order.id, "quality", "spoke supplier not qualified")

        assert rejected.status == ChangeOrderStatus.REJECTED
        assert rejected.rejected_by == "quality"
        assert rejected.rejection_reason == "spoke supplier not qualified"

    def test_submit_requires_changes(self, change_order_manager):
        """An empty change order cannot enter approval."""
        empty = change_order_manager.create("WHEEL", "nothing yet")
        with pytest.raises(ChangeOrderValidationError):
            change_order_manager.submit(empty.id)
        assert change_order_manager.get_by_id(empty.id).status == ChangeOrderStatus.DRAFT

    @pytest.mark.parametrize("status", [
        ChangeOrderStatus.DRAFT,
        ChangeOrderStatus.PENDING_APPROVAL,
        ChangeOrderStatus.APPROVED,
        ChangeOrderStatus.REJECTED,
    ])
    def test_cancel_before_implementation(self, change_order_manager, draft_order, status):
        _reach(change_order_manager, draft_order.id, status)
        cancelled = change_order_manager.cancel(draft_order.id, "superseded")

        assert cancelled.status == ChangeOrderStatus.CANCELLED
        assert cancelled.cancellation_reason == "superseded"

    @pytest.mark.parametrize("status,action", [
        (status, action)
        for status in ChangeOrderStatus
        for action in ChangeOrderAction
        if (status, action) not in TRANSITIONS
    ])
    def test_illegal_transition_leaves_status(self, change_order_manager, draft_order, status, action):
        """Every action outside the transition table is refused without side effects."""
        _reach(change_order_manager, draft_order.id, status)

        with pytest.raises(InvalidChangeOrderStatusException) as exc_info:
            _act(change_order_manager, draft_order.id, action)

        assert exc_info.value.current_status == status.value
        assert change_order_manager.get_by_id(draft_order.id).status == status

    def test_changes_only_while_draft(self, change_order_manager, draft_order, spoke_change):
        change_order_manager.submit(draft_order.id)
        with pytest.raises(InvalidChangeOrderStatusException):
            change_order_manager.add_bom_change(draft_order.id, spoke_change)

    def test_not_found(self, change_order_manager):
        with pytest.raises(ChangeOrderNotFoundException):
            change_order_manager.get_by_id("ECO-missing")
        with pytest.raises(ChangeOrderNotFoundException):
            change_order_manager.get_by_number("ECO-999999")


class TestChanges:
    """Collecting and validating changes."""

    def test_change_shape_is_checked(self, bike_tree):
        """Each change type carries the data it needs."""
        with pytest.raises(ValueError):
            BomChange(bike_tree["WHEEL"].id, BomChangeType.ADD_LINE)
        with pytest.raises(ValueError):
            BomChange(bike_tree["WHEEL"].id, BomChangeType.MODIFY_LINE, line_number=10)
        with pytest.raises(ValueError):
            RoutingChange("RTG-1", RoutingChangeType.REMOVE_OPERATION)

    def test_affected_documents_tracked(self, change_order_manager, draft_order, bike_tree):
        assert draft_order.affected_bom_ids == [bike_tree["WHEEL"].id]

        again = change_order_manager.add_bom_change(
            draft_order.id, BomChange(bike_tree["WHEEL"].id, BomChangeType.REMOVE_LINE, line_number=10)
        )
        assert again.affected_bom_ids == [bike_tree["WHEEL"].id]
        assert len(again.bom_changes) == 2

    def test_validate_reports_missing_documents(self, change_order_manager):
        change_order = change_order_manager.create("WHEEL", "ghost edits")
        change_order_manager.add_bom_change(
            change_order.id, BomChange("BOM-ghost", BomChangeType.NEW_VERSION)
        )
        change_order_manager.add_routing_change(
            change_order.id, RoutingChange("RTG-ghost", RoutingChangeType.NEW_VERSION)
        )

        errors = change_order_manager.validate(change_order.id, as_of=TODAY)

        assert errors == [
            "BOM change [0]: BOM 'BOM-ghost' not found",
            "Routing change [0]: routing 'RTG-ghost' not found",
        ]

    def test_validate_rejects_past_effective_date(self, change_order_manager, draft_order):
        assert change_order_manager.validate(draft_order.id, as_of=TODAY) == []
        errors = change_order_manager.validate(draft_order.id, as_of=date(2024, 7, 1))
        assert errors == ["Effective date cannot be in the past"]

    def test_pending_and_history(self, change_order_manager, draft_order):
        """Pending lists open orders; history lists all, oldest first."""
        other = change_order_manager.create("WHEEL", "withdrawn")
        change_order_manager.cancel(other.id, "duplicate")
        change_order_manager.create("BIKE", "other product")

        assert [co.id for co in change_order_manager.get_pending_for_product("WHEEL")] == [draft_order.id]
        assert [co.id for co in change_order_manager.get_history("WHEEL")] == [draft_order.id, other.id]


class TestImplementation:
    """Approved changes become new released versions."""

    def test_modify_line_releases_new_version(self, change_order_manager, approved_order, bom_manager, bike_tree):
        implemented = change_order_manager.implement(approved_order.id, as_of=TODAY)

        assert implemented.status == ChangeOrderStatus.IMPLEMENTED
        assert implemented.implemented_at is not None
        v2 = bom_manager.get_by_id(implemented.created_bom_ids[0])
        assert v2.version == 2
        assert v2.status == DocumentStatus.RELEASED
        assert v2.effective_from == JUNE_1
        assert v2.get_line(20).quantity_per_parent_unit == 40

        v1 = bom_manager.get_by_id(bike_tree["WHEEL"].id)
        assert v1.get_line(20).quantity_per_parent_unit == 36
        assert v1.effective_to == date(2024, 5, 31)
        assert bom_manager.get_effective("WHEEL", date(2024, 5, 31)).version == 1
        assert bom_manager.get_effective("WHEEL", JUNE_1).version == 2

    def test_changes_to_one_bom_share_a_version(self, change_order_manager, draft_order, bom_manager, bike_tree):
        """Several edits of the same BOM produce a single new version."""
        wheel_id = bike_tree["WHEEL"].id
        change_order_manager.add_bom_change(
            draft_order.id, BomChange(wheel_id, BomChangeType.ADD_LINE, line=BomLine("NIPPLE", 40, line_number=30))
        )
        change_order_manager.add_bom_change(
            draft_order.id, BomChange(wheel_id, BomChangeType.REMOVE_LINE, line_number=10)
        )
        _reach(change_order_manager, draft_order.id, ChangeOrderStatus.APPROVED)

        implemented = change_order_manager.implement(draft_order.id, as_of=TODAY)

        assert len(implemented.created_bom_ids) == 1
        v2 = bom_manager.get_by_id(implemented.created_bom_ids[0])
        assert sorted(v2.component_ids()) == ["NIPPLE", "SPOKE"]
        assert [b.version for b in bom_manager.get_versions("WHEEL")] == [1, 2]

    def test_routing_change(self, change_order_manager, routing_manager, bike_routing):
        """Operation edits are applied to a new routing version."""
        change_order = change_order_manager.create("BIKE", "Faster welding", effective_date=JUNE_1)
        change_order_manager.add_routing_change(change_order.id, RoutingChange(
            bike_routing.id, RoutingChangeType.MODIFY_OPERATION,
            operation_number=10, changes={"run_time_minutes": 45},
        ))
        change_order_manager.add_routing_change(change_order.id, RoutingChange(
            bike_routing.id, RoutingChangeType.ADD_OPERATION,
            operation=Operation(30, "WC-ASM", "Inspect", run_time_minutes=5),
        ))
        _reach(change_order_manager, change_order.id, ChangeOrderStatus.APPROVED)

        implemented = change_order_manager.implement(change_order.id, as_of=TODAY)

        v2 = routing_manager.get_effective("BIKE", JUNE_1)
        assert v2.id == implemented.created_routing_ids[0]
        assert v2.version == 2
        assert v2.get_operation(10).run_time_minutes == 45
        assert [op.operation_number for op in v2.sorted_operations()] == [10, 20, 30]
        assert routing_manager.get_effective("BIKE", date(2024, 5, 31)).get_operation(10).run_time_minutes == 60

    def test_new_version_copies(self, change_order_manager, bom_manager, bike_tree):
        change_order = change_order_manager.create("BIKE", "Re-baseline", effective_date=JUNE_1)
        change_order_manager.add_bom_change(change_order.id, BomChange(bike_tree["BIKE"].id, BomChangeType.NEW_VERSION))
        _reach(change_order_manager, change_order.id, ChangeOrderStatus.APPROVED)

        implemented = change_order_manager.implement(change_order.id, as_of=TODAY)

        v2 = bom_manager.get_by_id(implemented.created_bom_ids[0])
        assert v2.lines == bike_tree["BIKE"].lines

    def test_effective_date_defaults_to_implementation_day(self, change_order_manager, bom_manager, bike_tree):
        change_order = change_order_manager.create("BIKE", "Right away")
        change_order_manager.add_bom_change(change_order.id, BomChange(bike_tree["BIKE"].id, BomChangeType.NEW_VERSION))
        _reach(change_order_manager, change_order.id, ChangeOrderStatus.APPROVED)

        implemented = change_order_manager.implement(change_order.id, as_of=TODAY)

        assert implemented.effective_date == TODAY
        assert bom_manager.get_by_id(implemented.created_bom_ids[0]).effective_from == TODAY

    def test_implemented_event(self, change_order_manager, approved_order, observer):
        implemented = change_order_manager.implement(approved_order.id, as_of=TODAY)

        events = observer.of_type(PlanningEventType.CHANGE_ORDER_IMPLEMENTED)
        assert len(events) == 1
        assert events[0].payload["bom_ids"] == implemented.created_bom_ids
        assert events[0].payload["effective_date"] == "2024-06-01"

    def test_failed_change_releases_nothing(self, change_order_manager, draft_order, bom_manager, bike_tree):
        """A change that cannot be applied discards the drafts and keeps the order APPROVED."""
        change_order_manager.add_bom_change(
            draft_order.id, BomChange(bike_tree["WHEEL"].id, BomChangeType.REMOVE_LINE, line_number=99)
        )
        _reach(change_order_manager, draft_order.id, ChangeOrderStatus.APPROVED)

        with pytest.raises(ChangeOrderValidationError) as exc_info:
            change_order_manager.implement(draft_order.id, as_of=TODAY)

        assert "has no line 99" in exc_info.value.validation_errors[0]
        assert change_order_manager.get_by_id(draft_order.id).status == ChangeOrderStatus.APPROVED
        versions = bom_manager.get_versions("WHEEL")
        assert [(b.version, b.status) for b in versions] == [
            (1, DocumentStatus.RELEASED),
            (2, DocumentStatus.OBSOLETE),
        ]
        assert bom_manager.get_effective("WHEEL", JUNE_1).version == 1

    def test_invalid_result_releases_nothing(self, change_order_manager, bom_manager, bike_tree):
        """A version that would fail release validation is never released."""
        bike_id = bike_tree["BIKE"].id
        change_order = change_order_manager.create("BIKE", "Strip", effective_date=JUNE_1)
        for line_number in (10, 20):
            change_order_manager.add_bom_change(
                change_order.id, BomChange(bike_id, BomChangeType.REMOVE_LINE, line_number=line_number)
            )
        _reach(change_order_manager, change_order.id, ChangeOrderStatus.APPROVED)

        with pytest.raises(ChangeOrderValidationError) as exc_info:
            change_order_manager.implement(change_order.id, as_of=TODAY)

        assert any("BOM has no components" in e for e in exc_info.value.validation_errors)
        assert bom_manager.get_effective("BIKE", JUNE_1).version == 1

    def test_cycle_introduced_by_change_rejected(self, change_order_manager, bike_tree):
        """Changing a component to a parent is caught like any other edit."""
        change_order = change_order_manager.create("WHEEL", "bad edit", effective_date=JUNE_1)
        change_order_manager.add_bom_change(change_order.id, BomChange(
            bike_tree["WHEEL"].id, BomChangeType.MODIFY_LINE,
            line_number=10, changes={"component_product_id": "BIKE"},
        ))
        _reach(change_order_manager, change_order.id, ChangeOrderStatus.APPROVED)

        with pytest.raises(ChangeOrderValidationError) as exc_info:
            change_order_manager.implement(change_order.id, as_of=TODAY)
        assert "Circular" in exc_info.value.validation_errors[0]

    def test_validation_errors_block_implementation(self, change_order_manager, approved_order):
        """An approved order whose date has passed is not applied."""
        with pytest.raises(ChangeOrderValidationError):
            change_order_manager.implement(approved_order.id, as_of=date(2024, 7, 1))
        assert change_order_manager.get_by_id(approved_order.id).status == ChangeOrderStatus.APPROVED
