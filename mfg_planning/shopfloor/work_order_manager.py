"""
MfgPlan - Work Order Manager
============================

Finite-state lifecycle of work orders.

    PLANNED ──release──▶ RELEASED ──start──▶ IN_PROGRESS ──complete──▶ COMPLETED ──close──▶ CLOSED
       │                    │                     │
       └──cancel──▶ CANCELLED  └──────hold──────▶ ON_HOLD ──resume──▶ (status before hold)

Every transition is looked up in TRANSITIONS before anything is changed.

When BOM and routing managers are supplied, each new order gets material
lines (components with scrap, per order quantity) and operation lines
(setup and run hours per routing step). Shop floor reporting books against
these lines; units count as completed when the last operation reports them.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.engineering.engineering_models import BillOfMaterials, Routing
from mfg_planning.engineering.routing_manager import RoutingManager
from mfg_planning.exceptions import (
    InvalidWorkOrderStatusException,
    RoutingNotFoundException,
    WorkOrderNotFoundException,
)
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.mrp.mrp_models import PlannedOrder
from mfg_planning.providers.interfaces import WorkOrderRepository
from mfg_planning.shopfloor.work_order_models import (
    StatusChange,
    WorkOrder,
    WorkOrderAction,
    WorkOrderLine,
    WorkOrderLineType,
    WorkOrderStatus,
)

logger = logging.getLogger(__name__)


# (current status, action) -> new status; None restores the status held before ON_HOLD
TRANSITIONS: Dict[Tuple[WorkOrderStatus, WorkOrderAction], Optional[WorkOrderStatus]] = {
    (WorkOrderStatus.PLANNED, WorkOrderAction.RELEASE): WorkOrderStatus.RELEASED,
    (WorkOrderStatus.RELEASED, WorkOrderAction.START): WorkOrderStatus.IN_PROGRESS,
    (WorkOrderStatus.IN_PROGRESS, WorkOrderAction.COMPLETE): WorkOrderStatus.COMPLETED,
    (WorkOrderStatus.COMPLETED, WorkOrderAction.CLOSE): WorkOrderStatus.CLOSED,
    (WorkOrderStatus.PLANNED, WorkOrderAction.CANCEL): WorkOrderStatus.CANCELLED,
    (WorkOrderStatus.RELEASED, WorkOrderAction.HOLD): WorkOrderStatus.ON_HOLD,
    (WorkOrderStatus.IN_PROGRESS, WorkOrderAction.HOLD): WorkOrderStatus.ON_HOLD,
    (WorkOrderStatus.ON_HOLD, WorkOrderAction.RESUME): None,
}

EDITABLE_STATUSES = (WorkOrderStatus.PLANNED, WorkOrderStatus.RELEASED)
REPORTING_STATUSES = (WorkOrderStatus.RELEASED, WorkOrderStatus.IN_PROGRESS)

FIRST_MATERIAL_LINE = 1
FIRST_OPERATION_LINE = 100


def allowed_statuses(action: WorkOrderAction) -> List[WorkOrderStatus]:
    """Statuses from which action is permitted."""
    return [status for (status, a) in TRANSITIONS if a == action]


class WorkOrderManager:
    """
    Owner and sole mutator of work orders.

    Usage:
        manager = WorkOrderManager(InMemoryWorkOrderRepository())
        wo = manager.create("P-100", 50, date(2024, 1, 8), date(2024, 1, 15))
        manager.release(wo.id)
        manager.start(wo.id)
    """

    def __init__(
        self,
        repository: WorkOrderRepository,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
        bom_manager: Optional[BillOfMaterialsManager] = None,
        routing_manager: Optional[RoutingManager] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()
        self.bom_manager = bom_manager
        self.routing_manager = routing_manager

    # ───────────────────────────────────────────────────────────────────────────
    # Creation / lookup
    # ───────────────────────────────────────────────────────────────────────────

    def create(
        self,
        product_id: str,
        quantity: float,
        planned_start_date: date,
        planned_end_date: date,
        bom_id: Optional[str] = None,
        routing_id: Optional[str] = None,
        planned_order_id: Optional[str] = None,
    ) -> WorkOrder:
        """
        Create a work order in PLANNED status.

        Without explicit ids, the BOM and routing effective on the planned start
        date are used; a product without them gets no lines of that kind.
        """
        bom = self._resolve_bom(product_id, bom_id, planned_start_date)
        routing = self._resolve_routing(product_id, routing_id, planned_start_date)
        work_order = WorkOrder(
            id=f"WOR-{uuid4().hex[:8]}",
            order_number=self._next_order_number(),
            product_id=product_id,
            planned_quantity=quantity,
            planned_start_date=planned_start_date,
            planned_end_date=planned_end_date,
            status=WorkOrderStatus.PLANNED,
            bom_id=bom.id if bom else bom_id,
            routing_id=routing.id if routing else routing_id,
            planned_order_id=planned_order_id,
            lines=[*_material_lines(bom, quantity), *_operation_lines(routing, quantity)],
        )
        work_order.status_history.append(
            StatusChange(from_status=None, to_status=WorkOrderStatus.PLANNED, action="create")
        )
        work_order = self.repository.create(work_order)
        logger.info(f"Created work order {work_order.order_number}: {quantity} x {product_id}")
        return work_order

    def create_from_planned_order(
        self,
        planned_order: PlannedOrder,
        bom_id: Optional[str] = None,
        routing_id: Optional[str] = None,
    ) -> WorkOrder:
        """Convert a manufacturing planned order into a work order."""
        if not planned_order.is_manufacturing:
            raise ValueError(f"Planned order {planned_order.id} is a purchase, not a manufacturing order")
        return self.create(
            product_id=planned_order.product_id,
            quantity=planned_order.quantity,
            planned_start_date=planned_order.start_date,
            planned_end_date=planned_order.due_date,
            bom_id=bom_id,
            routing_id=routing_id,
            planned_order_id=planned_order.id,
        )

    def get_by_id(self, work_order_id: str) -> WorkOrder:
        work_order = self.repository.find_by_id(work_order_id)
        if work_order is None:
            raise WorkOrderNotFoundException(work_order_id)
        return work_order

    def get_by_number(self, order_number: str) -> WorkOrder:
        work_order = self.repository.find_by_number(order_number)
        if work_order is None:
            raise WorkOrderNotFoundException(order_number)
        return work_order

    # ───────────────────────────────────────────────────────────────────────────
    # Transitions
    # ───────────────────────────────────────────────────────────────────────────

    def release(self, work_order_id: str) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.RELEASE)

    def start(self, work_order_id: str) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.START)

    def hold(self, work_order_id: str, reason: Optional[str] = None) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.HOLD, note=reason)

    def resume(self, work_order_id: str) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.RESUME)

    def complete(self, work_order_id: str) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.COMPLETE)

    def close(self, work_order_id: str) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.CLOSE)

    def cancel(self, work_order_id: str, reason: Optional[str] = None) -> WorkOrder:
        return self._transition(work_order_id, WorkOrderAction.CANCEL, note=reason)

    def _transition(
        self,
        work_order_id: str,
        action: WorkOrderAction,
        note: Optional[str] = None,
    ) -> WorkOrder:
        work_order = self.get_by_id(work_order_id)
        key = (work_order.status, action)
        if key not in TRANSITIONS:
            raise InvalidWorkOrderStatusException(
                work_order.order_number,
                work_order.status.value,
                [s.value for s in allowed_statuses(action)],
                action.value,
            )

        target = TRANSITIONS[key] or work_order.held_from_status
        now = datetime.now()
        changes: Dict[str, Any] = {
            "status": target,
            "status_history": [
                *work_order.status_history,
                StatusChange(work_order.status, target, action.value, changed_at=now, note=note),
            ],
        }
        if action == WorkOrderAction.START:
            changes["actual_start"] = now
        elif action == WorkOrderAction.COMPLETE:
            changes["actual_end"] = now
        elif action == WorkOrderAction.HOLD:
            changes["held_from_status"] = work_order.status
        elif action == WorkOrderAction.RESUME:
            changes["held_from_status"] = None
        elif action == WorkOrderAction.CANCEL:
            changes["cancel_reason"] = note

        updated = self.repository.update(work_order.with_changes(**changes))
        logger.info(
            f"Work order {updated.order_number}: {work_order.status.value} -> {target.value} ({action.value})"
        )
        if self.event_bus is not None and self.config.publish_events:
            self.event_bus.emit(
                PlanningEventType.WORK_ORDER_STATUS_CHANGED,
                source="work_order_manager",
                work_order_id=updated.id,
                order_number=updated.order_number,
                from_status=work_order.status.value,
                to_status=target.value,
                action=action.value,
            )
        return updated

    # ───────────────────────────────────────────────────────────────────────────
    # Edits
    # ───────────────────────────────────────────────────────────────────────────

    def reschedule(self, work_order_id: str, planned_start_date: date, planned_end_date: date) -> WorkOrder:
        work_order = self._require_status(work_order_id, EDITABLE_STATUSES, "reschedule")
        updated = self.repository.update(work_order.with_changes(
            planned_start_date=planned_start_date,
            planned_end_date=planned_end_date,
        ))
        logger.info(f"Rescheduled {updated.order_number} to {planned_start_date} - {planned_end_date}")
        return updated

    def change_quantity(self, work_order_id: str, quantity: float) -> WorkOrder:
        """
        Change the planned quantity of a PLANNED or RELEASED order.

        Line plans scale with the quantity (setup hours excepted); quantities
        already issued or reported are kept.
        """
        work_order = self._require_status(work_order_id, EDITABLE_STATUSES, "change quantity of")
        if quantity < work_order.completed_quantity:
            raise ValueError(
                f"New quantity ({quantity}) cannot be less than completed quantity "
                f"({work_order.completed_quantity})"
            )
        ratio = quantity / work_order.planned_quantity
        lines = [
            line.with_changes(
                planned_quantity=line.planned_quantity * ratio,
                planned_run_hours=line.planned_run_hours * ratio,
            )
            for line in work_order.lines
        ]
        updated = self.repository.update(work_order.with_changes(planned_quantity=quantity, lines=lines))
        logger.info(f"Quantity of {updated.order_number}: {work_order.planned_quantity} -> {quantity}")
        return updated

    def split(self, work_order_id: str, split_quantity: float) -> WorkOrder:
        """
        Move split_quantity of a PLANNED or RELEASED order into a new order.

        The new order is PLANNED, has the same dates, BOM and routing, and
        refers back to the original through split_from_id.
        """
        work_order = self._require_status(work_order_id, EDITABLE_STATUSES, "split")
        if not 0 < split_quantity < work_order.planned_quantity:
            raise ValueError(
                f"Split quantity must be positive and less than {work_order.planned_quantity}, got {split_quantity}"
            )

        self.change_quantity(work_order_id, work_order.planned_quantity - split_quantity)
        new_order = self.create(
            product_id=work_order.product_id,
            quantity=split_quantity,
            planned_start_date=work_order.planned_start_date,
            planned_end_date=work_order.planned_end_date,
            bom_id=work_order.bom_id,
            routing_id=work_order.routing_id,
            planned_order_id=work_order.planned_order_id,
        )
        new_order = self.repository.update(new_order.with_changes(split_from_id=work_order.id))
        logger.info(f"Split {split_quantity} of {work_order.order_number} into {new_order.order_number}")
        return new_order

    def report_output(self, work_order_id: str, good_quantity: float, scrap_quantity: float = 0.0) -> WorkOrder:
        """Record produced and scrapped quantities of an order in progress."""
        if good_quantity < 0 or scrap_quantity < 0:
            raise ValueError("Reported quantities cannot be negative")
        work_order = self._require_status(work_order_id, (WorkOrderStatus.IN_PROGRESS,), "report output for")
        updated = self.repository.update(work_order.with_changes(
            completed_quantity=work_order.completed_quantity + good_quantity,
            scrapped_quantity=work_order.scrapped_quantity + scrap_quantity,
        ))
        logger.debug(f"{updated.order_number}: +{good_quantity} good, +{scrap_quantity} scrap")
        return updated

    # ───────────────────────────────────────────────────────────────────────────
    # Material and operation reporting
    # ───────────────────────────────────────────────────────────────────────────

    def issue_material(
        self,
        work_order_id: str,
        line_number: int,
        quantity: float,
        lot_number: Optional[str] = None,
    ) -> WorkOrder:
        """Issue material against a material line of a RELEASED or IN_PROGRESS order."""
        if quantity <= 0:
            raise ValueError("Issued quantity must be positive")
        work_order = self._require_status(work_order_id, REPORTING_STATUSES, "issue material for")
        line = work_order.get_line(line_number)
        if line is None or not line.is_material:
            raise ValueError(f"Work order {work_order.order_number} has no material line {line_number}")
        return self._book_material(work_order, line, quantity, lot_number)

    def report_material_consumption(
        self,
        work_order_id: str,
        product_id: str,
        quantity: float,
        lot_number: Optional[str] = None,
    ) -> WorkOrder:
        """Book consumption of a component by product, on its first material line."""
        if quantity <= 0:
            raise ValueError("Consumed quantity must be positive")
        work_order = self._require_status(work_order_id, REPORTING_STATUSES, "report material consumption for")
        line = next((l for l in work_order.material_lines() if l.product_id == product_id), None)
        if line is None:
            raise ValueError(f"Material {product_id} is not on work order {work_order.order_number}")
        return self._book_material(work_order, line, quantity, lot_number)

    def report_operation(
        self,
        work_order_id: str,
        operation_number: int,
        quantity_completed: float,
        setup_hours: float = 0.0,
        run_hours: float = 0.0,
        scrap_quantity: float = 0.0,
    ) -> WorkOrder:
        """
        Report quantity and hours for one routing operation.

        A RELEASED order is started by its first report. Scrap at any
        operation is scrap of the order; good units count as completed only
        when reported on the last operation.
        """
        if min(quantity_completed, setup_hours, run_hours, scrap_quantity) < 0:
            raise ValueError("Reported quantities and hours cannot be negative")
        work_order = self._require_status(work_order_id, REPORTING_STATUSES, "report operations for")
        operations = work_order.operation_lines()
        line = next((l for l in operations if l.operation_number == operation_number), None)
        if line is None:
            raise ValueError(f"Work order {work_order.order_number} has no operation {operation_number}")

        if work_order.status == WorkOrderStatus.RELEASED:
            work_order = self.start(work_order_id)

        booked = line.with_changes(
            issued_quantity=line.issued_quantity + quantity_completed,
            actual_setup_hours=line.actual_setup_hours + setup_hours,
            actual_run_hours=line.actual_run_hours + run_hours,
            scrap_quantity=line.scrap_quantity + scrap_quantity,
        )
        is_last = operation_number == operations[-1].operation_number
        updated = self.repository.update(work_order.with_changes(
            lines=_replace_line(work_order.lines, booked),
            completed_quantity=work_order.completed_quantity + (quantity_completed if is_last else 0.0),
            scrapped_quantity=work_order.scrapped_quantity + scrap_quantity,
        ))
        logger.debug(
            f"{updated.order_number} op {operation_number}: +{quantity_completed} done, "
            f"{setup_hours + run_hours:.2f}h booked"
        )
        return updated

    def get_material_shortages(self, work_order_id: str) -> List[Dict[str, Any]]:
        """Material lines not yet fully issued."""
        work_order = self.get_by_id(work_order_id)
        return [
            {
                "line_number": line.line_number,
                "product_id": line.product_id,
                "planned_quantity": line.planned_quantity,
                "issued_quantity": line.issued_quantity,
                "remaining_quantity": line.remaining_quantity,
                "uom": line.uom,
            }
            for line in work_order.material_lines()
            if line.remaining_quantity > 0
        ]

    def get_operation_progress(self, work_order_id: str) -> List[Dict[str, Any]]:
        work_order = self.get_by_id(work_order_id)
        return [
            {
                "operation_number": line.operation_number,
                "work_center_id": line.work_center_id,
                "planned_quantity": line.planned_quantity,
                "completed_quantity": line.issued_quantity,
                "scrap_quantity": line.scrap_quantity,
                "completion_percentage": round(line.completion_percentage, 2),
                "planned_hours": line.planned_hours,
                "actual_hours": line.actual_hours,
                "labor_efficiency": line.labor_efficiency,
                "is_complete": line.is_complete,
            }
            for line in work_order.operation_lines()
        ]

    def calculate_variance(self, work_order_id: str) -> Dict[str, float]:
        """
        Actual minus planned usage.

        Returns:
            material: issued minus planned component quantity
            labor: booked minus planned operation hours
            total: sum of both
        """
        work_order = self.get_by_id(work_order_id)
        materials = work_order.material_lines()
        operations = work_order.operation_lines()
        material = sum(l.issued_quantity for l in materials) - sum(l.planned_quantity for l in materials)
        labor = sum(l.actual_hours for l in operations) - sum(l.planned_hours for l in operations)
        return {
            "material": material,
            "labor": labor,
            "total": material + labor,
        }

    def get_progress(self, work_order_id: str) -> Dict[str, Any]:
        work_order = self.get_by_id(work_order_id)
        operations = work_order.operation_lines()
        return {
            "order_number": work_order.order_number,
            "status": work_order.status.value,
            "planned_quantity": work_order.planned_quantity,
            "completed_quantity": work_order.completed_quantity,
            "scrapped_quantity": work_order.scrapped_quantity,
            "remaining_quantity": work_order.remaining_quantity,
            "progress": round(work_order.progress, 4),
            "yield_rate": work_order.yield_rate,
            "completed_operations": sum(1 for l in operations if l.is_complete),
            "total_operations": len(operations),
        }

    # ───────────────────────────────────────────────────────────────────────────

    def _book_material(
        self,
        work_order: WorkOrder,
        line: WorkOrderLine,
        quantity: float,
        lot_number: Optional[str],
    ) -> WorkOrder:
        lots = line.lot_numbers
        if lot_number and lot_number not in lots:
            lots = (*lots, lot_number)
        booked = line.with_changes(issued_quantity=line.issued_quantity + quantity, lot_numbers=lots)
        updated = self.repository.update(work_order.with_changes(lines=_replace_line(work_order.lines, booked)))
        logger.debug(f"{updated.order_number}: issued {quantity} {line.uom} of {line.product_id}")
        return updated

    def _resolve_bom(self, product_id: str, bom_id: Optional[str], on_date: date) -> Optional[BillOfMaterials]:
        if self.bom_manager is None:
            return None
        if bom_id:
            return self.bom_manager.get_by_id(bom_id)
        return self.bom_manager.find_effective(product_id, on_date)

    def _resolve_routing(self, product_id: str, routing_id: Optional[str], on_date: date) -> Optional[Routing]:
        if self.routing_manager is None:
            return None
        if routing_id:
            return self.routing_manager.get_by_id(routing_id)
        try:
            return self.routing_manager.get_effective(product_id, on_date)
        except RoutingNotFoundException:
            logger.debug(f"No routing for {product_id} at {on_date}; work order gets no operation lines")
            return None

    def _require_status(
        self,
        work_order_id: str,
        statuses: Tuple[WorkOrderStatus, ...],
        action: str,
    ) -> WorkOrder:
        work_order = self.get_by_id(work_order_id)
        if work_order.status not in statuses:
            raise InvalidWorkOrderStatusException(
                work_order.order_number,
                work_order.status.value,
                [s.value for s in statuses],
                action,
            )
        return work_order

    def _next_order_number(self) -> str:
        sequence = self.repository.count() + 1
        number = f"{self.config.work_order_prefix}-{sequence:06d}"
        while self.repository.find_by_number(number) is not None:
            sequence += 1
            number = f"{self.config.work_order_prefix}-{sequence:06d}"
        return number


def _material_lines(bom: Optional[BillOfMaterials], quantity: float) -> List[WorkOrderLine]:
    if bom is None:
        return []
    return [
        WorkOrderLine(
            line_number=FIRST_MATERIAL_LINE + i,
            line_type=WorkOrderLineType.MATERIAL,
            planned_quantity=bom_line.quantity_with_scrap(quantity),
            product_id=bom_line.component_product_id,
            uom=bom_line.uom,
        )
        for i, bom_line in enumerate(bom.sorted_lines())
    ]


def _operation_lines(routing: Optional[Routing], quantity: float) -> List[WorkOrderLine]:
    if routing is None:
        return []
    return [
        WorkOrderLine(
            line_number=FIRST_OPERATION_LINE + i,
            line_type=WorkOrderLineType.OPERATION,
            planned_quantity=quantity,
            operation_number=op.operation_number,
            work_center_id=op.work_center_id,
            planned_setup_hours=op.setup_time_minutes / 60,
            planned_run_hours=op.run_time_minutes * quantity / 60,
        )
        for i, op in enumerate(routing.sorted_operations())
    ]


def _replace_line(lines: List[WorkOrderLine], updated: WorkOrderLine) -> List[WorkOrderLine]:
    return [updated if l.line_number == updated.line_number else l for l in lines]
