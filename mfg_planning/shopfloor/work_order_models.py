"""
MfgPlan - Work Order Data Structures
====================================
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class WorkOrderStatus(str, Enum):
    """Work order lifecycle status."""
    PLANNED = "planned"          # Initial
    RELEASED = "released"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CLOSED = "closed"            # Terminal
    CANCELLED = "cancelled"      # Terminal

    @property
    def is_terminal(self) -> bool:
        return self in (WorkOrderStatus.CLOSED, WorkOrderStatus.CANCELLED)

    @property
    def is_open(self) -> bool:
        """Still loads capacity."""
        return self in (
            WorkOrderStatus.PLANNED,
            WorkOrderStatus.RELEASED,
            WorkOrderStatus.IN_PROGRESS,
            WorkOrderStatus.ON_HOLD,
        )


class WorkOrderAction(str, Enum):
    RELEASE = "release"
    START = "start"
    HOLD = "hold"
    RESUME = "resume"
    COMPLETE = "complete"
    CLOSE = "close"
    CANCEL = "cancel"


@dataclass(frozen=True)
class StatusChange:
    from_status: Optional[WorkOrderStatus]
    to_status: WorkOrderStatus
    action: str
    changed_at: datetime = field(default_factory=datetime.now)
    note: Optional[str] = None


class WorkOrderLineType(str, Enum):
    MATERIAL = "material"
    OPERATION = "operation"


@dataclass(frozen=True)
class WorkOrderLine:
    """
    Material or operation line of a work order.

    Material lines are generated from the BOM (numbered from 1) and track the
    quantity issued. Operation lines are generated from the routing (numbered
    from 100) and track the quantity reported and the hours booked.
    """
    line_number: int
    line_type: WorkOrderLineType
    planned_quantity: float
    issued_quantity: float = 0.0  # Material issued, or operation quantity completed
    product_id: Optional[str] = None
    uom: str = "EA"
    operation_number: Optional[int] = None
    work_center_id: Optional[str] = None
    planned_setup_hours: float = 0.0
    planned_run_hours: float = 0.0
    actual_setup_hours: float = 0.0
    actual_run_hours: float = 0.0
    scrap_quantity: float = 0.0
    lot_numbers: Tuple[str, ...] = ()

    @property
    def is_material(self) -> bool:
        return self.line_type == WorkOrderLineType.MATERIAL

    @property
    def is_operation(self) -> bool:
        return self.line_type == WorkOrderLineType.OPERATION

    @property
    def remaining_quantity(self) -> float:
        return max(0.0, self.planned_quantity - self.issued_quantity)

    @property
    def completion_percentage(self) -> float:
        if self.planned_quantity <= 0:
            return 100.0
        return min(100.0, self.issued_quantity / self.planned_quantity * 100)

    @property
    def is_complete(self) -> bool:
        return self.issued_quantity >= self.planned_quantity

    @property
    def planned_hours(self) -> float:
        return self.planned_setup_hours + self.planned_run_hours

    @property
    def actual_hours(self) -> float:
        return self.actual_setup_hours + self.actual_run_hours

    @property
    def labor_efficiency(self) -> Optional[float]:
        """Planned over actual hours, in percent; None until hours are booked."""
        if not self.is_operation or self.actual_hours <= 0 or self.planned_hours <= 0:
            return None
        return self.planned_hours / self.actual_hours * 100

    def with_changes(self, **changes) -> "WorkOrderLine":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_number": self.line_number,
            "line_type": self.line_type.value,
            "product_id": self.product_id,
            "planned_quantity": self.planned_quantity,
            "issued_quantity": self.issued_quantity,
            "uom": self.uom,
            "operation_number": self.operation_number,
            "work_center_id": self.work_center_id,
            "planned_setup_hours": self.planned_setup_hours,
            "planned_run_hours": self.planned_run_hours,
            "actual_setup_hours": self.actual_setup_hours,
            "actual_run_hours": self.actual_run_hours,
            "scrap_quantity": self.scrap_quantity,
            "lot_numbers": list(self.lot_numbers),
        }


@dataclass
class WorkOrder:
    """Production order executed on the shop floor."""
    id: str
    order_number: str
    product_id: str
    planned_quantity: float
    planned_start_date: date
    planned_end_date: date
    status: WorkOrderStatus = WorkOrderStatus.PLANNED
    completed_quantity: float = 0.0
    scrapped_quantity: float = 0.0
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    held_from_status: Optional[WorkOrderStatus] = None
    planned_order_id: Optional[str] = None
    bom_id: Optional[str] = None
    routing_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    status_history: List[StatusChange] = field(default_factory=list)
    lines: List[WorkOrderLine] = field(default_factory=list)
    split_from_id: Optional[str] = None

    def __post_init__(self):
        if self.planned_quantity <= 0:
            raise ValueError("Planned quantity must be positive")
        if self.planned_end_date < self.planned_start_date:
            raise ValueError("Planned end date cannot precede planned start date")

    @property
    def remaining_quantity(self) -> float:
        return max(0.0, self.planned_quantity - self.completed_quantity)

    @property
    def progress(self) -> float:
        """Completed share of the planned quantity (0-1)."""
        return min(1.0, self.completed_quantity / self.planned_quantity)

    @property
    def yield_rate(self) -> Optional[float]:
        produced = self.completed_quantity + self.scrapped_quantity
        if produced <= 0:
            return None
        return self.completed_quantity / produced

    def material_lines(self) -> List[WorkOrderLine]:
        return sorted((l for l in self.lines if l.is_material), key=lambda l: l.line_number)

    def operation_lines(self) -> List[WorkOrderLine]:
        return sorted((l for l in self.lines if l.is_operation), key=lambda l: l.operation_number)

    def get_line(self, line_number: int) -> Optional[WorkOrderLine]:
        return next((l for l in self.lines if l.line_number == line_number), None)

    def with_changes(self, **changes) -> "WorkOrder":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product_id": self.product_id,
            "planned_quantity": self.planned_quantity,
            "completed_quantity": self.completed_quantity,
            "scrapped_quantity": self.scrapped_quantity,
            "status": self.status.value,
            "planned_start_date": self.planned_start_date.isoformat(),
            "planned_end_date": self.planned_end_date.isoformat(),
            "actual_start": self.actual_start.isoformat() if self.actual_start else None,
            "actual_end": self.actual_end.isoformat() if self.actual_end else None,
            "planned_order_id": self.planned_order_id,
            "cancel_reason": self.cancel_reason,
            "split_from_id": self.split_from_id,
            "lines": [line.to_dict() for line in self.lines],
        }
