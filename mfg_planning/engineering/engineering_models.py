"""
MfgPlan - Engineering Models
============================

Bills of materials and routings with their versioning metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class DocumentStatus(str, Enum):
    """Lifecycle status shared by BOMs and routings."""
    DRAFT = "draft"
    RELEASED = "released"
    OBSOLETE = "obsolete"


class BomType(str, Enum):
    MANUFACTURING = "manufacturing"
    ENGINEERING = "engineering"
    PLANNING = "planning"
    PHANTOM = "phantom"


class OperationType(str, Enum):
    PRODUCTION = "production"
    SETUP = "setup"
    INSPECTION = "inspection"
    PACKAGING = "packaging"
    SUBCONTRACT = "subcontract"  # Performed outside, no work center load

    @property
    def consumes_capacity(self) -> bool:
        return self != OperationType.SUBCONTRACT


def _covers(effective_from: Optional[date], effective_to: Optional[date], on_date: date) -> bool:
    if effective_from is not None and on_date < effective_from:
        return False
    if effective_to is not None and on_date > effective_to:
        return False
    return True


# ═══════════════════════════════════════════════════════════════════════════════
# BILL OF MATERIALS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BomLine:
    """Component line of a BOM."""
    component_product_id: str
    quantity_per_parent_unit: float
    uom: str = "EA"
    line_number: int = 10  # Defines explosion order
    scrap_percentage: float = 0.0
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.component_product_id:
            raise ValueError("Component product ID is required")
        if self.quantity_per_parent_unit <= 0:
            raise ValueError("Quantity per parent unit must be positive")
        if self.line_number < 1:
            raise ValueError("Line number must be positive")
        if not 0 <= self.scrap_percentage <= 100:
            raise ValueError("Scrap percentage must be between 0 and 100")

    def quantity_with_scrap(self, parent_quantity: float = 1.0) -> float:
        return self.quantity_per_parent_unit * parent_quantity * (1 + self.scrap_percentage / 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line_number": self.line_number,
            "component_product_id": self.component_product_id,
            "quantity_per_parent_unit": self.quantity_per_parent_unit,
            "uom": self.uom,
            "scrap_percentage": self.scrap_percentage,
        }


@dataclass
class BillOfMaterials:
    """Versioned BOM of a product."""
    id: str
    product_id: str
    version: int = 1
    bom_type: BomType = BomType.MANUFACTURING
    status: DocumentStatus = DocumentStatus.DRAFT
    lines: List[BomLine] = field(default_factory=list)
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    description: str = ""

    def __post_init__(self):
        if self.version < 1:
            raise ValueError("Version must be positive")
        if self.effective_from and self.effective_to and self.effective_to < self.effective_from:
            raise ValueError("effective_to cannot precede effective_from")

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    def sorted_lines(self) -> List[BomLine]:
        return sorted(self.lines, key=lambda line: line.line_number)

    def component_ids(self) -> List[str]:
        return [line.component_product_id for line in self.sorted_lines()]

    def get_line(self, line_number: int) -> Optional[BomLine]:
        return next((l for l in self.lines if l.line_number == line_number), None)

    def covers(self, on_date: date) -> bool:
        return _covers(self.effective_from, self.effective_to, on_date)

    def is_effective_at(self, on_date: date) -> bool:
        return self.status == DocumentStatus.RELEASED and self.covers(on_date)

    def with_changes(self, **changes) -> "BillOfMaterials":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "version": self.version,
            "bom_type": self.bom_type.value,
            "status": self.status.value,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "lines": [line.to_dict() for line in self.sorted_lines()],
        }


@dataclass(frozen=True)
class ExplodedRequirement:
    """One row of a flattened BOM explosion."""
    product_id: str
    quantity: float
    level: int  # 1 = direct component of the exploded BOM
    parent_product_id: str
    line_number: int
    uom: str = "EA"
    has_bom: bool = False  # Intermediate (manufactured) vs terminal


# ═══════════════════════════════════════════════════════════════════════════════
# ROUTING
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Operation:
    """Routing step performed at a work center."""
    operation_number: int
    work_center_id: str
    description: str = ""
    operation_type: OperationType = OperationType.PRODUCTION
    setup_time_minutes: float = 0.0
    run_time_minutes: float = 0.0  # Per unit
    queue_time_minutes: float = 0.0
    move_time_minutes: float = 0.0
    overlap_percentage: float = 0.0  # Overlap with the next operation

    def __post_init__(self):
        if self.operation_number < 1:
            raise ValueError("Operation number must be positive")
        if min(self.setup_time_minutes, self.run_time_minutes,
               self.queue_time_minutes, self.move_time_minutes) < 0:
            raise ValueError("Time values cannot be negative")
        if not 0 <= self.overlap_percentage <= 100:
            raise ValueError("Overlap percentage must be between 0 and 100")

    def capacity_hours(self, quantity: float) -> float:
        """Work-center hours: setup + run per unit."""
        if not self.operation_type.consumes_capacity:
            return 0.0
        return self.setup_time_minutes / 60 + (self.run_time_minutes / 60) * quantity

    def total_time_minutes(self, quantity: float) -> float:
        return (
            self.setup_time_minutes
            + self.run_time_minutes * quantity
            + self.queue_time_minutes
            + self.move_time_minutes
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_number": self.operation_number,
            "work_center_id": self.work_center_id,
            "description": self.description,
            "operation_type": self.operation_type.value,
            "setup_time_minutes": self.setup_time_minutes,
            "run_time_minutes": self.run_time_minutes,
            "queue_time_minutes": self.queue_time_minutes,
            "move_time_minutes": self.move_time_minutes,
            "overlap_percentage": self.overlap_percentage,
        }


@dataclass
class Routing:
    """Versioned operation sequence of a product."""
    id: str
    product_id: str
    version: int = 1
    status: DocumentStatus = DocumentStatus.DRAFT
    operations: List[Operation] = field(default_factory=list)
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    description: str = ""

    def __post_init__(self):
        if self.version < 1:
            raise ValueError("Version must be positive")
        if self.effective_from and self.effective_to and self.effective_to < self.effective_from:
            raise ValueError("effective_to cannot precede effective_from")

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    def sorted_operations(self) -> List[Operation]:
        return sorted(self.operations, key=lambda op: op.operation_number)

    def get_operation(self, operation_number: int) -> Optional[Operation]:
        return next((op for op in self.operations if op.operation_number == operation_number), None)

    def covers(self, on_date: date) -> bool:
        return _covers(self.effective_from, self.effective_to, on_date)

    def is_effective_at(self, on_date: date) -> bool:
        return self.status == DocumentStatus.RELEASED and self.covers(on_date)

    def work_center_ids(self) -> List[str]:
        seen: List[str] = []
        for op in self.sorted_operations():
            if op.work_center_id not in seen:
                seen.append(op.work_center_id)
        return seen

    def with_changes(self, **changes) -> "Routing":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "version": self.version,
            "status": self.status.value,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "operations": [op.to_dict() for op in self.sorted_operations()],
        }
