"""
MfgPlan - Engineering Change Order Data Structures
==================================================

A change order collects BOM and routing edits for a product and carries
them through approval. Implementing it produces new released versions
of the affected documents, effective from the change order's date.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from mfg_planning.engineering.engineering_models import BomLine, Operation


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class ChangeOrderStatus(str, Enum):
    """Change order approval status."""
    DRAFT = "draft"                        # Initial, editable
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"            # Terminal
    CANCELLED = "cancelled"                # Terminal

    @property
    def is_open(self) -> bool:
        """Not yet applied, rejected or cancelled."""
        return self in (
            ChangeOrderStatus.DRAFT,
            ChangeOrderStatus.PENDING_APPROVAL,
            ChangeOrderStatus.APPROVED,
        )


class ChangeOrderAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    IMPLEMENT = "implement"
    CANCEL = "cancel"


class BomChangeType(str, Enum):
    ADD_LINE = "add_line"
    REMOVE_LINE = "remove_line"
    MODIFY_LINE = "modify_line"
    NEW_VERSION = "new_version"  # Copy without edits


class RoutingChangeType(str, Enum):
    ADD_OPERATION = "add_operation"
    REMOVE_OPERATION = "remove_operation"
    MODIFY_OPERATION = "modify_operation"
    NEW_VERSION = "new_version"


# ═══════════════════════════════════════════════════════════════════════════════
# CHANGES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BomChange:
    """
    One edit to a BOM.

    ADD_LINE needs `line`; REMOVE_LINE needs `line_number`; MODIFY_LINE needs
    `line_number` and the field values in `changes`.
    """
    bom_id: str
    change_type: BomChangeType
    line: Optional[BomLine] = None
    line_number: Optional[int] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.bom_id:
            raise ValueError("BOM change must reference a BOM")
        if self.change_type == BomChangeType.ADD_LINE and self.line is None:
            raise ValueError("add_line change requires a line")
        if self.change_type in (BomChangeType.REMOVE_LINE, BomChangeType.MODIFY_LINE) and self.line_number is None:
            raise ValueError(f"{self.change_type.value} change requires a line number")
        if self.change_type == BomChangeType.MODIFY_LINE and not self.changes:
            raise ValueError("modify_line change requires field changes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bom_id": self.bom_id,
            "change_type": self.change_type.value,
            "line": self.line.to_dict() if self.line else None,
            "line_number": self.line_number,
            "changes": dict(self.changes),
        }


@dataclass(frozen=True)
class RoutingChange:
    """One edit to a routing, shaped like BomChange."""
    routing_id: str
    change_type: RoutingChangeType
    operation: Optional[Operation] = None
    operation_number: Optional[int] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.routing_id:
            raise ValueError("Routing change must reference a routing")
        if self.change_type == RoutingChangeType.ADD_OPERATION and self.operation is None:
            raise ValueError("add_operation change requires an operation")
        if (
            self.change_type in (RoutingChangeType.REMOVE_OPERATION, RoutingChangeType.MODIFY_OPERATION)
            and self.operation_number is None
        ):
            raise ValueError(f"{self.change_type.value} change requires an operation number")
        if self.change_type == RoutingChangeType.MODIFY_OPERATION and not self.changes:
            raise ValueError("modify_operation change requires field changes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "routing_id": self.routing_id,
            "change_type": self.change_type.value,
            "operation": self.operation.to_dict() if self.operation else None,
            "operation_number": self.operation_number,
            "changes": dict(self.changes),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# CHANGE ORDER
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ChangeOrder:
    """Engineering change order for one product."""
    id: str
    order_number: str
    product_id: str
    description: str
    status: ChangeOrderStatus = ChangeOrderStatus.DRAFT
    affected_bom_ids: List[str] = field(default_factory=list)
    affected_routing_ids: List[str] = field(default_factory=list)
    effective_date: Optional[date] = None  # None: the implementation date
    bom_changes: List[BomChange] = field(default_factory=list)
    routing_changes: List[RoutingChange] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    implemented_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    # Versions produced by implementation
    created_bom_ids: List[str] = field(default_factory=list)
    created_routing_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.product_id:
            raise ValueError("Product ID is required")

    @property
    def has_changes(self) -> bool:
        return bool(self.bom_changes or self.routing_changes)

    def with_changes(self, **changes) -> "ChangeOrder":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product_id": self.product_id,
            "description": self.description,
            "status": self.status.value,
            "affected_bom_ids": list(self.affected_bom_ids),
            "affected_routing_ids": list(self.affected_routing_ids),
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "bom_changes": [c.to_dict() for c in self.bom_changes],
            "routing_changes": [c.to_dict() for c in self.routing_changes],
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "created_bom_ids": list(self.created_bom_ids),
            "created_routing_ids": list(self.created_routing_ids),
        }
