"""
MfgPlan - MRP Data Structures
=============================

Material requirements, planned orders and MRP results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pandas as pd

from mfg_planning.models_common import MrpSummary


class ReplenishmentType(str, Enum):
    """How a product is replenished."""
    MANUFACTURE = "manufacture"
    PURCHASE = "purchase"


class RequirementSource(str, Enum):
    """Source of a gross requirement."""
    INDEPENDENT = "independent"  # Customer orders, forecast, MPS
    DEPENDENT = "dependent"      # Exploded from a parent planned order


@dataclass(frozen=True)
class MaterialRequirement:
    """Netting result of one product on one date."""
    product_id: str
    required_date: date
    gross_requirement: float
    net_requirement: float
    source: RequirementSource
    level: int = 0
    scheduled_receipts: float = 0.0
    projected_balance: float = 0.0  # After planned receipts on this date
    safety_stock: float = 0.0
    parent_product_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "required_date": self.required_date.isoformat(),
            "gross_requirement": self.gross_requirement,
            "net_requirement": self.net_requirement,
            "source": self.source.value,
            "level": self.level,
            "scheduled_receipts": self.scheduled_receipts,
            "projected_balance": self.projected_balance,
            "safety_stock": self.safety_stock,
            "parent_product_id": self.parent_product_id,
        }


@dataclass(frozen=True)
class PlannedOrder:
    """System-suggested replenishment order, created by the MRP engine only."""
    product_id: str
    quantity: float
    start_date: date
    due_date: date
    replenishment_type: ReplenishmentType
    level: int = 0
    net_requirement: float = 0.0  # Shortfall before lot sizing
    lot_sizing_strategy: str = "lot_for_lot"
    root_product_id: Optional[str] = None  # Product whose MRP run produced the order
    parent_product_id: Optional[str] = None
    id: str = field(default_factory=lambda: f"PLO-{uuid4().hex[:8]}")

    @property
    def is_manufacturing(self) -> bool:
        return self.replenishment_type == ReplenishmentType.MANUFACTURE

    @property
    def is_purchase(self) -> bool:
        return self.replenishment_type == ReplenishmentType.PURCHASE

    @property
    def lead_time_days(self) -> int:
        return (self.due_date - self.start_date).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "start_date": self.start_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "replenishment_type": self.replenishment_type.value,
            "level": self.level,
            "net_requirement": self.net_requirement,
            "lot_sizing_strategy": self.lot_sizing_strategy,
            "root_product_id": self.root_product_id,
            "parent_product_id": self.parent_product_id,
        }


@dataclass
class MrpResult:
    """Result of an MRP run for a product (including exploded components)."""
    product_id: str
    material_requirements: List[MaterialRequirement] = field(default_factory=list)
    planned_orders: List[PlannedOrder] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=datetime.now)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return not self.errors

    def manufacturing_orders(self) -> List[PlannedOrder]:
        return [o for o in self.planned_orders if o.is_manufacturing]

    def purchase_orders(self) -> List[PlannedOrder]:
        return [o for o in self.planned_orders if o.is_purchase]

    def orders_for(self, product_id: str) -> List[PlannedOrder]:
        return [o for o in self.planned_orders if o.product_id == product_id]

    def requirements_for(self, product_id: str) -> List[MaterialRequirement]:
        return [r for r in self.material_requirements if r.product_id == product_id]

    @property
    def total_planned_quantity(self) -> float:
        return float(sum(o.quantity for o in self.planned_orders))

    @property
    def total_net_requirement(self) -> float:
        return float(sum(r.net_requirement for r in self.material_requirements))

    def summary(self) -> MrpSummary:
        return MrpSummary(
            product_id=self.product_id,
            is_successful=self.is_successful,
            planned_order_count=len(self.planned_orders),
            manufacturing_order_count=len(self.manufacturing_orders()),
            purchase_order_count=len(self.purchase_orders()),
            total_planned_quantity=self.total_planned_quantity,
            total_net_requirement=self.total_net_requirement,
            warning_count=len(self.warnings),
            error_count=len(self.errors),
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Material requirements as a DataFrame (one row per product and date)."""
        columns = [
            "product_id", "required_date", "gross_requirement", "net_requirement",
            "source", "level", "scheduled_receipts", "projected_balance",
            "safety_stock", "parent_product_id",
        ]
        rows = [r.to_dict() for r in self.material_requirements]
        return pd.DataFrame(rows, columns=columns)

    def orders_dataframe(self) -> pd.DataFrame:
        columns = [
            "id", "product_id", "quantity", "start_date", "due_date", "replenishment_type",
            "level", "net_requirement", "lot_sizing_strategy", "root_product_id",
            "parent_product_id",
        ]
        return pd.DataFrame([o.to_dict() for o in self.planned_orders], columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "planned_orders": [o.to_dict() for o in self.planned_orders],
            "material_requirements": [r.to_dict() for r in self.material_requirements],
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "calculated_at": self.calculated_at.isoformat(),
            "parameters": self.parameters,
            "summary": self.summary().model_dump(),
        }
