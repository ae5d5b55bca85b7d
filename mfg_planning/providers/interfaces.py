"""
MfgPlan - Provider Contracts
============================

Narrow interfaces through which the planning core reads engineering,
inventory, demand and forecast data and persists its outputs.

All calls are synchronous. Implementations used by `MrpEngine.calculate`
and the capacity checks must be side-effect-free reads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from mfg_planning.engineering.change_order_models import ChangeOrder
    from mfg_planning.engineering.engineering_models import BillOfMaterials, Routing
    from mfg_planning.forecasting.forecast_models import DemandForecast, ForecastConfidence
    from mfg_planning.horizon import PlanningHorizon
    from mfg_planning.mrp.mrp_models import PlannedOrder, ReplenishmentType
    from mfg_planning.planning.work_center_manager import WorkCenter
    from mfg_planning.shopfloor.work_order_models import WorkOrder


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINEERING
# ═══════════════════════════════════════════════════════════════════════════════

class BomRepository(ABC):
    """Persistence of BOM versions."""

    @abstractmethod
    def find_by_id(self, bom_id: str) -> Optional[BillOfMaterials]:
        ...

    @abstractmethod
    def find_by_product_id(
        self, product_id: str, on_date: Optional[date] = None
    ) -> Optional[BillOfMaterials]:
        """Released BOM effective at on_date (today when omitted)."""
        ...

    @abstractmethod
    def find_all_versions(self, product_id: str) -> List[BillOfMaterials]:
        ...

    @abstractmethod
    def find_all(self) -> List[BillOfMaterials]:
        ...

    @abstractmethod
    def create(self, bom: BillOfMaterials) -> BillOfMaterials:
        ...

    @abstractmethod
    def update(self, bom: BillOfMaterials) -> BillOfMaterials:
        ...


class RoutingRepository(ABC):
    """Persistence of routing versions."""

    @abstractmethod
    def find_by_id(self, routing_id: str) -> Optional[Routing]:
        ...

    @abstractmethod
    def find_by_product_id(
        self, product_id: str, on_date: Optional[date] = None
    ) -> Optional[Routing]:
        ...

    @abstractmethod
    def find_all_versions(self, product_id: str) -> List[Routing]:
        ...

    @abstractmethod
    def create(self, routing: Routing) -> Routing:
        ...

    @abstractmethod
    def update(self, routing: Routing) -> Routing:
        ...


class ChangeOrderRepository(ABC):

    @abstractmethod
    def create(self, change_order: ChangeOrder) -> ChangeOrder:
        ...

    @abstractmethod
    def find_by_id(self, change_order_id: str) -> Optional[ChangeOrder]:
        ...

    @abstractmethod
    def find_by_number(self, order_number: str) -> Optional[ChangeOrder]:
        ...

    @abstractmethod
    def find_by_product(self, product_id: str) -> List[ChangeOrder]:
        """All change orders of a product, oldest first."""
        ...

    @abstractmethod
    def update(self, change_order: ChangeOrder) -> ChangeOrder:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class WorkCenterProvider(ABC):
    """Work center master data and calendar."""

    @abstractmethod
    def get_by_id(self, work_center_id: str) -> WorkCenter:
        ...

    @abstractmethod
    def find_active(self) -> List[WorkCenter]:
        ...

    @abstractmethod
    def get_available_hours(self, work_center_id: str, on_date: date) -> float:
        ...

    @abstractmethod
    def get_available_hours_for_period(
        self, work_center_id: str, start_date: date, end_date: date
    ) -> float:
        """Available hours over [start_date, end_date)."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# INVENTORY / DEMAND
# ═══════════════════════════════════════════════════════════════════════════════

class InventoryDataProvider(ABC):
    """Inventory state per product."""

    @abstractmethod
    def get_on_hand_quantity(self, product_id: str) -> float:
        ...

    @abstractmethod
    def get_safety_stock(self, product_id: str) -> float:
        ...

    @abstractmethod
    def get_scheduled_receipts(self, product_id: str, until: date) -> List[Tuple[date, float]]:
        """Open receipts (date, quantity) due on or before until."""
        ...

    @abstractmethod
    def get_lead_time_days(self, product_id: str) -> int:
        ...

    @abstractmethod
    def get_replenishment_type(self, product_id: str) -> ReplenishmentType:
        ...


class DemandDataProvider(ABC):
    """Independent demand and planned order persistence."""

    @abstractmethod
    def get_gross_requirements(self, product_id: str, horizon: PlanningHorizon) -> Dict[date, float]:
        ...

    @abstractmethod
    def get_master_scheduled_products(self, horizon: PlanningHorizon) -> List[str]:
        ...

    @abstractmethod
    def delete_planned_orders(self, product_id: str, horizon: PlanningHorizon) -> int:
        """Delete planned orders generated for product_id overlapping the horizon."""
        ...

    @abstractmethod
    def save_planned_order(self, order: PlannedOrder) -> None:
        ...

    @abstractmethod
    def get_planned_orders(self, horizon: PlanningHorizon) -> List[PlannedOrder]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# FORECASTING
# ═══════════════════════════════════════════════════════════════════════════════

class ForecastProvider(ABC):
    """Primary (ML) forecast source."""

    @abstractmethod
    def generate_forecast(self, product_id: str, horizon: PlanningHorizon) -> DemandForecast:
        ...

    @abstractmethod
    def is_healthy(self) -> bool:
        ...

    @abstractmethod
    def get_model_confidence(self, product_id: str) -> ForecastConfidence:
        ...


class ForecastFallbackProvider(ABC):
    """Historical / statistical forecast source."""

    @abstractmethod
    def generate_from_history(self, product_id: str, horizon: PlanningHorizon) -> DemandForecast:
        ...

    @abstractmethod
    def get_historical_confidence(self, product_id: str) -> ForecastConfidence:
        ...

    @abstractmethod
    def calculate_seasonality(self, product_id: str) -> Dict[int, float]:
        """Month (1-12) -> seasonal factor."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# SHOP FLOOR
# ═══════════════════════════════════════════════════════════════════════════════

class WorkOrderRepository(ABC):

    @abstractmethod
    def create(self, work_order: WorkOrder) -> WorkOrder:
        ...

    @abstractmethod
    def find_by_id(self, work_order_id: str) -> Optional[WorkOrder]:
        ...

    @abstractmethod
    def find_by_number(self, order_number: str) -> Optional[WorkOrder]:
        ...

    @abstractmethod
    def update(self, work_order: WorkOrder) -> WorkOrder:
        ...

    @abstractmethod
    def find_open(self) -> List[WorkOrder]:
        """Work orders that still load capacity."""
        ...

    @abstractmethod
    def count(self) -> int:
        ...
