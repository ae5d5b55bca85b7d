"""
MfgPlan - Manufacturing Planning Core
=====================================

Given demand, bills of materials, routings, inventory state and work-center
capacity, computes what must be produced or purchased, when, and whether
capacity can support it.

Modules:
- engineering: BOM and routing versioning, multi-level explosion, change orders
- mrp: time-phased netting, lot sizing, planned orders
- planning: work center calendars, capacity load and bottlenecks
- forecasting: ML / historical forecast chain
- shopfloor: work order lifecycle, material and operation reporting
- providers: data contracts and in-memory implementations

Usage:
    from mfg_planning import BillOfMaterialsManager, MrpEngine, PlanningHorizon

    engine = MrpEngine(bom_manager, inventory, demand)
    result = engine.calculate("P-100", PlanningHorizon.for_days(90))
"""

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.engineering.change_order_manager import ChangeOrderManager
from mfg_planning.engineering.change_order_models import (
    BomChange,
    BomChangeType,
    ChangeOrder,
    ChangeOrderStatus,
    RoutingChange,
    RoutingChangeType,
)
from mfg_planning.engineering.engineering_models import (
    BillOfMaterials,
    BomLine,
    BomType,
    DocumentStatus,
    ExplodedRequirement,
    Operation,
    OperationType,
    Routing,
)
from mfg_planning.engineering.routing_manager import RoutingManager
from mfg_planning.exceptions import (
    BomNotFoundException,
    BomValidationError,
    CapacityExceededException,
    ChangeOrderNotFoundException,
    ChangeOrderValidationError,
    CircularBomException,
    ForecastUnavailableException,
    InvalidChangeOrderStatusException,
    InvalidWorkOrderStatusException,
    ManufacturingError,
    NotFoundError,
    RoutingNotFoundException,
    RoutingValidationError,
    WorkCenterNotFoundException,
    WorkOrderNotFoundException,
)
from mfg_planning.forecasting.demand_forecaster import DemandForecaster
from mfg_planning.forecasting.forecast_models import DemandForecast, ForecastConfidence
from mfg_planning.forecasting.historical_forecast import HistoricalDemandForecaster
from mfg_planning.hooks import PlanningEvent, PlanningEventBus, PlanningEventType
from mfg_planning.horizon import BucketSize, PlanningHorizon, PlanningZone
from mfg_planning.mrp.lot_sizing import LotSizingPolicy, LotSizingStrategy, get_lot_sizing_policy
from mfg_planning.mrp.mrp_engine import MrpEngine
from mfg_planning.mrp.mrp_models import (
    MaterialRequirement,
    MrpResult,
    PlannedOrder,
    ReplenishmentType,
    RequirementSource,
)
from mfg_planning.planning.capacity_planner import CapacityPlanner, CapacityProfile
from mfg_planning.planning.work_center_manager import WorkCenter, WorkCenterManager
from mfg_planning.shopfloor.work_order_manager import WorkOrderManager
from mfg_planning.shopfloor.work_order_models import WorkOrder, WorkOrderLine, WorkOrderLineType, WorkOrderStatus

__version__ = "0.4.0"

__all__ = [
    # Config
    "PlanningConfig",
    "PlanningSettings",
    # Engineering
    "BillOfMaterialsManager",
    "RoutingManager",
    "ChangeOrderManager",
    "ChangeOrder",
    "ChangeOrderStatus",
    "BomChange",
    "BomChangeType",
    "RoutingChange",
    "RoutingChangeType",
    "BillOfMaterials",
    "BomLine",
    "BomType",
    "DocumentStatus",
    "ExplodedRequirement",
    "Operation",
    "OperationType",
    "Routing",
    # MRP
    "MrpEngine",
    "MrpResult",
    "MaterialRequirement",
    "PlannedOrder",
    "ReplenishmentType",
    "RequirementSource",
    "LotSizingPolicy",
    "LotSizingStrategy",
    "get_lot_sizing_policy",
    # Capacity
    "CapacityPlanner",
    "CapacityProfile",
    "WorkCenter",
    "WorkCenterManager",
    # Forecasting
    "DemandForecaster",
    "DemandForecast",
    "ForecastConfidence",
    "HistoricalDemandForecaster",
    # Shop floor
    "WorkOrderManager",
    "WorkOrder",
    "WorkOrderStatus",
    "WorkOrderLine",
    "WorkOrderLineType",
    # Shared
    "PlanningHorizon",
    "PlanningZone",
    "BucketSize",
    "PlanningEvent",
    "PlanningEventBus",
    "PlanningEventType",
    # Errors
    "ManufacturingError",
    "NotFoundError",
    "BomNotFoundException",
    "RoutingNotFoundException",
    "WorkCenterNotFoundException",
    "WorkOrderNotFoundException",
    "ChangeOrderNotFoundException",
    "CircularBomException",
    "BomValidationError",
    "RoutingValidationError",
    "InvalidWorkOrderStatusException",
    "InvalidChangeOrderStatusException",
    "ChangeOrderValidationError",
    "ForecastUnavailableException",
    "CapacityExceededException",
]
