"""
Common fixtures for the planning tests.
"""
from datetime import date

import pytest

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.engineering.change_order_manager import ChangeOrderManager
from mfg_planning.engineering.engineering_models import BomLine, Operation
from mfg_planning.engineering.routing_manager import RoutingManager
from mfg_planning.hooks import PlanningEventBus, RecordingObserver
from mfg_planning.mrp.mrp_engine import MrpEngine
from mfg_planning.mrp.mrp_models import ReplenishmentType
from mfg_planning.planning.capacity_planner import CapacityPlanner
from mfg_planning.planning.work_center_manager import WorkCenter, WorkCenterManager
from mfg_planning.providers.memory import (
    InMemoryBomRepository,
    InMemoryChangeOrderRepository,
    InMemoryDemandProvider,
    InMemoryInventoryProvider,
    InMemoryRoutingRepository,
    InMemoryWorkOrderRepository,
)
from mfg_planning.shopfloor.work_order_manager import WorkOrderManager


@pytest.fixture(autouse=True)
def planning_config():
    """Fresh default configuration for every test, independent of the environment."""
    config = PlanningConfig()
    PlanningSettings.set_config(config)
    yield config
    PlanningSettings.reset()


@pytest.fixture
def event_bus():
    return PlanningEventBus()


@pytest.fixture
def observer(event_bus):
    """Records every published event."""
    recorder = RecordingObserver()
    event_bus.subscribe(None, recorder)
    return recorder


# ═══════════════════════════════════════════════════════════════════════════════
# PROVIDERS
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def bom_repository():
    return InMemoryBomRepository()


@pytest.fixture
def routing_repository():
    return InMemoryRoutingRepository()


@pytest.fixture
def inventory():
    return InMemoryInventoryProvider()


@pytest.fixture
def demand():
    return InMemoryDemandProvider()


@pytest.fixture
def work_order_repository():
    return InMemoryWorkOrderRepository()


# ═══════════════════════════════════════════════════════════════════════════════
# MANAGERS
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def bom_manager(bom_repository, event_bus, planning_config):
    return BillOfMaterialsManager(bom_repository, event_bus, planning_config)


@pytest.fixture
def routing_manager(routing_repository, event_bus, planning_config):
    return RoutingManager(routing_repository, event_bus, planning_config)


@pytest.fixture
def change_order_manager(bom_manager, routing_manager, event_bus, planning_config):
    return ChangeOrderManager(
        InMemoryChangeOrderRepository(), bom_manager, routing_manager, event_bus, planning_config
    )


@pytest.fixture
def work_center_manager():
    """Three 8h/day single-unit work centers; WC-ALT is the alternative of WC-ASM."""
    return WorkCenterManager([
        WorkCenter(id="WC-WELD", code="WELD", name="Welding", hours_per_day=8),
        WorkCenter(id="WC-ASM", code="ASM", name="Assembly", hours_per_day=8, alternative_ids=["WC-ALT"]),
        WorkCenter(id="WC-ALT", code="ALT", name="Assembly cell 2", hours_per_day=8),
    ])


@pytest.fixture
def capacity_planner(routing_manager, work_center_manager, demand, work_order_repository, event_bus, planning_config):
    return CapacityPlanner(
        routing_manager,
        work_center_manager,
        demand_provider=demand,
        work_order_repository=work_order_repository,
        event_bus=event_bus,
        config=planning_config,
    )


@pytest.fixture
def mrp_engine(bom_manager, inventory, demand, event_bus, planning_config):
    return MrpEngine(bom_manager, inventory, demand, event_bus, planning_config)


@pytest.fixture
def work_order_manager(work_order_repository, event_bus, planning_config, bom_manager, routing_manager):
    return WorkOrderManager(
        work_order_repository,
        event_bus,
        planning_config,
        bom_manager=bom_manager,
        routing_manager=routing_manager,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SAMPLE DATA
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def bike_tree(bom_manager):
    """
    Released BOM tree:

        BIKE ─┬─ 10: FRAME ×1
              └─ 20: WHEEL ×2 ─┬─ 10: RIM ×1
                               └─ 20: SPOKE ×36
    """
    wheel = bom_manager.create("WHEEL", [
        BomLine("RIM", 1, line_number=10),
        BomLine("SPOKE", 36, line_number=20),
    ])
    wheel = bom_manager.release(wheel.id)

    bike = bom_manager.create("BIKE", [
        BomLine("FRAME", 1, line_number=10),
        BomLine("WHEEL", 2, line_number=20),
    ])
    bike = bom_manager.release(bike.id)
    return {"BIKE": bike, "WHEEL": wheel}


@pytest.fixture
def bike_routing(routing_manager):
    """BIKE: weld 1h/unit, then assemble 30min/unit with a 1h setup."""
    routing = routing_manager.create("BIKE", [
        Operation(10, "WC-WELD", "Weld frame", run_time_minutes=60),
        Operation(20, "WC-ASM", "Assemble", setup_time_minutes=60, run_time_minutes=30),
    ])
    return routing_manager.release(routing.id)


@pytest.fixture
def bike_inventory(inventory):
    """BIKE and WHEEL are manufactured, everything else purchased."""
    inventory.set_item("BIKE", lead_time_days=7, replenishment_type=ReplenishmentType.MANUFACTURE)
    inventory.set_item("WHEEL", lead_time_days=3, replenishment_type=ReplenishmentType.MANUFACTURE)
    inventory.set_item("FRAME", lead_time_days=5)
    inventory.set_item("RIM", lead_time_days=2)
    inventory.set_item("SPOKE", lead_time_days=1)
    return inventory


@pytest.fixture
def monday():
    return date(2024, 1, 8)
