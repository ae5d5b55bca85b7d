"""
MfgPlan - In-Memory Providers
=============================

Dict-backed implementations of the provider contracts.

Used by the test-suite and by callers embedding the planning core
without a persistence layer.

Usage:
    inventory = InMemoryInventoryProvider()
    inventory.set_item("P-100", on_hand=20, lead_time_days=7,
                       replenishment_type=ReplenishmentType.MANUFACTURE)

    demand = InMemoryDemandProvider()
    demand.add_demand("P-100", date(2024, 1, 15), 100)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from mfg_planning.engineering.change_order_models import ChangeOrder
from mfg_planning.engineering.engineering_models import BillOfMaterials, Routing
from mfg_planning.horizon import PlanningHorizon
from mfg_planning.mrp.mrp_models import PlannedOrder, ReplenishmentType
from mfg_planning.providers.interfaces import (
    BomRepository,
    ChangeOrderRepository,
    DemandDataProvider,
    InventoryDataProvider,
    RoutingRepository,
    WorkOrderRepository,
)
from mfg_planning.shopfloor.work_order_models import WorkOrder

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINEERING
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryBomRepository(BomRepository):

    def __init__(self):
        self._boms: Dict[str, BillOfMaterials] = {}

    def find_by_id(self, bom_id: str) -> Optional[BillOfMaterials]:
        return self._boms.get(bom_id)

    def find_by_product_id(
        self, product_id: str, on_date: Optional[date] = None
    ) -> Optional[BillOfMaterials]:
        on_date = on_date or date.today()
        effective = [
            b for b in self._boms.values()
            if b.product_id == product_id and b.is_effective_at(on_date)
        ]
        if not effective:
            return None
        return max(effective, key=lambda b: b.version)

    def find_all_versions(self, product_id: str) -> List[BillOfMaterials]:
        return sorted(
            (b for b in self._boms.values() if b.product_id == product_id),
            key=lambda b: b.version,
        )

    def find_all(self) -> List[BillOfMaterials]:
        return list(self._boms.values())

    def create(self, bom: BillOfMaterials) -> BillOfMaterials:
        if bom.id in self._boms:
            raise KeyError(f"BOM {bom.id} already exists")
        self._boms[bom.id] = bom
        return bom

    def update(self, bom: BillOfMaterials) -> BillOfMaterials:
        if bom.id not in self._boms:
            raise KeyError(f"BOM {bom.id} does not exist")
        self._boms[bom.id] = bom
        return bom


class InMemoryRoutingRepository(RoutingRepository):

    def __init__(self):
        self._routings: Dict[str, Routing] = {}

    def find_by_id(self, routing_id: str) -> Optional[Routing]:
        return self._routings.get(routing_id)

    def find_by_product_id(
        self, product_id: str, on_date: Optional[date] = None
    ) -> Optional[Routing]:
        on_date = on_date or date.today()
        effective = [
            r for r in self._routings.values()
            if r.product_id == product_id and r.is_effective_at(on_date)
        ]
        if not effective:
            return None
        return max(effective, key=lambda r: r.version)

    def find_all_versions(self, product_id: str) -> List[Routing]:
        return sorted(
            (r for r in self._routings.values() if r.product_id == product_id),
            key=lambda r: r.version,
        )

    def create(self, routing: Routing) -> Routing:
        if routing.id in self._routings:
            raise KeyError(f"Routing {routing.id} already exists")
        self._routings[routing.id] = routing
        return routing

    def update(self, routing: Routing) -> Routing:
        if routing.id not in self._routings:
            raise KeyError(f"Routing {routing.id} does not exist")
        self._routings[routing.id] = routing
        return routing


class InMemoryChangeOrderRepository(ChangeOrderRepository):

    def __init__(self):
        self._orders: Dict[str, ChangeOrder] = {}

    def create(self, change_order: ChangeOrder) -> ChangeOrder:
        if change_order.id in self._orders or self.find_by_number(change_order.order_number) is not None:
            raise KeyError(f"Change order {change_order.order_number} already exists")
        self._orders[change_order.id] = change_order
        return change_order

    def find_by_id(self, change_order_id: str) -> Optional[ChangeOrder]:
        return self._orders.get(change_order_id)

    def find_by_number(self, order_number: str) -> Optional[ChangeOrder]:
        return next((co for co in self._orders.values() if co.order_number == order_number), None)

    def find_by_product(self, product_id: str) -> List[ChangeOrder]:
        # Dict order is creation order
        return [co for co in self._orders.values() if co.product_id == product_id]

    def update(self, change_order: ChangeOrder) -> ChangeOrder:
        if change_order.id not in self._orders:
            raise KeyError(f"Change order {change_order.id} does not exist")
        self._orders[change_order.id] = change_order
        return change_order

    def count(self) -> int:
        return len(self._orders)


# ═══════════════════════════════════════════════════════════════════════════════
# INVENTORY / DEMAND
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class InventoryItem:
    """Inventory master data of one product."""
    product_id: str
    on_hand: float = 0.0
    safety_stock: float = 0.0
    lead_time_days: int = 0
    replenishment_type: ReplenishmentType = ReplenishmentType.PURCHASE
    scheduled_receipts: List[Tuple[date, float]] = field(default_factory=list)


class InMemoryInventoryProvider(InventoryDataProvider):
    """Unknown products have no stock and are purchased with zero lead time."""

    def __init__(self):
        self.items: Dict[str, InventoryItem] = {}

    def set_item(
        self,
        product_id: str,
        on_hand: float = 0.0,
        safety_stock: float = 0.0,
        lead_time_days: int = 0,
        replenishment_type: ReplenishmentType = ReplenishmentType.PURCHASE,
    ) -> InventoryItem:
        item = InventoryItem(
            product_id=product_id,
            on_hand=on_hand,
            safety_stock=safety_stock,
            lead_time_days=lead_time_days,
            replenishment_type=replenishment_type,
        )
        self.items[product_id] = item
        return item

    def add_scheduled_receipt(self, product_id: str, receipt_date: date, quantity: float) -> None:
        item = self._item(product_id)
        item.scheduled_receipts.append((receipt_date, quantity))

    def _item(self, product_id: str) -> InventoryItem:
        if product_id not in self.items:
            self.items[product_id] = InventoryItem(product_id=product_id)
        return self.items[product_id]

    def get_on_hand_quantity(self, product_id: str) -> float:
        item = self.items.get(product_id)
        return item.on_hand if item else 0.0

    def get_safety_stock(self, product_id: str) -> float:
        item = self.items.get(product_id)
        return item.safety_stock if item else 0.0

    def get_scheduled_receipts(self, product_id: str, until: date) -> List[Tuple[date, float]]:
        item = self.items.get(product_id)
        if not item:
            return []
        return sorted((d, q) for d, q in item.scheduled_receipts if d <= until)

    def get_lead_time_days(self, product_id: str) -> int:
        item = self.items.get(product_id)
        return item.lead_time_days if item else 0

    def get_replenishment_type(self, product_id: str) -> ReplenishmentType:
        item = self.items.get(product_id)
        return item.replenishment_type if item else ReplenishmentType.PURCHASE


class InMemoryDemandProvider(DemandDataProvider):
    """Independent demand book plus planned order store."""

    def __init__(self):
        self.demand: Dict[str, Dict[date, float]] = {}
        self.master_scheduled: List[str] = []
        self.planned_orders: List[PlannedOrder] = []

    def add_demand(self, product_id: str, due_date: date, quantity: float) -> None:
        buckets = self.demand.setdefault(product_id, {})
        buckets[due_date] = buckets.get(due_date, 0.0) + quantity

    def set_master_scheduled(self, product_ids: List[str]) -> None:
        self.master_scheduled = list(product_ids)

    def get_gross_requirements(self, product_id: str, horizon: PlanningHorizon) -> Dict[date, float]:
        buckets = self.demand.get(product_id, {})
        return {d: q for d, q in sorted(buckets.items()) if horizon.contains(d)}

    def get_master_scheduled_products(self, horizon: PlanningHorizon) -> List[str]:
        return list(self.master_scheduled)

    def delete_planned_orders(self, product_id: str, horizon: PlanningHorizon) -> int:
        def generated_for(order: PlannedOrder) -> bool:
            root = order.root_product_id or order.product_id
            overlaps = order.start_date <= horizon.end_date and order.due_date >= horizon.start_date
            return root == product_id and overlaps

        before = len(self.planned_orders)
        self.planned_orders = [o for o in self.planned_orders if not generated_for(o)]
        deleted = before - len(self.planned_orders)
        logger.debug(f"Deleted {deleted} planned orders for {product_id}")
        return deleted

    def save_planned_order(self, order: PlannedOrder) -> None:
        self.planned_orders.append(order)

    def get_planned_orders(self, horizon: PlanningHorizon) -> List[PlannedOrder]:
        return [
            o for o in self.planned_orders
            if o.start_date <= horizon.end_date and o.due_date >= horizon.start_date
        ]


# ═══════════════════════════════════════════════════════════════════════════════
# SHOP FLOOR
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryWorkOrderRepository(WorkOrderRepository):

    def __init__(self):
        self._orders: Dict[str, WorkOrder] = {}
        self._numbers: Set[str] = set()

    def create(self, work_order: WorkOrder) -> WorkOrder:
        if work_order.id in self._orders or work_order.order_number in self._numbers:
            raise KeyError(f"Work order {work_order.order_number} already exists")
        self._orders[work_order.id] = work_order
        self._numbers.add(work_order.order_number)
        return work_order

    def find_by_id(self, work_order_id: str) -> Optional[WorkOrder]:
        return self._orders.get(work_order_id)

    def find_by_number(self, order_number: str) -> Optional[WorkOrder]:
        return next((wo for wo in self._orders.values() if wo.order_number == order_number), None)

    def update(self, work_order: WorkOrder) -> WorkOrder:
        if work_order.id not in self._orders:
            raise KeyError(f"Work order {work_order.id} does not exist")
        self._orders[work_order.id] = work_order
        return work_order

    def find_open(self) -> List[WorkOrder]:
        return [wo for wo in self._orders.values() if wo.status.is_open]

    def count(self) -> int:
        return len(self._orders)
