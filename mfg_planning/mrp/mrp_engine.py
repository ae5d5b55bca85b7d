"""
MfgPlan - MRP Engine
====================

Material Requirements Planning engine.

Features:
- Time-phased netting over an inclusive planning horizon
- Pluggable lot sizing (lot-for-lot by default)
- Lead-time offsetting with horizon clamping
- Level-by-level dependent demand through single-level BOM explosion
- Batch calculation with per-product failure isolation
- Full regeneration of planned orders for master-scheduled products

Algorithm:
──────────
    For each product, in low-level-code order (parents before components):
        gross(d)     = independent(d) + dependent(d)
        projected(d) = on_hand + Σ receipts(≤d) - Σ gross(≤d) + Σ planned(≤d)
        if projected(d) < safety_stock:
            net     = safety_stock - projected(d)
            qty     = lot_sizing.size(net, gross of later buckets)
            due     = d
            start   = d - lead_time
            if manufactured: dependent(component, start) += explode(BOM, qty, 1 level)
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.exceptions import CircularBomException, NotFoundError
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.horizon import PlanningHorizon
from mfg_planning.mrp.lot_sizing import LotSizingPolicy, LotSizingStrategy, get_lot_sizing_policy
from mfg_planning.mrp.mrp_models import (
    MaterialRequirement,
    MrpResult,
    PlannedOrder,
    ReplenishmentType,
    RequirementSource,
)
from mfg_planning.providers.interfaces import DemandDataProvider, InventoryDataProvider

if TYPE_CHECKING:
    from mfg_planning.planning.capacity_planner import CapacityPlanner

logger = logging.getLogger(__name__)


class MrpEngine:
    """
    Material Requirements Planning engine.

    Read-only consumer of BOMs, inventory and demand: every run produces new
    MaterialRequirement / PlannedOrder values. Only `regenerate` writes, and
    only through the demand provider.

    Usage:
        engine = MrpEngine(bom_manager, inventory, demand)
        result = engine.calculate("P-100", PlanningHorizon.for_days(90))
        for order in result.planned_orders:
            print(order.product_id, order.quantity, order.start_date)
    """

    def __init__(
        self,
        bom_manager: BillOfMaterialsManager,
        inventory_provider: InventoryDataProvider,
        demand_provider: DemandDataProvider,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
        capacity_planner: Optional[CapacityPlanner] = None,
    ):
        self.bom_manager = bom_manager
        self.inventory = inventory_provider
        self.demand = demand_provider
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()
        self.capacity_planner = capacity_planner

    # ═══════════════════════════════════════════════════════════════════════════
    # CALCULATION
    # ═══════════════════════════════════════════════════════════════════════════

    def calculate(
        self,
        product_id: str,
        horizon: PlanningHorizon,
        lot_sizing: Union[LotSizingStrategy, str, LotSizingPolicy, None] = None,
        lot_sizing_parameters: Optional[Dict[str, Any]] = None,
        check_capacity: bool = False,
    ) -> MrpResult:
        """
        Run MRP for a product and its components.

        Args:
            product_id: Product to plan
            horizon: Planning window (inclusive)
            lot_sizing: Strategy or policy (config.default_lot_sizing when omitted)
            lot_sizing_parameters: Policy constructor arguments (e.g. fixed_quantity)
            check_capacity: Check manufacturing orders against the capacity planner

        Returns:
            MrpResult with requirements and planned orders of every level

        Raises:
            CircularBomException: BOM structure loops back on itself
            Provider errors propagate unchanged.
        """
        policy = get_lot_sizing_policy(
            lot_sizing if lot_sizing is not None else self.config.default_lot_sizing,
            **(lot_sizing_parameters or {}),
        )
        result = MrpResult(
            product_id=product_id,
            parameters={"horizon": horizon.to_dict(), "lot_sizing": policy.describe()},
        )

        levels, sequence = self._low_level_codes(product_id, horizon.start_date, result)
        dependent: Dict[str, Dict[date, float]] = {}
        dependent_parents: Dict[str, Dict[date, str]] = {}
        processed: Set[str] = set()

        while True:
            pending = [p for p in levels if p not in processed]
            if not pending:
                break
            current = min(pending, key=lambda p: (levels[p], sequence[p]))
            processed.add(current)

            orders = self._plan_product(
                current,
                product_id,
                levels[current],
                horizon,
                policy,
                dependent.get(current, {}),
                dependent_parents.get(current, {}),
                result,
            )

            for order in orders:
                if not order.is_manufacturing:
                    continue
                for component_id, quantity in self._explode_order(order, result):
                    if component_id in processed:
                        result.warnings.append(
                            f"Dependent demand for {component_id} from {current} arrived after "
                            f"{component_id} was netted"
                        )
                        continue
                    if component_id not in levels:
                        levels[component_id] = levels[current] + 1
                        sequence[component_id] = len(sequence)
                    buckets = dependent.setdefault(component_id, {})
                    buckets[order.start_date] = buckets.get(order.start_date, 0.0) + quantity
                    dependent_parents.setdefault(component_id, {}).setdefault(order.start_date, current)

        if check_capacity:
            self._check_capacity(result)

        logger.info(
            f"MRP for {product_id}: {len(result.planned_orders)} planned orders, "
            f"{len(result.material_requirements)} requirements, {len(result.warnings)} warnings"
        )
        self._emit(
            PlanningEventType.MRP_CALCULATED,
            product_id=product_id,
            planned_orders=len(result.planned_orders),
            warnings=len(result.warnings),
        )
        return result

    def calculate_multiple(
        self,
        product_ids: Iterable[str],
        horizon: PlanningHorizon,
        lot_sizing: Union[LotSizingStrategy, str, LotSizingPolicy, None] = None,
        lot_sizing_parameters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, MrpResult]:
        """
        Run MRP per product. A failing product yields an unsuccessful result
        carrying the error; the other products are still calculated.
        """
        results: Dict[str, MrpResult] = {}
        for product_id in product_ids:
            try:
                results[product_id] = self.calculate(
                    product_id, horizon, lot_sizing, lot_sizing_parameters
                )
            except Exception as e:
                logger.warning(f"MRP failed for {product_id}: {e}")
                results[product_id] = MrpResult(
                    product_id=product_id,
                    errors=[f"{type(e).__name__}: {e}"],
                    parameters={"horizon": horizon.to_dict()},
                )

        failed = sum(1 for r in results.values() if not r.is_successful)
        logger.info(f"MRP batch: {len(results)} products, {failed} failed")
        return results

    def regenerate(
        self,
        horizon: PlanningHorizon,
        product_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, MrpResult]:
        """
        Replace the planned orders of every master-scheduled product.

        Per product the plan is computed first; existing orders are deleted
        only after a successful calculation. When saving the new orders fails
        the previous orders are restored.
        """
        products = list(product_ids) if product_ids is not None else \
            self.demand.get_master_scheduled_products(horizon)
        results: Dict[str, MrpResult] = {}

        for product_id in products:
            try:
                result = self.calculate(product_id, horizon)
            except Exception as e:
                logger.error(f"Regeneration skipped for {product_id}, previous plan kept: {e}")
                results[product_id] = MrpResult(
                    product_id=product_id,
                    errors=[f"{type(e).__name__}: {e}"],
                    parameters={"horizon": horizon.to_dict()},
                )
                continue

            self._replace_planned_orders(product_id, horizon, result)
            results[product_id] = result

        saved = sum(len(r.planned_orders) for r in results.values() if r.is_successful)
        failed = [p for p, r in results.items() if not r.is_successful]
        logger.info(f"Regenerated {len(products)} products: {saved} planned orders, {len(failed)} failed")
        self._emit(
            PlanningEventType.MRP_REGENERATED,
            products=products,
            planned_orders=saved,
            failed=failed,
        )
        return results

    def net_change(self, product_id: str, effective_date: Optional[date] = None) -> MrpResult:
        """Recalculate a single product from effective_date over config.net_change_horizon_days."""
        horizon = PlanningHorizon.for_days(
            self.config.net_change_horizon_days,
            start_date=effective_date or date.today(),
            frozen_days=self.config.frozen_days,
            slushy_days=self.config.slushy_days,
        )
        logger.debug(f"Net change for {product_id} from {horizon.start_date}")
        return self.calculate(product_id, horizon)

    def pegging(self, product_id: str, on_date: Optional[date] = None) -> List[Dict[str, Any]]:
        """Parent BOMs effective at on_date that consume product_id."""
        on_date = on_date or date.today()
        pegs = []
        for bom in self.bom_manager.where_used(product_id):
            if not bom.is_effective_at(on_date):
                continue
            for line in bom.sorted_lines():
                if line.component_product_id == product_id:
                    pegs.append({
                        "parent_product_id": bom.product_id,
                        "bom_id": bom.id,
                        "version": bom.version,
                        "line_number": line.line_number,
                        "quantity_per_parent_unit": line.quantity_per_parent_unit,
                    })
        return sorted(pegs, key=lambda p: (p["parent_product_id"], p["line_number"]))

    # ═══════════════════════════════════════════════════════════════════════════
    # NETTING
    # ═══════════════════════════════════════════════════════════════════════════

    def _plan_product(
        self,
        product_id: str,
        root_product_id: str,
        level: int,
        horizon: PlanningHorizon,
        policy: LotSizingPolicy,
        dependent: Dict[date, float],
        dependent_parents: Dict[date, str],
        result: MrpResult,
    ) -> List[PlannedOrder]:
        """Net one product over the horizon and append its requirements and orders to result."""
        independent = self.demand.get_gross_requirements(product_id, horizon)
        on_hand = self.inventory.get_on_hand_quantity(product_id)
        safety_stock = self.inventory.get_safety_stock(product_id)
        lead_time = self.inventory.get_lead_time_days(product_id)
        replenishment = self.inventory.get_replenishment_type(product_id)

        # Past-due receipts are available from the horizon start
        receipts: Dict[date, float] = {}
        for receipt_date, quantity in self.inventory.get_scheduled_receipts(product_id, horizon.end_date):
            day = max(receipt_date, horizon.start_date)
            receipts[day] = receipts.get(day, 0.0) + quantity

        gross: Dict[date, float] = {}
        for buckets in (independent, dependent):
            for day, quantity in buckets.items():
                if horizon.contains(day):
                    gross[day] = gross.get(day, 0.0) + quantity

        # Look-ahead periods for POQ / LUC: horizon buckets carrying gross requirements
        bucket_gross: List[Tuple[date, float]] = []
        for bucket_start, bucket_end in horizon.get_buckets():
            total = sum(q for d, q in gross.items() if bucket_start <= d < bucket_end)
            if total > 0:
                bucket_gross.append((bucket_start, total))

        dates = set(gross) | set(receipts)
        if safety_stock > 0:
            dates.add(horizon.start_date)
        dates = sorted(dates)

        projected = on_hand
        orders: List[PlannedOrder] = []
        warned_lead_time = False

        for day in dates:
            gross_qty = gross.get(day, 0.0)
            receipt_qty = receipts.get(day, 0.0)
            projected += receipt_qty - gross_qty
            net = 0.0

            if projected < safety_stock:
                net = safety_stock - projected
                future = [total for bucket_start, total in bucket_gross if bucket_start > day]
                quantity = policy.size(net, future)

                start = day - timedelta(days=lead_time)
                if lead_time <= 0 and not warned_lead_time:
                    result.warnings.append(f"{product_id} has zero lead time")
                    warned_lead_time = True
                if start < horizon.start_date:
                    result.warnings.append(
                        f"Planned order for {product_id} due {day} should start {start}, "
                        f"before the horizon; moved to {horizon.start_date}"
                    )
                    logger.warning(f"Start date of {product_id} order clamped to {horizon.start_date}")
                    start = horizon.start_date

                order = PlannedOrder(
                    product_id=product_id,
                    quantity=quantity,
                    start_date=start,
                    due_date=day,
                    replenishment_type=replenishment,
                    level=level,
                    net_requirement=net,
                    lot_sizing_strategy=policy.strategy.value,
                    root_product_id=root_product_id,
                    parent_product_id=dependent_parents.get(day),
                )
                orders.append(order)
                projected += quantity
                logger.debug(f"Planned {quantity} x {product_id} {start} -> {day}")

            if gross_qty > 0 or net > 0:
                result.material_requirements.append(MaterialRequirement(
                    product_id=product_id,
                    required_date=day,
                    gross_requirement=gross_qty,
                    net_requirement=net,
                    source=RequirementSource.DEPENDENT if dependent.get(day, 0.0) > 0
                    else RequirementSource.INDEPENDENT,
                    level=level,
                    scheduled_receipts=receipt_qty,
                    projected_balance=projected,
                    safety_stock=safety_stock,
                    parent_product_id=dependent_parents.get(day),
                ))

        result.planned_orders.extend(orders)
        return orders

    def _explode_order(self, order: PlannedOrder, result: MrpResult) -> List[Tuple[str, float]]:
        """Direct components of a manufacturing order, from the BOM effective at its start."""
        bom = self.bom_manager.find_effective(order.product_id, order.start_date)
        if bom is None:
            message = f"{order.product_id} is manufactured but has no BOM effective at {order.start_date}"
            if message not in result.warnings:
                result.warnings.append(message)
                logger.warning(message)
            return []

        exploded = self.bom_manager.explode(bom.id, order.quantity, max_depth=1, on_date=order.start_date)
        return [(r.product_id, r.quantity) for r in exploded if r.level == 1]

    def _low_level_codes(
        self,
        product_id: str,
        on_date: date,
        result: MrpResult,
    ) -> Tuple[Dict[str, int], Dict[str, int]]:
        """
        Deepest BOM level of every product below product_id.

        Returns:
            (product -> level, product -> discovery order)
        """
        levels: Dict[str, int] = {product_id: 0}
        sequence: Dict[str, int] = {product_id: 0}
        stack: List[Tuple[str, int, Tuple[str, ...]]] = [(product_id, 0, (product_id,))]

        while stack:
            current, level, path = stack.pop()
            bom = self.bom_manager.find_effective(current, on_date)
            if bom is None:
                continue
            if level >= self.config.max_bom_depth:
                result.warnings.append(f"Max BOM depth ({self.config.max_bom_depth}) reached at {current}")
                continue

            for component_id in bom.component_ids():
                if component_id in path:
                    raise CircularBomException(component_id, [*path, component_id])
                if component_id not in sequence:
                    sequence[component_id] = len(sequence)
                if levels.get(component_id, -1) < level + 1:
                    levels[component_id] = level + 1
                    stack.append((component_id, level + 1, (*path, component_id)))

        return levels, sequence

    # ═══════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _replace_planned_orders(self, product_id: str, horizon: PlanningHorizon, result: MrpResult) -> None:
        previous = [
            o for o in self.demand.get_planned_orders(horizon)
            if (o.root_product_id or o.product_id) == product_id
        ]
        deleted = self.demand.delete_planned_orders(product_id, horizon)
        try:
            for order in result.planned_orders:
                self.demand.save_planned_order(order)
        except Exception as e:
            logger.error(f"Saving planned orders for {product_id} failed, restoring previous plan: {e}")
            self.demand.delete_planned_orders(product_id, horizon)
            for order in previous:
                self.demand.save_planned_order(order)
            result.errors.append(f"Could not save planned orders: {e}")
            return

        logger.debug(f"Replaced {deleted} planned orders of {product_id} with {len(result.planned_orders)}")

    def _check_capacity(self, result: MrpResult) -> None:
        if self.capacity_planner is None:
            result.warnings.append("Capacity check requested without a capacity planner")
            return

        for order in result.manufacturing_orders():
            try:
                check = self.capacity_planner.check_availability(
                    order.product_id,
                    order.quantity,
                    order.start_date,
                    window_days=(order.due_date - order.start_date).days,
                )
            except NotFoundError as e:
                result.warnings.append(str(e))
                continue
            if not check["available"]:
                result.warnings.append(
                    f"Insufficient capacity for {order.quantity} x {order.product_id} on "
                    f"{order.start_date}: {', '.join(check['constrained_work_centers'])}"
                )

    def _emit(self, event_type: PlanningEventType, **payload: Any) -> None:
        if self.event_bus is not None and self.config.publish_events:
            self.event_bus.emit(event_type, source="mrp_engine", **payload)
