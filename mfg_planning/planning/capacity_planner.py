"""
MfgPlan - Capacity Planner
==========================

Work center load versus availability over a planning horizon.

Features:
- Capacity profiles per work center and bucket
- Load from planned orders and open work orders
- Bottleneck detection with a configurable threshold
- Availability check and earliest-feasible-date search
- Resolution suggestions (alternative work center, overtime, reschedule)
- Rough-cut capacity plan from a master schedule

Model:
──────
    required(op, q) = setup_minutes / 60 + run_minutes / 60 × q
    available(wc, d) = hours_per_day × efficiency × capacity_units   (working days)
    utilization(wc)  = Σ required / Σ available
    bottleneck       ⇔ utilization ≥ threshold   (default 1.0)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.routing_manager import RoutingManager
from mfg_planning.exceptions import CapacityExceededException, NotFoundError
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.horizon import PlanningHorizon
from mfg_planning.models_common import CapacityKPIs
from mfg_planning.mrp.mrp_models import PlannedOrder
from mfg_planning.providers.interfaces import (
    DemandDataProvider,
    WorkCenterProvider,
    WorkOrderRepository,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CapacityLoad:
    """Hours required at a work center on a date by one order."""
    work_center_id: str
    load_date: date
    hours: float
    product_id: str
    source: str  # "planned_order" | "work_order" | "master_schedule"
    reference_id: Optional[str] = None


@dataclass
class CapacityPeriod:
    """One bucket of a capacity profile: [start_date, end_date)."""
    work_center_id: str
    start_date: date
    end_date: date
    available_hours: float
    loaded_hours: float = 0.0

    @property
    def utilization(self) -> float:
        if self.available_hours <= 0:
            return float("inf") if self.loaded_hours > 0 else 0.0
        return self.loaded_hours / self.available_hours

    @property
    def remaining_hours(self) -> float:
        return max(0.0, self.available_hours - self.loaded_hours)

    @property
    def is_overloaded(self) -> bool:
        return self.loaded_hours > self.available_hours

    @property
    def label(self) -> str:
        return self.start_date.isoformat()


@dataclass
class CapacityProfile:
    """Available and loaded hours of a work center across a horizon."""
    work_center_id: str
    horizon: PlanningHorizon
    periods: List[CapacityPeriod] = field(default_factory=list)

    @property
    def total_available_capacity(self) -> float:
        return float(sum(p.available_hours for p in self.periods))

    @property
    def total_load(self) -> float:
        return float(sum(p.loaded_hours for p in self.periods))

    @property
    def utilization(self) -> float:
        if self.total_available_capacity <= 0:
            return float("inf") if self.total_load > 0 else 0.0
        return self.total_load / self.total_available_capacity

    def overloaded_periods(self) -> List[CapacityPeriod]:
        return [p for p in self.periods if p.is_overloaded]

    def peak_period(self) -> Optional[CapacityPeriod]:
        loaded = [p for p in self.periods if p.loaded_hours > 0]
        if not loaded:
            return None
        return max(loaded, key=lambda p: p.utilization)

    def to_kpis(self) -> CapacityKPIs:
        peak = self.peak_period()
        return CapacityKPIs(
            work_center_id=self.work_center_id,
            total_available_hours=round(self.total_available_capacity, 4),
            total_loaded_hours=round(self.total_load, 4),
            utilization=self.utilization,
            overloaded_periods=len(self.overloaded_periods()),
            peak_period=peak.label if peak else None,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Convert profile to DataFrame."""
        return pd.DataFrame({
            "work_center_id": [p.work_center_id for p in self.periods],
            "period_start": [p.start_date for p in self.periods],
            "period_end": [p.end_date for p in self.periods],
            "available_hours": [p.available_hours for p in self.periods],
            "loaded_hours": [p.loaded_hours for p in self.periods],
            "utilization": [p.utilization for p in self.periods],
            "overloaded": [p.is_overloaded for p in self.periods],
        })


# ═══════════════════════════════════════════════════════════════════════════════
# CAPACITY PLANNER
# ═══════════════════════════════════════════════════════════════════════════════

class CapacityPlanner:
    """
    Capacity checks on top of routings and work center calendars.

    Read-only: loads are derived from planned orders (demand provider) and
    open work orders; nothing is written back.
    """

    def __init__(
        self,
        routing_manager: RoutingManager,
        work_center_provider: WorkCenterProvider,
        demand_provider: Optional[DemandDataProvider] = None,
        work_order_repository: Optional[WorkOrderRepository] = None,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
    ):
        self.routing_manager = routing_manager
        self.work_centers = work_center_provider
        self.demand = demand_provider
        self.work_orders = work_order_repository
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()

    # ───────────────────────────────────────────────────────────────────────────
    # Requirements
    # ───────────────────────────────────────────────────────────────────────────

    def calculate_loads(self, planned_orders: Iterable[PlannedOrder]) -> List[CapacityLoad]:
        """Per-operation loads of manufacturing orders, dated at the order start."""
        loads = []
        for order in planned_orders:
            if not order.is_manufacturing:
                continue
            try:
                routing = self.routing_manager.get_effective(order.product_id, order.start_date)
            except NotFoundError:
                logger.warning(f"No routing for {order.product_id}, order {order.id} adds no load")
                continue
            for wc_id, hours in RoutingManager.capacity_requirements(routing, order.quantity).items():
                loads.append(CapacityLoad(
                    work_center_id=wc_id,
                    load_date=order.start_date,
                    hours=hours,
                    product_id=order.product_id,
                    source="planned_order",
                    reference_id=order.id,
                ))
        return loads

    def calculate_requirements(
        self,
        planned_orders: Iterable[PlannedOrder],
        horizon: Optional[PlanningHorizon] = None,
    ) -> Dict[str, Dict[date, float]]:
        """
        Required hours aggregated by work center and time bucket.

        Buckets are keyed by their start date; without a horizon each
        order start date is its own bucket.
        """
        return self._aggregate(self.calculate_loads(planned_orders), horizon)

    def current_loads(self, horizon: PlanningHorizon) -> List[CapacityLoad]:
        """Loads from stored planned orders and open work orders within the horizon."""
        loads: List[CapacityLoad] = []
        converted = set()

        if self.work_orders is not None:
            for wo in self.work_orders.find_open():
                if wo.planned_order_id:
                    converted.add(wo.planned_order_id)
                if not horizon.contains(wo.planned_start_date) or wo.remaining_quantity <= 0:
                    continue
                try:
                    routing = (self.routing_manager.get_by_id(wo.routing_id) if wo.routing_id
                               else self.routing_manager.get_effective(wo.product_id, wo.planned_start_date))
                except NotFoundError:
                    logger.warning(f"No routing for work order {wo.order_number}, skipped in load")
                    continue
                for wc_id, hours in RoutingManager.capacity_requirements(routing, wo.remaining_quantity).items():
                    loads.append(CapacityLoad(
                        work_center_id=wc_id,
                        load_date=wo.planned_start_date,
                        hours=hours,
                        product_id=wo.product_id,
                        source="work_order",
                        reference_id=wo.order_number,
                    ))

        if self.demand is not None:
            orders = [
                o for o in self.demand.get_planned_orders(horizon)
                if o.id not in converted and horizon.contains(o.start_date)
            ]
            loads.extend(self.calculate_loads(orders))

        return loads

    # ───────────────────────────────────────────────────────────────────────────
    # Profiles
    # ───────────────────────────────────────────────────────────────────────────

    def get_capacity_profile(
        self,
        work_center_id: str,
        horizon: PlanningHorizon,
        loads: Optional[List[CapacityLoad]] = None,
    ) -> CapacityProfile:
        """Available vs loaded hours per horizon bucket."""
        self.work_centers.get_by_id(work_center_id)
        if loads is None:
            loads = self.current_loads(horizon)

        profile = CapacityProfile(work_center_id=work_center_id, horizon=horizon)
        wc_loads = [l for l in loads if l.work_center_id == work_center_id]

        for start, end in horizon.get_buckets():
            profile.periods.append(CapacityPeriod(
                work_center_id=work_center_id,
                start_date=start,
                end_date=end,
                available_hours=self.work_centers.get_available_hours_for_period(work_center_id, start, end),
                loaded_hours=float(sum(l.hours for l in wc_loads if start <= l.load_date < end)),
            ))

        return profile

    def identify_bottlenecks(
        self,
        horizon: PlanningHorizon,
        threshold: Optional[float] = None,
    ) -> List[CapacityKPIs]:
        """
        Active work centers whose load / availability reaches the threshold.

        Returns:
            KPIs of every bottleneck, most utilized first
        """
        threshold = self.config.bottleneck_threshold if threshold is None else threshold
        loads = self.current_loads(horizon)
        bottlenecks = []

        for wc in self.work_centers.find_active():
            profile = self.get_capacity_profile(wc.id, horizon, loads)
            if profile.total_load <= 0:
                continue
            if profile.utilization >= threshold:
                kpis = profile.to_kpis()
                bottlenecks.append(kpis)
                logger.warning(f"Bottleneck {wc.id}: utilization {profile.utilization:.0%}")
                if self.event_bus is not None and self.config.publish_events:
                    self.event_bus.emit(
                        PlanningEventType.CAPACITY_BOTTLENECK_DETECTED,
                        source="capacity_planner",
                        work_center_id=wc.id,
                        utilization=profile.utilization,
                        threshold=threshold,
                    )

        return sorted(bottlenecks, key=lambda k: k.utilization, reverse=True)

    def get_overloaded_work_centers(self, horizon: PlanningHorizon) -> List[str]:
        """Active work centers with at least one overloaded bucket."""
        loads = self.current_loads(horizon)
        return [
            wc.id for wc in self.work_centers.find_active()
            if self.get_capacity_profile(wc.id, horizon, loads).overloaded_periods()
        ]

    # ───────────────────────────────────────────────────────────────────────────
    # Availability
    # ───────────────────────────────────────────────────────────────────────────

    def check_availability(
        self,
        product_id: str,
        quantity: float,
        on_date: date,
        window_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Can an order of quantity start on on_date without exceeding any work center?

        Each work center must have capacity left on on_date; the order's hours
        are then consumed day by day from on_date over window_days calendar
        days (config.capacity_window_days when omitted).

        Raises:
            RoutingNotFoundException: product has no routing effective at on_date
        """
        window_days = self._window_days(window_days)
        horizon = PlanningHorizon.for_days(window_days, start_date=on_date)
        return self._check_window(product_id, quantity, on_date, window_days, self.current_loads(horizon))

    def find_earliest_available(
        self,
        product_id: str,
        quantity: float,
        desired_date: date,
        window_days: Optional[int] = None,
    ) -> date:
        """
        First start date on or after desired_date that passes check_availability.

        Raises:
            CapacityExceededException: nothing feasible within config.availability_search_days
        """
        search_days = self.config.availability_search_days
        window_days = self._window_days(window_days)
        span = PlanningHorizon.for_days(max(search_days, 1) + window_days, start_date=desired_date)
        loads = self.current_loads(span)

        for offset in range(search_days):
            day = desired_date + timedelta(days=offset)
            if self._check_window(product_id, quantity, day, window_days, loads)["available"]:
                if offset:
                    logger.info(f"Earliest capacity for {quantity} x {product_id}: {day} ({offset} days late)")
                return day

        raise CapacityExceededException(product_id, quantity, search_days)

    def _window_days(self, window_days: Optional[int]) -> int:
        return max(1, self.config.capacity_window_days if window_days is None else window_days)

    def _check_window(
        self,
        product_id: str,
        quantity: float,
        start: date,
        window_days: int,
        loads: List[CapacityLoad],
    ) -> Dict[str, Any]:
        routing = self.routing_manager.get_effective(product_id, start)
        required = RoutingManager.capacity_requirements(routing, quantity)

        remaining: Dict[str, float] = {}
        finish_dates: Dict[str, Optional[date]] = {}
        constrained = []
        for wc_id, hours in required.items():
            open_hours = []
            for offset in range(window_days):
                day = start + timedelta(days=offset)
                available = self.work_centers.get_available_hours(wc_id, day)
                loaded = sum(l.hours for l in loads if l.work_center_id == wc_id and l.load_date == day)
                open_hours.append((day, max(0.0, available - loaded)))

            remaining[wc_id] = float(sum(h for _, h in open_hours))
            finish_dates[wc_id] = None
            if open_hours[0][1] <= 0:
                constrained.append(wc_id)
                continue

            # Consume remaining hours day by day until the requirement is absorbed
            cumulative = np.cumsum([h for _, h in open_hours])
            reached = np.nonzero(cumulative >= hours - 1e-9)[0]
            if reached.size == 0:
                constrained.append(wc_id)
            else:
                finish_dates[wc_id] = open_hours[int(reached[0])][0]

        return {
            "available": not constrained,
            "constrained_work_centers": constrained,
            "required_hours": required,
            "remaining_hours": remaining,
            "finish_dates": finish_dates,
            "date": start,
            "window_end": start + timedelta(days=window_days - 1),
        }

    # ───────────────────────────────────────────────────────────────────────────
    # Resolutions
    # ───────────────────────────────────────────────────────────────────────────

    def suggest_resolutions(self, work_center_id: str, horizon: PlanningHorizon) -> List[Dict[str, Any]]:
        """
        Options for every overloaded bucket of a work center:
        offload to an alternative, overtime, or reschedule into a later bucket.
        """
        wc = self.work_centers.get_by_id(work_center_id)
        loads = self.current_loads(horizon)
        profile = self.get_capacity_profile(work_center_id, horizon, loads)

        alt_profiles = []
        for alt_id in wc.alternative_ids:
            try:
                alt = self.work_centers.get_by_id(alt_id)
            except NotFoundError:
                continue
            if alt.active:
                alt_profiles.append(self.get_capacity_profile(alt_id, horizon, loads))

        suggestions = []
        for i, period in enumerate(profile.periods):
            if not period.is_overloaded:
                continue
            excess = period.loaded_hours - period.available_hours

            for alt_profile in alt_profiles:
                spare = alt_profile.periods[i].remaining_hours
                if spare > 0:
                    suggestions.append({
                        "type": "alternative_work_center",
                        "period": period.label,
                        "work_center_id": alt_profile.work_center_id,
                        "hours": round(min(excess, spare), 2),
                    })

            working_days = sum(
                1 for d in range(0, (period.end_date - period.start_date).days)
                if self.work_centers.get_available_hours(work_center_id, period.start_date + timedelta(days=d)) > 0
            )
            overtime = working_days * self.config.max_overtime_hours_per_day
            if overtime > 0:
                suggestions.append({
                    "type": "overtime",
                    "period": period.label,
                    "work_center_id": work_center_id,
                    "hours": round(min(excess, overtime), 2),
                })

            later = next((p for p in profile.periods[i + 1:] if p.remaining_hours > 0), None)
            if later is not None:
                suggestions.append({
                    "type": "reschedule",
                    "period": period.label,
                    "to_period": later.label,
                    "work_center_id": work_center_id,
                    "hours": round(min(excess, later.remaining_hours), 2),
                })

        logger.debug(f"{len(suggestions)} resolutions for {work_center_id}")
        return suggestions

    # ───────────────────────────────────────────────────────────────────────────
    # Rough-cut / export
    # ───────────────────────────────────────────────────────────────────────────

    def rough_cut_capacity_plan(
        self,
        master_schedule: Dict[str, Dict[date, float]],
        horizon: PlanningHorizon,
    ) -> pd.DataFrame:
        """
        Load of a master schedule (product -> date -> quantity) per work center and bucket.
        """
        loads = []
        for product_id, quantities in master_schedule.items():
            for day, quantity in quantities.items():
                if not horizon.contains(day) or quantity <= 0:
                    continue
                try:
                    routing = self.routing_manager.get_effective(product_id, day)
                except NotFoundError:
                    logger.warning(f"Rough-cut: no routing for {product_id} at {day}")
                    continue
                for wc_id, hours in RoutingManager.capacity_requirements(routing, quantity).items():
                    loads.append(CapacityLoad(wc_id, day, hours, product_id, "master_schedule"))

        frames = [
            self.get_capacity_profile(wc_id, horizon, loads).to_dataframe()
            for wc_id in sorted({l.work_center_id for l in loads})
        ]
        if not frames:
            return self._empty_frame()
        df = pd.concat(frames, ignore_index=True)
        return df.rename(columns={"loaded_hours": "required_hours"})

    def to_dataframe(self, horizon: PlanningHorizon) -> pd.DataFrame:
        """Capacity profiles of all active work centers."""
        loads = self.current_loads(horizon)
        frames = [self.get_capacity_profile(wc.id, horizon, loads).to_dataframe()
                  for wc in self.work_centers.find_active()]
        if not frames:
            return self._empty_frame().rename(columns={"required_hours": "loaded_hours"})
        df = pd.concat(frames, ignore_index=True)
        df["utilization"] = df["utilization"].replace([np.inf], np.nan)
        return df

    def _aggregate(
        self,
        loads: List[CapacityLoad],
        horizon: Optional[PlanningHorizon],
    ) -> Dict[str, Dict[date, float]]:
        buckets = horizon.get_buckets() if horizon is not None else None
        result: Dict[str, Dict[date, float]] = {}

        for load in loads:
            key = load.load_date
            if buckets is not None:
                key = next((s for s, e in buckets if s <= load.load_date < e), None)
                if key is None:
                    continue
            per_wc = result.setdefault(load.work_center_id, {})
            per_wc[key] = per_wc.get(key, 0.0) + load.hours

        return result

    @staticmethod
    def _empty_frame() -> pd.DataFrame:
        return pd.DataFrame(columns=[
            "work_center_id", "period_start", "period_end", "available_hours",
            "required_hours", "utilization", "overloaded",
        ])
