"""
MfgPlan - Lot Sizing Policies
=============================

Pluggable policies that turn a net requirement into a planned order quantity.

Architecture:
- LotSizingPolicy: abstract interface
- LotForLot: order exactly the shortfall
- FixedOrderQuantity: round up to a multiple of a fixed lot
- EconomicOrderQuantity: max(shortfall, sqrt(2DS/H))
- PeriodOrderQuantity: cover the shortfall plus the next N-1 buckets
- LeastUnitCost: cover the number of buckets with the lowest cost per unit

Mathematical Foundations:
───────────────────────
    EOQ = sqrt(2 * D * S / H)
    where:
        D = annual demand
        S = ordering cost per order
        H = holding cost per unit per year

    LUC(k) = (S + h * Σ_{j<k} r_j * (j + 1)) / (net + Σ_{j<k} r_j)
    where:
        r_j = gross requirement j buckets after the shortfall
        h   = holding cost per unit per bucket
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


class LotSizingStrategy(str, Enum):
    """Available lot sizing policies."""
    LOT_FOR_LOT = "lot_for_lot"
    FIXED_ORDER_QUANTITY = "fixed_order_quantity"
    ECONOMIC_ORDER_QUANTITY = "economic_order_quantity"
    PERIOD_ORDER_QUANTITY = "period_order_quantity"
    LEAST_UNIT_COST = "least_unit_cost"


class LotSizingPolicy(ABC):
    """
    Interface for lot sizing.

    `size` receives the shortfall on the current bucket and the gross
    requirements of the following buckets (chronological).
    """

    strategy: LotSizingStrategy

    @abstractmethod
    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        ...

    def describe(self) -> dict:
        return {"strategy": self.strategy.value}


class LotForLot(LotSizingPolicy):
    strategy = LotSizingStrategy.LOT_FOR_LOT

    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        return net_requirement


class FixedOrderQuantity(LotSizingPolicy):
    strategy = LotSizingStrategy.FIXED_ORDER_QUANTITY

    def __init__(self, fixed_quantity: float):
        if fixed_quantity <= 0:
            raise ValueError("Fixed order quantity must be positive")
        self.fixed_quantity = fixed_quantity

    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        # Round up to nearest lot
        return float(np.ceil(net_requirement / self.fixed_quantity) * self.fixed_quantity)

    def describe(self) -> dict:
        return {"strategy": self.strategy.value, "fixed_quantity": self.fixed_quantity}


class EconomicOrderQuantity(LotSizingPolicy):
    strategy = LotSizingStrategy.ECONOMIC_ORDER_QUANTITY

    def __init__(
        self,
        annual_demand: Optional[float] = None,
        ordering_cost: float = 100.0,
        holding_cost: float = 10.0,
    ):
        if holding_cost <= 0:
            raise ValueError("Holding cost must be positive")
        self.annual_demand = annual_demand
        self.ordering_cost = ordering_cost
        self.holding_cost = holding_cost

    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        demand = self.annual_demand if self.annual_demand is not None else net_requirement * 12
        eoq = float(np.sqrt(2 * demand * self.ordering_cost / self.holding_cost))
        return max(net_requirement, eoq)

    def describe(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "annual_demand": self.annual_demand,
            "ordering_cost": self.ordering_cost,
            "holding_cost": self.holding_cost,
        }


class PeriodOrderQuantity(LotSizingPolicy):
    strategy = LotSizingStrategy.PERIOD_ORDER_QUANTITY

    def __init__(self, periods: int = 1):
        if periods < 1:
            raise ValueError("Periods must be at least 1")
        self.periods = periods

    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        covered = list(future_requirements)[: self.periods - 1]
        return net_requirement + float(sum(covered))

    def describe(self) -> dict:
        return {"strategy": self.strategy.value, "periods": self.periods}


class LeastUnitCost(LotSizingPolicy):
    strategy = LotSizingStrategy.LEAST_UNIT_COST

    def __init__(self, ordering_cost: float = 50.0, holding_cost_per_period: float = 1.0, max_periods: int = 12):
        self.ordering_cost = ordering_cost
        self.holding_cost_per_period = holding_cost_per_period
        self.max_periods = max_periods

    def size(self, net_requirement: float, future_requirements: Sequence[float] = ()) -> float:
        future = np.asarray(list(future_requirements)[: self.max_periods], dtype=float)
        if future.size == 0 or self.holding_cost_per_period <= 0:
            return net_requirement

        # Candidate k covers the shortfall plus the first k future buckets
        quantities = net_requirement + np.concatenate([[0.0], np.cumsum(future)])
        carrying = future * self.holding_cost_per_period * np.arange(1, future.size + 1)
        holding = np.concatenate([[0.0], np.cumsum(carrying)])
        unit_costs = (self.ordering_cost + holding) / quantities

        best = int(np.argmin(unit_costs))
        return float(quantities[best])

    def describe(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "ordering_cost": self.ordering_cost,
            "holding_cost_per_period": self.holding_cost_per_period,
        }


_POLICIES = {
    LotSizingStrategy.LOT_FOR_LOT: LotForLot,
    LotSizingStrategy.FIXED_ORDER_QUANTITY: FixedOrderQuantity,
    LotSizingStrategy.ECONOMIC_ORDER_QUANTITY: EconomicOrderQuantity,
    LotSizingStrategy.PERIOD_ORDER_QUANTITY: PeriodOrderQuantity,
    LotSizingStrategy.LEAST_UNIT_COST: LeastUnitCost,
}


def get_lot_sizing_policy(
    strategy: Union[LotSizingStrategy, str, LotSizingPolicy] = LotSizingStrategy.LOT_FOR_LOT,
    **parameters: Any,
) -> LotSizingPolicy:
    """
    Build a lot sizing policy.

    Args:
        strategy: Strategy name/enum, or an already built policy (returned as is)
        **parameters: Constructor arguments of the policy (e.g. fixed_quantity=50)
    """
    if isinstance(strategy, LotSizingPolicy):
        return strategy

    strategy = LotSizingStrategy(strategy)
    if strategy == LotSizingStrategy.FIXED_ORDER_QUANTITY and "fixed_quantity" not in parameters:
        logger.warning("Fixed order quantity without fixed_quantity, using lot-for-lot")
        return LotForLot()

    return _POLICIES[strategy](**parameters)
