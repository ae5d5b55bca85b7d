"""
MfgPlan - Common Models
=======================

Reusable pydantic summaries for planning KPIs.
Shared by the MRP engine and the capacity planner so that callers
(schedulers, reporting layers) get one consistent shape.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# MRP KPIS
# ═══════════════════════════════════════════════════════════════════════════════

class MrpSummary(BaseModel):
    """
    Summary of an MRP run.

    Counts and totals over the planned orders and material requirements
    of one calculated product (including its exploded components).
    """
    product_id: str
    is_successful: bool = True
    planned_order_count: int = Field(
        default=0,
        ge=0,
        description="Number of planned orders (all levels)"
    )
    manufacturing_order_count: int = Field(default=0, ge=0)
    purchase_order_count: int = Field(default=0, ge=0)
    total_planned_quantity: float = Field(
        default=0.0,
        ge=0.0,
        description="Sum of planned order quantities"
    )
    total_net_requirement: float = Field(
        default=0.0,
        ge=0.0,
        description="Sum of net requirements (shortfalls)"
    )
    warning_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)


# ═══════════════════════════════════════════════════════════════════════════════
# CAPACITY KPIS
# ═══════════════════════════════════════════════════════════════════════════════

class CapacityKPIs(BaseModel):
    """
    Capacity KPIs of one work center over a horizon.
    """
    work_center_id: str
    total_available_hours: float = Field(
        default=0.0,
        ge=0.0,
        description="Calendar-adjusted available hours"
    )
    total_loaded_hours: float = Field(
        default=0.0,
        ge=0.0,
        description="Required hours from planned and open work orders"
    )
    utilization: float = Field(
        default=0.0,
        ge=0.0,
        description="Loaded / available (1.0 = fully loaded)"
    )
    overloaded_periods: int = Field(default=0, ge=0)
    peak_period: Optional[str] = Field(
        default=None,
        description="Label of the most utilized bucket"
    )

