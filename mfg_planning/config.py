"""
MfgPlan - Planning Configuration
================================

Planning parameters shared by the managers and engines.

Usage:
    from mfg_planning.config import PlanningSettings

    config = PlanningSettings.get_config()
    if config.publish_events:
        ...

Environment variables:
    MFGPLAN_MAX_BOM_DEPTH=10
    MFGPLAN_LOT_SIZING=lot_for_lot
    MFGPLAN_BOTTLENECK_THRESHOLD=1.0
"""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass
from typing import Optional

from mfg_planning.mrp.lot_sizing import LotSizingStrategy

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class PlanningConfig:
    """
    Planning configuration.

    Defaults are the conservative values used when no environment override exists.
    """
    # BOM / MRP
    max_bom_depth: int = 10
    default_lot_sizing: LotSizingStrategy = LotSizingStrategy.LOT_FOR_LOT
    net_change_horizon_days: int = 90

    # Capacity
    bottleneck_threshold: float = 1.0  # load / availability
    availability_search_days: int = 365
    capacity_window_days: int = 7  # days an order may spread its hours over
    max_overtime_hours_per_day: float = 4.0

    # Horizon zones
    frozen_days: int = 14
    slushy_days: int = 14

    # Work orders
    work_order_prefix: str = "WO"
    change_order_prefix: str = "ECO"

    # Observer hooks
    publish_events: bool = True


class PlanningSettings:
    """
    Singleton holder for the planning configuration.

    Loads from environment variables on first access.

    Usage:
        depth = PlanningSettings.get_config().max_bom_depth
        PlanningSettings.reset()  # reload on next access
    """

    _instance: Optional[PlanningConfig] = None

    @classmethod
    def _load_from_env(cls) -> PlanningConfig:
        """Load configuration from environment variables."""
        config = PlanningConfig()

        int_mapping = {
            "MFGPLAN_MAX_BOM_DEPTH": "max_bom_depth",
            "MFGPLAN_NET_CHANGE_DAYS": "net_change_horizon_days",
            "MFGPLAN_AVAILABILITY_SEARCH_DAYS": "availability_search_days",
            "MFGPLAN_CAPACITY_WINDOW_DAYS": "capacity_window_days",
            "MFGPLAN_FROZEN_DAYS": "frozen_days",
            "MFGPLAN_SLUSHY_DAYS": "slushy_days",
        }
        for env_var, attr_name in int_mapping.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    parsed = int(value)
                    if parsed < 0:
                        raise ValueError(value)
                    setattr(config, attr_name, parsed)
                    logger.info(f"Planning config {attr_name} = {parsed}")
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        float_mapping = {
            "MFGPLAN_BOTTLENECK_THRESHOLD": "bottleneck_threshold",
            "MFGPLAN_MAX_OVERTIME_HOURS": "max_overtime_hours_per_day",
        }
        for env_var, attr_name in float_mapping.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    setattr(config, attr_name, float(value))
                    logger.info(f"Planning config {attr_name} = {value}")
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        lot_sizing = os.environ.get("MFGPLAN_LOT_SIZING")
        if lot_sizing:
            try:
                config.default_lot_sizing = LotSizingStrategy(lot_sizing.lower())
            except ValueError:
                logger.warning(f"Invalid value for MFGPLAN_LOT_SIZING: {lot_sizing}")

        prefix = os.environ.get("MFGPLAN_WORK_ORDER_PREFIX")
        if prefix:
            config.work_order_prefix = prefix

        prefix = os.environ.get("MFGPLAN_CHANGE_ORDER_PREFIX")
        if prefix:
            config.change_order_prefix = prefix

        publish = os.environ.get("MFGPLAN_PUBLISH_EVENTS")
        if publish:
            config.publish_events = publish.lower() in ("true", "1", "yes")

        return config

    @classmethod
    def get_config(cls) -> PlanningConfig:
        """Get current configuration."""
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def set_config(cls, config: PlanningConfig) -> None:
        """Replace the active configuration."""
        cls._instance = config

    @classmethod
    def reset(cls) -> None:
        """Reset so the next access reloads from the environment."""
        cls._instance = None
