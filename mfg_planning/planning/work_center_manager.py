"""
MfgPlan - Work Center Manager
=============================

Work center master data and working calendar.

Available hours on a date:
    hours_per_day × efficiency × capacity_units   on working days
    0                                             on weekends, closures, or when inactive

A date is a working day when its weekday index (Monday = 0) is below
days_per_week.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Set

from mfg_planning.exceptions import WorkCenterNotFoundException
from mfg_planning.providers.interfaces import WorkCenterProvider

logger = logging.getLogger(__name__)


@dataclass
class WorkCenter:
    """Resource station with finite time capacity."""
    id: str
    code: str
    name: str = ""
    hours_per_day: float = 8.0
    efficiency: float = 1.0  # 0-1 multiplier
    capacity_units: int = 1  # Parallel machines / crews
    active: bool = True
    days_per_week: int = 5
    alternative_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not 0 < self.hours_per_day <= 24:
            raise ValueError("Hours per day must be in (0, 24]")
        if not 0 < self.efficiency <= 1:
            raise ValueError("Efficiency must be in (0, 1]")
        if self.capacity_units < 1:
            raise ValueError("Capacity units must be at least 1")
        if not 1 <= self.days_per_week <= 7:
            raise ValueError("Days per week must be between 1 and 7")

    @property
    def daily_capacity_hours(self) -> float:
        return self.hours_per_day * self.efficiency * self.capacity_units

    def is_working_day(self, day: date) -> bool:
        return day.weekday() < self.days_per_week

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "hours_per_day": self.hours_per_day,
            "efficiency": self.efficiency,
            "capacity_units": self.capacity_units,
            "active": self.active,
            "days_per_week": self.days_per_week,
            "daily_capacity_hours": self.daily_capacity_hours,
            "alternative_ids": list(self.alternative_ids),
        }


class WorkCenterManager(WorkCenterProvider):
    """
    Owner of work centers and their closures.

    Usage:
        manager = WorkCenterManager()
        manager.create(WorkCenter(id="WC-CNC", code="CNC", hours_per_day=16))
        hours = manager.get_available_hours_for_period("WC-CNC", date(2024, 1, 1), date(2024, 2, 1))
    """

    def __init__(self, work_centers: Optional[List[WorkCenter]] = None):
        self._work_centers: Dict[str, WorkCenter] = {}
        self._closures: Dict[str, Set[date]] = {}
        for wc in work_centers or []:
            self.create(wc)

    def create(self, work_center: WorkCenter) -> WorkCenter:
        if work_center.id in self._work_centers:
            raise ValueError(f"Work center {work_center.id} already exists")
        self._work_centers[work_center.id] = work_center
        logger.info(f"Created work center {work_center.id} ({work_center.daily_capacity_hours:.1f} h/day)")
        return work_center

    def get_by_id(self, work_center_id: str) -> WorkCenter:
        wc = self._work_centers.get(work_center_id)
        if wc is None:
            raise WorkCenterNotFoundException(work_center_id)
        return wc

    def find_all(self) -> List[WorkCenter]:
        return list(self._work_centers.values())

    def find_active(self) -> List[WorkCenter]:
        return [wc for wc in self._work_centers.values() if wc.active]

    def activate(self, work_center_id: str) -> WorkCenter:
        wc = self.get_by_id(work_center_id)
        wc.active = True
        logger.info(f"Activated work center {work_center_id}")
        return wc

    def deactivate(self, work_center_id: str) -> WorkCenter:
        wc = self.get_by_id(work_center_id)
        wc.active = False
        logger.info(f"Deactivated work center {work_center_id}")
        return wc

    def add_closure(self, work_center_id: str, closed_on: date) -> None:
        """Mark a single non-working date (holiday, maintenance)."""
        self.get_by_id(work_center_id)
        self._closures.setdefault(work_center_id, set()).add(closed_on)
        logger.debug(f"Work center {work_center_id} closed on {closed_on}")

    def get_available_hours(self, work_center_id: str, on_date: date) -> float:
        wc = self.get_by_id(work_center_id)
        if not wc.active or not wc.is_working_day(on_date):
            return 0.0
        if on_date in self._closures.get(work_center_id, set()):
            return 0.0
        return wc.daily_capacity_hours

    def get_available_hours_for_period(
        self, work_center_id: str, start_date: date, end_date: date
    ) -> float:
        """Available hours over [start_date, end_date)."""
        total = 0.0
        day = start_date
        while day < end_date:
            total += self.get_available_hours(work_center_id, day)
            day += timedelta(days=1)
        return total

    def find_alternatives(self, work_center_id: str) -> List[WorkCenter]:
        """Active alternative work centers, in the configured order."""
        wc = self.get_by_id(work_center_id)
        alternatives = []
        for alt_id in wc.alternative_ids:
            alt = self._work_centers.get(alt_id)
            if alt is None:
                logger.warning(f"Alternative {alt_id} of work center {work_center_id} does not exist")
                continue
            if alt.active:
                alternatives.append(alt)
        return alternatives
