"""
MfgPlan - Planning Horizon
==========================

Inclusive date window that bounds every planning calculation, split into
frozen / slushy / liquid zones and into day, week or month buckets.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta


class PlanningZone(str, Enum):
    """Time fence zone of a date inside the horizon."""
    FROZEN = "frozen"    # No automatic changes
    SLUSHY = "slushy"    # Changes need approval
    LIQUID = "liquid"    # Free replanning


class BucketSize(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class PlanningHorizon:
    """Inclusive planning window [start_date, end_date]."""
    start_date: date
    end_date: date
    frozen_days: int = 14
    slushy_days: int = 14
    bucket_size: BucketSize = BucketSize.DAY

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        if self.frozen_days < 0 or self.slushy_days < 0:
            raise ValueError("Zone days cannot be negative")
        if not isinstance(self.bucket_size, BucketSize):
            # Accept plain strings ("day", "week", "month")
            object.__setattr__(self, "bucket_size", BucketSize(self.bucket_size))

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def dates(self) -> List[date]:
        return [self.start_date + timedelta(days=i) for i in range(self.total_days)]

    def get_zone_for_date(self, day: date) -> PlanningZone:
        if not self.contains(day):
            return PlanningZone.LIQUID

        offset = (day - self.start_date).days
        if offset < self.frozen_days:
            return PlanningZone.FROZEN
        if offset < self.frozen_days + self.slushy_days:
            return PlanningZone.SLUSHY
        return PlanningZone.LIQUID

    def get_buckets(self) -> List[Tuple[date, date]]:
        """Buckets as (start, end_exclusive), the last one clipped to the horizon end."""
        buckets = []
        current = self.start_date
        limit = self.end_date + timedelta(days=1)

        while current < limit:
            if self.bucket_size == BucketSize.DAY:
                nxt = current + timedelta(days=1)
            elif self.bucket_size == BucketSize.WEEK:
                nxt = current + timedelta(weeks=1)
            else:  # MONTH
                nxt = current + relativedelta(months=1)
            bucket_end = min(nxt, limit)
            buckets.append((current, bucket_end))
            current = bucket_end

        return buckets

    def bucket_index(self, day: date) -> Optional[int]:
        """Index of the bucket containing day, or None outside the horizon."""
        if not self.contains(day):
            return None
        for i, (start, end) in enumerate(self.get_buckets()):
            if start <= day < end:
                return i
        return None

    @classmethod
    def for_days(
        cls,
        days: int,
        start_date: Optional[date] = None,
        frozen_days: int = 14,
        slushy_days: int = 14,
        bucket_size: BucketSize = BucketSize.DAY,
    ) -> "PlanningHorizon":
        if days < 1:
            raise ValueError("Horizon must cover at least one day")
        start = start_date or date.today()
        return cls(
            start_date=start,
            end_date=start + timedelta(days=days - 1),
            frozen_days=frozen_days,
            slushy_days=slushy_days,
            bucket_size=bucket_size,
        )

    @classmethod
    def for_weeks(
        cls,
        weeks: int,
        start_date: Optional[date] = None,
        frozen_weeks: int = 2,
        slushy_weeks: int = 2,
    ) -> "PlanningHorizon":
        return cls.for_days(
            weeks * 7,
            start_date=start_date,
            frozen_days=frozen_weeks * 7,
            slushy_days=slushy_weeks * 7,
            bucket_size=BucketSize.WEEK,
        )

    @classmethod
    def for_months(
        cls,
        months: int,
        start_date: Optional[date] = None,
        frozen_weeks: int = 2,
        slushy_weeks: int = 2,
    ) -> "PlanningHorizon":
        start = start_date or date.today()
        end = start + relativedelta(months=months) - timedelta(days=1)
        return cls(
            start_date=start,
            end_date=end,
            frozen_days=frozen_weeks * 7,
            slushy_days=slushy_weeks * 7,
            bucket_size=BucketSize.MONTH,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "frozen_days": self.frozen_days,
            "slushy_days": self.slushy_days,
            "bucket_size": self.bucket_size.value,
            "total_days": self.total_days,
            "bucket_count": len(self.get_buckets()),
        }
