"""
MfgPlan - Forecast Data Structures
==================================
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

import pandas as pd


class ForecastConfidence(str, Enum):
    """Confidence class of a forecast."""
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"

    @property
    def score(self) -> float:
        return {
            ForecastConfidence.VERY_HIGH: 0.95,
            ForecastConfidence.HIGH: 0.85,
            ForecastConfidence.MEDIUM: 0.7,
            ForecastConfidence.LOW: 0.5,
            ForecastConfidence.VERY_LOW: 0.3,
        }[self]

    @property
    def requires_review(self) -> bool:
        return self in (ForecastConfidence.LOW, ForecastConfidence.VERY_LOW)

    def downgrade(self) -> "ForecastConfidence":
        order = list(ForecastConfidence)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]

    @classmethod
    def from_score(cls, score: float) -> "ForecastConfidence":
        if score >= 0.9:
            return cls.VERY_HIGH
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.6:
            return cls.MEDIUM
        if score >= 0.4:
            return cls.LOW
        return cls.VERY_LOW


VALID_SOURCES = ("ml", "historical", "manual")


@dataclass(frozen=True)
class DemandForecast:
    """Immutable forecast for one product over [start_date, end_date]."""
    product_id: str
    start_date: date
    end_date: date
    quantity: float
    confidence: ForecastConfidence
    source: str  # "ml" | "historical" | "manual"
    period_breakdown: Dict[date, float] = field(default_factory=dict)
    lower_bound: Optional[float] = None
    upper_bound: Optional[float] = None
    model_version: Optional[str] = None
    calculated_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError("Forecast quantity cannot be negative")
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        if self.source not in VALID_SOURCES:
            raise ValueError(f"Source must be one of {', '.join(VALID_SOURCES)}")

    @property
    def is_ml_based(self) -> bool:
        return self.source == "ml"

    @property
    def is_fallback(self) -> bool:
        return self.source == "historical"

    @property
    def horizon_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def daily_average(self) -> float:
        return self.quantity / self.horizon_days

    @property
    def needs_review(self) -> bool:
        return self.confidence.requires_review

    def with_changes(self, **changes) -> "DemandForecast":
        return replace(self, **changes)

    def get_series(self) -> pd.Series:
        """Period breakdown as a date-indexed Series."""
        if not self.period_breakdown:
            return pd.Series(dtype=float)
        items = sorted(self.period_breakdown.items())
        return pd.Series(
            [qty for _, qty in items],
            index=pd.to_datetime([d for d, _ in items]),
            name=self.product_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "quantity": self.quantity,
            "confidence": self.confidence.value,
            "source": self.source,
            "period_breakdown": {d.isoformat(): q for d, q in sorted(self.period_breakdown.items())},
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "model_version": self.model_version,
            "calculated_at": self.calculated_at.isoformat(),
        }
