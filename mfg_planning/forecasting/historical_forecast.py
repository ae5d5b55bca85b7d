"""
MfgPlan - Historical Demand Forecast
====================================

Statistical fallback forecast from recorded demand.

Method:
    daily_rate   = mean of the last `window_days` of daily demand
    forecast(d)  = daily_rate × seasonal_factor[month(d)]
    seasonal[m]  = mean monthly demand in month m / mean monthly demand

Seasonal factors need at least `min_seasonal_months` full months of history;
otherwise every month gets 1.0.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Optional

import numpy as np
import pandas as pd

from mfg_planning.forecasting.forecast_models import DemandForecast, ForecastConfidence
from mfg_planning.horizon import PlanningHorizon
from mfg_planning.providers.interfaces import ForecastFallbackProvider

logger = logging.getLogger(__name__)


class HistoricalDemandForecaster(ForecastFallbackProvider):
    """
    Moving-average forecaster over recorded daily demand.

    Usage:
        history = HistoricalDemandForecaster()
        history.record_actual("P-100", date(2023, 12, 1), 40)
        forecast = history.generate_from_history("P-100", PlanningHorizon.for_days(30))
    """

    def __init__(self, window_days: int = 28, min_seasonal_months: int = 12):
        if window_days < 1:
            raise ValueError("Window must be at least one day")
        self.window_days = window_days
        self.min_seasonal_months = min_seasonal_months
        self._history: Dict[str, Dict[date, float]] = {}

    def record_actual(self, product_id: str, day: date, quantity: float) -> None:
        """Add observed demand of a product on a date."""
        if quantity < 0:
            raise ValueError("Demand cannot be negative")
        per_day = self._history.setdefault(product_id, {})
        per_day[day] = per_day.get(day, 0.0) + quantity

    def load_series(self, product_id: str, series: pd.Series) -> None:
        """Bulk-load a date-indexed demand series."""
        for ts, quantity in series.items():
            self.record_actual(product_id, pd.Timestamp(ts).date(), float(quantity))

    def get_series(self, product_id: str) -> pd.Series:
        """Daily demand, gaps filled with 0."""
        per_day = self._history.get(product_id)
        if not per_day:
            return pd.Series(dtype=float)
        series = pd.Series(per_day, dtype=float)
        series.index = pd.to_datetime(series.index)
        return series.sort_index().asfreq("D", fill_value=0.0)

    # ───────────────────────────────────────────────────────────────────────────
    # ForecastFallbackProvider
    # ───────────────────────────────────────────────────────────────────────────

    def generate_from_history(self, product_id: str, horizon: PlanningHorizon) -> DemandForecast:
        series = self.get_series(product_id)
        if series.empty:
            raise ValueError(f"No demand history for {product_id}")

        recent = series.iloc[-self.window_days:]
        daily_rate = float(recent.mean())
        daily_std = float(recent.std()) if len(recent) > 1 else daily_rate * 0.2
        factors = self.calculate_seasonality(product_id)

        days = pd.date_range(horizon.start_date, horizon.end_date, freq="D")
        daily = pd.Series(
            [daily_rate * factors.get(ts.month, 1.0) for ts in days],
            index=days,
        )

        breakdown = {}
        for start, end in horizon.get_buckets():
            breakdown[start] = float(daily[pd.Timestamp(start):pd.Timestamp(end) - pd.Timedelta(days=1)].sum())

        quantity = float(daily.sum())
        spread = 1.96 * daily_std * np.sqrt(len(days))

        logger.debug(f"Historical forecast {product_id}: rate {daily_rate:.2f}/day over {len(days)} days")
        return DemandForecast(
            product_id=product_id,
            start_date=horizon.start_date,
            end_date=horizon.end_date,
            quantity=quantity,
            confidence=self._confidence(series),
            source="historical",
            period_breakdown=breakdown,
            lower_bound=max(0.0, quantity - spread),
            upper_bound=quantity + spread,
            model_version=f"moving_average_{self.window_days}d",
            metadata={"daily_rate": daily_rate, "history_days": len(series)},
        )

    def get_historical_confidence(self, product_id: str) -> ForecastConfidence:
        series = self.get_series(product_id)
        if series.empty:
            raise ValueError(f"No demand history for {product_id}")
        return self._confidence(series)

    def calculate_seasonality(self, product_id: str) -> Dict[int, float]:
        neutral = {month: 1.0 for month in range(1, 13)}
        series = self.get_series(product_id)
        if series.empty:
            return neutral

        monthly = series.resample("MS").sum()
        if len(monthly) < self.min_seasonal_months:
            return neutral

        overall = float(monthly.mean())
        if overall <= 0:
            return neutral

        by_month = monthly.groupby(monthly.index.month).mean() / overall
        factors = dict(neutral)
        factors.update({int(m): round(float(f), 4) for m, f in by_month.items()})
        return factors

    # ───────────────────────────────────────────────────────────────────────────

    def _confidence(self, series: pd.Series) -> ForecastConfidence:
        """Longer, steadier history scores higher."""
        recent = series.iloc[-self.window_days:]
        mean = float(recent.mean())
        cv: Optional[float] = float(recent.std()) / mean if mean > 0 and len(recent) > 1 else None

        score = 0.8 if cv is None else max(0.0, 0.9 - 0.4 * cv)
        if len(series) < self.window_days:
            score -= 0.2
        return ForecastConfidence.from_score(min(score, 0.85))
