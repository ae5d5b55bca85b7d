"""
MfgPlan - Demand Forecaster
===========================

Demand estimates through an ordered chain of forecast sources.

Architecture:
- ForecastSource: strategy interface returning a ForecastAttempt (result or error)
- MlForecastSource: primary source, wraps a ForecastProvider
- HistoricalForecastSource: fallback source, wraps a ForecastFallbackProvider
- DemandForecaster: tries the sources in order and returns the first forecast

Single-source failures are logged and recovered by the next source.
When every source fails, ForecastUnavailableException is raised; there is
no zero default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.exceptions import ForecastUnavailableException
from mfg_planning.forecasting.forecast_models import DemandForecast, ForecastConfidence
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.horizon import PlanningHorizon
from mfg_planning.providers.interfaces import ForecastFallbackProvider, ForecastProvider

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ForecastAttempt:
    """Outcome of asking one source for a forecast."""
    source: str
    forecast: Optional[DemandForecast] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.forecast is not None


class ForecastSource(ABC):
    """One link of the forecast chain."""

    name: str = ""

    @abstractmethod
    def attempt(self, product_id: str, horizon: PlanningHorizon) -> ForecastAttempt:
        ...

    @abstractmethod
    def confidence(self, product_id: str) -> ForecastConfidence:
        ...

    def _failed(self, error: Exception) -> ForecastAttempt:
        return ForecastAttempt(source=self.name, error=f"{type(error).__name__}: {error}")


class MlForecastSource(ForecastSource):
    name = "ml"

    def __init__(self, provider: ForecastProvider):
        self.provider = provider

    def attempt(self, product_id: str, horizon: PlanningHorizon) -> ForecastAttempt:
        try:
            return ForecastAttempt(self.name, self.provider.generate_forecast(product_id, horizon))
        except Exception as e:
            return self._failed(e)

    def confidence(self, product_id: str) -> ForecastConfidence:
        return self.provider.get_model_confidence(product_id)


class HistoricalForecastSource(ForecastSource):
    name = "historical"

    def __init__(self, provider: ForecastFallbackProvider):
        self.provider = provider

    def attempt(self, product_id: str, horizon: PlanningHorizon) -> ForecastAttempt:
        try:
            return ForecastAttempt(self.name, self.provider.generate_from_history(product_id, horizon))
        except Exception as e:
            return self._failed(e)

    def confidence(self, product_id: str) -> ForecastConfidence:
        return self.provider.get_historical_confidence(product_id)


# ═══════════════════════════════════════════════════════════════════════════════
# FORECASTER
# ═══════════════════════════════════════════════════════════════════════════════

class DemandForecaster:
    """
    Usage:
        forecaster = DemandForecaster(ml_provider, HistoricalDemandForecaster(history))
        forecast = forecaster.forecast("P-100", date(2024, 1, 1), date(2024, 3, 31))
    """

    def __init__(
        self,
        ml_provider: Optional[ForecastProvider] = None,
        fallback_provider: Optional[ForecastFallbackProvider] = None,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
    ):
        self.ml_provider = ml_provider
        self.fallback_provider = fallback_provider
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()

        self.sources: List[ForecastSource] = []
        if ml_provider is not None:
            self.sources.append(MlForecastSource(ml_provider))
        if fallback_provider is not None:
            self.sources.append(HistoricalForecastSource(fallback_provider))

    def forecast(self, product_id: str, start_date: date, end_date: date) -> DemandForecast:
        """
        Forecast demand of a product over [start_date, end_date].

        Raises:
            ForecastUnavailableException: every source is absent or failed
        """
        horizon = PlanningHorizon(
            start_date=start_date,
            end_date=end_date,
            frozen_days=self.config.frozen_days,
            slushy_days=self.config.slushy_days,
        )
        errors: Dict[str, str] = {}

        for position, source in enumerate(self.sources):
            attempt = source.attempt(product_id, horizon)
            if not attempt.succeeded:
                errors[source.name] = attempt.error
                logger.warning(f"{source.name} forecast failed for {product_id}: {attempt.error}")
                continue

            logger.info(
                f"{source.name} forecast for {product_id}: {attempt.forecast.quantity:.1f} "
                f"({attempt.forecast.confidence.value})"
            )
            if position > 0 and self.event_bus is not None and self.config.publish_events:
                self.event_bus.emit(
                    PlanningEventType.FORECAST_FALLBACK_USED,
                    source="demand_forecaster",
                    product_id=product_id,
                    used=source.name,
                    errors=dict(errors),
                )
            return attempt.forecast

        if not self.sources:
            errors["chain"] = "no forecast provider configured"
        logger.error(f"No forecast available for {product_id}")
        raise ForecastUnavailableException(product_id, errors)

    def forecast_multiple(
        self,
        product_ids: Iterable[str],
        start_date: date,
        end_date: date,
    ) -> Dict[str, DemandForecast]:
        """Forecast several products; unavailable products are left out of the map."""
        product_ids = list(product_ids)
        forecasts: Dict[str, DemandForecast] = {}
        failed: List[str] = []

        for product_id in product_ids:
            try:
                forecasts[product_id] = self.forecast(product_id, start_date, end_date)
            except ForecastUnavailableException:
                failed.append(product_id)

        if failed:
            logger.warning(
                f"Forecasts failed for {len(failed)} of {len(product_ids)} products: {', '.join(failed)}"
            )
        return forecasts

    def is_ml_available(self) -> bool:
        if self.ml_provider is None:
            return False
        try:
            return bool(self.ml_provider.is_healthy())
        except Exception as e:
            logger.warning(f"ML health check failed: {e}")
            return False

    def get_confidence_level(self, product_id: str) -> ForecastConfidence:
        """Confidence of the first source able to assess it; VERY_LOW without sources."""
        if not self.sources:
            return ForecastConfidence.VERY_LOW

        for source in self.sources:
            try:
                return source.confidence(product_id)
            except Exception as e:
                logger.debug(f"{source.name} cannot assess confidence of {product_id}: {e}")

        return ForecastConfidence.LOW

    def calculate_seasonal_factors(self, product_id: str) -> Dict[int, float]:
        """Month (1-12) -> factor; neutral factors without a historical provider."""
        if self.fallback_provider is None:
            return {month: 1.0 for month in range(1, 13)}
        return self.fallback_provider.calculate_seasonality(product_id)

    def adjust_forecast(
        self,
        forecast: DemandForecast,
        adjustments: Dict[date, Dict[str, float]],
    ) -> DemandForecast:
        """
        Apply manual adjustments per period.

        Each adjustment sets `quantity`, or applies a `multiplier`, or adds a
        `delta` (first key present wins). Periods absent from the breakdown are
        ignored. The result has source "manual" and one confidence level less.
        """
        breakdown = dict(forecast.period_breakdown)
        notes: List[str] = list(forecast.metadata.get("notes", []))
        notes.append("Manually adjusted")

        for period, adjustment in adjustments.items():
            if period not in breakdown:
                continue
            original = breakdown[period]
            if "quantity" in adjustment:
                breakdown[period] = adjustment["quantity"]
            elif "multiplier" in adjustment:
                breakdown[period] = original * adjustment["multiplier"]
            elif "delta" in adjustment:
                breakdown[period] = original + adjustment["delta"]
            breakdown[period] = max(0.0, breakdown[period])
            notes.append(f"Period {period.isoformat()}: {original} -> {breakdown[period]}")

        metadata: Dict[str, Any] = {**forecast.metadata, "notes": notes, "adjusted_from": forecast.source}
        return forecast.with_changes(
            quantity=float(sum(breakdown.values())) if breakdown else forecast.quantity,
            period_breakdown=breakdown,
            confidence=forecast.confidence.downgrade(),
            source="manual",
            calculated_at=datetime.now(),
            metadata=metadata,
        )
