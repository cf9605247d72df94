"""Base forecasts for individual hierarchy nodes."""

from __future__ import annotations

from .baselines import DEFAULT_LEVEL, BaseForecast, BaseMethod, forecast_node
from .protocol import BaseForecastSet, Forecaster, forecast_hierarchy

__all__ = [
    "BaseForecast",
    "BaseForecastSet",
    "BaseMethod",
    "DEFAULT_LEVEL",
    "Forecaster",
    "forecast_hierarchy",
    "forecast_node",
]
