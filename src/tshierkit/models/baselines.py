"""Univariate base forecasters backed by statsforecast.

Each call fits one series and keeps no state, so calls can run
concurrently across nodes and folds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

from tshierkit.core.errors import EModelFailed, EUnsupportedMethod

DEFAULT_LEVEL = 80


class BaseMethod(Enum):
    """Available base forecasting methods."""

    ARIMA = "arima"
    ETS = "ets"
    RW = "rw"

    @classmethod
    def from_string(cls, name: str | BaseMethod) -> BaseMethod:
        """Resolve a method name or alias.

        Raises:
            EUnsupportedMethod: If the name is not a known method
        """
        if isinstance(name, cls):
            return name
        key = _normalize_name(str(name))
        if key in _ALIASES:
            return _ALIASES[key]
        raise EUnsupportedMethod(
            f"Unknown base method: {name}",
            context={"supported": [m.value for m in cls]},
        )


def _normalize_name(name: str) -> str:
    return name.lower().replace("_", "").replace("-", "")


_ALIASES: dict[str, BaseMethod] = {
    "arima": BaseMethod.ARIMA,
    "autoarima": BaseMethod.ARIMA,
    "ets": BaseMethod.ETS,
    "autoets": BaseMethod.ETS,
    "exponentialsmoothing": BaseMethod.ETS,
    "rw": BaseMethod.RW,
    "naive": BaseMethod.RW,
    "randomwalk": BaseMethod.RW,
    "rwf": BaseMethod.RW,
}


@dataclass(frozen=True, eq=False)
class BaseForecast:
    """Point forecast, interval and in-sample residuals for one series.

    Attributes:
        point: Point forecasts (length h)
        lower: Lower interval bound (length h)
        upper: Upper interval bound (length h)
        fitted: In-sample fitted values (length T)
        residuals: Actual minus fitted (length T); warm-up entries are NaN
        method: Method that produced the forecast
        level: Interval coverage in percent
    """

    point: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray
    method: BaseMethod
    level: int = DEFAULT_LEVEL

    def __post_init__(self) -> None:
        for name in ("point", "lower", "upper", "fitted", "residuals"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def horizon(self) -> int:
        return len(self.point)


def _get_statsforecast_models() -> dict[BaseMethod, type]:
    try:
        from statsforecast import models as sf_models
    except ImportError as exc:
        raise ImportError(
            "statsforecast is required for base forecasts. "
            "Install with: pip install statsforecast"
        ) from exc

    return {
        BaseMethod.ARIMA: sf_models.AutoARIMA,
        BaseMethod.ETS: sf_models.AutoETS,
        BaseMethod.RW: sf_models.Naive,
    }


def _build_model(method: BaseMethod, season_length: int) -> Any:
    model_cls = _get_statsforecast_models()[method]
    if method == BaseMethod.RW:
        return model_cls()
    return model_cls(season_length=max(int(season_length), 1))


def forecast_node(
    series: pd.Series | np.ndarray,
    horizon: int,
    method: BaseMethod | str,
    season_length: int = 1,
    level: int = DEFAULT_LEVEL,
) -> BaseForecast:
    """Fit one series and forecast ``horizon`` steps ahead.

    Args:
        series: Observed values of one node
        horizon: Number of steps to forecast
        method: Base method (enum or name)
        season_length: Observations per seasonal cycle
        level: Prediction interval coverage in percent

    Returns:
        BaseForecast with point forecasts, interval bounds and residuals

    Raises:
        EUnsupportedMethod: If the method is unknown
        EModelFailed: If statsforecast fails or returns non-finite forecasts
    """
    method = BaseMethod.from_string(method)
    if horizon <= 0:
        raise EModelFailed(f"horizon must be positive, got {horizon}")
    y = np.asarray(series, dtype=float)
    name = getattr(series, "name", None)

    model = _build_model(method, season_length)
    try:
        result = model.forecast(y=y, h=horizon, level=[level], fitted=True)
    except Exception as exc:
        raise EModelFailed(
            f"{method.value} failed to fit series {name!r}",
            context={"method": method.value, "series": name, "n_obs": len(y), "error": str(exc)},
        ) from exc

    point = np.asarray(result["mean"], dtype=float)
    if point.shape != (horizon,) or not np.all(np.isfinite(point)):
        raise EModelFailed(
            f"{method.value} returned invalid forecasts for series {name!r}",
            context={"method": method.value, "series": name},
        )
    lower = np.asarray(result.get(f"lo-{level}", point), dtype=float)
    upper = np.asarray(result.get(f"hi-{level}", point), dtype=float)
    fitted = np.asarray(result.get("fitted", np.full_like(y, np.nan)), dtype=float)

    return BaseForecast(
        point=point,
        lower=lower,
        upper=upper,
        fitted=fitted,
        residuals=y - fitted,
        method=method,
        level=level,
    )


__all__ = ["BaseForecast", "BaseMethod", "DEFAULT_LEVEL", "forecast_node"]
