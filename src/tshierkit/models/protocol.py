"""Pure function protocol for producing base forecasts across a hierarchy.

A forecaster is any callable ``(series, horizon, method, season_length) ->
BaseForecast``. ``forecast_node`` is the default; tests and callers may pass
their own.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import numpy as np
import pandas as pd

from tshierkit.core.errors import EModelFailed

from .baselines import BaseForecast, BaseMethod, forecast_node

if TYPE_CHECKING:
    from tshierkit.hierarchy.structure import Hierarchy, HierarchyStructure


class Forecaster(Protocol):
    def __call__(
        self,
        series: pd.Series,
        horizon: int,
        method: BaseMethod,
        season_length: int,
    ) -> BaseForecast: ...


@dataclass(frozen=True, eq=False)
class BaseForecastSet:
    """Base forecasts for a subset of the hierarchy's nodes.

    Attributes:
        structure: Structure the node indices refer to
        horizon: Forecast length
        method: Base method used
        forecasts: Arena index -> BaseForecast
        periods: Index of the forecast periods
    """

    structure: HierarchyStructure
    horizon: int
    method: BaseMethod
    forecasts: dict[int, BaseForecast] = field(default_factory=dict)
    periods: pd.Index | None = None

    def point_matrix(self) -> np.ndarray:
        """(n_total x h) point forecasts, NaN for nodes not forecast."""
        out = np.full((self.structure.node_count(), self.horizon), np.nan)
        for idx, fc in self.forecasts.items():
            out[idx] = fc.point
        return out

    def residual_matrix(self) -> np.ndarray:
        """(n_total x T) in-sample residuals, NaN for nodes not forecast."""
        if not self.forecasts:
            return np.full((self.structure.node_count(), 0), np.nan)
        n_obs = max(len(fc.residuals) for fc in self.forecasts.values())
        out = np.full((self.structure.node_count(), n_obs), np.nan)
        for idx, fc in self.forecasts.items():
            out[idx, n_obs - len(fc.residuals) :] = fc.residuals
        return out

    @property
    def nodes(self) -> list[int]:
        return sorted(self.forecasts)


def forecast_hierarchy(
    hierarchy: Hierarchy,
    horizon: int,
    method: BaseMethod | str,
    nodes: Iterable[int] | None = None,
    forecaster: Forecaster | None = None,
) -> BaseForecastSet:
    """Produce base forecasts for the requested nodes of a hierarchy.

    Args:
        hierarchy: Hierarchy whose node series are forecast
        horizon: Forecast length
        method: Base method (enum or name)
        nodes: Arena indices to forecast (default: every node)
        forecaster: Univariate forecaster (default: ``forecast_node``)

    Returns:
        BaseForecastSet keyed by arena index

    Raises:
        EUnsupportedMethod: If the method is unknown
        EModelFailed: If a forecaster returns the wrong horizon
    """
    method = BaseMethod.from_string(method)
    forecaster = forecaster or forecast_node
    structure = hierarchy.structure
    targets = range(structure.node_count()) if nodes is None else sorted(set(nodes))

    aggregated = hierarchy.aggregate()
    forecasts: dict[int, BaseForecast] = {}
    for idx in targets:
        label = structure.nodes[idx].label
        fc = forecaster(aggregated[label], horizon, method, hierarchy.season_length)
        if len(fc.point) != horizon:
            raise EModelFailed(
                f"Forecaster returned {len(fc.point)} steps for node {label!r}, expected {horizon}",
                context={"node": label, "method": method.value},
            )
        forecasts[idx] = fc

    return BaseForecastSet(
        structure=structure,
        horizon=horizon,
        method=method,
        forecasts=forecasts,
        periods=hierarchy.future_periods(horizon),
    )


__all__ = ["BaseForecastSet", "Forecaster", "forecast_hierarchy"]
