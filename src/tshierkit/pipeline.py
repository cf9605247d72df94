"""One-call entry points for hierarchical forecasting.

Core logic: build hierarchy → forecast required nodes → reconcile → return,
and the same pipeline repeated per fold for cross-validation.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pandas as pd

from tshierkit.backtest.engine import CrossValidator
from tshierkit.backtest.results import ResultTable
from tshierkit.core.config import CVConfig
from tshierkit.core.errors import EContractViolation
from tshierkit.hierarchy.reconciliation import CoherentForecast, Reconciler
from tshierkit.hierarchy.structure import GroupingSpec, Hierarchy
from tshierkit.models.protocol import Forecaster, forecast_hierarchy

logger = logging.getLogger(__name__)


def build_hierarchy(
    data: Hierarchy | pd.DataFrame | np.ndarray,
    grouping: GroupingSpec | None = None,
    frequency: int = 1,
    start_period: Any = None,
    time_col: str | None = None,
) -> Hierarchy:
    """Return ``data`` as a Hierarchy, building it when needed.

    Raises:
        EContractViolation: If raw data is given without a grouping
    """
    if isinstance(data, Hierarchy):
        return data
    if grouping is None:
        raise EContractViolation(
            "A grouping is required to build a hierarchy from raw data",
            fix_hint="Pass grouping=[2, (2, 6)] style branching factors",
        )
    if isinstance(data, pd.DataFrame):
        return Hierarchy.from_dataframe(
            data,
            grouping,
            frequency=frequency,
            start_period=start_period,
            time_col=time_col,
        )
    return Hierarchy.build(data, grouping, frequency=frequency, start_period=start_period)


def forecast(
    hierarchy: Hierarchy,
    horizon: int,
    reconciliation: str = "bu",
    base: str = "arima",
    forecaster: Forecaster | None = None,
    allow_pinv: bool = True,
) -> CoherentForecast:
    """Produce a coherent forecast for every node of ``hierarchy``.

    Only the nodes the reconciliation method reads are forecast.

    Args:
        hierarchy: Observed hierarchy (the training data)
        horizon: Forecast length
        reconciliation: Reconciliation method (``bu``, ``tdgsa``, ``comb``, ...)
        base: Base method (``arima``, ``ets``, ``rw``)
        forecaster: Univariate forecaster (default: statsforecast models)
        allow_pinv: Fall back to a pseudo-inverse for singular combinations

    Returns:
        CoherentForecast with one row per node

    Example:
        >>> coherent = forecast(hierarchy, horizon=4, reconciliation="comb", base="ets")
        >>> coherent.to_frame()
    """
    if horizon <= 0:
        raise EContractViolation(f"horizon must be positive, got {horizon}")
    reconciler = Reconciler(reconciliation, hierarchy.structure, allow_pinv=allow_pinv)
    base_set = forecast_hierarchy(
        hierarchy,
        horizon,
        base,
        nodes=reconciler.required_nodes(),
        forecaster=forecaster,
    )
    logger.debug(
        "Forecast %d of %d nodes with %s for %s",
        len(base_set.nodes),
        hierarchy.node_count(),
        base_set.method.value,
        reconciler.method.value,
    )
    return reconciler.reconcile(base_set, history=hierarchy)


def run_cross_validation(
    data: Hierarchy | pd.DataFrame | np.ndarray,
    config: CVConfig | None = None,
    grouping: GroupingSpec | None = None,
    forecaster: Forecaster | None = None,
    time_col: str | None = None,
) -> ResultTable:
    """Cross-validate every configured method pair.

    Args:
        data: Hierarchy, or bottom series to build one from with ``grouping``
        config: Cross-validation settings (default: ``CVConfig()``)
        grouping: Branching factors when ``data`` is raw
        forecaster: Univariate forecaster (default: statsforecast models)
        time_col: Column holding period labels in a DataFrame

    Returns:
        Sealed ResultTable
    """
    config = config or CVConfig()
    hierarchy = build_hierarchy(
        data,
        grouping,
        frequency=config.frequency,
        start_period=config.start_period,
        time_col=time_col,
    )
    validator = CrossValidator(execution=config.execution, forecaster=forecaster)
    return validator.run(
        hierarchy,
        config.method_pairs(),
        fold_count=config.fold_count,
        window_size=config.window_size,
        horizon=config.horizon,
        levels=config.levels_to_evaluate,
        origin=config.origin,
    )


__all__ = ["build_hierarchy", "forecast", "run_cross_validation"]
