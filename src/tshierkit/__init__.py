"""tshierkit - Coherent forecasting for hierarchical time series.

Builds the aggregation structure over a set of bottom series, reconciles
independent per-node forecasts into a coherent set, and compares
reconciliation methods by rolling-origin cross-validation.

Basic usage:
    >>> from tshierkit import Hierarchy, forecast
    >>> hierarchy = Hierarchy.build(bottom, [2, (2, 6)], frequency=4, start_period="1998Q1")
    >>> coherent = forecast(hierarchy, horizon=4, reconciliation="comb", base="ets")
    >>> print(coherent.to_frame())

Cross-validation:
    >>> from tshierkit import CVConfig, run_cross_validation
    >>> config = CVConfig.quarterly(fold_count=8)
    >>> table = run_cross_validation(hierarchy, config)
    >>> print(table.mean_by_horizon())
"""

__version__ = "0.1.0"

from tshierkit.backtest import CrossValidator, MethodPair, ResultTable, run_cv
from tshierkit.core.config import CVConfig, ExecutionConfig
from tshierkit.core.errors import (
    EContractViolation,
    EDegenerateHierarchy,
    EDivisionByZero,
    EInvalidStructure,
    EMissingForecast,
    EModelFailed,
    EOutOfRange,
    ESingularAggregation,
    ETimeout,
    EUnsupportedMethod,
    TSHierKitError,
)
from tshierkit.hierarchy import (
    CoherentForecast,
    Hierarchy,
    HierarchyEvaluator,
    HierarchyStructure,
    Reconciler,
    ReconciliationMethod,
    reconcile,
)
from tshierkit.models import BaseForecast, BaseMethod, forecast_hierarchy, forecast_node
from tshierkit.pipeline import build_hierarchy, forecast, run_cross_validation

__all__ = [
    "__version__",
    # Pipeline
    "build_hierarchy",
    "forecast",
    "run_cross_validation",
    # Hierarchy
    "Hierarchy",
    "HierarchyStructure",
    "CoherentForecast",
    "Reconciler",
    "ReconciliationMethod",
    "reconcile",
    "HierarchyEvaluator",
    # Base forecasts
    "BaseForecast",
    "BaseMethod",
    "forecast_hierarchy",
    "forecast_node",
    # Cross-validation
    "CrossValidator",
    "MethodPair",
    "ResultTable",
    "run_cv",
    # Config
    "CVConfig",
    "ExecutionConfig",
    # Errors
    "TSHierKitError",
    "EContractViolation",
    "EInvalidStructure",
    "EOutOfRange",
    "EUnsupportedMethod",
    "EDegenerateHierarchy",
    "ESingularAggregation",
    "EDivisionByZero",
    "EMissingForecast",
    "EModelFailed",
    "ETimeout",
]
