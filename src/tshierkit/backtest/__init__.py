"""Rolling-origin cross-validation of reconciliation methods.

Provides the fold scheduler and the append-only result table it fills.
"""

from .engine import CrossValidator, FoldPlan, default_origin, plan_folds, run_cv, run_unit
from .results import (
    CellFailure,
    FoldOutcome,
    MethodPair,
    ResultTable,
    ResultTableSealed,
    method_pairs,
)

__all__ = [
    # Engine
    "CrossValidator",
    "FoldPlan",
    "default_origin",
    "plan_folds",
    "run_cv",
    "run_unit",
    # Results
    "CellFailure",
    "FoldOutcome",
    "MethodPair",
    "ResultTable",
    "ResultTableSealed",
    "method_pairs",
]
