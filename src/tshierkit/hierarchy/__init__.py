"""Hierarchical time series structure, reconciliation and evaluation.

Example:
    >>> from tshierkit.hierarchy import Hierarchy, Reconciler
    >>>
    >>> # Two categories over eight bottom series
    >>> hierarchy = Hierarchy.build(bottom, [2, (2, 6)], frequency=4)
    >>>
    >>> # Reconcile base forecasts by ordinary least squares
    >>> reconciler = Reconciler("comb", hierarchy.structure)
    >>> coherent = reconciler.reconcile(base_forecasts)
"""

from __future__ import annotations

from .evaluator import (
    CoherenceViolation,
    HierarchyEvaluationReport,
    HierarchyEvaluator,
    coherence_violations,
    mape,
)
from .reconciliation import CoherentForecast, Reconciler, ReconciliationMethod, reconcile
from .structure import Hierarchy, HierarchyStructure, Node, normalize_grouping

__all__ = [
    # Structure
    "Hierarchy",
    "HierarchyStructure",
    "Node",
    "normalize_grouping",
    # Reconciliation
    "CoherentForecast",
    "Reconciler",
    "ReconciliationMethod",
    "reconcile",
    # Evaluation
    "HierarchyEvaluator",
    "HierarchyEvaluationReport",
    "CoherenceViolation",
    "coherence_violations",
    "mape",
]
