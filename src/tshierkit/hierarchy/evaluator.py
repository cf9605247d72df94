"""Hierarchy-aware evaluation metrics and coherence checking.

Provides per-level percentage errors and detection of coherence
violations (children not summing to their parent).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from tshierkit.core.errors import EContractViolation, EDivisionByZero

if TYPE_CHECKING:
    from .structure import HierarchyStructure

logger = logging.getLogger(__name__)


def mape(actual: np.ndarray, forecast: np.ndarray) -> float:
    """Mean absolute percentage error, in percent.

    Observations whose actual value is zero are excluded from the mean.

    Raises:
        EContractViolation: On mismatched shapes or non-finite values
        EDivisionByZero: If no observation has a non-zero actual
    """
    a = np.asarray(actual, dtype=float).ravel()
    f = np.asarray(forecast, dtype=float).ravel()
    if a.shape != f.shape:
        raise EContractViolation(f"Actual shape {a.shape} does not match forecast shape {f.shape}")
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(f))):
        raise EContractViolation(
            "MAPE needs finite actual and forecast values",
            context={
                "non_finite_actual": int(np.sum(~np.isfinite(a))),
                "non_finite_forecast": int(np.sum(~np.isfinite(f))),
            },
        )
    mask = a != 0
    if not np.any(mask):
        raise EDivisionByZero(
            "MAPE is undefined: every actual value is zero",
            context={"n_obs": int(a.size)},
        )
    return float(np.mean(np.abs(a[mask] - f[mask]) / np.abs(a[mask])) * 100)


@dataclass(frozen=True)
class CoherenceViolation:
    """Single coherence violation record.

    Attributes:
        parent_node: Label of the parent node
        child_nodes: Labels of its children
        expected_value: Sum of the children
        actual_value: Parent value
        difference: Absolute difference between expected and actual
        step: 1-based forecast step (or period position)
    """

    parent_node: str
    child_nodes: list[str]
    expected_value: float
    actual_value: float
    difference: float
    step: int


def coherence_violations(
    structure: HierarchyStructure,
    values: np.ndarray,
    rtol: float = 1e-6,
    atol: float = 1e-9,
) -> list[CoherenceViolation]:
    """Find every parent/step where children do not sum to the parent.

    Args:
        structure: Hierarchy structure
        values: (n_total x steps) matrix in arena order
        rtol: Relative tolerance
        atol: Absolute tolerance floor for values near zero
    """
    matrix = np.asarray(values, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    violations: list[CoherenceViolation] = []
    for parent in structure.aggregates():
        children = list(parent.children)
        expected = matrix[children].sum(axis=0)
        actual = matrix[parent.index]
        diff = np.abs(actual - expected)
        tol = rtol * np.maximum(np.abs(actual), np.abs(expected)) + atol
        for step in np.flatnonzero(diff > tol):
            violations.append(
                CoherenceViolation(
                    parent_node=parent.label,
                    child_nodes=[structure.nodes[c].label for c in children],
                    expected_value=float(expected[step]),
                    actual_value=float(actual[step]),
                    difference=float(diff[step]),
                    step=int(step) + 1,
                )
            )
    return violations


@dataclass(frozen=True)
class HierarchyEvaluationReport:
    """Evaluation report for hierarchical forecasts.

    Attributes:
        level_metrics: Metrics per hierarchy level (mae, rmse, count and,
            where defined, mape)
        coherence_violations: Coherence violations found
        coherence_score: Overall coherence score (0-1, higher is better)
        total_violations: Total number of violations
        violation_rate: Proportion of parent/step checks that failed
    """

    level_metrics: dict[int, dict[str, float]] = field(default_factory=dict)
    coherence_violations: list[CoherenceViolation] = field(default_factory=list)
    coherence_score: float = 0.0
    total_violations: int = 0
    violation_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary."""
        return {
            "level_metrics": self.level_metrics,
            "coherence_violations": [
                {
                    "parent_node": v.parent_node,
                    "child_nodes": v.child_nodes,
                    "expected_value": v.expected_value,
                    "actual_value": v.actual_value,
                    "difference": v.difference,
                    "step": v.step,
                }
                for v in self.coherence_violations
            ],
            "coherence_score": self.coherence_score,
            "total_violations": self.total_violations,
            "violation_rate": self.violation_rate,
        }


def _as_matrix(data: Any) -> np.ndarray:
    if hasattr(data, "aggregate_matrix"):
        return data.aggregate_matrix()
    if isinstance(data, pd.DataFrame):
        # periods x nodes frames, as produced by to_frame() and aggregate()
        return data.to_numpy(dtype=float).T
    return np.asarray(getattr(data, "values", data), dtype=float)


class HierarchyEvaluator:
    """Evaluate hierarchical forecast accuracy and coherence.

    Forecasts and actuals are (n_total x steps) matrices in arena order;
    CoherentForecast and Hierarchy objects are accepted as well. Only the
    steps both cover are compared.

    Example:
        >>> evaluator = HierarchyEvaluator(structure)
        >>> evaluator.accuracy(coherent, test_hierarchy, levels=[0, 1])
        {0: 3.1, 1: 4.7}
    """

    def __init__(self, structure: HierarchyStructure):
        self.structure = structure

    def _aligned(self, forecast: Any, actual: Any) -> tuple[np.ndarray, np.ndarray]:
        f = _as_matrix(forecast)
        a = _as_matrix(actual)
        n_total = self.structure.node_count()
        if f.ndim != 2 or a.ndim != 2 or f.shape[0] != n_total or a.shape[0] != n_total:
            raise EContractViolation(
                f"Forecast {f.shape} and actual {a.shape} must both have {n_total} rows"
            )
        steps = min(f.shape[1], a.shape[1])
        return f[:, :steps], a[:, :steps]

    def _levels(self, levels: Iterable[int] | None) -> list[int]:
        if levels is None:
            return list(range(self.structure.num_levels))
        out = [int(level) for level in levels]
        unknown = [level for level in out if not 0 <= level < self.structure.num_levels]
        if unknown:
            raise EContractViolation(
                f"Levels {unknown} not in hierarchy",
                context={"num_levels": self.structure.num_levels},
            )
        return out

    def accuracy(
        self,
        forecast: Any,
        actual: Any,
        levels: Iterable[int] | None = None,
        steps: Iterable[int] | None = None,
    ) -> dict[int, float]:
        """MAPE per level over the nodes at that level and the horizon.

        Args:
            forecast: Coherent forecasts (n_total x h)
            actual: Held-out actuals (n_total x k)
            levels: Depths to score (default: all)
            steps: 1-based forecast steps to include (default: all common)

        Raises:
            EDivisionByZero: If every actual at a requested level is zero
        """
        f, a = self._aligned(forecast, actual)
        if steps is not None:
            cols = [s - 1 for s in steps]
            if any(not 0 <= c < f.shape[1] for c in cols):
                raise EContractViolation(
                    f"Steps {[c + 1 for c in cols]} outside the {f.shape[1]} comparable steps"
                )
            f, a = f[:, cols], a[:, cols]
        result: dict[int, float] = {}
        for level in self._levels(levels):
            rows = self.structure.nodes_at_level(level)
            result[level] = mape(a[rows], f[rows])
        return result

    def accuracy_by_step(
        self,
        forecast: Any,
        actual: Any,
        levels: Iterable[int] | None = None,
    ) -> dict[int, dict[int, float]]:
        """MAPE per level and 1-based forecast step.

        A level/step whose actuals are all zero has no defined error and is
        left out; a level with no defined step is left out entirely.
        """
        f, a = self._aligned(forecast, actual)
        result: dict[int, dict[int, float]] = {}
        for level in self._levels(levels):
            rows = self.structure.nodes_at_level(level)
            for step in range(f.shape[1]):
                try:
                    value = mape(a[rows, step], f[rows, step])
                except EDivisionByZero:
                    logger.debug("MAPE undefined at level %d step %d", level, step + 1)
                    continue
                result.setdefault(level, {})[step + 1] = value
        return result

    def coherence_violations(self, values: Any, rtol: float = 1e-6) -> list[CoherenceViolation]:
        return coherence_violations(self.structure, _as_matrix(values), rtol=rtol)

    def coherence_score(self, values: Any, rtol: float = 1e-6) -> float:
        """Coherence score, 1.0 when perfectly coherent.

        Decreases with the total violation magnitude relative to the total
        absolute parent value.
        """
        matrix = _as_matrix(values)
        total_abs_sum = 0.0
        total_violation = 0.0
        for parent in self.structure.aggregates():
            total_abs_sum += float(np.abs(matrix[parent.index]).sum())
        for violation in coherence_violations(self.structure, matrix, rtol=rtol):
            total_violation += violation.difference
        if total_abs_sum == 0:
            return 1.0
        return max(0.0, 1.0 - (total_violation / total_abs_sum))

    def evaluate(
        self,
        forecast: Any,
        actual: Any = None,
        tolerance: float = 1e-6,
    ) -> HierarchyEvaluationReport:
        """Evaluate hierarchical forecasts.

        Computes per-level metrics (when actuals are given) and checks
        coherence.
        """
        values = _as_matrix(forecast)
        level_metrics: dict[int, dict[str, float]] = {}
        if actual is not None:
            f, a = self._aligned(values, actual)
            for level in self._levels(None):
                rows = self.structure.nodes_at_level(level)
                errors = f[rows] - a[rows]
                metrics = {
                    "mae": float(np.mean(np.abs(errors))),
                    "rmse": float(np.sqrt(np.mean(errors**2))),
                    "count": float(errors.size),
                }
                # Undefined MAPE is left absent, never reported as zero
                if np.any(a[rows] != 0):
                    metrics["mape"] = mape(a[rows], f[rows])
                level_metrics[level] = metrics

        violations = self.coherence_violations(values, rtol=tolerance)
        total_checks = len(self.structure.aggregates()) * values.shape[1]
        return HierarchyEvaluationReport(
            level_metrics=level_metrics,
            coherence_violations=violations,
            coherence_score=self.coherence_score(values, rtol=tolerance),
            total_violations=len(violations),
            violation_rate=len(violations) / max(total_checks, 1),
        )


__all__ = [
    "CoherenceViolation",
    "HierarchyEvaluationReport",
    "HierarchyEvaluator",
    "coherence_violations",
    "mape",
]
