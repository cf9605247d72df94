"""Aggregation matrix operations for hierarchical reconciliation.

Every reconciliation method is a projection matrix P of shape
(n_bottom, n_total) such that ``ŷ_reconciled = S @ P @ ŷ_base``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from tshierkit.core.errors import EDegenerateHierarchy, EMissingForecast, ESingularAggregation

if TYPE_CHECKING:
    from .structure import HierarchyStructure

logger = logging.getLogger(__name__)


def create_bottom_up_matrix(structure: HierarchyStructure) -> np.ndarray:
    """Create projection matrix for bottom-up reconciliation.

    P selects the bottom-level forecasts from the full forecast vector, so
    forecasts made at higher levels are ignored.

    Example:
        >>> P = create_bottom_up_matrix(structure)
        >>> reconciled = structure.s_matrix @ P @ base_forecasts
    """
    bottom = structure.bottom_indices
    p_matrix = np.zeros((len(bottom), structure.node_count()))
    for i, j in enumerate(bottom):
        p_matrix[i, j] = 1.0
    return p_matrix


def _require_root(structure: HierarchyStructure) -> int:
    root = structure.root
    if root is None:
        raise EDegenerateHierarchy(
            "Top-down reconciliation needs a single total node",
            context={"level_0_nodes": len(structure.nodes_at_level(0))},
        )
    return root.index


def _check_history(bottom_history: np.ndarray, n_bottom: int) -> np.ndarray:
    history = np.asarray(bottom_history, dtype=float)
    if history.ndim != 2 or history.shape[1] != n_bottom:
        raise EDegenerateHierarchy(
            f"Bottom history must be (periods x {n_bottom}), got {history.shape}"
        )
    if history.shape[0] == 0:
        raise EDegenerateHierarchy("Top-down proportions need at least one historical period")
    return history


def gsa_proportions(structure: HierarchyStructure, bottom_history: np.ndarray) -> np.ndarray:
    """Average historical proportions (Gross-Sohl method A).

    p_j = mean_t(y_j,t / y_t) where y_t is the total at period t.

    Args:
        structure: Hierarchy structure
        bottom_history: In-sample bottom series, (periods x n_bottom)

    Raises:
        EDegenerateHierarchy: If there is no single root or the total is
            zero at any historical period
    """
    _require_root(structure)
    history = _check_history(bottom_history, structure.bottom_count())
    totals = history.sum(axis=1)
    zero_periods = np.flatnonzero(totals == 0)
    if zero_periods.size:
        raise EDegenerateHierarchy(
            "Total volume is zero in the proportion history",
            context={"zero_periods": zero_periods.tolist()},
        )
    return (history / totals[:, None]).mean(axis=0)


def gsf_proportions(structure: HierarchyStructure, bottom_history: np.ndarray) -> np.ndarray:
    """Proportions of historical averages (Gross-Sohl method F).

    p_j = mean(y_j) / mean(y).
    """
    _require_root(structure)
    history = _check_history(bottom_history, structure.bottom_count())
    total_mean = history.sum(axis=1).mean()
    if total_mean == 0:
        raise EDegenerateHierarchy("Average total volume is zero in the proportion history")
    return history.mean(axis=0) / total_mean


def create_top_down_matrix(
    structure: HierarchyStructure,
    proportions: np.ndarray,
) -> np.ndarray:
    """Create projection matrix for top-down reconciliation.

    Only the root forecast is used; leaf j receives ``proportions[j]`` of it.
    """
    root_idx = _require_root(structure)
    prop_values = np.asarray(proportions, dtype=float)
    if prop_values.shape != (structure.bottom_count(),):
        raise EDegenerateHierarchy(
            f"Expected {structure.bottom_count()} proportions, got {prop_values.shape}"
        )
    p_matrix = np.zeros((structure.bottom_count(), structure.node_count()))
    p_matrix[:, root_idx] = prop_values
    return p_matrix


def _invert(gram: np.ndarray, allow_pinv: bool, method: str) -> np.ndarray:
    if np.linalg.matrix_rank(gram) < gram.shape[0]:
        if not allow_pinv:
            raise ESingularAggregation(
                f"{method} combination matrix is singular",
                context={"shape": gram.shape, "rank": int(np.linalg.matrix_rank(gram))},
            )
        logger.warning("%s combination matrix is singular; using pseudo-inverse", method)
        return np.linalg.pinv(gram)
    return np.linalg.inv(gram)


def create_ols_matrix(s_matrix: np.ndarray, allow_pinv: bool = True) -> np.ndarray:
    """Create projection matrix for OLS (optimal combination) reconciliation.

    P_ols = (S' S)^(-1) S'

    Args:
        s_matrix: Summation matrix (n_total x n_bottom)
        allow_pinv: Use the pseudo-inverse when S'S is singular

    Raises:
        ESingularAggregation: If S'S is singular and allow_pinv is False
    """
    s = np.asarray(s_matrix, dtype=float)
    return _invert(s.T @ s, allow_pinv, "OLS") @ s.T


def create_wls_matrix(
    s_matrix: np.ndarray,
    weights: np.ndarray,
    allow_pinv: bool = True,
) -> np.ndarray:
    """Create projection matrix for WLS reconciliation.

    P_wls = (S' W^(-1) S)^(-1) S' W^(-1)

    Args:
        s_matrix: Summation matrix (n_total x n_bottom)
        weights: Diagonal of W, one variance per node
        allow_pinv: Use the pseudo-inverse when S'W^(-1)S is singular
    """
    s = np.asarray(s_matrix, dtype=float)
    w = np.asarray(weights, dtype=float)
    if w.shape != (s.shape[0],) or not np.all(np.isfinite(w)):
        raise EMissingForecast(
            "WLS needs one finite residual variance per node",
            context={"expected": s.shape[0], "got": list(w.shape)},
        )
    w_inv = np.diag(1.0 / (w + 1e-10))  # Add small epsilon for stability
    return _invert(s.T @ w_inv @ s, allow_pinv, "WLS") @ s.T @ w_inv


def residual_variances(residuals: np.ndarray) -> np.ndarray:
    """Per-node mean squared in-sample residual, ignoring warm-up NaNs."""
    res = np.asarray(residuals, dtype=float)
    counts = np.sum(np.isfinite(res), axis=1)
    sums = np.nansum(res**2, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)


__all__ = [
    "create_bottom_up_matrix",
    "create_top_down_matrix",
    "create_ols_matrix",
    "create_wls_matrix",
    "gsa_proportions",
    "gsf_proportions",
    "residual_variances",
]
