"""Hierarchical forecast reconciliation.

Turns independently produced per-node base forecasts into a coherent
forecast set: ``ŷ_reconciled = S @ P @ ŷ_base`` with P chosen by method.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from tshierkit.core.errors import EMissingForecast, ESingularAggregation, EUnsupportedMethod

from .aggregation import (
    create_bottom_up_matrix,
    create_ols_matrix,
    create_top_down_matrix,
    create_wls_matrix,
    gsa_proportions,
    gsf_proportions,
    residual_variances,
)
from .evaluator import coherence_violations
from .structure import Hierarchy, HierarchyStructure, NodeRef

if TYPE_CHECKING:
    from tshierkit.models.protocol import BaseForecastSet

logger = logging.getLogger(__name__)


class ReconciliationMethod(Enum):
    """Available reconciliation methods."""

    BOTTOM_UP = "bu"
    TOP_DOWN_GSA = "tdgsa"
    TOP_DOWN_GSF = "tdgsf"
    OLS = "comb"
    WLS = "wls"

    @classmethod
    def from_string(cls, name: str | ReconciliationMethod) -> ReconciliationMethod:
        """Resolve a method name or alias.

        Raises:
            EUnsupportedMethod: If the name is not a known method
        """
        if isinstance(name, cls):
            return name
        key = str(name).lower().replace("-", "_")
        method = _ALIASES.get(key)
        if method is None:
            raise EUnsupportedMethod(
                f"Unknown reconciliation method: {name}",
                context={"supported": [m.value for m in cls]},
            )
        return method

    @property
    def is_top_down(self) -> bool:
        return self in (ReconciliationMethod.TOP_DOWN_GSA, ReconciliationMethod.TOP_DOWN_GSF)


_ALIASES: dict[str, ReconciliationMethod] = {
    **{m.value: m for m in ReconciliationMethod},
    "bottom_up": ReconciliationMethod.BOTTOM_UP,
    "top_down": ReconciliationMethod.TOP_DOWN_GSA,
    "average_historical_proportions": ReconciliationMethod.TOP_DOWN_GSA,
    "proportion_averages": ReconciliationMethod.TOP_DOWN_GSF,
    "ols": ReconciliationMethod.OLS,
    "optimal": ReconciliationMethod.OLS,
    "wls_var": ReconciliationMethod.WLS,
}


@dataclass(frozen=True, eq=False)
class CoherentForecast:
    """Reconciled forecasts for every node of a hierarchy.

    Attributes:
        values: (n_total x h) forecasts in arena order, read-only
        structure: Hierarchy structure the rows refer to
        method: Reconciliation method that produced the values
        periods: Index of the forecast periods
    """

    values: np.ndarray
    structure: HierarchyStructure
    method: ReconciliationMethod
    periods: pd.Index | None = None

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=float)
        if values.ndim != 2 or values.shape[0] != self.structure.node_count():
            raise EMissingForecast(
                f"Coherent forecast must have {self.structure.node_count()} rows, got {values.shape}"
            )
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    @property
    def horizon(self) -> int:
        return self.values.shape[1]

    def node(self, ref: NodeRef) -> np.ndarray:
        return self.values[self.structure.index_of(ref)]

    def to_frame(self) -> pd.DataFrame:
        """Forecasts as periods x node-label DataFrame."""
        index = self.periods if self.periods is not None else pd.RangeIndex(1, self.horizon + 1, name="step")
        return pd.DataFrame(self.values.T, index=index, columns=self.structure.labels)

    def level(self, level: int) -> pd.DataFrame:
        """Forecasts of the nodes at one depth."""
        labels = [self.structure.nodes[i].label for i in self.structure.nodes_at_level(level)]
        return self.to_frame()[labels]

    def is_coherent(self, rtol: float = 1e-6) -> bool:
        return not coherence_violations(self.structure, self.values, rtol=rtol)


class Reconciler:
    """Hierarchical forecast reconciliation engine.

    Example:
        >>> reconciler = Reconciler(ReconciliationMethod.OLS, structure)
        >>> coherent = reconciler.reconcile(base_forecasts)
    """

    def __init__(
        self,
        method: ReconciliationMethod | str,
        structure: HierarchyStructure,
        allow_pinv: bool = True,
    ) -> None:
        self.method = ReconciliationMethod.from_string(method)
        self.structure = structure
        self.allow_pinv = allow_pinv

    def required_nodes(self) -> list[int]:
        """Arena indices whose base forecasts this method reads."""
        if self.method == ReconciliationMethod.BOTTOM_UP:
            return self.structure.bottom_indices
        if self.method.is_top_down:
            root = self.structure.root
            return [root.index] if root is not None else []
        return list(range(self.structure.node_count()))

    def proportions(self, history: Any) -> np.ndarray:
        """Leaf shares of the total for top-down methods.

        Args:
            history: In-sample bottom series (periods x n_bottom) or Hierarchy
        """
        bottom = _bottom_history(history)
        if self.method == ReconciliationMethod.TOP_DOWN_GSF:
            return gsf_proportions(self.structure, bottom)
        return gsa_proportions(self.structure, bottom)

    def projection_matrix(
        self,
        history: Any = None,
        residuals: np.ndarray | None = None,
    ) -> np.ndarray:
        """Build P for the configured method.

        Raises:
            EMissingForecast: If a top-down method has no history or WLS has
                no residuals
        """
        if self.method == ReconciliationMethod.BOTTOM_UP:
            return create_bottom_up_matrix(self.structure)
        if self.method.is_top_down:
            if history is None:
                raise EMissingForecast(f"{self.method.value} needs in-sample history for proportions")
            return create_top_down_matrix(self.structure, self.proportions(history))
        if self.method == ReconciliationMethod.OLS:
            return create_ols_matrix(self.structure.s_matrix, allow_pinv=self.allow_pinv)
        if residuals is None:
            raise EMissingForecast("wls needs in-sample residuals for every node")
        return create_wls_matrix(
            self.structure.s_matrix,
            residual_variances(residuals),
            allow_pinv=self.allow_pinv,
        )

    def reconcile(
        self,
        base_forecasts: np.ndarray | BaseForecastSet,
        history: Any = None,
        residuals: np.ndarray | None = None,
        periods: pd.Index | None = None,
    ) -> CoherentForecast:
        """Reconcile base forecasts to be hierarchy-consistent.

        Args:
            base_forecasts: (n_total x h) or (n_total,) array in arena order,
                or a BaseForecastSet; entries of nodes the method does not
                read may be NaN
            history: Bottom history for top-down proportions
            residuals: (n_total x T) in-sample residuals for WLS
            periods: Index of the forecast periods

        Raises:
            EMissingForecast: If a required base forecast is missing
            ESingularAggregation: If the combination cannot be solved
            EDegenerateHierarchy: If top-down proportions are undefined
        """
        if hasattr(base_forecasts, "point_matrix"):
            if residuals is None and self.method == ReconciliationMethod.WLS:
                residuals = base_forecasts.residual_matrix()
            periods = periods if periods is not None else base_forecasts.periods
            y_hat = base_forecasts.point_matrix()
        else:
            y_hat = np.asarray(base_forecasts, dtype=float)
        if y_hat.ndim == 1:
            y_hat = y_hat[:, None]
        if y_hat.shape[0] != self.structure.node_count():
            raise EMissingForecast(
                f"Expected {self.structure.node_count()} rows of base forecasts, got {y_hat.shape[0]}"
            )

        p_matrix = self.projection_matrix(history=history, residuals=residuals)
        used = np.flatnonzero(np.any(p_matrix != 0, axis=0))
        missing = [int(i) for i in used if not np.all(np.isfinite(y_hat[i]))]
        if missing:
            raise EMissingForecast(
                f"{self.method.value} is missing base forecasts",
                context={"nodes": [self.structure.nodes[i].label for i in missing]},
            )

        reconciled = self.structure.s_matrix @ (p_matrix[:, used] @ y_hat[used])
        if not np.all(np.isfinite(reconciled)):
            raise ESingularAggregation(
                f"{self.method.value} produced non-finite forecasts",
                context={"method": self.method.value},
            )
        logger.debug("Reconciled %d nodes x %d steps with %s", *reconciled.shape, self.method.value)
        return CoherentForecast(
            values=reconciled,
            structure=self.structure,
            method=self.method,
            periods=periods,
        )


def _bottom_history(history: Any) -> np.ndarray:
    if isinstance(history, Hierarchy):
        return history.bottom.to_numpy()
    if isinstance(history, pd.DataFrame):
        return history.to_numpy(dtype=float)
    return np.asarray(history, dtype=float)


def reconcile(
    hierarchy: Hierarchy,
    base_forecasts: np.ndarray | BaseForecastSet,
    method: ReconciliationMethod | str,
    allow_pinv: bool = True,
) -> CoherentForecast:
    """Reconcile base forecasts made on ``hierarchy``'s training data.

    Top-down proportions are computed once from the hierarchy's history.
    """
    reconciler = Reconciler(method, hierarchy.structure, allow_pinv=allow_pinv)
    return reconciler.reconcile(base_forecasts, history=hierarchy)


__all__ = ["CoherentForecast", "ReconciliationMethod", "Reconciler", "reconcile"]
