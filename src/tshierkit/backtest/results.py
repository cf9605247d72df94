"""Cross-validation result structures.

The result table is append-only while cross-validation runs: each
(reconciliation, base, fold) cell is written exactly once, either with its
per-level, per-step errors or as a failure.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import numpy as np
import pandas as pd

from tshierkit.core.errors import EContractViolation, TSHierKitError

RESULT_COLUMNS = ["reconciliation", "base", "pair", "fold", "level", "step", "mape"]


class ResultTableSealed(EContractViolation):
    """Write to a sealed result table or to an already written cell."""

    error_code = "E_RESULT_TABLE_SEALED"
    fix_hint = "Result tables are append-only; each (pair, fold) cell is written once"


class MethodPair(NamedTuple):
    """A (reconciliation method, base method) combination."""

    reconciliation: str
    base: str

    @property
    def name(self) -> str:
        return f"{self.reconciliation}-{self.base}"

    @classmethod
    def parse(cls, value: MethodPair | tuple[Any, Any] | str) -> MethodPair:
        """Accept a MethodPair, a 2-tuple of names/enums or ``"bu-arima"``."""
        if isinstance(value, str):
            recon, sep, base = value.partition("-")
            if not sep:
                raise EContractViolation(f"Method pair '{value}' must look like 'bu-arima'")
            return cls(recon, base)
        recon, base = value
        return cls(
            str(getattr(recon, "value", recon)),
            str(getattr(base, "value", base)),
        )


def method_pairs(
    reconciliation_methods: Iterable[Any],
    base_methods: Iterable[Any],
) -> list[MethodPair]:
    """Cartesian grid of reconciliation x base methods, order preserved."""
    bases = list(base_methods)
    return [MethodPair.parse((recon, base)) for recon in reconciliation_methods for base in bases]


@dataclass(frozen=True)
class CellFailure:
    """A cross-validation cell that produced no errors.

    Attributes:
        reconciliation: Reconciliation method of the cell
        base: Base method of the cell
        fold: Fold index
        error_code: ``error_code`` of the raised error
        message: Error message
    """

    reconciliation: str
    base: str
    fold: int
    error_code: str
    message: str

    @property
    def pair(self) -> MethodPair:
        return MethodPair(self.reconciliation, self.base)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "reconciliation": self.reconciliation,
            "base": self.base,
            "fold": self.fold,
            "error_code": self.error_code,
            "message": self.message,
        }


@dataclass(frozen=True)
class FoldOutcome:
    """Errors produced by one (pair, fold) unit.

    Attributes:
        pair: Method pair evaluated
        fold: Fold index
        errors: level -> 1-based step -> MAPE; undefined entries are absent
        n_test: Periods available in the fold's test window
    """

    pair: MethodPair
    fold: int
    errors: dict[int, dict[int, float]] = field(default_factory=dict)
    n_test: int = 0


class ResultTable:
    """Percentage errors keyed by (method pair, fold, level, horizon step)."""

    def __init__(
        self,
        pairs: Iterable[MethodPair],
        folds: Iterable[int],
        horizon: int,
        levels: Iterable[int],
    ) -> None:
        self.pairs = [MethodPair.parse(p) for p in pairs]
        self.folds = list(folds)
        self.horizon = horizon
        self.levels = list(levels)
        self._cells: dict[tuple[str, str, int], dict[int, dict[int, float]]] = {}
        self._failures: dict[tuple[str, str, int], CellFailure] = {}
        self._sealed = False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_writable(self, key: tuple[str, str, int]) -> None:
        if self._sealed:
            raise ResultTableSealed("Result table is sealed", context={"cell": key})
        if key in self._cells or key in self._failures:
            raise ResultTableSealed("Cell already written", context={"cell": key})

    def record(self, outcome: FoldOutcome) -> None:
        """Write the errors of one (pair, fold) cell."""
        key = (outcome.pair.reconciliation, outcome.pair.base, outcome.fold)
        self._check_writable(key)
        self._cells[key] = {
            level: {step: float(value) for step, value in steps.items()}
            for level, steps in outcome.errors.items()
        }

    def record_failure(self, pair: MethodPair, fold: int, error: BaseException) -> CellFailure:
        """Mark a (pair, fold) cell as failed."""
        key = (pair.reconciliation, pair.base, fold)
        self._check_writable(key)
        failure = CellFailure(
            reconciliation=pair.reconciliation,
            base=pair.base,
            fold=fold,
            error_code=getattr(error, "error_code", type(error).__name__),
            message=error.message if isinstance(error, TSHierKitError) else str(error),
        )
        self._failures[key] = failure
        return failure

    def seal(self) -> None:
        """Make the table read-only."""
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return sum(len(steps) for cell in self._cells.values() for steps in cell.values())

    @property
    def failures(self) -> list[CellFailure]:
        return sorted(self._failures.values(), key=lambda f: (f.reconciliation, f.base, f.fold))

    def is_written(self, pair: MethodPair | str, fold: int) -> bool:
        p = MethodPair.parse(pair)
        key = (p.reconciliation, p.base, fold)
        return key in self._cells or key in self._failures

    def is_failed(self, pair: MethodPair | str, fold: int) -> bool:
        p = MethodPair.parse(pair)
        return (p.reconciliation, p.base, fold) in self._failures

    def cell(self, pair: MethodPair | str, fold: int) -> dict[int, dict[int, float]] | None:
        """Errors of one cell (level -> step -> MAPE), None if unset or failed."""
        p = MethodPair.parse(pair)
        cell = self._cells.get((p.reconciliation, p.base, fold))
        return None if cell is None else {lvl: dict(steps) for lvl, steps in cell.items()}

    def get(
        self,
        pair: MethodPair | str,
        fold: int,
        step: int,
        level: int | None = None,
    ) -> float | None:
        """Error for one step of a cell; None when unset.

        Without ``level`` the value is the mean over the levels that have
        that step.
        """
        cell = self.cell(pair, fold)
        if cell is None:
            return None
        if level is not None:
            return cell.get(level, {}).get(step)
        values = [steps[step] for steps in cell.values() if step in steps]
        return float(np.mean(values)) if values else None

    def to_frame(self) -> pd.DataFrame:
        """Long-format table with columns ``RESULT_COLUMNS``."""
        rows = [
            {
                "reconciliation": recon,
                "base": base,
                "pair": MethodPair(recon, base).name,
                "fold": fold,
                "level": level,
                "step": step,
                "mape": value,
            }
            for (recon, base, fold), cell in self._cells.items()
            for level, steps in cell.items()
            for step, value in steps.items()
        ]
        df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
        return df.sort_values(["reconciliation", "base", "fold", "level", "step"]).reset_index(drop=True)

    def mean_by_horizon(self, level: int | None = None) -> pd.DataFrame:
        """Average error per method pair (rows) and horizon step (columns).

        Args:
            level: Restrict to one hierarchy level (default: average all)
        """
        df = self.to_frame()
        if level is not None:
            df = df[df["level"] == level]
        if df.empty:
            return pd.DataFrame(index=pd.Index([], name="pair"), columns=pd.Index([], name="step"))
        table = df.pivot_table(index="pair", columns="step", values="mape", aggfunc="mean")
        order = [p.name for p in self.pairs if p.name in table.index]
        return table.reindex(order)

    def ranking(self, level: int | None = None) -> pd.Series:
        """Method pairs ordered by mean error across steps (best first)."""
        means = self.mean_by_horizon(level)
        if means.empty:
            return pd.Series(dtype=float, name="mape")
        return means.mean(axis=1).sort_values().rename("mape")

    def to_dict(self) -> dict[str, Any]:
        """Convert for serialization."""
        return {
            "pairs": [p.name for p in self.pairs],
            "folds": self.folds,
            "horizon": self.horizon,
            "levels": self.levels,
            "results": self.to_frame().to_dict(orient="records"),
            "failures": [f.to_dict() for f in self.failures],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            "Hierarchical Cross-Validation Results",
            f"Pairs: {', '.join(p.name for p in self.pairs)}",
            f"Folds: {len(self.folds)}  Horizon: {self.horizon}  Levels: {self.levels}",
            "=" * 50,
        ]
        means = self.mean_by_horizon()
        if not means.empty:
            lines.append("\nMean MAPE by horizon step:")
            lines.append(means.to_string(float_format=lambda v: f"{v:.3f}"))
        if self._failures:
            lines.append(f"\nFailed cells: {len(self._failures)}")
            for failure in self.failures:
                lines.append(
                    f"  {failure.pair.name} fold {failure.fold}: "
                    f"[{failure.error_code}] {failure.message}"
                )
        return "\n".join(lines)


__all__ = [
    "CellFailure",
    "FoldOutcome",
    "MethodPair",
    "RESULT_COLUMNS",
    "ResultTable",
    "ResultTableSealed",
    "method_pairs",
]
