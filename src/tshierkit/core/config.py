"""Pydantic specs for cross-validation and execution configuration.

The execution context (worker backend, pool size, deadline) is an explicit
value handed to the scheduler, never process-wide state.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ReconciliationName = Literal["bu", "tdgsa", "tdgsf", "comb", "wls"]
BaseMethodName = Literal["arima", "ets", "rw"]
Backend = Literal["sequential", "thread", "process"]


class BaseSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ExecutionConfig(BaseSpec):
    """How cross-validation units are dispatched.

    Args:
        backend: ``sequential`` runs units in the caller's thread,
            ``thread`` and ``process`` use a bounded worker pool
        max_workers: Pool size (None lets the executor decide)
        timeout: Deadline in seconds for the whole grid; pending units are
            cancelled and recorded as timed out
        allow_pinv: Fall back to a pseudo-inverse for singular combinations
    """

    backend: Backend = "thread"
    max_workers: int | None = Field(None, gt=0)
    timeout: float | None = Field(None, gt=0)
    allow_pinv: bool = True


class CVConfig(BaseSpec):
    """Rolling-origin cross-validation configuration.

    Args:
        frequency: Observations per seasonal cycle (4 = quarterly)
        start_period: First period of the data, e.g. ``"1998Q1"``
        horizon: Forecast length per fold
        reconciliation_methods: Reconciliation methods to compare
        base_methods: Base forecasting methods to compare
        fold_count: Number of rolling origins
        window_size: Test periods per fold
        levels_to_evaluate: Hierarchy depths to score (None = all)
        origin: Last training position of fold 0 (None = derived so the
            final fold's test window ends on the last observation)
        execution: Worker pool settings
    """

    frequency: int = Field(4, gt=0)
    start_period: str | None = None
    horizon: int = Field(4, gt=0)
    reconciliation_methods: list[ReconciliationName] = Field(
        default_factory=lambda: ["bu", "tdgsa", "comb"]
    )
    base_methods: list[BaseMethodName] = Field(
        default_factory=lambda: ["arima", "ets", "rw"]
    )
    fold_count: int = Field(1, gt=0)
    window_size: int = Field(4, gt=0)
    levels_to_evaluate: list[int] | None = None
    origin: int | None = Field(None, ge=0)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    @model_validator(mode="after")
    def _check_methods(self) -> CVConfig:
        if not self.reconciliation_methods:
            raise ValueError("reconciliation_methods must include at least one method.")
        if not self.base_methods:
            raise ValueError("base_methods must include at least one method.")
        if self.levels_to_evaluate is not None and any(
            level < 0 for level in self.levels_to_evaluate
        ):
            raise ValueError("levels_to_evaluate must hold non-negative depths.")
        return self

    def method_pairs(self) -> list[tuple[str, str]]:
        """Return every (reconciliation, base) combination in config order."""
        return [
            (recon, base)
            for recon in dict.fromkeys(self.reconciliation_methods)
            for base in dict.fromkeys(self.base_methods)
        ]

    @classmethod
    def from_file(cls, path: str | Path) -> CVConfig:
        """Load a config from a JSON file."""
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        return cls.model_validate(payload)

    @classmethod
    def quarterly(cls, fold_count: int, start_period: str | None = None) -> CVConfig:
        """Quarterly preset: one-year horizon and test window."""
        return cls(
            frequency=4,
            start_period=start_period,
            horizon=4,
            window_size=4,
            fold_count=fold_count,
        )


__all__ = ["BaseSpec", "CVConfig", "ExecutionConfig"]
