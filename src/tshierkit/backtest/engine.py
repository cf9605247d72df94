"""Rolling-origin cross-validation over (reconciliation, base) method pairs.

Every (fold, method pair) combination is an independent unit of work: it
slices its own training and test windows from the shared, read-only
hierarchy, forecasts, reconciles and scores, and returns its errors. The
scheduler fans the units out to a bounded worker pool and writes each
outcome into its own cell of the result table.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import (
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass
from typing import Any

from tshierkit.core.config import ExecutionConfig
from tshierkit.core.errors import (
    EContractViolation,
    EOutOfRange,
    ETimeout,
)
from tshierkit.hierarchy.evaluator import HierarchyEvaluator
from tshierkit.hierarchy.reconciliation import Reconciler
from tshierkit.hierarchy.structure import Hierarchy
from tshierkit.models.protocol import Forecaster, forecast_hierarchy

from .results import FoldOutcome, MethodPair, ResultTable

logger = logging.getLogger(__name__)

MIN_TRAIN_PERIODS = 2


@dataclass(frozen=True)
class FoldPlan:
    """Window positions of one fold (0-based, inclusive).

    Attributes:
        fold: 1-based fold index
        train_end: Last training position (training starts at 0)
        test_start: First test position
        test_end: Last test position, clipped to the data
    """

    fold: int
    train_end: int
    test_start: int
    test_end: int

    @property
    def test_length(self) -> int:
        return max(self.test_end - self.test_start + 1, 0)


def default_origin(n_periods: int, fold_count: int, window_size: int) -> int:
    """Origin placing the last fold's test window on the final observation."""
    return n_periods - 1 - fold_count - window_size


def plan_folds(
    n_periods: int,
    fold_count: int,
    window_size: int,
    origin: int | None = None,
    folds: Iterable[int] | None = None,
) -> list[FoldPlan]:
    """Compute the training/test windows of each fold.

    Fold ``i`` trains on positions ``0..origin+i`` and tests on the next
    ``window_size`` positions, clipped to the data. Folds whose test
    window is empty are dropped.

    Args:
        n_periods: Number of observed periods
        fold_count: Number of rolling origins
        window_size: Test periods per fold
        origin: Position before the first fold's last training period
        folds: Restrict to these 1-based fold indices

    Raises:
        EContractViolation: If counts are not positive or a fold index is
            outside ``1..fold_count``
        EOutOfRange: If the origin leaves too little training data
    """
    if fold_count <= 0 or window_size <= 0:
        raise EContractViolation(
            "fold_count and window_size must be positive",
            context={"fold_count": fold_count, "window_size": window_size},
        )
    if origin is None:
        origin = default_origin(n_periods, fold_count, window_size)
    if origin + 2 < MIN_TRAIN_PERIODS or origin + 1 >= n_periods:
        raise EOutOfRange(
            f"Origin {origin} leaves no room for a {MIN_TRAIN_PERIODS}-period training window "
            f"and a test window in {n_periods} periods",
            context={"origin": origin, "n_periods": n_periods, "fold_count": fold_count},
            fix_hint="Use fewer folds, a smaller window_size or more history",
        )

    indices = list(range(1, fold_count + 1)) if folds is None else sorted(set(folds))
    bad = [i for i in indices if not 1 <= i <= fold_count]
    if bad:
        raise EContractViolation(
            f"Fold indices {bad} outside 1..{fold_count}",
            context={"fold_count": fold_count},
        )

    plans: list[FoldPlan] = []
    for i in indices:
        train_end = origin + i
        test_start = train_end + 1
        if test_start > n_periods - 1:
            logger.info("Skipping fold %d: no test periods after position %d", i, train_end)
            continue
        plans.append(
            FoldPlan(
                fold=i,
                train_end=train_end,
                test_start=test_start,
                test_end=min(train_end + window_size, n_periods - 1),
            )
        )
    return plans


def run_unit(
    hierarchy: Hierarchy,
    pair: MethodPair,
    plan: FoldPlan,
    horizon: int,
    levels: list[int],
    forecaster: Forecaster | None = None,
    allow_pinv: bool = True,
) -> FoldOutcome:
    """Forecast, reconcile and score one (fold, method pair) unit.

    Only the steps covered by the test window are scored. A level/step
    whose actuals are all zero has no defined error and stays unset.
    Any other error propagates to the caller.
    """
    train = hierarchy.window(0, plan.train_end)
    test = hierarchy.window(plan.test_start, plan.test_end)

    reconciler = Reconciler(pair.reconciliation, hierarchy.structure, allow_pinv=allow_pinv)
    base = forecast_hierarchy(
        train,
        horizon,
        pair.base,
        nodes=reconciler.required_nodes(),
        forecaster=forecaster,
    )
    coherent = reconciler.reconcile(base, history=train)

    errors = HierarchyEvaluator(hierarchy.structure).accuracy_by_step(coherent, test, levels=levels)
    return FoldOutcome(pair=pair, fold=plan.fold, errors=errors, n_test=test.n_periods)


class CrossValidator:
    """Run rolling-origin cross-validation over a grid of method pairs.

    Example:
        >>> cv = CrossValidator(ExecutionConfig(backend="thread", max_workers=4))
        >>> table = cv.run(hierarchy, [("bu", "arima"), ("comb", "ets")],
        ...                fold_count=8, window_size=4, horizon=4)
        >>> table.mean_by_horizon()
    """

    def __init__(
        self,
        execution: ExecutionConfig | None = None,
        forecaster: Forecaster | None = None,
    ) -> None:
        self.execution = execution or ExecutionConfig()
        self.forecaster = forecaster

    def _executor(self) -> Executor:
        if self.execution.backend == "process":
            return ProcessPoolExecutor(max_workers=self.execution.max_workers)
        return ThreadPoolExecutor(max_workers=self.execution.max_workers)

    def _resolve_levels(self, hierarchy: Hierarchy, levels: Iterable[int] | None) -> list[int]:
        num_levels = hierarchy.structure.num_levels
        if levels is None:
            return list(range(num_levels))
        out = list(dict.fromkeys(int(level) for level in levels))
        unknown = [level for level in out if not 0 <= level < num_levels]
        if unknown:
            raise EContractViolation(
                f"Levels {unknown} not in hierarchy",
                context={"num_levels": num_levels},
            )
        return out

    def run(
        self,
        hierarchy: Hierarchy,
        pairs: Iterable[MethodPair | tuple[Any, Any] | str],
        fold_count: int,
        window_size: int,
        horizon: int,
        levels: Iterable[int] | None = None,
        origin: int | None = None,
        folds: Iterable[int] | None = None,
    ) -> ResultTable:
        """Evaluate every method pair on every fold.

        Args:
            hierarchy: Full observed hierarchy
            pairs: (reconciliation, base) combinations
            fold_count: Number of rolling origins
            window_size: Test periods per fold
            horizon: Forecast length per fold
            levels: Hierarchy depths to score (default: all)
            origin: Position before fold 1's last training period
            folds: Run only these 1-based folds

        Returns:
            Sealed ResultTable; failed units appear in ``failures``

        Raises:
            EContractViolation: For invalid arguments
            EOutOfRange: If the folds do not fit in the data
        """
        if horizon <= 0:
            raise EContractViolation(f"horizon must be positive, got {horizon}")
        method_pairs = list(dict.fromkeys(MethodPair.parse(p) for p in pairs))
        if not method_pairs:
            raise EContractViolation("At least one method pair is required")
        levels = self._resolve_levels(hierarchy, levels)
        plans = plan_folds(hierarchy.n_periods, fold_count, window_size, origin=origin, folds=folds)

        table = ResultTable(method_pairs, [p.fold for p in plans], horizon, levels)
        units = [(pair, plan) for plan in plans for pair in method_pairs]
        logger.info(
            "Cross-validating %d pairs x %d folds (%d units, backend=%s)",
            len(method_pairs),
            len(plans),
            len(units),
            self.execution.backend,
        )

        start = time.monotonic()
        if self.execution.backend == "sequential":
            self._run_sequential(hierarchy, units, horizon, levels, table)
        else:
            self._run_pool(hierarchy, units, horizon, levels, table)
        table.seal()

        logger.info(
            "Cross-validation finished in %.2fs: %d values, %d failed cells",
            time.monotonic() - start,
            len(table),
            len(table.failures),
        )
        return table

    def _submit_args(
        self,
        hierarchy: Hierarchy,
        pair: MethodPair,
        plan: FoldPlan,
        horizon: int,
        levels: list[int],
    ) -> tuple[Any, ...]:
        return (hierarchy, pair, plan, horizon, levels, self.forecaster, self.execution.allow_pinv)

    def _run_sequential(
        self,
        hierarchy: Hierarchy,
        units: list[tuple[MethodPair, FoldPlan]],
        horizon: int,
        levels: list[int],
        table: ResultTable,
    ) -> None:
        timeout = self.execution.timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        for pair, plan in units:
            if deadline is not None and time.monotonic() > deadline:
                _record_timeout(table, pair, plan, timeout)
                continue
            args = self._submit_args(hierarchy, pair, plan, horizon, levels)
            _collect(table, pair, plan, lambda args=args: run_unit(*args))

    def _run_pool(
        self,
        hierarchy: Hierarchy,
        units: list[tuple[MethodPair, FoldPlan]],
        horizon: int,
        levels: list[int],
        table: ResultTable,
    ) -> None:
        executor = self._executor()
        futures: dict[Future, tuple[MethodPair, FoldPlan]] = {}
        for pair, plan in units:
            args = self._submit_args(hierarchy, pair, plan, horizon, levels)
            futures[executor.submit(run_unit, *args)] = (pair, plan)
        timed_out = False
        try:
            for future in as_completed(futures, timeout=self.execution.timeout):
                pair, plan = futures[future]
                _collect(table, pair, plan, future.result)
        except TimeoutError:
            timed_out = True
            for future, (pair, plan) in futures.items():
                if table.is_written(pair, plan.fold):
                    continue
                if future.done():
                    _collect(table, pair, plan, future.result)
                else:
                    future.cancel()
                    _record_timeout(table, pair, plan, self.execution.timeout)
        finally:
            # Units already running cannot be interrupted; do not wait for them
            executor.shutdown(wait=not timed_out, cancel_futures=True)


def _collect(
    table: ResultTable,
    pair: MethodPair,
    plan: FoldPlan,
    result: Callable[[], FoldOutcome],
) -> None:
    try:
        outcome = result()
    except Exception as exc:
        logger.warning("%s fold %d failed: %s", pair.name, plan.fold, exc)
        table.record_failure(pair, plan.fold, exc)
        return
    table.record(outcome)


def _record_timeout(
    table: ResultTable,
    pair: MethodPair,
    plan: FoldPlan,
    timeout: float | None,
) -> None:
    error = ETimeout(
        f"{pair.name} fold {plan.fold} did not finish within {timeout}s",
        context={"pair": pair.name, "fold": plan.fold, "timeout": timeout},
    )
    logger.warning("%s", error.message)
    table.record_failure(pair, plan.fold, error)


def run_cv(
    hierarchy: Hierarchy,
    method_pairs: Iterable[MethodPair | tuple[Any, Any] | str],
    fold_count: int,
    window_size: int,
    horizon: int,
    levels: Iterable[int] | None = None,
    origin: int | None = None,
    execution: ExecutionConfig | None = None,
    forecaster: Forecaster | None = None,
) -> ResultTable:
    """Rolling-origin cross-validation of each method pair on ``hierarchy``.

    See ``CrossValidator.run`` for the fold layout and failure handling.
    """
    validator = CrossValidator(execution=execution, forecaster=forecaster)
    return validator.run(
        hierarchy,
        method_pairs,
        fold_count=fold_count,
        window_size=window_size,
        horizon=horizon,
        levels=levels,
        origin=origin,
    )


__all__ = [
    "CrossValidator",
    "FoldPlan",
    "default_origin",
    "plan_folds",
    "run_cv",
    "run_unit",
]
