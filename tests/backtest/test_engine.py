"""Tests for backtest/engine.py."""

from __future__ import annotations

import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

import numpy as np
import pytest

from tshierkit.backtest import (
    CrossValidator,
    FoldPlan,
    MethodPair,
    default_origin,
    plan_folds,
    run_cv,
    run_unit,
)
from tshierkit.core.config import ExecutionConfig
from tshierkit.core.errors import EContractViolation, EModelFailed, EOutOfRange
from tshierkit.hierarchy import Hierarchy
from tshierkit.models import BaseMethod

SEQUENTIAL = ExecutionConfig(backend="sequential")


def _failing_ets(last_value):
    def forecaster(series, horizon, method, season_length):
        if method == BaseMethod.ETS:
            raise EModelFailed("ETS did not converge", context={"series": series.name})
        return last_value(series, horizon, method, season_length)

    return forecaster


def _sleepy(last_value, seconds):
    def forecaster(series, horizon, method, season_length):
        time.sleep(seconds)
        return last_value(series, horizon, method, season_length)

    return forecaster


class TestPlanFolds:
    """Tests for fold window layout."""

    def test_default_origin(self) -> None:
        assert default_origin(12, fold_count=2, window_size=4) == 5

    def test_default_layout(self) -> None:
        """The last fold's test window ends on the last observation."""
        plans = plan_folds(12, fold_count=2, window_size=4)

        assert plans == [
            FoldPlan(fold=1, train_end=6, test_start=7, test_end=10),
            FoldPlan(fold=2, train_end=7, test_start=8, test_end=11),
        ]

    def test_tail_folds_are_clipped(self) -> None:
        plans = plan_folds(12, fold_count=3, window_size=4, origin=5)

        assert [p.test_length for p in plans] == [4, 4, 3]
        assert plans[-1].test_end == 11

    def test_fold_without_test_period_skipped(self) -> None:
        plans = plan_folds(12, fold_count=3, window_size=4, origin=8)

        assert [p.fold for p in plans] == [1, 2]

    def test_subset_of_folds(self) -> None:
        plans = plan_folds(12, fold_count=3, window_size=2, folds=[2])

        assert [p.fold for p in plans] == [2]
        assert plans[0] == plan_folds(12, fold_count=3, window_size=2)[1]

    def test_fold_index_out_of_range(self) -> None:
        with pytest.raises(EContractViolation):
            plan_folds(12, fold_count=2, window_size=2, folds=[3])

    def test_too_little_history(self) -> None:
        with pytest.raises(EOutOfRange):
            plan_folds(6, fold_count=4, window_size=4)

    def test_origin_beyond_data(self) -> None:
        with pytest.raises(EOutOfRange):
            plan_folds(12, fold_count=1, window_size=1, origin=11)

    def test_non_positive_counts(self) -> None:
        with pytest.raises(EContractViolation):
            plan_folds(12, fold_count=0, window_size=4)


class TestRunUnit:
    """Tests for a single (fold, method pair) unit."""

    def test_constant_data_scores_zero(self, constant_hierarchy, last_value) -> None:
        plan = plan_folds(12, fold_count=1, window_size=4)[0]

        outcome = run_unit(
            constant_hierarchy, MethodPair("bu", "rw"), plan, 4, [0, 1, 2], forecaster=last_value
        )

        assert outcome.fold == 1
        assert outcome.n_test == 4
        assert outcome.errors == {
            level: {step: 0.0 for step in range(1, 5)} for level in (0, 1, 2)
        }

    def test_all_zero_actuals_left_unset(self, grouping, last_value) -> None:
        """Undefined errors are absent rather than recorded as zero."""
        bottom = np.vstack([np.full((8, 8), 10.0), np.zeros((4, 8))])
        hierarchy = Hierarchy.build(bottom, grouping)
        plan = FoldPlan(fold=1, train_end=7, test_start=8, test_end=11)

        outcome = run_unit(hierarchy, MethodPair("bu", "rw"), plan, 4, [0], forecaster=last_value)

        assert outcome.errors == {}

    def test_errors_propagate(self, constant_hierarchy, last_value) -> None:
        plan = plan_folds(12, fold_count=1, window_size=4)[0]

        with pytest.raises(EModelFailed):
            run_unit(
                constant_hierarchy,
                MethodPair("bu", "ets"),
                plan,
                4,
                [0],
                forecaster=_failing_ets(last_value),
            )


class TestCrossValidator:
    """Tests for the cross-validation scheduler."""

    def test_executor_backends(self) -> None:
        thread = CrossValidator(ExecutionConfig(backend="thread", max_workers=2))._executor()
        process = CrossValidator(ExecutionConfig(backend="process", max_workers=1))._executor()
        try:
            assert isinstance(thread, ThreadPoolExecutor)
            assert isinstance(process, ProcessPoolExecutor)
        finally:
            thread.shutdown()
            process.shutdown()

    def test_scenario_constant_data(self, constant_hierarchy, last_value) -> None:
        table = CrossValidator(SEQUENTIAL, forecaster=last_value).run(
            constant_hierarchy,
            [("bu", "rw"), ("tdgsa", "rw"), ("comb", "rw")],
            fold_count=2,
            window_size=4,
            horizon=4,
        )

        frame = table.to_frame()
        assert table.sealed
        assert table.failures == []
        assert len(frame) == 3 * 2 * 3 * 4
        np.testing.assert_allclose(frame["mape"], 0.0, atol=1e-9)

    def test_tail_folds_record_available_steps(self, quarterly_hierarchy, last_value) -> None:
        table = CrossValidator(SEQUENTIAL, forecaster=last_value).run(
            quarterly_hierarchy,
            [("bu", "rw")],
            fold_count=3,
            window_size=4,
            horizon=4,
            origin=17,
        )

        assert table.get("bu-rw", 2, 4) is not None
        assert table.get("bu-rw", 3, 3) is not None
        assert table.get("bu-rw", 3, 4) is None

    def test_fold_independence(self, quarterly_hierarchy, mean_value) -> None:
        """Running one fold alone gives the same errors as the full grid."""
        cv = CrossValidator(SEQUENTIAL, forecaster=mean_value)
        pairs = [("bu", "rw"), ("tdgsa", "rw"), ("comb", "rw")]

        full = cv.run(quarterly_hierarchy, pairs, fold_count=4, window_size=4, horizon=4)
        alone = cv.run(quarterly_hierarchy, pairs, fold_count=4, window_size=4, horizon=4, folds=[3])

        assert alone.folds == [3]
        for pair in pairs:
            assert alone.cell(MethodPair.parse(pair), 3) == full.cell(MethodPair.parse(pair), 3)

    def test_thread_backend_matches_sequential(self, quarterly_hierarchy, mean_value) -> None:
        pairs = [("bu", "rw"), ("comb", "rw"), ("wls", "rw")]
        kwargs = {"fold_count": 3, "window_size": 4, "horizon": 4}

        sequential = CrossValidator(SEQUENTIAL, forecaster=mean_value).run(
            quarterly_hierarchy, pairs, **kwargs
        )
        threaded = CrossValidator(
            ExecutionConfig(backend="thread", max_workers=3), forecaster=mean_value
        ).run(quarterly_hierarchy, pairs, **kwargs)

        assert threaded.to_frame().equals(sequential.to_frame())

    def test_failure_isolated_to_cell(self, quarterly_hierarchy, last_value) -> None:
        table = CrossValidator(
            ExecutionConfig(backend="thread", max_workers=2),
            forecaster=_failing_ets(last_value),
        ).run(
            quarterly_hierarchy,
            [("bu", "ets"), ("bu", "rw")],
            fold_count=2,
            window_size=4,
            horizon=4,
        )

        assert {(f.pair.name, f.fold) for f in table.failures} == {("bu-ets", 1), ("bu-ets", 2)}
        assert all(f.error_code == "E_MODEL_FAILED" for f in table.failures)
        assert table.cell("bu-rw", 1)
        assert table.cell("bu-rw", 2)

    def test_degenerate_history_fails_only_top_down(self, grouping, last_value) -> None:
        bottom = np.full((12, 8), 10.0)
        bottom[0] = 0.0
        hierarchy = Hierarchy.build(bottom, grouping)

        table = CrossValidator(SEQUENTIAL, forecaster=last_value).run(
            hierarchy, [("tdgsa", "rw"), ("bu", "rw")], fold_count=1, window_size=4, horizon=4
        )

        assert [(f.pair.name, f.error_code) for f in table.failures] == [
            ("tdgsa-rw", "E_DEGENERATE_HIERARCHY")
        ]
        assert table.cell("bu-rw", 1)

    def test_unsupported_method_fails_cells(self, constant_hierarchy, last_value) -> None:
        table = CrossValidator(SEQUENTIAL, forecaster=last_value).run(
            constant_hierarchy, [("bu", "prophet")], fold_count=1, window_size=4, horizon=4
        )

        assert table.failures[0].error_code == "E_UNSUPPORTED_METHOD"

    def test_thread_timeout(self, constant_hierarchy, last_value) -> None:
        """Units still running at the deadline are recorded as timed out."""
        table = CrossValidator(
            ExecutionConfig(backend="thread", max_workers=2, timeout=0.2),
            forecaster=_sleepy(last_value, 1.0),
        ).run(constant_hierarchy, [("tdgsa", "rw"), ("tdgsf", "rw")], 2, 4, 4)

        assert len(table) == 0
        assert len(table.failures) == 4
        assert {f.error_code for f in table.failures} == {"E_TIMEOUT"}
        assert table.sealed

    def test_sequential_timeout(self, constant_hierarchy, last_value) -> None:
        table = CrossValidator(
            ExecutionConfig(backend="sequential", timeout=0.05),
            forecaster=_sleepy(last_value, 0.1),
        ).run(constant_hierarchy, [("tdgsa", "rw"), ("tdgsf", "rw")], 1, 4, 4)

        assert table.cell("tdgsa-rw", 1)
        assert [f.error_code for f in table.failures] == ["E_TIMEOUT"]

    def test_unknown_level(self, constant_hierarchy, last_value) -> None:
        with pytest.raises(EContractViolation):
            CrossValidator(SEQUENTIAL, forecaster=last_value).run(
                constant_hierarchy, [("bu", "rw")], 1, 4, 4, levels=[7]
            )

    def test_no_pairs(self, constant_hierarchy) -> None:
        with pytest.raises(EContractViolation):
            CrossValidator(SEQUENTIAL).run(constant_hierarchy, [], 1, 4, 4)

    def test_levels_subset(self, constant_hierarchy, last_value) -> None:
        table = CrossValidator(SEQUENTIAL, forecaster=last_value).run(
            constant_hierarchy, ["bu-rw"], 1, 4, 4, levels=[1]
        )

        assert set(table.to_frame()["level"]) == {1}


def test_run_cv_function(constant_hierarchy, last_value) -> None:
    table = run_cv(
        constant_hierarchy,
        [MethodPair("bu", "rw")],
        fold_count=2,
        window_size=4,
        horizon=4,
        execution=SEQUENTIAL,
        forecaster=last_value,
    )

    assert table.folds == [1, 2]
    assert table.get("bu-rw", 1, 1, level=0) == 0.0


def test_process_backend_with_statsforecast(constant_hierarchy) -> None:
    """Units cross the process boundary with the default forecaster."""
    table = run_cv(
        constant_hierarchy,
        [("bu", "rw")],
        fold_count=1,
        window_size=4,
        horizon=4,
        execution=ExecutionConfig(backend="process", max_workers=1),
    )

    assert table.failures == []
    assert table.get("bu-rw", 1, 1, level=0) == pytest.approx(0.0)
