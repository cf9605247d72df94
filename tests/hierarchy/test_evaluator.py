"""Tests for hierarchy evaluation metrics and coherence checks."""

from __future__ import annotations

import numpy as np
import pytest

from tshierkit.core.errors import EContractViolation, EDivisionByZero
from tshierkit.hierarchy import (
    HierarchyEvaluator,
    HierarchyStructure,
    Reconciler,
    coherence_violations,
    mape,
)


@pytest.fixture
def structure() -> HierarchyStructure:
    """Total -> A, B."""
    return HierarchyStructure.from_grouping([2])


class TestMape:
    """Test mean absolute percentage error."""

    def test_basic(self) -> None:
        assert mape(np.array([100.0, 200.0]), np.array([110.0, 180.0])) == pytest.approx(10.0)

    def test_perfect_forecast(self) -> None:
        assert mape(np.array([5.0, 5.0]), np.array([5.0, 5.0])) == 0.0

    def test_zero_actuals_excluded(self) -> None:
        """Zero actuals are dropped from the mean, not counted as zero error."""
        assert mape(np.array([0.0, 10.0]), np.array([5.0, 12.0])) == pytest.approx(20.0)

    def test_all_zero_actuals(self) -> None:
        with pytest.raises(EDivisionByZero):
            mape(np.array([0.0, 0.0]), np.array([1.0, 1.0]))

    def test_non_negative(self) -> None:
        rng = np.random.default_rng(3)
        actual = rng.normal(0, 10, size=50)
        forecast = rng.normal(0, 10, size=50)

        assert mape(actual, forecast) >= 0.0

    def test_shape_mismatch(self) -> None:
        with pytest.raises(EContractViolation):
            mape(np.ones(3), np.ones(2))

    def test_non_finite_forecast_rejected(self) -> None:
        """A NaN forecast is reported, not silently dropped."""
        with pytest.raises(EContractViolation):
            mape(np.array([10.0, 20.0]), np.array([10.0, np.nan]))

    def test_non_finite_actual_rejected(self) -> None:
        with pytest.raises(EContractViolation):
            mape(np.array([np.inf, 20.0]), np.array([10.0, 20.0]))



class TestCoherenceViolations:
    def test_coherent_values(self, structure) -> None:
        values = np.array([[3.0, 5.0], [1.0, 2.0], [2.0, 3.0]])

        assert coherence_violations(structure, values) == []

    def test_violation_details(self, structure) -> None:
        values = np.array([[3.0, 9.0], [1.0, 2.0], [2.0, 3.0]])

        violations = coherence_violations(structure, values)

        assert len(violations) == 1
        violation = violations[0]
        assert violation.parent_node == "Total"
        assert violation.child_nodes == ["A", "B"]
        assert violation.expected_value == 5.0
        assert violation.actual_value == 9.0
        assert violation.difference == 4.0
        assert violation.step == 2


class TestHierarchyEvaluator:
    """Test HierarchyEvaluator class."""

    def test_accuracy_per_level(self, structure) -> None:
        actual = np.array([[10.0], [4.0], [6.0]])
        forecast = np.array([[11.0], [5.0], [6.0]])

        result = HierarchyEvaluator(structure).accuracy(forecast, actual)

        assert result[0] == pytest.approx(10.0)
        assert result[1] == pytest.approx(12.5)

    def test_accuracy_selected_levels_and_steps(self, structure) -> None:
        actual = np.array([[10.0, 20.0], [4.0, 8.0], [6.0, 12.0]])
        forecast = np.array([[10.0, 22.0], [4.0, 8.0], [6.0, 14.0]])

        result = HierarchyEvaluator(structure).accuracy(forecast, actual, levels=[0], steps=[2])

        assert result == {0: pytest.approx(10.0)}

    def test_common_horizon(self, structure) -> None:
        """Only the steps covered by both inputs are compared."""
        actual = np.array([[10.0], [4.0], [6.0]])
        forecast = np.array([[10.0, 999.0], [4.0, 999.0], [6.0, 999.0]])

        result = HierarchyEvaluator(structure).accuracy(forecast, actual)

        assert result == {0: 0.0, 1: 0.0}

    def test_accuracy_by_step(self, structure) -> None:
        actual = np.array([[10.0, 20.0], [4.0, 10.0], [6.0, 10.0]])
        forecast = np.array([[10.0, 22.0], [4.0, 11.0], [6.0, 11.0]])

        result = HierarchyEvaluator(structure).accuracy_by_step(forecast, actual)

        assert result[0] == {1: 0.0, 2: pytest.approx(10.0)}
        assert result[1][2] == pytest.approx(10.0)

    def test_accuracy_by_step_leaves_zero_step_out(self, structure) -> None:
        """An all-zero step is absent; the other steps are still scored."""
        actual = np.array([[10.0, 0.0], [4.0, 0.0], [6.0, 0.0]])

        result = HierarchyEvaluator(structure).accuracy_by_step(actual + 1, actual)

        assert result == {0: {1: pytest.approx(10.0)}, 1: {1: pytest.approx(500 / 24)}}

    def test_accuracy_by_step_omits_undefined_level(self, structure) -> None:
        actual = np.array([[10.0], [0.0], [0.0]])
        forecast = np.array([[11.0], [5.0], [6.0]])

        result = HierarchyEvaluator(structure).accuracy_by_step(forecast, actual)

        assert result == {0: {1: pytest.approx(10.0)}}

    def test_unknown_level(self, structure) -> None:
        with pytest.raises(EContractViolation):
            HierarchyEvaluator(structure).accuracy(np.ones((3, 1)), np.ones((3, 1)), levels=[5])

    def test_step_outside_horizon(self, structure) -> None:
        with pytest.raises(EContractViolation):
            HierarchyEvaluator(structure).accuracy(np.ones((3, 2)), np.ones((3, 2)), steps=[3])

    def test_wrong_row_count(self, structure) -> None:
        with pytest.raises(EContractViolation):
            HierarchyEvaluator(structure).accuracy(np.ones((2, 1)), np.ones((3, 1)))

    def test_accepts_hierarchy_and_coherent_forecast(self, constant_hierarchy) -> None:
        structure = constant_hierarchy.structure
        base = np.full((structure.node_count(), 4), 10.0)
        coherent = Reconciler("bu", structure).reconcile(base)
        test = constant_hierarchy.window(8, 11)

        result = HierarchyEvaluator(structure).accuracy(coherent, test)

        assert result == {0: 0.0, 1: 0.0, 2: 0.0}

    def test_accepts_frames(self, constant_hierarchy) -> None:
        structure = constant_hierarchy.structure
        frame = constant_hierarchy.aggregate()

        result = HierarchyEvaluator(structure).accuracy(frame, frame)

        assert result == {0: 0.0, 1: 0.0, 2: 0.0}

    def test_coherence_score(self, structure) -> None:
        evaluator = HierarchyEvaluator(structure)

        assert evaluator.coherence_score(np.array([[3.0], [1.0], [2.0]])) == 1.0
        assert evaluator.coherence_score(np.array([[4.0], [1.0], [2.0]])) == pytest.approx(0.75)

    def test_evaluate_report(self, structure) -> None:
        forecast = np.array([[4.0], [1.0], [2.0]])
        actual = np.array([[3.0], [1.0], [2.0]])

        report = HierarchyEvaluator(structure).evaluate(forecast, actual)

        assert report.total_violations == 1
        assert report.violation_rate == 1.0
        assert report.level_metrics[0]["mae"] == 1.0
        assert report.level_metrics[1]["mape"] == 0.0
        assert report.to_dict()["coherence_violations"][0]["parent_node"] == "Total"

    def test_evaluate_leaves_undefined_mape_out(self, structure) -> None:
        actual = np.zeros((3, 1))
        report = HierarchyEvaluator(structure).evaluate(actual, actual)

        assert "mape" not in report.level_metrics[0]
        assert report.level_metrics[0]["mae"] == 0.0
