"""Tests for CVConfig and ExecutionConfig.

Tests configuration validation, presets, and loading.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from tshierkit import CVConfig, ExecutionConfig


class TestCVConfigValidation:
    """Test config validation."""

    def test_valid_config(self):
        """Create valid config."""
        config = CVConfig(horizon=8, fold_count=3, reconciliation_methods=["bu", "wls"])
        assert config.horizon == 8
        assert config.reconciliation_methods == ["bu", "wls"]

    def test_horizon_must_be_positive(self):
        with pytest.raises(ValueError):
            CVConfig(horizon=0)

    def test_unknown_reconciliation_method(self):
        with pytest.raises(ValidationError):
            CVConfig(reconciliation_methods=["middle_out"])

    def test_unknown_base_method(self):
        with pytest.raises(ValidationError):
            CVConfig(base_methods=["prophet"])

    def test_empty_method_list(self):
        with pytest.raises(ValueError, match="at least one method"):
            CVConfig(base_methods=[])

    def test_negative_level(self):
        with pytest.raises(ValueError, match="non-negative"):
            CVConfig(levels_to_evaluate=[0, -1])

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            CVConfig(foldcount=3)

    def test_frozen(self):
        config = CVConfig()
        with pytest.raises(ValidationError):
            config.horizon = 2


class TestCVConfigDefaults:
    """Test config defaults."""

    def test_defaults(self):
        config = CVConfig()
        assert config.frequency == 4
        assert config.horizon == 4
        assert config.window_size == 4
        assert config.fold_count == 1
        assert config.reconciliation_methods == ["bu", "tdgsa", "comb"]
        assert config.base_methods == ["arima", "ets", "rw"]
        assert config.levels_to_evaluate is None
        assert config.origin is None
        assert config.execution.backend == "thread"

    def test_method_pairs(self):
        config = CVConfig(reconciliation_methods=["bu", "comb", "bu"], base_methods=["rw", "ets"])
        assert config.method_pairs() == [
            ("bu", "rw"),
            ("bu", "ets"),
            ("comb", "rw"),
            ("comb", "ets"),
        ]

    def test_quarterly_preset(self):
        config = CVConfig.quarterly(fold_count=8, start_period="1998Q1")
        assert config.frequency == 4
        assert config.horizon == 4
        assert config.window_size == 4
        assert config.fold_count == 8
        assert config.start_period == "1998Q1"


class TestCVConfigFromFile:
    def test_from_file(self, tmp_path):
        path = tmp_path / "cv.json"
        path.write_text(
            json.dumps({
                "fold_count": 2,
                "base_methods": ["rw"],
                "execution": {"backend": "sequential", "timeout": 30},
            })
        )

        config = CVConfig.from_file(path)

        assert config.fold_count == 2
        assert config.execution.backend == "sequential"
        assert config.execution.timeout == 30

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "cv.json"
        path.write_text(json.dumps({"horizon": -1}))

        with pytest.raises(ValidationError):
            CVConfig.from_file(path)


class TestExecutionConfig:
    def test_defaults(self):
        config = ExecutionConfig()
        assert config.backend == "thread"
        assert config.max_workers is None
        assert config.timeout is None
        assert config.allow_pinv is True

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(backend="dask")

    def test_positive_bounds(self):
        with pytest.raises(ValidationError):
            ExecutionConfig(max_workers=0)
        with pytest.raises(ValidationError):
            ExecutionConfig(timeout=0)
