"""Shared fixtures: small hierarchies and deterministic forecasters."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from tshierkit.hierarchy import Hierarchy
from tshierkit.models import BaseForecast, BaseMethod


def last_value_forecaster(
    series: pd.Series,
    horizon: int,
    method: BaseMethod,
    season_length: int,
) -> BaseForecast:
    """Repeat the last observation; fitted values are the previous observation."""
    y = np.asarray(series, dtype=float)
    point = np.full(horizon, y[-1])
    fitted = np.concatenate([[np.nan], y[:-1]])
    return BaseForecast(
        point=point,
        lower=point,
        upper=point,
        fitted=fitted,
        residuals=y - fitted,
        method=method,
    )


def mean_forecaster(
    series: pd.Series,
    horizon: int,
    method: BaseMethod,
    season_length: int,
) -> BaseForecast:
    """Forecast the in-sample mean."""
    y = np.asarray(series, dtype=float)
    point = np.full(horizon, y.mean())
    fitted = np.full_like(y, y.mean())
    return BaseForecast(
        point=point,
        lower=point,
        upper=point,
        fitted=fitted,
        residuals=y - fitted,
        method=method,
    )


@pytest.fixture
def grouping() -> list:
    """Total -> A (2 leaves), B (6 leaves)."""
    return [2, (2, 6)]


@pytest.fixture
def constant_hierarchy(grouping) -> Hierarchy:
    """12 quarters of eight leaves all constant at 10."""
    return Hierarchy.build(np.full((12, 8), 10.0), grouping, frequency=4)


@pytest.fixture
def quarterly_bottom() -> np.ndarray:
    """24 quarters of positive, trending, seasonal data for eight leaves."""
    rng = np.random.default_rng(42)
    t = np.arange(24)[:, None]
    level = np.linspace(20, 90, 8)[None, :]
    season = 5 * np.sin(2 * np.pi * t / 4)
    noise = rng.normal(0, 1.5, size=(24, 8))
    return level + 0.8 * t + season + noise


@pytest.fixture
def quarterly_hierarchy(quarterly_bottom, grouping) -> Hierarchy:
    """Quarterly hierarchy starting 1998Q1."""
    return Hierarchy.build(quarterly_bottom, grouping, frequency=4, start_period="1998Q1")


@pytest.fixture
def last_value():
    return last_value_forecaster


@pytest.fixture
def mean_value():
    return mean_forecaster
