"""
Shared pytest configuration and fixtures for deferlm tests.

This module provides common test tables, configuration isolation and markers
used across the test suite.
"""

import numpy as np
import pandas as pd
import pytest

from deferlm.config.settings import reset_default_config


# Speed (mph) and stopping distance (ft) of 50 cars, as in R's datasets::cars
CARS_SPEED = [
    4, 4, 7, 7, 8, 9, 10, 10, 10, 11, 11, 12, 12, 12, 12, 13, 13, 13, 13, 14,
    14, 14, 14, 15, 15, 15, 16, 16, 17, 17, 17, 18, 18, 18, 18, 19, 19, 19, 20, 20,
    20, 20, 20, 22, 23, 24, 24, 24, 24, 25,
]
CARS_DIST = [
    2, 10, 4, 22, 16, 10, 18, 26, 34, 17, 28, 14, 20, 24, 28, 26, 34, 34, 46, 26,
    36, 60, 80, 20, 26, 54, 32, 40, 32, 40, 50, 42, 56, 76, 84, 36, 46, 68, 32, 48,
    52, 56, 64, 66, 54, 70, 92, 93, 120, 85,
]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config files and DEFERLM_* variables out of every test."""
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in ("DEFERLM_LOG_LEVEL", "DEFERLM_NA_ACTION", "DEFERLM_PARALLEL", "DEFERLM_MAX_WORKERS"):
        monkeypatch.delenv(var, raising=False)
    reset_default_config()
    yield
    reset_default_config()


@pytest.fixture
def cars():
    """The cars table: speed and stopping distance."""
    return pd.DataFrame({"speed": CARS_SPEED, "dist": CARS_DIST}, dtype=float)


@pytest.fixture
def cars_with_na(cars):
    """cars with two missing speeds and one missing distance on other rows."""
    data = cars.copy()
    data.loc[[3, 17], "speed"] = np.nan
    data.loc[30, "dist"] = np.nan
    return data


@pytest.fixture
def grouped_cars(cars):
    """
    cars with a categorical key column of three used levels plus one unused
    level, rows shuffled.
    """
    data = cars.copy()
    data["group"] = pd.Categorical(
        np.resize(["north", "south", "west"], len(data)),
        categories=["west", "north", "south", "east"],
    )
    return data.sample(frac=1.0, random_state=7)


@pytest.fixture
def quadratic_table():
    """Noise-free quadratic y = 1 + 2x - 0.5x^2 over 12 points."""
    x = np.arange(12, dtype=float)
    return pd.DataFrame({"x": x, "y": 1 + 2 * x - 0.5 * x ** 2})


@pytest.fixture(autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)


# Markers for different test types
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (medium speed)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (may take >10 seconds)"
    )
