"""Pytest fixtures for gwdr tests."""

import numpy as np
import pytest

from gwdr.data import Dataset


def true_coefficients(coords: np.ndarray) -> np.ndarray:
    """Spatially varying ground truth on the unit square, shape (n, 4)."""
    u, v = coords[:, 0], coords[:, 1]
    return np.column_stack([
        2.0 + u,
        1.0 + 0.5 * v,
        -1.0 + 0.5 * (u + v),
        0.5 + 0.5 * u * v,
    ])


@pytest.fixture
def random_state():
    """Fixed random state for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def spatial_data(random_state):
    """200 samples on the unit square, 3 predictors, known coefficients."""
    n = 200
    coords = random_state.uniform(0, 1, (n, 2))
    X = random_state.randn(n, 3)
    beta = true_coefficients(coords)
    y = beta[:, 0] + np.sum(beta[:, 1:] * X, axis=1) + 0.1 * random_state.randn(n)
    dataset = Dataset(y, X, [coords])
    return dataset, beta


@pytest.fixture
def small_data(random_state):
    """20 samples, 2 predictors, 2-D coordinates."""
    n = 20
    coords = random_state.uniform(0, 10, (n, 2))
    X = random_state.randn(n, 2)
    y = 1.0 + 0.3 * coords[:, 0] + X @ np.array([2.0, -1.0]) + 0.2 * random_state.randn(n)
    return Dataset(y, X, [coords])


@pytest.fixture
def space_time_data(random_state):
    """60 samples with a 2-D position group and a time group."""
    n = 60
    coords = random_state.uniform(0, 5, (n, 2))
    t = random_state.uniform(0, 3, n)
    X = random_state.randn(n, 1)
    y = 1.0 + (1.0 + 0.2 * t) * X[:, 0] + 0.1 * coords[:, 1] + 0.1 * random_state.randn(n)
    return Dataset(y, X, [coords, t])


@pytest.fixture
def line_data(random_state):
    """1-D coordinate with coefficients trending linearly, dense near the ends."""
    n = 120
    u = np.concatenate([
        random_state.uniform(0.0, 0.15, n // 3),
        random_state.uniform(0.15, 0.85, n // 3),
        random_state.uniform(0.85, 1.0, n - 2 * (n // 3)),
    ])
    x = random_state.randn(n)
    y = (1.0 + 3.0 * u) + (2.0 - 2.0 * u) * x + 0.05 * random_state.randn(n)
    return Dataset(y, x, [u]), u
