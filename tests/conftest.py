"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


def make_cbpp(seed=7, n_herds=8, n_periods=4):
    """Herd-by-period binomial incidence data shaped like lme4's cbpp."""
    gen = np.random.default_rng(seed)
    herd = np.repeat([f"h{h + 1}" for h in range(n_herds)], n_periods)
    period = np.tile(np.arange(1, n_periods + 1), n_herds).astype(float)
    size = gen.integers(5, 25, size=n_herds * n_periods)
    herd_effect = np.repeat(gen.normal(0.0, 0.6, size=n_herds), n_periods)
    eta = -0.8 - 0.4 * period + herd_effect
    incidence = gen.binomial(size, 1.0 / (1.0 + np.exp(-eta)))
    return {
        'incidence': incidence,
        'size': size,
        'period': period,
        'herd': herd,
    }


@pytest.fixture(scope="session")
def cbpp():
    """Binomial incidence with trial counts, a numeric period and herds."""
    return make_cbpp()


@pytest.fixture
def gaussian_data(rng):
    """Gaussian response with one predictor and a grouping factor."""
    n_groups, per_group = 6, 5
    g = np.repeat([f"g{i}" for i in range(n_groups)], per_group)
    x = rng.standard_normal(n_groups * per_group)
    u = np.repeat(rng.normal(0.0, 0.5, size=n_groups), per_group)
    y = 1.0 + 0.5 * x + u + rng.normal(0.0, 0.3, size=x.size)
    return {'y': y, 'x': x, 'g': g, 'treat': np.tile(['a', 'b', 'c'], 10)}


@pytest.fixture
def ordinal_data(rng):
    """Ordinal response coded 1..4 with one predictor."""
    x = rng.standard_normal(40)
    y = np.clip(np.round(2.5 + x + rng.normal(0.0, 0.5, size=40)), 1, 4)
    y[:4] = [1, 2, 3, 4]
    return {'rating': y.astype(int), 'x': x}
