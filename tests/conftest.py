"""Pytest fixtures for bragg_edge_gp tests."""

import pytest

import numpy as np

from bragg_edge_gp import (
    BaselineParameters,
    EdgeFitConfig,
    FitWindow,
    GPHyperparameters,
    simulate_edge_curve
)


TRUE_BASELINE = BaselineParameters(a0=0.2, b0=0.1, a_hkl=0.3, b_hkl=0.15)
EDGE_WIDTH = 0.08


@pytest.fixture
def true_baseline():
    """Asymptotes used to simulate the synthetic curves."""
    return TRUE_BASELINE


@pytest.fixture
def tof():
    """100-point time-of-flight grid (arbitrary units)."""
    return np.linspace(1.0, 3.0, 100)


@pytest.fixture
def true_edge(tof):
    """True edge position, at index 50 of the grid."""
    return tof[50]


@pytest.fixture
def window():
    """Pre-edge points 1-20 and post-edge points 80-100 (zero-based)."""
    return FitWindow(pre_edge=(0, 19), post_edge=(79, 99))


@pytest.fixture
def make_curve(tof, true_edge):
    """Factory for synthetic curves with a known edge and noise level."""
    def _make(noise_std=0.01, seed=0, position=None):
        rng = np.random.default_rng(seed)
        return simulate_edge_curve(
            tof,
            position=true_edge if position is None else position,
            width=EDGE_WIDTH,
            baseline=TRUE_BASELINE,
            noise_std=noise_std,
            rng=rng
        )
    return _make


@pytest.fixture
def curve(make_curve):
    """Synthetic curve with noise std 0.01."""
    return make_curve(noise_std=0.01, seed=1)


@pytest.fixture
def fast_config():
    """Small configuration that keeps the tests quick."""
    return EdgeFitConfig(
        hyperparameters=GPHyperparameters(sig_f=1.0, l=0.05, ns=500, nx=500),
        gp_scheme='interp'
    )
