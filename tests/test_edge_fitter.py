"""
End-to-end tests for Gaussian Process edge fitting
"""

import logging
import warnings

import pytest
import numpy as np
import pandas as pd
from numpy.linalg import LinAlgError

import bragg_edge_gp.edge_fitter as edge_fitter_module
from bragg_edge_gp import (
    EdgeFitConfig,
    FailureKind,
    FitWindow,
    GPHyperparameters,
    TransmissionCurve,
    fit,
    fit_edges,
    results_to_dataframe
)
from bragg_edge_gp.exceptions import ConfigurationError, FitQualityWarning, NumericalFailure


@pytest.fixture(autouse=True)
def quiet_fit_warnings():
    """Fit-quality and covariance warnings are expected on synthetic data"""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        warnings.simplefilter("ignore", RuntimeWarning)
        yield


class TestSingleFit:
    """Tests for fit() on synthetic curves"""

    def test_recovers_edge(self, curve, window, fast_config, true_edge):
        result = fit(curve, window, config=fast_config, seed=0)

        assert result.ok
        assert result.failure is None
        assert np.isfinite(result.sigma)
        assert result.sigma > 0
        assert abs(result.edge_position - true_edge) < max(3 * result.sigma, 0.02)

    def test_output_shapes(self, curve, window, fast_config):
        result = fit(curve, window, config=fast_config, seed=0)

        assert result.transmission_fit.shape == (len(curve),)
        assert result.locations.shape == (fast_config.hyperparameters.ns + 1,)
        assert result.baseline is not None and result.baseline.is_finite()

        estimate, transmission_fit, diagnostics = result.as_tuple()
        assert estimate is result.estimate
        assert transmission_fit is result.transmission_fit
        assert diagnostics is result.diagnostics

    def test_fitted_curve_close_to_data(self, curve, window, fast_config):
        result = fit(curve, window, config=fast_config, seed=0)

        assert np.max(np.abs(result.transmission_fit - curve.transmission)) < 0.05
        assert 0.5 < result.diagnostics.fitqual < 2.0
        assert result.diagnostics.noise_std == pytest.approx(0.01, rel=0.3)
        assert result.diagnostics.lengthscale == 0.05
        assert result.diagnostics.widthathalfheight > 0

    def test_edge_inside_window_gap(self, curve, window, fast_config):
        result = fit(curve, window, config=fast_config, seed=0)

        lo, hi = curve.tof[window.pre_edge[1]], curve.tof[window.post_edge[0]]
        assert np.all(result.locations >= lo)
        assert np.all(result.locations <= hi)

    def test_same_seed_same_result(self, curve, window, fast_config):
        r1 = fit(curve, window, config=fast_config, seed=11)
        r2 = fit(curve, window, config=fast_config, rng=np.random.default_rng(11))

        assert r1.edge_position == r2.edge_position
        assert r1.sigma == r2.sigma
        assert np.array_equal(r1.locations, r2.locations)

    def test_uncertainty_shrinks_with_noise(self, make_curve, window, fast_config, true_edge):
        noisy = fit(make_curve(noise_std=0.02, seed=3), window, config=fast_config, seed=0)
        clean = fit(make_curve(noise_std=0.001, seed=3), window, config=fast_config, seed=0)

        assert noisy.ok and clean.ok
        assert clean.sigma < noisy.sigma
        assert abs(clean.edge_position - true_edge) < max(3 * clean.sigma, 0.01)

    def test_calibrated_uncertainty(self, make_curve, window, fast_config, true_edge):
        """The true edge lies within 3 sigma for most noise realizations"""
        inside = 0
        for seed in range(20):
            result = fit(make_curve(noise_std=0.01, seed=100 + seed), window,
                         config=fast_config, seed=seed)
            assert result.ok
            inside += abs(result.edge_position - true_edge) <= 3 * result.sigma

        assert inside >= 16

    def test_hyperparameters_override(self, curve, window):
        hp = GPHyperparameters(sig_f=1.0, l=0.06, ns=100, nx=200)

        result = fit(curve, window, hyperparameters=hp, seed=0)

        assert result.diagnostics.lengthscale == 0.06
        assert result.locations.shape == (101,)


class TestSchemes:
    """The three GP schemes and lengthscale optimisation"""

    def test_full(self, curve, window, true_edge):
        config = EdgeFitConfig(
            hyperparameters=GPHyperparameters(1.0, 0.05, ns=300, nx=200),
            gp_scheme='full'
        )

        result = fit(curve, window, config=config, seed=0)

        assert result.ok
        assert result.diagnostics.covariance_method in ('cholesky', 'sqrtm')
        assert result.locations.shape == (301,)
        assert abs(result.edge_position - true_edge) < max(3 * result.sigma, 0.02)

    def test_hilbertspace(self, curve, window, true_edge):
        config = EdgeFitConfig(
            hyperparameters=GPHyperparameters(1.0, 0.05, ns=300, nx=500),
            gp_scheme='hilbertspace',
            n_basis=200
        )

        result = fit(curve, window, config=config, seed=0)

        assert result.ok
        assert result.diagnostics.covariance_method == 'reduced_rank'
        assert abs(result.edge_position - true_edge) < max(3 * result.sigma, 0.02)

    def test_schemes_agree(self, curve, window):
        hp = GPHyperparameters(1.0, 0.05, ns=300, nx=500)
        interp_config = EdgeFitConfig(hyperparameters=hp, gp_scheme='interp')
        hilbert_config = EdgeFitConfig(hyperparameters=hp, gp_scheme='hilbertspace', n_basis=200)

        interp = fit(curve, window, config=interp_config, seed=0)
        hilbert = fit(curve, window, config=hilbert_config, seed=0)

        assert interp.ok and hilbert.ok
        assert hilbert.edge_position == pytest.approx(interp.edge_position, abs=0.02)

    def test_optimised_lengthscale(self, curve, window, tof, true_edge):
        config = EdgeFitConfig(
            hyperparameters=GPHyperparameters(1.0, 1e-4, ns=300, nx=500),
            optimise_hp='all'
        )

        result = fit(curve, window, config=config, seed=0)

        assert result.ok
        floor = 10 / (len(tof) - 1)
        assert result.diagnostics.lengthscale >= floor - 1e-12
        assert abs(result.edge_position - true_edge) < max(3 * result.sigma, 0.02)

    def test_float_grid_sizes_from_options(self, curve, window):
        """Whole-number floats from an option mapping run through the fit"""
        config = EdgeFitConfig.from_options({'nx': 500.0, 'ns': 100.0, 'l': 0.05})

        result = fit(curve, window, config=config, seed=0)

        assert result.ok
        assert result.locations.shape == (101,)


class TestDefaultHyperparameters:
    """Fits with the default lengthscale 1e-4, ns=3000 and nx=2500"""

    def test_default_lengthscale_overfits(self, curve, window, true_edge):
        """Without correlation between points the GP reproduces the data"""
        with pytest.warns(FitQualityWarning, match="overfit"):
            result = fit(curve, window, config=EdgeFitConfig(), seed=0)

        assert result.ok
        assert result.diagnostics.lengthscale == 1e-4
        assert result.diagnostics.fitqual >= 2.0
        assert result.locations.shape == (3001,)
        assert np.isfinite(result.sigma) and result.sigma > 0
        assert abs(result.edge_position - true_edge) <= 3 * result.sigma

    @pytest.mark.slow
    def test_statistical_acceptance(self, make_curve, window, true_edge):
        """Edge within 3 sigma of the truth in at least 95 of 100 repetitions"""
        config = EdgeFitConfig()
        inside = 0
        for seed in range(100):
            result = fit(make_curve(noise_std=0.01, seed=1000 + seed), window,
                         config=config, seed=seed)
            assert result.ok
            inside += abs(result.edge_position - true_edge) <= 3 * result.sigma

        assert inside >= 95


class TestFailures:
    """Configuration errors raise, numerical failures return NaN"""

    def test_window_past_curve_raises(self, curve, fast_config):
        with pytest.raises(ConfigurationError):
            fit(curve, FitWindow((0, 19), (79, 120)), config=fast_config, seed=0)

    def test_wrong_hyperparameters_type_raises(self, curve, window):
        with pytest.raises(ConfigurationError, match="hyperparameters"):
            fit(curve, window, hyperparameters={'l': 0.05}, seed=0)

    def test_baseline_failure_returns_nan(self, curve, window, fast_config, monkeypatch, caplog):
        def broken(self, curve, window):
            raise NumericalFailure("The post-edge baseline fit did not converge")

        monkeypatch.setattr(edge_fitter_module.BaselineFitter, 'fit', broken)

        with caplog.at_level(logging.ERROR):
            result = fit(curve, window, config=fast_config, seed=0)

        assert not result.ok
        assert result.failure.kind is FailureKind.NUMERICAL
        assert "post-edge" in result.failure.message
        assert np.isnan(result.edge_position)
        assert np.isnan(result.sigma)
        assert np.all(np.isnan(result.transmission_fit))
        assert result.transmission_fit.shape == (len(curve),)
        assert np.isnan(result.diagnostics.fitqual)
        assert "Error during fitting process" in caplog.text

    def test_linear_algebra_failure_returns_nan(self, curve, window, fast_config, monkeypatch):
        def singular(self, *args, **kwargs):
            raise LinAlgError("Singular matrix")

        monkeypatch.setattr(edge_fitter_module.PosteriorSolver, 'solve', singular)

        result = fit(curve, window, config=fast_config, seed=0)

        assert not result.ok
        assert "Singular matrix" in result.failure.message
        assert result.diagnostics.covariance_method == 'failed'


class TestBatch:
    """Tests for fit_edges and results_to_dataframe"""

    @pytest.fixture
    def short_curve(self):
        return TransmissionCurve(np.linspace(1, 3, 50), np.linspace(0.5, 0.7, 50))

    def test_invalid_curve_raises_before_fitting(self, curve, short_curve, window,
                                                 fast_config, monkeypatch):
        calls = []
        monkeypatch.setattr(edge_fitter_module, 'fit', lambda *a, **k: calls.append(a))

        with pytest.raises(ConfigurationError):
            fit_edges([curve, short_curve], window, config=fast_config, seed=0)
        assert calls == []

    def test_skip_invalid(self, curve, short_curve, window, fast_config):
        results = fit_edges([curve, short_curve, curve], window, config=fast_config,
                            seed=0, skip_invalid=True)

        assert [r.ok for r in results] == [True, False, True]
        assert results[1].failure.kind is FailureKind.CONFIGURATION
        assert results[1].transmission_fit.shape == (50,)

    def test_batch_reproducible(self, make_curve, window, fast_config):
        curves = [make_curve(seed=s) for s in range(2)] + [make_curve(seed=0)]

        first = fit_edges(curves, window, config=fast_config, seed=5)
        second = fit_edges(curves, window, config=fast_config, seed=5)

        assert [r.edge_position for r in first] == [r.edge_position for r in second]
        # curves get independent generators
        assert first[0].locations[1:].tolist() != first[2].locations[1:].tolist()

    def test_results_to_dataframe(self, curve, short_curve, window, fast_config):
        results = fit_edges([curve, short_curve], window, config=fast_config,
                            seed=0, skip_invalid=True)

        df = results_to_dataframe(results, index=['pixel_a', 'pixel_b'])

        assert isinstance(df, pd.DataFrame)
        assert len(df) == 2
        for column in ['edge_position', 'sigma', 'lengthscale', 'std_residual',
                       'rms_residual', 'fitqual', 'widthathalfheight', 'ok',
                       'failure_kind', 'failure_message']:
            assert column in df.columns
        assert df['ok'].tolist() == [True, False]
        assert df.loc['pixel_b', 'failure_kind'] == 'configuration'
        assert np.isnan(df['edge_position'].iloc[1])
