"""
Gaussian Process Bragg edge fitting

Fits a Bragg edge with the method of Hendriks et al. (2020), "Bayesian
non-parametric Bragg-edge fitting for neutron transmission strain imaging":

1) two exponential asymptotes are fitted on either side of the edge,
2) the transition between them is regressed with a Gaussian Process,
3) the derivative posterior is sampled and the arg-max of every realization
   gives a distribution of edge locations.

Numerical failures never raise out of fit(): they return an EdgeFitResult
carrying NaN values and a failure message, so a batch of independent curves
can keep going. Configuration errors are raised before any computation.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.linalg import LinAlgError

from .baseline import BaselineFitter
from .bragg_edge_model import (
    BaselineParameters,
    EdgeEstimate,
    FitWindow,
    TransmissionCurve
)
from .config import EdgeFitConfig, GPHyperparameters
from .diagnostics import FitDiagnostics, ResultAssembler
from .exceptions import ConfigurationError, NumericalFailure
from .hyperparameters import optimise_lengthscale
from .kernels import InputScaler, make_backend
from .posterior import PosteriorSolver
from .sampling import MonteCarloEdgeLocator

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    """Why a fit produced no estimate"""
    CONFIGURATION = 'configuration'
    NUMERICAL = 'numerical'


@dataclass(frozen=True)
class FitFailure:
    """
    Reason a fit failed

    Attributes:
        kind: Configuration or numerical failure
        message: Human-readable description
    """
    kind: FailureKind
    message: str


@dataclass
class EdgeFitResult:
    """
    Result of a single-curve edge fit

    Attributes:
        estimate: Edge position and its standard deviation
        transmission_fit: Fitted transmission at the measured TOF values
        diagnostics: Fit-quality measures
        baseline: Fitted asymptotes, None if the fit failed before them
        locations: Edge location of every Monte-Carlo candidate
        failure: Failure reason, None on success
    """
    estimate: EdgeEstimate
    transmission_fit: np.ndarray
    diagnostics: FitDiagnostics
    baseline: Optional[BaselineParameters] = None
    locations: Optional[np.ndarray] = None
    failure: Optional[FitFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def edge_position(self) -> float:
        return self.estimate.edge_position

    @property
    def sigma(self) -> float:
        return self.estimate.sigma

    def as_tuple(self) -> Tuple[EdgeEstimate, np.ndarray, FitDiagnostics]:
        """(estimate, transmission_fit, diagnostics)"""
        return self.estimate, self.transmission_fit, self.diagnostics

    @classmethod
    def failed(cls, n_points: int, kind: FailureKind, message: str) -> 'EdgeFitResult':
        """Failure sentinel: every value NaN"""
        return cls(
            estimate=EdgeEstimate(np.nan, np.nan),
            transmission_fit=np.full(n_points, np.nan),
            diagnostics=FitDiagnostics.failed(),
            failure=FitFailure(kind, message)
        )


class EdgeFitter:
    """
    Gaussian Process edge fitter for a fixed configuration

    Parameters
    ----------
    config : EdgeFitConfig, optional
        Fit configuration. Defaults to EdgeFitConfig().

    Examples
    --------
    >>> fitter = EdgeFitter(EdgeFitConfig(gp_scheme='full'))
    >>> result = fitter.fit(curve, FitWindow((0, 19), (79, 99)),
    ...                     np.random.default_rng(0))
    >>> print(result.edge_position, result.sigma)
    """

    def __init__(self, config: Optional[EdgeFitConfig] = None):
        self.config = config if config is not None else EdgeFitConfig()

    def fit(
        self,
        curve: TransmissionCurve,
        window: FitWindow,
        rng: np.random.Generator
    ) -> EdgeFitResult:
        """
        Run the full pipeline. Numerical problems raise.

        Parameters
        ----------
        curve : TransmissionCurve
            Measured curve
        window : FitWindow
            Pre-edge and post-edge index ranges
        rng : np.random.Generator
            Source of the posterior samples

        Returns
        -------
        EdgeFitResult
        """
        config = self.config
        hp = config.hyperparameters
        tof, tr = curve.tof, curve.transmission
        pre, post = window.pre_slice, window.post_slice

        baseline = BaselineFitter(config.baseline_guess).fit(curve, window)
        g1 = baseline.pre_edge(tof)
        g2 = baseline.post_edge(tof)
        y = tr - g1
        envelope = g2 - g1

        noise_std = float(np.std(np.concatenate([tr[post] - g2[post], tr[pre] - g1[pre]]), ddof=1))
        if not np.isfinite(noise_std):
            raise NumericalFailure("Measurement noise estimate is not finite")

        scaler = InputScaler(tof)
        x = scaler.transform(tof)

        lengthscale = hp.l
        if config.optimise_hp == 'all':
            lengthscale = optimise_lengthscale(x, y, envelope, noise_std ** 2, hp.sig_f,
                                               min_lengthscale=10 * (x[1] - x[0]))

        lo, hi = tof[window.pre_edge[1]], tof[window.post_edge[0]]
        if config.gp_scheme == 'interp':
            grid = np.linspace(lo, hi, len(curve))
            target_grid = np.linspace(lo, hi, hp.nx)
        else:
            grid = np.linspace(lo, hi, hp.nx)
            target_grid = None

        backend = make_backend(config.gp_scheme, hp.sig_f, lengthscale,
                               config.n_basis, config.domain_half_width)
        logger.debug("Fitting transition with %r on %d test points", backend, grid.size)

        posterior = PosteriorSolver(backend, config.jitter).solve(
            x, y, envelope, noise_std ** 2, scaler.transform(grid), grid
        )
        edge = MonteCarloEdgeLocator(hp.ns, target_grid).locate(posterior, rng)

        fitted = baseline.transmission(tof, posterior.transition)
        diagnostics = ResultAssembler(config.quality_bounds).assemble(
            tr, fitted, noise_std, lengthscale, grid, posterior.mean, posterior.method
        )

        logger.debug("Edge at %.6g ± %.3g", edge.estimate.edge_position, edge.estimate.sigma)
        return EdgeFitResult(
            estimate=edge.estimate,
            transmission_fit=fitted,
            diagnostics=diagnostics,
            baseline=baseline,
            locations=edge.locations
        )


def fit(
    curve: TransmissionCurve,
    window: FitWindow,
    hyperparameters: Optional[GPHyperparameters] = None,
    config: Optional[EdgeFitConfig] = None,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None
) -> EdgeFitResult:
    """
    Fit a Bragg edge to a single transmission curve.

    Parameters
    ----------
    curve : TransmissionCurve
        Measured curve
    window : FitWindow
        Pre-edge and post-edge index ranges
    hyperparameters : GPHyperparameters, optional
        Overrides config.hyperparameters when given
    config : EdgeFitConfig, optional
        Fit configuration. Defaults to EdgeFitConfig().
    rng : np.random.Generator, optional
        Source of the posterior samples
    seed : int, optional
        Seed for a new generator when rng is None. Results are reproducible
        only when a seed or a seeded generator is supplied.

    Returns
    -------
    EdgeFitResult
        On numerical failure the result carries NaN values and a
        FitFailure instead of raising.

    Raises
    ------
    ConfigurationError
        If the window does not fit the curve
    """
    config = config if config is not None else EdgeFitConfig()
    if hyperparameters is not None:
        config = replace(config, hyperparameters=hyperparameters)
    window.validate_for(curve)
    if rng is None:
        rng = np.random.default_rng(seed)

    try:
        return EdgeFitter(config).fit(curve, window, rng)
    except ConfigurationError:
        raise
    except (NumericalFailure, LinAlgError, ValueError, FloatingPointError) as e:
        message = f"Error during fitting process. The message was: {e}"
        logger.error(message)
        return EdgeFitResult.failed(len(curve), FailureKind.NUMERICAL, message)


def fit_edges(
    curves: Iterable[TransmissionCurve],
    window: FitWindow,
    config: Optional[EdgeFitConfig] = None,
    seed: Optional[int] = None,
    skip_invalid: bool = False
) -> List[EdgeFitResult]:
    """
    Fit a sequence of independent curves one after another.

    Every curve gets its own generator spawned from one seed sequence, so
    the batch is reproducible for a fixed seed. Numerical failures are
    logged and kept as failed results.

    Parameters
    ----------
    curves : iterable of TransmissionCurve
        Curves to fit, e.g. the macro-pixels of a strain image
    window : FitWindow
        Window shared by all curves
    config : EdgeFitConfig, optional
        Fit configuration
    seed : int, optional
        Seed of the batch
    skip_invalid : bool, optional
        If True, curves the window does not fit are returned as
        configuration failures instead of raising. Default is False.

    Returns
    -------
    list of EdgeFitResult
        One result per curve, in input order

    Raises
    ------
    ConfigurationError
        Before any fit, if the window does not fit a curve and skip_invalid
        is False
    """
    curves = list(curves)
    invalid = {}
    for i, curve in enumerate(curves):
        try:
            window.validate_for(curve)
        except ConfigurationError as e:
            if not skip_invalid:
                raise
            invalid[i] = str(e)

    results = []
    seeds = np.random.SeedSequence(seed).spawn(len(curves))
    for i, (curve, child) in enumerate(zip(curves, seeds)):
        if i in invalid:
            logger.warning("Skipping curve %d: %s", i, invalid[i])
            results.append(EdgeFitResult.failed(len(curve), FailureKind.CONFIGURATION, invalid[i]))
            continue
        results.append(fit(curve, window, config=config, rng=np.random.default_rng(child)))

    n_failed = sum(not r.ok for r in results)
    logger.info("Fitted %d curves, %d failed", len(results), n_failed)
    return results


def results_to_dataframe(
    results: Sequence[EdgeFitResult],
    index: Optional[Sequence] = None
) -> pd.DataFrame:
    """
    Tabulate fit results, one row per curve.

    Parameters
    ----------
    results : sequence of EdgeFitResult
        Results from fit() or fit_edges()
    index : sequence, optional
        Row labels, e.g. pixel coordinates

    Returns
    -------
    pandas.DataFrame
        Columns edge_position, sigma, the diagnostics, ok, failure_kind and
        failure_message
    """
    rows = []
    for result in results:
        row = {'edge_position': result.edge_position, 'sigma': result.sigma}
        row.update(result.diagnostics.to_dict())
        row['ok'] = result.ok
        row['failure_kind'] = result.failure.kind.value if result.failure else None
        row['failure_message'] = result.failure.message if result.failure else None
        rows.append(row)
    return pd.DataFrame(rows, index=index)
