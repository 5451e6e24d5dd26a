"""
bragg_edge_gp - Gaussian Process Bragg Edge Fitting

This package estimates the position of a Bragg edge, and a calibrated
uncertainty, from a single neutron transmission spectrum. A two-stage
baseline fit isolates the asymptotes on either side of the edge, a Gaussian
Process regresses the transition between them, and Monte-Carlo sampling of
the derivative posterior gives the edge location and its spread.

Main API
--------
fit : Fit one transmission curve and return an EdgeFitResult
fit_edges : Fit a sequence of independent curves
results_to_dataframe : Tabulate a batch of results
EdgeFitConfig : Validated fit configuration
TransmissionCurve, FitWindow : Input data

Building Blocks
---------------
BaselineFitter : Two-stage exponential baseline fit
SquaredExponentialKernel, HilbertSpaceKernel : Covariance backends
PosteriorSolver : GP regression of the transition derivative
MonteCarloEdgeLocator : Edge location by posterior sampling
ResultAssembler : Fit-quality diagnostics
"""

from .bragg_edge_model import (
    BaselineParameters,
    EdgeEstimate,
    FitWindow,
    TOFCalibration,
    TransmissionCurve,
    edge_function,
    simulate_edge_curve,
    strain_from_edge
)
from .config import BaselineGuess, EdgeFitConfig, GPHyperparameters
from .exceptions import (
    BraggEdgeError,
    ConfigurationError,
    CovarianceFallbackWarning,
    FitQualityWarning,
    NumericalFailure
)
from .baseline import BaselineFitter
from .kernels import (
    CovarianceBackend,
    HilbertSpaceKernel,
    InputScaler,
    SquaredExponentialKernel
)
from .posterior import DerivativePosterior, PosteriorSolver, covariance_factor
from .hyperparameters import negative_log_marginal_likelihood, optimise_lengthscale
from .sampling import EdgeLocations, MonteCarloEdgeLocator
from .diagnostics import FitDiagnostics, ResultAssembler, width_at_half_height
from .edge_fitter import (
    EdgeFitResult,
    EdgeFitter,
    FailureKind,
    FitFailure,
    fit,
    fit_edges,
    results_to_dataframe
)

__all__ = [
    # Main API
    'fit',
    'fit_edges',
    'results_to_dataframe',
    'EdgeFitter',
    'EdgeFitResult',
    'FitFailure',
    'FailureKind',
    'EdgeFitConfig',
    'GPHyperparameters',
    'BaselineGuess',

    # Data model
    'TransmissionCurve',
    'FitWindow',
    'BaselineParameters',
    'EdgeEstimate',
    'TOFCalibration',
    'edge_function',
    'simulate_edge_curve',
    'strain_from_edge',

    # Building blocks
    'BaselineFitter',
    'CovarianceBackend',
    'InputScaler',
    'SquaredExponentialKernel',
    'HilbertSpaceKernel',
    'PosteriorSolver',
    'DerivativePosterior',
    'covariance_factor',
    'negative_log_marginal_likelihood',
    'optimise_lengthscale',
    'MonteCarloEdgeLocator',
    'EdgeLocations',
    'ResultAssembler',
    'FitDiagnostics',
    'width_at_half_height',

    # Errors
    'BraggEdgeError',
    'ConfigurationError',
    'NumericalFailure',
    'FitQualityWarning',
    'CovarianceFallbackWarning',
]

__version__ = '0.1.0'
