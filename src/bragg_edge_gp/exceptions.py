"""
Exception and warning classes for Bragg edge fitting.

Configuration problems are raised before any computation starts. Numerical
problems are raised inside the pipeline and converted into a failed
EdgeFitResult by the estimator entry point, so one bad curve never aborts a
batch of independent fits.
"""


class BraggEdgeError(Exception):
    """Base class for all bragg_edge_gp exceptions."""


class ConfigurationError(BraggEdgeError, ValueError):
    """Invalid options, hyperparameters or fit windows."""


class NumericalFailure(BraggEdgeError):
    """A fit stage did not converge or produced non-finite values."""


class FitQualityWarning(UserWarning):
    """The ratio sig_m / std(residual) indicates an overfit or underfit."""


class CovarianceFallbackWarning(RuntimeWarning):
    """Cholesky factorization failed and the matrix square root was used."""


__all__ = [
    'BraggEdgeError',
    'ConfigurationError',
    'NumericalFailure',
    'FitQualityWarning',
    'CovarianceFallbackWarning',
]
