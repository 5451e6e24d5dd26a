"""
GP posterior of the transition function and of its derivative.

The observation model is

    y = Tr - g1(t) = (g2(t) - g1(t)) * f(t) + e,   e ~ N(0, sig_m^2)

with a GP prior on the transition function f. The solver returns the
posterior mean of f at the observations (used to rebuild the fitted curve)
and the posterior mean and a covariance factor of f' on the test grid (used
to sample edge locations).
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.linalg import LinAlgError
from scipy.linalg import cholesky, solve_triangular, sqrtm

from .exceptions import CovarianceFallbackWarning, NumericalFailure
from .kernels import CovarianceBackend

logger = logging.getLogger(__name__)


@dataclass
class DerivativePosterior:
    """
    Posterior of the transition derivative on a test grid

    Attributes:
        grid: Test locations, in the units of the curve's TOF axis
        mean: Posterior mean of the derivative at each test location
        factor: Matrix F with F @ F.T equal to the posterior covariance;
            samples are mean + F @ z for standard-normal z
        transition: Posterior mean of the transition function at the
            observations
        method: How the factor was obtained ('cholesky', 'sqrtm' or
            'reduced_rank')
    """
    grid: np.ndarray
    mean: np.ndarray
    factor: np.ndarray
    transition: np.ndarray
    method: str

    @property
    def covariance(self) -> np.ndarray:
        return self.factor @ self.factor.T


def covariance_factor(V: np.ndarray, jitter: float = 1e-10) -> Tuple[np.ndarray, str]:
    """
    Factor a covariance matrix for sampling.

    Tries the lower Cholesky factor of V + jitter*I. If the matrix is not
    numerically positive definite, falls back to its symmetric principal
    square root. Both factors F satisfy F @ F.T ≈ V + jitter*I.

    Parameters
    ----------
    V : np.ndarray
        Symmetric covariance matrix
    jitter : float
        Value added to the diagonal before factorizing

    Returns
    -------
    tuple
        (factor, method) with method 'cholesky' or 'sqrtm'

    Raises
    ------
    NumericalFailure
        If the square-root fallback is not finite either
    """
    V = np.asarray(V, dtype=float)
    Vj = 0.5 * (V + V.T) + jitter * np.eye(V.shape[0])

    try:
        return cholesky(Vj, lower=True), 'cholesky'
    except LinAlgError:
        message = "Cholesky factorization of the derivative covariance failed, using sqrtm"
        logger.warning(message)
        warnings.warn(message, CovarianceFallbackWarning, stacklevel=2)

    factor = np.real(sqrtm(Vj))
    if not np.all(np.isfinite(factor)):
        raise NumericalFailure("Matrix square root of the derivative covariance is not finite")
    return factor, 'sqrtm'


def _cho_solve(L, b):
    return solve_triangular(L.T, solve_triangular(L, b, lower=True), lower=False)


class PosteriorSolver:
    """
    Solve the GP regression for a covariance backend.

    Exact backends go through a Cholesky factorization of the ny x ny
    observation covariance. Reduced-rank backends are solved in the space of
    basis weights, which needs only an m x m factorization.

    Parameters
    ----------
    backend : CovarianceBackend
        Kernel supplier over scaled inputs
    jitter : float, optional
        Diagonal jitter for the derivative covariance factor. Default 1e-10.
    """

    def __init__(self, backend: CovarianceBackend, jitter: float = 1e-10):
        self.backend = backend
        self.jitter = jitter

    def solve(
        self,
        x: np.ndarray,
        y: np.ndarray,
        envelope: np.ndarray,
        noise_var: float,
        xt: np.ndarray,
        grid: np.ndarray
    ) -> DerivativePosterior:
        """
        Compute the derivative posterior.

        Parameters
        ----------
        x : np.ndarray
            Scaled observation locations
        y : np.ndarray
            Residual Tr - g1 at the observations
        envelope : np.ndarray
            g2 - g1 at the observations
        noise_var : float
            Measurement noise variance sig_m^2
        xt : np.ndarray
            Scaled test locations
        grid : np.ndarray
            Test locations in original units, stored on the result

        Returns
        -------
        DerivativePosterior
        """
        if not (np.isfinite(noise_var) and noise_var >= 0):
            raise NumericalFailure(f"Invalid noise variance {noise_var}")
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(envelope))):
            raise NumericalFailure("Observations or edge envelope are not finite")

        if self.backend.rank is None:
            posterior = self._solve_exact(x, y, envelope, noise_var, xt, grid)
        else:
            posterior = self._solve_reduced_rank(x, y, envelope, noise_var, xt, grid)

        for name in ('mean', 'transition'):
            if not np.all(np.isfinite(getattr(posterior, name))):
                raise NumericalFailure(f"Posterior {name} is not finite")
        return posterior

    def _solve_exact(self, x, y, d, noise_var, xt, grid):
        K = self.backend.covariance(x, x)
        Kyy = K * np.outer(d, d) + noise_var * np.eye(x.size)
        Kfyp = K * d
        dKfy = self.backend.cross_covariance(xt, x) * d
        ddKff = self.backend.derivative_covariance(xt, xt)

        try:
            C = cholesky(Kyy, lower=True)
        except LinAlgError as e:
            raise NumericalFailure(f"Observation covariance is not positive definite: {e}") from e

        alpha = _cho_solve(C, y)
        transition = Kfyp @ alpha
        g = dKfy @ alpha

        A = solve_triangular(C, dKfy.T, lower=True)
        V = ddKff - A.T @ A
        factor, method = covariance_factor(V, self.jitter)

        return DerivativePosterior(grid=grid, mean=g, factor=factor,
                                   transition=transition, method=method)

    def _solve_reduced_rank(self, x, y, d, noise_var, xt, grid):
        if not noise_var > 0:
            raise NumericalFailure("Reduced-rank solve needs a positive noise variance")

        root_weights = np.sqrt(self.backend.spectral_weights)
        Phi = self.backend.basis(x) * root_weights
        B = self.backend.basis_derivative(xt) * root_weights
        A = d[:, None] * Phi

        precision = np.eye(self.backend.rank) + A.T @ A / noise_var
        try:
            C = cholesky(precision, lower=True)
        except LinAlgError as e:
            raise NumericalFailure(f"Reduced-rank precision is not positive definite: {e}") from e

        mu = _cho_solve(C, A.T @ y / noise_var)
        # C^{-T} is a factor of the weight covariance
        weight_factor = solve_triangular(C.T, np.eye(self.backend.rank), lower=False)

        return DerivativePosterior(grid=grid, mean=B @ mu, factor=B @ weight_factor,
                                   transition=Phi @ mu, method='reduced_rank')
