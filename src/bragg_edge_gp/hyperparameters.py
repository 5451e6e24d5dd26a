"""
Lengthscale optimisation by marginal likelihood

The lengthscale is optimised in log-space, starting from l = 1, with the
analytic gradient of the negative log marginal likelihood.
"""

import logging
from typing import Tuple

import numpy as np
from scipy.linalg import cholesky, cho_solve
from scipy.optimize import minimize

from .exceptions import NumericalFailure
from .kernels import SquaredExponentialKernel

logger = logging.getLogger(__name__)


def negative_log_marginal_likelihood(
    log_l: float,
    x: np.ndarray,
    y: np.ndarray,
    envelope: np.ndarray,
    noise_var: float,
    sig_f: float = 1.0
) -> Tuple[float, float]:
    """
    Negative log marginal likelihood and its gradient with respect to log(l)

    Model: y ~ N(0, K ∘ (d dᵀ) + sig_m² I) with K the squared-exponential
    kernel and d the edge envelope g2 - g1.

    Args:
        log_l: Logarithm of the lengthscale
        x: Scaled observation locations
        y: Residual Tr - g1 at the observations
        envelope: g2 - g1 at the observations
        noise_var: Measurement noise variance
        sig_f: Kernel output scale

    Returns:
        Tuple of (nlml, d nlml / d log_l)
    """
    log_l = float(np.ravel(log_l)[0])
    kernel = SquaredExponentialKernel(sig_f, np.exp(log_l))
    weights = np.outer(envelope, envelope)

    Kyy = kernel.covariance(x, x) * weights + noise_var * np.eye(x.size)
    C = cholesky(Kyy, lower=True)
    alpha = cho_solve((C, True), y)

    nlml = (0.5 * y @ alpha + np.sum(np.log(np.diag(C)))
            + 0.5 * x.size * np.log(2 * np.pi))

    dK = kernel.lengthscale_derivative(x, x) * weights
    inner = cho_solve((C, True), np.eye(x.size)) - np.outer(alpha, alpha)
    grad = 0.5 * np.sum(inner * dK)

    return float(nlml), float(grad)


def optimise_lengthscale(
    x: np.ndarray,
    y: np.ndarray,
    envelope: np.ndarray,
    noise_var: float,
    sig_f: float = 1.0,
    min_lengthscale: float = 0.0
) -> float:
    """
    Find the lengthscale that minimises the negative log marginal likelihood.

    Args:
        x: Scaled observation locations
        y: Residual Tr - g1 at the observations
        envelope: g2 - g1 at the observations
        noise_var: Measurement noise variance
        sig_f: Kernel output scale
        min_lengthscale: Floor applied to the optimum

    Returns:
        Optimised lengthscale, at least min_lengthscale
    """
    result = minimize(
        negative_log_marginal_likelihood,
        x0=np.zeros(1),
        args=(x, y, envelope, noise_var, sig_f),
        jac=True,
        method='BFGS'
    )

    lengthscale = float(np.exp(result.x[0]))
    if not np.isfinite(lengthscale):
        raise NumericalFailure(f"Lengthscale optimisation diverged: {result.message}")

    logger.debug("Optimised lengthscale %.4g (nlml %.4g, %s)", lengthscale, result.fun,
                 result.message)
    return max(min_lengthscale, lengthscale)
