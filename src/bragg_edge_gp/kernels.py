"""
Covariance backends for the GP transition function.

Every backend works on inputs rescaled to [0, 1] and describes the prior of
the unscaled transition function f. The edge envelope g2 - g1 is applied by
the posterior solver, so a backend only has to provide the kernel, its
derivative with respect to the test input, and the mixed second derivative.

Two backends are provided:

- SquaredExponentialKernel: the exact kernel
  k(x, x') = sig_f^2 exp(-0.5 (x - x')^2 / l^2)
- HilbertSpaceKernel: a reduced-rank approximation of the same kernel by a
  finite sine basis on [-L, L] (Solin & Sarkka, 2020)
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np


class InputScaler:
    """
    Affine map of the observed inputs onto [0, 1]

    The map is fixed by the observations and must be reused for every test
    grid so that observation and test inputs share one coordinate system.

    Parameters
    ----------
    x_obs : np.ndarray
        Observed inputs; their min and max define the map
    """

    def __init__(self, x_obs: np.ndarray):
        x_obs = np.asarray(x_obs, dtype=float)
        self.xmin = float(np.min(x_obs))
        self.xmax = float(np.max(x_obs))
        if not self.xmax > self.xmin:
            raise ValueError("Cannot rescale inputs with zero range")

    @property
    def span(self) -> float:
        return self.xmax - self.xmin

    def transform(self, x: np.ndarray) -> np.ndarray:
        return (np.asarray(x, dtype=float) - self.xmin) / self.span

    def inverse_transform(self, xs: np.ndarray) -> np.ndarray:
        return np.asarray(xs, dtype=float) * self.span + self.xmin


class CovarianceBackend(ABC):
    """
    Interface of a covariance supplier for the transition function.

    All inputs are 1-D arrays of scaled locations. Outputs are matrices of
    shape (len(x1), len(x2)).
    """

    #: Number of basis functions for reduced-rank backends, None if exact
    rank: Optional[int] = None

    def __init__(self, sig_f: float, l: float):
        self.sig_f = float(sig_f)
        self.l = float(l)

    @abstractmethod
    def covariance(self, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        """Prior covariance cov(f(x1), f(x2))"""

    @abstractmethod
    def cross_covariance(self, xt: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Covariance between the derivative f'(xt) and f(x)"""

    @abstractmethod
    def derivative_covariance(self, xt1: np.ndarray, xt2: np.ndarray) -> np.ndarray:
        """Covariance between the derivatives f'(xt1) and f'(xt2)"""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(sig_f={self.sig_f:g}, l={self.l:g})"


class SquaredExponentialKernel(CovarianceBackend):
    """
    Exact squared-exponential kernel and its derivative kernels

    Parameters
    ----------
    sig_f : float
        Output scale
    l : float
        Lengthscale in scaled input units
    """

    def _base(self, x1, x2):
        r = np.subtract.outer(np.asarray(x1, dtype=float), np.asarray(x2, dtype=float))
        return r, self.sig_f ** 2 * np.exp(-0.5 * r ** 2 / self.l ** 2)

    def covariance(self, x1, x2):
        return self._base(x1, x2)[1]

    def cross_covariance(self, xt, x):
        r, k = self._base(xt, x)
        return -r / self.l ** 2 * k

    def derivative_covariance(self, xt1, xt2):
        r, k = self._base(xt1, xt2)
        return (1 - r ** 2 / self.l ** 2) / self.l ** 2 * k

    def lengthscale_derivative(self, x1, x2):
        """Derivative of the kernel with respect to log(l)"""
        r, k = self._base(x1, x2)
        return k * r ** 2 / self.l ** 2


class HilbertSpaceKernel(CovarianceBackend):
    """
    Reduced-rank approximation of the squared-exponential kernel

    k(x, x') ≈ Σ_j S(λ_j) φ_j(x) φ_j(x'),  φ_j(x) = sin(λ_j (x + L)) / √L,
    λ_j = π j / (2L) for j = 1..m, and S the spectral density of the
    squared-exponential kernel.

    Parameters
    ----------
    sig_f : float
        Output scale
    l : float
        Lengthscale in scaled input units
    n_basis : int
        Number of basis functions m
    domain_half_width : float
        Half-width L of the domain; must contain the scaled inputs
    """

    def __init__(self, sig_f: float, l: float, n_basis: int = 100,
                 domain_half_width: float = 2.0):
        super().__init__(sig_f, l)
        self.n_basis = int(n_basis)
        self.L = float(domain_half_width)
        self.rank = self.n_basis
        self.frequencies = np.pi * np.arange(1, self.n_basis + 1) / (2 * self.L)
        self.spectral_weights = self.spectral_density(self.frequencies)

    def spectral_density(self, w: np.ndarray) -> np.ndarray:
        """S(ω) = sig_f^2 l √(2π) exp(-ω² l² / 2)"""
        w = np.asarray(w, dtype=float)
        return self.sig_f ** 2 * self.l * np.sqrt(2 * np.pi) * np.exp(-w ** 2 * self.l ** 2 / 2)

    def basis(self, x: np.ndarray) -> np.ndarray:
        """Basis functions evaluated at x, shape (len(x), m)"""
        x = np.asarray(x, dtype=float)
        return np.sin(np.outer(x + self.L, self.frequencies)) / np.sqrt(self.L)

    def basis_derivative(self, x: np.ndarray) -> np.ndarray:
        """Derivative of the basis functions at x, shape (len(x), m)"""
        x = np.asarray(x, dtype=float)
        return self.frequencies * np.cos(np.outer(x + self.L, self.frequencies)) / np.sqrt(self.L)

    def approximate(
        self,
        x_test: np.ndarray,
        x_obs: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluate the approximation at observation and test points.

        Parameters
        ----------
        x_test : np.ndarray
            Scaled test locations
        x_obs : np.ndarray
            Scaled observation locations

        Returns
        -------
        tuple
            (Phi, Phi_test, spectral_weights, frequencies, dPhi_test)
        """
        return (self.basis(x_obs), self.basis(x_test), self.spectral_weights,
                self.frequencies, self.basis_derivative(x_test))

    def covariance(self, x1, x2):
        return (self.basis(x1) * self.spectral_weights) @ self.basis(x2).T

    def cross_covariance(self, xt, x):
        return (self.basis_derivative(xt) * self.spectral_weights) @ self.basis(x).T

    def derivative_covariance(self, xt1, xt2):
        return (self.basis_derivative(xt1) * self.spectral_weights) @ self.basis_derivative(xt2).T

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(sig_f={self.sig_f:g}, l={self.l:g}, "
                f"n_basis={self.n_basis}, L={self.L:g})")


def make_backend(gp_scheme: str, sig_f: float, l: float, n_basis: int = 100,
                 domain_half_width: float = 2.0) -> CovarianceBackend:
    """Build the covariance backend used by a GP scheme"""
    if gp_scheme == 'hilbertspace':
        return HilbertSpaceKernel(sig_f, l, n_basis, domain_half_width)
    return SquaredExponentialKernel(sig_f, l)
