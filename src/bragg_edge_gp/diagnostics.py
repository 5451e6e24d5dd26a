"""
Fit-quality diagnostics of a Bragg edge fit.
"""

import logging
import warnings
from dataclasses import asdict, dataclass
from typing import Dict, Tuple

import numpy as np

from .exceptions import FitQualityWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitDiagnostics:
    """
    Quality measures of a fit

    Attributes:
        lengthscale: Kernel lengthscale used (scaled input units)
        std_residual: Standard deviation of Tr - TrFit
        rms_residual: Root mean square of Tr - TrFit
        fitqual: sig_m / std_residual; near 1 for a good fit
        widthathalfheight: Width of the derivative peak at half its height
        noise_std: Empirical measurement noise sig_m
        covariance_method: How the derivative covariance was factored
    """
    lengthscale: float
    std_residual: float
    rms_residual: float
    fitqual: float
    widthathalfheight: float
    noise_std: float = np.nan
    covariance_method: str = ''

    @classmethod
    def failed(cls) -> 'FitDiagnostics':
        return cls(np.nan, np.nan, np.nan, np.nan, np.nan, np.nan, 'failed')

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return asdict(self)


def half_height_crossings(x: np.ndarray, g: np.ndarray, level: float) -> np.ndarray:
    """
    Locations where the polyline (x, g) crosses a horizontal line.

    Each segment is intersected with the line by linear interpolation.
    Vertices lying exactly on the line count once.

    Parameters
    ----------
    x : np.ndarray
        Increasing locations
    g : np.ndarray
        Curve values at x
    level : float
        Height of the horizontal line

    Returns
    -------
    np.ndarray
        Sorted crossing locations
    """
    x = np.asarray(x, dtype=float)
    s = np.asarray(g, dtype=float) - level

    crossings = list(x[s == 0])
    i = np.flatnonzero(s[:-1] * s[1:] < 0)
    crossings.extend(x[i] + (x[i + 1] - x[i]) * s[i] / (s[i] - s[i + 1]))
    return np.unique(crossings)


def width_at_half_height(x: np.ndarray, g: np.ndarray) -> float:
    """
    Width of the derivative peak at half its maximum.

    Returns NaN unless the curve crosses the half-height line exactly twice.
    """
    crossings = half_height_crossings(x, g, np.max(g) / 2)
    if crossings.size != 2:
        return np.nan
    return float(crossings[1] - crossings[0])


def residual_statistics(transmission: np.ndarray, fitted: np.ndarray) -> Tuple[float, float]:
    """Standard deviation and RMS of the residual Tr - TrFit"""
    residual = np.asarray(transmission) - np.asarray(fitted)
    return float(np.std(residual, ddof=1)), float(np.sqrt(np.mean(residual ** 2)))


def check_fit_quality(fitqual: float, bounds: Tuple[float, float] = (0.5, 2.0)) -> bool:
    """
    Warn if sig_m / std(residual) lies on or outside bounds, or is NaN.

    Returns
    -------
    bool
        True if the value is strictly inside the bounds
    """
    low, high = bounds
    if np.isnan(fitqual):
        message = ("The ratio of sig_m/std(residual) is undefined (0/0), the fit "
                   "quality cannot be assessed")
    elif fitqual >= high:
        message = (f"The ratio of sig_m/std(residual) is high ({fitqual:.4g}), indicating "
                   "that the data may have been overfit. Consider increasing the lengthscale")
    elif fitqual <= low:
        message = (f"The ratio of sig_m/std(residual) is low ({fitqual:.4g}), indicating "
                   "that the data may have been underfit. Consider decreasing the lengthscale")
    else:
        return True

    logger.warning(message)
    warnings.warn(message, FitQualityWarning, stacklevel=2)
    return False


class ResultAssembler:
    """
    Assemble the diagnostics of a completed fit

    Parameters
    ----------
    quality_bounds : tuple of float
        Limits of sig_m / std(residual) outside which a FitQualityWarning is
        emitted
    """

    def __init__(self, quality_bounds: Tuple[float, float] = (0.5, 2.0)):
        self.quality_bounds = quality_bounds

    def assemble(
        self,
        transmission: np.ndarray,
        fitted: np.ndarray,
        noise_std: float,
        lengthscale: float,
        grid: np.ndarray,
        derivative_mean: np.ndarray,
        covariance_method: str
    ) -> FitDiagnostics:
        """
        Compute residual statistics, the fit quality and the edge width.

        Parameters
        ----------
        transmission : np.ndarray
            Measured transmission
        fitted : np.ndarray
            Reconstructed transmission at the same points
        noise_std : float
            Empirical measurement noise sig_m
        lengthscale : float
            Lengthscale used by the kernel
        grid : np.ndarray
            Test grid of the derivative posterior
        derivative_mean : np.ndarray
            Posterior mean of the derivative on grid
        covariance_method : str
            Factorization used for the derivative covariance

        Returns
        -------
        FitDiagnostics
        """
        std_residual, rms_residual = residual_statistics(transmission, fitted)
        with np.errstate(divide='ignore', invalid='ignore'):
            fitqual = float(np.divide(noise_std, std_residual))
        check_fit_quality(fitqual, self.quality_bounds)

        return FitDiagnostics(
            lengthscale=float(lengthscale),
            std_residual=std_residual,
            rms_residual=rms_residual,
            fitqual=fitqual,
            widthathalfheight=width_at_half_height(grid, derivative_mean),
            noise_std=float(noise_std),
            covariance_method=covariance_method
        )
