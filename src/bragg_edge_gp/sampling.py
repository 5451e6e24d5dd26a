"""
Monte-Carlo edge location from the derivative posterior.

The edge is the inflection of the transition function, i.e. the maximum of
its derivative. Sampling the derivative posterior and taking the arg-max of
each realization turns the full posterior uncertainty into a distribution of
edge locations.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.interpolate import interp1d

from .bragg_edge_model import EdgeEstimate
from .exceptions import NumericalFailure
from .posterior import DerivativePosterior


@dataclass
class EdgeLocations:
    """
    Edge locations of every Monte-Carlo candidate

    Attributes:
        estimate: Mean and standard deviation of the locations
        locations: Location of each candidate; the first is the posterior
            mean, followed by the ns sampled realizations
    """
    estimate: EdgeEstimate
    locations: np.ndarray


class MonteCarloEdgeLocator:
    """
    Locate the edge by sampling the derivative posterior

    Parameters
    ----------
    ns : int
        Number of posterior realizations
    target_grid : np.ndarray, optional
        Finer grid to cubic-interpolate the mean and every realization onto
        before taking the arg-max. If None, the posterior grid is used.
    """

    def __init__(self, ns: int, target_grid: Optional[np.ndarray] = None):
        self.ns = int(ns)
        self.target_grid = target_grid

    def sample(self, posterior: DerivativePosterior, rng: np.random.Generator) -> np.ndarray:
        """
        Draw derivative realizations on the posterior grid.

        Returns
        -------
        np.ndarray
            Array of shape (len(grid), ns)
        """
        z = rng.standard_normal((posterior.factor.shape[1], self.ns))
        return posterior.mean[:, None] + posterior.factor @ z

    def locate(self, posterior: DerivativePosterior, rng: np.random.Generator) -> EdgeLocations:
        """
        Estimate the edge location and its standard deviation.

        Parameters
        ----------
        posterior : DerivativePosterior
            Derivative posterior on the test grid
        rng : np.random.Generator
            Source of the standard-normal draws

        Returns
        -------
        EdgeLocations
            Mean and standard deviation over the ns + 1 candidates
        """
        candidates = np.column_stack([posterior.mean, self.sample(posterior, rng)])
        grid = posterior.grid

        if self.target_grid is not None:
            candidates = interp1d(grid, candidates, kind='cubic', axis=0)(self.target_grid)
            grid = self.target_grid

        if not np.all(np.isfinite(candidates)):
            raise NumericalFailure("Posterior derivative samples are not finite")

        locations = grid[np.argmax(candidates, axis=0)]
        estimate = EdgeEstimate(edge_position=float(np.mean(locations)),
                                sigma=float(np.std(locations, ddof=1)))
        return EdgeLocations(estimate=estimate, locations=locations)
