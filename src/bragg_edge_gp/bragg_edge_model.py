"""
Bragg Edge Data Model

This module holds the data structures of a single-curve Bragg edge fit: the
measured transmission curve, the fit windows bracketing the edge, the
exponential baseline asymptotes, and the estimate returned to the caller.
It also provides TOF calibration, strain conversion, and a synthetic edge
generator used by the tests.

References:
    - Santisteban et al. (2001) - Bragg edge analysis for strain mapping
    - Hendriks et al. (2020) - Bayesian non-parametric Bragg-edge fitting
      for neutron transmission strain imaging
"""

import numpy as np
from scipy.special import erf
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .exceptions import ConfigurationError


# Physical constants
PLANCK_CONSTANT = 6.62607015e-34  # J·s
NEUTRON_MASS = 1.67492749804e-27  # kg
ANGSTROM_TO_METER = 1e-10


@dataclass
class TOFCalibration:
    """
    Time-of-Flight calibration parameters

    Attributes:
        flight_path: Distance from source to detector (meters)
        time_offset: Time offset correction (seconds)
    """
    flight_path: float
    time_offset: float = 0.0

    @property
    def seconds_per_angstrom(self) -> float:
        """TOF per unit wavelength, t = m_n * L * λ / h"""
        return NEUTRON_MASS * self.flight_path * ANGSTROM_TO_METER / PLANCK_CONSTANT

    def wavelength_to_tof(self, wavelength: np.ndarray) -> np.ndarray:
        """Convert wavelength (Angstrom) to TOF (seconds)"""
        return self.seconds_per_angstrom * np.asarray(wavelength) + self.time_offset

    def tof_to_wavelength(self, tof: np.ndarray) -> np.ndarray:
        """Convert TOF (seconds) to wavelength (Angstrom)"""
        return (np.asarray(tof) - self.time_offset) / self.seconds_per_angstrom

    def edge_to_wavelength(self, edge_position: float, sigma: float) -> Tuple[float, float]:
        """
        Convert a TOF edge estimate and its standard deviation to wavelength

        Args:
            edge_position: Edge location (seconds)
            sigma: Standard deviation of the location (seconds)

        Returns:
            Tuple of (wavelength, wavelength_std) in Angstrom
        """
        return (float(self.tof_to_wavelength(edge_position)),
                float(sigma / self.seconds_per_angstrom))


class TransmissionCurve:
    """
    Normalised transmission measured against time-of-flight

    The arrays are copied and made read-only, so a curve cannot change once
    it has been constructed.

    Args:
        tof: Time-of-flight (or wavelength) values, strictly increasing
        transmission: Normalised transmission, nominally in (0, 1]
    """

    def __init__(self, tof: Sequence[float], transmission: Sequence[float]):
        tof = np.array(tof, dtype=float).ravel()
        transmission = np.array(transmission, dtype=float).ravel()

        if tof.shape != transmission.shape:
            raise ValueError(
                f"tof and transmission lengths differ ({tof.size} != {transmission.size})"
            )
        if tof.size < 4:
            raise ValueError("A transmission curve needs at least 4 points")
        if not (np.all(np.isfinite(tof)) and np.all(np.isfinite(transmission))):
            raise ValueError("tof and transmission must be finite")
        if np.any(np.diff(tof) <= 0):
            raise ValueError("tof must be strictly increasing")

        tof.setflags(write=False)
        transmission.setflags(write=False)
        self._tof = tof
        self._transmission = transmission

    @property
    def tof(self) -> np.ndarray:
        return self._tof

    @property
    def transmission(self) -> np.ndarray:
        return self._transmission

    def __len__(self) -> int:
        return self._tof.size

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(n={len(self)}, "
                f"tof=[{self._tof[0]:.6g}, {self._tof[-1]:.6g}])")


@dataclass(frozen=True)
class FitWindow:
    """
    Index ranges of the flat regions on either side of the edge

    Both ranges are zero-based and inclusive at both ends.

    Attributes:
        pre_edge: (first, last) index of the region before the edge
        post_edge: (first, last) index of the region after the edge
    """
    pre_edge: Tuple[int, int]
    post_edge: Tuple[int, int]

    def __post_init__(self):
        i0, i1 = (int(i) for i in self.pre_edge)
        j0, j1 = (int(j) for j in self.post_edge)
        object.__setattr__(self, 'pre_edge', (i0, i1))
        object.__setattr__(self, 'post_edge', (j0, j1))

        if i0 < 0:
            raise ConfigurationError("Fit window indices must be non-negative")
        if i1 - i0 < 1 or j1 - j0 < 1:
            raise ConfigurationError("Each fit window needs at least 2 points")
        if not i1 < j0:
            raise ConfigurationError(
                f"Pre-edge window {self.pre_edge} must lie before "
                f"post-edge window {self.post_edge}"
            )

    @property
    def pre_slice(self) -> slice:
        return slice(self.pre_edge[0], self.pre_edge[1] + 1)

    @property
    def post_slice(self) -> slice:
        return slice(self.post_edge[0], self.post_edge[1] + 1)

    def validate_for(self, curve: TransmissionCurve):
        """Raise ConfigurationError if the window does not fit inside curve"""
        if self.post_edge[1] >= len(curve):
            raise ConfigurationError(
                f"Post-edge window {self.post_edge} exceeds curve length {len(curve)}"
            )

    @classmethod
    def from_ranges(
        cls,
        tof: np.ndarray,
        pre_range: Tuple[float, float],
        post_range: Tuple[float, float]
    ) -> 'FitWindow':
        """
        Build a window from TOF ranges instead of indices

        Args:
            tof: Time-of-flight array of the curve
            pre_range: (min, max) TOF of the pre-edge region
            post_range: (min, max) TOF of the post-edge region

        Returns:
            FitWindow selecting the points whose TOF lies in each closed range
        """
        tof = np.asarray(tof, dtype=float)

        def indices(bounds, label):
            inside = np.flatnonzero((tof >= bounds[0]) & (tof <= bounds[1]))
            if inside.size == 0:
                raise ConfigurationError(f"No points inside the {label} range {bounds}")
            return int(inside[0]), int(inside[-1])

        return cls(pre_edge=indices(pre_range, 'pre-edge'),
                   post_edge=indices(post_range, 'post-edge'))


def attenuation(t, a, b):
    """Exponential attenuation exp(-(a + b*t))"""
    return np.exp(-(a + b * t))


@dataclass(frozen=True)
class BaselineParameters:
    """
    Asymptotes on either side of the edge

    The transmission far after the edge is exp(-(a0 + b0*t)); before the
    edge it carries the additional factor exp(-(a_hkl + b_hkl*t)).
    """
    a0: float
    b0: float
    a_hkl: float
    b_hkl: float

    def post_edge(self, t: np.ndarray) -> np.ndarray:
        """Post-edge asymptote g2(t)"""
        return attenuation(t, self.a0, self.b0)

    def pre_edge(self, t: np.ndarray) -> np.ndarray:
        """Pre-edge asymptote g1(t)"""
        return attenuation(t, self.a0, self.b0) * attenuation(t, self.a_hkl, self.b_hkl)

    def envelope(self, t: np.ndarray) -> np.ndarray:
        """Height of the edge g2(t) - g1(t), which scales the transition"""
        return self.post_edge(t) - self.pre_edge(t)

    def transmission(self, t: np.ndarray, transition: np.ndarray) -> np.ndarray:
        """Recombine the asymptotes with a transition function in [0, 1]"""
        return self.pre_edge(t) + self.envelope(t) * transition

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite([self.a0, self.b0, self.a_hkl, self.b_hkl])))


@dataclass(frozen=True)
class EdgeEstimate:
    """
    Edge location and its standard deviation

    Attributes:
        edge_position: Edge location, in the units of the curve's TOF axis
        sigma: Standard deviation of the location
    """
    edge_position: float
    sigma: float

    def is_finite(self) -> bool:
        return bool(np.isfinite(self.edge_position) and np.isfinite(self.sigma))


def edge_function(
    t: np.ndarray,
    position: float,
    width: float,
    edge_type: str = 'erf'
) -> np.ndarray:
    """
    Transition function rising from 0 before the edge to 1 after it

    Args:
        t: Time-of-flight array
        position: Edge position
        width: Edge width/broadening
        edge_type: Type of edge function ('erf', 'tanh', 'step')

    Returns:
        Edge function values (0 to 1)
    """
    t = np.asarray(t, dtype=float)
    if edge_type == 'erf':
        # E(t) = 0.5 * (1 + erf((t - t_edge) / (√2 * σ)))
        return 0.5 * (1 + erf((t - position) / (np.sqrt(2) * width)))
    elif edge_type == 'tanh':
        return 0.5 * (1 + np.tanh((t - position) / width))
    elif edge_type == 'step':
        return (t >= position).astype(float)
    else:
        raise ValueError(f"Unknown edge type: {edge_type}")


def simulate_edge_curve(
    tof: np.ndarray,
    position: float,
    width: float,
    baseline: BaselineParameters,
    noise_std: float = 0.0,
    edge_type: str = 'erf',
    rng: Optional[np.random.Generator] = None
) -> TransmissionCurve:
    """
    Simulate a transmission curve with a single Bragg edge

    T(t) = g1(t) + (g2(t) - g1(t)) * E(t) + noise

    Args:
        tof: Time-of-flight grid
        position: True edge position
        width: Edge width
        baseline: Asymptotes on either side of the edge
        noise_std: Standard deviation of additive Gaussian noise
        edge_type: Shape of the transition ('erf', 'tanh', 'step')
        rng: Random generator for the noise (a fresh one if None)

    Returns:
        Simulated TransmissionCurve
    """
    tof = np.asarray(tof, dtype=float)
    transmission = baseline.transmission(tof, edge_function(tof, position, width, edge_type))

    if noise_std > 0:
        if rng is None:
            rng = np.random.default_rng()
        transmission = transmission + rng.normal(0.0, noise_std, tof.size)

    return TransmissionCurve(tof, transmission)


def strain_from_edge(
    edge_position: float,
    sigma: float,
    reference: float
) -> Tuple[float, float]:
    """
    Lattice strain from a fitted edge position

    ε = (t_edge - t_0) / t_0, with t_0 the unstrained edge position in the
    same units as the fit.

    Args:
        edge_position: Fitted edge position
        sigma: Standard deviation of the edge position
        reference: Unstrained edge position

    Returns:
        Tuple of (strain, strain_std)
    """
    if reference == 0:
        raise ValueError("Reference edge position must be non-zero")
    return (edge_position - reference) / reference, sigma / abs(reference)
