"""
Configuration for the Gaussian Process Bragg edge fit

All options are validated once, when the configuration objects are built.
An invalid combination raises ConfigurationError before any fitting starts.
"""

from dataclasses import dataclass, field, fields, replace
from numbers import Real
from typing import Any, Dict, Mapping, Tuple

from .exceptions import ConfigurationError


GP_SCHEMES = ('full', 'interp', 'hilbertspace')
HP_MODES = ('none', 'all')
COVARIANCE_FUNCTIONS = ('se',)


@dataclass(frozen=True)
class BaselineGuess:
    """
    Initial guesses for the two exponential asymptotes

    Attributes:
        a0: Intercept of the post-edge attenuation exp(-(a0 + b0*t))
        b0: Slope of the post-edge attenuation
        a_hkl: Intercept of the additional pre-edge attenuation
        b_hkl: Slope of the additional pre-edge attenuation
    """
    a0: float = 0.5
    b0: float = 0.5
    a_hkl: float = 0.5
    b_hkl: float = 0.5


@dataclass(frozen=True)
class GPHyperparameters:
    """
    Squared-exponential GP hyperparameters and Monte-Carlo settings

    Attributes:
        sig_f: Output scale of the kernel
        l: Lengthscale, in rescaled [0, 1] input units
        ns: Number of posterior samples drawn to estimate the edge spread
        nx: Number of test points the edge is located on
    """
    sig_f: float = 1.0
    l: float = 1e-4
    ns: int = 3000
    nx: int = 2500

    def __post_init__(self):
        if not self.l > 0:
            raise ConfigurationError(f"Lengthscale must be positive, got {self.l}")
        if not self.sig_f > 0:
            raise ConfigurationError(f"sig_f must be positive, got {self.sig_f}")
        for name, minimum in (('ns', 1), ('nx', 2)):
            value = getattr(self, name)
            if (isinstance(value, bool) or not isinstance(value, Real)
                    or int(value) != value or value < minimum):
                raise ConfigurationError(
                    f"{name} must be an integer >= {minimum}, got {value!r}"
                )
            # 2500.0 is accepted but stored as 2500
            object.__setattr__(self, name, int(value))


@dataclass(frozen=True)
class EdgeFitConfig:
    """
    Complete configuration of a single-curve edge fit

    Attributes:
        baseline_guess: Initial guesses for the two baseline fits
        hyperparameters: Kernel hyperparameters and sample/grid sizes
        gp_scheme: 'full' (exact kernel on the nx grid), 'interp' (exact
            kernel on a coarse grid, cubic interpolation to nx points) or
            'hilbertspace' (reduced-rank kernel on the nx grid)
        optimise_hp: 'none' or 'all' (optimise the lengthscale by marginal
            likelihood)
        covfunc: Covariance function; only 'se' is implemented
        jitter: Diagonal jitter added before factorizing the derivative
            covariance
        n_basis: Number of basis functions of the reduced-rank kernel
        domain_half_width: Half-width L of the reduced-rank domain, in scaled
            input units; must contain [0, 1]
        quality_bounds: (low, high) limits of sig_m / std(residual) outside
            which a FitQualityWarning is emitted
    """
    baseline_guess: BaselineGuess = field(default_factory=BaselineGuess)
    hyperparameters: GPHyperparameters = field(default_factory=GPHyperparameters)
    gp_scheme: str = 'interp'
    optimise_hp: str = 'none'
    covfunc: str = 'se'
    jitter: float = 1e-10
    n_basis: int = 100
    domain_half_width: float = 2.0
    quality_bounds: Tuple[float, float] = (0.5, 2.0)

    def __post_init__(self):
        if not isinstance(self.baseline_guess, BaselineGuess):
            raise ConfigurationError(
                f"baseline_guess must be a BaselineGuess, got {type(self.baseline_guess).__name__}"
            )
        if not isinstance(self.hyperparameters, GPHyperparameters):
            raise ConfigurationError(
                "hyperparameters must be a GPHyperparameters, "
                f"got {type(self.hyperparameters).__name__}"
            )

        # Option names are matched case-insensitively
        object.__setattr__(self, 'gp_scheme', str(self.gp_scheme).lower())
        object.__setattr__(self, 'optimise_hp', str(self.optimise_hp).lower())
        object.__setattr__(self, 'covfunc', str(self.covfunc).lower())

        if self.gp_scheme not in GP_SCHEMES:
            raise ConfigurationError(
                f"Invalid GP scheme '{self.gp_scheme}', "
                f"should be one of {', '.join(GP_SCHEMES)}"
            )
        if self.covfunc not in COVARIANCE_FUNCTIONS:
            raise ConfigurationError(
                f"The {self.gp_scheme} GP scheme is only implemented for the "
                f"squared-exponential covariance function, got '{self.covfunc}'"
            )
        if self.optimise_hp not in HP_MODES:
            raise ConfigurationError(
                f"optimise_hp must be one of {', '.join(HP_MODES)}, "
                f"got '{self.optimise_hp}'"
            )
        if not self.jitter >= 0:
            raise ConfigurationError(f"jitter must be non-negative, got {self.jitter}")
        if int(self.n_basis) != self.n_basis or self.n_basis < 1:
            raise ConfigurationError(f"n_basis must be a positive integer, got {self.n_basis}")
        if not self.domain_half_width > 1.0:
            raise ConfigurationError(
                "domain_half_width must exceed 1 so the basis covers the "
                f"scaled inputs, got {self.domain_half_width}"
            )
        low, high = self.quality_bounds
        if not 0 < low < high:
            raise ConfigurationError(f"Invalid quality_bounds {self.quality_bounds}")

    def with_hyperparameters(self, **changes) -> 'EdgeFitConfig':
        """Return a copy with some hyperparameters replaced"""
        return replace(self, hyperparameters=replace(self.hyperparameters, **changes))

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> 'EdgeFitConfig':
        """
        Build a configuration from a flat option mapping

        Accepts the option names used by the strain-imaging scripts:
        a00, b00, a_hkl0, b_hkl0, sig_f, l, ns, nx, GPscheme, optimiseHP,
        covfunc. Unknown keys raise ConfigurationError.

        Args:
            options: Mapping of option name to value

        Returns:
            Validated EdgeFitConfig
        """
        guess_keys = {'a00': 'a0', 'b00': 'b0', 'a_hkl0': 'a_hkl', 'b_hkl0': 'b_hkl'}
        hp_keys = {f.name for f in fields(GPHyperparameters)}
        top_keys = {'GPscheme': 'gp_scheme', 'optimiseHP': 'optimise_hp', 'covfunc': 'covfunc'}

        unknown = set(options) - set(guess_keys) - hp_keys - set(top_keys)
        if unknown:
            raise ConfigurationError(f"Unknown options: {', '.join(sorted(unknown))}")

        guess: Dict[str, Any] = {guess_keys[k]: v for k, v in options.items() if k in guess_keys}
        hp: Dict[str, Any] = {k: v for k, v in options.items() if k in hp_keys}
        top: Dict[str, Any] = {top_keys[k]: v for k, v in options.items() if k in top_keys}

        return cls(
            baseline_guess=BaselineGuess(**guess),
            hyperparameters=GPHyperparameters(**hp),
            **top
        )
