"""
Two-stage baseline fit of the asymptotes on either side of a Bragg edge

1) Far after the edge the transition is complete, so only exp(-(a0 + b0*t))
   is fitted to the post-edge window.
2) Far before the edge the transition has not started; with (a0, b0) held
   fixed, exp(-(a0 + b0*t)) * exp(-(a_hkl + b_hkl*t)) is fitted to the
   pre-edge window.

Both stages use lmfit's 'leastsq' method (MINPACK Levenberg-Marquardt) with a
finite-difference Jacobian.
"""

import logging

import numpy as np
from lmfit import Model

from .bragg_edge_model import (
    BaselineParameters,
    FitWindow,
    TransmissionCurve,
    attenuation
)
from .config import BaselineGuess
from .exceptions import NumericalFailure

logger = logging.getLogger(__name__)


def _edge_attenuation(t, a_hkl, b_hkl, a0, b0):
    return attenuation(t, a0, b0) * attenuation(t, a_hkl, b_hkl)


class BaselineFitter:
    """
    Fit the post-edge and pre-edge asymptotes of a transmission curve

    Parameters
    ----------
    guess : BaselineGuess, optional
        Initial values of a0, b0, a_hkl and b_hkl. Defaults to 0.5 each.
    """

    def __init__(self, guess: BaselineGuess = None):
        self.guess = guess if guess is not None else BaselineGuess()
        self._post_model = Model(attenuation, independent_vars=['t'])
        self._pre_model = Model(_edge_attenuation, independent_vars=['t'])

    def fit(self, curve: TransmissionCurve, window: FitWindow) -> BaselineParameters:
        """
        Run both baseline fits.

        Parameters
        ----------
        curve : TransmissionCurve
            Measured curve
        window : FitWindow
            Pre-edge and post-edge index ranges

        Returns
        -------
        BaselineParameters
            The fitted asymptotes

        Raises
        ------
        NumericalFailure
            If either least-squares fit fails or returns non-finite values
        """
        tof, tr = curve.tof, curve.transmission

        params = self._post_model.make_params(a=self.guess.a0, b=self.guess.b0)
        post = self._run(self._post_model, params, tof[window.post_slice],
                         tr[window.post_slice], 'post-edge')
        a0, b0 = post.params['a'].value, post.params['b'].value

        params = self._pre_model.make_params(a_hkl=self.guess.a_hkl, b_hkl=self.guess.b_hkl,
                                             a0=a0, b0=b0)
        params['a0'].set(vary=False)
        params['b0'].set(vary=False)
        pre = self._run(self._pre_model, params, tof[window.pre_slice],
                        tr[window.pre_slice], 'pre-edge')

        baseline = BaselineParameters(a0=a0, b0=b0,
                                      a_hkl=pre.params['a_hkl'].value,
                                      b_hkl=pre.params['b_hkl'].value)
        if not baseline.is_finite():
            raise NumericalFailure(f"Baseline fit produced non-finite parameters: {baseline}")

        logger.debug("Baseline fit: %s", baseline)
        return baseline

    @staticmethod
    def _run(model, params, t, data, label):
        try:
            result = model.fit(data, params, t=t, method='leastsq')
        except (ValueError, TypeError, FloatingPointError) as e:
            raise NumericalFailure(f"The {label} baseline fit failed: {e}") from e

        if not result.success:
            raise NumericalFailure(
                f"The {label} baseline fit did not converge: {result.message}"
            )
        values = [p.value for p in result.params.values()]
        if not np.all(np.isfinite(values)):
            raise NumericalFailure(f"The {label} baseline fit returned non-finite values")
        return result
