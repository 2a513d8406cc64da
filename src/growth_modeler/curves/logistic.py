from __future__ import annotations

import numpy as np

from ..curve import Curve
from .plateau import guess_ramp


def logistic_func(t, a, t0, k):
    """Logistic y = k / (1 + exp(-a*(t - t0)))."""
    return k / (1.0 + np.exp(-a * (t - t0)))


def lin_logis_func(t, t1, t2, k):
    """Linear ramp from t1 to t2 reaching k/2, then a logistic approach to k.

    The two pieces meet at t2 with value k/2 and matching slope.
    """
    width = t2 - t1
    return np.select(
        [t < t1, t < t2],
        [0.0, k / 2.0 / width * (t - t1)],
        default=k / (1.0 + np.exp(-2.0 * (t - t2) / width)),
    )


def guess_logistic(x, y, g):
    """k from the observed maximum, t0 at half height, a from the rise width."""
    k = float(np.max(y))
    if not np.isfinite(k) or k <= 0:
        return
    if g.is_unset("k"):
        g.k = k
    above = np.nonzero(y >= 0.5 * k)[0]
    t0 = float(x[above[0]]) if above.size else float(np.median(x))
    if g.is_unset("t0"):
        g.t0 = t0
    lo = np.nonzero(y >= 0.1 * k)[0]
    hi = np.nonzero(y >= 0.9 * k)[0]
    if lo.size and hi.size and x[hi[0]] > x[lo[0]]:
        # 10%-90% rise of a logistic spans 2*ln(9)/a
        a = 2.0 * np.log(9.0) / float(x[hi[0]] - x[lo[0]])
    else:
        a = 4.0 / max(float(np.ptp(x)), 1e-12)
    if g.is_unset("a"):
        g.a = float(a)


def logistic(*, name: str = "logistic") -> Curve:
    """Return a three-parameter logistic Curve.

    Parameters in the curve
    -----------------------
    a  : growth rate
    t0 : inflection point
    k  : upper asymptote
    """
    return Curve.from_function(logistic_func, name=name).with_guesser(guess_logistic)


def lin_logis(*, name: str = "lin_logis") -> Curve:
    """Return a linear-then-logistic Curve."""
    return Curve.from_function(lin_logis_func, name=name).with_guesser(guess_ramp)
