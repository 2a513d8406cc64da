from __future__ import annotations

import numpy as np

from ..curve import Curve


def lin_plat_func(t, t1=45, t2=80, k=0.9):
    """Zero before t1, linear ramp to k at t2, then a plateau at k."""
    return np.select(
        [t < t1, t <= t2],
        [0.0, k / (t2 - t1) * (t - t1)],
        default=k,
    )


def quad_plat_func(t, t1=45, t2=80, b=1, k=100):
    """Quadratic ramp with initial slope b reaching k at t2, then a plateau."""
    c = (k - b * (t2 - t1)) / (t2 - t1) ** 2
    return np.select(
        [t < t1, t <= t2],
        [0.0, b * (t - t1) + c * (t - t1) ** 2],
        default=k,
    )


def quad_pl_sm_func(t, t1, t2, k):
    """Quadratic ramp meeting the plateau k at t2 with zero slope."""
    width = t2 - t1
    return np.select(
        [t < t1, t <= t2],
        [0.0, (-k / width**2) * (t - t1) ** 2 + (2.0 * k / width) * (t - t1)],
        default=k,
    )


def lin_pl_lin_func(t, t1, t2, t3, k, beta):
    """Linear ramp, plateau at k between t2 and t3, then a linear trend beta."""
    return np.select(
        [t < t1, t <= t2, t <= t3],
        [0.0, k / (t2 - t1) * (t - t1), k],
        default=k + beta * (t - t3),
    )


def lin_pl_lin2_func(t, t1, t2, dt, k, beta):
    """Same as lin_pl_lin with the plateau length dt in place of t3."""
    return lin_pl_lin_func(t, t1, t2, t2 + dt, k, beta)


def guess_ramp(x, y, g):
    """Seed breakpoints of ramp-to-plateau shapes from 5%/95% crossings."""
    k = float(np.max(y))
    if not np.isfinite(k) or k <= 0:
        return
    if g.is_unset("k"):
        g.k = k
    lo = np.nonzero(y > 0.05 * k)[0]
    hi = np.nonzero(y >= 0.95 * k)[0]
    if not lo.size or not hi.size:
        return
    t1 = float(x[max(lo[0] - 1, 0)])
    t2 = float(x[hi[0]])
    if t2 <= t1:
        t2 = t1 + max(float(np.ptp(x)) / 10.0, 1.0)
    if g.is_unset("t1"):
        g.t1 = t1
    if g.is_unset("t2"):
        g.t2 = t2


def guess_decline(x, y, g):
    """End-of-plateau and trend for the three-phase shapes."""
    if g.is_unset("t2") or g.is_unset("k"):
        return
    t2 = float(g.t2)
    after = x > t2
    t3 = float(0.5 * (t2 + np.max(x))) if np.any(after) else t2 + 1.0
    if g.is_unset("t3"):
        g.t3 = t3
    if g.is_unset("dt"):
        g.dt = t3 - t2
    tail = x > t3
    if g.is_unset("beta"):
        if np.count_nonzero(tail) >= 2 and np.ptp(x[tail]) > 0:
            g.beta = float(np.polyfit(x[tail], y[tail], 1)[0])
        else:
            g.beta = 0.0


def lin_plat(*, name: str = "lin_plat") -> Curve:
    """Return the linear-plateau Curve (t1, t2, k)."""
    return Curve.from_function(lin_plat_func, name=name).with_guesser(guess_ramp)


def quad_plat(*, name: str = "quad_plat") -> Curve:
    return Curve.from_function(quad_plat_func, name=name).with_guesser(guess_ramp)


def quad_pl_sm(*, name: str = "quad_pl_sm") -> Curve:
    return Curve.from_function(quad_pl_sm_func, name=name).with_guesser(guess_ramp)


def lin_pl_lin(*, name: str = "lin_pl_lin") -> Curve:
    """Return the linear-plateau-linear Curve (t1, t2, t3, k, beta)."""
    return (
        Curve.from_function(lin_pl_lin_func, name=name)
        .with_guesser(guess_ramp)
        .with_guesser(guess_decline)
    )


def lin_pl_lin2(*, name: str = "lin_pl_lin2") -> Curve:
    """Return the linear-plateau-linear Curve parameterised by plateau length dt."""
    return (
        Curve.from_function(lin_pl_lin2_func, name=name)
        .with_guesser(guess_ramp)
        .with_guesser(guess_decline)
    )
