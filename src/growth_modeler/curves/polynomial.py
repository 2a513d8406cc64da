from __future__ import annotations

import numpy as np

from ..curve import Curve


def lin_func(t, m, b):
    """Straight line y = m*t + b."""
    return m * t + b


def quad_func(t, a, b, c):
    """Quadratic y = a*t^2 + b*t + c."""
    return a * t**2 + b * t + c


def guess_lin(x, y, g):
    if x.size < 2 or np.ptp(x) == 0:
        return
    m, b = np.polyfit(x, y, 1)
    if g.is_unset("m"):
        g.m = float(m)
    if g.is_unset("b"):
        g.b = float(b)


def guess_quad(x, y, g):
    if x.size < 3 or np.unique(x).size < 3:
        return
    a, b, c = np.polyfit(x, y, 2)
    for name, v in (("a", a), ("b", b), ("c", c)):
        if g.is_unset(name):
            setattr(g, name, float(v))


def lin(*, name: str = "lin") -> Curve:
    """Return a straight line Curve with least-squares seeding."""
    return Curve.from_function(lin_func, name=name).with_guesser(guess_lin)


def quad(*, name: str = "quad") -> Curve:
    """Return a quadratic Curve with least-squares seeding."""
    return Curve.from_function(quad_func, name=name).with_guesser(guess_quad)
