from __future__ import annotations

import numpy as np

from ..curve import Curve


def exp_lin_func(t, t1, t2, alpha, beta):
    """Exponential rise exp(alpha*(t - t1)) - 1 on [t1, t2], then linear slope beta."""
    y2 = np.exp(alpha * (t2 - t1)) - 1.0
    return np.select(
        [t < t1, t <= t2],
        [0.0, np.exp(alpha * (t - t1)) - 1.0],
        default=beta * (t - t2) + y2,
    )


def exp2_lin_func(t, t1, t2, alpha, beta):
    """Like exp_lin with a squared exponent exp(alpha*(t - t1)^2) - 1."""
    y2 = np.exp(alpha * (t2 - t1) ** 2) - 1.0
    return np.select(
        [t < t1, t <= t2],
        [0.0, np.exp(alpha * (t - t1) ** 2) - 1.0],
        default=y2 + beta * (t - t2),
    )


def exp_exp_func(t, t1, t2, alpha, beta):
    """Exponential rise on [t1, t2], then exponential change at rate beta."""
    y2 = np.exp(alpha * (t2 - t1)) - 1.0
    return np.select(
        [t < t1, t <= t2],
        [0.0, np.exp(alpha * (t - t1)) - 1.0],
        default=y2 * np.exp(beta * (t - t2)),
    )


def exp2_exp_func(t, t1, t2, alpha, beta):
    y2 = np.exp(alpha * (t2 - t1) ** 2) - 1.0
    return np.select(
        [t < t1, t <= t2],
        [0.0, np.exp(alpha * (t - t1) ** 2) - 1.0],
        default=y2 * np.exp(beta * (t - t2)),
    )


def exp_lin(*, name: str = "exp_lin") -> Curve:
    return Curve.from_function(exp_lin_func, name=name)


def exp2_lin(*, name: str = "exp2_lin") -> Curve:
    return Curve.from_function(exp2_lin_func, name=name)


def exp_exp(*, name: str = "exp_exp") -> Curve:
    return Curve.from_function(exp_exp_func, name=name)


def exp2_exp(*, name: str = "exp2_exp") -> Curve:
    return Curve.from_function(exp2_exp_func, name=name)
