"""Goodness-of-fit metrics.

Every metric takes ``(actual, predicted)`` and returns a float.
"""

from __future__ import annotations

from typing import Callable, Dict

import numpy as np

Metric = Callable[[np.ndarray, np.ndarray], float]


def sse(actual, predicted) -> float:
    r = np.asarray(actual, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.sum(r * r))


def mse(actual, predicted) -> float:
    r = np.asarray(actual, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.mean(r * r))


def rmse(actual, predicted) -> float:
    return float(np.sqrt(mse(actual, predicted)))


def mae(actual, predicted) -> float:
    r = np.asarray(actual, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.mean(np.abs(r)))


def r_squared(actual, predicted) -> float:
    """Squared Pearson correlation between observations and fitted values."""
    a = np.asarray(actual, dtype=float)
    p = np.asarray(predicted, dtype=float)
    if a.size < 2 or np.std(a) == 0 or np.std(p) == 0:
        return float("nan")
    return float(np.corrcoef(a, p)[0, 1] ** 2)


LOSSES: Dict[str, Metric] = {
    "sse": sse,
    "mse": mse,
    "mae": mae,
    "rmse": rmse,
}

METRICS: Dict[str, Metric] = dict(LOSSES, r_squared=r_squared)
