"""Finite-difference derivatives used for covariance and delta-method inference."""

from __future__ import annotations

from typing import Any, Callable, Optional, Tuple

import numpy as np

# Relative step and zero handling follow the usual Richardson defaults:
# h = d*|x| + eps where |x| < zero_tol.
_D = 1e-4
_EPS = 1e-4
_ZERO_TOL = float(np.sqrt(np.finfo(float).eps / 7e-7))


def _initial_steps(x0: np.ndarray, d: float, eps: float) -> np.ndarray:
    x0 = np.asarray(x0, dtype=float)
    return np.abs(d * x0) + eps * (np.abs(x0) < _ZERO_TOL)


def _richardson(estimates: list, r: int, v: float = 2.0) -> np.ndarray:
    """Combine O(h^2) estimates taken at h, h/v, h/v^2, ... into one."""
    a = [np.asarray(e, dtype=float) for e in estimates]
    for m in range(1, r):
        fac = v ** (2 * m)
        a = [(fac * a[i + 1] - a[i]) / (fac - 1.0) for i in range(len(a) - 1)]
    return a[0]


def jacobian(
    func: Callable[[np.ndarray], Any],
    theta: np.ndarray,
    *,
    d: float = _D,
    eps: float = _EPS,
    r: int = 4,
) -> np.ndarray:
    """Jacobian of a vector function by Richardson-extrapolated central differences.

    Returns shape (M, P) for func: R^P -> R^M.
    """
    theta = np.asarray(theta, dtype=float).reshape(-1)
    npar = int(theta.shape[0])
    f0 = np.atleast_1d(np.asarray(func(theta), dtype=float)).reshape(-1)
    J = np.empty((f0.size, npar), dtype=float)
    h0 = _initial_steps(theta, d, eps)

    for j in range(npar):
        ests = []
        h = float(h0[j])
        for _ in range(r):
            tp = theta.copy()
            tm = theta.copy()
            tp[j] += h
            tm[j] -= h
            fp = np.atleast_1d(np.asarray(func(tp), dtype=float)).reshape(-1)
            fm = np.atleast_1d(np.asarray(func(tm), dtype=float)).reshape(-1)
            ests.append((fp - fm) / (2.0 * h))
            h /= 2.0
        J[:, j] = _richardson(ests, r)
    return J


def derivative(
    func: Callable[[np.ndarray], np.ndarray],
    x: Any,
    *,
    order: int = 1,
    d: float = _D,
    eps: float = _EPS,
    r: int = 4,
) -> np.ndarray:
    """Elementwise first or second derivative of a vectorised function of x."""
    if order not in (1, 2):
        raise ValueError("order must be 1 or 2.")
    x = np.asarray(x, dtype=float)
    h = _initial_steps(x, d, eps)
    f0 = np.asarray(func(x), dtype=float) if order == 2 else None

    ests = []
    for _ in range(r):
        fp = np.asarray(func(x + h), dtype=float)
        fm = np.asarray(func(x - h), dtype=float)
        if order == 1:
            ests.append((fp - fm) / (2.0 * h))
        else:
            ests.append((fp - 2.0 * f0 + fm) / (h * h))
        h = h / 2.0
    return _richardson(ests, r)


def _room_to_bounds(
    x0: np.ndarray, steps: np.ndarray, bounds: Optional[Tuple[np.ndarray, np.ndarray]]
) -> np.ndarray:
    """Shrink steps so x0 +/- step stays inside finite bounds (0 when pinned)."""
    if bounds is None:
        return steps
    lo = np.asarray(bounds[0], dtype=float).reshape(-1)
    hi = np.asarray(bounds[1], dtype=float).reshape(-1)
    below = np.where(np.isfinite(lo), np.maximum(x0 - lo, 0.0) / 2.0, np.inf)
    above = np.where(np.isfinite(hi), np.maximum(hi - x0, 0.0) / 2.0, np.inf)
    return np.minimum(steps, np.minimum(below, above))


def hessian(
    func: Callable[[np.ndarray], float],
    x0: np.ndarray,
    bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    step: Optional[float] = None,
) -> np.ndarray:
    """Central-difference Hessian of a scalar function such as the SSE.

    Steps are relative (``step * (|x| + 1)``) and shrink to stay inside
    finite bounds. A parameter sitting exactly on a bound cannot be
    differenced; its row and column are NaN and the rest is still filled.
    """
    x0 = np.asarray(x0, dtype=float).reshape(-1)
    rel = 1e-4 if step is None else float(step)
    h = _room_to_bounds(x0, rel * (np.abs(x0) + 1.0), bounds)
    interior = np.flatnonzero(h > 0.0)

    def at(*moves: Tuple[int, float]) -> float:
        x = x0.copy()
        for k, sign in moves:
            x[k] += sign * h[k]
        return float(func(x))

    f0 = float(func(x0))
    H = np.full((x0.size, x0.size), np.nan)
    for a, i in enumerate(interior):
        H[i, i] = (at((i, 1.0)) - 2.0 * f0 + at((i, -1.0))) / h[i] ** 2
        for j in interior[a + 1 :]:
            cross = (
                at((i, 1.0), (j, 1.0))
                - at((i, 1.0), (j, -1.0))
                - at((i, -1.0), (j, 1.0))
                + at((i, -1.0), (j, -1.0))
            )
            H[i, j] = H[j, i] = cross / (4.0 * h[i] * h[j])
    return H
