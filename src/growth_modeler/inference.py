"""Delta-method inference for quantities derived from fitted curves.

Every query is a function g(theta) of the free parameters of one group.
Standard errors come from se = sqrt(diag(J Sigma J^T)) with J the
Richardson-extrapolated Jacobian of g and Sigma = inv(H) * 2 * sse / rdf.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple
from warnings import warn

import numpy as np
import pandas as pd
from scipy.optimize import brentq

from .errors import InputError, NumericalSingularity
from .fit import FitResult
from .numdiff import derivative, jacobian
from .parallel import map_groups
from .util import as_tuple

if TYPE_CHECKING:
    from .collection import FitCollection

logger = logging.getLogger(__name__)

_KINDS = {
    "point": "point",
    "auc": "auc",
    "fd": "first_derivative",
    "first_derivative": "first_derivative",
    "sd": "second_derivative",
    "second_derivative": "second_derivative",
    "formula": "formula",
}


def trapezoid_auc(func: Callable[[np.ndarray], np.ndarray], lo: float, hi: float, n_points: int = 1000) -> float:
    """Area under func on [lo, hi] by the trapezoid rule on n_points uniform points."""
    xs = np.linspace(float(lo), float(hi), int(n_points))
    ys = np.asarray(func(xs), dtype=float)
    return float(np.sum((ys[1:] + ys[:-1]) * np.diff(xs)) / 2.0)


def delta_method(
    fit: FitResult,
    g: Callable[[np.ndarray], Any],
    *,
    prediction: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """Values of g at the estimate and their delta-method standard errors.

    A singular Hessian gives NaN standard errors; the values are still
    returned. With ``prediction=True`` the residual variance is added.
    """
    theta = fit.theta
    values = np.atleast_1d(np.asarray(g(theta), dtype=float)).reshape(-1)
    try:
        cov = fit.vcov()
    except NumericalSingularity as e:
        logger.debug("Group %r: no covariance (%s)", fit.uid, e)
        return values, np.full(values.shape, np.nan)

    J = jacobian(g, theta)
    known = np.isfinite(np.diag(cov))
    var = np.einsum(
        "ij,jk,ik->i", J[:, known], cov[np.ix_(known, known)], J[:, known]
    )
    # outputs that move with a parameter pinned on a bound have no standard error
    var[np.any(J[:, ~known] != 0.0, axis=1)] = np.nan
    if prediction:
        var = fit.sigma2 + var
    with np.errstate(invalid="ignore"):
        se = np.sqrt(var)
    return values, se


@dataclass(frozen=True)
class DerivedRequest:
    """A stateless query applied to every selected fit."""

    kind: str
    x: Optional[np.ndarray] = None
    interval: str = "confidence"
    n_points: int = 1000
    formula: Optional[Callable[[Mapping[str, float]], float]] = None
    label: str = ""

    def transform(self, fit: FitResult) -> Callable[[np.ndarray], Any]:
        if self.kind == "point":
            return lambda th: fit.predict(self.x, th)
        if self.kind == "auc":
            lo, hi = self.auc_bounds(fit)
            return lambda th: trapezoid_auc(
                lambda xs: fit.predict(xs, th), lo, hi, self.n_points
            )
        if self.kind in ("first_derivative", "second_derivative"):
            order = 1 if self.kind == "first_derivative" else 2
            return lambda th: derivative(lambda xs: fit.predict(xs, th), self.x, order=order)
        if self.kind == "formula":
            def _formula(th: np.ndarray) -> float:
                values = dict(fit.fixed)
                values.update(zip(fit.free_names, (float(v) for v in th)))
                return float(self.formula(values))  # type: ignore[misc]

            return _formula
        raise InputError(f"Unknown query type {self.kind!r}.")

    def auc_bounds(self, fit: FitResult) -> Tuple[float, float]:
        if self.x is None:
            return fit.x_range
        return float(self.x[0]), float(self.x[1])

    def check_domain(self, fit: FitResult) -> None:
        if self.kind == "formula":
            return
        lo, hi = fit.x_range
        xs = np.asarray(self.auc_bounds(fit) if self.kind == "auc" else self.x, dtype=float)
        if np.any(~np.isfinite(xs)) or np.any(xs < lo) or np.any(xs > hi):
            raise InputError(
                f"x needs to be in the interval <{lo:g}, {hi:g}> for group {fit.uid!r}."
            )


def _predict_one(fit: FitResult, request: DerivedRequest) -> pd.DataFrame:
    prediction = request.interval == "prediction" and request.kind == "point"
    values, se = delta_method(fit, request.transform(fit), prediction=prediction)
    base: Dict[str, Any] = {"uid": fit.uid, "curve": fit.curve_name}
    if request.kind == "auc":
        lo, hi = request.auc_bounds(fit)
        base.update(x_min=lo, x_max=hi)
    elif request.kind == "formula":
        base["formula"] = request.label
    else:
        base["x_new"] = np.asarray(request.x, dtype=float)
    base["predicted_value"] = values
    base["std_error"] = se
    return pd.DataFrame(base)


def _with_gaps(
    collection: "FitCollection", id: Any, frames: List[pd.DataFrame], columns: List[str]
) -> pd.DataFrame:
    """Left-join results onto the requested group list so failed groups show as NaN."""
    wanted = list(collection.groups) if id is None else list(as_tuple(id))
    out = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=columns)
    base = pd.DataFrame({"uid": pd.Series(wanted, dtype=object)})
    out = base.merge(out.astype({"uid": object}), on="uid", how="left")
    for uid, fail in collection.failures.items():
        out.loc[out["uid"] == uid, "curve"] = fail.curve_name
    return out[columns]


def predict(
    collection: "FitCollection",
    x: Any = None,
    *,
    id: Any = None,
    type: str = "point",
    interval: str = "confidence",
    n_points: int = 1000,
    formula: Optional[Callable[[Mapping[str, float]], float]] = None,
    label: Optional[str] = None,
    metadata: bool = False,
    parallel: bool = False,
    workers: Optional[int] = None,
    executor: str = "thread",
) -> pd.DataFrame:
    """Derived quantities with delta-method standard errors.

    type
        ``point`` (curve value at x), ``auc`` (trapezoid area on
        ``x = (lo, hi)``, default the group's observed range),
        ``first_derivative``/``fd``, ``second_derivative``/``sd``, or
        ``formula`` (a callable on the parameter mapping, e.g.
        ``lambda p: p["t2"] - p["t1"]``).
    interval
        ``confidence`` or ``prediction``; the latter adds the residual
        variance and only applies to point queries.

    Every x (and both AUC bounds) must lie within the group's observed
    x-range, boundaries included; otherwise InputError is raised and
    nothing is returned. Failed groups appear as rows of NaN.
    """
    try:
        kind = _KINDS[str(type).lower()]
    except KeyError as e:
        raise InputError(f"Unknown type {type!r}. Available: {tuple(_KINDS)}") from e
    if interval not in ("confidence", "prediction"):
        raise InputError("interval must be 'confidence' or 'prediction'.")
    if int(n_points) < 2:
        raise InputError("n_points must be at least 2.")

    xs: Optional[np.ndarray] = None
    if kind == "auc":
        if x is not None:
            xs = np.asarray(x, dtype=float).reshape(-1)
            if xs.shape != (2,):
                raise InputError("x must hold exactly two values (lower, upper) for AUC.")
            if not xs[0] < xs[1]:
                raise InputError("AUC requires lower < upper.")
    elif kind == "formula":
        if formula is None or not callable(formula):
            raise InputError("type='formula' requires a callable formula=...")
    else:
        if x is None:
            raise InputError(f"x is required for {kind} predictions.")
        xs = np.atleast_1d(np.asarray(x, dtype=float)).reshape(-1)

    request = DerivedRequest(
        kind=kind,
        x=xs,
        interval=interval,
        n_points=int(n_points),
        formula=formula,
        label=(label or getattr(formula, "__name__", "formula")) if kind == "formula" else "",
    )

    fits = collection.select(id)
    for fit in fits:
        request.check_domain(fit)

    frames = map_groups(
        partial(_predict_one, request=request),
        fits,
        parallel=parallel,
        workers=workers,
        executor=executor,
    )

    if kind == "auc":
        cols = ["uid", "curve", "x_min", "x_max", "predicted_value", "std_error"]
    elif kind == "formula":
        cols = ["uid", "curve", "formula", "predicted_value", "std_error"]
    else:
        cols = ["uid", "curve", "x_new", "predicted_value", "std_error"]
    out = _with_gaps(collection, id, frames, cols)
    if metadata:
        out = collection._meta_columns(out)
    return out


def inverse_predict(
    collection: "FitCollection",
    y: float,
    *,
    id: Any = None,
    interval: Optional[Tuple[float, float]] = None,
    tol: float = 1e-6,
) -> pd.DataFrame:
    """x at which each fitted curve reaches ``y``.

    Searches ``interval`` (default: the group's observed x-range) with
    Brent's method; groups without a sign change get NaN and a warning.
    """
    if y is None or np.ndim(y) != 0:
        raise InputError("y must be a single number for inverse predictions.")
    y = float(y)
    rows = []
    for fit in collection.select(id):
        lo, hi = fit.x_range if interval is None else (float(interval[0]), float(interval[1]))
        root = float("nan")
        try:
            root = float(brentq(lambda t: float(fit.predict(t)) - y, lo, hi, xtol=tol))
        except ValueError as e:
            warn(f"Root not found for group {fit.uid!r}: {e}", UserWarning)
        rows.append(
            {
                "uid": fit.uid,
                "curve": fit.curve_name,
                "lower": lo,
                "upper": hi,
                "y": float(fit.predict(root)) if np.isfinite(root) else float("nan"),
                "x": root,
            }
        )
    return pd.DataFrame(rows, columns=["uid", "curve", "lower", "upper", "y", "x"])


def compute_tangent(
    collection: "FitCollection", x: Any, *, id: Any = None
) -> pd.DataFrame:
    """Tangent line y = slope * x + intercept at x for each group.

    ``x`` is a number (or list) applied to every group, or a DataFrame with
    ``uid`` and ``x`` columns giving group-specific points.
    """
    if isinstance(x, pd.DataFrame):
        if not {"uid", "x"} <= set(x.columns):
            raise InputError("x must have 'uid' and 'x' columns.")
        points = [(u, float(v)) for u, v in zip(x["uid"], x["x"])]
        collection.select([u for u, _ in points])
        if id is not None:
            wanted = set(as_tuple(id))
            points = [(u, v) for u, v in points if u in wanted]
    else:
        xs = np.atleast_1d(np.asarray(x, dtype=float)).reshape(-1)
        points = [(f.uid, float(v)) for f in collection.select(id) for v in xs]

    rows = []
    for u, xv in points:
        fit = collection[u]
        lo, hi = fit.x_range
        if not lo <= xv <= hi:
            raise InputError(f"x needs to be in the interval <{lo:g}, {hi:g}> for group {u!r}.")
        yv = float(fit.predict(xv))
        slope = float(derivative(fit.predict, np.asarray([xv]), order=1)[0])
        rows.append(
            {
                "uid": u,
                "curve": fit.curve_name,
                "x": xv,
                "y": yv,
                "slope": slope,
                "intercept": yv - slope * xv,
            }
        )
    return pd.DataFrame(rows, columns=["uid", "curve", "x", "y", "slope", "intercept"])
