from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .curve import Curve
from .errors import ConvergenceFailure, NumericalSingularity
from .numdiff import hessian as numeric_hessian
from .objective import build_objective
from .options import ModelerOptions
from .parallel import map_groups
from .params import CorrelatedEstimates, Estimate, EstimateTable
from .portfolio import DEFAULT_METHODS, run_portfolio

logger = logging.getLogger(__name__)

DIAGNOSTIC_COLUMNS = (
    "uid",
    "method",
    "objective",
    "success",
    "nit",
    "nfev",
    "elapsed",
    "selected",
    "message",
)


@dataclass(frozen=True)
class GroupTask:
    """Everything needed to fit one group, self-contained and picklable."""

    uid: Any
    curve: Curve
    x: np.ndarray
    y: np.ndarray
    free_names: Tuple[str, ...]
    fixed: Dict[str, float]
    # caller-supplied initial values; completed by Curve.seed when fitted
    start: Dict[str, float]
    lower: np.ndarray
    upper: np.ndarray
    methods: Tuple[str, ...] = DEFAULT_METHODS
    options: ModelerOptions = field(default_factory=ModelerOptions)
    metadata: Dict[str, Any] = field(default_factory=dict)


def covariance_from_hessian(
    hessian: Optional[np.ndarray], sse: float, rdf: int
) -> np.ndarray:
    """Sigma = inv(H) * 2 * sse / rdf for the Hessian H of the SSE.

    Parameters pinned on a bound have NaN rows and columns in H; they are
    held at their bound, the remaining block is inverted, and their own
    rows and columns of Sigma stay NaN.

    Raises NumericalSingularity when H is missing, every parameter is
    pinned, the remaining block is non-finite or singular, or there are no
    residual degrees of freedom.
    """
    if hessian is None:
        raise NumericalSingularity("Hessian is unavailable at the optimum.")
    H = np.asarray(hessian, dtype=float)
    if rdf <= 0:
        raise NumericalSingularity(
            f"No residual degrees of freedom (rdf={rdf}); variance is undefined."
        )
    active = ~np.isnan(np.diag(H)) if H.size else np.zeros(0, dtype=bool)
    if not active.any():
        raise NumericalSingularity("No parameter could be differenced at the optimum.")
    block = H[np.ix_(active, active)]
    if not np.all(np.isfinite(block)):
        raise NumericalSingularity("Hessian contains non-finite entries.")
    if 1.0 / np.linalg.cond(block) < np.finfo(float).eps:
        raise NumericalSingularity("Hessian is singular to machine precision.")
    try:
        inv = np.linalg.inv(block)
    except np.linalg.LinAlgError as e:
        raise NumericalSingularity(f"Hessian inversion failed: {e}") from e
    cov = np.full(H.shape, np.nan)
    cov[np.ix_(active, active)] = inv * 2.0 * float(sse) / float(rdf)
    if not np.all(np.isfinite(cov[np.ix_(active, active)])):
        raise NumericalSingularity("Covariance contains non-finite entries.")
    return cov


@dataclass(frozen=True)
class FitResult:
    """The selected fit of one group."""

    uid: Any
    curve: Curve
    params: Dict[str, float]  # free parameters, declared order
    fixed: Dict[str, float]
    sse: float
    method: str
    x: np.ndarray
    y: np.ndarray
    hessian: Optional[np.ndarray] = None
    nit: int = 0
    success: bool = True
    start: Dict[str, float] = field(default_factory=dict)
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    diagnostics: Tuple[Dict[str, Any], ...] = ()
    methods: Tuple[str, ...] = DEFAULT_METHODS

    # ---- shape ----
    @property
    def curve_name(self) -> str:
        return self.curve.name

    @property
    def free_names(self) -> Tuple[str, ...]:
        return tuple(self.params.keys())

    @property
    def theta(self) -> np.ndarray:
        return np.asarray(list(self.params.values()), dtype=float)

    @property
    def values(self) -> Dict[str, float]:
        """All parameters (free and fixed) in the curve's declared order."""
        merged = dict(self.fixed)
        merged.update(self.params)
        return {n: float(merged[n]) for n in self.curve.param_names}

    @property
    def n_obs(self) -> int:
        return int(self.y.shape[0])

    @property
    def n_free(self) -> int:
        return len(self.params)

    @property
    def rdf(self) -> int:
        return self.n_obs - self.n_free

    @property
    def sigma2(self) -> float:
        """Residual variance sse / rdf (NaN without residual degrees of freedom)."""
        if self.rdf <= 0:
            return float("nan")
        return float(self.sse) / self.rdf

    @property
    def x_range(self) -> Tuple[float, float]:
        return float(np.min(self.x)), float(np.max(self.x))

    # ---- covariance ----
    def vcov(self) -> np.ndarray:
        """Free-parameter covariance; raises NumericalSingularity."""
        return covariance_from_hessian(self.hessian, self.sse, self.rdf)

    def vcov_or_nan(self) -> np.ndarray:
        try:
            return self.vcov()
        except NumericalSingularity:
            return np.full((self.n_free, self.n_free), np.nan)

    @property
    def stderr(self) -> Dict[str, float]:
        cov = self.vcov_or_nan()
        with np.errstate(invalid="ignore"):
            se = np.sqrt(np.diag(cov))
        return dict(zip(self.free_names, (float(v) for v in se)))

    @property
    def param_view(self) -> EstimateTable:
        joint = CorrelatedEstimates(
            values=self.params, cov=self.vcov_or_nan(), free_names=self.free_names
        )
        se = self.stderr
        rows = []
        for n in self.curve.param_names:
            if n in self.params:
                rows.append(
                    Estimate(
                        name=n,
                        value=float(self.params[n]),
                        stderr=se[n],
                        bounds=self._bounds_of(n),
                        _joint=joint,
                    )
                )
            else:
                rows.append(Estimate(name=n, value=float(self.fixed[n]), fixed=True))
        return EstimateTable(rows)

    def _bounds_of(self, name: str) -> Optional[Tuple[Optional[float], Optional[float]]]:
        if self.lower is None or self.upper is None:
            return None
        j = self.free_names.index(name)
        lo = float(self.lower[j])
        hi = float(self.upper[j])
        return (lo if np.isfinite(lo) else None, hi if np.isfinite(hi) else None)

    # ---- evaluation ----
    def predict(self, x: Any, theta: Optional[np.ndarray] = None) -> np.ndarray:
        """Curve values at x, optionally with a perturbed free vector."""
        values = dict(self.fixed)
        if theta is None:
            values.update(self.params)
        else:
            values.update(zip(self.free_names, (float(v) for v in np.asarray(theta))))
        return self.curve.eval(x, **values)

    @property
    def fitted(self) -> np.ndarray:
        return self.predict(self.x)

    @property
    def residuals(self) -> np.ndarray:
        return self.y - self.fitted

    def as_task(
        self,
        *,
        start: Optional[Dict[str, float]] = None,
        methods: Optional[Tuple[str, ...]] = None,
        options: Optional[ModelerOptions] = None,
    ) -> GroupTask:
        """A task that re-fits this group, by default from the current estimates."""
        lower = self.lower if self.lower is not None else np.full(self.n_free, -np.inf)
        upper = self.upper if self.upper is not None else np.full(self.n_free, np.inf)
        return GroupTask(
            uid=self.uid,
            curve=self.curve,
            x=self.x,
            y=self.y,
            free_names=self.free_names,
            fixed=dict(self.fixed),
            start=dict(self.params if start is None else start),
            lower=lower,
            upper=upper,
            methods=tuple(methods or self.methods),
            options=options or ModelerOptions(),
            metadata=dict(self.metadata),
        )


@dataclass(frozen=True)
class GroupFailure:
    """A group for which no method produced a usable objective."""

    uid: Any
    message: str
    task: GroupTask
    diagnostics: Tuple[Dict[str, Any], ...] = ()

    @property
    def curve(self) -> Curve:
        return self.task.curve

    @property
    def curve_name(self) -> str:
        return self.task.curve.name


def fit_group(task: GroupTask) -> FitResult:
    """Fit one group with every method, keep the best and its Hessian.

    Raises ConvergenceFailure if the group cannot be seeded or no method
    reaches a finite objective.
    """
    options = task.options
    bounds = (np.asarray(task.lower, dtype=float), np.asarray(task.upper, dtype=float))
    try:
        start = task.curve.seed(task.x, task.y, task.free_names, task.start, bounds)
    except Exception as e:  # guessers are user code; any failure stays with this group
        raise ConvergenceFailure(
            f"Could not seed group {task.uid!r}: {e}", uid=task.uid
        ) from e

    objective = build_objective(
        task.curve, task.x, task.y, task.free_names, task.fixed, metric=options.metric
    )
    p0 = np.asarray([start[n] for n in task.free_names], dtype=float)

    outcome = run_portfolio(
        objective,
        p0,
        bounds,
        task.methods,
        options=options,
        concurrent=options.concurrent_methods,
    )
    records = tuple(dict(rec, uid=task.uid) for rec in outcome.records())
    best = outcome.best
    if best is None:
        raise ConvergenceFailure(
            f"No method reached a finite objective for group {task.uid!r}: "
            + "; ".join(f"{r.method}: {r.message}" for r in outcome.results),
            uid=task.uid,
            results=records,
        )

    sse_objective = objective if options.metric == "sse" else replace(objective, metric="sse")
    theta = np.asarray(best.theta, dtype=float)
    hess = numeric_hessian(sse_objective, theta, bounds, options.hessian_step)

    return FitResult(
        uid=task.uid,
        curve=task.curve,
        params={n: float(v) for n, v in zip(task.free_names, theta)},
        fixed=dict(task.fixed),
        sse=float(sse_objective(theta)),
        method=best.method,
        x=objective.x,
        y=objective.y,
        hessian=hess,
        nit=int(best.nit),
        success=bool(best.success),
        start=start,
        lower=bounds[0],
        upper=bounds[1],
        metadata=dict(task.metadata),
        diagnostics=records,
        methods=tuple(task.methods),
    )


def run_task(task: GroupTask) -> FitResult | GroupFailure:
    """Worker entry point: a FitResult, or a GroupFailure for failed groups."""
    t0 = time.perf_counter()
    try:
        fit = fit_group(task)
    except ConvergenceFailure as e:
        logger.debug("Group %r failed: %s", task.uid, e)
        return GroupFailure(uid=task.uid, message=str(e), task=task, diagnostics=tuple(e.results))
    logger.debug(
        "Group %r: %s sse=%.6g in %.3fs", task.uid, fit.method, fit.sse, time.perf_counter() - t0
    )
    return fit


def diagnostics_frame(records: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    """Per-method optimisation records, one row per (group, method)."""
    if not records:
        return pd.DataFrame(columns=list(DIAGNOSTIC_COLUMNS))
    return pd.DataFrame(list(records))[list(DIAGNOSTIC_COLUMNS)]


def run_tasks(
    tasks: Sequence[GroupTask], options: ModelerOptions
) -> Tuple[Dict[Any, FitResult], Dict[Any, GroupFailure], pd.DataFrame]:
    """Run tasks sequentially or in a pool; keep task order in every output."""
    outcomes = map_groups(
        run_task,
        tasks,
        parallel=options.parallel,
        workers=options.workers,
        executor=options.executor,
    )
    fits: Dict[Any, FitResult] = {}
    failures: Dict[Any, GroupFailure] = {}
    records: List[Dict[str, Any]] = []
    for out in outcomes:
        if isinstance(out, GroupFailure):
            failures[out.uid] = out
        else:
            fits[out.uid] = out
        records.extend(out.diagnostics)
    return fits, failures, diagnostics_frame(records)
