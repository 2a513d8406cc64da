from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from . import comparison, inference
from .errors import InputError
from .fit import DIAGNOSTIC_COLUMNS, FitResult, GroupFailure, run_tasks
from .metrics import METRICS
from .numdiff import jacobian
from .options import ModelerOptions, modeler_options
from .portfolio import DEFAULT_METHODS
from .util import as_tuple, first_unique, uncertainty_to_string

logger = logging.getLogger(__name__)


def _is_multi(id: Any) -> bool:
    return id is None or isinstance(id, (list, tuple, set, np.ndarray, pd.Index, pd.Series))


@dataclass(frozen=True)
class FitCollection:
    """Per-group fits of one or more growth curves.

    ``fits`` holds the converged groups keyed by group id; ``failures``
    holds the groups no method could fit. ``groups`` keeps every attempted
    id in fitting order, so tables can show failed groups as gaps.
    """

    fits: Mapping[Any, FitResult]
    failures: Mapping[Any, GroupFailure] = field(default_factory=dict)
    groups: Tuple[Any, ...] = ()
    diagnostics: Optional[pd.DataFrame] = None
    elapsed: float = 0.0
    x_var: str = "x"
    y_var: str = "y"
    grp_var: str = "uid"
    keep: Tuple[str, ...] = ()
    methods: Tuple[str, ...] = DEFAULT_METHODS
    options: ModelerOptions = field(default_factory=ModelerOptions)

    def __post_init__(self) -> None:
        if not self.groups:
            object.__setattr__(
                self, "groups", tuple(self.fits.keys()) + tuple(self.failures.keys())
            )

    # ---- mapping-like access ----
    def __len__(self) -> int:
        return len(self.fits)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.fits)

    def __contains__(self, uid: object) -> bool:
        return uid in self.fits

    def __getitem__(self, uid: Any) -> FitResult:
        try:
            return self.fits[uid]
        except KeyError as e:
            if uid in self.failures:
                raise InputError(
                    f"Group {uid!r} failed to converge: {self.failures[uid].message}"
                ) from e
            raise InputError(f"Group {uid!r} not found in collection.") from e

    def __repr__(self) -> str:
        return (
            f"FitCollection(groups={len(self.groups)}, fitted={len(self.fits)}, "
            f"curves={self.curves})"
        )

    @property
    def ids(self) -> Tuple[Any, ...]:
        return tuple(self.fits.keys())

    @property
    def curves(self) -> Tuple[str, ...]:
        everything = list(self.fits.values()) + list(self.failures.values())
        return tuple(first_unique(f.curve_name for f in everything))

    @property
    def convergence_rate(self) -> float:
        """Fraction of attempted groups with a usable fit."""
        if not self.groups:
            return float("nan")
        return len(self.fits) / len(self.groups)

    @property
    def iterations(self) -> int:
        return int(sum(f.nit for f in self.fits.values()))

    def select(self, id: Any = None) -> List[FitResult]:
        """Fits for the requested ids (all when None); unknown ids raise InputError."""
        if id is None:
            return list(self.fits.values())
        wanted = as_tuple(id)
        unknown = [u for u in wanted if u not in self.fits and u not in self.failures]
        if unknown:
            raise InputError(f"ids {unknown} not found in collection.")
        return [self.fits[u] for u in wanted if u in self.fits]

    def _meta_columns(self, table: pd.DataFrame) -> pd.DataFrame:
        if not self.keep:
            return table
        records = [dict({"uid": f.uid}, **f.metadata) for f in self.fits.values()]
        records += [dict({"uid": u}, **g.task.metadata) for u, g in self.failures.items()]
        meta = pd.DataFrame(records, columns=["uid", *self.keep])
        cols = ["uid", *self.keep]
        out = table.merge(meta[cols], on="uid", how="left")
        order = ["uid", "curve"] + cols[1:]
        return out[order + [c for c in out.columns if c not in order]]

    # ---- coefficient tables ----
    def parameter_table(self, id: Any = None, metadata: bool = False) -> pd.DataFrame:
        """Wide table: one row per group with every parameter, sse and method."""
        rows = []
        for f in self.select(id):
            row: Dict[str, Any] = {"uid": f.uid, "curve": f.curve_name}
            row.update(f.values)
            row["sse"] = f.sse
            row["method"] = f.method
            rows.append(row)
        table = pd.DataFrame(rows)
        return self._meta_columns(table) if metadata and rows else table

    def coefficients(
        self, id: Any = None, metadata: bool = False, df: bool = False
    ) -> pd.DataFrame:
        """Long table of free-parameter estimates with t-tests on rdf degrees of freedom."""
        rows = []
        for f in self.select(id):
            se = f.stderr
            for name, value in f.params.items():
                e = se[name]
                t = value / e if np.isfinite(e) and e > 0 else float("nan")
                p = (
                    float(2.0 * stats.t.sf(abs(t), f.rdf))
                    if np.isfinite(t) and f.rdf > 0
                    else float("nan")
                )
                row = {
                    "uid": f.uid,
                    "curve": f.curve_name,
                    "parameter": name,
                    "estimate": float(value),
                    "std_error": e,
                    "t_value": t,
                    "p_value": p,
                }
                if df:
                    row["rdf"] = f.rdf
                rows.append(row)
        cols = ["uid", "curve", "parameter", "estimate", "std_error", "t_value", "p_value"]
        table = pd.DataFrame(rows, columns=cols + (["rdf"] if df else []))
        return self._meta_columns(table) if metadata and rows else table

    coef = coefficients

    def vcov(self, id: Any = None) -> pd.DataFrame | Dict[Any, pd.DataFrame]:
        """Labelled covariance of the free parameters.

        A single id returns one DataFrame; otherwise a dict keyed by id. A
        singular Hessian yields a NaN-filled matrix.
        """
        def _frame(f: FitResult) -> pd.DataFrame:
            names = list(f.free_names)
            return pd.DataFrame(f.vcov_or_nan(), index=names, columns=names)

        if not _is_multi(id):
            return _frame(self[id])
        return {f.uid: _frame(f) for f in self.select(id)}

    def confint(
        self, level: float = 0.95, parm: Optional[Sequence[str] | str] = None, id: Any = None
    ) -> pd.DataFrame:
        """t-based confidence intervals for the free parameters."""
        if not 0.0 < level < 1.0:
            raise InputError("level must lie strictly between 0 and 1.")
        coef = self.coefficients(id=id, df=True)
        if parm is not None:
            wanted = as_tuple(parm)
            coef = coef[coef["parameter"].isin(wanted)]
        q = np.array(
            [stats.t.ppf(1.0 - (1.0 - level) / 2.0, r) if r > 0 else np.nan for r in coef["rdf"]],
            dtype=float,
        )
        out = coef[["uid", "curve", "parameter", "estimate", "std_error"]].copy()
        out["lower"] = out["estimate"] - q * out["std_error"]
        out["upper"] = out["estimate"] + q * out["std_error"]
        return out.reset_index(drop=True)

    # ---- observation-level views ----
    def fitted_table(self, id: Any = None) -> pd.DataFrame:
        """uid, x, y, .fitted, .residual for every observation used in fitting."""
        frames = []
        for f in self.select(id):
            fitted = f.fitted
            frames.append(
                pd.DataFrame(
                    {
                        "uid": f.uid,
                        "curve": f.curve_name,
                        "x": f.x,
                        "y": f.y,
                        ".fitted": fitted,
                        ".residual": f.y - fitted,
                    }
                )
            )
        if not frames:
            return pd.DataFrame(columns=["uid", "curve", "x", "y", ".fitted", ".residual"])
        return pd.concat(frames, ignore_index=True)

    @property
    def data(self) -> pd.DataFrame:
        return self.fitted_table()

    def fitted(self, id: Any = None) -> pd.DataFrame:
        return self.fitted_table(id).drop(columns=".residual")

    def residuals(self, id: Any = None) -> pd.DataFrame:
        return self.fitted_table(id).drop(columns=".fitted")

    def augment(self, id: Any = None, metadata: bool = False) -> pd.DataFrame:
        """Observation table with leverage, Cook's distance and scaled residuals."""
        frames = []
        for f in self.select(id):
            fitted = f.fitted
            res = f.y - fitted
            s = np.sqrt(f.sigma2)
            J = jacobian(lambda th, f=f: f.predict(f.x, th), f.theta)
            try:
                hat = np.diag(J @ np.linalg.inv(J.T @ J) @ J.T)
            except np.linalg.LinAlgError:
                hat = np.full(f.n_obs, np.nan)
            with np.errstate(divide="ignore", invalid="ignore"):
                stud = res / (s * np.sqrt(1.0 - hat))
                cooks = (res**2 / (f.n_free * s**2)) * (hat / (1.0 - hat) ** 2)
                std = res / s
            stud[np.isinf(stud)] = np.nan
            cooks[np.isinf(cooks)] = np.nan
            frames.append(
                pd.DataFrame(
                    {
                        "uid": f.uid,
                        "curve": f.curve_name,
                        "x": f.x,
                        "y": f.y,
                        ".fitted": fitted,
                        ".resid": res,
                        ".hat": hat,
                        ".cooksd": cooks,
                        ".std.resid": std,
                        ".stud.resid": stud,
                    }
                )
            )
        table = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
        return self._meta_columns(table) if metadata and frames else table

    def metrics(self, by_group: bool = True, id: Any = None) -> pd.DataFrame:
        """SSE, MAE, MSE, RMSE and R^2 per group, or their spread across groups."""
        rows = []
        for f in self.select(id):
            fitted = f.fitted
            row: Dict[str, Any] = {"uid": f.uid, "curve": f.curve_name, "n": f.n_obs}
            for name, fn in METRICS.items():
                row[name] = fn(f.y, fitted)
            rows.append(row)
        table = pd.DataFrame(rows)
        if by_group or table.empty:
            return table
        summary = {}
        for name in METRICS:
            col = table[name].astype(float)
            mean = col.mean()
            sd = col.std()
            summary[name] = {
                "min": col.min(),
                "mean": mean,
                "median": col.median(),
                "max": col.max(),
                "sd": sd,
                "cv": sd / mean if mean != 0 else float("nan"),
            }
        return pd.DataFrame(summary).T.rename_axis("metric").reset_index()

    # ---- comparison ----
    def loglik(self) -> pd.DataFrame:
        return comparison.loglik(self)

    def aic(self, k: float = 2.0) -> pd.DataFrame:
        return comparison.aic(self, k=k)

    def bic(self) -> pd.DataFrame:
        return comparison.bic(self)

    # ---- inference ----
    def predict(self, x: Any = None, **kwargs) -> pd.DataFrame:
        """See :func:`growth_modeler.inference.predict`."""
        return inference.predict(self, x, **kwargs)

    def inverse_predict(self, y: float, **kwargs) -> pd.DataFrame:
        return inference.inverse_predict(self, y, **kwargs)

    def tangent(self, x: Any, **kwargs) -> pd.DataFrame:
        return inference.compute_tangent(self, x, **kwargs)

    # ---- structural operations ----
    def subset(
        self, id: Any = None, predicate: Optional[Callable[[FitResult], bool]] = None
    ) -> "FitCollection":
        """A new collection restricted to ``id`` and/or fits matching ``predicate``."""
        if id is None:
            wanted = list(self.groups)
        else:
            wanted = list(as_tuple(id))
            unknown = [u for u in wanted if u not in self.fits and u not in self.failures]
            if unknown:
                raise InputError(f"ids {unknown} not found in collection.")
        if predicate is not None:
            wanted = [u for u in wanted if u in self.fits and predicate(self.fits[u])]
        keep = set(wanted)
        groups = tuple(u for u in self.groups if u in keep)
        diag = self.diagnostics
        if diag is not None:
            diag = diag[diag["uid"].isin(keep)].reset_index(drop=True)
        return replace(
            self,
            fits={u: self.fits[u] for u in groups if u in self.fits},
            failures={u: self.failures[u] for u in groups if u in self.failures},
            groups=groups,
            diagnostics=diag,
        )

    def update(
        self,
        method: Optional[Sequence[str] | str] = None,
        id: Any = None,
        initial_vals: Optional[pd.DataFrame] = None,
        options: Optional[ModelerOptions] = None,
        **option_overrides: Any,
    ) -> "FitCollection":
        """Re-fit groups starting from the current estimates.

        Fixed parameters, bounds and data are reused. ``initial_vals`` (a
        table with a ``uid`` column) replaces the starting values of the
        groups it lists. Failed groups are retried from their original start.
        """
        options = modeler_options(options or self.options, **option_overrides)
        methods = tuple(m.lower() for m in as_tuple(method)) if method is not None else None

        starts: Dict[Any, Dict[str, float]] = {}
        if initial_vals is not None:
            if "uid" not in initial_vals.columns:
                raise InputError("initial_vals must contain a 'uid' column.")
            for rec in initial_vals.to_dict("records"):
                uid = rec.pop("uid")
                starts[uid] = {k: float(v) for k, v in rec.items() if not pd.isna(v)}

        target = self.subset(id) if id is not None else self
        tasks = []
        for uid in target.groups:
            if uid in target.fits:
                f = target.fits[uid]
                start = dict(f.params)
                start.update({k: v for k, v in starts.get(uid, {}).items() if k in start})
                tasks.append(f.as_task(start=start, methods=methods, options=options))
            else:
                task = target.failures[uid].task
                start = dict(task.start)
                given = starts.get(uid, {})
                start.update({k: v for k, v in given.items() if k in task.free_names})
                tasks.append(
                    replace(task, start=start, methods=methods or task.methods, options=options)
                )

        fits, failures, diagnostics = run_tasks(tasks, options)

        improved = sum(
            1 for u, f in fits.items() if u in self.fits and f.sse < self.fits[u].sse
        )
        logger.info("Update improved fit in %d/%d groups.", improved, len(tasks))

        merged_fits = dict(self.fits)
        merged_failures = dict(self.failures)
        for u in target.groups:
            merged_fits.pop(u, None)
            merged_failures.pop(u, None)
        merged_fits.update(fits)
        merged_failures.update(failures)

        old_diag = self.diagnostics
        if old_diag is not None and len(old_diag):
            old_diag = old_diag[~old_diag["uid"].isin(set(target.groups))]
            diagnostics = pd.concat([old_diag, diagnostics], ignore_index=True)

        return replace(
            self,
            fits={u: merged_fits[u] for u in self.groups if u in merged_fits},
            failures={u: merged_failures[u] for u in self.groups if u in merged_failures},
            diagnostics=diagnostics,
            methods=methods or self.methods,
            options=options,
        )

    def summary(self, digits: int = 4, max_groups: int = 10) -> str:
        """Return a human-readable summary string."""
        lines = [
            f"FitCollection(curves={self.curves}, groups={len(self.groups)}, "
            f"converged={len(self.fits)})",
            f"  {'elapsed':>12s}: {self.elapsed:.{digits}g} s",
            f"  {'convergence':>12s}: {100.0 * self.convergence_rate:.1f}%",
            f"  {'iterations':>12s}: {self.iterations}",
        ]
        for f in list(self.fits.values())[:max_groups]:
            lines.append(f"[{f.uid}] {f.curve.signature}  sse={f.sse:.{digits}g} ({f.method})")
            se = f.stderr
            for name, value in f.values.items():
                if name in f.fixed:
                    lines.append(f"  {name:>12s}: {value:.{digits}g} (fixed)")
                elif np.isfinite(se[name]):
                    lines.append(f"  {name:>12s}: {uncertainty_to_string(value, se[name])}")
                else:
                    lines.append(f"  {name:>12s}: {value:.{digits}g} ± nan")
        hidden = len(self.fits) - max_groups
        if hidden > 0:
            lines.append(f"... {hidden} more groups")
        for u, fail in self.failures.items():
            lines.append(f"[{u}] FAILED: {fail.message}")
        return "\n".join(lines)


def _rekey(collection: FitCollection, key: Any) -> FitCollection:
    def new(u: Any) -> str:
        return f"{key}/{u}"

    fits = {new(u): replace(f, uid=new(u)) for u, f in collection.fits.items()}
    failures = {
        new(u): replace(fl, uid=new(u), task=replace(fl.task, uid=new(u)))
        for u, fl in collection.failures.items()
    }
    diag = collection.diagnostics
    if diag is not None:
        diag = diag.assign(uid=diag["uid"].map(new))
    return replace(
        collection,
        fits=fits,
        failures=failures,
        groups=tuple(new(u) for u in collection.groups),
        diagnostics=diag,
    )


def combine(*collections: FitCollection, keys: Optional[Sequence[Any]] = None) -> FitCollection:
    """Merge collections into one.

    Group ids must be disjoint unless ``keys`` is given, in which case every
    id becomes ``f"{key}/{uid}"``.
    """
    if not collections:
        raise InputError("combine() needs at least one collection.")
    if keys is not None:
        if len(keys) != len(collections):
            raise InputError("keys must have one entry per collection.")
        collections = tuple(_rekey(c, k) for c, k in zip(collections, keys))

    groups: List[Any] = []
    seen = set()
    for c in collections:
        clash = [u for u in c.groups if u in seen]
        if clash:
            raise InputError(
                f"Group ids {clash} appear in more than one collection; pass keys=... to re-key."
            )
        seen.update(c.groups)
        groups.extend(c.groups)

    fits: Dict[Any, FitResult] = {}
    failures: Dict[Any, GroupFailure] = {}
    keep: List[str] = []
    methods: List[str] = []
    diags = []
    for c in collections:
        fits.update(c.fits)
        failures.update(c.failures)
        keep.extend(k for k in c.keep if k not in keep)
        methods.extend(m for m in c.methods if m not in methods)
        if c.diagnostics is not None and len(c.diagnostics):
            diags.append(c.diagnostics)

    first = collections[0]
    return FitCollection(
        fits=fits,
        failures=failures,
        groups=tuple(groups),
        diagnostics=(
            pd.concat(diags, ignore_index=True)
            if diags
            else pd.DataFrame(columns=list(DIAGNOSTIC_COLUMNS))
        ),
        elapsed=float(sum(c.elapsed for c in collections)),
        x_var=first.x_var,
        y_var=first.y_var,
        grp_var=first.grp_var,
        keep=tuple(keep),
        methods=tuple(methods),
        options=first.options,
    )
