from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from warnings import warn

import numpy as np
import pandas as pd

from .collection import FitCollection
from .curve import Curve
from .curves import DEFAULT_REGISTRY, CurveRegistry
from .errors import ConvergenceWarning, InputError
from .fit import GroupTask, run_tasks
from .options import ModelerOptions, modeler_options
from .portfolio import DEFAULT_METHODS, resolve_methods
from .preprocess import prepare
from .util import as_tuple

logger = logging.getLogger(__name__)

BoundSpec = Optional[Union[float, Mapping[str, float]]]


def _check_names(names: Sequence[str], curve: Curve, what: str) -> None:
    unknown = [n for n in names if n not in curve.param_names]
    if unknown:
        raise InputError(
            f"{what} {unknown} do not match the parameters of {curve.signature}."
        )


def _bound_map(bound: BoundSpec, curve: Curve, what: str) -> Dict[str, float]:
    if bound is None:
        return {}
    if isinstance(bound, Mapping):
        _check_names(list(bound.keys()), curve, what)
        return {k: float(v) for k, v in bound.items()}
    if np.isscalar(bound):
        return {n: float(bound) for n in curve.param_names}
    raise InputError(f"{what} must be a number or a mapping of parameter -> bound.")


def _per_group_table(
    table: Optional[pd.DataFrame], grp: str, curve: Curve, what: str
) -> Dict[Any, Dict[str, float]]:
    """{uid: {param: value}} from a table with one row per group."""
    if table is None:
        return {}
    if not isinstance(table, pd.DataFrame):
        raise InputError(f"{what} must be a DataFrame with a {grp!r} column.")
    if grp not in table.columns:
        raise InputError(f"{what} must contain the group column {grp!r}.")
    cols = [c for c in table.columns if c != grp]
    _check_names(cols, curve, f"{what} columns")
    if table[grp].duplicated().any():
        raise InputError(f"{what} has more than one row for some groups.")
    out: Dict[Any, Dict[str, float]] = {}
    for rec in table.to_dict("records"):
        uid = rec.pop(grp)
        out[uid] = {k: float(v) for k, v in rec.items() if v is not None and not pd.isna(v)}
    return out


def _prepare_data(
    data: pd.DataFrame,
    x: str,
    y: str,
    grp: str,
    keep: Tuple[str, ...],
    subset: Optional[Sequence[Any]],
    options: ModelerOptions,
) -> pd.DataFrame:
    if not isinstance(data, pd.DataFrame):
        raise InputError("data must be a pandas DataFrame in long format.")
    missing = [c for c in (x, y, grp) + keep if c not in data.columns]
    if missing:
        raise InputError(f"Columns {missing} not found in data.")

    cols = [grp, x, y] + [k for k in keep if k not in (grp, x, y)]
    df = data[cols].copy()
    try:
        df[x] = pd.to_numeric(df[x]).astype(float)
        df[y] = pd.to_numeric(df[y]).astype(float)
    except (TypeError, ValueError) as e:
        raise InputError(f"Columns {x!r} and {y!r} must be numeric.") from e
    df = df.dropna(subset=[x, y])

    if subset is not None:
        wanted = list(as_tuple(subset))
        present = set(df[grp].unique())
        absent = [u for u in wanted if u not in present]
        if absent:
            raise InputError(f"Groups {absent} are not present in data.")
        df = df[df[grp].isin(wanted)]
    if df.empty:
        raise InputError("No observations left to fit.")

    return prepare(
        df,
        x,
        y,
        grp,
        max_as_last=options.max_as_last,
        check_negative=options.check_negative,
        zero=options.add_zero,
    )


def build_tasks(
    df: pd.DataFrame,
    x: str,
    y: str,
    grp: str,
    curve: Curve,
    *,
    parameters: Optional[Mapping[str, float]] = None,
    fixed_params: Optional[Mapping[str, float] | pd.DataFrame] = None,
    initial_vals: Optional[pd.DataFrame] = None,
    lower: BoundSpec = None,
    upper: BoundSpec = None,
    methods: Tuple[str, ...] = DEFAULT_METHODS,
    keep: Tuple[str, ...] = (),
    options: Optional[ModelerOptions] = None,
) -> List[GroupTask]:
    """One self-contained GroupTask per group, sorted by group id."""
    options = ModelerOptions() if options is None else options
    shared_start = dict(parameters or {})
    _check_names(list(shared_start.keys()), curve, "Initial values")
    starts = _per_group_table(initial_vals, grp, curve, "initial_vals")

    if isinstance(fixed_params, pd.DataFrame):
        fixed_by_group = _per_group_table(fixed_params, grp, curve, "fixed_params")
        shared_fixed: Optional[Dict[str, float]] = None
    else:
        fixed_by_group = {}
        shared_fixed = {k: float(v) for k, v in dict(fixed_params or {}).items()}
        _check_names(list(shared_fixed.keys()), curve, "Fixed parameters")

    lo_map = _bound_map(lower, curve, "lower")
    hi_map = _bound_map(upper, curve, "upper")

    tasks: List[GroupTask] = []
    for uid, g in df.groupby(grp, sort=True):
        if shared_fixed is not None:
            fixed = shared_fixed
        else:
            if uid not in fixed_by_group:
                raise InputError(f"fixed_params has no row for group {uid!r}.")
            fixed = fixed_by_group[uid]
        free_names, fixed_map = curve.free_and_fixed(fixed)
        bounds = curve.bounds_for(free_names, lo_map, hi_map)
        resolve_methods(methods, bounds)

        gx = g[x].to_numpy(dtype=float)
        gy = g[y].to_numpy(dtype=float)
        overrides = dict(shared_start)
        overrides.update(starts.get(uid, {}))
        missing = curve.unseedable(free_names, overrides, bounds)
        if missing:
            raise InputError(
                f"No initial value for {', '.join(missing)} in group {uid!r}. Provide "
                "parameters=..., initial_vals=..., curve.guess(...), a guesser, or finite bounds."
            )

        metadata = {k: g[k].iloc[0] for k in keep if k in g.columns}
        tasks.append(
            GroupTask(
                uid=uid,
                curve=curve,
                x=gx,
                y=gy,
                free_names=tuple(free_names),
                fixed=fixed_map,
                start=overrides,
                lower=bounds[0],
                upper=bounds[1],
                methods=methods,
                options=options,
                metadata=metadata,
            )
        )
    return tasks


def modeler(
    data: pd.DataFrame,
    x: str = "x",
    y: str = "y",
    grp: str = "uid",
    curve: str | Curve = "lin_plat",
    parameters: Optional[Mapping[str, float]] = None,
    *,
    fixed_params: Optional[Mapping[str, float] | pd.DataFrame] = None,
    initial_vals: Optional[pd.DataFrame] = None,
    lower: BoundSpec = None,
    upper: BoundSpec = None,
    method: Sequence[str] | str = DEFAULT_METHODS,
    subset: Optional[Any] = None,
    keep: Optional[Sequence[str] | str] = None,
    registry: Optional[CurveRegistry] = None,
    options: Optional[ModelerOptions] = None,
    **option_overrides: Any,
) -> FitCollection:
    """Fit a growth curve to every group of a long-format table.

    Parameters
    ----------
    data:
        Long table with one row per observation.
    x, y, grp:
        Column names of the predictor, the response and the group id.
    curve:
        A registered curve name (looked up in ``registry``) or a Curve.
    parameters:
        Initial values shared by every group.
    fixed_params:
        Mapping of values fixed for all groups, or a table with the group
        column and one column per fixed parameter.
    initial_vals:
        Table with the group column and per-group initial values; these
        take precedence over ``parameters``.
    lower, upper:
        A number for every parameter or a mapping of parameter -> bound.
    method:
        Optimisation methods tried for every group; the smallest finite SSE
        wins and ties go to the first method listed.
    subset:
        Group ids to fit.
    keep:
        Extra columns carried into the result (first value per group).
    options, **option_overrides:
        A ModelerOptions and/or individual fields, e.g. ``add_zero=True``.

    Groups that no method could fit are recorded in
    ``FitCollection.failures``; structurally invalid input raises
    InputError before any fitting starts.
    """
    options = modeler_options(options, **option_overrides)
    registry = DEFAULT_REGISTRY if registry is None else registry
    curve_obj = registry.resolve(curve)
    methods = tuple(m.lower() for m in as_tuple(method))
    resolve_methods(methods)
    keep_cols = tuple(as_tuple(keep))

    t0 = time.perf_counter()
    df = _prepare_data(data, x, y, grp, keep_cols, subset, options)
    tasks = build_tasks(
        df,
        x,
        y,
        grp,
        curve_obj,
        parameters=parameters,
        fixed_params=fixed_params,
        initial_vals=initial_vals,
        lower=lower,
        upper=upper,
        methods=methods,
        keep=keep_cols,
        options=options,
    )
    fits, failures, diagnostics = run_tasks(tasks, options)
    elapsed = time.perf_counter() - t0

    collection = FitCollection(
        fits=fits,
        failures=failures,
        groups=tuple(t.uid for t in tasks),
        diagnostics=diagnostics,
        elapsed=elapsed,
        x_var=x,
        y_var=y,
        grp_var=grp,
        keep=keep_cols,
        methods=methods,
        options=options,
    )

    logger.info(
        "Fitted %s to %d groups in %.2fs (convergence %.1f%%, %d iterations)",
        curve_obj.name,
        len(tasks),
        elapsed,
        100.0 * collection.convergence_rate,
        collection.iterations,
    )
    if failures:
        warn(
            f"{len(failures)} of {len(tasks)} groups could not be fitted: "
            + ", ".join(repr(u) for u in failures),
            ConvergenceWarning,
        )
    return collection
