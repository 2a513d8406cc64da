from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
import math
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InputError
from .optimizers import Optimizer, OptimizerResult, get_optimizer
from .optimizers.common import all_finite_bounds, failed_result, has_finite_bounds
from .options import ModelerOptions

DEFAULT_METHODS: Tuple[str, ...] = ("nelder-mead", "powell", "l-bfgs-b")


@dataclass(frozen=True)
class SelectionPolicy:
    """Pick the smallest finite objective; ties go to the earliest method."""

    def select(self, results: Sequence[OptimizerResult]) -> Optional[int]:
        best_i: Optional[int] = None
        best_v = math.inf
        for i, r in enumerate(results):
            if not r.usable:
                continue
            if best_i is None or r.objective < best_v:
                best_i = i
                best_v = r.objective
        return best_i


@dataclass(frozen=True)
class PortfolioOutcome:
    results: Tuple[OptimizerResult, ...]
    selected: Optional[int] = None

    @property
    def best(self) -> Optional[OptimizerResult]:
        return None if self.selected is None else self.results[self.selected]

    @property
    def converged(self) -> bool:
        return self.selected is not None

    def records(self) -> List[Dict[str, Any]]:
        out = []
        for i, r in enumerate(self.results):
            rec = r.record()
            rec["selected"] = i == self.selected
            out.append(rec)
        return out


def resolve_methods(
    methods: Sequence[str] | str,
    bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None,
) -> Tuple[Optimizer, ...]:
    """Look up optimizers and check them against the bounds in use."""
    if isinstance(methods, str):
        methods = (methods,)
    methods = tuple(methods)
    if not methods:
        raise InputError("At least one optimisation method is required.")
    if len(set(m.lower() for m in methods)) != len(methods):
        raise InputError(f"Duplicate methods in {methods}.")
    optimizers = tuple(get_optimizer(m) for m in methods)
    if bounds is not None:
        for opt in optimizers:
            if opt.requires_bounds and not all_finite_bounds(bounds):
                raise InputError(
                    f"Method {opt.name!r} requires finite lower and upper bounds "
                    "for every free parameter."
                )
            if not opt.supports_bounds and has_finite_bounds(bounds):
                raise InputError(
                    f"Method {opt.name!r} does not support bounds; "
                    "drop lower/upper or choose a bounded method."
                )
    return optimizers


def run_method(
    optimizer: Optimizer,
    objective: Any,
    p0: np.ndarray,
    bounds: Tuple[np.ndarray, np.ndarray],
    options: Dict[str, Any],
) -> OptimizerResult:
    """Run one optimizer, timing it and converting stray errors to failures."""
    t0 = time.perf_counter()
    try:
        res = optimizer.minimize(
            objective=objective, p0=p0, bounds=bounds, options=options
        )
    except Exception as exc:
        res = failed_result(optimizer.name, p0, f"{type(exc).__name__}: {exc}")
    return replace(res, elapsed=time.perf_counter() - t0)


def run_portfolio(
    objective: Any,
    p0: np.ndarray,
    bounds: Tuple[np.ndarray, np.ndarray],
    methods: Sequence[str] = DEFAULT_METHODS,
    *,
    options: Optional[ModelerOptions] = None,
    policy: Optional[SelectionPolicy] = None,
    concurrent: bool = False,
) -> PortfolioOutcome:
    """Run every method from the same start and select the winner.

    Results are kept in declaration order whether the methods ran
    sequentially or in a thread pool.
    """
    options = ModelerOptions() if options is None else options
    policy = SelectionPolicy() if policy is None else policy
    optimizers = resolve_methods(methods)
    p0 = np.asarray(p0, dtype=float)

    def _one(opt: Optimizer) -> OptimizerResult:
        return run_method(opt, objective, p0.copy(), bounds, options.for_method(opt.name))

    if concurrent and len(optimizers) > 1:
        with ThreadPoolExecutor(max_workers=len(optimizers)) as pool:
            results = tuple(pool.map(_one, optimizers))
    else:
        results = tuple(_one(opt) for opt in optimizers)

    return PortfolioOutcome(results=results, selected=policy.select(results))
