from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np
from scipy.optimize import differential_evolution

from .common import OptimizerResult, failed_result


class ScipyDifferentialEvolutionOptimizer:
    """Global optimisation with scipy.optimize.differential_evolution.

    Requires finite bounds for *all* free parameters. Seeded by default so
    repeated and parallel runs agree.
    """

    name = "differential_evolution"
    supports_bounds = True
    requires_bounds = True

    def minimize(
        self,
        *,
        objective: Any,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: Dict[str, Any],
    ) -> OptimizerResult:
        """Options (subset of scipy.optimize.differential_evolution):

        - maxit (int, default: 200), forwarded as maxiter
        - popsize (int, default: 15)
        - tol (float, default: 0.01)
        - strategy (str, default: "best1bin")
        - seed (default: 0)
        - mutation, recombination, polish, init, atol, updating
        """
        p0 = np.asarray(p0, dtype=float)
        lo, hi = bounds
        lo = np.asarray(lo, dtype=float).reshape((-1,))
        hi = np.asarray(hi, dtype=float).reshape((-1,))

        de_bounds = []
        for j in range(p0.shape[0]):
            lo_j = float(lo[j])
            hi_j = float(hi[j])
            if not (np.isfinite(lo_j) and np.isfinite(hi_j)) or hi_j <= lo_j:
                return failed_result(
                    self.name,
                    p0,
                    "differential_evolution requires finite bounds with hi > lo.",
                )
            de_bounds.append((lo_j, hi_j))

        de_kwargs: Dict[str, Any] = {}
        maxit = options.get("maxit")
        de_kwargs["maxiter"] = int(200 if maxit is None else maxit)
        de_kwargs["popsize"] = int(options.get("popsize", 15))
        de_kwargs["tol"] = float(options.get("tol", 0.01))
        de_kwargs["strategy"] = str(options.get("strategy", "best1bin"))
        de_kwargs["seed"] = options.get("seed", 0)
        de_kwargs["x0"] = np.clip(p0, lo, hi)

        for k in ("mutation", "recombination", "polish", "init", "atol", "updating"):
            if k in options:
                de_kwargs[k] = options[k]

        try:
            res = differential_evolution(
                lambda v: float(objective(np.asarray(v, dtype=float))),
                de_bounds,
                **de_kwargs,
            )
        except Exception as exc:
            return failed_result(self.name, p0, f"{type(exc).__name__}: {exc}")

        theta = np.asarray(res.x, dtype=float).reshape(-1)
        return OptimizerResult(
            method=self.name,
            theta=theta,
            objective=float(objective(theta)),
            success=bool(res.success),
            message=str(res.message),
            nit=int(getattr(res, "nit", 0) or 0),
            nfev=int(getattr(res, "nfev", 0) or 0),
            stats={"optimizer": "scipy.differential_evolution"},
        )
