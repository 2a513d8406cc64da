from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np
from scipy.optimize import minimize

from .common import OptimizerResult, failed_result, has_finite_bounds, scipy_bounds

# scipy.optimize.minimize methods that accept a bounds argument.
_BOUNDED_METHODS = {"nelder-mead", "powell", "l-bfgs-b", "tnc", "slsqp", "trust-constr"}


class ScipyMinimizeOptimizer:
    """One scipy.optimize.minimize method, e.g. ``nelder-mead`` or ``l-bfgs-b``."""

    requires_bounds = False

    def __init__(self, method: str):
        self.method = str(method).lower()
        self.name = self.method
        self.supports_bounds = self.method in _BOUNDED_METHODS

    def __repr__(self) -> str:
        return f"ScipyMinimizeOptimizer({self.method!r})"

    def minimize(
        self,
        *,
        objective: Any,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: Dict[str, Any],
    ) -> OptimizerResult:
        """Minimise with scipy.optimize.minimize.

        Options:
        - maxit: iteration budget, forwarded as ``maxiter``
        - tol: forwarded to minimize
        - options: dict merged into the scipy ``options`` argument
        """
        p0 = np.asarray(p0, dtype=float)
        scipy_opts: Dict[str, Any] = dict(options.get("options", None) or {})
        if options.get("maxit") is not None:
            key = "maxfun" if self.method == "tnc" else "maxiter"
            scipy_opts.setdefault(key, int(options["maxit"]))

        kwargs: Dict[str, Any] = {"method": self.method, "options": scipy_opts}
        if self.supports_bounds and has_finite_bounds(bounds):
            kwargs["bounds"] = scipy_bounds(bounds)
        if options.get("tol") is not None:
            kwargs["tol"] = float(options["tol"])

        try:
            res = minimize(
                lambda v: float(objective(np.asarray(v, dtype=float))),
                p0,
                **kwargs,
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
            stats={"optimizer": "scipy.minimize", "method": self.method},
        )
