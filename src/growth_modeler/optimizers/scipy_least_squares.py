from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np
from scipy.optimize import least_squares

from .common import OptimizerResult, failed_result


class ScipyLeastSquaresOptimizer:
    """Trust-region least squares on the residual vector.

    Only meaningful for the ``sse`` loss; the reported objective is always
    the group objective evaluated at the solution.
    """

    name = "least_squares"
    supports_bounds = True
    requires_bounds = False

    def minimize(
        self,
        *,
        objective: Any,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: Dict[str, Any],
    ) -> OptimizerResult:
        """Options: maxit (forwarded as max_nfev), method ('trf'), loss, f_scale."""
        p0 = np.asarray(p0, dtype=float)
        metric = getattr(objective, "metric", "sse")
        if metric != "sse":
            return failed_result(
                self.name, p0, f"least_squares requires the 'sse' metric, got {metric!r}."
            )

        def _residual(theta: np.ndarray) -> np.ndarray:
            r = np.asarray(objective.residuals(theta), dtype=float)
            # Keep the solver away from invalid regions without raising.
            return np.where(np.isfinite(r), r, 1e150)

        lo, hi = bounds
        kwargs: Dict[str, Any] = {
            "method": str(options.get("method", "trf")),
            "bounds": (np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)),
        }
        if options.get("maxit") is not None:
            kwargs["max_nfev"] = int(options["maxit"])
        for k in ("loss", "f_scale", "ftol", "xtol", "gtol", "x_scale"):
            if k in options:
                kwargs[k] = options[k]

        try:
            res = least_squares(_residual, p0, **kwargs)
        except Exception as exc:
            return failed_result(self.name, p0, f"{type(exc).__name__}: {exc}")

        theta = np.asarray(res.x, dtype=float).reshape(-1)
        return OptimizerResult(
            method=self.name,
            theta=theta,
            objective=float(objective(theta)),
            success=bool(res.success),
            message=str(res.message),
            nit=int(getattr(res, "njev", 0) or 0),
            nfev=int(getattr(res, "nfev", 0) or 0),
            stats={"optimizer": "scipy.least_squares", "status": int(res.status)},
        )
