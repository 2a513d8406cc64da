from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, Optional, Protocol, Tuple

import numpy as np


@dataclass(frozen=True)
class OptimizerResult:
    """Normalized result returned by any optimizer."""

    method: str
    theta: np.ndarray  # free parameters, shape (P,)
    objective: float = float("inf")
    success: bool = True
    message: str = ""
    nit: int = 0
    nfev: int = 0
    elapsed: float = 0.0
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        """A finite objective at a finite parameter vector."""
        return bool(
            math.isfinite(self.objective) and np.all(np.isfinite(self.theta))
        )

    def record(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "objective": float(self.objective),
            "success": bool(self.success),
            "nit": int(self.nit),
            "nfev": int(self.nfev),
            "elapsed": float(self.elapsed),
            "message": str(self.message),
        }


def failed_result(method: str, p0: np.ndarray, message: str) -> OptimizerResult:
    return OptimizerResult(
        method=method,
        theta=np.asarray(p0, dtype=float),
        objective=float("inf"),
        success=False,
        message=message,
    )


def scipy_bounds(bounds: Tuple[np.ndarray, np.ndarray]) -> list:
    """(lo, hi) arrays -> list of (lo|None, hi|None) pairs."""
    lo, hi = bounds
    out = []
    for lo_i, hi_i in zip(np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)):
        out.append(
            (None if not math.isfinite(lo_i) else float(lo_i),
             None if not math.isfinite(hi_i) else float(hi_i))
        )
    return out


def has_finite_bounds(bounds: Optional[Tuple[np.ndarray, np.ndarray]]) -> bool:
    """True if any parameter carries a finite lower or upper bound."""
    if bounds is None:
        return False
    lo, hi = bounds
    return bool(np.any(np.isfinite(lo)) or np.any(np.isfinite(hi)))


def all_finite_bounds(bounds: Optional[Tuple[np.ndarray, np.ndarray]]) -> bool:
    """True if every parameter has finite (lo, hi) bounds."""
    if bounds is None:
        return False
    lo = np.asarray(bounds[0], dtype=float)
    hi = np.asarray(bounds[1], dtype=float)
    return bool(np.all(np.isfinite(lo)) and np.all(np.isfinite(hi)) and np.all(hi > lo))


class Optimizer(Protocol):
    """Optimizer protocol: minimise one group's objective from one start."""

    name: str
    supports_bounds: bool
    requires_bounds: bool

    def minimize(
        self,
        *,
        objective: Any,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: Dict[str, Any],
    ) -> OptimizerResult: ...
