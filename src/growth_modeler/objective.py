from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Tuple

import numpy as np

from .curve import Curve
from .errors import InputError
from .metrics import LOSSES, Metric


def resolve_loss(metric: str | Metric) -> Metric:
    """Return a loss callable from a name in LOSSES or a callable."""
    if callable(metric):
        return metric
    try:
        return LOSSES[str(metric).lower()]
    except KeyError as e:
        raise InputError(
            f"Unknown metric {metric!r}. Available: {tuple(LOSSES.keys())}"
        ) from e


@dataclass(frozen=True)
class Objective:
    """Scalar loss over the free-parameter vector of one group.

    Any exception or non-finite value raised while evaluating the curve or
    the loss maps to +inf, so optimisers never see an error.
    """

    curve: Curve
    x: np.ndarray
    y: np.ndarray
    free_names: Tuple[str, ...]
    fixed_map: Dict[str, float] = field(default_factory=dict)
    metric: str | Metric = "sse"

    def bind(self, theta: Sequence[float]) -> Dict[str, float]:
        """Merge positional free values with the fixed map."""
        theta = np.asarray(theta, dtype=float).reshape(-1)
        if theta.shape[0] != len(self.free_names):
            raise InputError(
                f"Expected {len(self.free_names)} free values, got {theta.shape[0]}."
            )
        kw = dict(self.fixed_map)
        for j, name in enumerate(self.free_names):
            kw[name] = float(theta[j])
        return kw

    def predict(self, theta: Sequence[float], x: Any = None) -> np.ndarray:
        return self.curve.eval(self.x if x is None else x, **self.bind(theta))

    def residuals(self, theta: Sequence[float]) -> np.ndarray:
        """y - f(x; theta)."""
        return self.y - self.predict(theta)

    def __call__(self, theta: Sequence[float]) -> float:
        loss = resolve_loss(self.metric)
        try:
            yhat = self.predict(theta)
        except Exception:
            return float("inf")
        if not np.all(np.isfinite(yhat)):
            return float("inf")
        try:
            value = float(loss(self.y, yhat))
        except Exception:
            return float("inf")
        if not np.isfinite(value):
            return float("inf")
        return value

    @property
    def n_obs(self) -> int:
        return int(self.y.shape[0])

    @property
    def n_free(self) -> int:
        return len(self.free_names)


def build_objective(
    curve: Curve,
    x: Any,
    y: Any,
    free_names: Sequence[str],
    fixed_map: Dict[str, float] | None = None,
    metric: str | Metric = "sse",
) -> Objective:
    """Build the loss for one group's observations."""
    x_arr = np.asarray(x, dtype=float).reshape(-1)
    y_arr = np.asarray(y, dtype=float).reshape(-1)
    if x_arr.shape != y_arr.shape:
        raise InputError(f"x and y lengths differ: {x_arr.shape} vs {y_arr.shape}.")
    if x_arr.size == 0:
        raise InputError("Cannot build an objective from zero observations.")
    resolve_loss(metric)
    return Objective(
        curve=curve,
        x=x_arr,
        y=y_arr,
        free_names=tuple(free_names),
        fixed_map=dict(fixed_map or {}),
        metric=metric,
    )
