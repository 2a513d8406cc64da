"""Optimizer implementations + registry."""

from __future__ import annotations

from typing import Dict

from ..errors import InputError
from .common import Optimizer, OptimizerResult
from .scipy_differential_evolution import ScipyDifferentialEvolutionOptimizer
from .scipy_least_squares import ScipyLeastSquaresOptimizer
from .scipy_minimize import ScipyMinimizeOptimizer

_OPTIMIZERS: Dict[str, Optimizer] = {
    m: ScipyMinimizeOptimizer(m)
    for m in ("nelder-mead", "powell", "l-bfgs-b", "bfgs", "cg", "tnc", "slsqp", "trust-constr")
}
_OPTIMIZERS["least_squares"] = ScipyLeastSquaresOptimizer()
_OPTIMIZERS["differential_evolution"] = ScipyDifferentialEvolutionOptimizer()


def get_optimizer(name: str) -> Optimizer:
    """Return an optimizer implementation by name (case-insensitive)."""
    try:
        return _OPTIMIZERS[str(name).lower()]
    except KeyError as e:
        raise InputError(
            f"Unknown method {name!r}. Available: {tuple(_OPTIMIZERS.keys())}"
        ) from e


def register_optimizer(optimizer: Optimizer, *, replace: bool = False) -> Optimizer:
    """Make a custom optimizer available by its ``name``."""
    key = str(optimizer.name).lower()
    if key in _OPTIMIZERS and not replace:
        raise InputError(f"Optimizer {key!r} is already registered.")
    _OPTIMIZERS[key] = optimizer
    return optimizer


def available_optimizers() -> tuple:
    """Names accepted by ``method=``, built-ins first."""
    return tuple(_OPTIMIZERS.keys())


__all__ = [
    "Optimizer",
    "OptimizerResult",
    "get_optimizer",
    "register_optimizer",
    "available_optimizers",
]
