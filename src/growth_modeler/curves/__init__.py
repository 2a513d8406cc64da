"""Built-in growth curves + registry."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Sequence, Tuple

from ..curve import Curve
from ..errors import InputError
from .exponential import exp2_exp, exp2_lin, exp_exp, exp_lin
from .logistic import lin_logis, logistic
from .plateau import lin_pl_lin, lin_pl_lin2, lin_plat, quad_pl_sm, quad_plat
from .polynomial import lin, quad


class CurveRegistry:
    """Name -> Curve lookup.

    A registry is passed explicitly to :func:`growth_modeler.modeler`; fit
    workers receive resolved :class:`Curve` objects, never names.
    """

    def __init__(self, curves: Iterable[Curve] = ()):
        self._curves: Dict[str, Curve] = {}
        for c in curves:
            self.register(c)

    def register(
        self,
        curve: Curve | Callable[..., Any],
        *,
        name: Optional[str] = None,
        param_names: Optional[Sequence[str]] = None,
        replace: bool = False,
    ) -> Curve:
        """Add a curve. Plain functions are wrapped with Curve.from_function."""
        if not isinstance(curve, Curve):
            if not callable(curve):
                raise InputError(f"Cannot register {curve!r}: not a Curve or callable.")
            curve = Curve.from_function(curve, name=name, param_names=param_names)
        key = name or curve.name
        if key in self._curves and not replace:
            raise InputError(
                f"Curve {key!r} is already registered; pass replace=True to overwrite."
            )
        self._curves[key] = curve
        return curve

    def get(self, name: str) -> Curve:
        """Return a curve by name."""
        try:
            return self._curves[name]
        except KeyError as e:
            raise InputError(
                f"Unknown curve {name!r}. Available: {self.names()}"
            ) from e

    def resolve(self, curve: str | Curve) -> Curve:
        if isinstance(curve, Curve):
            return curve
        return self.get(str(curve))

    def names(self) -> Tuple[str, ...]:
        return tuple(self._curves.keys())

    def copy(self) -> "CurveRegistry":
        return CurveRegistry(self._curves.values())

    def __contains__(self, name: object) -> bool:
        return name in self._curves

    def __iter__(self) -> Iterator[str]:
        return iter(self._curves)

    def __len__(self) -> int:
        return len(self._curves)


DEFAULT_REGISTRY = CurveRegistry(
    [
        lin(),
        quad(),
        logistic(),
        lin_plat(),
        lin_logis(),
        quad_plat(),
        quad_pl_sm(),
        lin_pl_lin(),
        lin_pl_lin2(),
        exp_lin(),
        exp2_lin(),
        exp_exp(),
        exp2_exp(),
    ]
)


def get_curve(name: str) -> Curve:
    """Return a built-in (or registered) curve by name."""
    return DEFAULT_REGISTRY.get(name)


def register_curve(
    curve: Curve | Callable[..., Any],
    *,
    name: Optional[str] = None,
    param_names: Optional[Sequence[str]] = None,
    replace: bool = False,
) -> Curve:
    """Register a curve in the default registry."""
    return DEFAULT_REGISTRY.register(
        curve, name=name, param_names=param_names, replace=replace
    )


def list_curves() -> Tuple[str, ...]:
    return DEFAULT_REGISTRY.names()


__all__ = [
    "CurveRegistry",
    "DEFAULT_REGISTRY",
    "get_curve",
    "register_curve",
    "list_curves",
    "lin",
    "quad",
    "logistic",
    "lin_plat",
    "lin_logis",
    "quad_plat",
    "quad_pl_sm",
    "lin_pl_lin",
    "lin_pl_lin2",
    "exp_lin",
    "exp2_lin",
    "exp_exp",
    "exp2_exp",
]
