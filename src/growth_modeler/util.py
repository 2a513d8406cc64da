from __future__ import annotations

import inspect
import math
import os
from typing import Any, Callable, Iterable, Sequence, Tuple

import numpy as np
import uncertainties

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


def infer_param_names(func: Callable[..., Any]) -> Tuple[str, ...]:
    """Names of a curve function's parameters: every argument after x."""
    args = list(inspect.signature(func).parameters.values())
    if any(a.kind in _VARIADIC for a in args):
        raise TypeError(
            f"{getattr(func, '__name__', func)!r}: curve functions cannot take *args/**kwargs."
        )
    if len(args) < 2:
        raise TypeError("A curve function needs x followed by at least one parameter.")
    return tuple(a.name for a in args[1:])


def as_tuple(value: Any) -> Tuple[Any, ...]:
    """Normalise a scalar, string or iterable into a tuple."""
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or np.isscalar(value):
        return (value,)
    return tuple(value)


def default_workers() -> int:
    """Half of the visible CPUs, at least one."""
    return max(1, (os.cpu_count() or 2) // 2)


def first_unique(values: Iterable[Any]) -> list:
    seen = set()
    out = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def significance_code(p: float, breaks: Sequence[float] = (0.001, 0.01, 0.05)) -> str:
    """Star code for a p-value: ***, **, * or ns."""
    if p is None or not np.isfinite(p):
        return ""
    for stars, b in zip(("***", "**", "*"), breaks):
        if p < b:
            return stars
    return "ns"


def uncertainty_to_string(value: float, err: float, precision: int | str | None = 1) -> str:
    """Estimate and standard error in shorthand ``value(err)`` notation.

    ``precision`` is the number of significant digits kept in the error;
    ``"auto"`` (or None) applies the Particle Data Group rounding rule.
    Missing or degenerate errors, common for parameters on a bound, are
    written out instead of formatted: ``1.5(NaN)``, ``1(0)``.
    """
    value = float(value)
    err = abs(float(err))
    if math.isnan(value):
        return "NaN"
    if math.isnan(err):
        return f"{value:g}(NaN)"
    if math.isinf(value) or math.isinf(err):
        return "inf"
    auto = precision is None or str(precision).lower() == "auto"
    digits = 1 if auto else max(1, int(precision))  # type: ignore[arg-type]
    if err == 0.0:
        return f"{value:.{digits}g}(0)"
    return format(uncertainties.ufloat(value, err), "S" if auto else f".{digits}uS")
