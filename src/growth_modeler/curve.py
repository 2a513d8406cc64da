from __future__ import annotations

from dataclasses import dataclass, replace
import inspect
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np
from warnings import warn

from .errors import InputError
from .params import Estimate, ParameterSpec, SeedDraft
from .util import infer_param_names

Guesser = Callable[[np.ndarray, np.ndarray, SeedDraft], None]


@dataclass
class Curve:
    """A growth curve: a vectorised callable plus parameter metadata.

    The function is always called positionally as ``func(x, *theta)`` with
    ``theta`` ordered like ``param_names``.
    """

    name: str
    func: Callable[..., Any]
    param_names: Tuple[str, ...]
    params: Tuple[ParameterSpec, ...]
    guessers: Tuple[Guesser, ...] = ()
    doc: str = ""

    # ---- constructor ----
    @staticmethod
    def from_function(
        func: Callable[..., Any],
        *,
        name: Optional[str] = None,
        param_names: Optional[Sequence[str]] = None,
        doc: Optional[str] = None,
    ) -> "Curve":
        """Construct a Curve from a plain function.

        Parameter names come from the signature unless ``param_names`` is
        given. Numeric signature defaults become weak guesses.
        """
        if param_names is None:
            names = infer_param_names(func)
        else:
            names = tuple(str(n) for n in param_names)
            if not names:
                raise InputError("A curve needs at least one parameter.")
            if len(set(names)) != len(names):
                raise InputError(f"Duplicate parameter names: {names}")

        try:
            sig_params = inspect.signature(func).parameters
        except (TypeError, ValueError):
            sig_params = {}

        specs = []
        for n in names:
            g = None
            p = sig_params.get(n)
            if p is not None and p.default is not inspect.Parameter.empty:
                d = p.default
                if isinstance(d, (int, float, np.number)) and not isinstance(d, bool):
                    g = float(d)
            specs.append(ParameterSpec(name=n, weak_guess=g))

        return Curve(
            name=name or getattr(func, "__name__", "curve"),
            func=func,
            param_names=names,
            params=tuple(specs),
            doc=doc if doc is not None else (inspect.getdoc(func) or ""),
        )

    # ---- evaluation ----
    def eval(
        self, x: Any, *, params: Optional[Mapping[str, Any]] = None, **kwargs
    ) -> np.ndarray:
        """Evaluate the curve at x with given parameters.

        Fixed parameters are filled in when absent. Overflow and invalid
        operations are silenced; non-finite values propagate to the caller.
        """
        values: Dict[str, Any] = {}
        if params is not None:
            for k, v in params.items():
                values[k] = v.value if isinstance(v, Estimate) else v
        values.update(kwargs)

        for spec in self.params:
            if spec.fixed and spec.name not in values:
                values[spec.name] = spec.fixed_value

        missing = [n for n in self.param_names if n not in values]
        if missing:
            raise InputError(f"Missing parameter values for {self.name!r}: {missing}")

        x_arr = np.asarray(x, dtype=float)
        args = [float(values[n]) for n in self.param_names]
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            out = np.asarray(self.func(x_arr, *args), dtype=float)
        if out.shape != x_arr.shape:
            out = np.broadcast_to(out, x_arr.shape).astype(float)
        return out

    def __call__(self, x: Any, *theta: float) -> np.ndarray:
        return self.eval(x, **dict(zip(self.param_names, theta)))

    @property
    def signature(self) -> str:
        return f"{self.name}(x, {', '.join(self.param_names)})"

    # ---- builders (pure; return new curve) ----
    def _with_specs(self, updates: Mapping[str, Any], fn) -> "Curve":
        m = {p.name: p for p in self.params}
        for k, v in updates.items():
            if k not in m:
                raise InputError(
                    f"Unknown parameter {k!r} for curve {self.name!r}; "
                    f"expected one of {self.param_names}."
                )
            m[k] = fn(m[k], v)
        return replace(self, params=tuple(m[n] for n in self.param_names))

    def fix(self, **fixed: float) -> "Curve":
        """Return a new Curve with parameters fixed to values."""
        return self._with_specs(
            fixed, lambda s, v: replace(s, fixed=True, fixed_value=float(v))
        )

    def unfix(self, *names: str) -> "Curve":
        return self._with_specs(
            {n: None for n in names}, lambda s, v: replace(s, fixed=False, fixed_value=None)
        )

    def bound(self, **bounds: Tuple[Optional[float], Optional[float]]) -> "Curve":
        """Return a new Curve with parameter bounds applied."""
        def _apply(spec, b):
            lo, hi = b
            if lo is not None and hi is not None and float(hi) <= float(lo):
                raise InputError(f"Invalid bounds for {spec.name!r}: require hi > lo.")
            return replace(spec, bounds=(lo, hi))

        return self._with_specs(bounds, _apply)

    def guess(self, **guesses: float) -> "Curve":
        """Return a new Curve with strong parameter guesses."""
        return self._with_specs(guesses, lambda s, v: replace(s, guess=float(v)))

    def weak_guess(self, **guesses: float) -> "Curve":
        """Set weak (low-precedence) guesses.

        Weak guesses are used only if guessers don't provide a value for that
        parameter. Strong guesses set via .guess(...) override guessers.
        """
        return self._with_specs(guesses, lambda s, v: replace(s, weak_guess=float(v)))

    def with_guesser(self, fn: Guesser) -> "Curve":
        """Return a new Curve with `fn` appended to the guesser list.

        Guessers should be module-level functions so the curve stays
        picklable for process pools.
        """
        return replace(self, guessers=self.guessers + (fn,))

    # ---- parameter bookkeeping ----
    def spec(self, name: str) -> ParameterSpec:
        for p in self.params:
            if p.name == name:
                return p
        raise KeyError(name)

    def free_and_fixed(
        self, fixed: Optional[Mapping[str, float]] = None
    ) -> Tuple[List[str], Dict[str, float]]:
        """Split parameters into free names and a fixed name->value mapping.

        ``fixed`` adds call-level fixed values on top of those set with
        :meth:`fix`.
        """
        extra = dict(fixed or {})
        unknown = [k for k in extra if k not in self.param_names]
        if unknown:
            raise InputError(
                f"Fixed parameters {unknown} are not parameters of {self.signature}."
            )
        free: List[str] = []
        fixed_map: Dict[str, float] = {}
        for p in self.params:
            if p.name in extra:
                fixed_map[p.name] = float(extra[p.name])
            elif p.fixed:
                fixed_map[p.name] = float(p.fixed_value)  # type: ignore[arg-type]
            else:
                free.append(p.name)
        if not free:
            raise InputError(
                f"All parameters of {self.signature} are fixed; nothing to fit."
            )
        return free, fixed_map

    def bounds_for(
        self,
        free_names: Sequence[str],
        lower: Optional[Mapping[str, float]] = None,
        upper: Optional[Mapping[str, float]] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return (lo, hi) arrays of bounds for free parameters.

        Call-level ``lower``/``upper`` mappings override curve-level bounds.
        """
        lower = dict(lower or {})
        upper = dict(upper or {})
        lo: List[float] = []
        hi: List[float] = []
        for n in free_names:
            b = self.spec(n).bounds
            b_lo = None if b is None else b[0]
            b_hi = None if b is None else b[1]
            b_lo = lower.get(n, b_lo)
            b_hi = upper.get(n, b_hi)
            lo.append(-np.inf if b_lo is None else float(b_lo))
            hi.append(np.inf if b_hi is None else float(b_hi))
        lo_arr = np.array(lo, dtype=float)
        hi_arr = np.array(hi, dtype=float)
        bad = [n for n, a, b in zip(free_names, lo_arr, hi_arr) if not b > a]
        if bad:
            raise InputError(f"Lower bound must be below upper bound for: {bad}")
        return lo_arr, hi_arr

    # ---- seeding ----
    def _default_seeds(
        self, x: np.ndarray, y: np.ndarray, free_names: Sequence[str]
    ) -> Dict[str, float]:
        """Strong guesses, then guessers, then weak guesses."""
        seeds: Dict[str, float] = {}
        strong: set[str] = set()

        for n in free_names:
            spec = self.spec(n)
            if spec.guess is not None:
                seeds[n] = float(spec.guess)
                strong.add(n)

        if self.guessers and x.size and y.size:
            draft = SeedDraft()
            for fn in self.guessers:
                fn(x, y, draft)
            for n, v in draft.to_dict().items():
                if n in free_names and n not in strong and n not in seeds:
                    if v is not None and np.isfinite(v):
                        seeds[n] = float(v)

        for n in free_names:
            if n in seeds:
                continue
            spec = self.spec(n)
            if spec.weak_guess is not None:
                seeds[n] = float(spec.weak_guess)

        return seeds

    def unseedable(
        self,
        free_names: Sequence[str],
        overrides: Optional[Mapping[str, float]] = None,
        bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ) -> List[str]:
        """Free parameters that no seeding source covers, whatever the data.

        A curve with guessers may seed anything, so nothing is reported.
        """
        if self.guessers:
            return []
        overrides = overrides or {}
        lo, hi = self.bounds_for(free_names) if bounds is None else bounds
        out = []
        for j, n in enumerate(free_names):
            spec = self.spec(n)
            if overrides.get(n) is not None or spec.guess is not None:
                continue
            if spec.weak_guess is not None:
                continue
            if np.isfinite(lo[j]) and np.isfinite(hi[j]):
                continue
            out.append(n)
        return out

    def seed(
        self,
        x: Any,
        y: Any,
        free_names: Sequence[str],
        overrides: Optional[Mapping[str, float]] = None,
        bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ) -> Dict[str, float]:
        """Compute starting values for the free parameters.

        Precedence per free parameter:

          1) ``overrides`` (per-call or per-group initial values)
          2) strong guess via curve.guess(...)
          3) curve guessers (with_guesser)
          4) weak guess via curve.weak_guess(...) (and function defaults)
          5) midpoint of finite bounds (with a warning)
          6) else: raise InputError
        """
        free_names = list(free_names)
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if bounds is None:
            bounds = self.bounds_for(free_names)
        lo, hi = bounds

        seeds = self._default_seeds(x, y, free_names)
        if overrides is not None:
            for n, v in overrides.items():
                if n in free_names and v is not None and np.isfinite(v):
                    seeds[n] = float(v)

        filled_from_bounds: List[str] = []
        for j, n in enumerate(free_names):
            if n in seeds:
                continue
            if np.isfinite(lo[j]) and np.isfinite(hi[j]):
                seeds[n] = float(0.5 * (lo[j] + hi[j]))
                filled_from_bounds.append(n)
        if filled_from_bounds:
            warn(
                "Using mid-point of bounds as seed for parameters: "
                + ", ".join(filled_from_bounds),
                UserWarning,
            )

        clipped: List[str] = []
        for j, n in enumerate(free_names):
            if n not in seeds:
                continue
            v0 = seeds[n]
            v = min(max(v0, float(lo[j])), float(hi[j]))
            if v != v0:
                seeds[n] = v
                clipped.append(n)
        if clipped:
            warn("Clipped seed values into bounds for: " + ", ".join(clipped), UserWarning)

        missing = [n for n in free_names if n not in seeds]
        if missing:
            raise InputError(
                "Could not determine initial values for parameters: "
                + ", ".join(missing)
                + ". Provide parameters=..., initial_vals=..., curve.guess(...), "
                "a guesser, or finite bounds."
            )
        return {n: seeds[n] for n in free_names}
