from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import uncertainties


__all__ = [
    "ParameterSpec",
    "CorrelatedEstimates",
    "Estimate",
    "EstimateTable",
    "SeedDraft",
]

Bounds = Tuple[Optional[float], Optional[float]]


@dataclass(frozen=True)
class ParameterSpec:
    """Declared properties of one curve parameter."""

    name: str
    fixed: bool = False
    fixed_value: Optional[float] = None
    bounds: Optional[Bounds] = None
    # set via Curve.guess(); beats anything a guesser proposes
    guess: Optional[float] = None
    # signature defaults and Curve.weak_guess(); used when guessers are silent
    weak_guess: Optional[float] = None


@dataclass
class CorrelatedEstimates:
    """Joint ufloats for the free parameters of one group's fit.

    Built on first use from the finite block of the fit's covariance matrix.
    A matrix of the wrong shape, or one uncertainties rejects, yields
    nothing, and callers fall back to independent ufloats.
    """

    values: Mapping[str, float]
    cov: Optional[np.ndarray]
    free_names: Tuple[str, ...]
    _joint: Optional[Dict[str, Any]] = field(default=None, init=False, repr=False)
    _tried: bool = field(default=False, init=False, repr=False)

    def _materialize(self) -> Optional[Dict[str, Any]]:
        if self._tried:
            return self._joint
        self._tried = True
        if self.cov is None:
            return None
        k = len(self.free_names)
        cov = np.asarray(self.cov, dtype=float)
        if cov.shape != (k, k):
            return None
        # parameters pinned on a bound carry NaN variance and are left out
        known = np.isfinite(np.diag(cov))
        names = [n for n, ok in zip(self.free_names, known) if ok]
        block = cov[np.ix_(known, known)]
        if not names or not np.isfinite(block).all():
            return None
        centre = [float(self.values[n]) for n in names]
        try:
            joint = uncertainties.correlated_values(centre, block)
        except (ValueError, np.linalg.LinAlgError):
            return None
        self._joint = dict(zip(names, joint))
        return self._joint

    def get(self, name: str) -> Optional[Any]:
        joint = self._materialize()
        return None if joint is None else joint.get(name)


@dataclass(frozen=True)
class Estimate:
    """Estimate of one parameter, fixed or free."""

    name: str
    value: float
    stderr: Optional[float] = None
    fixed: bool = False
    bounds: Optional[Bounds] = None
    _joint: Optional[CorrelatedEstimates] = field(default=None, repr=False, compare=False)

    @property
    def u(self):
        """The estimate as a ufloat; fixed parameters carry zero uncertainty."""
        if self.fixed:
            return uncertainties.ufloat(self.value, 0.0)
        if self.stderr is None or not np.isfinite(self.stderr):
            raise ValueError(f"Parameter {self.name!r} has no finite standard error.")
        shared = None if self._joint is None else self._joint.get(self.name)
        return shared if shared is not None else uncertainties.ufloat(self.value, self.stderr)

    def __getitem__(self, key: str) -> Any:
        fields = {
            "value": self.value,
            "stderr": self.stderr,
            "error": self.stderr,
            "fixed": self.fixed,
            "bounds": self.bounds,
        }
        return fields[key]


class EstimateTable(Mapping[str, Estimate]):
    """Curve-ordered estimates, looked up by parameter name or position."""

    def __init__(self, estimates: Sequence[Estimate]):
        self._order = tuple(e.name for e in estimates)
        self._by_name = {e.name: e for e in estimates}

    def __getitem__(self, key: Union[str, int]) -> Estimate:  # type: ignore[override]
        if isinstance(key, int) and not isinstance(key, bool):
            key = self._order[key]
        return self._by_name[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def as_dict(self) -> Dict[str, float]:
        return {n: self._by_name[n].value for n in self._order}

    def free(self) -> Tuple[str, ...]:
        return tuple(n for n in self._order if not self._by_name[n].fixed)

    def ufloats(self, names: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        return {n: self[n].u for n in (names or self._order)}


class SeedDraft:
    """Scratch pad a curve's guessers write starting values into.

    Guessers assign attributes (``draft.k = 90.0``) and check ``is_unset``
    so an earlier guesser's proposal is not overwritten.
    """

    def is_unset(self, name: str) -> bool:
        return name not in vars(self)

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))
