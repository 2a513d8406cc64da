"""Exception and warning types raised by growth_modeler."""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np

__all__ = [
    "GrowthModelerError",
    "InputError",
    "ConvergenceFailure",
    "NumericalSingularity",
    "ConvergenceWarning",
]


class GrowthModelerError(Exception):
    """Base class for every error raised by this package."""


class InputError(GrowthModelerError, ValueError):
    """Structurally invalid input: bad parameter specs, ids, domains, names."""


class ConvergenceFailure(GrowthModelerError, RuntimeError):
    """No optimisation method produced a usable finite objective for a group."""

    def __init__(self, message: str, *, uid: Any = None, results: Sequence[Any] = ()):
        super().__init__(message)
        self.uid = uid
        self.results = tuple(results)


class NumericalSingularity(GrowthModelerError, np.linalg.LinAlgError):
    """The Hessian at the optimum could not be inverted into a covariance."""


class ConvergenceWarning(UserWarning):
    """Emitted when one or more groups could not be fitted."""
