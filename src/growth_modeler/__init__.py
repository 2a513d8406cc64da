"""growth_modeler public API."""
from .collection import FitCollection, combine
from .comparison import anova
from .curve import Curve
from .curves import CurveRegistry, get_curve, list_curves, register_curve
from .errors import (
    ConvergenceFailure,
    ConvergenceWarning,
    GrowthModelerError,
    InputError,
    NumericalSingularity,
)
from .fit import FitResult, GroupFailure, fit_group
from .inference import compute_tangent, inverse_predict, predict
from .modeler import modeler
from .options import ModelerOptions, modeler_options
from .portfolio import DEFAULT_METHODS, SelectionPolicy
from . import curves, optimizers

__all__ = [
    "modeler",
    "predict",
    "inverse_predict",
    "compute_tangent",
    "combine",
    "anova",
    "Curve",
    "CurveRegistry",
    "get_curve",
    "register_curve",
    "list_curves",
    "FitCollection",
    "FitResult",
    "GroupFailure",
    "fit_group",
    "ModelerOptions",
    "modeler_options",
    "DEFAULT_METHODS",
    "SelectionPolicy",
    "GrowthModelerError",
    "InputError",
    "ConvergenceFailure",
    "NumericalSingularity",
    "ConvergenceWarning",
    "curves",
    "optimizers",
]
