import math

import numpy as np
import pytest

from growth_modeler import Curve, InputError, get_curve
from growth_modeler.metrics import METRICS, mae, r_squared, rmse, sse
from growth_modeler.objective import build_objective


def _nan_curve(t, a):
    return np.full_like(t, np.nan) * a


def _raising_curve(t, a):
    raise ZeroDivisionError("boom")


def test_sse_objective_and_residuals() -> None:
    curve = get_curve("lin")
    x = np.array([0.0, 1.0, 2.0, 3.0])
    y = np.array([1.0, 3.2, 4.9, 7.0])
    obj = build_objective(curve, x, y, ["m", "b"])

    theta = np.array([2.0, 1.0])
    np.testing.assert_allclose(obj.residuals(theta), y - (2.0 * x + 1.0))
    assert obj(theta) == pytest.approx(0.2**2 + 0.1**2)
    assert obj.n_obs == 4
    assert obj.n_free == 2


def test_fixed_parameters_are_merged_positionally() -> None:
    curve = get_curve("lin_plat")
    x = np.array([0.0, 50.0, 100.0])
    obj = build_objective(curve, x, np.zeros(3), ["t1", "t2"], {"k": 100.0})
    assert obj.bind([10.0, 90.0]) == {"k": 100.0, "t1": 10.0, "t2": 90.0}
    np.testing.assert_allclose(obj.predict([0.0, 100.0]), [0.0, 50.0, 100.0])
    with pytest.raises(InputError):
        obj.bind([1.0])


@pytest.mark.parametrize("func", [_nan_curve, _raising_curve])
def test_non_finite_or_failing_evaluation_maps_to_inf(func) -> None:
    curve = Curve.from_function(func)
    obj = build_objective(curve, [0.0, 1.0], [0.0, 1.0], ["a"])
    assert obj(np.array([1.0])) == math.inf


def test_overflow_maps_to_inf() -> None:
    curve = get_curve("exp_lin")
    x = np.linspace(0.0, 100.0, 5)
    obj = build_objective(curve, x, np.zeros_like(x), ["t1", "t2", "alpha", "beta"])
    assert obj(np.array([0.0, 100.0, 50.0, 1.0])) == math.inf


def test_alternative_metrics() -> None:
    curve = get_curve("lin")
    x = np.array([0.0, 1.0, 2.0])
    y = np.array([0.0, 2.0, 2.0])
    theta = np.array([1.0, 0.0])
    assert build_objective(curve, x, y, ["m", "b"], metric="mae")(theta) == pytest.approx(1.0 / 3.0)
    assert build_objective(curve, x, y, ["m", "b"], metric="mse")(theta) == pytest.approx(1.0 / 3.0)
    custom = build_objective(curve, x, y, ["m", "b"], metric=lambda a, p: float(np.max(np.abs(a - p))))
    assert custom(theta) == pytest.approx(1.0)


def test_build_objective_validates_input() -> None:
    curve = get_curve("lin")
    with pytest.raises(InputError):
        build_objective(curve, [0.0, 1.0], [0.0], ["m", "b"])
    with pytest.raises(InputError):
        build_objective(curve, [], [], ["m", "b"])
    with pytest.raises(InputError, match="Unknown metric"):
        build_objective(curve, [0.0], [0.0], ["m", "b"], metric="huber")


def test_metric_functions() -> None:
    a = np.array([1.0, 2.0, 3.0, 4.0])
    p = np.array([1.5, 2.0, 2.5, 4.0])
    assert sse(a, p) == pytest.approx(0.5)
    assert mae(a, p) == pytest.approx(0.25)
    assert rmse(a, p) == pytest.approx(np.sqrt(0.125))
    assert r_squared(a, 3.0 * a + 1.0) == pytest.approx(1.0)
    assert math.isnan(r_squared(a, np.ones(4)))
    assert set(METRICS) == {"sse", "mse", "mae", "rmse", "r_squared"}
