import math

import numpy as np
import pandas as pd
import pytest

from growth_modeler import InputError, ModelerOptions, get_curve, modeler, optimizers
from growth_modeler.objective import build_objective
from growth_modeler.optimizers import (
    OptimizerResult,
    available_optimizers,
    get_optimizer,
    register_optimizer,
)
from growth_modeler.portfolio import (
    DEFAULT_METHODS,
    SelectionPolicy,
    resolve_methods,
    run_method,
    run_portfolio,
)

UNBOUNDED = (np.full(2, -np.inf), np.full(2, np.inf))


def _line_objective(seed: int = 0):
    rng = np.random.default_rng(seed)
    x = np.linspace(0.0, 10.0, 25)
    y = 1.5 * x - 2.0 + rng.normal(0.0, 0.2, size=x.shape)
    obj = build_objective(get_curve("lin"), x, y, ["m", "b"])
    m, b = np.polyfit(x, y, 1)
    return obj, np.array([m, b])


def _result(method: str, value: float, theta=(0.0, 0.0)) -> OptimizerResult:
    return OptimizerResult(method=method, theta=np.asarray(theta, dtype=float), objective=value)


class _Exploding:
    name = "exploding"
    supports_bounds = True
    requires_bounds = False

    def minimize(self, *, objective, p0, bounds, options):
        raise RuntimeError("solver crashed")


@pytest.mark.parametrize(
    "method", ["nelder-mead", "powell", "l-bfgs-b", "bfgs", "least_squares"]
)
def test_each_method_finds_the_least_squares_line(method) -> None:
    obj, ols = _line_objective()
    res = get_optimizer(method).minimize(
        objective=obj, p0=np.array([0.0, 0.0]), bounds=UNBOUNDED, options={}
    )
    assert res.usable
    assert res.method == method
    np.testing.assert_allclose(res.theta, ols, atol=1e-2)
    assert res.objective == pytest.approx(obj(ols), rel=1e-3)


def test_differential_evolution_needs_finite_bounds() -> None:
    obj, ols = _line_objective()
    de = get_optimizer("differential_evolution")

    res = de.minimize(objective=obj, p0=np.zeros(2), bounds=UNBOUNDED, options={})
    assert not res.success
    assert res.objective == math.inf

    bounds = (np.array([-5.0, -10.0]), np.array([5.0, 10.0]))
    res = de.minimize(objective=obj, p0=np.zeros(2), bounds=bounds, options={"seed": 0})
    np.testing.assert_allclose(res.theta, ols, atol=1e-2)


def test_unknown_method_lists_available() -> None:
    with pytest.raises(InputError, match="Available"):
        get_optimizer("simplex")
    assert "nelder-mead" in available_optimizers()


def test_selection_takes_smallest_finite_and_breaks_ties_by_order() -> None:
    policy = SelectionPolicy()
    results = [
        _result("a", 2.0),
        _result("b", 1.0),
        _result("c", 1.0),
        _result("d", math.inf),
    ]
    assert policy.select(results) == 1
    assert policy.select([_result("a", math.inf), _result("b", 3.0, (np.nan, 0.0))]) is None
    assert policy.select([_result("a", 5.0), _result("b", 5.0)]) == 0


def test_run_method_turns_exceptions_into_failures() -> None:
    obj, _ = _line_objective()
    res = run_method(_Exploding(), obj, np.zeros(2), UNBOUNDED, {})
    assert not res.success
    assert not res.usable
    assert "solver crashed" in res.message
    assert res.elapsed >= 0.0


def test_portfolio_keeps_declaration_order_and_flags_winner() -> None:
    obj, _ = _line_objective()
    outcome = run_portfolio(obj, np.zeros(2), UNBOUNDED, DEFAULT_METHODS)
    assert [r.method for r in outcome.results] == list(DEFAULT_METHODS)
    assert outcome.converged
    best = min(r.objective for r in outcome.results)
    assert outcome.best.objective == best
    records = outcome.records()
    assert sum(rec["selected"] for rec in records) == 1


def test_portfolio_concurrent_matches_sequential() -> None:
    obj, _ = _line_objective(seed=3)
    seq = run_portfolio(obj, np.zeros(2), UNBOUNDED, DEFAULT_METHODS)
    conc = run_portfolio(obj, np.zeros(2), UNBOUNDED, DEFAULT_METHODS, concurrent=True)
    assert seq.selected == conc.selected
    for a, b in zip(seq.results, conc.results):
        assert a.method == b.method
        np.testing.assert_array_equal(a.theta, b.theta)


def test_iteration_budget_is_forwarded() -> None:
    obj, _ = _line_objective()
    opts = ModelerOptions(maxit=3)
    outcome = run_portfolio(obj, np.zeros(2), UNBOUNDED, ("nelder-mead",), options=opts)
    assert outcome.results[0].nit <= 3
    assert not outcome.results[0].success


def test_optimizer_options_reach_one_method() -> None:
    opts = ModelerOptions(maxit=50, optimizer_options={"powell": {"tol": 1e-10}})
    assert opts.for_method("powell") == {"maxit": 50, "tol": 1e-10}
    assert opts.for_method("nelder-mead") == {"maxit": 50}


def test_resolve_methods_validation() -> None:
    finite = (np.array([0.0, 0.0]), np.array([1.0, 1.0]))
    half = (np.array([0.0, -np.inf]), np.array([1.0, np.inf]))

    with pytest.raises(InputError):
        resolve_methods(())
    with pytest.raises(InputError, match="Duplicate"):
        resolve_methods(("powell", "POWELL"))
    with pytest.raises(InputError):
        resolve_methods(("newton",))
    with pytest.raises(InputError, match="requires finite"):
        resolve_methods(("differential_evolution",), half)
    with pytest.raises(InputError, match="does not support bounds"):
        resolve_methods(("bfgs",), finite)

    assert len(resolve_methods(("differential_evolution", "l-bfgs-b"), finite)) == 2
    assert len(resolve_methods("bfgs", UNBOUNDED)) == 1


class _StayPut:
    """Reports the starting point as the optimum."""

    name = "Stay-Put"
    supports_bounds = True
    requires_bounds = False

    def minimize(self, *, objective, p0, bounds, options):
        p0 = np.asarray(p0, dtype=float)
        return OptimizerResult(method=self.name.lower(), theta=p0, objective=float(objective(p0)))


def test_registered_optimizer_is_selectable_by_name(monkeypatch) -> None:
    monkeypatch.setattr(optimizers, "_OPTIMIZERS", dict(optimizers._OPTIMIZERS))
    register_optimizer(_StayPut())
    assert available_optimizers()[-1] == "stay-put"
    with pytest.raises(InputError, match="already registered"):
        register_optimizer(_StayPut())
    register_optimizer(_StayPut(), replace=True)

    x = np.linspace(0.0, 10.0, 12)
    data = pd.DataFrame({"uid": "g", "x": x, "y": 3.0 * x + 1.0})
    start = {"m": 2.0, "b": 0.5}

    alone = modeler(data, curve="lin", parameters=start, method="STAY-PUT")
    assert alone["g"].method == "stay-put"
    assert alone["g"].values == pytest.approx(start)

    both = modeler(data, curve="lin", parameters=start, method=["stay-put", "nelder-mead"])
    assert both["g"].method == "nelder-mead"
    assert both["g"].values["m"] == pytest.approx(3.0, abs=1e-2)
    assert both.diagnostics["method"].tolist() == ["stay-put", "nelder-mead"]
