import logging

import numpy as np
import pandas as pd
import pytest

from growth_modeler import (
    ConvergenceWarning,
    Curve,
    CurveRegistry,
    InputError,
    ModelerOptions,
    get_curve,
    modeler,
    predict,
)
from growth_modeler.curves.logistic import logistic_func
from growth_modeler.curves.plateau import lin_plat_func


def plateau_data(n_groups: int, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = np.arange(0.0, 110.0, 10.0)
    frames = []
    for i in range(n_groups):
        t1 = rng.uniform(25.0, 40.0)
        t2 = t1 + rng.uniform(25.0, 40.0)
        k = rng.uniform(80.0, 100.0)
        y = lin_plat_func(x, t1, t2, k) + rng.normal(0.0, 1.5, size=x.shape)
        frames.append(
            pd.DataFrame({"uid": f"p{i:03d}", "x": x, "y": y, "site": "north" if i % 2 else "south"})
        )
    return pd.concat(frames, ignore_index=True)


def _picky(t, a, b):
    return np.where(np.max(t) > 1000.0, np.nan, a * t + b)


def test_linear_plateau_scenario() -> None:
    data = pd.DataFrame(
        {
            "plot": ["A"] * 5,
            "dap": [0.0, 36.0, 56.0, 76.0, 100.0],
            "canopy": [0.0, 2.0, 74.0, 99.0, 100.0],
        }
    )
    col = modeler(
        data,
        x="dap",
        y="canopy",
        grp="plot",
        curve="lin_plat",
        parameters={"t1": 45.0, "t2": 80.0},
        fixed_params={"k": 100.0},
    )
    fit = col["A"]
    assert fit.sse < 50.0
    assert 0.0 < fit.values["t1"] < fit.values["t2"] < 110.0
    assert fit.values["k"] == 100.0
    assert fit.free_names == ("t1", "t2")
    assert col.convergence_rate == 1.0
    assert col.grp_var == "plot"


def test_recovers_logistic_parameters() -> None:
    rng = np.random.default_rng(1)
    x = np.linspace(0.0, 100.0, 41)
    y = logistic_func(x, 0.15, 50.0, 100.0) + rng.normal(0.0, 1.0, size=x.shape)
    col = modeler(pd.DataFrame({"uid": "g", "x": x, "y": y}), curve="logistic")

    est = col["g"].values
    assert est["k"] == pytest.approx(100.0, rel=0.05)
    assert est["t0"] == pytest.approx(50.0, abs=2.0)
    assert est["a"] == pytest.approx(0.15, rel=0.15)

    coef = col.coefficients().set_index("parameter")
    assert (coef["std_error"] > 0).all()
    assert coef.loc["k", "p_value"] < 1e-6


def test_per_group_fixed_and_initial_values() -> None:
    data = plateau_data(3, seed=4)
    fixed = pd.DataFrame({"uid": ["p000", "p001", "p002"], "k": [90.0, 95.0, 100.0]})
    starts = pd.DataFrame({"uid": ["p001"], "t1": [30.0], "t2": [70.0]})
    col = modeler(data, curve="lin_plat", fixed_params=fixed, initial_vals=starts)

    assert col["p000"].fixed == {"k": 90.0}
    assert col["p002"].fixed == {"k": 100.0}
    assert col["p001"].start == {"t1": 30.0, "t2": 70.0}

    short = fixed.iloc[:2]
    with pytest.raises(InputError, match="no row"):
        modeler(data, curve="lin_plat", fixed_params=short)


def test_groups_are_sorted_and_metadata_kept() -> None:
    data = plateau_data(4, seed=2).iloc[::-1]
    col = modeler(data, curve="lin_plat", keep="site")
    assert col.groups == ("p000", "p001", "p002", "p003")
    assert col["p001"].metadata == {"site": "north"}
    table = col.parameter_table(metadata=True)
    assert table["site"].tolist() == ["south", "north", "south", "north"]


def test_failed_groups_are_recorded_not_raised() -> None:
    good = pd.DataFrame({"uid": "good", "x": np.arange(10.0), "y": 2.0 * np.arange(10.0) + 1.0})
    bad = pd.DataFrame({"uid": "bad", "x": 1001.0 + np.arange(10.0), "y": np.arange(10.0)})
    curve = Curve.from_function(_picky, name="picky")

    with pytest.warns(ConvergenceWarning, match="1 of 2"):
        col = modeler(pd.concat([good, bad]), curve=curve, parameters={"a": 1.0, "b": 0.0})

    assert col.groups == ("bad", "good")
    assert list(col.failures) == ["bad"]
    assert col.ids == ("good",)
    assert col.convergence_rate == 0.5
    assert col["good"].values["a"] == pytest.approx(2.0, abs=1e-3)
    with pytest.raises(InputError, match="failed to converge"):
        col["bad"]

    diag = col.diagnostics
    assert set(diag["uid"]) == {"bad", "good"}
    assert not diag[diag["uid"] == "bad"]["selected"].any()

    pred = predict(col, [5.0])
    assert pred["uid"].tolist() == ["bad", "good"]
    assert np.isnan(pred["predicted_value"].iloc[0])
    assert pred["curve"].tolist() == ["picky", "picky"]
    assert pred["predicted_value"].iloc[1] == pytest.approx(11.0, abs=1e-3)


def test_bounds_and_differential_evolution() -> None:
    data = plateau_data(2, seed=5)
    col = modeler(
        data,
        curve="lin_plat",
        lower={"t1": 0.0, "t2": 10.0, "k": 50.0},
        upper={"t1": 60.0, "t2": 100.0, "k": 120.0},
        method=["differential_evolution", "l-bfgs-b"],
    )
    for fit in col.fits.values():
        assert 0.0 <= fit.values["t1"] <= 60.0
        assert fit.method in ("differential_evolution", "l-bfgs-b")
    diag = col.diagnostics
    assert diag.groupby("uid")["selected"].sum().tolist() == [1, 1]


def test_add_zero_option() -> None:
    data = plateau_data(1, seed=6)
    data = data[data["x"] > 0]
    col = modeler(data, curve="lin_plat", add_zero=True)
    fit = col["p000"]
    assert fit.x[0] == 0.0
    assert fit.y[0] == 0.0
    assert fit.n_obs == 11


def test_info_summary_is_logged(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="growth_modeler"):
        modeler(plateau_data(2), curve="lin_plat")
    assert any("Fitted lin_plat to 2 groups" in r.getMessage() for r in caplog.records)


def test_explicit_registry() -> None:
    def hill(t, vmax, km):
        return vmax * t / (km + t)

    reg = CurveRegistry()
    reg.register(hill)
    x = np.linspace(1.0, 50.0, 15)
    data = pd.DataFrame({"uid": "h", "x": x, "y": hill(x, 10.0, 5.0)})
    col = modeler(data, curve="hill", parameters={"vmax": 8.0, "km": 3.0}, registry=reg)
    assert col["h"].values["vmax"] == pytest.approx(10.0, rel=1e-3)

    with pytest.raises(InputError, match="Unknown curve"):
        modeler(data, curve="lin_plat", registry=reg)


@pytest.mark.parametrize(
    "kwargs, match",
    [
        ({"curve": "gompertz"}, "Unknown curve"),
        ({"method": ["simplex"]}, "Unknown method"),
        ({"method": []}, "At least one"),
        ({"subset": ["zzz"]}, "not present"),
        ({"fixed_params": {"t1": 1.0, "t2": 2.0, "k": 3.0}}, "nothing to fit"),
        ({"fixed_params": {"slope": 1.0}}, "do not match"),
        ({"parameters": {"slope": 1.0}}, "do not match"),
        ({"lower": {"t1": 50.0}, "upper": {"t1": 10.0}}, "Lower bound"),
        ({"method": ["differential_evolution"]}, "requires finite"),
        ({"x": "time"}, "not found"),
        ({"frobnicate": True}, "Unknown option"),
    ],
)
def test_structurally_invalid_input_raises(kwargs, match) -> None:
    with pytest.raises(InputError, match=match):
        modeler(plateau_data(2), **kwargs)


def test_non_numeric_response_raises() -> None:
    data = plateau_data(1)
    data["y"] = data["y"].astype(str)
    data.loc[0, "y"] = "n/a"
    with pytest.raises(InputError, match="numeric"):
        modeler(data)


def test_parallel_threads_match_sequential() -> None:
    data = plateau_data(50, seed=7)
    seq = modeler(data, curve="lin_plat")
    par = modeler(data, curve="lin_plat", parallel=True, executor="thread", workers=4)

    assert seq.groups == par.groups
    pd.testing.assert_frame_equal(seq.parameter_table(), par.parameter_table())
    pd.testing.assert_frame_equal(seq.coefficients(), par.coefficients())


def test_parallel_processes_match_sequential() -> None:
    data = plateau_data(50, seed=7)
    opts = ModelerOptions(parallel=True, executor="process", workers=4)
    seq = modeler(data, curve=get_curve("lin_plat"))
    par = modeler(data, curve=get_curve("lin_plat"), options=opts)

    assert par.groups == seq.groups
    assert list(par.fits) == list(seq.fits)
    pd.testing.assert_frame_equal(seq.parameter_table(), par.parameter_table())
    pd.testing.assert_frame_equal(seq.coefficients(), par.coefficients())
    pd.testing.assert_frame_equal(
        seq.diagnostics.drop(columns="elapsed"), par.diagnostics.drop(columns="elapsed")
    )


def _strict_guesser(x, y, draft):
    if np.min(x) < 0:
        raise ValueError("negative time")
    draft.a = 1.0
    draft.b = 0.0


def test_group_that_cannot_be_seeded_is_recorded_as_failure() -> None:
    x = np.linspace(0.0, 10.0, 16)
    data = pd.concat(
        [
            pd.DataFrame({"uid": "a", "x": x, "y": 2.0 * x + 1.0}),
            pd.DataFrame({"uid": "b", "x": [3.0], "y": [4.0]}),
        ]
    )
    with pytest.warns(ConvergenceWarning, match="1 of 2"):
        col = modeler(data, curve="lin")

    assert col.convergence_rate == 0.5
    assert list(col.failures) == ["b"]
    assert "Could not seed" in col.failures["b"].message
    assert col["a"].values["m"] == pytest.approx(2.0, abs=1e-3)


def test_raising_guesser_only_fails_its_group() -> None:
    curve = Curve.from_function(lambda t, a, b: a * t + b, name="line").with_guesser(
        _strict_guesser
    )
    x = np.arange(5.0)
    data = pd.concat(
        [
            pd.DataFrame({"uid": "ok", "x": x, "y": 3.0 * x}),
            pd.DataFrame({"uid": "neg", "x": x - 2.0, "y": 3.0 * x}),
        ]
    )
    with pytest.warns(ConvergenceWarning):
        col = modeler(data, curve=curve)
    assert col.ids == ("ok",)
    assert "negative time" in col.failures["neg"].message


def test_parameter_without_any_seed_source_is_fatal() -> None:
    with pytest.raises(InputError, match="No initial value for t1, t2, alpha, beta"):
        modeler(plateau_data(2), curve="exp_exp")


def test_metadata_survives_when_every_group_fails() -> None:
    data = pd.DataFrame(
        {
            "uid": ["u", "u", "u", "v", "v", "v"],
            "x": [1001.0, 1002.0, 1003.0] * 2,
            "y": [1.0, 2.0, 3.0] * 2,
            "site": ["north"] * 3 + ["south"] * 3,
        }
    )
    curve = Curve.from_function(_picky, name="picky")
    with pytest.warns(ConvergenceWarning, match="2 of 2"):
        col = modeler(data, curve=curve, parameters={"a": 1.0, "b": 0.0}, keep="site")

    assert col.convergence_rate == 0.0
    out = predict(col, [1002.0], metadata=True)
    assert out["uid"].tolist() == ["u", "v"]
    assert out["site"].tolist() == ["north", "south"]
    assert out["predicted_value"].isna().all()
