import numpy as np
import pandas as pd

from growth_modeler.parallel import map_groups
from growth_modeler.preprocess import add_zero, clamp_after_max, clip_negative, prepare


def _frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "plot": ["a", "a", "a", "a", "b", "b", "b"],
            "t": [0.0, 10.0, 20.0, 30.0, 10.0, 20.0, 30.0],
            "ndvi": [0.5, 5.0, 3.0, 4.0, -1.0, 2.0, 6.0],
            "site": ["n", "n", "n", "n", "s", "s", "s"],
        }
    )


def test_clamp_after_max_holds_the_peak() -> None:
    out = clamp_after_max(_frame(), "t", "ndvi", "plot")
    a = out[out["plot"] == "a"]["ndvi"].to_numpy()
    b = out[out["plot"] == "b"]["ndvi"].to_numpy()
    np.testing.assert_allclose(a, [0.5, 5.0, 5.0, 5.0])
    np.testing.assert_allclose(b, [-1.0, 2.0, 6.0])


def test_clamp_uses_the_global_peak_not_the_first_local_one() -> None:
    df = pd.DataFrame(
        {"plot": "c", "t": [0.0, 1.0, 2.0, 3.0, 4.0], "ndvi": [1.0, 3.0, 2.0, 4.0, 1.0]}
    )
    out = clamp_after_max(df, "t", "ndvi", "plot")
    np.testing.assert_allclose(out["ndvi"], [1.0, 3.0, 2.0, 4.0, 4.0])


def test_clip_negative() -> None:
    out = clip_negative(_frame(), "ndvi")
    assert out["ndvi"].min() == 0.0
    assert _frame()["ndvi"].min() == -1.0


def test_add_zero_replaces_and_inserts_origin() -> None:
    out = add_zero(_frame(), "t", "ndvi", "plot")
    a = out[out["plot"] == "a"]
    b = out[out["plot"] == "b"]
    assert len(a) == 4
    assert len(b) == 4
    assert a.iloc[0][["t", "ndvi"]].tolist() == [0.0, 0.0]
    assert b.iloc[0][["t", "ndvi"]].tolist() == [0.0, 0.0]
    assert b.iloc[0]["site"] == "s"


def test_prepare_applies_steps_in_order() -> None:
    df = _frame().sample(frac=1.0, random_state=1)
    out = prepare(df, "t", "ndvi", "plot", max_as_last=True, check_negative=True, zero=True)
    assert out["plot"].tolist() == ["a"] * 4 + ["b"] * 4
    np.testing.assert_allclose(out["ndvi"], [0.0, 5.0, 5.0, 5.0, 0.0, 0.0, 2.0, 6.0])
    np.testing.assert_allclose(out["t"], [0.0, 10.0, 20.0, 30.0, 0.0, 10.0, 20.0, 30.0])


def _square(v):
    return v * v


def test_map_groups_preserves_order() -> None:
    tasks = list(range(40))
    expected = [v * v for v in tasks]
    assert map_groups(_square, tasks) == expected
    assert map_groups(_square, tasks, parallel=True, workers=4, executor="thread") == expected
