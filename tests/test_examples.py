import runpy
import warnings
from pathlib import Path

import pytest


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples"
SCRIPTS = sorted(EXAMPLES_DIR.glob("[0-9][0-9]_*.py"))

# a fragment each script's printed output must contain
EXPECTED_OUTPUT = {
    "01_fit_lin_plat.py": "lin_plat(x, t1, t2, k)",
    "02_predict_auc.py": "predicted_value",
    "03_combine_update.py": "Pr(>F)",
}


@pytest.mark.examples
@pytest.mark.parametrize("script", SCRIPTS, ids=lambda p: p.name)
def test_example_script(script: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(EXAMPLES_DIR.parent)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        runpy.run_path(str(script), run_name="__main__")
    out = capsys.readouterr().out
    assert EXPECTED_OUTPUT[script.name] in out


def test_every_script_has_an_expectation() -> None:
    assert SCRIPTS
    assert {p.name for p in SCRIPTS} == set(EXPECTED_OUTPUT)
