import pytest

from growth_modeler import InputError, ModelerOptions, modeler_options


def test_defaults() -> None:
    opts = ModelerOptions()
    assert opts.metric == "sse"
    assert opts.executor == "process"
    assert not opts.parallel
    assert opts.maxit is None


def test_modeler_options_updates_base() -> None:
    base = ModelerOptions(maxit=100)
    opts = modeler_options(base, add_zero=True)
    assert opts.add_zero
    assert opts.maxit == 100
    assert not base.add_zero
    assert opts.replace(parallel=True).parallel


@pytest.mark.parametrize(
    "changes",
    [
        {"executor": "mpi"},
        {"workers": 0},
        {"maxit": 0},
        {"hessian_step": 0.0},
        {"zero": True},
    ],
)
def test_invalid_options_raise(changes) -> None:
    with pytest.raises(InputError):
        modeler_options(**changes)
