import pytest

from growth_modeler.util import significance_code, uncertainty_to_string


@pytest.mark.parametrize(
    "x, err, precision, expected",
    [
        (12.34567, 0.00123, 1, "12.346(1)"),
        (12.34567, 0.00123, 2, "12.3457(12)"),
        (-0.123456, 0.000123, 2, "-0.12346(12)"),
        (0.2, 0.01, 2, "0.200(10)"),
        (1.0, 0.0, 2, "1(0)"),
        (float("nan"), 1.0, 1, "NaN"),
        (1.5, float("nan"), 1, "1.5(NaN)"),
        (1.0, float("inf"), 1, "inf"),
        (1.2345, 0.067, 0, "1.23(7)"),
        (12.34567, 0.00123, "auto", "12.3457(12)"),
        (12.34567, -0.00123, 1, "12.346(1)"),
    ],
)
def test_uncertainty_to_string(x, err, precision, expected):
    assert uncertainty_to_string(x, err, precision) == expected


@pytest.mark.parametrize(
    "p, expected",
    [
        (0.0001, "***"),
        (0.001, "**"),
        (0.009, "**"),
        (0.01, "*"),
        (0.049, "*"),
        (0.05, "ns"),
        (0.7, "ns"),
        (float("nan"), ""),
    ],
)
def test_significance_code_uses_half_open_breaks(p, expected):
    assert significance_code(p) == expected
