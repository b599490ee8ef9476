from __future__ import annotations

from decimal import Decimal

import pytest

from common.decimal_utils import parse_float, q_dec, str_decimal


def test_str_decimal_plain_notation():
    assert str_decimal(1e-05) == "0.00001"
    assert str_decimal(100.0) == "100"
    assert str_decimal("2.50000") == "2.5"
    assert str_decimal(0.1) == "0.1"
    assert str_decimal(-0.0) == "0"
    assert str_decimal(Decimal("1E+3")) == "1000"


def test_q_dec_avoids_binary_artifacts():
    assert q_dec(0.1) == Decimal("0.1")
    d = Decimal("3.14")
    assert q_dec(d) is d


@pytest.mark.parametrize(
    "text,expected",
    [("100.5", 100.5), ("  2 ", 2.0), ("1e-8", 1e-8), (3, 3.0), (0.25, 0.25)],
)
def test_parse_float_accepts_numbers(text, expected):
    assert parse_float(text) == expected


@pytest.mark.parametrize("bad", ["", "abc", None, True, "nan", "inf", float("nan"), "1.2.3"])
def test_parse_float_rejects_non_numbers(bad):
    with pytest.raises(ValueError):
        parse_float(bad)
