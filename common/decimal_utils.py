from __future__ import annotations

"""
Decimal utilities for wire-safe numeric text.

Exchanges send rates and quantities as strings and expect them back as
strings. Two directions are covered here:
- parsing exchange text into floats, strictly (no NaN/inf, no silent zero)
- formatting floats for request params without exponent notation
"""

import math
from decimal import Decimal, InvalidOperation, getcontext
from typing import Union

getcontext().prec = 28

NumberLike = Union[str, int, float, Decimal]


def q_dec(x: NumberLike) -> Decimal:
    """Convert input to Decimal via str() to avoid binary float artifacts."""
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def str_decimal(x: NumberLike) -> str:
    """Return a plain string without scientific notation or trailing zeros.

    Example: 1e-05 -> '0.00001', 100.0 -> '100'
    """
    s = format(q_dec(x), "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s if s and s != "-0" else "0"


def parse_float(value: object) -> float:
    """Parse exchange numeric text (or a JSON number) into a finite float.

    Raises ValueError for anything that is not a finite number, including
    booleans, empty strings and None.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        out = float(value)
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("empty numeric field")
        try:
            out = float(Decimal(text))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    if not math.isfinite(out):
        raise ValueError(f"non-finite number: {value!r}")
    return out


__all__ = [
    "q_dec",
    "str_decimal",
    "parse_float",
]
