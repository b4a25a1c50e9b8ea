"""
Odds notation conversion. Everything is stored and compared as decimal odds.

Accepted notations:
    decimal      7.5, "7.5"
    American     "+650", "-150", and any number when the feed says so
    fractional   "13/2", "evens" / "evs"
"""
from __future__ import annotations

import math
from typing import Any, Optional

_EVENS = {"evens", "evs", "even", "ev"}


def american_to_decimal(american: float) -> Optional[float]:
    if american >= 100:
        return 1.0 + american / 100.0
    if american <= -100:
        return 1.0 + 100.0 / abs(american)
    return None


def fractional_to_decimal(numerator: float, denominator: float) -> Optional[float]:
    if denominator <= 0 or numerator < 0:
        return None
    return 1.0 + numerator / denominator


def _finite_decimal(value: float) -> Optional[float]:
    if not math.isfinite(value) or value <= 1.0:
        return None
    return value


def to_decimal(value: Any, odds_format: str = "decimal") -> Optional[float]:
    """
    Convert a single price to decimal odds.

    `odds_format` describes how bare numbers are meant ("decimal" or
    "american"); signed strings and fractions are recognized regardless.
    Returns None for anything unparsable or not a valid price (decimal <= 1).
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            return None
        if odds_format == "american" or number < 0:
            converted = american_to_decimal(number)
            return _finite_decimal(converted) if converted is not None else None
        return _finite_decimal(number)

    text = str(value).strip().lower()
    if not text:
        return None
    if text in _EVENS:
        return 2.0

    if "/" in text:
        num, _, den = text.partition("/")
        try:
            converted = fractional_to_decimal(float(num), float(den))
        except ValueError:
            return None
        return _finite_decimal(converted) if converted is not None else None

    if text[0] in "+-":
        try:
            converted = american_to_decimal(float(text))
        except ValueError:
            return None
        return _finite_decimal(converted) if converted is not None else None

    try:
        number = float(text)
    except ValueError:
        return None
    return to_decimal(number, odds_format)
