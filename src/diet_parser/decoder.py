"""Tolerant numeric decoding for untrusted LLM output.

Models return nutrition values as numbers, numeric strings ("42", "794.5"),
strings with stray whitespace, or free text ("ok. 300"). These helpers turn
any such value into the target numeric type and never raise: a recipe with
unknown macros is kept with zeros instead of being discarded.

The functions are pure and independent of any serialization library. The
``FlexibleInt``/``FlexibleFloat`` aliases attach them to pydantic fields.

Example:
    >>> decode_int("794.5")
    795
    >>> decode_float(" 3.14 ")
    3.14
    >>> decode_int("abc")
    0
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import BeforeValidator

# Largest magnitude a decoded int may have; values beyond it are clamped so
# they still fit a 32-bit database column
MAX_DECODED_INT = 2**31 - 1


def _clamp(value: int) -> int:
    return max(-MAX_DECODED_INT, min(MAX_DECODED_INT, value))


def _round_half_away(value: Decimal) -> int:
    """Round to the nearest integer, ties away from zero (794.5 -> 795, -0.5 -> -1).

    Huge exponents ("1e2000000") are clamped before the integer is built.
    """
    if value.adjusted() > 18:
        return MAX_DECODED_INT if value > 0 else -MAX_DECODED_INT
    return _clamp(int(value.to_integral_value(rounding=ROUND_HALF_UP)))


def _parse_decimal(text: str) -> Decimal | None:
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def decode_nullable_int(value: Any) -> int | None:
    """Decode a value into an int, or None when nothing usable is present.

    Args:
        value: Raw field value (int, float, str, None or anything else)

    Returns:
        Parsed integer, or None for null, blank and unparsable input
    """
    # bool is an int subclass; a true/false macro is garbage, not 1/0
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return _clamp(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return _round_half_away(Decimal(repr(value)))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _clamp(int(text))
        except ValueError:
            pass
        parsed = _parse_decimal(text)
        if parsed is None:
            return None
        return _round_half_away(parsed)
    return None


def decode_int(value: Any) -> int:
    """Decode a value into an int, falling back to 0.

    Args:
        value: Raw field value

    Returns:
        Parsed integer (decimals rounded half away from zero), or 0
    """
    decoded = decode_nullable_int(value)
    return 0 if decoded is None else decoded


def decode_float(value: Any) -> float:
    """Decode a value into a float, falling back to 0.0.

    Args:
        value: Raw field value

    Returns:
        Parsed float, or 0.0 for blank, unparsable and non-finite input
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, int | float):
        result = float(value)
        return result if math.isfinite(result) else 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            result = float(text)
        except ValueError:
            return 0.0
        return result if math.isfinite(result) else 0.0
    return 0.0


FlexibleInt = Annotated[int, BeforeValidator(decode_int)]
FlexibleNullableInt = Annotated[int | None, BeforeValidator(decode_nullable_int)]
FlexibleFloat = Annotated[float, BeforeValidator(decode_float)]
