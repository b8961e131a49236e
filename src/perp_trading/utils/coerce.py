"""Numeric coercion for values that arrive from external JSON."""

from __future__ import annotations

import math
from typing import Any


def coerce_float(value: Any) -> float | None:
    """Return ``value`` as a float, or ``None`` when it is not numeric.

    Accepts ints, floats and numeric strings (``"95000"``, ``" 1.5 "``).
    Booleans, NaN and infinities are rejected. Never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(result):
        return None
    return result


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an int, or ``None`` when it is not an integral number.

    ``"5"`` and ``5.0`` become ``5``; ``"5.5"`` is rejected.
    """
    number = coerce_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)
