"""Unit conversions attached to metric descriptors.

All conversions are exact: raw values are lifted into ``Decimal`` before
scaling, so a nanosecond counter of 429948 becomes exactly 0.000429948.
A converter returning None means "no value"; the series is omitted.
Invalid input raises ValueError or TypeError.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Sequence

# Scale factor for load averages (1 << FSHIFT, FSHIFT = 8)
FSCALE = 256

# Memory cap values reported for "no cap"
UNLIMITED_MEMORY = 2**64 - 1


def to_decimal(value: Any) -> Decimal:
    """Lift a raw numeric value into an exact Decimal.

    Floats go through their shortest repr so 147.813 stays 147.813.
    """
    if isinstance(value, bool):
        raise TypeError(f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"non-finite value: {value!r}")
        return Decimal(repr(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    raise TypeError(f"expected a number, got {type(value).__name__}")


def as_number(value: Any) -> int | float | Decimal:
    """Pass a numeric raw value through unchanged.

    Numeric strings are lifted into Decimal; anything else is rejected.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, str):
        return to_decimal(value)
    raise TypeError(f"expected a number, got {type(value).__name__}")


def nsec_to_sec(value: Any) -> Decimal:
    return to_decimal(value).scaleb(-9)


def usec_to_sec(value: Any) -> Decimal:
    return to_decimal(value).scaleb(-6)


def msec_to_sec(value: Any) -> Decimal:
    return to_decimal(value).scaleb(-3)


def kibibytes_to_bytes(value: Any) -> Decimal:
    return to_decimal(value) * 1024


def load_average(value: Any) -> Decimal:
    """Convert a kernel fixed-point load average (avenrun) to a plain number."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"load average must be an integer, got {value!r}")
    return Decimal(value) / FSCALE


def memory_limit(value: Any) -> int | None:
    """Pass a memory cap through, or None when the zone is uncapped."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"memory limit must be an integer, got {value!r}")
    if value == 0 or value >= UNLIMITED_MEMORY:
        return None
    return value


def reach_failures(value: Any) -> int:
    """Count failed polls in an NTP reach register (8-bit shift register)."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"reach must be an integer, got {value!r}")
    if not 0 <= value <= 0xFF:
        raise ValueError(f"reach out of range: {value}")
    return 8 - bin(value).count("1")


def index_of(table: Sequence[str]) -> Callable[[Any], int]:
    """Build a converter mapping a string to its position in ``table`` (-1 if absent)."""

    def _index(value: Any) -> int:
        try:
            return table.index(value)
        except ValueError:
            return -1

    return _index
