"""Prometheus text exposition rendering.

Output layout per metric family::

    # HELP <name> <help>
    # TYPE <name> <type>
    <name>[suffix]{label="value",...} <value>

One HELP/TYPE pair opens each family; callers keep the series of one
family contiguous.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Iterable

from zonemetrics.model import Labels, MetricValue, Number

logger = logging.getLogger(__name__)


def format_value(value: Number) -> str:
    """Format a metric value without losing precision.

    Integral values have no decimal point. Decimals are written positionally
    (never in exponent form); floats use their shortest round-trip repr.
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        if value.is_nan():
            return "NaN"
        if value.is_infinite():
            return "+Inf" if value > 0 else "-Inf"
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        if value.is_integer():
            return str(int(value))
        text = repr(value)
        if "e" in text:
            return format(Decimal(text), "f")
        return text
    raise TypeError(f"unsupported metric value type: {type(value).__name__}")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_labels(labels: Labels) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{key}="{_escape_label_value(value)}"' for key, value in labels)
    return "{" + pairs + "}"


def render(values: Iterable[MetricValue]) -> str:
    """Render metric values to exposition text.

    A HELP/TYPE pair opens each run of consecutive values sharing a name.
    A family that reappears after a different one is logged and its
    series are written without a second header.

    Args:
        values: Metric values in output order.

    Returns:
        Newline-terminated exposition text, or '' for no values.
    """
    lines: list[str] = []
    seen: set[str] = set()
    previous: str | None = None

    for metric in values:
        descriptor = metric.descriptor
        if descriptor.name != previous:
            if descriptor.name in seen:
                logger.warning(
                    f"Metric family {descriptor.name} is not contiguous; "
                    f"it reappears after {previous}"
                )
            else:
                seen.add(descriptor.name)
                lines.append(f"# HELP {descriptor.name} {_escape_help(descriptor.help)}")
                lines.append(f"# TYPE {descriptor.name} {descriptor.type.value}")
            previous = descriptor.name
        lines.append(
            f"{metric.sample_name}{format_labels(metric.labels)} {format_value(metric.value)}"
        )

    if not lines:
        return ""
    return "\n".join(lines) + "\n"
