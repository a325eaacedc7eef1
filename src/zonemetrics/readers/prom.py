"""Parsing of Prometheus text exposition into metric values.

Plugins and core zone metrics endpoints speak the text format; their
output is parsed with prometheus_client's parser and turned into
MetricValues so it renders alongside the kstat-backed collectors.
"""

from __future__ import annotations

import re

from prometheus_client.parser import text_string_to_metric_families

from zonemetrics.errors import ReaderError
from zonemetrics.model import Labels, MetricDescriptor, MetricType, MetricValue

# Same rule the Prometheus client libraries apply to metric names
METRIC_NAME = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")

_LABEL_PAIR = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*(?:,|$)')

_FAMILY_TYPES = {
    "counter": MetricType.COUNTER,
    "gauge": MetricType.GAUGE,
    "histogram": MetricType.HISTOGRAM,
    "summary": MetricType.SUMMARY,
    "unknown": MetricType.UNTYPED,
    "untyped": MetricType.UNTYPED,
}


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", lambda m: "\n" if m.group(1) == "n" else m.group(1), value)


def parse_labels(text: str) -> Labels:
    """Parse a ``{key="value",...}`` label set into ordered labels.

    Raises:
        ValueError: If the text is not a well-formed label set.
    """
    if not (text.startswith("{") and text.endswith("}")):
        raise ValueError(f"labels must be enclosed in braces: {text!r}")

    body = text[1:-1].strip()
    labels = []
    position = 0
    while position < len(body):
        match = _LABEL_PAIR.match(body, position)
        if match is None:
            raise ValueError(f"invalid label set: {text!r}")
        labels.append((match.group(1), _unescape(match.group(2))))
        position = match.end()
    return tuple(labels)


def check_metric_name(name: str) -> str:
    if not METRIC_NAME.match(name):
        raise ReaderError(f"invalid metric name: {name[:1024]!r}")
    return name


def parse_exposition(text: str, prefix: str = "") -> list[MetricValue]:
    """Parse exposition text into metric values, family by family.

    Counters are named with their ``_total`` sample name, the way
    prometheus_client exposes them. Histogram and summary samples keep
    their suffix (``_bucket``, ``_sum``, ``_count``).

    Args:
        text: Prometheus text format.
        prefix: Prepended to every metric name.

    Raises:
        ReaderError: If the text cannot be parsed or names an invalid
                     metric or an unsupported type.
    """
    try:
        families = list(text_string_to_metric_families(text))
    except ValueError as e:
        raise ReaderError(f"invalid exposition text: {e}") from e

    values: list[MetricValue] = []
    for family in families:
        metric_type = _FAMILY_TYPES.get(family.type)
        if metric_type is None:
            raise ReaderError(f"unsupported metric type {family.type!r} for {family.name}")

        base = family.name + "_total" if metric_type is MetricType.COUNTER else family.name
        descriptor = MetricDescriptor(
            raw_key=base,
            name=check_metric_name(prefix + base),
            help=family.documentation or base,
            type=metric_type,
        )
        for sample in family.samples:
            if not sample.name.startswith(base):
                continue
            values.append(
                MetricValue(
                    descriptor,
                    sample.value,
                    tuple(sample.labels.items()),
                    sample.name[len(base):],
                )
            )
    return values
