"""Property-based tests for conversion and rendering invariants.

Uses Hypothesis to verify that unit conversions stay exact through
rendering and that exposition text keeps one header per family.
"""

from __future__ import annotations

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from zonemetrics.convert import load_average, nsec_to_sec, reach_failures, usec_to_sec
from zonemetrics.model import MetricValue, counter, gauge
from zonemetrics.render import format_value, render

# =============================================================================
# Custom Strategies
# =============================================================================

counters = st.integers(min_value=0, max_value=2**64 - 1)

finite_floats = st.floats(allow_nan=False, allow_infinity=False)

descriptors = st.sampled_from([
    counter("nsec_user", "cpu_user_usage", "User CPU utilization in nanoseconds"),
    gauge("rss", "mem_agg_usage", "Aggregate memory usage in bytes"),
    gauge("avenrun_1min", "load_average", "Load average"),
])

label_values = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_\"\\\n", max_size=12)


# =============================================================================
# Conversion Invariants
# =============================================================================


class TestConversionInvariants:
    """Property tests for exact unit conversion."""

    @given(nsec=counters)
    @settings(max_examples=200)
    def test_nanoseconds_render_exactly(self, nsec: int):
        """A nanosecond counter MUST survive conversion and rendering without loss."""
        text = format_value(nsec_to_sec(nsec))

        assert "e" not in text.lower()
        assert Decimal(text).scaleb(9) == Decimal(nsec)

    @given(usec=counters)
    @settings(max_examples=100)
    def test_microseconds_render_exactly(self, usec: int):
        text = format_value(usec_to_sec(usec))
        assert Decimal(text).scaleb(6) == Decimal(usec)

    @given(raw=st.integers(min_value=0, max_value=2**32))
    @settings(max_examples=100)
    def test_load_average_is_exact(self, raw: int):
        """A fixed-point load average MUST convert back to its raw value."""
        assert load_average(raw) * 256 == raw

    @given(reach=st.integers(min_value=0, max_value=255))
    def test_reach_failures_counts_zero_bits(self, reach: int):
        """Failures plus successful polls MUST always total eight."""
        failures = reach_failures(reach)

        assert 0 <= failures <= 8
        assert failures + bin(reach).count("1") == 8


# =============================================================================
# Rendering Invariants
# =============================================================================


class TestRenderingInvariants:
    """Property tests for exposition text."""

    @given(value=finite_floats)
    @settings(max_examples=200)
    def test_floats_render_positionally(self, value: float):
        """Finite floats MUST render without exponent and read back unchanged."""
        text = format_value(value)

        assert "e" not in text.lower()
        assert float(text) == value

    @given(
        series=st.lists(
            st.tuples(descriptors, st.integers(min_value=0), label_values),
            max_size=20,
        )
    )
    @settings(max_examples=100)
    def test_one_header_per_family(self, series):
        """Grouped series MUST produce exactly one HELP/TYPE pair per metric name."""
        # Group by family, keeping first-seen order, as collectors emit them
        order: list[str] = []
        for descriptor, _, _ in series:
            if descriptor.name not in order:
                order.append(descriptor.name)
        grouped = sorted(series, key=lambda s: order.index(s[0].name))

        values = [MetricValue(d, v, (("zone", label),)) for d, v, label in grouped]
        lines = render(values).splitlines()

        helps = [line for line in lines if line.startswith("# HELP ")]
        assert len(helps) == len(order)
        assert len(lines) == len(values) + 2 * len(order)
        for i, line in enumerate(lines):
            if line.startswith("# HELP "):
                name = line.split()[2]
                assert lines[i + 1] == f"# TYPE {name} {'counter' if name == 'cpu_user_usage' else 'gauge'}"
