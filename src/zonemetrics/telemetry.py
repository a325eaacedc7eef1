"""Agent self-metrics.

The agent keeps its own prometheus_client registry (separate from the
rendered host/zone metrics) describing how collection itself behaves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

if TYPE_CHECKING:
    from zonemetrics.model import Domain

# name -> (description, labels); prometheus_client appends _total
COUNTER_DEFINITIONS = {
    "zonemetrics_domain_reads": ("Raw domain reads started", ["domain"]),
    "zonemetrics_domain_read_failures": ("Raw domain reads that failed or timed out", ["domain"]),
    "zonemetrics_cache_hits": ("Snapshot requests served from cache", ["domain"]),
    "zonemetrics_coalesced_waits": ("Snapshot requests that joined an in-flight read", ["domain"]),
    "zonemetrics_scrapes": ("Metric requests by target scope and outcome", ["scope", "outcome"]),
    "zonemetrics_source_failures": (
        "Plugin and core zone collectors skipped for a scrape", ["collector"]
    ),
}


class EngineTelemetry:
    """Counters and gauges describing the collection engine."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.counters: dict[str, Counter] = {}

        for metric_name, (description, labels) in COUNTER_DEFINITIONS.items():
            self.counters[metric_name] = Counter(
                metric_name,
                description,
                labels,
                registry=self.registry,
            )

        self.instances = Gauge(
            "zonemetrics_instances",
            "Running zones known to the instance registry",
            registry=self.registry,
        )

    def record_read(self, domain: Domain) -> None:
        self.counters["zonemetrics_domain_reads"].labels(domain=domain.value).inc()

    def record_read_failure(self, domain: Domain) -> None:
        self.counters["zonemetrics_domain_read_failures"].labels(domain=domain.value).inc()

    def record_cache_hit(self, domain: Domain) -> None:
        self.counters["zonemetrics_cache_hits"].labels(domain=domain.value).inc()

    def record_coalesced_wait(self, domain: Domain) -> None:
        self.counters["zonemetrics_coalesced_waits"].labels(domain=domain.value).inc()

    def record_scrape(self, scope: str, outcome: str) -> None:
        self.counters["zonemetrics_scrapes"].labels(scope=scope, outcome=outcome).inc()

    def record_source_failure(self, collector: str) -> None:
        self.counters["zonemetrics_source_failures"].labels(collector=collector).inc()

    def set_instances(self, count: int) -> None:
        self.instances.set(count)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a sample, 0.0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def render(self) -> bytes:
        """Exposition of the agent's own metrics."""
        return generate_latest(self.registry)
