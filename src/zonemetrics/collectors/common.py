"""Collector modules registered for both the host and instances."""

from __future__ import annotations

from zonemetrics.collectors.base import CollectorModule
from zonemetrics.descriptors.misc import TIME_OF_DAY
from zonemetrics.model import Domain, MetricValue, ResolvedTarget, Scope, SnapshotBundle


class TimeCollector(CollectorModule):
    """Wall clock of the host, in milliseconds since the epoch."""

    name = "time"
    domains = (Domain.TIME,)

    def __init__(self, scope: Scope = Scope.HOST):
        self.scope = scope

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        records = bundle[Domain.TIME].records
        if not records:
            return []
        return [MetricValue(TIME_OF_DAY, records[0])]
