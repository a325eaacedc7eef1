"""Collector module interface and the shared record mapping logic.

A domain collector module is stateless: it is handed the resolved target
and the snapshots of the domains it declared, and maps the records
belonging to that target onto its descriptor table. Source collectors
fetch and cache their own per-target data instead.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Mapping, Sequence

from zonemetrics.convert import as_number
from zonemetrics.errors import MalformedRecordError
from zonemetrics.model import (
    Domain,
    Labels,
    MetricDescriptor,
    MetricValue,
    Number,
    ResolvedTarget,
    Scope,
    SnapshotBundle,
)
from zonemetrics.readers.kstat import KstatRecord

logger = logging.getLogger(__name__)


class CollectorModule(ABC):
    """Base class for collector modules.

    Subclasses declare ``name``, ``scope`` and the ``domains`` whose
    snapshots they need. The engine only calls ``collect`` when every
    declared domain was read successfully.
    """

    name: str = ""
    scope: Scope = Scope.HOST
    domains: tuple[Domain, ...] = ()

    @abstractmethod
    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        """Map the target's records onto metric values.

        Args:
            target: Resolved host or instance target.
            bundle: Snapshots keyed by domain, containing at least ``domains``.

        Returns:
            Metric values in emission order; empty when the target has no
            records in the snapshot.
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def _no_labels(record: Any) -> Labels:
    return ()


def convert_record(
    descriptors: Sequence[MetricDescriptor],
    data: Mapping[str, Any],
    record_id: str,
) -> list[Number | None]:
    """Convert one record's raw fields, one slot per descriptor.

    A raw value of None, or a converter returning None, leaves the slot
    empty and the series is omitted. A descriptor without a converter
    still requires a numeric raw value.

    Raises:
        MalformedRecordError: If a field is missing or fails conversion.
    """
    missing = [d.raw_key for d in descriptors if d.raw_key not in data]
    if missing:
        raise MalformedRecordError(record_id, f"missing {', '.join(missing)}")

    values: list[Number | None] = []
    for descriptor in descriptors:
        raw = data[descriptor.raw_key]
        if raw is None:
            values.append(None)
            continue
        convert = descriptor.convert or as_number
        try:
            values.append(convert(raw))
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(record_id, f"{descriptor.raw_key}={raw!r}: {e}") from e
    return values


def map_records(
    descriptors: Sequence[MetricDescriptor],
    records: Iterable[Any],
    *,
    domain: Domain,
    fields: Callable[[Any], Mapping[str, Any]],
    labels: Callable[[Any], Labels] = _no_labels,
    identify: Callable[[Any], str] = str,
) -> list[MetricValue]:
    """Map records onto a descriptor table.

    Values are emitted metric-major: every record's value for the first
    descriptor, then every record's value for the second, and so on, so a
    multi-record family stays contiguous under one HELP/TYPE header.
    Disabled descriptors are skipped. A malformed record is dropped on its
    own and logged; the remaining records are still mapped.

    Args:
        descriptors: Descriptor table, in emission order.
        records: Raw records already filtered to the target.
        domain: Domain the records came from, for logging.
        fields: Returns the raw key -> value mapping of a record.
        labels: Returns the ordered labels of a record's series.
        identify: Returns a printable identity of a record.

    Returns:
        Metric values in emission order.
    """
    enabled = [d for d in descriptors if d.enabled]
    rows: list[tuple[Labels, list[Number | None]]] = []

    for record in records:
        try:
            converted = convert_record(enabled, fields(record), identify(record))
        except MalformedRecordError as e:
            logger.warning(f"Dropping record from {domain.value}: {e}")
            continue
        rows.append((labels(record), converted))

    values = []
    for index, descriptor in enumerate(enabled):
        for record_labels, converted in rows:
            value = converted[index]
            if value is not None:
                values.append(MetricValue(descriptor, value, record_labels))
    return values


class KstatCollector(CollectorModule):
    """Collector over a single kstat domain.

    Subclasses set ``domain`` and ``descriptors`` and override ``select``
    (which records belong to the target) and optionally ``labels``.
    """

    domain: Domain
    descriptors: Sequence[MetricDescriptor] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "domain" in cls.__dict__:
            cls.domains = (cls.domain,)

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        return list(records)

    def labels(self, record: KstatRecord, position: int) -> Labels:
        return ()

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        selected = self.select(target, bundle[self.domain].records)
        positions = {id(record): i for i, record in enumerate(selected)}
        return map_records(
            self.descriptors,
            selected,
            domain=self.domain,
            fields=lambda r: r.data,
            labels=lambda r: self.labels(r, positions[id(r)]),
            identify=lambda r: r.identity,
        )


class SourceCollector(CollectorModule):
    """Collector that fetches its own data for each target.

    Plugin executables and core zone metrics endpoints are per target, not
    host-wide domains. The engine awaits ``gather`` alongside the domain
    reads; a ZoneMetricsError removes only this module from the scrape.
    """

    domains: tuple[Domain, ...] = ()

    @abstractmethod
    async def gather(self, target: ResolvedTarget) -> list[MetricValue]:
        """Fetch and map the target's metric values.

        Raises:
            ZoneMetricsError: If the source is unavailable.
        """
        ...

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        raise TypeError(f"{self.name} fetches its own data; await gather() instead")

    async def close(self) -> None:
        """Release cached results; called when the engine stops."""
