"""Collector modules for instances (non-global zones).

Every domain is read host-wide; each module picks out the records of the
resolved zone and returns nothing when the zone has none.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Sequence

from zonemetrics.collectors.base import CollectorModule, KstatCollector, map_records
from zonemetrics.descriptors import kstat as kstat_tables
from zonemetrics.descriptors import misc
from zonemetrics.model import (
    Domain,
    Labels,
    MetricValue,
    ResolvedTarget,
    Scope,
    SnapshotBundle,
)
from zonemetrics.readers.kstat import KstatRecord
from zonemetrics.readers.zfs import DEFAULT_POOL, DatasetUsage


class ZoneKstatCollector(KstatCollector):
    """Selects the record whose kstat instance is the zone id."""

    scope = Scope.INSTANCE

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        if target.instance is None:
            return []
        zone_id = target.instance.zone_id
        return [r for r in records if r.instance == zone_id][:1]


class CpucapCollector(KstatCollector):
    """CPU cap accounting; zones without a cap have no kstat."""

    name = "cpucap"
    scope = Scope.INSTANCE
    domain = Domain.CPU_CAPS
    descriptors = kstat_tables.CPUCAP

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        if target.instance is None:
            return []
        kstat_name = f"cpucaps_zone_{target.instance.zone_id}"
        return [r for r in records if r.name == kstat_name][:1]


class LinkCollector(KstatCollector):
    """Datalink counters, one series per link owned by the zone."""

    name = "link"
    scope = Scope.INSTANCE
    domain = Domain.NET_LINK
    descriptors = kstat_tables.LINK

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        if target.instance is None:
            return []
        zonename = target.instance.zonename
        links = [r for r in records if r.data.get("zonename") == zonename]
        return sorted(links, key=lambda r: r.name)

    def labels(self, record: KstatRecord, position: int) -> Labels:
        return (("interface", f"vnic{position}"),)


class MemcapCollector(ZoneKstatCollector):
    name = "memcap"
    domain = Domain.MEMORY_CAP
    descriptors = kstat_tables.MEMCAP


class TcpCollector(ZoneKstatCollector):
    name = "tcp"
    domain = Domain.TCP
    descriptors = kstat_tables.TCP


class ZoneMiscCollector(ZoneKstatCollector):
    name = "zone_misc"
    domain = Domain.ZONE_MISC
    descriptors = kstat_tables.ZONE_MISC


class ZoneVfsCollector(ZoneKstatCollector):
    name = "zone_vfs"
    domain = Domain.ZONE_VFS
    descriptors = kstat_tables.ZONE_VFS


class ZfsCollector(CollectorModule):
    """Space usage of the zone's top-level dataset."""

    name = "zfs"
    scope = Scope.INSTANCE
    domains = (Domain.ZFS_USAGE,)

    def __init__(self, pool: str = DEFAULT_POOL):
        self.pool = pool

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        if target.instance is None:
            return []
        dataset = f"{self.pool}/{target.instance.uuid}"
        rows: list[DatasetUsage] = [
            row for row in bundle[Domain.ZFS_USAGE].records if row.name == dataset
        ]
        return map_records(
            misc.ZFS_USAGE,
            rows[:1],
            domain=Domain.ZFS_USAGE,
            fields=asdict,
            identify=lambda row: row.name,
        )
