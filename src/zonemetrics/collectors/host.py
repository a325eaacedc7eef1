"""Collector modules for the host (global zone)."""

from __future__ import annotations

from dataclasses import asdict
from typing import Sequence

from zonemetrics.collectors.base import CollectorModule, KstatCollector, map_records
from zonemetrics.descriptors import kstat as kstat_tables
from zonemetrics.descriptors import misc, ntp
from zonemetrics.model import (
    Domain,
    Labels,
    MetricValue,
    ResolvedTarget,
    Scope,
    SnapshotBundle,
)
from zonemetrics.readers.kstat import KstatRecord
from zonemetrics.readers.ntp import NtpStatus
from zonemetrics.readers.zfs import PoolStats

GZ_ZONE_ID = 0


class ArcstatsCollector(KstatCollector):
    """ZFS ARC counters from the single arcstats kstat."""

    name = "arcstats"
    scope = Scope.HOST
    domain = Domain.ARCSTATS
    descriptors = kstat_tables.ARCSTATS

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        return [r for r in records if r.instance == GZ_ZONE_ID and r.name == "arcstats"][:1]


class CpuUtilCollector(KstatCollector):
    """Per-CPU time accounting, one series per CPU."""

    name = "cpu_util"
    scope = Scope.HOST
    domain = Domain.CPU_SYS
    descriptors = kstat_tables.CPU_UTIL

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        return sorted(records, key=lambda r: r.instance)

    def labels(self, record: KstatRecord, position: int) -> Labels:
        return (("cpu_id", str(record.instance)),)


class NetCollector(KstatCollector):
    """Soft ring lane drops of the global zone's datalinks."""

    name = "net"
    scope = Scope.HOST
    domain = Domain.NET_LANES
    descriptors = kstat_tables.NET_LANES

    def select(self, target: ResolvedTarget, records: Sequence[KstatRecord]) -> list[KstatRecord]:
        lanes = [r for r in records if "rxsdrops" in r.data]
        return sorted(lanes, key=lambda r: (r.name, r.module))

    def labels(self, record: KstatRecord, position: int) -> Labels:
        return (("name", f"{record.module}_{record.name}"),)


class NtpCollector(CollectorModule):
    """ntpd state: availability, system variables, the system peer and peers.

    When ntpd is not running only the availability metric (0) is emitted.
    """

    name = "ntp"
    scope = Scope.HOST
    domains = (Domain.NTP,)

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        records = bundle[Domain.NTP].records
        status: NtpStatus = records[0] if records else NtpStatus.unavailable()

        values = [MetricValue(ntp.AVAILABLE, 1 if status.available else 0)]
        if not status.available:
            return values

        values += map_records(
            ntp.SYSTEM,
            [status.system],
            domain=Domain.NTP,
            fields=lambda r: r,
            identify=lambda r: "system",
        )
        if status.syspeer is not None:
            values += map_records(
                ntp.SYSPEER,
                [status.syspeer],
                domain=Domain.NTP,
                fields=lambda r: r,
                identify=lambda r: "syspeer",
            )
        values += map_records(
            ntp.PEER,
            status.peers,
            domain=Domain.NTP,
            fields=lambda r: r,
            labels=lambda r: (("remote", str(r.get("remote", ""))),),
            identify=lambda r: f"peer {r.get('remote', '?')}",
        )
        return values


class ZpoolCollector(CollectorModule):
    """Metaslab group activity followed by per-pool capacity."""

    name = "zpool"
    scope = Scope.HOST
    domains = (Domain.METASLAB_GROUP, Domain.ZPOOL)

    def collect(self, target: ResolvedTarget, bundle: SnapshotBundle) -> list[MetricValue]:
        groups = sorted(bundle[Domain.METASLAB_GROUP].records, key=lambda r: r.name)
        values = map_records(
            kstat_tables.METASLAB_GROUP,
            groups,
            domain=Domain.METASLAB_GROUP,
            fields=lambda r: r.data,
            labels=_metaslab_group_labels,
            identify=lambda r: r.identity,
        )

        pools: Sequence[PoolStats] = bundle[Domain.ZPOOL].records
        values += map_records(
            misc.ZPOOL,
            pools,
            domain=Domain.ZPOOL,
            fields=asdict,
            labels=lambda p: (("pool", p.name),),
            identify=lambda p: p.name,
        )
        return values


def _metaslab_group_labels(record: KstatRecord) -> Labels:
    return (
        ("pool", str(record.data.get("spa_name", ""))),
        ("vdev_guid", record.name),
    )
