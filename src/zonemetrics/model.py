"""Core data model shared by readers, collectors, the cache and the renderer."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

# Target id that selects the global zone (the host itself)
HOST_TARGET = "gz"


class Domain(str, Enum):
    """Raw data domains. Each one is read host-wide by exactly one reader."""

    TIME = "time"
    ARCSTATS = "arcstats"
    CPU_SYS = "cpu_sys"
    METASLAB_GROUP = "metaslab_group"
    NET_LANES = "net_lanes"
    NTP = "ntp"
    ZPOOL = "zpool"
    CPU_CAPS = "cpu_caps"
    MEMORY_CAP = "memory_cap"
    NET_LINK = "net_link"
    TCP = "tcp"
    ZFS_USAGE = "zfs_usage"
    ZONE_MISC = "zone_misc"
    ZONE_VFS = "zone_vfs"


class Scope(str, Enum):
    """Target class a collector module applies to."""

    HOST = "host"
    INSTANCE = "instance"


class MetricType(str, Enum):
    """Exposition metric types."""

    GAUGE = "gauge"
    COUNTER = "counter"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"
    UNTYPED = "untyped"


Number = Union[int, float, Decimal, bool]
Converter = Callable[[Any], Any]
Labels = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class MetricDescriptor:
    """Static description of one output metric.

    ``raw_key`` names the field in the raw record the value is taken from.
    ``convert`` is applied to the raw value at mapping time; a converter that
    returns None means the record has no value for this metric.
    """

    raw_key: str
    name: str
    help: str
    type: MetricType
    convert: Converter | None = None
    enabled: bool = True


def gauge(
    raw_key: str,
    name: str,
    help: str,
    convert: Converter | None = None,
    enabled: bool = True,
) -> MetricDescriptor:
    """Build a gauge descriptor."""
    return MetricDescriptor(raw_key, name, help, MetricType.GAUGE, convert, enabled)


def counter(
    raw_key: str,
    name: str,
    help: str,
    convert: Converter | None = None,
    enabled: bool = True,
) -> MetricDescriptor:
    """Build a counter descriptor."""
    return MetricDescriptor(raw_key, name, help, MetricType.COUNTER, convert, enabled)


@dataclass(frozen=True)
class MetricValue:
    """One populated series: a descriptor, its value and ordered labels.

    ``suffix`` extends the family name for the sample line, as in the
    _bucket, _sum and _count series of a histogram.
    """

    descriptor: MetricDescriptor
    value: Number
    labels: Labels = ()
    suffix: str = ""

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def sample_name(self) -> str:
        return self.descriptor.name + self.suffix


@dataclass(frozen=True)
class RawSnapshot:
    """Immutable result of one read of a domain.

    ``records`` holds domain-specific raw records (kstat records, zfs rows,
    an NTP status object, a clock value). ``fetched_at`` is wall-clock
    seconds since the epoch.
    """

    domain: Domain
    records: tuple[Any, ...]
    fetched_at: float


SnapshotBundle = Mapping[Domain, RawSnapshot]

# Zero-argument coroutine function producing a snapshot of one domain
DomainReader = Callable[[], Awaitable[RawSnapshot]]


@dataclass(frozen=True)
class Instance:
    """A running zone as reported by the instance registry."""

    uuid: str
    zone_id: int
    zonename: str
    brand: str = ""


@dataclass(frozen=True)
class ResolvedTarget:
    """A target id resolved against the registry."""

    target_id: str
    instance: Instance | None = None

    @property
    def is_host(self) -> bool:
        return self.instance is None

    @property
    def scope(self) -> Scope:
        return Scope.HOST if self.is_host else Scope.INSTANCE

    @classmethod
    def host(cls) -> ResolvedTarget:
        return cls(target_id=HOST_TARGET)
