"""Host and zone OS counters exposed in Prometheus text format."""

__version__ = "0.1.0"

from zonemetrics.cache import SnapshotCache
from zonemetrics.engine import CollectionEngine
from zonemetrics.errors import (
    CommandError,
    DomainReadError,
    EngineStoppedError,
    MalformedRecordError,
    ReaderError,
    TargetNotFoundError,
    ZoneMetricsError,
)
from zonemetrics.model import (
    HOST_TARGET,
    Domain,
    Instance,
    MetricDescriptor,
    MetricType,
    MetricValue,
    RawSnapshot,
    ResolvedTarget,
    Scope,
)
from zonemetrics.registry import InstanceRegistry
from zonemetrics.render import render

__all__ = [
    "CollectionEngine",
    "CommandError",
    "Domain",
    "DomainReadError",
    "EngineStoppedError",
    "HOST_TARGET",
    "Instance",
    "InstanceRegistry",
    "MalformedRecordError",
    "MetricDescriptor",
    "MetricType",
    "MetricValue",
    "RawSnapshot",
    "ReaderError",
    "ResolvedTarget",
    "Scope",
    "SnapshotCache",
    "TargetNotFoundError",
    "ZoneMetricsError",
    "__version__",
    "render",
]
