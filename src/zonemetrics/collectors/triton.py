"""Proxy of the metrics core zones serve themselves.

Zones that are not core zones, or that list no metrics ports, produce
nothing.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from zonemetrics.cache import ResultCache
from zonemetrics.collectors.base import SourceCollector
from zonemetrics.model import MetricValue, ResolvedTarget, Scope
from zonemetrics.readers.prom import parse_exposition
from zonemetrics.readers.triton import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_SDC_CONFIG,
    DEFAULT_VMADM,
    CoreZoneInfo,
    TritonReader,
)

# Deleted zones eventually drop out of the metadata cache
METADATA_TTL = 3600
METRICS_TTL = 5


@dataclass
class TritonOptions:
    """Core zone lookup configuration."""

    admin_uuid: str = ""  # Empty reads ufds_admin_uuid from sdc_config
    vmadm: str = DEFAULT_VMADM
    sdc_config: str = DEFAULT_SDC_CONFIG
    timeout: float = DEFAULT_HTTP_TIMEOUT  # Seconds per metrics request


class TritonCoreCollector(SourceCollector):
    """Metrics of core zones, fetched from their own endpoints."""

    name = "triton_core"
    scope = Scope.INSTANCE

    def __init__(self, reader: TritonReader, clock: Callable[[], float] = time.monotonic):
        self.reader = reader
        self.metadata = ResultCache(clock)
        self.metrics = ResultCache(clock)

    @classmethod
    def from_options(cls, options: TritonOptions) -> TritonCoreCollector:
        return cls(
            TritonReader(
                vmadm=options.vmadm,
                sdc_config=options.sdc_config,
                admin_uuid=options.admin_uuid,
                timeout=options.timeout,
            )
        )

    async def gather(self, target: ResolvedTarget) -> list[MetricValue]:
        if target.instance is None:
            return []
        uuid = target.instance.uuid

        async def lookup() -> tuple[CoreZoneInfo, float]:
            return await self.reader.zone_info(uuid), METADATA_TTL

        info, _ = await self.metadata.get(uuid, lookup)
        if not info.has_endpoints:
            return []

        async def fetch() -> tuple[list[MetricValue], float]:
            texts = await self.reader.fetch_metrics(info)
            return parse_exposition("\n".join(texts)), METRICS_TTL

        values, _ = await self.metrics.get(uuid, fetch)
        return values

    async def close(self) -> None:
        await self.metadata.close()
        await self.metrics.close()
