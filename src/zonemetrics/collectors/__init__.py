"""Collector modules, a closed set in fixed registration order.

Registration order is output order: a scrape renders the modules in the
order they appear in HOST_MODULES or INSTANCE_MODULES.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from zonemetrics.collectors.base import (
    CollectorModule,
    KstatCollector,
    SourceCollector,
    map_records,
)
from zonemetrics.collectors.common import TimeCollector
from zonemetrics.collectors.host import (
    ArcstatsCollector,
    CpuUtilCollector,
    NetCollector,
    NtpCollector,
    ZpoolCollector,
)
from zonemetrics.collectors.instance import (
    CpucapCollector,
    LinkCollector,
    MemcapCollector,
    TcpCollector,
    ZfsCollector,
    ZoneMiscCollector,
    ZoneVfsCollector,
)
from zonemetrics.collectors.plugin import PluginCollector, PluginOptions
from zonemetrics.collectors.triton import TritonCoreCollector, TritonOptions
from zonemetrics.model import Scope
from zonemetrics.readers.zfs import DEFAULT_POOL

logger = logging.getLogger(__name__)


@dataclass
class ModuleOptions:
    """Settings handed to the module factories."""

    zfs_pool: str = DEFAULT_POOL
    plugins: PluginOptions = field(default_factory=PluginOptions)
    triton: TritonOptions = field(default_factory=TritonOptions)


ModuleFactory = Callable[[ModuleOptions], CollectorModule]

HOST_MODULES: dict[str, ModuleFactory] = {
    "time": lambda options: TimeCollector(Scope.HOST),
    "arcstats": lambda options: ArcstatsCollector(),
    "cpu_util": lambda options: CpuUtilCollector(),
    "net": lambda options: NetCollector(),
    "ntp": lambda options: NtpCollector(),
    "zpool": lambda options: ZpoolCollector(),
    "plugin": lambda options: PluginCollector(Scope.HOST, options.plugins),
}

INSTANCE_MODULES: dict[str, ModuleFactory] = {
    "time": lambda options: TimeCollector(Scope.INSTANCE),
    "cpucap": lambda options: CpucapCollector(),
    "link": lambda options: LinkCollector(),
    "memcap": lambda options: MemcapCollector(),
    "tcp": lambda options: TcpCollector(),
    "zfs": lambda options: ZfsCollector(options.zfs_pool),
    "zone_misc": lambda options: ZoneMiscCollector(),
    "zone_vfs": lambda options: ZoneVfsCollector(),
    "plugin": lambda options: PluginCollector(Scope.INSTANCE, options.plugins),
    "triton_core": lambda options: TritonCoreCollector.from_options(options.triton),
}

MODULES_BY_SCOPE: dict[Scope, dict[str, ModuleFactory]] = {
    Scope.HOST: HOST_MODULES,
    Scope.INSTANCE: INSTANCE_MODULES,
}


def registered_modules(
    scope: Scope,
    enabled: Iterable[str] | None = None,
    options: ModuleOptions | None = None,
) -> list[CollectorModule]:
    """Instantiate the enabled modules of a scope in registration order.

    Args:
        scope: Host or instance.
        enabled: Module names to keep. None enables every module.
        options: Pool name, plugin and core zone settings.

    Raises:
        ValueError: If ``enabled`` names a module not registered for ``scope``.
    """
    factories = MODULES_BY_SCOPE[scope]
    wanted = set(factories) if enabled is None else set(enabled)
    options = options or ModuleOptions()

    unknown = wanted - set(factories)
    if unknown:
        raise ValueError(f"Unknown {scope.value} collectors: {', '.join(sorted(unknown))}")

    modules = [factory(options) for name, factory in factories.items() if name in wanted]
    logger.debug(f"Registered {scope.value} collectors: {', '.join(m.name for m in modules)}")
    return modules


__all__ = [
    "ArcstatsCollector",
    "CollectorModule",
    "CpuUtilCollector",
    "CpucapCollector",
    "HOST_MODULES",
    "INSTANCE_MODULES",
    "KstatCollector",
    "LinkCollector",
    "MemcapCollector",
    "ModuleOptions",
    "NetCollector",
    "NtpCollector",
    "PluginCollector",
    "PluginOptions",
    "SourceCollector",
    "TcpCollector",
    "TimeCollector",
    "TritonCoreCollector",
    "TritonOptions",
    "ZfsCollector",
    "ZoneMiscCollector",
    "ZoneVfsCollector",
    "ZpoolCollector",
    "map_records",
    "registered_modules",
]
