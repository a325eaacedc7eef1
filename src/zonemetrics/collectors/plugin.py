"""Plugin collector: metrics printed by operator-supplied executables.

The host runs the plugins in ``gz_dir`` with zonename ``global``; zones
run those in ``vm_dir`` with their own zonename. Every plugin's metrics
are prefixed ``plugin_<name>_`` and preceded by two gauges telling
whether the plugin produced output and whether it came from the cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from zonemetrics.cache import ResultCache
from zonemetrics.collectors.base import SourceCollector
from zonemetrics.errors import ReaderError
from zonemetrics.model import MetricValue, ResolvedTarget, Scope, gauge
from zonemetrics.readers.plugin import (
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_MAX_OUTPUT,
    DEFAULT_PLUGIN_TIMEOUT,
    DEFAULT_PLUGIN_TTL,
    Plugin,
    PluginOutput,
    PluginRunner,
    load_plugin_dir,
    parse_plugin_output,
)

logger = logging.getLogger(__name__)

METRIC_PREFIX = "plugin_"
GLOBAL_ZONENAME = "global"


@dataclass
class PluginOptions:
    """Plugin directories and limits."""

    gz_dir: str = "/opt/custom/cmon/gz-plugins"
    vm_dir: str = "/opt/custom/cmon/vm-plugins"
    timeout: float = DEFAULT_PLUGIN_TIMEOUT  # Seconds, unless plugin.json overrides
    ttl: int = DEFAULT_PLUGIN_TTL  # Seconds output is cached
    max_output: int = DEFAULT_MAX_OUTPUT  # Bytes
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    reload_interval: float = 60.0  # Seconds between directory re-reads
    enforce_root: bool = True


def _availability(prefix: str, plugin: str) -> tuple:
    return (
        gauge(
            "available",
            f"{prefix}metrics_available_boolean",
            f"Whether {METRIC_PREFIX}{plugin} metrics were available, 0 = false, 1 = true",
        ),
        gauge(
            "cached",
            f"{prefix}metrics_cached_boolean",
            f"Whether {METRIC_PREFIX}{plugin} metrics came from cache, 0 = false, 1 = true",
        ),
    )


class PluginCollector(SourceCollector):
    """Runs the plugins of one scope's directory for each target."""

    name = "plugin"

    def __init__(
        self,
        scope: Scope,
        options: PluginOptions | None = None,
        runner: PluginRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scope = scope
        self.options = options or PluginOptions()
        self.directory = Path(
            self.options.gz_dir if scope is Scope.HOST else self.options.vm_dir
        )
        self.runner = runner or PluginRunner(self.options.max_output, self.options.max_concurrent)
        self.results = ResultCache(clock)

        self._clock = clock
        self._plugins: list[Plugin] = []
        self._loaded_at: float | None = None

    def plugins(self) -> list[Plugin]:
        """The plugin list, re-read at most once per reload interval.

        Raises:
            ReaderError: If the directory cannot be loaded.
        """
        now = self._clock()
        if self._loaded_at is not None and now - self._loaded_at < self.options.reload_interval:
            return self._plugins

        self._loaded_at = now
        try:
            self._plugins = load_plugin_dir(
                self.directory,
                default_timeout=self.options.timeout,
                default_ttl=self.options.ttl,
                enforce_root=self.options.enforce_root,
            )
        except ReaderError:
            self._plugins = []
            raise
        logger.debug(f"Loaded {len(self._plugins)} plugins from {self.directory}")
        return self._plugins

    async def gather(self, target: ResolvedTarget) -> list[MetricValue]:
        if target.scope is not self.scope:
            return []
        zonename = GLOBAL_ZONENAME if target.instance is None else target.instance.zonename

        results = await asyncio.gather(
            *(self._gather_plugin(plugin, target, zonename) for plugin in self.plugins())
        )
        return [value for values in results for value in values]

    async def _gather_plugin(
        self, plugin: Plugin, target: ResolvedTarget, zonename: str
    ) -> list[MetricValue]:
        prefix = f"{METRIC_PREFIX}{plugin.name}_"
        available, cached = _availability(prefix, plugin.name)

        async def produce() -> tuple[PluginOutput, float]:
            text = await self.runner.run(plugin, zonename)
            output = parse_plugin_output(text, prefix, plugin.prometheus_format)
            return output, output.ttl if output.ttl is not None else plugin.ttl

        try:
            output, from_cache = await self.results.get(f"{plugin.name}/{target.target_id}", produce)
        except ReaderError as e:
            logger.warning(f"Plugin {plugin.name} unavailable for {target.target_id}: {e}")
            return [MetricValue(available, 0)]

        return [
            MetricValue(available, 1),
            MetricValue(cached, 1 if from_cache else 0),
            *output.values,
        ]

    async def close(self) -> None:
        await self.results.close()
