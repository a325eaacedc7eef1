"""Collection engine.

Resolves a target, refreshes the raw domains its collector modules need
through the snapshot cache, runs the modules in registration order and
renders the result. Plugin and core zone modules fetch their own data
alongside the domain reads. A domain or source that cannot be read only
removes the modules depending on it; an unknown target fails the whole
request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from zonemetrics.cache import DEFAULT_READ_TIMEOUT, SnapshotCache
from zonemetrics.collectors import (
    CollectorModule,
    ModuleOptions,
    SourceCollector,
    registered_modules,
)
from zonemetrics.config import ZoneMetricsConfig
from zonemetrics.errors import (
    DomainReadError,
    EngineStoppedError,
    TargetNotFoundError,
    ZoneMetricsError,
)
from zonemetrics.model import (
    HOST_TARGET,
    Domain,
    MetricValue,
    RawSnapshot,
    ResolvedTarget,
    Scope,
)
from zonemetrics.readers import KstatReader, NtpReader, ZfsReader, build_readers
from zonemetrics.registry import InstanceRegistry
from zonemetrics.render import render
from zonemetrics.telemetry import EngineTelemetry

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 1800.0


class CollectionEngine:
    """Serves rendered metrics for the host and its zones."""

    def __init__(
        self,
        registry: InstanceRegistry,
        cache: SnapshotCache,
        host_modules: Sequence[CollectorModule],
        instance_modules: Sequence[CollectorModule],
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        telemetry: EngineTelemetry | None = None,
        source_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        """Initialize the engine.

        Args:
            registry: Instance registry used to resolve target ids.
            cache: Snapshot cache the engine owns and closes on stop.
            host_modules: Host collector modules in registration order.
            instance_modules: Instance collector modules in registration order.
            refresh_interval: Seconds between background registry refreshes.
            telemetry: Self-metrics sink.
            source_timeout: Seconds a plugin or core zone module may take
                            before it is skipped for the scrape.
        """
        self.registry = registry
        self.cache = cache
        self.modules: dict[Scope, list[CollectorModule]] = {
            Scope.HOST: list(host_modules),
            Scope.INSTANCE: list(instance_modules),
        }
        self.refresh_interval = refresh_interval
        self.telemetry = telemetry or EngineTelemetry()
        self.source_timeout = source_timeout

        self._running = False
        self._stopped = False
        self._refresh_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: ZoneMetricsConfig) -> CollectionEngine:
        """Wire readers, cache, registry and modules from configuration."""
        readers_config = config.readers
        telemetry = EngineTelemetry()

        readers = build_readers(
            KstatReader(readers_config.kstat),
            ZfsReader(readers_config.zfs, readers_config.zpool, readers_config.zfs_pool),
            NtpReader(readers_config.ntpq),
        )
        cache = SnapshotCache(
            readers,
            freshness=config.cache.freshness,
            timeout=readers_config.timeout,
            telemetry=telemetry,
        )
        options = ModuleOptions(
            zfs_pool=readers_config.zfs_pool,
            plugins=config.plugins,
            triton=config.triton,
        )
        return cls(
            registry=InstanceRegistry(config.registry.zoneadm),
            cache=cache,
            host_modules=registered_modules(Scope.HOST, config.collectors.host, options),
            instance_modules=registered_modules(
                Scope.INSTANCE, config.collectors.instance, options
            ),
            refresh_interval=config.registry.refresh_interval,
            telemetry=telemetry,
            source_timeout=readers_config.timeout,
        )

    @property
    def is_running(self) -> bool:
        """Check if the engine is serving requests."""
        return self._running

    async def start(self) -> None:
        """Load the registry and start the background refresh task."""
        if self._running:
            return
        if self._stopped:
            raise EngineStoppedError("collector was stopped and cannot be restarted")

        self._running = True
        await self.refresh_registry(raise_errors=False)
        self._refresh_task = asyncio.create_task(self._refresh_loop())

        logger.info(
            f"Collection engine started: {len(self.modules[Scope.HOST])} host and "
            f"{len(self.modules[Scope.INSTANCE])} instance collectors"
        )

    async def stop(self) -> None:
        """Stop the refresh task and drop every cached snapshot.

        Requests made afterwards fail with EngineStoppedError.
        """
        if self._stopped:
            return
        self._running = False
        self._stopped = True

        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

        await self.cache.close()
        for modules in self.modules.values():
            for module in modules:
                if isinstance(module, SourceCollector):
                    await module.close()
        logger.info("Collection engine stopped")

    async def _refresh_loop(self) -> None:
        """Background loop that re-reads the instance registry periodically."""
        while self._running:
            try:
                await asyncio.sleep(self.refresh_interval)
                await self.refresh_registry(raise_errors=False)
            except asyncio.CancelledError:
                break

    async def refresh_registry(self, raise_errors: bool = True) -> int:
        """Re-read the running zones.

        Args:
            raise_errors: Re-raise a failed refresh instead of logging it.
                          The previous registry is kept either way.

        Returns:
            Number of known instances.
        """
        try:
            count = await self.registry.refresh()
        except Exception as e:
            logger.error(f"Instance registry refresh failed: {e}")
            if raise_errors:
                raise
            return len(self.registry)

        self.telemetry.set_instances(count)
        return count

    def resolve(self, target_id: str) -> ResolvedTarget:
        """Resolve a target id to the host or a known instance.

        Raises:
            TargetNotFoundError: If the id is neither the host nor a known instance.
        """
        if target_id == HOST_TARGET:
            return ResolvedTarget.host()

        instance = self.registry.resolve(target_id)
        if instance is None:
            raise TargetNotFoundError(target_id)
        return ResolvedTarget(target_id, instance)

    async def _fetch(self, domains: Sequence[Domain]) -> dict[Domain, RawSnapshot]:
        """Refresh each domain independently, keeping only the successful ones."""
        results = await asyncio.gather(
            *(self.cache.ensure_fresh(domain) for domain in domains),
            return_exceptions=True,
        )

        bundle: dict[Domain, RawSnapshot] = {}
        for domain, result in zip(domains, results):
            if isinstance(result, (EngineStoppedError, asyncio.CancelledError)):
                raise result
            if isinstance(result, DomainReadError):
                logger.warning(f"Skipping collectors that need {domain.value}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            bundle[domain] = result
        return bundle

    async def _run_source(
        self, module: SourceCollector, target: ResolvedTarget
    ) -> list[MetricValue]:
        """Gather one source module, returning nothing if it fails or times out."""
        try:
            return await asyncio.wait_for(module.gather(target), self.source_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Skipping collector {module.name} for {target.target_id}: "
                f"timed out after {self.source_timeout}s"
            )
        except EngineStoppedError:
            raise
        except ZoneMetricsError as e:
            logger.warning(f"Skipping collector {module.name} for {target.target_id}: {e}")

        self.telemetry.record_source_failure(module.name)
        return []

    async def collect(self, target_id: str) -> list[MetricValue]:
        """Collect metric values for a target in module registration order.

        Raises:
            EngineStoppedError: If the engine is not running.
            TargetNotFoundError: If the target id is unknown.
        """
        if not self._running:
            raise EngineStoppedError()

        target = self.resolve(target_id)
        modules = self.modules[target.scope]

        domains: list[Domain] = []
        for module in modules:
            for domain in module.domains:
                if domain not in domains:
                    domains.append(domain)

        sources = [m for m in modules if isinstance(m, SourceCollector)]
        bundle, gathered = await asyncio.gather(
            self._fetch(domains),
            asyncio.gather(*(self._run_source(module, target) for module in sources)),
        )
        source_values = {module.name: result for module, result in zip(sources, gathered)}

        values: list[MetricValue] = []
        for module in modules:
            if isinstance(module, SourceCollector):
                values.extend(source_values[module.name])
                continue
            missing = [d.value for d in module.domains if d not in bundle]
            if missing:
                logger.debug(f"Collector {module.name} skipped, unavailable: {', '.join(missing)}")
                continue
            values.extend(module.collect(target, bundle))
        return values

    async def get_metrics(self, target_id: str) -> str:
        """Render the metrics of a target in Prometheus text format.

        Raises:
            EngineStoppedError: If the engine is not running.
            TargetNotFoundError: If the target id is unknown.
        """
        scope = Scope.HOST.value if target_id == HOST_TARGET else Scope.INSTANCE.value
        try:
            values = await self.collect(target_id)
        except TargetNotFoundError:
            self.telemetry.record_scrape(scope, "not_found")
            raise
        except EngineStoppedError:
            self.telemetry.record_scrape(scope, "stopped")
            raise

        self.telemetry.record_scrape(scope, "ok")
        return render(values)
