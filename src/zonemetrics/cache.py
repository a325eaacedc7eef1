"""Snapshot cache with per-domain freshness windows and read coalescing.

At most one read per domain is in flight at any time: callers that arrive
while a read is outstanding await that same read. Failed reads are not
cached, so the next call after a failure starts a fresh read.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from zonemetrics.errors import DomainReadError, EngineStoppedError, ReaderError
from zonemetrics.model import Domain, DomainReader, RawSnapshot
from zonemetrics.telemetry import EngineTelemetry

logger = logging.getLogger(__name__)

# Seconds a snapshot stays fresh; 0 means every request reads
DEFAULT_FRESHNESS: dict[Domain, float] = {
    Domain.TIME: 0,
    Domain.ARCSTATS: 10,
    Domain.CPU_SYS: 10,
    Domain.METASLAB_GROUP: 30,
    Domain.NET_LANES: 10,
    Domain.NTP: 64,
    Domain.ZPOOL: 30,
    Domain.CPU_CAPS: 10,
    Domain.MEMORY_CAP: 10,
    Domain.NET_LINK: 10,
    Domain.TCP: 10,
    Domain.ZFS_USAGE: 300,
    Domain.ZONE_MISC: 10,
    Domain.ZONE_VFS: 10,
}

DEFAULT_READ_TIMEOUT = 10.0


@dataclass(frozen=True)
class CacheEntry:
    """Most recent successful snapshot of a domain."""

    domain: Domain
    snapshot: RawSnapshot
    fetched_at: float


class SnapshotCache:
    """Holds the latest snapshot per domain and coalesces refreshes."""

    def __init__(
        self,
        readers: Mapping[Domain, DomainReader],
        freshness: Mapping[Domain, float] | None = None,
        timeout: float | None = DEFAULT_READ_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        telemetry: EngineTelemetry | None = None,
    ):
        """Initialize the cache.

        Args:
            readers: Coroutine function per domain producing a snapshot.
            freshness: Seconds each domain's snapshot stays fresh. Domains
                       not listed use DEFAULT_FRESHNESS.
            timeout: Seconds a read may take before it counts as failed.
                     None disables the limit.
            clock: Monotonic clock used for freshness.
            telemetry: Self-metrics sink.
        """
        self._readers = dict(readers)
        self._freshness = {**DEFAULT_FRESHNESS, **(freshness or {})}
        self._timeout = timeout
        self._clock = clock
        self._telemetry = telemetry or EngineTelemetry()

        self._entries: dict[Domain, CacheEntry] = {}
        self._inflight: dict[Domain, asyncio.Task] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def entry(self, domain: Domain) -> CacheEntry | None:
        return self._entries.get(domain)

    def is_fresh(self, entry: CacheEntry) -> bool:
        window = self._freshness.get(entry.domain, 0)
        if window <= 0:
            return False
        return self._clock() - entry.fetched_at < window

    async def ensure_fresh(self, domain: Domain) -> RawSnapshot:
        """Return a fresh snapshot of ``domain``, reading it if needed.

        Raises:
            DomainReadError: If the read failed or timed out.
            EngineStoppedError: If the cache was closed.
        """
        if self._closed:
            raise EngineStoppedError()

        entry = self._entries.get(domain)
        if entry is not None and self.is_fresh(entry):
            logger.debug(f"Cache hit for {domain.value}")
            self._telemetry.record_cache_hit(domain)
            return entry.snapshot

        task = self._inflight.get(domain)
        if task is None or task.done():
            task = asyncio.create_task(self._refresh(domain))
            self._inflight[domain] = task
            task.add_done_callback(lambda t, d=domain: self._on_refresh_done(d, t))
        else:
            logger.debug(f"Joining in-flight read of {domain.value}")
            self._telemetry.record_coalesced_wait(domain)

        # A cancelled waiter leaves the shared read running for the others
        return await asyncio.shield(task)

    async def _refresh(self, domain: Domain) -> RawSnapshot:
        reader = self._readers.get(domain)
        if reader is None:
            raise DomainReadError(domain, ReaderError(f"no reader registered for {domain.value}"))

        self._telemetry.record_read(domain)
        logger.debug(f"Reading {domain.value}")
        try:
            if self._timeout is None:
                snapshot = await reader()
            else:
                snapshot = await asyncio.wait_for(reader(), self._timeout)
        except asyncio.TimeoutError as e:
            self._telemetry.record_read_failure(domain)
            raise DomainReadError(
                domain, ReaderError(f"read timed out after {self._timeout}s")
            ) from e
        except Exception as e:
            self._telemetry.record_read_failure(domain)
            raise DomainReadError(domain, e) from e

        if self._closed:
            # Dispatched before shutdown; the result is discarded
            raise EngineStoppedError()

        self._entries[domain] = CacheEntry(domain, snapshot, self._clock())
        return snapshot

    def _on_refresh_done(self, domain: Domain, task: asyncio.Task) -> None:
        if self._inflight.get(domain) is task:
            del self._inflight[domain]
        # Mark the exception retrieved; every waiter already received it
        if not task.cancelled():
            task.exception()

    async def close(self) -> None:
        """Drop all entries and let outstanding reads finish unobserved."""
        if self._closed:
            return
        self._closed = True
        self._entries.clear()

        pending = list(self._inflight.values())
        if pending:
            logger.debug(f"Waiting for {len(pending)} in-flight reads to finish")
            await asyncio.gather(*pending, return_exceptions=True)
            self._entries.clear()


class ResultCache:
    """Per-key results with a TTL chosen by whoever produced them.

    Serves collectors that fetch their own data per target. As with
    SnapshotCache, concurrent misses on one key share a single call and
    failures are not cached.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(
        self,
        key: str,
        produce: Callable[[], Awaitable[tuple[Any, float]]],
    ) -> tuple[Any, bool]:
        """Return the value for ``key``, producing it on a miss.

        Args:
            key: Cache key.
            produce: Coroutine function returning ``(value, ttl_seconds)``.
                     A TTL of 0 or less is not stored.

        Returns:
            The value and whether it came from the cache.
        """
        entry = self._entries.get(key)
        if entry is not None:
            value, expires_at = entry
            if self._clock() < expires_at:
                return value, True
            del self._entries[key]

        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._produce(key, produce))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._on_produce_done(k, t))

        return await asyncio.shield(task), False

    async def _produce(self, key: str, produce: Callable[[], Awaitable[tuple[Any, float]]]) -> Any:
        value, ttl = await produce()
        if ttl > 0:
            self._entries[key] = (value, self._clock() + ttl)
        return value

    def _on_produce_done(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()

    async def close(self) -> None:
        """Drop all entries and wait for outstanding calls."""
        self._entries.clear()
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._entries.clear()
