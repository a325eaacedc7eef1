"""Tests for the snapshot cache.

Covers freshness windows, read coalescing, failure handling, timeouts and
shutdown.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeClock

from zonemetrics.cache import DEFAULT_FRESHNESS, ResultCache, SnapshotCache
from zonemetrics.errors import DomainReadError, EngineStoppedError, ReaderError
from zonemetrics.model import Domain, RawSnapshot
from zonemetrics.telemetry import EngineTelemetry


class CountingReader:
    """Domain reader that counts calls and can block or fail on demand."""

    def __init__(self, domain: Domain):
        self.domain = domain
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self) -> RawSnapshot:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RawSnapshot(self.domain, (self.calls,), float(self.calls))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reader():
    return CountingReader(Domain.TCP)


@pytest.fixture
def telemetry():
    return EngineTelemetry()


@pytest.fixture
def cache(reader, clock, telemetry):
    return SnapshotCache(
        {Domain.TCP: reader},
        freshness={Domain.TCP: 10},
        clock=clock,
        telemetry=telemetry,
    )


# =============================================================================
# Freshness Tests
# =============================================================================


class TestFreshness:
    """Tests for per-domain freshness windows."""

    @pytest.mark.asyncio
    async def test_first_call_reads(self, cache, reader):
        """The first request MUST trigger a read."""
        snapshot = await cache.ensure_fresh(Domain.TCP)

        assert reader.calls == 1
        assert snapshot.records == (1,)
        assert cache.entry(Domain.TCP).snapshot is snapshot

    @pytest.mark.asyncio
    async def test_fresh_entry_served_from_cache(self, cache, reader, clock, telemetry):
        """A request inside the window MUST NOT trigger a read."""
        first = await cache.ensure_fresh(Domain.TCP)
        clock.advance(9.9)
        second = await cache.ensure_fresh(Domain.TCP)

        assert reader.calls == 1
        assert second is first
        assert telemetry.sample("zonemetrics_cache_hits_total", {"domain": "tcp"}) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_rereads(self, cache, reader, clock):
        """A request after the window MUST trigger a new read."""
        await cache.ensure_fresh(Domain.TCP)
        clock.advance(10)
        snapshot = await cache.ensure_fresh(Domain.TCP)

        assert reader.calls == 2
        assert snapshot.records == (2,)

    @pytest.mark.asyncio
    async def test_zero_window_always_reads(self, clock):
        """A zero freshness window MUST read on every request."""
        reader = CountingReader(Domain.TIME)
        cache = SnapshotCache({Domain.TIME: reader}, clock=clock)

        await cache.ensure_fresh(Domain.TIME)
        await cache.ensure_fresh(Domain.TIME)

        assert DEFAULT_FRESHNESS[Domain.TIME] == 0
        assert reader.calls == 2


# =============================================================================
# Coalescing Tests
# =============================================================================


class TestCoalescing:
    """Tests for at-most-one read in flight per domain."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_read(self, cache, reader, telemetry):
        """Concurrent requests MUST await a single underlying read."""
        reader.gate = asyncio.Event()

        waiters = [asyncio.create_task(cache.ensure_fresh(Domain.TCP)) for _ in range(5)]
        await asyncio.sleep(0)
        reader.gate.set()
        results = await asyncio.gather(*waiters)

        assert reader.calls == 1
        assert all(r is results[0] for r in results)
        assert telemetry.sample("zonemetrics_domain_reads_total", {"domain": "tcp"}) == 1
        assert telemetry.sample("zonemetrics_coalesced_waits_total", {"domain": "tcp"}) == 4

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter(self, cache, reader):
        """A failed read MUST be reported to all callers that shared it."""
        reader.gate = asyncio.Event()
        reader.error = ReaderError("kstat exploded")

        waiters = [asyncio.create_task(cache.ensure_fresh(Domain.TCP)) for _ in range(3)]
        await asyncio.sleep(0)
        reader.gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert reader.calls == 1
        assert all(isinstance(r, DomainReadError) for r in results)
        assert all(r.domain == Domain.TCP for r in results)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_read(self, cache, reader):
        """Cancelling one caller MUST leave the shared read running."""
        reader.gate = asyncio.Event()

        first = asyncio.create_task(cache.ensure_fresh(Domain.TCP))
        second = asyncio.create_task(cache.ensure_fresh(Domain.TCP))
        await asyncio.sleep(0)
        first.cancel()
        reader.gate.set()

        snapshot = await second
        assert snapshot.records == (1,)
        assert first.cancelled()
        assert reader.calls == 1


# =============================================================================
# Failure Tests
# =============================================================================


class TestFailures:
    """Tests for read failures and timeouts."""

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, cache, reader, telemetry):
        """A failed read MUST NOT update the entry; the next call retries."""
        reader.error = ReaderError("boom")
        with pytest.raises(DomainReadError):
            await cache.ensure_fresh(Domain.TCP)
        assert cache.entry(Domain.TCP) is None

        reader.error = None
        snapshot = await cache.ensure_fresh(Domain.TCP)

        assert reader.calls == 2
        assert snapshot.records == (2,)
        assert telemetry.sample("zonemetrics_domain_read_failures_total", {"domain": "tcp"}) == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_entry(self, cache, reader, clock):
        """A failed refresh MUST leave the last good snapshot in place."""
        good = await cache.ensure_fresh(Domain.TCP)
        clock.advance(60)
        reader.error = ReaderError("boom")

        with pytest.raises(DomainReadError) as exc_info:
            await cache.ensure_fresh(Domain.TCP)

        assert isinstance(exc_info.value.cause, ReaderError)
        assert cache.entry(Domain.TCP).snapshot is good

    @pytest.mark.asyncio
    async def test_timeout_is_domain_failure(self, clock):
        """A read exceeding the timeout MUST fail as a domain read error."""
        reader = CountingReader(Domain.ZFS_USAGE)
        reader.gate = asyncio.Event()
        cache = SnapshotCache({Domain.ZFS_USAGE: reader}, timeout=0.01, clock=clock)

        with pytest.raises(DomainReadError) as exc_info:
            await cache.ensure_fresh(Domain.ZFS_USAGE)

        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_reader(self, cache):
        """A domain without a reader MUST fail as a domain read error."""
        with pytest.raises(DomainReadError):
            await cache.ensure_fresh(Domain.NTP)


# =============================================================================
# Shutdown Tests
# =============================================================================


class TestClose:
    """Tests for cache shutdown."""

    @pytest.mark.asyncio
    async def test_requests_after_close_fail_fast(self, cache, reader):
        """Requests after close MUST raise EngineStoppedError without reading."""
        await cache.close()

        with pytest.raises(EngineStoppedError):
            await cache.ensure_fresh(Domain.TCP)
        assert reader.calls == 0
        assert cache.closed

    @pytest.mark.asyncio
    async def test_close_drops_entries(self, cache):
        await cache.ensure_fresh(Domain.TCP)
        await cache.close()
        assert cache.entry(Domain.TCP) is None

    @pytest.mark.asyncio
    async def test_inflight_result_discarded(self, cache, reader):
        """A read dispatched before close MUST complete but not be stored."""
        reader.gate = asyncio.Event()
        waiter = asyncio.create_task(cache.ensure_fresh(Domain.TCP))
        await asyncio.sleep(0)

        closing = asyncio.create_task(cache.close())
        await asyncio.sleep(0)
        reader.gate.set()
        await closing

        with pytest.raises(EngineStoppedError):
            await waiter
        assert reader.calls == 1
        assert cache.entry(Domain.TCP) is None


# =============================================================================
# Result Cache Tests
# =============================================================================


class Producer:
    """Produce callback returning numbered results with a fixed TTL."""

    def __init__(self, ttl: float = 10):
        self.ttl = ttl
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return f"result-{self.calls}", self.ttl


class TestResultCache:
    """Tests for per-key results with producer-chosen TTLs."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, clock):
        """A second call within the TTL MUST be served from cache."""
        results = ResultCache(clock)
        produce = Producer()

        assert await results.get("web/gz", produce) == ("result-1", False)
        assert await results.get("web/gz", produce) == ("result-1", True)
        assert produce.calls == 1

    @pytest.mark.asyncio
    async def test_expiry(self, clock):
        results = ResultCache(clock)
        produce = Producer(ttl=5)

        await results.get("web/gz", produce)
        clock.advance(5)

        assert await results.get("web/gz", produce) == ("result-2", False)

    @pytest.mark.asyncio
    async def test_keys_independent(self, clock):
        results = ResultCache(clock)
        produce = Producer()

        await results.get("web/gz", produce)
        await results.get("web/zone1", produce)

        assert produce.calls == 2
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_not_stored(self, clock):
        results = ResultCache(clock)
        produce = Producer(ttl=0)

        await results.get("web/gz", produce)
        await results.get("web/gz", produce)

        assert produce.calls == 2
        assert len(results) == 0

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_call(self, clock):
        results = ResultCache(clock)
        produce = Producer()
        produce.gate = asyncio.Event()

        waiters = [asyncio.create_task(results.get("web/gz", produce)) for _ in range(3)]
        await asyncio.sleep(0)
        produce.gate.set()

        assert [value for value, _ in await asyncio.gather(*waiters)] == ["result-1"] * 3
        assert produce.calls == 1

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, clock):
        """A failed call MUST propagate and the next call MUST retry."""
        results = ResultCache(clock)
        produce = Producer()
        produce.error = ReaderError("plugin exited 1")

        with pytest.raises(ReaderError):
            await results.get("web/gz", produce)

        produce.error = None
        assert await results.get("web/gz", produce) == ("result-2", False)

    @pytest.mark.asyncio
    async def test_close_drops_entries(self, clock):
        results = ResultCache(clock)
        await results.get("web/gz", Producer())

        await results.close()

        assert len(results) == 0
