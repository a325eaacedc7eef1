"""Raw data readers.

Each domain gets one zero-argument coroutine function producing a
RawSnapshot of the whole host; ``build_readers`` wires them up from the
individual command wrappers.
"""

from __future__ import annotations

import time
from typing import Callable

from zonemetrics.model import Domain, DomainReader, RawSnapshot
from zonemetrics.readers.base import CommandResult, CommandRunner, run_command
from zonemetrics.readers.clock import now_ms
from zonemetrics.readers.kstat import KSTAT_QUERIES, KstatQuery, KstatReader, KstatRecord
from zonemetrics.readers.ntp import NtpReader, NtpStatus
from zonemetrics.readers.zfs import DatasetUsage, PoolStats, ZfsReader


def _kstat_domain(reader: KstatReader, domain: Domain, query: KstatQuery) -> DomainReader:
    async def read() -> RawSnapshot:
        records = await reader.read(query)
        return RawSnapshot(domain, tuple(records), time.time())

    return read


def build_readers(
    kstat: KstatReader,
    zfs: ZfsReader,
    ntp: NtpReader,
    clock: Callable[[], int] = now_ms,
) -> dict[Domain, DomainReader]:
    """Map every domain to the coroutine function that reads it."""
    readers: dict[Domain, DomainReader] = {
        domain: _kstat_domain(kstat, domain, query) for domain, query in KSTAT_QUERIES.items()
    }

    async def read_time() -> RawSnapshot:
        return RawSnapshot(Domain.TIME, (clock(),), time.time())

    async def read_dataset_usage() -> RawSnapshot:
        return RawSnapshot(Domain.ZFS_USAGE, tuple(await zfs.dataset_usage()), time.time())

    async def read_pool_stats() -> RawSnapshot:
        return RawSnapshot(Domain.ZPOOL, tuple(await zfs.pool_stats()), time.time())

    async def read_ntp() -> RawSnapshot:
        return RawSnapshot(Domain.NTP, (await ntp.read(),), time.time())

    readers[Domain.TIME] = read_time
    readers[Domain.ZFS_USAGE] = read_dataset_usage
    readers[Domain.ZPOOL] = read_pool_stats
    readers[Domain.NTP] = read_ntp
    return readers


__all__ = [
    "CommandResult",
    "CommandRunner",
    "DatasetUsage",
    "DomainReader",
    "KSTAT_QUERIES",
    "KstatQuery",
    "KstatReader",
    "KstatRecord",
    "NtpReader",
    "NtpStatus",
    "PoolStats",
    "ZfsReader",
    "build_readers",
    "now_ms",
    "run_command",
]
