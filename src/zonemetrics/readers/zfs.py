"""ZFS dataset usage and pool statistics via the zfs and zpool commands."""

from __future__ import annotations

from dataclasses import dataclass

from zonemetrics.errors import ReaderError
from zonemetrics.readers.base import CommandRunner, check_output, run_command

DEFAULT_ZFS = "/usr/sbin/zfs"
DEFAULT_ZPOOL = "/usr/sbin/zpool"
DEFAULT_POOL = "zones"


@dataclass(frozen=True)
class DatasetUsage:
    """Space accounting for one dataset, in bytes."""

    name: str
    used: int
    available: int


@dataclass(frozen=True)
class PoolStats:
    """One row of ``zpool list``. None means the pool reports no value."""

    name: str
    allocated: int | None
    fragmentation: int | None
    size: int | None


def _parse_int(text: str, what: str) -> int:
    try:
        return int(text)
    except ValueError as e:
        raise ReaderError(f"invalid {what}: {text!r}") from e


def _parse_pool_value(text: str, what: str) -> int | None:
    # Fragmentation carries a trailing '%' on some platforms
    text = text.strip().rstrip("%")
    if text == "-":
        return None
    return _parse_int(text, what)


def parse_zfs_list(text: str) -> list[DatasetUsage]:
    """Parse ``zfs list -Hp -o name,used,available`` output."""
    datasets = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) != 3:
            raise ReaderError(f"unexpected zfs list line: {line!r}")
        name, used, available = fields
        datasets.append(
            DatasetUsage(
                name=name,
                used=_parse_int(used, f"{name} used"),
                available=_parse_int(available, f"{name} available"),
            )
        )
    return datasets


def parse_zpool_list(text: str) -> list[PoolStats]:
    """Parse ``zpool list -Hp -o name,allocated,fragmentation,size`` output."""
    pools = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) != 4:
            raise ReaderError(f"unexpected zpool list line: {line!r}")
        name, allocated, fragmentation, size = fields
        pools.append(
            PoolStats(
                name=name,
                allocated=_parse_pool_value(allocated, f"{name} allocated"),
                fragmentation=_parse_pool_value(fragmentation, f"{name} fragmentation"),
                size=_parse_pool_value(size, f"{name} size"),
            )
        )
    return pools


class ZfsReader:
    """Reads dataset usage and pool statistics."""

    def __init__(
        self,
        zfs_path: str = DEFAULT_ZFS,
        zpool_path: str = DEFAULT_ZPOOL,
        pool: str = DEFAULT_POOL,
        run: CommandRunner = run_command,
    ):
        self.zfs_path = zfs_path
        self.zpool_path = zpool_path
        self.pool = pool
        self._run = run

    async def dataset_usage(self) -> list[DatasetUsage]:
        """Usage of the pool's top-level datasets (one per zone) in one call."""
        argv = [self.zfs_path, "list", "-Hp", "-o", "name,used,available", "-d", "1", self.pool]
        return parse_zfs_list(await check_output(argv, self._run))

    async def pool_stats(self) -> list[PoolStats]:
        argv = [self.zpool_path, "list", "-Hp", "-o", "name,allocated,fragmentation,size"]
        return parse_zpool_list(await check_output(argv, self._run))
