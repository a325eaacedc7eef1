"""Descriptor tables for the clock and ZFS command-backed modules."""

from zonemetrics.model import counter, gauge

TIME_OF_DAY = counter("now_ms", "time_of_day", "System time in seconds since epoch")

# zfs list -Hp -o name,used,available; available is emitted first
ZFS_USAGE = (
    gauge("available", "zfs_available", "zfs space available in bytes"),
    gauge("used", "zfs_used", "zfs space used in bytes"),
)

# zpool list -Hp -o name,allocated,fragmentation,size
ZPOOL = (
    gauge("allocated", "zpool_allocated_bytes", "zpool list stat: pool allocated bytes"),
    gauge("fragmentation", "zpool_fragmentation_percent", "zpool list stat: pool fragmentation percent"),
    gauge("size", "zpool_size_bytes", "zpool list stat: pool size bytes"),
)
