"""Descriptor tables for kstat-backed collector modules."""

from zonemetrics.convert import load_average, memory_limit, nsec_to_sec
from zonemetrics.model import counter, gauge

# =============================================================================
# Host (global zone)
# =============================================================================

# kstat -c misc -m zfs -n arcstats
ARCSTATS = (
    gauge("anon_evictable_data", "arcstats_anon_evictable_data_bytes", "ARC anonymous evictable data"),
    gauge("anon_evictable_metadata", "arcstats_anon_evictable_metadata_bytes", "ARC anonymous evictable metadata"),
    gauge("anon_size", "arcstats_anon_size_bytes", "ARC anonymous size"),
    gauge("arc_meta_limit", "arcstats_arc_meta_limit_bytes", "ARC metadata limit"),
    gauge("arc_meta_max", "arcstats_arc_meta_max_bytes", "ARC metadata maximum observed size"),
    gauge("arc_meta_min", "arcstats_arc_meta_min_bytes", "ARC metadata minimum"),
    gauge("arc_meta_used", "arcstats_arc_meta_used_bytes", "ARC metadata used"),
    gauge("c", "arcstats_target_cache_size_bytes", "ARC target cache size"),
    gauge("c_max", "arcstats_max_target_cache_size_bytes", "ARC maximum target cache size"),
    gauge("c_min", "arcstats_min_target_cache_size_bytes", "ARC minimum target cache size"),
    gauge("compressed_size", "arcstats_compressed_size_bytes", "ARC compressed size"),
    gauge("data_size", "arcstats_data_size_bytes", "Number of bytes consumed by ARC buffers backing on disk data"),
    counter("demand_data_hits", "arcstats_demand_data_hits_total", "ARC demand data hits"),
    counter("demand_data_misses", "arcstats_demand_data_misses_total", "ARC demand data misses"),
    counter("demand_hit_predictive_prefetch", "arcstats_demand_hit_predictive_prefetch_total", "ARC demand hit predictive prefetch"),
    counter("demand_metadata_hits", "arcstats_demand_metadata_hits_total", "ARC demand metadata hits"),
    counter("demand_metadata_misses", "arcstats_demand_metadata_misses_total", "ARC demand metadata misses"),
    counter("evict_l2_cached", "arcstats_evict_l2_cached_bytes_total", "ARC l2 cached bytes evicted"),
    counter("evict_l2_eligible", "arcstats_evict_l2_eligible_bytes_total", "ARC l2 cache bytes eligible for eviction"),
    counter("evict_l2_ineligible", "arcstats_evict_l2_ineligible_bytes_total", "ARC l2 cache bytes ineligible for eviction"),
    counter("evict_l2_skip", "arcstats_evict_l2_skip_total", "ARC l2 cache eviction skips"),
    counter("evict_not_enough", "arcstats_evict_not_enough_total", "ARC count of eviction scans which did not satisfy ARC_EVICT_ALL"),
    counter("evict_skip", "arcstats_evict_skip_total", "ARC total number of buffers skipped during an eviction"),
    gauge("hash_chain_max", "arcstats_hash_chain_max", "ARC hash chain maximum"),
    gauge("hash_chains", "arcstats_hash_chains", "ARC hash chains"),
    counter("hash_collisions", "arcstats_hash_collisions_total", "ARC hash collisions"),
    gauge("hash_elements", "arcstats_hash_elements", "ARC hash elements"),
    gauge("hash_elements_max", "arcstats_hash_elements_max", "ARC hash elements maximum"),
    counter("hdr_size", "arcstats_hdr_size_bytes", "Number of bytes consumed by internal ARC structures"),
    counter("hits", "arcstats_hits_total", "ARC hits"),
    counter("l2_abort_lowmem", "arcstats_l2_abort_lowmem_total", "ARC l2 low memory aborts"),
    gauge("l2_asize", "arcstats_l2_asize_bytes", "ARC l2 actual size in bytes after compression"),
    counter("l2_cksum_bad", "arcstats_l2_cksum_bad_total", "ARC l2 total bad checksums encountered"),
    counter("l2_evict_l1cached", "arcstats_l2_evict_l1cached_total", "ARC l2 evictions which also result in l1 cache evictions"),
    counter("l2_evict_lock_retry", "arcstats_l2_evict_lock_retry_total", "ARC l2 evictions that fail and retry because of a hash lock miss"),
    counter("l2_evict_reading", "arcstats_l2_evict_reading_total", "ARC l2 eviction of a block that is being or about to be read"),
    counter("l2_feeds", "arcstats_l2_feeds_total", "ARC l2 arc feed loop execution count"),
    counter("l2_free_on_write", "arcstats_l2_free_on_write_total", "ARC l2 headers added to the free on write list"),
    gauge("l2_hdr_size", "arcstats_l2_hdr_bytes", "ARC l2 header bytes"),
    counter("l2_hits", "arcstats_l2_hits_total", "ARC l2 cache hits"),
    counter("l2_io_error", "arcstats_l2_io_error_total", "ARC io error when reading from l2"),
    counter("l2_misses", "arcstats_l2_misses_total", "ARC l2 misses"),
    gauge("l2_read_bytes", "arcstats_l2_read_bytes", "ARC bytes read from l2"),
    counter("l2_rw_clash", "arcstats_l2_rw_clash_total", "ARC l2 read errors due to active L2 write"),
    gauge("l2_size", "arcstats_l2_size_bytes", "ARC l2 size in bytes"),
    counter("l2_write_bytes", "arcstats_l2_write_bytes", "ARC l2 cummulative bytes written"),
    counter("l2_writes_done", "arcstats_l2_writes_done_total", "ARC l2 cummulative writes done"),
    counter("l2_writes_error", "arcstats_l2_writes_error_total", "ARC l2 write errors"),
    counter("l2_writes_lock_retry", "arcstats_l2_writes_lock_retry_total", "ARC l2 writes which missed the hash lock resulting in a retry"),
    counter("l2_writes_sent", "arcstats_l2_writes_sent_total", "ARC l2 cummulative writes sent"),
    counter("memory_throttle_count", "arcstats_memory_throttle_count", "ARC page load delayed due to low memory"),
    gauge("metadata_size", "arcstats_metadata_size_bytes", "Number of bytes consumed by ARC metadata buffers"),
    gauge("mfu_evictable_data", "arcstats_mfu_evictable_data_bytes", "Bytes consumed by ARC data buffers that are evictable"),
    gauge("mfu_evictable_metadata", "arcstats_mfu_evictable_metadata_bytes", "Bytes consumed by ARC metadata buffers that are evictable"),
    gauge("mfu_ghost_evictable_data", "arcstats_mfu_ghost_evictable_data", "Evictable data bytes that would have been consumed by ARC"),
    gauge("mfu_ghost_evictable_metadata", "arcstats_mfu_ghost_evictable_metadata_bytes", "Evictable metadata bytes that would have been consumed by ARC"),
    counter("mfu_ghost_hits", "arcstats_mfu_ghost_hits_total", "ARC hits for MFU ghost data (data accessed more than once, but has been evicted from cache)"),
    gauge("mfu_ghost_size", "arcstats_mfu_ghost_size_bytes", "Evictable bytes that would have been consumed by ARC buffers in the arc_mfu_ghost state"),
    counter("mfu_hits", "arcstats_mfu_hits_total", "ARC hits for data in the MFU state"),
    gauge("mfu_size", "arcstats_mfu_size_bytes", "Total number of bytes consumed by ARC buffers in the MFU state"),
    counter("misses", "arcstats_misses_total", "ARC misses"),
    gauge("mru_evictable_data", "arcstats_mru_evictable_data_bytes", "Bytes consumed by ARC buffers of type ARC_BUFC_DATA, residing in the arc_mru state, and eligible for eviction"),
    gauge("mru_evictable_metadata", "arcstats_mru_evictable_metadata_bytes", "Bytes consumed by ARC buffers of type ARC_BUFC_METADATA, residing in the arc_mru state, and eligible for eviction"),
    gauge("mru_ghost_evictable_data", "arcstats_mru_ghost_evictable_data_bytes", "Bytes that would have been consumed by ARC buffers and of type ARC_BUFC_DATA, and linked off the arc_mru_ghost state"),
    gauge("mru_ghost_evictable_metadata", "arcstats_mru_ghost_evictable_metadata_bytes", "Bytes that would have been consumed by ARC buffers and of type ARC_BUFC_METADATA, and linked off the arc_mru_ghost state"),
    counter("mru_ghost_hits", "arcstats_mru_ghost_hits_total", "ARC hits for MRU ghost data (data accessed recently, but has been evicted from cache)"),
    gauge("mru_ghost_size", "arcstats_mru_ghost_size_bytes", "Total bytes that would have been consumed by ARC buffers in the arc_mru_ghost state. (This is not DRAM consumption)"),
    counter("mru_hits", "arcstats_mru_hits_total", "Total MRU hits"),
    gauge("mru_size", "arcstats_mru_size_bytes", "Total number of bytes consumed by ARC buffers in the arc_mru state"),
    counter("mutex_miss", "arcstats_mutex_miss_total", "Buffers that could not be evicted because the hash lock was held by another thread"),
    gauge("other_size", "arcstats_other_size_bytes", "Bytes consumed by non-ARC buffers"),
    gauge("overhead_size", "arcstats_overhead_size_bytes", "Bytes stored in all arc_buf_t, classifed as overhead since it is typically short-lived."),
    gauge("p", "arcstats_p_bytes", "Target size of the MRU in bytes"),
    counter("prefetch_data_hits", "arcstats_prefetch_data_hits_total", "ARC prefetch data hits"),
    counter("prefetch_data_misses", "arcstats_prefetch_data_misses_total", "ARC prefetch data misses"),
    counter("prefetch_metadata_hits", "arcstats_prefetch_metadata_hits_total", "ARC prefectch metatdata hits"),
    counter("prefetch_metadata_misses", "arcstats_prefetch_metadata_misses_total", "ARC prefetch metadata misses"),
    gauge("size", "arcstats_size_bytes", "ARC total size in bytes"),
    counter("sync_wait_for_async", "arcstats_sync_wait_for_async_total", "Number of times a sync read waited for an in-progress async read"),
    gauge("uncompressed_size", "arcstats_uncompressed_size_bytes", "ARC total uncompressed size in bytes"),
)

# kstat -c misc -m cpu -n sys, one record per CPU
CPU_UTIL = (
    counter("cpu_nsec_idle", "cpu_idle_seconds_total", "CPU idle time in seconds", nsec_to_sec),
    counter("cpu_nsec_kernel", "cpu_kernel_seconds_total", "CPU kernel time in seconds", nsec_to_sec),
    counter("cpu_nsec_user", "cpu_user_seconds_total", "CPU user time in seconds", nsec_to_sec),
    counter("cpu_nsec_dtrace", "cpu_dtrace_seconds_total", "CPU dtrace time in seconds", nsec_to_sec),
)

# kstat -c net -i 0, soft ring lanes
NET_LANES = (
    counter("rxsdrops", "net_rxsdrops_total", "Per software lane rx drops total"),
)

# kstat -c misc -m zfs_metaslab_group
METASLAB_GROUP = (
    counter("loads", "metaslab_group_loads", "Number of metaslab loads per metaslab group"),
    counter("unloads", "metaslab_group_unloads", "Number of metaslab unloads per metaslab group"),
)

# =============================================================================
# Instance (non-global zones)
# =============================================================================

# kstat -c zone_caps -m caps -n cpucaps_zone_<id>
CPUCAP = (
    counter(
        "above_base_sec",
        "cpucap_above_base_seconds_total",
        "Time (in seconds) a zone has spent over the baseline",
    ),
    counter(
        "above_sec",
        "cpucap_above_seconds_total",
        "Time (in seconds) a zone has spent over its cpu_cap",
    ),
    gauge(
        "baseline",
        "cpucap_baseline_percentage",
        'The "normal" CPU utilization expected for a zone with this cpu_cap '
        "(percentage of a single CPU)",
    ),
    counter(
        "below_sec",
        "cpucap_below_seconds_total",
        "Time (in seconds) a zone has spent under its cpu_cap",
    ),
    gauge(
        "burst_limit_sec",
        "cpucap_burst_limit_seconds",
        "The limit on the number of seconds a zone can burst over its cpu_cap "
        "before the effective cap is lowered to the baseline",
    ),
    gauge(
        "effective",
        "cpucap_effective_percentage",
        "Shows which cap is being used, the baseline value or the burst value",
    ),
    gauge(
        "maxusage",
        "cpucap_max_usage_percentage",
        "The highest CPU utilization the zone has seen since booting "
        "(percentage of a single CPU)",
    ),
    gauge(
        "nwait",
        "cpucap_waiting_threads_count",
        "The number of threads put on the wait queue due to the zone being over its cap",
    ),
    gauge(
        "usage",
        "cpucap_cur_usage_percentage",
        "Current CPU utilization of the zone (percentage of a single CPU)",
    ),
    gauge(
        "value",
        "cpucap_limit_percentage",
        "The cpu_cap limit (percentage of a single CPU)",
    ),
)

# kstat -c net -m link, filtered by data.zonename
LINK = (
    counter("ipackets64", "net_agg_packets_in", "Aggregate inbound packets"),
    counter("obytes64", "net_agg_bytes_out", "Aggregate outbound bytes"),
    counter("opackets64", "net_agg_packets_out", "Aggregate outbound packets"),
    counter("rbytes64", "net_agg_bytes_in", "Aggregate inbound bytes"),
)

# kstat -c zone_memory_cap -m memory_cap
MEMCAP = (
    gauge("rss", "mem_agg_usage", "Aggregate memory usage in bytes"),
    counter("anon_alloc_fail", "mem_anon_alloc_fail", "Anonymous allocation failure count"),
    gauge("physcap", "mem_limit", "Memory limit in bytes", memory_limit),
    gauge("swap", "mem_swap", "Swap in bytes"),
    gauge("swapcap", "mem_swap_limit", "Swap limit in bytes", memory_limit),
)

# kstat -c mib2 -m tcp
TCP = (
    counter("attemptFails", "tcp_failed_connection_attempt_count", "Failed TCP connection attempts"),
    counter("retransSegs", "tcp_retransmitted_segment_count", "Retransmitted TCP segments"),
    counter("inDupAck", "tcp_duplicate_ack_count", "Duplicate TCP ACK count"),
    counter(
        "listenDrop",
        "tcp_listen_drop_count",
        "TCP listen drops. Connection refused because backlog full",
    ),
    counter(
        "listenDropQ0",
        "tcp_listen_drop_Qzero_count",
        "Total # of connections refused due to half-open queue (q0) full",
    ),
    counter(
        "halfOpenDrop",
        "tcp_half_open_drop_count",
        "TCP connection dropped from a full half-open queue",
    ),
    counter(
        "timRetransDrop",
        "tcp_retransmit_timeout_drop_count",
        "TCP connection dropped due to retransmit timeout",
    ),
    counter("activeOpens", "tcp_active_open_count", "TCP active open connections"),
    counter("passiveOpens", "tcp_passive_open_count", "TCP passive open connections"),
    gauge(
        "currEstab",
        "tcp_current_established_connections_total",
        "TCP total established connections",
    ),
)

# kstat -c zone_misc -m zones
ZONE_MISC = (
    counter("nsec_user", "cpu_user_usage", "User CPU utilization in nanoseconds"),
    counter("nsec_sys", "cpu_sys_usage", "System CPU usage in nanoseconds"),
    counter("nsec_waitrq", "cpu_wait_time", "CPU wait time in nanoseconds"),
    gauge("avenrun_1min", "load_average", "Load average", load_average),
)

# kstat -c zone_vfs -m zone_vfs
ZONE_VFS = (
    counter("nread", "vfs_bytes_read_count", "VFS number of bytes read"),
    counter("nwritten", "vfs_bytes_written_count", "VFS number of bytes written"),
    counter("reads", "vfs_read_operation_count", "VFS number of read operations"),
    counter("writes", "vfs_write_operation_count", "VFS number of write operations"),
    counter("wtime", "vfs_wait_time_count", "VFS cumulative wait (pre-service) time"),
    counter("wlentime", "vfs_wait_length_time_count", "VFS cumulative wait length*time product"),
    counter("rtime", "vfs_run_time_count", "VFS cumulative run (pre-service) time"),
    counter("rlentime", "vfs_run_length_time_count", "VFS cumulative run length*time product"),
    gauge("wcnt", "vfs_elements_wait_state", "VFS number of elements in wait state"),
    gauge("rcnt", "vfs_elements_run_state", "VFS number of elements in run state"),
)
