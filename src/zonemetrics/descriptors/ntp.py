"""Descriptor tables for ntpd status reported through ntpq.

System metrics come from the iostats, kerninfo, monstats, sysinfo and
sysstats queries; system peer metrics from ``readvar <assid>``; peer
metrics from ``apeers``.
"""

import re

from zonemetrics.convert import (
    index_of,
    kibibytes_to_bytes,
    msec_to_sec,
    reach_failures,
    usec_to_sec,
)
from zonemetrics.model import counter, gauge

NTP_MODES = (
    "bclient",
    "broadcast",
    "client",
    "control",
    "private",
    "server",
    "sym_active",
    "sym_passive",
    "unspec",
)

NTP_PEER_TYPES = ("u", "b", "l", "s", "A", "B", "M")

NTP_PEER_STATES = (
    "invalid",
    "falseticker",
    "overflow",
    "pruned",
    "candidate",
    "backup",
    "syspeer",
    "pps",
)

NTP_REFID_TYPES = (
    ".IPADDR.",
    ".ACST.",
    ".ACTS.",
    ".AUTH.",
    ".AUTO.",
    ".BCST.",
    ".CHU.",
    ".CRYPT.",
    ".DCFx.",
    ".DENY.",
    ".GAL.",
    ".GOES.",
    ".GPS.",
    ".HBG.",
    ".INIT.",
    ".IRIG.",
    ".JJY.",
    ".LFx.",
    ".LOCL.",
    ".LORC.",
    ".MCST.",
    ".MSF.",
    ".NIST.",
    ".PPS.",
    ".PTB.",
    ".RATE.",
    ".STEP.",
    ".TDF.",
    ".TIME.",
    ".USNO.",
    ".WWV.",
    ".WWVB.",
    ".WWVH.",
)

# Remote peers show up as their IPv4 address in hex, e.g. 8a27170d
_HEX_REFID = re.compile(r"^[a-f0-9]{8}$")

_refid_index = index_of(NTP_REFID_TYPES)


def refid_to_number(value: str) -> int:
    if _HEX_REFID.match(value):
        value = ".IPADDR."
    return _refid_index(value)


peer_state_to_number = index_of(NTP_PEER_STATES)

AVAILABLE = gauge(
    "ntpd_available",
    "ntp_metrics_available_boolean",
    "Whether ntp metrics were available, 0 = false, 1 = true",
)

SYSTEM = (
    # iostats
    counter("dropped_packets", "ntp_dropped_packets_total", "Number of packets dropped on reception"),
    gauge(
        "free_receive_buffers",
        "ntp_free_receive_buffers_count",
        "Number of recvbuffs that are on the free list",
    ),
    counter(
        "ignored_packets",
        "ntp_ignored_packets_total",
        "Number packets received on wild card interface",
    ),
    counter(
        "input_wakeups",
        "ntp_input_wakeups_total",
        "Number of times interrupt handler was called for input.",
    ),
    counter("low_water_refills", "ntp_low_water_refill_count", "Number of times ntpd has added memory"),
    counter(
        "packet_send_failures",
        "ntp_packet_send_failures_total",
        "Number of packets that could not be sent",
    ),
    counter("packets_sent", "ntp_packet_sent_total", "Number of packets sent"),
    gauge("receive_buffers", "ntp_receive_buffers_count", "Total number of recvbuffs currently in use"),
    counter("received_packets", "ntp_packet_received_total", "Number of packets received"),
    counter(
        "time_since_reset",
        "ntp_time_since_reset_seconds",
        "Number of seconds since the NTP iostats were last reset",
    ),
    gauge("used_receive_buffers", "ntp_used_receive_buffers_count", "Number of recvbuffs that are full"),
    counter("useful_input_wakeups", "ntp_useful_input_wakeups_total", "Number of packets received by handler"),
    # kerninfo
    counter(
        "calibration_cycles",
        "ntp_calibration_cycles_total",
        "counts the frequency calibration intervals which are variable from 4s to 256s",
    ),
    gauge(
        "calibration_interval",
        "ntp_calibration_interval_seconds",
        "The duration of the calibration interval (in seconds)",
    ),
    gauge(
        "estimated_error",
        "ntp_estimated_error_seconds",
        "The estimated error in the clock (in seconds)",
        usec_to_sec,
    ),
    gauge(
        "frequency_tolerance",
        "ntp_frequency_tolerance_ppm",
        "Determines maximum frequency error or tolerance of the CPU clock oscillator (in ppm)",
    ),
    counter(
        "jitter_exceeded",
        "ntp_jitter_exceeded_seconds_total",
        "Counts the seconds that have been discarded because the jitter measured by the "
        "time median filter exceeds the limit MAXTIME (100 us)",
    ),
    gauge("kernel_status", "ntp_kernel_status", "Kernel status flags", enabled=False),
    gauge(
        "maximum_error",
        "ntp_maximum_error_seconds",
        "The maximum error in the clock as calculated by the kernel (in seconds)",
        usec_to_sec,
    ),
    gauge(
        "pll_frequency",
        "ntp_frequency_offset_ppm",
        "The frequency offset of the kernel time from the pps signal (scaled ppm)",
    ),
    gauge(
        "pll_offset",
        "ntp_pll_offset_seconds",
        "This is the current offset from correct time that the kernel uses to compute "
        "any adjustment required",
        usec_to_sec,
    ),
    gauge(
        "pll_time_constant",
        "ntp_pll_time_const",
        'This determines the bandwidth or "stiffness" of the PLL',
    ),
    gauge(
        "pps_frequency",
        "ntp_pps_frequency_ppm",
        "The frequency offset produced by the frequency median filter pps_ff[] (scaled ppm)",
    ),
    gauge(
        "pps_jitter",
        "ntp_pps_jitter_ppm",
        "The dispersion (jitter) measured by the time median filter pps_tf[] (scaled ppm)",
    ),
    gauge(
        "pps_stability",
        "ntp_pps_stability_ppm",
        "The dispersion (wander) measured by frequency median filter pps_ff[] (scaled ppm)",
    ),
    gauge("precision", "ntp_precision", "Clock precision (in seconds)", usec_to_sec),
    counter(
        "stability_exceeded",
        "ntp_stability_exceeded_seconds_total",
        "Counts the calibration intervals that have been discarded because the frequency "
        "wander exceeds the limit MAXFREQ / 4 (25 us)",
    ),
    # monstats
    gauge(
        "enabled",
        "ntp_mru_monitor_enabled_boolean",
        "Indicates whether or not the MRU monitoring facility is enabled",
    ),
    gauge(
        "addresses",
        "ntp_mru_monitor_address_count",
        "The number of address entries in the MRU monitoring list",
    ),
    gauge(
        "peak_addresses",
        "ntp_mru_monitor_max_address_count",
        "The maximum number of addresses ntpd has had in the MRU monitoring list",
    ),
    gauge(
        "maximum_addresses",
        "ntp_mru_monitor_max_address_limit",
        "The hard limit on the number of addresses ntpd can have in the MRU monitoring list",
    ),
    gauge(
        "reclaim_above_count",
        "ntp_mru_monitor_min_address_limit",
        "The floor on the count of addresses in the MRU monitoring list beneath which "
        "entries are kept without regard to their age",
    ),
    gauge(
        "reclaim_older_than",
        "ntp_mru_monitor_max_age_limit",
        "The ceiling on the age in seconds of entries. Entries older than this are "
        "reclaimed once ntp_mru_monitor_min_address_limit is exceeded",
    ),
    gauge(
        "kilobytes",
        "ntp_mru_monitor_memory_bytes",
        "The number of bytes used by all the entries currently on the MRU monitoring "
        "list (in bytes)",
        kibibytes_to_bytes,
    ),
    gauge(
        "maximum_kilobytes",
        "ntp_mru_monitor_max_memory_bytes",
        "The number of bytes used by all the entries on the MRU monitoring list when it "
        "was at its maximum size (in bytes)",
        kibibytes_to_bytes,
    ),
    # sysinfo
    gauge(
        "broadcast_delay",
        "ntp_broadcast_delay_seconds",
        "Broadcast client default delay (seconds)",
        usec_to_sec,
    ),
    gauge(
        "clock_jitter",
        "ntp_clock_jitter_ppm",
        "Clock jitter calculated by the clock discipline module "
        "(exponentially-weighted RMS average)",
    ),
    gauge("clock_wander", "ntp_clock_frequency_wander_ppm", "Clock frequency wander (ppm)"),
    gauge(
        "leap_indicator",
        "ntp_leap_indicator_status",
        "Indicates whether or not there is a leap second upcoming",
    ),
    gauge("log2_precision", "ntp_precision_log2s", "The local clock precision in log2 seconds"),
    gauge("stratum", "ntp_stratum_number", "The current stratum of the ntpd on this host"),
    gauge("symmetric_auth_delay", "ntp_authentication_delay", "Authentication delay", enabled=False),
    gauge(
        "system_jitter",
        "ntp_sys_jitter_ppm",
        "Combined system jitter (exponentially-weighted RMS average)",
    ),
    gauge(
        "system_peer_mode",
        "ntp_syspeer_mode_number",
        "Indicates the mode of the syspeer",
        index_of(NTP_MODES),
    ),
    gauge(
        "reftime",
        "ntp_reftime_seconds",
        "Time when the system clock was last set or corrected, in NTP timestamp format",
    ),
    gauge(
        "root_delay",
        "ntp_root_delay_seconds",
        "Total roundtrip delay to the primary reference clock",
        msec_to_sec,
    ),
    gauge(
        "root_dispersion",
        "ntp_root_dispersion_seconds",
        "Total dispersion to the primary reference clock",
        msec_to_sec,
    ),
    # sysstats
    counter("authentication_failed", "ntp_authentication_failures_total", "Number of failed authentications"),
    counter(
        "bad_length_or_format",
        "ntp_bad_length_or_format_total",
        "Number of packets received with bad length or malformatted",
    ),
    counter(
        "current_version",
        "ntp_same_version_total",
        "Number of packets received with the same version as this ntpd",
    ),
    counter(
        "declined",
        "ntp_declined_total",
        "Requests denied because of incorrect group, or because this ntpd is not ready",
    ),
    counter(
        "kod_responses",
        "ntp_kod_responses_total",
        'Number of times a "Kiss of Death" packet was sent by ntpd to a client requesting '
        "the client to slow down",
    ),
    counter(
        "older_version",
        "ntp_old_version_total",
        "Number of packets received with an older version than this ntpd",
    ),
    counter(
        "packets_received",
        "ntp_packets_received_total",
        "Number of packets received",
        enabled=False,
    ),
    counter(
        "processed_for_time",
        "ntp_packets_processed_total",
        "Number of packets received that were processed",
    ),
    counter("rate_limited", "ntp_packets_rate_limited_total", "Number of packets that were rate-limited"),
    counter(
        "restricted",
        "ntp_access_denied_packets_total",
        'Number of packets rejected with "access denied"',
    ),
    counter(
        "sysstats_reset",
        "ntp_sysstats_reset_seconds",
        "Time since system stats were last reset (in seconds)",
    ),
    counter("uptime", "ntp_uptime_seconds", "Seconds since ntpd was initialized"),
)

SYSPEER = (
    gauge(
        "delay",
        "ntp_syspeer_delay_seconds",
        "Total roundtrip delay between the local ntpd and the system peer",
        msec_to_sec,
    ),
    gauge(
        "dispersion",
        "ntp_syspeer_dispersion_seconds",
        "Total dispersion between the local ntpd and the system peer",
        msec_to_sec,
    ),
    gauge(
        "headway",
        "ntp_syspeer_headway_seconds",
        "The interval between the last packet sent or received and the next packet",
        usec_to_sec,
    ),
    gauge("hmode", "ntp_syspeer_hmode_number", "Host mode number"),
    gauge("hpoll", "ntp_syspeer_hpoll_interval_log2s", "The host poll interval in log2 seconds"),
    gauge("jitter", "ntp_syspeer_jitter_ppm", "The RMS differences relative to the lowest delay sample"),
    gauge("keyid", "ntp_syspeer_key_id_number", "The key ID of the system peer", enabled=False),
    gauge(
        "leap_indicator",
        "ntp_syspeer_leap_indicator_status",
        "Indicates whether or not there is a leap second upcoming on the system peer",
    ),
    gauge(
        "offset",
        "ntp_syspeer_offset_seconds",
        "The combined offset of server relative to this host",
        usec_to_sec,
    ),
    gauge("pmode", "ntp_syspeer_pmode_number", "Peer mode number"),
    gauge("ppoll", "ntp_syspeer_ppoll_interval_log2s", "The peer poll interval in log2 seconds"),
    gauge(
        "precision",
        "ntp_syspeer_precision_log2s",
        "The system peer's clock precision in log2 seconds",
    ),
    gauge("rec", "ntp_syspeer_rec_seconds", "Time when we last receieved an update from system peer"),
    gauge(
        "reftime",
        "ntp_syspeer_reftime_seconds",
        "Time when the system peer's clock was last set or corrected",
    ),
    gauge(
        "root_delay",
        "ntp_syspeer_root_delay_seconds",
        "Total roundtrip delay to the primary reference clock from the system peer",
        msec_to_sec,
    ),
    gauge(
        "root_dispersion",
        "ntp_syspeer_root_dispersion_seconds",
        "Total dispersion to the primary reference clock from the system peer",
        msec_to_sec,
    ),
    gauge(
        "stratum",
        "ntp_syspeer_stratum_number",
        "The stratum of the system peer that local ntpd is syncing with",
    ),
    counter("unreach", "ntp_syspeer_unreach_total", "Number of times the system peer was unreachable"),
    gauge(
        "xleave",
        "ntp_syspeer_xleave_seconds",
        "Represents the internal queuing, buffering and transmission delays in interleaved mode",
        usec_to_sec,
    ),
)

PEER = (
    gauge(
        "delay",
        "ntp_peer_delay_seconds",
        "Total roundtrip delay between the local ntpd and the peer",
        msec_to_sec,
    ),
    gauge("jitter", "ntp_peer_jitter_ppm", "The RMS differences relative to the lowest delay sample"),
    gauge(
        "offset",
        "ntp_peer_offset_seconds",
        "how far off local clock is from the peer's reported time",
        msec_to_sec,
    ),
    gauge("poll", "ntp_peer_poll_interval_seconds", "How often the peer is queried for the time"),
    gauge(
        "reach",
        "ntp_peer_last8_polls_failure_count",
        "Number of failed polls in the last 8 attempts to poll this peer",
        reach_failures,
    ),
    gauge("refid", "ntp_peer_refid_number", "Where the peer is getting its time", refid_to_number),
    gauge("t", "ntp_peer_connection_type", "The type of connection", index_of(NTP_PEER_TYPES)),
    gauge("st", "ntp_peer_stratum_number", "The stratum of the peer"),
    gauge("state", "ntp_peer_state", "The state of the peer", peer_state_to_number),
    gauge("when", "ntp_peer_last_query_seconds", "The last time when the server was queried for the time"),
)
