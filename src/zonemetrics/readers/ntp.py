"""ntpd status reader built on ntpq.

Two ntpq calls are made. ``apeers`` lists associations (and identifies the
system peer); a second call gathers iostats, kerninfo, monstats, sysinfo,
sysstats and, when there is a system peer, its variables via ``readvar``.

When ntpd is not running ntpq reports "Connection refused"; that is a
legitimate state returned as an unavailable status, not an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from zonemetrics.errors import CommandError, ReaderError
from zonemetrics.readers.base import CommandResult, CommandRunner, run_command

logger = logging.getLogger(__name__)

DEFAULT_NTPQ = "/usr/sbin/ntpq"

PEER_HEADER = "     remote       refid   assid  st t when poll reach   delay   offset  jitter"
PEER_SEPARATOR = "=" * 78

PEER_PATTERN = re.compile(
    r"^(.)([0-9a-zA-Z._\-]+)\s+"  # flash + remote
    r"([a-zA-Z0-9.]+)\s+"  # refid
    r"([0-9]+)\s+"  # assid
    r"([0-9]+)\s+"  # st
    r"([a-zA-Z])\s+"  # t
    r"([0-9\-]+[mhd]?)\s+"  # when
    r"([0-9]+)\s+"  # poll
    r"([0-9]+)\s+"  # reach (octal)
    r"([0-9.\-]+)\s+"  # delay
    r"([0-9.\-]+)\s+"  # offset
    r"([0-9.\-]+)"  # jitter
)

# Tally codes from the first column of the peers listing
FLASH_STATES = {
    " ": "invalid",
    "x": "falseticker",
    ".": "overflow",
    "-": "pruned",
    "+": "candidate",
    "#": "backup",
    "*": "syspeer",
    "o": "pps",
}

WHEN_UNITS = {"m": 60, "h": 60 * 60, "d": 60 * 60 * 24}

# ntpq labels ("key: value") and variable names ("key=value") to raw keys
NUMBER_PROPERTIES = {
    "addresses": "addresses",
    "authentication failed": "authentication_failed",
    "bad length or format": "bad_length_or_format",
    "broadcast delay": "broadcast_delay",
    "calibration cycles": "calibration_cycles",
    "calibration errors": "calibration_errors",
    "calibration interval": "calibration_interval",
    "calls to transmit": "calls_to_transmit",
    "clock jitter": "clock_jitter",
    "clock wander": "clock_wander",
    "current version": "current_version",
    "declined": "declined",
    "delay": "delay",
    "dispersion": "dispersion",
    "dropped packets": "dropped_packets",
    "enabled": "enabled",
    "estimated error": "estimated_error",
    "free receive buffers": "free_receive_buffers",
    "frequency tolerance": "frequency_tolerance",
    "headway": "headway",
    "hmode": "hmode",
    "hpoll": "hpoll",
    "ignored packets": "ignored_packets",
    "input wakeups": "input_wakeups",
    "jitter exceeded": "jitter_exceeded",
    "jitter": "jitter",
    "keyid": "keyid",
    "kilobytes": "kilobytes",
    "KoD responses": "kod_responses",
    "leap": "leap_indicator",
    "log2 precision": "log2_precision",
    "low water refills": "low_water_refills",
    "maximum addresses": "maximum_addresses",
    "maximum error": "maximum_error",
    "maximum kilobytes": "maximum_kilobytes",
    "offset": "offset",
    "older version": "older_version",
    "packet send failures": "packet_send_failures",
    "packets received": "packets_received",
    "packets sent": "packets_sent",
    "peak addresses": "peak_addresses",
    "pll frequency": "pll_frequency",
    "pll offset": "pll_offset",
    "pll time constant": "pll_time_constant",
    "pmode": "pmode",
    "ppoll": "ppoll",
    "pps frequency": "pps_frequency",
    "pps jitter": "pps_jitter",
    "pps stability": "pps_stability",
    "precision": "precision",
    "processed for time": "processed_for_time",
    "rate limited": "rate_limited",
    "receive buffers": "receive_buffers",
    "received packets": "received_packets",
    "reclaim above count": "reclaim_above_count",
    "reclaim older than": "reclaim_older_than",
    "restricted": "restricted",
    "root delay": "root_delay",
    "root dispersion": "root_dispersion",
    "rootdelay": "root_delay",
    "rootdisp": "root_dispersion",
    "stability exceeded": "stability_exceeded",
    "stratum": "stratum",
    "symm. auth. delay": "symmetric_auth_delay",
    "sysstats reset": "sysstats_reset",
    "system jitter": "system_jitter",
    "time since reset": "time_since_reset",
    "timer overruns": "timer_overruns",
    "unreach": "unreach",
    "uptime": "uptime",
    "used receive buffers": "used_receive_buffers",
    "useful input wakeups": "useful_input_wakeups",
    "xleave": "xleave",
}

IGNORED_PROPERTIES = {"reference ID", "system peer"}

# readvar variables that are addresses rather than numbers
IGNORED_VARIABLES = {"remote", "refid", "dstadr", "srcadr", "dstport", "srcport"}

TIMESTAMP_VARIABLES = {"reftime", "rec"}

_ASSOCID_LINE = re.compile(r"^associd=([0-9]+)\s")
_PROPERTY_LINE = re.compile(r"^(.*):\s+(.*)$")
_CALIBRATION_LINE = re.compile(r"^calibration interval\s+([0-9]+)\s*$")
_VARIABLE = re.compile(r"([a-z_]+=[\-a-f0-9.]+)")
_TIMESTAMP = re.compile(r"^([a-f0-9]+)\.([a-f0-9]+)$")


@dataclass
class NtpStatus:
    """Parsed ntpd state.

    ``peers`` is ordered by association id. ``syspeer`` is None when ntpd
    has not selected a system peer.
    """

    available: bool
    system: dict[str, Any] = field(default_factory=dict)
    syspeer: dict[str, Any] | None = None
    peers: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def unavailable(cls) -> NtpStatus:
        return cls(available=False)


def parse_number(text: str) -> int | float:
    """Parse an ntpq number: decimal int, prefixed int (0x1) or float."""
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(text, 0)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError as e:
        raise ReaderError(f"not a number: {text!r}") from e


def parse_timestamp(text: str) -> float:
    """Convert an NTP hex timestamp (``dd9e1c1e.67c8d279``) to a number.

    Seconds and fraction are each read as hex integers and joined with a
    decimal point.
    """
    match = _TIMESTAMP.match(text)
    if match is None:
        raise ReaderError(f"invalid NTP timestamp: {text!r}")
    return float(f"{int(match.group(1), 16)}.{int(match.group(2), 16)}")


def _parse_when(text: str) -> int:
    if text == "-":
        return -1
    unit = WHEN_UNITS.get(text[-1])
    if unit is not None:
        return int(text[:-1]) * unit
    return int(text)


def parse_peer_line(line: str) -> dict[str, Any]:
    """Parse one association line of ``ntpq -n -c apeers``."""
    match = PEER_PATTERN.match(line)
    if match is None:
        raise ReaderError(f"peer line does not match expected format: {line!r}")

    (flash, remote, refid, assid, st, t, when, poll, reach, delay, offset, jitter) = match.groups()
    try:
        return {
            "state": FLASH_STATES.get(flash, "unknown"),
            "remote": remote,
            "refid": refid,
            "assid": int(assid),
            "st": int(st),
            "t": t,
            "when": _parse_when(when),
            "poll": int(poll),
            "reach": int(reach, 8),
            "delay": parse_number(delay),
            "offset": parse_number(offset),
            "jitter": parse_number(jitter),
        }
    except ValueError as e:
        raise ReaderError(f"invalid peer line {line!r}: {e}") from e


def parse_peers(text: str) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
    """Parse ``ntpq -n -c apeers`` output.

    Returns:
        Peers ordered by association id, and the system peer stub
        (assid and remote) if one is selected.

    Raises:
        ReaderError: On unexpected headers, duplicate peers or more than
            one system peer.
    """
    lines = text.rstrip().split("\n")
    if lines[0] != PEER_HEADER:
        raise ReaderError(f"Unexpected header line[0]: {lines[0]}")
    if len(lines) < 2 or lines[1] != PEER_SEPARATOR:
        raise ReaderError(f"Unexpected header line[1]: {lines[1] if len(lines) > 1 else ''}")

    peers: dict[int, dict[str, Any]] = {}
    syspeer = None
    for line in lines[2:]:
        peer = parse_peer_line(line)
        if peer["assid"] in peers:
            raise ReaderError(f"unexpected duplicate peer: {peer['assid']}")
        peers[peer["assid"]] = peer

        if peer["state"] == "syspeer":
            if syspeer is not None:
                raise ReaderError("expected only one system peer")
            syspeer = {"assid": peer["assid"], "remote": peer["remote"]}

    return [peers[assid] for assid in sorted(peers)], syspeer


class _StatParser:
    """Accumulates system and system peer properties from stat output."""

    def __init__(self, syspeer: dict[str, Any] | None):
        self.system: dict[str, Any] = {}
        self.syspeer = syspeer
        self._assid = 0

    def _add(self, key: str, value: Any) -> None:
        if self._assid == 0:
            target = self.system
        elif self.syspeer is not None and self._assid == self.syspeer["assid"]:
            target = self.syspeer
        else:
            raise ReaderError(f"unexpected assid: {self._assid}")

        if key in target:
            raise ReaderError(f"key ({key}) unexpectedly already exists")
        target[key] = value

    def feed(self, line: str) -> None:
        match = _ASSOCID_LINE.match(line)
        if match:
            self._assid = int(match.group(1))
            return

        match = _PROPERTY_LINE.match(line)
        if match:
            self._add_property(match.group(1), match.group(2))
            return

        match = _CALIBRATION_LINE.match(line)
        if match:
            self._add("calibration_interval", int(match.group(1)))
            return

        variables = _VARIABLE.findall(line)
        if variables:
            for chunk in variables:
                key, value = chunk.split("=", 1)
                if key in IGNORED_VARIABLES:
                    continue
                key = NUMBER_PROPERTIES.get(key, key)
                if key in TIMESTAMP_VARIABLES:
                    self._add(key, parse_timestamp(value))
                else:
                    self._add(key, parse_number(value))
            return

        # filter registers (filtdelay=, filtoffset=, filtdisp=) are not collected
        if line.startswith("filt"):
            return

        raise ReaderError(f"unexpected output line from ntpq: {line!r}")

    def _add_property(self, key: str, value: str) -> None:
        if key in NUMBER_PROPERTIES:
            self._add(NUMBER_PROPERTIES[key], parse_number(value))
        elif key == "leap indicator":
            try:
                leap = int(value, 2)
            except ValueError as e:
                raise ReaderError(f"invalid leap indicator: {value!r}") from e
            if not 0 <= leap <= 3:
                raise ReaderError(f"expected leap indicator 0-3, got {leap}")
            self._add("leap_indicator", leap)
        elif key == "kernel status":
            self._add("kernel_status", value)
        elif key == "system peer mode":
            self._add("system_peer_mode", value)
        elif key == "reference time":
            self._add("reftime", parse_timestamp(value.split(" ")[0]))
        elif key not in IGNORED_PROPERTIES:
            raise ReaderError(f"Unknown property: {key}={value}")


def parse_stats(text: str, syspeer: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the combined stat query output.

    System properties are returned; system peer variables are added to
    ``syspeer`` in place.
    """
    parser = _StatParser(syspeer)
    for line in text.rstrip().split("\n"):
        if line:
            parser.feed(line)
    return parser.system


def _is_refused(result: CommandResult) -> bool:
    return "Connection refused" in result.stderr


class NtpReader:
    """Query ntpd through ntpq."""

    def __init__(self, ntpq_path: str = DEFAULT_NTPQ, run: CommandRunner = run_command):
        self.ntpq_path = ntpq_path
        self._run = run

    async def _ntpq(self, args: list[str]) -> CommandResult | None:
        argv = [self.ntpq_path, *args]
        result = await self._run(argv)
        if _is_refused(result):
            logger.info("ntpd is not accepting queries, reporting it unavailable")
            return None
        if not result.ok:
            raise CommandError(argv, result.returncode, result.stderr)
        if result.stderr:
            raise ReaderError(f"Unexpected stderr: {result.stderr.strip()}")
        return result

    async def read(self) -> NtpStatus:
        """Collect ntpd status.

        Returns:
            NtpStatus; ``available`` is False when ntpd refused the query.

        Raises:
            CommandError: If ntpq cannot be run.
            ReaderError: If ntpq output is incomplete or unrecognized.
        """
        result = await self._ntpq(["-n", "-c", "apeers"])
        if result is None:
            return NtpStatus.unavailable()
        peers, syspeer = parse_peers(result.stdout)

        args = ["-n", "-c", "iostats", "-c", "kerninfo", "-c", "monstats", "-c", "sysinfo", "-c", "sysstats"]
        if syspeer is not None:
            args += ["-c", f"readvar {syspeer['assid']}"]

        result = await self._ntpq(args)
        if result is None:
            return NtpStatus.unavailable()
        system = parse_stats(result.stdout, syspeer)

        if not peers:
            raise ReaderError("Unable to find NTP peers.")
        if "processed_for_time" not in system:
            raise ReaderError("Failed to get all NTP data")

        return NtpStatus(available=True, system=system, syspeer=syspeer, peers=peers)
