"""Tests for the ntpq-backed NTP reader.

The sample output below is a captured ``apeers`` listing and stat query
from a host synchronized to 198.58.110.84.
"""

from __future__ import annotations

from typing import Sequence

import pytest

from zonemetrics.errors import CommandError, ReaderError
from zonemetrics.readers.base import CommandResult
from zonemetrics.readers.ntp import (
    PEER_HEADER,
    PEER_SEPARATOR,
    NtpReader,
    parse_number,
    parse_peer_line,
    parse_peers,
    parse_stats,
    parse_timestamp,
)

APEERS = "\n".join([
    PEER_HEADER,
    PEER_SEPARATOR,
    " 0.smartos.pool. .POOL.   33554  16 p    -   16    0    0.000    0.000   0.000",
    "-45.127.113.2    c1bee641 33555   2 u  764 1024  377  143.432    0.884   5.595",
    "+198.206.133.14  73156f42 33556   3 u  686 1024  377   55.024   -1.116   2.947",
    "-66.241.101.63   a9fe0002 33558   2 u  919 1024  377   32.169    5.590   5.547",
    "-45.127.112.2    c1bee641 33559   2 u  111 1024  377  144.502    1.340   6.290",
    "*198.58.110.84   d8dafeca 33560   2 u  673 1024  377   44.348    0.176   2.328",
    "-96.226.123.196  808a8dac 33562   2 u  815 1024  377   41.150    7.272   8.577",
    "-199.223.248.101 d133a1ee 33566   2 u  279 1024  377   65.716    6.068   6.341",
    "+216.229.0.49    808a8dac 33567   2 u 1046 1024  377   53.543   -6.985   2.267",
]) + "\n"

STATS = "\n".join([
    "time since reset:       2767601",
    "receive buffers:        10",
    "free receive buffers:   9",
    "used receive buffers:   0",
    "low water refills:      1",
    "dropped packets:        0",
    "ignored packets:        0",
    "received packets:       14767",
    "packets sent:           37664",
    "packet send failures:   0",
    "input wakeups:          42503",
    "useful input wakeups:   42499",
    "associd=0 status=0628 leap_none, sync_ntp, 2 events, no_sys_peer,",
    "pll offset:            0",
    "pll frequency:         0.782669",
    "maximum error:         299.354",
    "estimated error:       2.849",
    "kernel status:         pll",
    "pll time constant:     6",
    "precision:             0.001",
    "frequency tolerance:   512",
    "pps frequency:         0",
    "pps stability:         512",
    "pps jitter:            0.200",
    "calibration interval   4",
    "calibration cycles:    0",
    "jitter exceeded:       0",
    "stability exceeded:    0",
    "calibration errors:    0",
    "enabled:              0x1",
    "addresses:            14",
    "peak addresses:       14",
    "maximum addresses:    13797",
    "reclaim above count:  600",
    "reclaim older than:   64",
    "kilobytes:            1",
    "maximum kilobytes:    1024",
    "associd=0 status=0628 leap_none, sync_ntp, 2 events, no_sys_peer,",
    "system peer:        216.229.0.49:123",
    "system peer mode:   client",
    "leap indicator:     00",
    "stratum:            3",
    "log2 precision:     -22",
    "root delay:         67.416",
    "root dispersion:    46.952",
    "reference ID:       216.229.0.49",
    "reference time:     dd9e1c1e.67c8d279  Fri, Oct 27 2017 20:57:02.405",
    "system jitter:      3.818756",
    "clock jitter:       2.850",
    "clock wander:       0.004",
    "broadcast delay:    -50.000",
    "symm. auth. delay:  0.000",
    "uptime:                 2767601",
    "sysstats reset:         2767601",
    "packets received:       14771",
    "current version:        14228",
    "older version:          0",
    "bad length or format:   0",
    "authentication failed:  0",
    "declined:               0",
    "restricted:             11",
    "rate limited:           0",
    "KoD responses:          0",
    "processed for time:     14214",
    "associd=33560 status=141a reach, sel_candidate, 1 event, sys_peer,",
    "srcadr=198.58.110.84, srcport=123, dstadr=172.26.6.5, dstport=123,",
    "leap=00, stratum=2, precision=-23, rootdelay=37.323, rootdisp=18.600,",
    "refid=216.218.254.202,",
    "reftime=dd9e1d25.73e5ec1d  Fri, Oct 27 2017 21:01:25.452,",
    "rec=dd9e1d7b.65ab93c9  Fri, Oct 27 2017 21:02:51.397, reach=377,",
    "unreach=0, hmode=3, pmode=4, hpoll=10, ppoll=10, headway=0, flash=00 ok,",
    "keyid=0, offset=4.510, delay=44.902, dispersion=18.844, jitter=4.532,",
    "xleave=0.044,",
    "filtdelay=    45.16   44.90   44.35   45.42   44.26   44.89   45.23   44.30,",
    "filtoffset=    7.21    4.51    0.18   -2.80   -1.73    2.06    1.56    1.26,",
    "filtdisp=      0.00   15.47   31.02   46.50   62.42   77.82   93.68  109.73",
]) + "\n"

STATS_ARGS = [
    "-n", "-c", "iostats", "-c", "kerninfo", "-c", "monstats",
    "-c", "sysinfo", "-c", "sysstats",
]

REFUSED = "ntpq: read: Connection refused\n"


class ScriptedNtpq:
    """ntpq stand-in answering by argument list."""

    def __init__(self, responses: dict[tuple[str, ...], CommandResult]):
        self.responses = responses
        self.calls: list[list[str]] = []

    async def __call__(self, argv: Sequence[str]) -> CommandResult:
        self.calls.append(list(argv))
        return self.responses[tuple(argv[1:])]


def ok(stdout: str) -> CommandResult:
    return CommandResult(["ntpq"], 0, stdout, "")


@pytest.fixture
def ntpq():
    return ScriptedNtpq({
        ("-n", "-c", "apeers"): ok(APEERS),
        (*STATS_ARGS, "-c", "readvar 33560"): ok(STATS),
    })


# =============================================================================
# Value Parsing Tests
# =============================================================================


class TestParseNumber:
    def test_integers_and_floats(self):
        """Decimal integers MUST stay ints and fractions MUST become floats."""
        assert parse_number("14214") == 14214
        assert isinstance(parse_number("14214"), int)
        assert parse_number("-22") == -22
        assert parse_number("-50.000") == -50.0

    def test_prefixed_integer(self):
        """Hex-prefixed integers MUST be read with their base."""
        assert parse_number("0x1") == 1

    def test_garbage_rejected(self):
        """Non-numeric text MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="not a number"):
            parse_number("pll")


class TestParseTimestamp:
    def test_hex_halves_joined(self):
        """Seconds and fraction MUST each be read as hex and joined by a point."""
        assert parse_timestamp("dd9e1c1e.67c8d279") == float("3718126622.1741214329")

    def test_invalid_timestamp(self):
        """A value without two hex halves MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="invalid NTP timestamp"):
            parse_timestamp("dd9e1c1e")


# =============================================================================
# Peer Listing Tests
# =============================================================================


class TestParsePeerLine:
    def test_pruned_peer(self):
        """A peer line MUST map the tally code to a state and reach from octal."""
        peer = parse_peer_line(
            "-45.127.113.2    c1bee641 33555   2 u  764 1024  377  143.432    0.884   5.595"
        )

        assert peer == {
            "state": "pruned",
            "remote": "45.127.113.2",
            "refid": "c1bee641",
            "assid": 33555,
            "st": 2,
            "t": "u",
            "when": 764,
            "poll": 1024,
            "reach": 255,
            "delay": 143.432,
            "offset": 0.884,
            "jitter": 5.595,
        }

    def test_never_polled_peer(self):
        """A '-' in the when column MUST become -1."""
        peer = parse_peer_line(
            " 0.smartos.pool. .POOL.   33554  16 p    -   16    0    0.000    0.000   0.000"
        )

        assert peer["state"] == "invalid"
        assert peer["when"] == -1
        assert peer["reach"] == 0

    @pytest.mark.parametrize(
        "when, seconds",
        [("12m", 720), ("2h", 7200), ("3d", 259200)],
    )
    def test_when_units(self, when, seconds):
        """Minute, hour and day suffixes on when MUST be expanded to seconds."""
        line = f"+216.229.0.49    808a8dac 33567   2 u {when:>4} 1024  377   53.543   -6.985   2.267"
        assert parse_peer_line(line)["when"] == seconds

    def test_unknown_tally_code(self):
        """An unrecognized tally code MUST map to the unknown state."""
        line = "?216.229.0.49    808a8dac 33567   2 u 1046 1024  377   53.543   -6.985   2.267"
        assert parse_peer_line(line)["state"] == "unknown"

    def test_unmatched_line(self):
        """A line not in peers format MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="does not match"):
            parse_peer_line("look at me, I am garbage ntp")


class TestParsePeers:
    def test_peers_ordered_with_syspeer(self):
        """Peers MUST be ordered by assid and the '*' peer reported as syspeer."""
        peers, syspeer = parse_peers(APEERS)

        assert [p["assid"] for p in peers] == [
            33554, 33555, 33556, 33558, 33559, 33560, 33562, 33566, 33567,
        ]
        assert syspeer == {"assid": 33560, "remote": "198.58.110.84"}
        assert [p["state"] for p in peers].count("candidate") == 2

    def test_no_syspeer(self):
        """Without a '*' peer the syspeer MUST be None."""
        text = APEERS.replace("*198.58.110.84", "+198.58.110.84")
        _, syspeer = parse_peers(text)
        assert syspeer is None

    def test_garbage_header(self):
        """Output not starting with the peers header MUST raise ReaderError."""
        with pytest.raises(ReaderError, match=r"Unexpected header line\[0\]"):
            parse_peers("look at me, I am garbage ntp")

    def test_missing_separator(self):
        """A header without its separator line MUST raise ReaderError."""
        with pytest.raises(ReaderError, match=r"Unexpected header line\[1\]"):
            parse_peers(PEER_HEADER + "\n")

    def test_duplicate_peer(self):
        """The same assid listed twice MUST raise ReaderError."""
        line = "-45.127.113.2    c1bee641 33555   2 u  764 1024  377  143.432    0.884   5.595"
        with pytest.raises(ReaderError, match="duplicate peer"):
            parse_peers("\n".join([PEER_HEADER, PEER_SEPARATOR, line, line]))

    def test_two_syspeers(self):
        """More than one '*' peer MUST raise ReaderError."""
        text = APEERS.replace("+216.229.0.49", "*216.229.0.49")
        with pytest.raises(ReaderError, match="only one system peer"):
            parse_peers(text)


# =============================================================================
# Stat Output Tests
# =============================================================================


class TestParseStats:
    def test_system_properties(self):
        """associd=0 properties MUST land in the system map with raw keys."""
        syspeer = {"assid": 33560, "remote": "198.58.110.84"}
        system = parse_stats(STATS, syspeer)

        assert system["time_since_reset"] == 2767601
        assert system["calibration_interval"] == 4
        assert system["enabled"] == 1
        assert system["leap_indicator"] == 0
        assert system["log2_precision"] == -22
        assert system["broadcast_delay"] == -50.0
        assert system["symmetric_auth_delay"] == 0.0
        assert system["kod_responses"] == 0
        assert system["processed_for_time"] == 14214
        assert system["kernel_status"] == "pll"
        assert system["system_peer_mode"] == "client"
        assert system["reftime"] == float("3718126622.1741214329")
        assert "reference_id" not in system
        assert "system_peer" not in system

    def test_syspeer_variables(self):
        """readvar variables MUST be added to the syspeer, skipping addresses and filters."""
        syspeer = {"assid": 33560, "remote": "198.58.110.84"}
        parse_stats(STATS, syspeer)

        assert syspeer["remote"] == "198.58.110.84"
        assert syspeer["leap_indicator"] == 0
        assert syspeer["stratum"] == 2
        assert syspeer["precision"] == -23
        assert syspeer["root_delay"] == 37.323
        assert syspeer["root_dispersion"] == 18.6
        assert syspeer["reach"] == 377
        assert syspeer["offset"] == 4.51
        assert syspeer["xleave"] == 0.044
        assert syspeer["reftime"] == parse_timestamp("dd9e1d25.73e5ec1d")
        assert syspeer["rec"] == parse_timestamp("dd9e1d7b.65ab93c9")
        for skipped in ("srcadr", "srcport", "dstadr", "dstport", "refid", "filtdelay"):
            assert skipped not in syspeer

    def test_unknown_assid(self):
        """Variables for an association other than the syspeer MUST raise ReaderError."""
        text = "associd=41000 status=141a reach\nstratum=2,\n"
        with pytest.raises(ReaderError, match="unexpected assid: 41000"):
            parse_stats(text, {"assid": 33560, "remote": "198.58.110.84"})

    def test_unknown_property(self):
        """A property label that is not known MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="Unknown property"):
            parse_stats("flux capacitance:  1.21\n", None)

    def test_duplicate_key(self):
        """A property reported twice for the same association MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="already exists"):
            parse_stats("stratum:  3\nstratum:  3\n", None)

    def test_leap_indicator_range(self):
        """A leap indicator outside 0-3 MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="leap indicator"):
            parse_stats("leap indicator:     12\n", None)

    def test_unexpected_line(self):
        """A line matching no known form MUST raise ReaderError."""
        with pytest.raises(ReaderError, match="unexpected output line"):
            parse_stats("look at me, I am garbage ntp\n", None)


# =============================================================================
# Reader Tests
# =============================================================================


class TestNtpReader:
    @pytest.mark.asyncio
    async def test_read_available(self, ntpq):
        """A synchronized ntpd MUST yield peers, system and syspeer data."""
        status = await NtpReader("ntpq", run=ntpq).read()

        assert status.available is True
        assert len(status.peers) == 9
        assert status.syspeer["assid"] == 33560
        assert status.system["processed_for_time"] == 14214

    @pytest.mark.asyncio
    async def test_readvar_for_syspeer(self, ntpq):
        """The stat query MUST ask for the variables of the system peer."""
        await NtpReader("ntpq", run=ntpq).read()

        assert ntpq.calls == [
            ["ntpq", "-n", "-c", "apeers"],
            ["ntpq", *STATS_ARGS, "-c", "readvar 33560"],
        ]

    @pytest.mark.asyncio
    async def test_no_readvar_without_syspeer(self):
        """Without a system peer the stat query MUST omit readvar."""
        stats = STATS.split("associd=33560")[0]
        ntpq = ScriptedNtpq({
            ("-n", "-c", "apeers"): ok(APEERS.replace("*198.58.110.84", "+198.58.110.84")),
            tuple(STATS_ARGS): ok(stats),
        })

        status = await NtpReader("ntpq", run=ntpq).read()

        assert status.available is True
        assert status.syspeer is None

    @pytest.mark.asyncio
    async def test_connection_refused(self, fake_run):
        """ntpd refusing queries MUST be reported as unavailable, not as an error."""
        fake_run.set("ntpq", returncode=1, stderr=REFUSED)

        status = await NtpReader("ntpq", run=fake_run).read()

        assert status.available is False
        assert status.peers == []
        assert status.syspeer is None

    @pytest.mark.asyncio
    async def test_ntpq_failure(self, fake_run):
        """ntpq failing for another reason MUST raise CommandError."""
        fake_run.set("ntpq", returncode=127, stderr="ntpq: not found")

        with pytest.raises(CommandError) as exc_info:
            await NtpReader("ntpq", run=fake_run).read()
        assert exc_info.value.returncode == 127

    @pytest.mark.asyncio
    async def test_unexpected_stderr(self, fake_run):
        """Successful ntpq output with stderr text MUST raise ReaderError."""
        fake_run.set("ntpq", stdout=APEERS, stderr="***Server reports a format error")

        with pytest.raises(ReaderError, match="Unexpected stderr"):
            await NtpReader("ntpq", run=fake_run).read()

    @pytest.mark.asyncio
    async def test_garbage_output(self, fake_run):
        """Garbage from ntpq MUST fail on the peers header."""
        fake_run.set("ntpq", stdout="look at me, I am garbage ntp")

        with pytest.raises(ReaderError, match=r"Unexpected header line\[0\]"):
            await NtpReader("ntpq", run=fake_run).read()

    @pytest.mark.asyncio
    async def test_no_peers(self):
        """An association list without peers MUST raise ReaderError."""
        ntpq = ScriptedNtpq({
            ("-n", "-c", "apeers"): ok(f"{PEER_HEADER}\n{PEER_SEPARATOR}\n"),
            tuple(STATS_ARGS): ok("processed for time:     14214\n"),
        })

        with pytest.raises(ReaderError, match="Unable to find NTP peers"):
            await NtpReader("ntpq", run=ntpq).read()

    @pytest.mark.asyncio
    async def test_incomplete_stats(self):
        """Stat output missing processed-for-time MUST raise ReaderError."""
        ntpq = ScriptedNtpq({
            ("-n", "-c", "apeers"): ok(APEERS),
            (*STATS_ARGS, "-c", "readvar 33560"): ok("uptime:  2767601\n"),
        })

        with pytest.raises(ReaderError, match="Failed to get all NTP data"):
            await NtpReader("ntpq", run=ntpq).read()
