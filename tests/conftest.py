"""Shared fixtures: kstat records, zone tables and a canned command runner."""

from __future__ import annotations

from typing import Sequence

import pytest

from zonemetrics.model import Instance, RawSnapshot, ResolvedTarget
from zonemetrics.readers.base import CommandResult
from zonemetrics.readers.kstat import KstatRecord

LINK_ZONE_UUID = "61c64afd-6c69-44b3-94fc-bcd17234e268"
CAPPED_ZONE_UUID = "ddda3938-eca5-4a03-b7b2-2fe79b5b2dd1"


def kstat(kstat_class: str, module: str, instance: int, name: str, **data) -> KstatRecord:
    return KstatRecord(module=module, instance=instance, name=name, kstat_class=kstat_class, data=data)


def link(name: str, zonename: str, ipackets: int, obytes: int, opackets: int, rbytes: int):
    return kstat(
        "net",
        "link",
        0,
        name,
        ipackets64=ipackets,
        obytes64=obytes,
        opackets64=opackets,
        rbytes64=rbytes,
        zonename=zonename,
    )


def instance_target(uuid: str, zone_id: int, zonename: str | None = None) -> ResolvedTarget:
    return ResolvedTarget(uuid, Instance(uuid=uuid, zone_id=zone_id, zonename=zonename or uuid))


def snapshot(domain, *records) -> RawSnapshot:
    return RawSnapshot(domain, tuple(records), 1507171309.247)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRunner:
    """Command runner returning canned results keyed by program name."""

    def __init__(self, outputs: dict[str, CommandResult | str] | None = None):
        self.outputs = dict(outputs or {})
        self.calls: list[list[str]] = []

    def set(self, program: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.outputs[program] = CommandResult([program], returncode, stdout, stderr)

    async def __call__(self, argv: Sequence[str]) -> CommandResult:
        self.calls.append(list(argv))
        result = self.outputs[argv[0]]
        if isinstance(result, str):
            return CommandResult(list(argv), 0, result, "")
        return CommandResult(list(argv), result.returncode, result.stdout, result.stderr)


@pytest.fixture
def fake_run():
    return FakeRunner()


@pytest.fixture
def link_records():
    """Every link on a host: global zone links, two other zones and zone 26."""
    return [
        link("e1000g0", "global", 2575739, 314682218, 2672913, 458859817),
        link("e1000g1", "global", 3884732, 1699057793, 8852869, 410852672),
        link("external0", "global", 303128, 2607845, 40173, 51536376),
        link("sdc_underlay0", "global", 262151, 92608, 2189, 16242321),
        link("z24_net0", "f0b7e8d8-8f76-46db-b292-6d8124212ea1", 6348522, 204461637, 1696748, 360616500),
        link("z23_net0", "ed8b1ed3-cc47-46ff-92a9-e028132f7446", 7630876, 396762037, 3528626, 578287768),
        link("z26_net1", LINK_ZONE_UUID, 244580, 418432, 6215, 15497110),
        link("z26_net0", LINK_ZONE_UUID, 8942538, 386700874, 5029565, 551194436),
    ]


@pytest.fixture
def cpucap_record():
    return kstat(
        "zone_caps",
        "caps",
        5,
        "cpucaps_zone_5",
        value=400,
        baseline=321,
        effective=400,
        burst_limit_sec=0,
        bursting_sec=0,
        usage=1,
        nwait=0,
        below_sec=812427,
        above_sec=0,
        above_base_sec=0,
        maxusage=89,
        zonename=CAPPED_ZONE_UUID,
    )


@pytest.fixture
def zoneadm_output():
    return (
        "0:global:running:/::joyent:shared\n"
        f"5:{CAPPED_ZONE_UUID}:running:/zones/{CAPPED_ZONE_UUID}:{CAPPED_ZONE_UUID}:joyent-minimal:excl\n"
        f"26:{LINK_ZONE_UUID}:running:/zones/{LINK_ZONE_UUID}:{LINK_ZONE_UUID}:lx:excl\n"
        "-:stopped-zone:installed:/zones/stopped:4b6a9f5e-0000-4000-8000-000000000001:joyent:excl\n"
    )
