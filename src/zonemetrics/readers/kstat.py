"""Kernel statistics reader backed by ``kstat -j``."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from zonemetrics.errors import CommandError, ReaderError
from zonemetrics.model import Domain
from zonemetrics.readers.base import CommandRunner, run_command

logger = logging.getLogger(__name__)

DEFAULT_KSTAT = "/usr/bin/kstat"

# kstat exits 1 when no statistics matched the selector
NO_MATCH_STATUS = 1


@dataclass(frozen=True)
class KstatQuery:
    """Selector passed to kstat; unset fields match everything."""

    kstat_class: str | None = None
    module: str | None = None
    instance: int | None = None
    name: str | None = None

    def to_args(self) -> list[str]:
        args = []
        if self.kstat_class is not None:
            args += ["-c", self.kstat_class]
        if self.module is not None:
            args += ["-m", self.module]
        if self.instance is not None:
            args += ["-i", str(self.instance)]
        if self.name is not None:
            args += ["-n", self.name]
        return args


@dataclass(frozen=True)
class KstatRecord:
    """One named kstat with its statistics."""

    module: str
    instance: int
    name: str
    kstat_class: str
    data: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)

    @property
    def identity(self) -> str:
        return f"{self.module}:{self.instance}:{self.name}"


# Host-wide queries; collectors pick out the records for their target
KSTAT_QUERIES: dict[Domain, KstatQuery] = {
    Domain.ARCSTATS: KstatQuery(kstat_class="misc", module="zfs", instance=0, name="arcstats"),
    Domain.CPU_SYS: KstatQuery(kstat_class="misc", module="cpu", name="sys"),
    Domain.METASLAB_GROUP: KstatQuery(kstat_class="misc", module="zfs_metaslab_group"),
    Domain.NET_LANES: KstatQuery(kstat_class="net", instance=0),
    Domain.CPU_CAPS: KstatQuery(kstat_class="zone_caps", module="caps"),
    Domain.MEMORY_CAP: KstatQuery(kstat_class="zone_memory_cap", module="memory_cap"),
    Domain.NET_LINK: KstatQuery(kstat_class="net", module="link"),
    Domain.TCP: KstatQuery(kstat_class="mib2", module="tcp", name="tcp"),
    Domain.ZONE_MISC: KstatQuery(kstat_class="zone_misc", module="zones"),
    Domain.ZONE_VFS: KstatQuery(kstat_class="zone_vfs", module="zone_vfs"),
}


def parse_kstat_json(text: str) -> list[KstatRecord]:
    """Parse ``kstat -j`` output into records.

    An object lacking its module, instance, name or class is logged and
    skipped; the other objects are still returned.

    Raises:
        ReaderError: If the output is not a JSON list.
    """
    if not text.strip():
        return []

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ReaderError(f"invalid kstat JSON: {e}") from e

    if not isinstance(raw, list):
        raise ReaderError(f"expected a JSON list from kstat, got {type(raw).__name__}")

    records = []
    for item in raw:
        try:
            records.append(
                KstatRecord(
                    module=item["module"],
                    instance=int(item["instance"]),
                    name=item["name"],
                    kstat_class=item["class"],
                    data=dict(item.get("data") or {}),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid kstat object {item!r}: {e!r}")
    return records


class KstatReader:
    """Reads kstats by shelling out to the kstat utility."""

    def __init__(self, kstat_path: str = DEFAULT_KSTAT, run: CommandRunner = run_command):
        self.kstat_path = kstat_path
        self._run = run

    async def read(self, query: KstatQuery) -> list[KstatRecord]:
        """Return every kstat matching ``query``.

        Raises:
            CommandError: If kstat fails.
            ReaderError: If its output cannot be parsed.
        """
        argv = [self.kstat_path, "-j", *query.to_args()]
        result = await self._run(argv)
        if result.returncode == NO_MATCH_STATUS:
            return []
        if not result.ok:
            raise CommandError(argv, result.returncode, result.stderr)
        return parse_kstat_json(result.stdout)
