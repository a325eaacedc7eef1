"""Live instance registry backed by ``zoneadm list -p``.

Maps instance uuids to the running zones the collectors filter on. The
map is replaced wholesale on every refresh so readers never observe a
half-updated registry.
"""

from __future__ import annotations

import logging

from zonemetrics.errors import ReaderError
from zonemetrics.model import Instance
from zonemetrics.readers.base import CommandRunner, check_output, run_command

logger = logging.getLogger(__name__)

DEFAULT_ZONEADM = "/usr/sbin/zoneadm"

# zoneid:zonename:state:zonepath:uuid:brand:ip-type
_MIN_FIELDS = 5


def parse_zoneadm(text: str) -> dict[str, Instance]:
    """Parse ``zoneadm list -p`` output into a uuid -> Instance map.

    The global zone and lines without a numeric zone id (configured but not
    running zones report ``-``) are skipped. Zones without a uuid are keyed
    by zone name.

    Raises:
        ReaderError: If a line has too few fields.
    """
    instances: dict[str, Instance] = {}
    for line in text.splitlines():
        if not line.strip():
            continue

        fields = line.split(":")
        if len(fields) < _MIN_FIELDS:
            raise ReaderError(f"unexpected zoneadm line: {line!r}")

        zone_id, zonename = fields[0], fields[1]
        if not zone_id.isdigit() or int(zone_id) == 0:
            continue

        uuid = fields[4] or zonename
        brand = fields[5] if len(fields) > 5 else ""
        instances[uuid] = Instance(uuid=uuid, zone_id=int(zone_id), zonename=zonename, brand=brand)
    return instances


class InstanceRegistry:
    """Resolves target ids to running zones."""

    def __init__(self, zoneadm_path: str = DEFAULT_ZONEADM, run: CommandRunner = run_command):
        self.zoneadm_path = zoneadm_path
        self._run = run
        self._instances: dict[str, Instance] = {}

    @property
    def instances(self) -> list[Instance]:
        """Known instances ordered by zone id."""
        return sorted(self._instances.values(), key=lambda i: i.zone_id)

    def __len__(self) -> int:
        return len(self._instances)

    def resolve(self, target_id: str) -> Instance | None:
        return self._instances.get(target_id)

    def replace(self, instances: dict[str, Instance]) -> None:
        """Swap in a new uuid -> Instance map."""
        self._instances = dict(instances)

    async def refresh(self) -> int:
        """Re-read the running zones and replace the map.

        Returns:
            Number of instances now known.

        Raises:
            CommandError: If zoneadm fails.
            ReaderError: If its output cannot be parsed.
        """
        output = await check_output([self.zoneadm_path, "list", "-p"], self._run)
        instances = parse_zoneadm(output)

        added = instances.keys() - self._instances.keys()
        removed = self._instances.keys() - instances.keys()
        self.replace(instances)

        logger.info(
            f"Instance registry refreshed: {len(instances)} zones "
            f"({len(added)} added, {len(removed)} removed)"
        )
        return len(instances)
