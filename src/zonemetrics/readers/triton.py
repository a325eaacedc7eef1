"""Metadata and metrics endpoints of core (Triton service) zones.

A zone is a core zone when the admin user owns it and it carries a
``smartdc_role`` tag. Core zones serve their own metrics on the admin
network, on the ports listed in the ``metricPorts`` customer metadata key
(comma separated, e.g. ``8881,8882``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from zonemetrics.errors import ReaderError
from zonemetrics.readers.base import CommandRunner, check_output, run_command

logger = logging.getLogger(__name__)

DEFAULT_VMADM = "/usr/sbin/vmadm"
DEFAULT_SDC_CONFIG = "/lib/sdc/config.sh"
DEFAULT_HTTP_TIMEOUT = 5.0

ADMIN_NIC_TAG = "admin"


@dataclass(frozen=True)
class CoreZoneInfo:
    """What the agent needs to proxy a zone's own metrics."""

    is_core: bool
    admin_ip: str | None = None
    metric_ports: tuple[int, ...] = ()

    @property
    def has_endpoints(self) -> bool:
        return self.is_core and bool(self.admin_ip) and bool(self.metric_ports)


def parse_metric_ports(text: str) -> tuple[int, ...]:
    """Parse the comma separated ``metricPorts`` value.

    Raises:
        ReaderError: If any entry is not a port number.
    """
    ports = []
    for item in text.split(","):
        try:
            port = int(item)
        except ValueError:
            raise ReaderError(f"invalid metric ports: {text!r}") from None
        if not 0 < port < 65536:
            raise ReaderError(f"invalid metric ports: {text!r}")
        ports.append(port)
    return tuple(ports)


def admin_ip(vm: dict[str, Any]) -> str | None:
    for nic in vm.get("nics") or []:
        if nic.get("nic_tag") == ADMIN_NIC_TAG and nic.get("ip"):
            return nic["ip"]
    return None


def parse_vm(vm: dict[str, Any], admin_uuid: str) -> CoreZoneInfo:
    """Classify a ``vmadm get`` object.

    Raises:
        ReaderError: If a core zone has malformed metricPorts.
    """
    tags = vm.get("tags") or {}
    if not tags.get("smartdc_role") or vm.get("owner_uuid") != admin_uuid:
        return CoreZoneInfo(is_core=False)

    ports_text = (vm.get("customer_metadata") or {}).get("metricPorts")
    ports = parse_metric_ports(ports_text) if ports_text else ()
    return CoreZoneInfo(is_core=True, admin_ip=admin_ip(vm), metric_ports=ports)


def _parse_json_object(text: str, source: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ReaderError(f"invalid JSON from {source}: {e}") from e
    if not isinstance(data, dict):
        raise ReaderError(f"expected a JSON object from {source}")
    return data


class TritonReader:
    """Looks up core zones and fetches their metrics endpoints."""

    def __init__(
        self,
        vmadm: str = DEFAULT_VMADM,
        sdc_config: str = DEFAULT_SDC_CONFIG,
        admin_uuid: str | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        run: CommandRunner = run_command,
    ):
        """Initialize the reader.

        Args:
            vmadm: Path to vmadm.
            sdc_config: Path to the headnode config script; read for
                        ``ufds_admin_uuid`` when ``admin_uuid`` is not given.
            admin_uuid: UUID of the admin user owning core zones.
            timeout: Seconds allowed for each metrics request.
            run: Command runner.
        """
        self.vmadm = vmadm
        self.sdc_config = sdc_config
        self.timeout = timeout
        self._admin_uuid = admin_uuid or None
        self._run = run

    async def admin_uuid(self) -> str:
        """UUID of the admin user, read once from the config script."""
        if self._admin_uuid is None:
            text = await check_output(["/bin/bash", self.sdc_config, "-json"], self._run)
            config = _parse_json_object(text, self.sdc_config)
            uuid = config.get("ufds_admin_uuid")
            if not uuid:
                raise ReaderError(f"{self.sdc_config} has no ufds_admin_uuid")
            self._admin_uuid = uuid
        return self._admin_uuid

    async def zone_info(self, uuid: str) -> CoreZoneInfo:
        """Classify a zone and find its metrics endpoints.

        Raises:
            CommandError: If vmadm or the config script fails.
            ReaderError: If their output cannot be interpreted.
        """
        text = await check_output([self.vmadm, "get", uuid], self._run)
        vm = _parse_json_object(text, f"vmadm get {uuid}")
        return parse_vm(vm, await self.admin_uuid())

    async def fetch_metrics(self, info: CoreZoneInfo) -> list[str]:
        """Fetch every metrics endpoint of a core zone.

        Raises:
            ReaderError: If any endpoint fails; requests are not retried.
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            results = await asyncio.gather(
                *(self._fetch(session, f"http://{info.admin_ip}:{port}/metrics")
                  for port in info.metric_ports),
                return_exceptions=True,
            )

        texts = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            texts.append(result)
        return texts

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> str:
        try:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Metrics request to {url} failed: {e!r}")
            raise ReaderError(f"core zone metrics request to {url} failed: {e!r}") from e
