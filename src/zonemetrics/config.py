"""zonemetrics configuration management.

Loads configuration from zonemetrics.toml with sensible defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib as tomli  # Python 3.11+ stdlib
except ImportError:
    import tomli  # Backport for older Python

from zonemetrics.cache import DEFAULT_FRESHNESS, DEFAULT_READ_TIMEOUT
from zonemetrics.collectors import HOST_MODULES, INSTANCE_MODULES, PluginOptions, TritonOptions
from zonemetrics.model import Domain
from zonemetrics.readers.kstat import DEFAULT_KSTAT
from zonemetrics.readers.ntp import DEFAULT_NTPQ
from zonemetrics.readers.zfs import DEFAULT_POOL, DEFAULT_ZFS, DEFAULT_ZPOOL
from zonemetrics.registry import DEFAULT_ZONEADM

CONFIG_FILENAME = "zonemetrics.toml"


@dataclass
class ServerConfig:
    """HTTP listener configuration."""

    host: str = "0.0.0.0"
    port: int = 9163


@dataclass
class RegistryConfig:
    """Instance registry configuration."""

    refresh_interval: float = 1800.0  # Seconds between zoneadm re-reads
    zoneadm: str = DEFAULT_ZONEADM


@dataclass
class ReadersConfig:
    """Raw data reader configuration."""

    timeout: float = DEFAULT_READ_TIMEOUT  # Seconds before a read counts as failed
    kstat: str = DEFAULT_KSTAT
    zfs: str = DEFAULT_ZFS
    zpool: str = DEFAULT_ZPOOL
    ntpq: str = DEFAULT_NTPQ
    zfs_pool: str = DEFAULT_POOL


@dataclass
class CacheConfig:
    """Snapshot freshness windows in seconds, per domain."""

    freshness: dict[Domain, float] = field(default_factory=lambda: dict(DEFAULT_FRESHNESS))


@dataclass
class CollectorsConfig:
    """Enabled collector modules, per target scope."""

    host: list[str] = field(default_factory=lambda: list(HOST_MODULES))
    instance: list[str] = field(default_factory=lambda: list(INSTANCE_MODULES))


@dataclass
class ZoneMetricsConfig:
    """Root configuration for zonemetrics."""

    server: ServerConfig = field(default_factory=ServerConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    readers: ReadersConfig = field(default_factory=ReadersConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    collectors: CollectorsConfig = field(default_factory=CollectorsConfig)
    plugins: PluginOptions = field(default_factory=PluginOptions)
    triton: TritonOptions = field(default_factory=TritonOptions)


def load_config(config_path: Path | None = None) -> ZoneMetricsConfig:
    """Load configuration from zonemetrics.toml.

    Args:
        config_path: Path to config file. If None, searches current directory
                     and parent directories for zonemetrics.toml.

    Returns:
        ZoneMetricsConfig with values from file or defaults.

    Raises:
        ValueError: If the file names an unknown domain or collector.
    """
    if config_path is None:
        config_path = _find_config_file()

    if config_path is None or not config_path.exists():
        return ZoneMetricsConfig()

    with open(config_path, "rb") as f:
        data = tomli.load(f)

    return _parse_config(data)


def _find_config_file() -> Path | None:
    """Search for zonemetrics.toml in current and parent directories."""
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_file = directory / CONFIG_FILENAME
        if config_file.exists():
            return config_file

    return None


def _parse_freshness(data: dict) -> dict[Domain, float]:
    freshness = dict(DEFAULT_FRESHNESS)
    for key, seconds in data.items():
        try:
            domain = Domain(key)
        except ValueError:
            raise ValueError(f"Unknown domain in [cache.freshness]: {key}") from None
        freshness[domain] = float(seconds)
    return freshness


def _parse_enabled(names: list[str], known: dict, section: str) -> list[str]:
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ValueError(f"Unknown collectors in [collectors] {section}: {', '.join(unknown)}")
    return list(names)


def _parse_config(data: dict) -> ZoneMetricsConfig:
    """Parse configuration dictionary into ZoneMetricsConfig."""
    server_data = data.get("server", {})
    registry_data = data.get("registry", {})
    readers_data = data.get("readers", {})
    cache_data = data.get("cache", {})
    collectors_data = data.get("collectors", {})
    plugins_data = data.get("plugins", {})
    triton_data = data.get("triton", {})

    server_config = ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=int(server_data.get("port", 9163)),
    )

    registry_config = RegistryConfig(
        refresh_interval=float(registry_data.get("refresh_interval", 1800.0)),
        zoneadm=registry_data.get("zoneadm", DEFAULT_ZONEADM),
    )

    readers_config = ReadersConfig(
        timeout=float(readers_data.get("timeout", DEFAULT_READ_TIMEOUT)),
        kstat=readers_data.get("kstat", DEFAULT_KSTAT),
        zfs=readers_data.get("zfs", DEFAULT_ZFS),
        zpool=readers_data.get("zpool", DEFAULT_ZPOOL),
        ntpq=readers_data.get("ntpq", DEFAULT_NTPQ),
        zfs_pool=readers_data.get("zfs_pool", DEFAULT_POOL),
    )

    cache_config = CacheConfig(freshness=_parse_freshness(cache_data.get("freshness", {})))

    collectors_config = CollectorsConfig(
        host=_parse_enabled(collectors_data.get("host", list(HOST_MODULES)), HOST_MODULES, "host"),
        instance=_parse_enabled(
            collectors_data.get("instance", list(INSTANCE_MODULES)), INSTANCE_MODULES, "instance"
        ),
    )

    defaults = PluginOptions()
    plugins_config = PluginOptions(
        gz_dir=plugins_data.get("gz_dir", defaults.gz_dir),
        vm_dir=plugins_data.get("vm_dir", defaults.vm_dir),
        timeout=float(plugins_data.get("timeout", defaults.timeout)),
        ttl=int(plugins_data.get("ttl", defaults.ttl)),
        max_output=int(plugins_data.get("max_output", defaults.max_output)),
        max_concurrent=int(plugins_data.get("max_concurrent", defaults.max_concurrent)),
        reload_interval=float(plugins_data.get("reload_interval", defaults.reload_interval)),
        enforce_root=bool(plugins_data.get("enforce_root", defaults.enforce_root)),
    )

    triton_defaults = TritonOptions()
    triton_config = TritonOptions(
        admin_uuid=triton_data.get("admin_uuid", triton_defaults.admin_uuid),
        vmadm=triton_data.get("vmadm", triton_defaults.vmadm),
        sdc_config=triton_data.get("sdc_config", triton_defaults.sdc_config),
        timeout=float(triton_data.get("timeout", triton_defaults.timeout)),
    )

    return ZoneMetricsConfig(
        server=server_config,
        registry=registry_config,
        readers=readers_config,
        cache=cache_config,
        collectors=collectors_config,
        plugins=plugins_config,
        triton=triton_config,
    )
