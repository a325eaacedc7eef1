"""Operator plugins: executables that print extra metrics for a zone.

A plugin directory holds executables and an optional ``plugin.json``
overriding per-file settings::

    {"disk_latency.prom": {"timeout": 5000, "ttl": 30}}

``timeout`` is in milliseconds and ``ttl`` in seconds. Each plugin is run
as ``<path> <zonename>`` and prints either tab separated lines::

    name[{labels}] <TAB> counter|gauge|option <TAB> value [<TAB> help]

or, for files ending in ``.prom``, Prometheus text format preceded by
optional ``# OPTION ttl <seconds>`` lines. The only option is ``ttl``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

from zonemetrics.convert import to_decimal
from zonemetrics.errors import CommandError, ReaderError
from zonemetrics.model import MetricDescriptor, MetricType, MetricValue
from zonemetrics.readers.base import CommandRunner, run_command
from zonemetrics.readers.prom import check_metric_name, parse_exposition, parse_labels

logger = logging.getLogger(__name__)

PLUGIN_JSON = "plugin.json"
PROM_SUFFIX = ".prom"

DEFAULT_PLUGIN_TIMEOUT = 3.0  # seconds
DEFAULT_PLUGIN_TTL = 60  # seconds
DEFAULT_MAX_OUTPUT = 10 * 1024  # bytes
DEFAULT_MAX_CONCURRENT = 100

_LABELED_NAME = re.compile(r"^([^{]+)(\{.*=.*\})$")

_LINE_TYPES = {"counter": MetricType.COUNTER, "gauge": MetricType.GAUGE}


@dataclass(frozen=True)
class Plugin:
    """An executable found in a plugin directory."""

    name: str
    path: Path
    timeout: float = DEFAULT_PLUGIN_TIMEOUT
    ttl: int = DEFAULT_PLUGIN_TTL

    @property
    def prometheus_format(self) -> bool:
        return self.path.suffix == PROM_SUFFIX


@dataclass
class PluginOutput:
    """Parsed plugin output; ``ttl`` is set when the plugin overrode it."""

    values: list[MetricValue] = field(default_factory=list)
    ttl: int | None = None


def _log_safe(text: str) -> str:
    return text[:1024]


def _load_plugin_json(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        raise ReaderError(f"invalid {path}: {e}") from e

    if not isinstance(data, dict):
        raise ReaderError(f"invalid {path}: expected an object")
    return data


def load_plugin_dir(
    directory: Path,
    default_timeout: float = DEFAULT_PLUGIN_TIMEOUT,
    default_ttl: int = DEFAULT_PLUGIN_TTL,
    enforce_root: bool = True,
) -> list[Plugin]:
    """List the executable plugins in ``directory``, sorted by file name.

    A missing directory holds no plugins. Files that are not executable
    are logged and skipped.

    Raises:
        ReaderError: If the path is not a directory, is not owned by root
                     while ``enforce_root`` is set, or has an unreadable
                     plugin.json.
    """
    try:
        stat = directory.stat()
    except FileNotFoundError:
        logger.debug(f"No plugin directory at {directory}")
        return []

    if not directory.is_dir():
        raise ReaderError(f"{directory} is not a directory")
    if enforce_root and stat.st_uid != 0:
        raise ReaderError(f"{directory} is not owned by root")

    settings = _load_plugin_json(directory / PLUGIN_JSON)

    plugins = []
    for path in sorted(directory.iterdir()):
        if path.name == PLUGIN_JSON:
            continue
        if not path.is_file() or not os.access(path, os.X_OK):
            logger.warning(f"Skipping plugin {path}: not an executable file")
            continue

        overrides = settings.get(path.name, {})
        try:
            timeout = float(overrides["timeout"]) / 1000 if "timeout" in overrides else default_timeout
            ttl = int(overrides.get("ttl", default_ttl))
        except (TypeError, ValueError, AttributeError) as e:
            raise ReaderError(f"invalid settings for {path.name} in {PLUGIN_JSON}: {e}") from e

        plugins.append(Plugin(name=path.stem, path=path, timeout=timeout, ttl=ttl))
    return plugins


def _parse_ttl(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ReaderError(f"invalid value: [{_log_safe(value)}]") from None


def parse_tab_output(text: str, prefix: str) -> PluginOutput:
    """Parse tab separated plugin output.

    Raises:
        ReaderError: On the first line that cannot be parsed.
    """
    output = PluginOutput()

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if not line:
            continue

        chunks = line.split("\t")
        if len(chunks) not in (3, 4):
            raise ReaderError(f"unable to parse line: [{_log_safe(line)}]")
        name, type_name, value = chunks[:3]

        if type_name == "option":
            if name != "ttl":
                raise ReaderError(f"invalid option: [{_log_safe(name)}]")
            output.ttl = _parse_ttl(value)
            continue

        metric_type = _LINE_TYPES.get(type_name)
        if metric_type is None:
            raise ReaderError(f"invalid type on line: [{_log_safe(line)}]")

        labels = ()
        matches = _LABELED_NAME.match(name)
        if matches:
            name = matches.group(1)
            try:
                labels = parse_labels(matches.group(2))
            except ValueError as e:
                raise ReaderError(f"invalid labels on line: [{_log_safe(line)}]") from e

        try:
            number = to_decimal(value)
        except (TypeError, ValueError):
            raise ReaderError(f"invalid value: [{_log_safe(value)}]") from None

        descriptor = MetricDescriptor(
            raw_key=name,
            name=check_metric_name(prefix + name),
            help=chunks[3] if len(chunks) == 4 else name,
            type=metric_type,
        )
        output.values.append(MetricValue(descriptor, number, labels))

    return output


def parse_prom_output(text: str, prefix: str) -> PluginOutput:
    """Parse Prometheus text plugin output with leading OPTION lines.

    Raises:
        ReaderError: If an option or the exposition text is invalid.
    """
    output = PluginOutput()
    lines = text.split("\n")

    start = 0
    for start, line in enumerate(lines):
        if not line.strip():
            continue
        if not line.startswith("# OPTION"):
            break
        tokens = line.split()
        if len(tokens) != 4:
            raise ReaderError(f"invalid option line: [{_log_safe(line)}]")
        if tokens[2] != "ttl":
            raise ReaderError(f"invalid option: [{_log_safe(tokens[2])}]")
        output.ttl = _parse_ttl(tokens[3])
    else:
        start = len(lines)

    output.values = parse_exposition("\n".join(lines[start:]) + "\n", prefix)
    return output


def parse_plugin_output(text: str, prefix: str, prometheus_format: bool = False) -> PluginOutput:
    if prometheus_format:
        return parse_prom_output(text, prefix)
    return parse_tab_output(text, prefix)


class PluginRunner:
    """Runs plugins with a timeout, an output limit and a concurrency cap.

    A plugin started while ``max_concurrent`` are already running fails
    instead of queueing.
    """

    def __init__(
        self,
        max_output: int = DEFAULT_MAX_OUTPUT,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        run: CommandRunner = run_command,
    ):
        self.max_output = max_output
        self.max_concurrent = max_concurrent
        self.running = 0
        self._run = run

    async def run(self, plugin: Plugin, zonename: str) -> str:
        """Run ``plugin`` for ``zonename`` and return its stdout.

        Raises:
            CommandError: If the plugin cannot be started or exits non-zero.
            ReaderError: If it is over the concurrency cap, times out or
                         prints more than ``max_output`` bytes.
        """
        if self.running >= self.max_concurrent:
            raise ReaderError(
                f"{plugin.name}: cannot run, {self.running} plugins already running"
            )

        argv = [str(plugin.path), zonename]
        self.running += 1
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run(argv), plugin.timeout)
        except asyncio.TimeoutError:
            raise ReaderError(f"{plugin.name}: timed out after {plugin.timeout}s") from None
        finally:
            self.running -= 1

        logger.debug(
            f"Plugin {plugin.name} for {zonename} finished in {time.monotonic() - started:.3f}s"
        )
        if result.stderr.strip():
            logger.debug(f"Plugin {plugin.name} wrote to stderr: {_log_safe(result.stderr.strip())}")

        if not result.ok:
            raise CommandError(argv, result.returncode, result.stderr)
        if len(result.stdout.encode("utf-8")) > self.max_output:
            raise ReaderError(f"{plugin.name}: output exceeds {self.max_output} bytes")
        return result.stdout
