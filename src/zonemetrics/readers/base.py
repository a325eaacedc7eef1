"""Subprocess helper shared by the command-backed readers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from zonemetrics.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured output of an external command."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


# Signature of run_command, so readers can be given a fake in tests
CommandRunner = Callable[[Sequence[str]], Awaitable[CommandResult]]


async def run_command(argv: Sequence[str]) -> CommandResult:
    """Run a command without a shell and capture its output.

    Args:
        argv: Program and arguments.

    Returns:
        CommandResult with decoded stdout and stderr.

    Raises:
        CommandError: If the program cannot be started.
    """
    logger.debug(f"Running {' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(argv, None, str(e)) from e

    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
        raise

    return CommandResult(
        argv=list(argv),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


async def check_output(argv: Sequence[str], run: CommandRunner = run_command) -> str:
    """Run a command and return stdout, raising CommandError on non-zero exit."""
    result = await run(argv)
    if not result.ok:
        raise CommandError(argv, result.returncode, result.stderr)
    return result.stdout
