"""Error taxonomy for metric collection.

Every error carries a machine-readable ``kind`` so transports can map it
without inspecting the class hierarchy:

- ENOTFOUND: target id does not resolve in the instance registry
- ESTOPPED: engine has been stopped
- EREAD: a raw data domain could not be read (failure or timeout)
- EREADER / EEXEC: a reader could not parse output or run its command
- EMALFORMED: a single raw record could not be mapped
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from zonemetrics.model import Domain


class ZoneMetricsError(Exception):
    """Base class for all collection errors."""

    kind = "EUNKNOWN"


class TargetNotFoundError(ZoneMetricsError):
    """Raised when a target id is neither the host nor a known instance."""

    kind = "ENOTFOUND"

    def __init__(self, target_id: str):
        super().__init__(f"container not found: {target_id}")
        self.target_id = target_id


class EngineStoppedError(ZoneMetricsError):
    """Raised when collection is requested after the engine was stopped."""

    kind = "ESTOPPED"

    def __init__(self, message: str = "collector is not running"):
        super().__init__(message)


class DomainReadError(ZoneMetricsError):
    """Raised when the snapshot for a domain could not be obtained."""

    kind = "EREAD"

    def __init__(self, domain: Domain, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to read {domain.value}{detail}")
        self.domain = domain
        self.cause = cause


class ReaderError(ZoneMetricsError):
    """Raised when a reader gets output it cannot interpret."""

    kind = "EREADER"


class CommandError(ReaderError):
    """Raised when an external command cannot be run or exits non-zero."""

    kind = "EEXEC"

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str = ""):
        message = f"{argv[0]} exited with status {returncode}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr


class MalformedRecordError(ZoneMetricsError):
    """Raised when one raw record cannot be mapped to metric values."""

    kind = "EMALFORMED"

    def __init__(self, record_id: str, reason: str):
        super().__init__(f"malformed record {record_id}: {reason}")
        self.record_id = record_id
        self.reason = reason
