from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from orchestrator.models import Package, PublishOptions
    from orchestrator.versioning import Version


class OracleError(Exception):
    """A registry query failed (transport error or unexpected response)."""


class SourceHostError(Exception):
    """A source-hosting API query failed."""


class PublishCommandError(Exception):
    """The publish command could not be run or exited with an error."""

    def __init__(self, message: str, returncode: int | None = None):
        self.message = message
        self.returncode = returncode
        super().__init__(self.message)


@runtime_checkable
class VersionOracle(Protocol):
    """Interface Protocol for registry version lookups.

    Each call is a single query. Callers own retries.
    """

    def is_published(self, name: str, version: Version) -> bool:
        """True if exactly ``name`` ``version`` is visible in the registry."""
        ...

    def published_at(self, name: str, version: Version) -> datetime | None:
        """Time the version was published, or None if unknown or absent."""
        ...


@runtime_checkable
class SourceHost(Protocol):
    """Interface Protocol for the source-hosting API used to spot unreleased changes."""

    def last_change(self, path: Path) -> datetime | None:
        """Date of the most recent commit touching ``path``, None if there is none."""
        ...


class PublishInvocation(Protocol):
    """
    Protocol for the external publish step.
    Calling it blocks until the package is uploaded, raising on failure.
    It is not idempotent and must not be retried.
    ``describe`` is optional: a plain callable works too, and dry-run then
    logs a generic command line.
    """

    def __call__(self, package: Package, options: PublishOptions) -> None: ...

    def describe(self, package: Package, options: PublishOptions) -> str:
        """Printable form of the command, used for dry-run logging."""
        ...
