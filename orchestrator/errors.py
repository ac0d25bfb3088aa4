"""Exceptions raised by the publish pipeline.

Every error carries the ``phase`` it was raised in so the CLI can print a
single diagnostic naming the phase and, when known, the package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from .checker import Violation
    from .publisher import RunReport


class CratepubError(Exception):
    """Base error with a phase and a human readable message."""

    phase = "run"

    def __init__(self, message: str = "A cratepub error occurred"):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.phase}] {self.message}"


class DiscoveryError(CratepubError):
    """No packages found, or a manifest could not be read."""

    phase = "discovery"


class ConsistencyError(CratepubError):
    """The package set failed validation. Holds every violation found."""

    phase = "consistency"

    def __init__(self, violations: Sequence[Violation]):
        self.violations = list(violations)
        lines = [f"{len(self.violations)} consistency violation(s):"]
        lines.extend(f"  - {v}" for v in self.violations)
        super().__init__("\n".join(lines))


class CycleError(CratepubError):
    """Dependency cycle between in-set packages."""

    phase = "sort"

    def __init__(self, participants: Sequence[str]):
        self.participants = tuple(participants)
        super().__init__(f"dependency cycle between packages: {', '.join(self.participants)}")


class RunError(CratepubError):
    """Failure during the publish loop. ``report`` holds the outcomes so far."""

    phase = "publish"

    def __init__(self, message: str, *, package: str | None = None, report: RunReport | None = None):
        self.package = package
        self.report = report
        super().__init__(message)


class PublishError(RunError):
    def __init__(self, package: str, cause: BaseException, *, report: RunReport | None = None):
        self.cause = cause
        super().__init__(f"publishing '{package}' failed: {cause}", package=package, report=report)


class ConfirmationTimeoutError(RunError, TimeoutError):
    """The registry did not show the version before the poll gave up."""

    phase = "confirm"

    def __init__(self, package: str, version: Any, *, attempts: int = 0, elapsed: float = 0.0,
                 report: RunReport | None = None):
        self.version = str(version)
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"'{package} {self.version}' not visible in registry after "
            f"{attempts} attempt(s) / {elapsed:.1f}s",
            package=package,
            report=report,
        )


class RunCancelledError(RunError):
    def __init__(self, package: str | None = None, *, report: RunReport | None = None):
        where = f" before '{package}'" if package else ""
        super().__init__(f"run cancelled{where}", package=package, report=report)


__all__ = [
    "ConfirmationTimeoutError",
    "ConsistencyError",
    "CratepubError",
    "CycleError",
    "DiscoveryError",
    "PublishError",
    "RunCancelledError",
    "RunError",
]
