"""Publish loop: walk the plan, publish what is missing, wait for the registry."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

from connectors.registry_interface import PublishInvocation, VersionOracle

from .errors import ConfirmationTimeoutError, PublishError, RunCancelledError
from .models import Package, PublishOptions
from .polling import Cancelled, ConfirmationPoller, Confirmed, TimedOut

logger = logging.getLogger(__name__)


class PackageState(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


# allowed transitions of the per-package state machine
TRANSITIONS: dict[PackageState, frozenset[PackageState]] = {
    PackageState.PENDING: frozenset({PackageState.SKIPPED, PackageState.DRY_RUN, PackageState.PUBLISHING}),
    PackageState.PUBLISHING: frozenset({PackageState.PUBLISHED, PackageState.FAILED}),
    PackageState.PUBLISHED: frozenset({PackageState.CONFIRMED, PackageState.TIMED_OUT}),
}


@dataclass
class PackageOutcome:
    name: str
    version: str
    state: PackageState = PackageState.PENDING
    detail: str = ""

    def advance(self, state: PackageState, detail: str = "") -> None:
        if state not in TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"{self.name}: invalid transition {self.state.value} -> {state.value}")
        self.state = state
        self.detail = detail


@dataclass
class RunReport:
    """Per-package outcomes of one run, in plan order."""

    outcomes: list[PackageOutcome] = field(default_factory=list)

    def __getitem__(self, name: str) -> PackageOutcome:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def names(self, *states: PackageState) -> list[str]:
        return [o.name for o in self.outcomes if o.state in states]

    @property
    def ok(self) -> bool:
        failed = (PackageState.FAILED, PackageState.TIMED_OUT)
        return not any(o.state in failed for o in self.outcomes)


def run(
    order: Sequence[str],
    packages: Mapping[str, Package],
    publish_fn: PublishInvocation,
    oracle: VersionOracle,
    options: PublishOptions,
    *,
    cancel: threading.Event | None = None,
    poller: ConfirmationPoller | None = None,
) -> RunReport:
    """Publish ``order`` sequentially.

    Stops at the first failure. Packages already published by this run stay
    published.

    Raises:
        PublishError: the publish step failed.
        ConfirmationTimeoutError: the registry did not confirm the version.
        RunCancelledError: ``cancel`` was set between packages or during a poll.
    """
    if poller is None:
        poller = ConfirmationPoller(oracle, options.poll, cancel=cancel)
    report = RunReport([PackageOutcome(name, str(packages[name].version)) for name in order])

    for outcome in report.outcomes:
        package = packages[outcome.name]
        if package.published:
            outcome.advance(PackageState.SKIPPED, "already published")
            logger.info("Skipping '%s': already published", package)
            continue

        if options.dry_run:
            describe = getattr(publish_fn, "describe", None)
            command = describe(package, options) if describe is not None else f"publish {package}"
            outcome.advance(PackageState.DRY_RUN, command)
            logger.warning("Skipping exec '%s' in '%s' due to dry-run", command, package.path)
            continue

        if cancel is not None and cancel.is_set():
            logger.warning("Run cancelled before publishing '%s'", package)
            raise RunCancelledError(package.name, report=report)

        outcome.advance(PackageState.PUBLISHING)
        logger.info("Publishing package '%s'", package)
        try:
            publish_fn(package, options)
        except Exception as exc:
            outcome.advance(PackageState.FAILED, str(exc))
            raise PublishError(package.name, exc, report=report) from exc
        outcome.advance(PackageState.PUBLISHED)

        if not options.wait:
            logger.info("Not waiting for '%s' to show up in the registry (wait disabled)", package)
            continue

        logger.info("Waiting for '%s' to show up in the registry...", package)
        result = poller.poll(package.name, package.version)
        if isinstance(result, Confirmed):
            outcome.advance(PackageState.CONFIRMED, f"{result.attempts} attempt(s), {result.elapsed:.1f}s")
            logger.info("Package '%s' published successfully", package)
        elif isinstance(result, TimedOut):
            outcome.advance(PackageState.TIMED_OUT, f"{result.attempts} attempt(s), {result.elapsed:.1f}s")
            raise ConfirmationTimeoutError(
                package.name, package.version, attempts=result.attempts, elapsed=result.elapsed, report=report
            )
        elif isinstance(result, Cancelled):
            # the upload went through, only the confirmation is missing
            outcome.detail = "confirmation cancelled"
            raise RunCancelledError(report=report)

    return report


__all__ = ["PackageOutcome", "PackageState", "RunReport", "TRANSITIONS", "run"]
