"""Wiring of the publish phases: discover, check, sort, run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from connectors.cargo_workspace import discover_packages
from connectors.registry_interface import PublishInvocation, SourceHost, VersionOracle

from .checker import Finding, check
from .models import Package, PublishOptions
from .polling import ConfirmationPoller
from .publisher import RunReport, run
from .sorter import sort

logger = logging.getLogger(__name__)


@dataclass
class Plan:
    packages: dict[str, Package]
    order: tuple[str, ...]
    warnings: list[Finding] = field(default_factory=list)

    def pending(self) -> list[str]:
        return [name for name in self.order if not self.packages[name].published]


def plan(
    options: PublishOptions,
    oracle: VersionOracle | None = None,
    source_host: SourceHost | None = None,
) -> Plan:
    """Discover, validate and order the workspace at ``options.path``."""
    logger.info("Searching cargo packages at '%s'", options.path)
    found = discover_packages(options.path, options.registry)
    logger.info("Found packages: %s", ", ".join(p.name for p in found))

    logger.info("Checking packages consistency")
    report = check(found, oracle, source_host)

    logger.info("Sorting packages according to dependencies")
    order = sort(report.packages)
    logger.info("Publish order: %s", ", ".join(order))
    return Plan(report.packages, order, report.warnings)


def publish_workspace(
    options: PublishOptions,
    *,
    oracle: VersionOracle,
    publish_fn: PublishInvocation,
    source_host: SourceHost | None = None,
    cancel: threading.Event | None = None,
    poller: ConfirmationPoller | None = None,
) -> tuple[Plan, RunReport]:
    """Run every phase. Any CratepubError propagates with its phase set."""
    workspace = plan(options, oracle, source_host)
    if not workspace.pending():
        logger.info("Nothing to publish, every package is already in the registry")
    report = run(
        workspace.order,
        workspace.packages,
        publish_fn,
        oracle,
        options,
        cancel=cancel,
        poller=poller,
    )
    return workspace, report


__all__ = ["Plan", "plan", "publish_workspace"]
