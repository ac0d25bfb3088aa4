"""Whole-set validation of discovered packages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from connectors.registry_interface import OracleError, SourceHost, SourceHostError, VersionOracle

from .errors import ConsistencyError
from .models import DependencyKind, Package

logger = logging.getLogger(__name__)


class ViolationKind(str, Enum):
    DUPLICATE_NAME = "duplicate_name"
    DUPLICATE_TARGET = "duplicate_target"
    SELF_DEPENDENCY = "self_dependency"
    KEY_MISMATCH = "key_mismatch"
    UNRESOLVED_PATH = "unresolved_path"
    VERSION_MISMATCH = "version_mismatch"
    REGISTRY_QUERY = "registry_query"


class WarningKind(str, Enum):
    STALE_DISCOVERY = "stale_discovery"
    CHANGED_SINCE_PUBLISH = "changed_since_publish"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    package: str
    detail: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.package}: {self.detail}"


@dataclass(frozen=True)
class Finding:
    kind: WarningKind
    package: str
    detail: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.package}: {self.detail}"


@dataclass
class CheckReport:
    """Result of a successful check.

    ``packages`` holds fresh snapshots with ``published`` resolved, in input
    order. ``warnings`` holds non-fatal findings. ``oracle_queries`` counts
    every oracle call the check made.
    """

    packages: dict[str, Package]
    warnings: list[Finding] = field(default_factory=list)
    oracle_queries: int = 0


def check(
    packages: Mapping[str, Package] | Sequence[Package],
    oracle: VersionOracle | None = None,
    source_host: SourceHost | None = None,
) -> CheckReport:
    """Validate the package set and resolve publish state.

    Raises:
        ConsistencyError: with every violation found.
    """
    entries = _entries(packages)
    violations: list[Violation] = []

    violations.extend(_key_mismatches(entries))
    by_name = _unique_by_name(entries, violations)
    violations.extend(_dependency_violations(by_name))

    # registry lookups are skipped when the set is already known to be invalid
    if violations:
        raise ConsistencyError(violations)

    report = CheckReport(packages={})
    for name, package in by_name.items():
        try:
            report.packages[name] = _resolve_published(package, oracle, report)
        except OracleError as exc:
            violations.append(Violation(
                ViolationKind.REGISTRY_QUERY, name, f"cannot determine publish state of {package.version}: {exc}"
            ))
    if violations:
        raise ConsistencyError(violations)

    if source_host is not None:
        for package in report.packages.values():
            finding = _changed_since_publish(package, oracle, source_host, report)
            if finding is not None:
                report.warnings.append(finding)

    for finding in report.warnings:
        logger.warning("Consistency warning: %s", finding)
    return report


# ---------------------------------------------------------------------------
# rules


def _entries(packages: Mapping[str, Package] | Sequence[Package]) -> list[tuple[str, Package]]:
    if isinstance(packages, Mapping):
        return list(packages.items())
    return [(package.name, package) for package in packages]


def _key_mismatches(entries: Iterable[tuple[str, Package]]) -> Iterable[Violation]:
    for key, package in entries:
        if key != package.name:
            yield Violation(ViolationKind.KEY_MISMATCH, key, f"entry holds package '{package.name}'")


def _unique_by_name(entries: list[tuple[str, Package]], violations: list[Violation]) -> dict[str, Package]:
    by_name: dict[str, Package] = {}
    for _, package in entries:
        seen = by_name.get(package.name)
        if seen is None:
            by_name[package.name] = package
        elif seen.version == package.version:
            violations.append(Violation(
                ViolationKind.DUPLICATE_TARGET,
                package.name,
                f"version {package.version} declared at both {seen.path} and {package.path}",
            ))
        else:
            violations.append(Violation(
                ViolationKind.DUPLICATE_NAME,
                package.name,
                f"declared as {seen.version} at {seen.path} and {package.version} at {package.path}",
            ))
    return by_name


def _dependency_violations(by_name: Mapping[str, Package]) -> Iterable[Violation]:
    by_path = {_norm(p.path): p for p in by_name.values()}
    for name, package in by_name.items():
        for dep in package.dependencies:
            if dep.name == name:
                yield Violation(ViolationKind.SELF_DEPENDENCY, name, "package depends on itself")
                continue
            target = by_name.get(dep.name)
            if dep.path is not None:
                local = by_path.get(_norm(dep.path))
                if local is not None and local.name != dep.name:
                    yield Violation(
                        ViolationKind.UNRESOLVED_PATH,
                        name,
                        f"dependency '{dep.name}' points at {dep.path}, which holds '{local.name}'",
                    )
                    continue
                if dep.requirement is None and dep.kind is not DependencyKind.DEV:
                    # without a version cargo has nothing to put in the published manifest
                    yield Violation(
                        ViolationKind.UNRESOLVED_PATH,
                        name,
                        f"dependency '{dep.name}' points at {dep.path} and has no version",
                    )
                    continue
            if target is not None and dep.requirement is not None and not dep.requirement.matches(target.version):
                yield Violation(
                    ViolationKind.VERSION_MISMATCH,
                    name,
                    f"requires {dep.name} '{dep.requirement}' but the workspace has {target.version}",
                )


def _norm(path: Path) -> Path:
    return Path(path).expanduser().resolve()


def _resolve_published(package: Package, oracle: VersionOracle | None, report: CheckReport) -> Package:
    if package.published:
        return package
    if oracle is None:
        return package if package.published is False else package.with_published(False)

    report.oracle_queries += 1
    published = oracle.is_published(package.name, package.version)
    if published and package.published is False:
        report.warnings.append(Finding(
            WarningKind.STALE_DISCOVERY,
            package.name,
            f"version {package.version} is already in the registry, it will be skipped",
        ))
    logger.debug("%s: published=%s", package, published)
    return package.with_published(published)


def _changed_since_publish(
    package: Package, oracle: VersionOracle | None, source_host: SourceHost, report: CheckReport
) -> Finding | None:
    if not package.published or oracle is None:
        return None
    report.oracle_queries += 1
    try:
        published_at = oracle.published_at(package.name, package.version)
        changed_at = source_host.last_change(package.path)
    except (OracleError, SourceHostError) as exc:
        logger.warning("Could not compare %s with its source history: %s", package, exc)
        return None
    if published_at is None or changed_at is None or changed_at <= published_at:
        return None
    return Finding(
        WarningKind.CHANGED_SINCE_PUBLISH,
        package.name,
        f"changed on {changed_at.isoformat()} after {package.version} was published "
        f"on {published_at.isoformat()}; bump the version to publish it",
    )


__all__ = [
    "CheckReport",
    "Finding",
    "Violation",
    "ViolationKind",
    "WarningKind",
    "check",
]
