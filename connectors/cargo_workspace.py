"""
cargo_workspace.py
------------------
Discovers publishable packages in a Cargo workspace.

Reads the root Cargo.toml, expands the workspace members and returns
one Package snapshot per publishable manifest, in discovery order.
Workspace inheritance (``version.workspace = true``, ``dep.workspace = true``)
is resolved here so the rest of the pipeline never sees it.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Mapping

from orchestrator.errors import DiscoveryError
from orchestrator.models import Dependency, DependencyKind, Package
from orchestrator.versioning import Version, VersionReq

logger = logging.getLogger(__name__)

MANIFEST = "Cargo.toml"
DEFAULT_REGISTRY = "crates-io"

_DEPENDENCY_TABLES = (
    ("dependencies", DependencyKind.NORMAL),
    ("build-dependencies", DependencyKind.BUILD),
    ("dev-dependencies", DependencyKind.DEV),
)


def discover(root: Path | str, registry: str | None = None) -> dict[str, Package]:
    """Return publishable packages under ``root`` keyed by name, in discovery order."""
    packages: dict[str, Package] = {}
    for package in discover_packages(root, registry):
        if package.name in packages:
            raise DiscoveryError(
                f"package '{package.name}' is declared twice: "
                f"{packages[package.name].path} and {package.path}"
            )
        packages[package.name] = package
    return packages


def discover_packages(root: Path | str, registry: str | None = None) -> list[Package]:
    """Like ``discover`` but keeps duplicate names, for the consistency checker."""
    root = Path(root).expanduser().resolve()
    root_manifest = root / MANIFEST
    if not root_manifest.is_file():
        raise DiscoveryError(f"no {MANIFEST} found at '{root}'")
    doc = _read_manifest(root_manifest)

    workspace = doc.get("workspace")
    if workspace is not None and not isinstance(workspace, dict):
        raise DiscoveryError(f"{root_manifest}: [workspace] must be a table")
    workspace = workspace or {}
    ws_package = _table(workspace.get("package"), f"{root_manifest}: [workspace.package]")
    ws_deps = _table(workspace.get("dependencies"), f"{root_manifest}: [workspace.dependencies]")

    manifests: list[Path] = []
    if "package" in doc:
        manifests.append(root_manifest)
    manifests.extend(m for m in _member_manifests(root, workspace) if m not in manifests)

    packages: list[Package] = []
    for manifest in manifests:
        package = _load_package(manifest, root, ws_package, ws_deps, registry)
        if package is not None:
            packages.append(package)

    if not packages:
        raise DiscoveryError(f"no publishable packages found at '{root}'")
    logger.info("Discovered %d publishable package(s) at %s", len(packages), root)
    return packages


# ---------------------------------------------------------------------------
# helpers


def _read_manifest(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        raise DiscoveryError(f"missing manifest: {path}") from None
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise DiscoveryError(f"malformed manifest {path}: {exc}") from exc


def _table(value: Any, context: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DiscoveryError(f"{context} must be a table")
    return value


def _member_manifests(root: Path, workspace: Mapping[str, Any]) -> list[Path]:
    members = workspace.get("members") or []
    exclude = workspace.get("exclude") or []
    if not isinstance(members, list) or not isinstance(exclude, list):
        raise DiscoveryError(f"{root / MANIFEST}: workspace members/exclude must be arrays")
    excluded = {(root / e).resolve() for e in exclude}

    out: list[Path] = []
    for pattern in members:
        if not isinstance(pattern, str) or not pattern:
            raise DiscoveryError(f"{root / MANIFEST}: invalid workspace member {pattern!r}")
        if any(ch in pattern for ch in "*?["):
            dirs = sorted(p.resolve() for p in root.glob(pattern) if (p / MANIFEST).is_file())
        else:
            member = (root / pattern).resolve()
            if not (member / MANIFEST).is_file():
                raise DiscoveryError(f"workspace member '{pattern}' has no {MANIFEST}")
            dirs = [member]
        for d in dirs:
            manifest = d / MANIFEST
            if d in excluded or manifest in out:
                continue
            out.append(manifest)
    return out


def _inherit(value: Any, key: str, ws_package: Mapping[str, Any], manifest: Path) -> Any:
    if isinstance(value, dict) and value.get("workspace") is True:
        if key not in ws_package:
            raise DiscoveryError(f"{manifest}: '{key}' inherits from the workspace, which does not set it")
        return ws_package[key]
    return value


def _load_package(
    manifest: Path,
    root: Path,
    ws_package: Mapping[str, Any],
    ws_deps: Mapping[str, Any],
    registry: str | None,
) -> Package | None:
    doc = _read_manifest(manifest)
    section = doc.get("package")
    if not isinstance(section, dict):
        raise DiscoveryError(f"{manifest}: missing [package] table")
    name = section.get("name")
    if not isinstance(name, str) or not name:
        raise DiscoveryError(f"{manifest}: package.name must be a non-empty string")

    publish = _inherit(section.get("publish", True), "publish", ws_package, manifest)
    if publish is False or publish == []:
        logger.info("Skipping '%s': publish = false", name)
        return None
    if isinstance(publish, list) and (registry or DEFAULT_REGISTRY) not in publish:
        logger.info("Skipping '%s': not publishable to %s", name, registry or DEFAULT_REGISTRY)
        return None

    raw_version = _inherit(section.get("version"), "version", ws_package, manifest)
    if raw_version is None:
        # cargo treats a package without a version as unpublishable
        logger.info("Skipping '%s': no version", name)
        return None
    try:
        version = Version.parse(raw_version)
    except ValueError as exc:
        raise DiscoveryError(f"{manifest}: {exc}") from exc

    dependencies: list[Dependency] = []
    tables = [doc]
    targets = doc.get("target") or {}
    if isinstance(targets, dict):
        tables.extend(t for t in targets.values() if isinstance(t, dict))
    for table in tables:
        for key, kind in _DEPENDENCY_TABLES:
            deps = _table(table.get(key), f"{manifest}: [{key}]")
            for dep_key, spec in deps.items():
                dep = _parse_dependency(dep_key, spec, kind, manifest, root, ws_deps)
                if dep is not None and dep not in dependencies:
                    dependencies.append(dep)

    return Package(name=name, version=version, path=manifest.parent, dependencies=tuple(dependencies))


def _parse_dependency(
    key: str,
    spec: Any,
    kind: DependencyKind,
    manifest: Path,
    root: Path,
    ws_deps: Mapping[str, Any],
) -> Dependency | None:
    base_dir = manifest.parent
    if isinstance(spec, dict) and spec.get("workspace") is True:
        if key not in ws_deps:
            raise DiscoveryError(f"{manifest}: dependency '{key}' inherits from the workspace, which does not declare it")
        inherited = ws_deps[key]
        if isinstance(inherited, str):
            inherited = {"version": inherited}
        # paths in [workspace.dependencies] are relative to the workspace root
        base_dir = root
        spec = {**inherited, **{k: v for k, v in spec.items() if k != "workspace"}}

    if isinstance(spec, str):
        spec = {"version": spec}
    if not isinstance(spec, dict):
        raise DiscoveryError(f"{manifest}: invalid dependency specification for '{key}'")

    name = spec.get("package", key)
    raw_req = spec.get("version")
    raw_path = spec.get("path")
    if kind is DependencyKind.DEV and raw_path is not None and raw_req is None:
        # stripped by cargo on publish
        return None

    try:
        requirement = VersionReq.parse(raw_req) if raw_req is not None else None
    except ValueError as exc:
        raise DiscoveryError(f"{manifest}: dependency '{key}': {exc}") from exc
    path = (base_dir / raw_path).resolve() if raw_path is not None else None
    return Dependency(name=name, requirement=requirement, path=path, kind=kind)


__all__ = ["discover", "discover_packages"]
