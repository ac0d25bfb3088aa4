"""Shared fixtures: in-memory registry fakes and a Cargo workspace builder."""

from __future__ import annotations

import textwrap
from datetime import datetime
from pathlib import Path

import pytest

from connectors.registry_interface import OracleError, PublishCommandError
from orchestrator.models import Dependency, Package


class FakeRegistry:
    """Oracle fake. Versions land via ``add``; names in ``hidden`` never show up."""

    def __init__(self):
        self.versions: dict[str, set[str]] = {}
        self.dates: dict[tuple[str, str], datetime] = {}
        self.hidden: set[str] = set()
        self.failing: set[str] = set()
        self.queries: list[tuple[str, str]] = []

    def add(self, name: str, version, at: datetime | None = None) -> None:
        self.versions.setdefault(name, set()).add(str(version))
        if at is not None:
            self.dates[(name, str(version))] = at

    def is_published(self, name, version) -> bool:
        self.queries.append((name, str(version)))
        if name in self.failing:
            raise OracleError(f"registry unreachable for {name}")
        if name in self.hidden:
            return False
        return str(version) in self.versions.get(name, set())

    def published_at(self, name, version):
        return self.dates.get((name, str(version)))


class FakePublisher:
    """Publish invocation fake that records calls and feeds the registry."""

    def __init__(self, registry: FakeRegistry, fail: set[str] | None = None):
        self.registry = registry
        self.fail = fail or set()
        self.calls: list[str] = []

    def describe(self, package, options) -> str:
        return f"cargo publish ({package.name})"

    def __call__(self, package, options) -> None:
        self.calls.append(package.name)
        if package.name in self.fail:
            raise PublishCommandError(f"command failed (101): cargo publish ({package.name})", returncode=101)
        self.registry.add(package.name, package.version)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def publisher(registry) -> FakePublisher:
    return FakePublisher(registry)


@pytest.fixture
def make_package():
    """Factory: make_package("a", "1.0.0", deps=["b", ("c", "^2")], published=None)."""

    def factory(name, version="1.0.0", deps=(), published=None, path=None, dev_deps=()):
        dependencies = []
        for dep in deps:
            dep_name, req = (dep, None) if isinstance(dep, str) else dep
            dependencies.append(Dependency(name=dep_name, requirement=req))
        for dep in dev_deps:
            dependencies.append(Dependency(name=dep, kind="dev"))
        return Package(
            name=name,
            version=version,
            path=Path(path or f"/ws/{name}"),
            dependencies=tuple(dependencies),
            published=published,
        )

    return factory


@pytest.fixture
def chain(make_package) -> dict[str, Package]:
    """A depends on B, B depends on C, in discovery order A, B, C."""
    return {
        "a": make_package("a", "1.0.0", deps=["b"]),
        "b": make_package("b", "1.1.0", deps=["c"]),
        "c": make_package("c", "0.3.0"),
    }


@pytest.fixture
def write_workspace(tmp_path):
    """Factory writing Cargo manifests under tmp_path.

    ``members`` maps a relative directory to the manifest body; ``root`` is the
    root Cargo.toml body. Returns the workspace root.
    """

    def factory(members: dict[str, str], root: str | None = None) -> Path:
        if root is None:
            listed = ", ".join(f'"{m}"' for m in members)
            root = f"[workspace]\nmembers = [{listed}]\n"
        (tmp_path / "Cargo.toml").write_text(textwrap.dedent(root))
        for rel, body in members.items():
            d = tmp_path / rel
            d.mkdir(parents=True, exist_ok=True)
            (d / "Cargo.toml").write_text(textwrap.dedent(body))
        return tmp_path

    return factory


@pytest.fixture
def chain_workspace(write_workspace) -> Path:
    """On-disk workspace: app -> core -> util, plus an unpublishable xtask."""
    return write_workspace({
        "crates/app": """
            [package]
            name = "app"
            version = "0.2.0"

            [dependencies]
            core = { path = "../core", version = "0.2" }
            serde = "1"
        """,
        "crates/core": """
            [package]
            name = "core"
            version = "0.2.1"

            [dependencies]
            util = { path = "../util", version = "^0.1.0" }
        """,
        "crates/util": """
            [package]
            name = "util"
            version = "0.1.4"
        """,
        "xtask": """
            [package]
            name = "xtask"
            version = "0.0.0"
            publish = false
        """,
    })
