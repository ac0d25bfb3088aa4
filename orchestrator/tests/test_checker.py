from datetime import datetime, timezone
from pathlib import Path

import pytest

from connectors.cargo_workspace import discover_packages
from connectors.registry_interface import SourceHostError
from orchestrator.checker import ViolationKind, WarningKind, check
from orchestrator.errors import ConsistencyError
from orchestrator.models import Dependency, DependencyKind, Package


def kinds(excinfo):
    return [v.kind for v in excinfo.value.violations]


def test_unique_set_with_resolved_and_external_deps_passes(chain, make_package):
    packages = dict(chain)
    packages["d"] = make_package("d", deps=["serde", ("c", "0.3")])
    report = check(packages)
    assert list(report.packages) == ["a", "b", "c", "d"]
    assert report.warnings == []


def test_duplicate_names_rejected(make_package):
    packages = [make_package("a", "1.0.0"), make_package("a", "2.0.0", path="/ws/other")]
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert kinds(excinfo) == [ViolationKind.DUPLICATE_NAME]
    assert excinfo.value.phase == "consistency"


def test_duplicate_publish_target_rejected(make_package):
    packages = [make_package("a", "1.0.0"), make_package("a", "1.0.0+build", path="/ws/copy")]
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert kinds(excinfo) == [ViolationKind.DUPLICATE_TARGET]


def test_self_dependency_rejected(make_package):
    with pytest.raises(ConsistencyError) as excinfo:
        check({"a": make_package("a", deps=["a"])})
    assert kinds(excinfo) == [ViolationKind.SELF_DEPENDENCY]


def test_mapping_key_must_match_name(make_package):
    with pytest.raises(ConsistencyError) as excinfo:
        check({"alias": make_package("a")})
    assert kinds(excinfo) == [ViolationKind.KEY_MISMATCH]


def test_version_requirement_must_match_workspace_version(make_package):
    packages = {
        "a": make_package("a", deps=[("b", "^2.0")]),
        "b": make_package("b", "1.4.0"),
    }
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert kinds(excinfo) == [ViolationKind.VERSION_MISMATCH]
    assert "1.4.0" in str(excinfo.value)


def test_path_dependency_must_point_at_workspace_package(make_package):
    dep = Dependency(name="b", path=Path("/ws/c"))
    packages = {
        "a": Package(name="a", version="1.0.0", path=Path("/ws/a"), dependencies=(dep,)),
        "b": make_package("b"),
        "c": make_package("c"),
    }
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert kinds(excinfo) == [ViolationKind.UNRESOLVED_PATH]


def test_path_dependency_outside_workspace_needs_version(make_package):
    unversioned = Dependency(name="vendored", path=Path("/elsewhere/vendored"))
    versioned = Dependency(name="local-fork", path=Path("/elsewhere/fork"), requirement="1")
    packages = {"a": Package(name="a", version="1.0.0", path=Path("/ws/a"), dependencies=(unversioned, versioned))}
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert kinds(excinfo) == [ViolationKind.UNRESOLVED_PATH]
    assert "vendored" in str(excinfo.value)


def test_in_workspace_path_dependency_needs_version(write_workspace):
    root = write_workspace({
        "a": """
            [package]
            name = "a"
            version = "1.0.0"

            [dependencies]
            b = { path = "../b" }
        """,
        "b": '[package]\nname = "b"\nversion = "0.4.0"\n',
    })
    with pytest.raises(ConsistencyError) as excinfo:
        check(discover_packages(root))
    assert kinds(excinfo) == [ViolationKind.UNRESOLVED_PATH]
    assert "'b'" in str(excinfo.value)


def test_unversioned_dev_path_dependency_is_allowed(make_package):
    dev = Dependency(name="b", path=Path("/ws/b"), kind=DependencyKind.DEV)
    packages = {
        "a": Package(name="a", version="1.0.0", path=Path("/ws/a"), dependencies=(dev,)),
        "b": make_package("b"),
    }
    assert list(check(packages).packages) == ["a", "b"]


def test_all_violations_are_reported(make_package):
    packages = [
        make_package("a", deps=["a"]),
        make_package("b", deps=[("c", "2")]),
        make_package("c", "1.0.0"),
        make_package("c", "1.5.0", path="/ws/c2"),
    ]
    with pytest.raises(ConsistencyError) as excinfo:
        check(packages)
    assert sorted(kinds(excinfo)) == sorted([
        ViolationKind.DUPLICATE_NAME,
        ViolationKind.SELF_DEPENDENCY,
        ViolationKind.VERSION_MISMATCH,
    ])
    assert str(excinfo.value).startswith("[consistency] 3 consistency violation(s)")


def test_oracle_resolves_unknown_flags_once(chain, registry):
    registry.add("c", "0.3.0")
    report = check(chain, registry)
    assert {n: p.published for n, p in report.packages.items()} == {"a": False, "b": False, "c": True}
    assert sorted(registry.queries) == [("a", "1.0.0"), ("b", "1.1.0"), ("c", "0.3.0")]
    assert report.oracle_queries == 3
    # input snapshots are untouched
    assert chain["c"].published is None


def test_known_published_packages_are_trusted(make_package, registry):
    packages = {"a": make_package("a", published=True)}
    report = check(packages, registry)
    assert registry.queries == []
    assert report.packages["a"] is packages["a"]


def test_without_oracle_unknown_means_unpublished(chain):
    report = check(chain)
    assert all(p.published is False for p in report.packages.values())


def test_stale_discovery_is_a_warning(make_package, registry):
    registry.add("a", "1.0.0")
    report = check({"a": make_package("a", published=False)}, registry)
    assert report.packages["a"].published is True
    assert [w.kind for w in report.warnings] == [WarningKind.STALE_DISCOVERY]


def test_oracle_failure_is_reported_as_violation(chain, registry):
    registry.failing.add("b")
    with pytest.raises(ConsistencyError) as excinfo:
        check(chain, registry)
    assert kinds(excinfo) == [ViolationKind.REGISTRY_QUERY]
    assert excinfo.value.violations[0].package == "b"


def test_invalid_set_skips_registry_queries(make_package, registry):
    with pytest.raises(ConsistencyError):
        check({"a": make_package("a", deps=["a"])}, registry)
    assert registry.queries == []


class FakeSourceHost:
    def __init__(self, changes, fail=False):
        self.changes = changes
        self.fail = fail

    def last_change(self, path):
        if self.fail:
            raise SourceHostError("rate limited")
        return self.changes.get(Path(path).name)


def _utc(day):
    return datetime(2024, 1, day, tzinfo=timezone.utc)


def test_changed_since_publish_warning(chain, registry):
    registry.add("b", "1.1.0", at=_utc(5))
    registry.add("c", "0.3.0", at=_utc(5))
    host = FakeSourceHost({"b": _utc(9), "c": _utc(2), "a": _utc(20)})
    report = check(chain, registry, host)
    assert [(w.kind, w.package) for w in report.warnings] == [(WarningKind.CHANGED_SINCE_PUBLISH, "b")]


def test_source_host_errors_do_not_fail_the_check(chain, registry):
    registry.add("c", "0.3.0", at=_utc(5))
    report = check(chain, registry, FakeSourceHost({}, fail=True))
    assert report.warnings == []
