import pytest

from orchestrator.errors import ConsistencyError, CycleError, DiscoveryError
from orchestrator.models import PollPolicy, PublishOptions
from orchestrator.pipeline import plan, publish_workspace
from orchestrator.polling import ConfirmationPoller
from orchestrator.publisher import PackageState


def test_plan_orders_discovered_workspace(chain_workspace):
    result = plan(PublishOptions(path=chain_workspace))
    assert result.order == ("util", "core", "app")
    assert "xtask" not in result.packages
    assert result.pending() == ["util", "core", "app"]


def test_plan_uses_oracle(chain_workspace, registry):
    registry.add("util", "0.1.4")
    result = plan(PublishOptions(path=chain_workspace), registry)
    assert result.pending() == ["core", "app"]


def test_publish_workspace_end_to_end(chain_workspace, registry, publisher):
    registry.add("util", "0.1.4")
    options = PublishOptions(path=chain_workspace, poll=PollPolicy(initial_delay=0, max_attempts=2))
    poller = ConfirmationPoller(registry, options.poll, sleep=lambda _: None)
    workspace, report = publish_workspace(options, oracle=registry, publish_fn=publisher, poller=poller)
    assert workspace.order == ("util", "core", "app")
    assert publisher.calls == ["core", "app"]
    assert report["util"].state is PackageState.SKIPPED
    assert report.names(PackageState.CONFIRMED) == ["core", "app"]


def test_phases_fail_before_publishing(write_workspace, registry, publisher):
    root = write_workspace({
        "a": """
            [package]
            name = "a"
            version = "1.0.0"

            [dependencies]
            b = { path = "../b", version = "2" }
        """,
        "b": """
            [package]
            name = "b"
            version = "1.0.0"
        """,
    })
    with pytest.raises(ConsistencyError) as excinfo:
        publish_workspace(PublishOptions(path=root), oracle=registry, publish_fn=publisher)
    assert excinfo.value.phase == "consistency"
    assert publisher.calls == []
    assert registry.queries == []


def test_cycle_fails_in_sort_phase(write_workspace, registry, publisher):
    root = write_workspace({
        "a": """
            [package]
            name = "a"
            version = "1.0.0"

            [dependencies]
            b = { path = "../b", version = "1" }
        """,
        "b": """
            [package]
            name = "b"
            version = "1.0.0"

            [build-dependencies]
            a = { path = "../a", version = "1" }
        """,
    })
    with pytest.raises(CycleError) as excinfo:
        publish_workspace(PublishOptions(path=root), oracle=registry, publish_fn=publisher)
    assert excinfo.value.participants == ("a", "b")
    assert publisher.calls == []


def test_missing_workspace(tmp_path):
    with pytest.raises(DiscoveryError):
        plan(PublishOptions(path=tmp_path))
