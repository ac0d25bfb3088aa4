from itertools import islice
from pathlib import Path

import pytest
from pydantic import ValidationError

from orchestrator.models import (
    Dependency,
    DependencyKind,
    Package,
    PollPolicy,
    PublishOptions,
    coerce_options,
    registry_token_env,
)
from orchestrator.versioning import Version


def test_package_is_frozen(make_package):
    package = make_package("a")
    with pytest.raises(ValidationError):
        package.published = True


def test_with_published_returns_new_snapshot(make_package):
    package = make_package("a")
    updated = package.with_published(True)
    assert package.published is None
    assert updated.published is True
    assert updated.name == "a"


def test_package_version_is_parsed():
    package = Package(name="a", version="v1.2.3+meta")
    assert package.version == Version(1, 2, 3)
    assert package.model_dump()["version"] == "1.2.3"


def test_package_rejects_bad_version():
    with pytest.raises(ValidationError):
        Package(name="a", version="one")


def test_dev_dependencies_do_not_order():
    assert Dependency(name="x").orders
    assert Dependency(name="x", kind="build").orders
    assert not Dependency(name="x", kind=DependencyKind.DEV).orders


def test_options_split_args_and_parse_flag_strings():
    options = PublishOptions(args="--allow-dirty\n  --no-verify ", dry_run="true", wait="false")
    assert options.args == ("--allow-dirty", "--no-verify")
    assert options.dry_run is True
    assert options.wait is False


def test_options_blank_strings_are_unset():
    options = PublishOptions(registry="", registry_token="  ")
    assert options.registry is None
    assert options.registry_token is None
    assert options.token_env_var == "CARGO_REGISTRY_TOKEN"


def test_options_hide_token():
    options = PublishOptions(registry_token="s3cr3t")
    assert "s3cr3t" not in repr(options)
    assert options.registry_token.get_secret_value() == "s3cr3t"


def test_options_reject_unknown_keys():
    with pytest.raises(ValidationError):
        PublishOptions(dryrun=True)


@pytest.mark.parametrize(
    "registry, expected",
    [
        (None, "CARGO_REGISTRY_TOKEN"),
        ("my-registry", "CARGO_REGISTRIES_MY_REGISTRY_TOKEN"),
        ("corp.registry", "CARGO_REGISTRIES_CORP_REGISTRY_TOKEN"),
    ],
)
def test_registry_token_env(registry, expected):
    assert registry_token_env(registry) == expected


def test_coerce_options_from_yaml_text():
    options = coerce_options("registry: internal\nwait: false\npoll:\n  timeout: 20\n")
    assert options.registry == "internal"
    assert options.wait is False
    assert options.poll.timeout == 20


def test_coerce_options_from_file_with_overrides(tmp_path):
    config = tmp_path / "cratepub.yaml"
    config.write_text("registry: internal\nargs: --no-verify\n")
    options = coerce_options(config, registry="other", dry_run=None)
    assert options.registry == "other"
    assert options.args == ("--no-verify",)
    assert options.dry_run is False


def test_coerce_options_keeps_secrets_when_copying():
    base = PublishOptions(registry_token="tok", path=Path("/ws"))
    options = coerce_options(base, wait=False)
    assert options.registry_token.get_secret_value() == "tok"
    assert options.path == Path("/ws")
    assert options.wait is False


@pytest.mark.parametrize("value", ["wait: maybe", "- a\n- b", 42])
def test_coerce_options_invalid(value):
    with pytest.raises((ValueError, TypeError)):
        coerce_options(value)


def test_poll_policy_needs_a_bound():
    with pytest.raises(ValidationError):
        PollPolicy(timeout=None, max_attempts=None)
    assert PollPolicy(timeout=None, max_attempts=3).max_attempts == 3


def test_poll_policy_delays_back_off_and_cap():
    policy = PollPolicy(initial_delay=1, backoff=2, max_delay=5)
    assert list(islice(policy.delays(), 5)) == [1, 2, 4, 5, 5]


def test_poll_policy_fixed_interval():
    policy = PollPolicy(initial_delay=3, backoff=1)
    assert list(islice(policy.delays(), 3)) == [3, 3, 3]
