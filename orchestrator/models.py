"""Pydantic models that capture publish domain concepts."""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Iterator, Mapping

import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .versioning import Version, VersionReq

VersionField = Annotated[Version, BeforeValidator(Version.parse), PlainSerializer(str)]
VersionReqField = Annotated[VersionReq, BeforeValidator(VersionReq.parse), PlainSerializer(str)]

DEFAULT_API_URL = "https://crates.io/api/v1"


class DependencyKind(str, Enum):
    NORMAL = "normal"
    BUILD = "build"
    DEV = "dev"


class Dependency(BaseModel):
    """A dependency as declared in a manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Package name in the registry")
    requirement: VersionReqField | None = None
    path: Path | None = Field(default=None, description="Resolved local path, if any")
    kind: DependencyKind = DependencyKind.NORMAL

    @property
    def orders(self) -> bool:
        """Whether this dependency constrains the publish order."""
        # cargo strips dev-dependencies from the published manifest
        return self.kind is not DependencyKind.DEV


class Package(BaseModel):
    """Immutable snapshot of a discovered package."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: VersionField
    path: Path = Field(default=Path("."), description="Package directory")
    dependencies: tuple[Dependency, ...] = ()
    published: bool | None = Field(default=None, description="None while unknown")

    def with_published(self, value: bool) -> Package:
        """Return a copy of this snapshot with the published flag set."""
        return self.model_copy(update={"published": value})

    def ordering_dependencies(self) -> Iterator[Dependency]:
        return (dep for dep in self.dependencies if dep.orders)

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


class PollPolicy(BaseModel):
    """Bounded polling used while waiting for a version to show up."""

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(5.0, ge=0, description="Seconds before the second query")
    backoff: float = Field(1.5, ge=1.0, description="Delay multiplier, 1.0 for a fixed interval")
    max_delay: float = Field(30.0, ge=0)
    timeout: float | None = Field(300.0, gt=0, description="Total seconds before giving up")
    max_attempts: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def _bounded(self) -> PollPolicy:
        if self.timeout is None and self.max_attempts is None:
            raise ValueError("poll policy needs a timeout or max_attempts")
        return self

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry, forever."""
        delay = self.initial_delay
        while True:
            yield min(delay, self.max_delay)
            delay = delay * self.backoff


class PublishOptions(BaseModel):
    """Run configuration, parsed once at the CLI boundary."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path = Field(default=Path("."), description="Workspace root")
    args: tuple[str, ...] = Field(default=(), description="Extra args forwarded to cargo publish")
    registry: str | None = None
    registry_token: SecretStr | None = None
    dry_run: bool = False
    wait: bool = True
    github_token: SecretStr | None = None
    check_repo: bool = True
    api_url: str = DEFAULT_API_URL
    index_url: str | None = None
    poll: PollPolicy = Field(default_factory=PollPolicy)

    @field_validator("args", mode="before")
    @classmethod
    def _split_args(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(arg for arg in re.split(r"\s+", value) if arg)
        return value

    @field_validator("registry", "registry_token", "github_token", "index_url", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def token_env_var(self) -> str:
        return registry_token_env(self.registry)


# ---------------------------------------------------------------------------
# helpers


def registry_token_env(registry: str | None) -> str:
    """Name of the cargo environment variable holding the token for ``registry``."""
    if not registry:
        return "CARGO_REGISTRY_TOKEN"
    key = re.sub(r"[^0-9A-Za-z]", "_", registry).upper()
    return f"CARGO_REGISTRIES_{key}_TOKEN"


def coerce_options(value: Any, **overrides: Any) -> PublishOptions:
    """Normalize supported inputs into a PublishOptions instance.

    ``value`` may be an existing instance, a mapping, YAML/JSON text, a path
    to a YAML file or None. ``overrides`` win over ``value``; None overrides
    are ignored so unset CLI options fall through to the config file.
    """
    payload: dict[str, Any]
    if value is None:
        payload = {}
    elif isinstance(value, PublishOptions):
        payload = value.model_dump(mode="python")
        for key in ("registry_token", "github_token"):
            secret = getattr(value, key)
            payload[key] = secret.get_secret_value() if secret is not None else None
    elif isinstance(value, Mapping):
        payload = dict(value)
    elif isinstance(value, Path):
        payload = _load_text_payload(value.read_text())
    elif isinstance(value, (str, bytes)):
        payload = _load_text_payload(value)
    else:
        raise TypeError("Unsupported value for publish options")
    payload.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return PublishOptions.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid publish options: {exc}") from exc


def _load_text_payload(raw: str | bytes) -> dict[str, Any]:
    """Interpret raw text as YAML first, falling back to JSON."""
    text = raw.decode() if isinstance(raw, bytes) else raw
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError:
        loaded = json.loads(text)
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ValueError("publish options must be a mapping")
    return dict(loaded)


__all__ = [
    "DEFAULT_API_URL",
    "Dependency",
    "DependencyKind",
    "Package",
    "PollPolicy",
    "PublishOptions",
    "coerce_options",
    "registry_token_env",
]
