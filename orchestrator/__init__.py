"""Core publish orchestration: package models, validation, ordering and the publish loop."""

from .checker import CheckReport, check
from .errors import (
    ConfirmationTimeoutError,
    ConsistencyError,
    CratepubError,
    CycleError,
    DiscoveryError,
    PublishError,
    RunCancelledError,
)
from .models import Dependency, Package, PollPolicy, PublishOptions, coerce_options
from .publisher import PackageState, RunReport, run
from .sorter import sort
from .versioning import Version, VersionReq

__all__ = [
    "CheckReport",
    "ConfirmationTimeoutError",
    "ConsistencyError",
    "CratepubError",
    "CycleError",
    "Dependency",
    "DiscoveryError",
    "Package",
    "PackageState",
    "PollPolicy",
    "PublishError",
    "PublishOptions",
    "RunCancelledError",
    "RunReport",
    "Version",
    "VersionReq",
    "check",
    "coerce_options",
    "run",
    "sort",
]
