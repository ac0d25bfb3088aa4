"""Confirmation polling: wait until a published version shows up in the registry."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Union

from connectors.registry_interface import OracleError, VersionOracle

from .models import PollPolicy
from .versioning import Version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Confirmed:
    attempts: int
    elapsed: float


@dataclass(frozen=True)
class TimedOut:
    attempts: int
    elapsed: float


@dataclass(frozen=True)
class Cancelled:
    attempts: int
    elapsed: float


PollOutcome = Union[Confirmed, TimedOut, Cancelled]


class ConfirmationPoller:
    """Query the oracle until the version is visible or the policy gives up.

    The oracle is queried right away, then after each delay of the policy.
    Oracle errors count as "not visible yet". When ``cancel`` is given, sleeps
    wait on it and a set event ends the poll with ``Cancelled``.
    """

    def __init__(
        self,
        oracle: VersionOracle,
        policy: PollPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        cancel: threading.Event | None = None,
    ) -> None:
        self.oracle = oracle
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self._clock = clock
        self._cancel = cancel

    def poll(self, name: str, version: Version) -> PollOutcome:
        policy = self.policy
        started = self._clock()
        deadline = started + policy.timeout if policy.timeout is not None else None
        delays = policy.delays()
        attempts = 0
        while True:
            attempts += 1
            if self._visible(name, version, attempts):
                return Confirmed(attempts, self._clock() - started)

            now = self._clock()
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                return TimedOut(attempts, now - started)
            delay = next(delays)
            if deadline is not None:
                if now >= deadline:
                    return TimedOut(attempts, now - started)
                delay = min(delay, deadline - now)

            logger.debug("%s %s not visible yet, retrying in %.1fs", name, version, delay)
            if self._wait(delay):
                return Cancelled(attempts, self._clock() - started)

    def _visible(self, name: str, version: Version, attempt: int) -> bool:
        try:
            return self.oracle.is_published(name, version)
        except OracleError as exc:
            logger.warning("Registry query %d for %s %s failed: %s", attempt, name, version, exc)
            return False

    def _wait(self, delay: float) -> bool:
        """Sleep for ``delay``; True if the run was cancelled meanwhile."""
        if self._cancel is None:
            self._sleep(delay)
            return False
        if self._cancel.is_set():
            return True
        return self._cancel.wait(delay)


__all__ = ["Cancelled", "ConfirmationPoller", "Confirmed", "PollOutcome", "TimedOut"]
