import threading

import pytest

from connectors.registry_interface import OracleError
from orchestrator.models import PollPolicy
from orchestrator.polling import Cancelled, ConfirmationPoller, Confirmed, TimedOut
from orchestrator.versioning import Version

V = Version.parse("1.0.0")


class FakeClock:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class VisibleAfter:
    """Oracle that reports the version after ``n`` queries; may raise first."""

    def __init__(self, n, errors=0):
        self.n = n
        self.errors = errors
        self.calls = 0

    def is_published(self, name, version):
        self.calls += 1
        if self.calls <= self.errors:
            raise OracleError("502 Bad Gateway")
        return self.n is not None and self.calls >= self.n

    def published_at(self, name, version):
        return None


@pytest.fixture
def clock():
    return FakeClock()


def make_poller(oracle, clock, **policy):
    policy.setdefault("initial_delay", 1)
    policy.setdefault("backoff", 2)
    policy.setdefault("max_delay", 5)
    return ConfirmationPoller(oracle, PollPolicy(**policy), sleep=clock.sleep, clock=clock)


def test_confirmed_on_first_query(clock):
    result = make_poller(VisibleAfter(1), clock).poll("a", V)
    assert result == Confirmed(attempts=1, elapsed=0.0)
    assert clock.sleeps == []


def test_confirmed_after_backoff(clock):
    result = make_poller(VisibleAfter(3), clock).poll("a", V)
    assert result == Confirmed(attempts=3, elapsed=3.0)
    assert clock.sleeps == [1, 2]


def test_times_out_without_sleeping_past_deadline(clock):
    oracle = VisibleAfter(None)
    result = make_poller(oracle, clock, timeout=10).poll("a", V)
    assert isinstance(result, TimedOut)
    assert clock.sleeps == [1, 2, 4, 3]
    assert result.elapsed == 10
    # one last query lands exactly on the deadline
    assert result.attempts == oracle.calls == 5


def test_max_attempts_bound(clock):
    oracle = VisibleAfter(None)
    result = make_poller(oracle, clock, timeout=None, max_attempts=3).poll("a", V)
    assert result == TimedOut(attempts=3, elapsed=3.0)
    assert oracle.calls == 3


def test_oracle_errors_count_as_not_visible(clock, caplog):
    oracle = VisibleAfter(1, errors=2)
    result = make_poller(oracle, clock).poll("a", V)
    assert result == Confirmed(attempts=3, elapsed=3.0)
    assert "502 Bad Gateway" in caplog.text


def test_cancel_ends_poll():
    cancel = threading.Event()
    cancel.set()
    oracle = VisibleAfter(None)
    poller = ConfirmationPoller(oracle, PollPolicy(initial_delay=60), cancel=cancel)
    result = poller.poll("a", V)
    assert isinstance(result, Cancelled)
    assert result.attempts == 1


def test_cancel_event_used_for_waiting():
    cancel = threading.Event()
    oracle = VisibleAfter(2)
    poller = ConfirmationPoller(oracle, PollPolicy(initial_delay=0.01, timeout=5), cancel=cancel)
    result = poller.poll("a", V)
    assert isinstance(result, Confirmed)
    assert result.attempts == 2
