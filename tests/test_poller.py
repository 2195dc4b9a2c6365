"""Tests for the background poller."""

import logging
import threading

import pytest

from homewizard_p1.device import DecodeError, TransportError
from homewizard_p1.metrics import MetricsRegistry
from homewizard_p1.poller import Poller, next_tick


class FakeClient:
    """Returns (or raises) the queued results in order."""

    url = "http://p1.test/api/v1/data"

    def __init__(self, results, on_fetch=None):
        self.results = list(results)
        self.on_fetch = on_fetch
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.on_fetch:
            self.on_fetch(self)
        result = self.results.pop(0) if self.results else TransportError("no more results")
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeStop:
    """Stands in for threading.Event; advances the fake clock instead of sleeping."""

    def __init__(self, clock, max_waits):
        self.clock = clock
        self.max_waits = max_waits
        self.waits = []

    def is_set(self):
        return len(self.waits) >= self.max_waits

    def wait(self, timeout):
        self.waits.append(timeout)
        self.clock.now += timeout
        return self.is_set()


def test_next_tick():
    assert next_tick(100.0, 100.0, 10.0) == 110.0
    assert next_tick(100.0, 103.5, 10.0) == 110.0
    assert next_tick(100.0, 110.0, 10.0) == 120.0
    # A poll that overran two ticks waits for the next one, it does not burst
    assert next_tick(100.0, 125.0, 10.0) == 130.0


def test_interval_must_be_positive(reading):
    with pytest.raises(ValueError):
        Poller(FakeClient([reading]), MetricsRegistry(), interval=0)


def test_poll_once_success(reading):
    registry = MetricsRegistry()
    poller = Poller(FakeClient([reading]), registry)

    assert poller.poll_once() is True
    assert registry.snapshot() is reading
    assert poller.last_success is not None
    assert poller.consecutive_failures == 0


@pytest.mark.parametrize("error", [TransportError("refused"), DecodeError("missing field")])
def test_poll_failure_keeps_previous_reading(reading, error):
    registry = MetricsRegistry()
    poller = Poller(FakeClient([reading, error]), registry)

    poller.poll_once()
    before = registry.render()

    assert poller.poll_once() is False
    assert registry.snapshot() is reading
    assert registry.render() == before
    assert poller.failures_total == 1


def test_failure_before_first_success_leaves_registry_empty():
    registry = MetricsRegistry()
    poller = Poller(FakeClient([TransportError("timed out")]), registry)

    assert poller.poll_once() is False
    assert registry.snapshot() is None
    assert registry.render() == ""


def test_consecutive_failures_and_recovery(reading, caplog):
    registry = MetricsRegistry()
    errors = [TransportError("refused")] * 3
    poller = Poller(FakeClient(errors + [reading]), registry)

    with caplog.at_level(logging.INFO, logger="homewizard_p1.poller"):
        for _ in range(3):
            assert poller.poll_once() is False
        assert poller.consecutive_failures == 3

        assert poller.poll_once() is True

    assert poller.consecutive_failures == 0
    assert poller.failures_total == 3
    assert poller.polls_total == 4
    assert "transport" in caplog.text
    assert "reachable again after 3" in caplog.text


def test_unexpected_error_does_not_escape(reading, caplog):
    registry = MetricsRegistry()
    poller = Poller(FakeClient([RuntimeError("boom"), reading]), registry)

    with caplog.at_level(logging.ERROR, logger="homewizard_p1.poller"):
        assert poller.poll_once() is False

    assert "Unexpected error" in caplog.text
    assert poller.poll_once() is True


def test_run_schedule_is_anchored(reading):
    """Slow polls skip missed ticks without shifting the schedule."""
    clock = FakeClock()
    durations = iter([1.0, 25.0, 2.0])

    def slow_fetch(client):
        clock.now += next(durations)

    client = FakeClient([reading] * 3, on_fetch=slow_fetch)
    stop = FakeStop(clock, max_waits=3)
    poller = Poller(client, MetricsRegistry(), interval=10.0, clock=clock)

    poller.run(stop)

    # polls start at t=0, t=10 and t=40 (the t=20 and t=30 ticks fell inside the slow poll)
    assert stop.waits == [9.0, 5.0, 8.0]
    assert client.calls == 3


def test_run_stops_when_requested(reading):
    stop = threading.Event()

    def stop_after_three(client):
        if client.calls == 3:
            stop.set()

    client = FakeClient([reading] * 3, on_fetch=stop_after_three)
    registry = MetricsRegistry()
    poller = Poller(client, registry, interval=0.01)

    poller.run(stop)

    assert client.calls == 3
    assert registry.snapshot() is reading


def test_start_and_stop_thread(reading):
    polled = threading.Event()
    client = FakeClient([reading], on_fetch=lambda client: polled.set())
    registry = MetricsRegistry()
    poller = Poller(client, registry, interval=60.0)

    poller.start()
    assert polled.wait(5)
    assert poller.running

    assert poller.stop(timeout=5) is True
    assert not poller.running
    assert registry.snapshot() is reading
