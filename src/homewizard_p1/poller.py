"""Background poller feeding the metrics registry.

Polls the P1 meter on a fixed cadence. Ticks are anchored to the loop start,
so a slow poll does not shift the schedule, and polls never overlap: a tick
that passes while a poll is still running is skipped.
"""

import logging
import math
import threading
import time
from typing import Callable

from .device import DeviceClient, DeviceError
from .metrics import MetricsRegistry

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10.0


def next_tick(start: float, now: float, interval: float) -> float:
    """Return the first tick strictly after `now` on the grid start + k * interval."""
    elapsed = max(now - start, 0.0)
    return start + (math.floor(elapsed / interval) + 1) * interval


class Poller:
    """Periodically fetch a reading and publish it.

    A failed poll is logged and leaves the registry untouched; the last good
    reading stays published until the next successful poll.
    """

    def __init__(
        self,
        client: DeviceClient,
        registry: MetricsRegistry,
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.client = client
        self.registry = registry
        self.interval = interval
        self.clock = clock

        self.last_attempt: float | None = None
        self.last_success: float | None = None
        self.polls_total = 0
        self.failures_total = 0
        self.consecutive_failures = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def poll_once(self) -> bool:
        """Run a single poll. Returns True if the registry was updated."""
        started = self.clock()
        self.last_attempt = started
        self.polls_total += 1

        try:
            reading = self.client.fetch()
        except DeviceError as e:
            self._record_failure()
            logger.warning(
                "Failed to poll P1 meter (%s): %s [%d consecutive]",
                e.category,
                e,
                self.consecutive_failures,
            )
            return False
        except Exception:
            self._record_failure()
            logger.exception("Unexpected error while polling P1 meter")
            return False

        self.registry.update(reading)
        self.last_success = self.clock()

        if self.consecutive_failures:
            logger.info("P1 meter is reachable again after %d failed poll(s)", self.consecutive_failures)
        self.consecutive_failures = 0
        logger.debug("Polled P1 meter in %.3fs", self.last_success - started)
        return True

    def _record_failure(self) -> None:
        self.failures_total += 1
        self.consecutive_failures += 1

    def run(self, stop: threading.Event | None = None) -> None:
        """Poll until `stop` is set. The first poll happens immediately."""
        stop = stop or self._stop
        start = self.clock()
        logger.info("Poller started, polling %s every %ss", self.client.url, self.interval)

        while not stop.is_set():
            self.poll_once()
            now = self.clock()
            stop.wait(next_tick(start, now, self.interval) - now)

        logger.info("Poller stopped")

    def start(self) -> threading.Thread:
        """Run the poll loop in a background thread."""
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, args=(self._stop,), name="poller")
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the background thread. Returns False if it did not finish in time."""
        self._stop.set()
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
