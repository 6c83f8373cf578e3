# src/event_receiver/scheduler.py

"""
Time-triggered flushing for the batch accumulator.

A single daemon thread fires `BatchAccumulator.flush_all` every
``interval_seconds``, measured from `start()` (fixed rate). Firings never
overlap: ticks missed while a slow firing was running are skipped, and a
manual `trigger()` that arrives mid-firing is dropped.

Lifecycle::

    INITIAL --start()--> RUNNING --shutdown()--> STOPPING --drain done--> TERMINATED
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from .accumulator import BatchAccumulator
from .metrics import ServiceMetrics

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


class SchedulerState(Enum):
    INITIAL = "INITIAL"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    TERMINATED = "TERMINATED"


def next_fire_time(scheduled: float, now: float, interval: float) -> tuple[float, int]:
    """
    Advances a fixed-rate schedule past *now*.

    *scheduled* is the tick that just fired. Returns the next tick strictly
    after *now* and the number of ticks skipped on the way.
    """
    upcoming = scheduled + interval
    if upcoming > now:
        return upcoming, 0
    skipped = int((now - upcoming) // interval) + 1
    return upcoming + skipped * interval, skipped


class FlushScheduler:
    """Drives periodic flushes and the final drain of a `BatchAccumulator`."""

    def __init__(
        self,
        accumulator: BatchAccumulator,
        interval_seconds: float,
        metrics: Optional[ServiceMetrics] = None,
        shutdown_timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._accumulator = accumulator
        self._interval = interval_seconds
        self._metrics = metrics
        self._shutdown_timeout = shutdown_timeout_seconds
        self._clock = clock

        self._state = SchedulerState.INITIAL
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._firing_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        with self._state_lock:
            if self._state is not SchedulerState.INITIAL:
                raise RuntimeError(f"Cannot start scheduler in state {self._state.value}")
            self._thread = threading.Thread(
                target=self._run,
                args=(self._clock(),),
                name="flush-scheduler",
                daemon=True,
            )
            self._state = SchedulerState.RUNNING
            self._thread.start()
        logger.info(
            "Initialized batch scheduler", extra={"interval_seconds": self._interval}
        )

    def trigger(self) -> bool:
        """Runs one firing now. Returns False if another firing is in progress."""
        if self._state is not SchedulerState.RUNNING:
            return False
        return self._fire()

    def shutdown(self) -> bool:
        """
        Stops firing, waits for an in-flight firing, then drains the
        accumulator, all within the shutdown timeout. Returns True when the
        drain finished in time. Safe to call more than once.
        """
        with self._state_lock:
            if self._state in (SchedulerState.STOPPING, SchedulerState.TERMINATED):
                return self._state is SchedulerState.TERMINATED
            was_running = self._state is SchedulerState.RUNNING
            self._state = SchedulerState.STOPPING
        logger.info("Shutting down batch scheduler")

        deadline = self._clock() + self._shutdown_timeout
        self._stop_event.set()
        if was_running and self._thread is not None:
            self._thread.join(timeout=self._shutdown_timeout)
            if self._thread.is_alive():
                logger.warning("Scheduled flush still running at shutdown.")

        remaining = max(0.0, deadline - self._clock())
        drained = self._accumulator.drain(timeout=remaining)
        if self._metrics is not None:
            self._metrics.publish()

        with self._state_lock:
            self._state = SchedulerState.TERMINATED
        logger.info("Batch scheduler terminated", extra={"drained": drained})
        return drained

    # --- Internals ---

    def _run(self, started_at: float) -> None:
        scheduled = started_at + self._interval
        while not self._stop_event.wait(max(0.0, scheduled - self._clock())):
            self._fire()
            scheduled, skipped = next_fire_time(scheduled, self._clock(), self._interval)
            if skipped:
                logger.warning(
                    "Scheduled flush overran its interval; skipping ticks",
                    extra={"skipped_ticks": skipped},
                )

    def _fire(self) -> bool:
        if not self._firing_lock.acquire(blocking=False):
            logger.debug("Flush already in progress; skipping this firing.")
            return False
        try:
            self._accumulator.flush_all()
        except Exception:
            logger.exception("Scheduled flush failed.")
        finally:
            self._firing_lock.release()
        if self._metrics is not None:
            self._metrics.publish()
        return True
