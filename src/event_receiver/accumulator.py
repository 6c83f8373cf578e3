# src/event_receiver/accumulator.py

"""
Core batching logic for the Event Receiver service.

The `BatchAccumulator` keeps one in-memory buffer per customer tier. Events are
appended under a per-tier lock; when a buffer's estimated size reaches the
configured threshold (or when `flush_all` runs on the scheduler's cadence),
its contents are swapped into an immutable `Batch` in a single locked step and
handed to the upload pool. No lock is ever held while the Uploader talks to
the network.

Ownership rules:
- Accumulating buffers belong to the accumulator alone.
- A detached `Batch` belongs to the upload pool until `Uploader.store` returns.
- Failed batches are dropped and counted, never re-buffered.
- Size-triggered batches of one tier reach the Uploader one at a time, in
  detach order. Batches detached by `flush_all` are dispatched on their own.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from .exceptions import AccumulatorClosedError, EventReceiverError, get_error_context
from .metrics import (
    BATCHES_STORED,
    EVENT_PROCESSING_TIME,
    EVENTS_PROCESSED,
    PROCESSING_ERRORS,
    ServiceMetrics,
)
from .schemas import Batch, Event, estimate_event_size
from .uploader import Uploader

logger = logging.getLogger(__name__)


class _TierBuffer:
    """
    The accumulating events of one tier, guarded by `lock`.

    Size-triggered batches wait in `queued` and are stored one at a time by a
    single pool task per tier; `uploading` is True while that task runs.
    """

    __slots__ = ("lock", "events", "size_bytes", "queued", "uploading")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.events: list[Event] = []
        self.size_bytes = 0
        self.queued: deque[Batch] = deque()
        self.uploading = False

    def detach(self, tier: str) -> Optional[Batch]:
        """Moves the contents into a new Batch. Caller must hold `lock`."""
        if not self.events:
            return None
        batch = Batch(tier=tier, events=tuple(self.events), size_bytes=self.size_bytes)
        self.events = []
        self.size_bytes = 0
        return batch


class BatchAccumulator:
    """Per-tier event buffers with size- and time-triggered flushes."""

    def __init__(
        self,
        uploader: Uploader,
        max_batch_size_bytes: int,
        metrics: Optional[ServiceMetrics] = None,
        max_workers: int = 4,
    ):
        if max_batch_size_bytes <= 0:
            raise ValueError("max_batch_size_bytes must be positive")
        self._uploader = uploader
        self._max_batch_size_bytes = max_batch_size_bytes
        self._metrics = metrics or ServiceMetrics()

        self._buffers: dict[str, _TierBuffer] = {}
        self._buffers_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="batch-upload"
        )
        # Pool future -> number of batches it carries that are not in a tier queue.
        self._in_flight: dict[Future, int] = {}
        self._in_flight_lock = threading.Lock()
        self._closed = False

    # --- Public API ---

    def admit(self, event: Event, tier: str) -> None:
        """
        Buffers *event* for *tier*. If the buffer reaches the size threshold it
        is detached and queued for upload behind any earlier size-triggered
        batch of the same tier; this call never waits on I/O.
        """
        if self._closed:
            raise AccumulatorClosedError(tier=tier)

        started = time.perf_counter()
        buffer = self._buffer_for(tier)
        batch = None
        start_uploading = False
        with buffer.lock:
            buffer.events.append(event)
            buffer.size_bytes += estimate_event_size(event)
            if buffer.size_bytes >= self._max_batch_size_bytes:
                batch = buffer.detach(tier)
                buffer.queued.append(batch)
                start_uploading = not buffer.uploading
                buffer.uploading = True

        self._metrics.increment(EVENTS_PROCESSED)
        if batch is not None:
            logger.debug(
                "Size threshold reached, queueing batch",
                extra={"tier": tier, "events": len(batch), "size_bytes": batch.size_bytes},
            )
        if start_uploading:
            self._submit(self._upload_queued, buffer, carried=0)
        self._metrics.record_time(
            EVENT_PROCESSING_TIME, (time.perf_counter() - started) * 1000
        )

    def flush_all(self) -> int:
        """
        Detaches every non-empty buffer and schedules it for upload.

        Tiers first seen while this runs may be left for the next call.
        Returns the number of batches dispatched.
        """
        with self._buffers_lock:
            snapshot = list(self._buffers.items())

        dispatched = 0
        for tier, buffer in snapshot:
            with buffer.lock:
                batch = buffer.detach(tier)
            if batch is not None:
                self._dispatch(batch)
                dispatched += 1

        if dispatched:
            logger.debug("Flushed buffers", extra={"batches": dispatched})
        return dispatched

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Flushes every buffer and blocks until all dispatched batches (including
        ones dispatched earlier) have been stored or have failed for good.

        Returns False if *timeout* elapsed with uploads still outstanding.
        """
        dispatched = self.flush_all()
        with self._in_flight_lock:
            outstanding = set(self._in_flight)

        _, not_done = wait(outstanding, timeout=timeout)
        if not_done:
            logger.warning(
                "Drain timed out with uploads still in flight",
                extra={"outstanding_batches": len(not_done), "timeout_seconds": timeout},
            )
            return False

        logger.info(
            "Drain complete",
            extra={"flushed_batches": dispatched, "awaited_batches": len(outstanding)},
        )
        return True

    def close(self, cancel_pending: bool = False) -> None:
        """
        Stops accepting events and shuts the upload pool down. With
        *cancel_pending*, batches that have not started uploading are dropped.
        """
        self._closed = True
        if cancel_pending:
            dropped = 0
            with self._buffers_lock:
                buffers = list(self._buffers.values())
            for buffer in buffers:
                with buffer.lock:
                    dropped += len(buffer.queued)
                    buffer.queued.clear()

            with self._in_flight_lock:
                outstanding = list(self._in_flight.items())
            dropped += sum(carried for future, carried in outstanding if future.cancel())
            if dropped:
                self._metrics.increment(PROCESSING_ERRORS, dropped)
                logger.error(
                    "Dropped batches that never started uploading",
                    extra={"cancelled_batches": dropped},
                )
        self._executor.shutdown(wait=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_event_count(self, tier: Optional[str] = None) -> int:
        """Number of buffered (not yet detached) events, for one tier or all."""
        with self._buffers_lock:
            if tier is not None:
                buffers = [self._buffers[tier]] if tier in self._buffers else []
            else:
                buffers = list(self._buffers.values())

        total = 0
        for buffer in buffers:
            with buffer.lock:
                total += len(buffer.events)
        return total

    def pending_tiers(self) -> list[str]:
        """Tiers whose buffers currently hold at least one event."""
        with self._buffers_lock:
            snapshot = list(self._buffers.items())
        tiers = []
        for tier, buffer in snapshot:
            with buffer.lock:
                if buffer.events:
                    tiers.append(tier)
        return tiers

    @property
    def in_flight_count(self) -> int:
        with self._in_flight_lock:
            return sum(1 for future in self._in_flight if not future.done())

    # --- Internals ---

    def _buffer_for(self, tier: str) -> _TierBuffer:
        buffer = self._buffers.get(tier)
        if buffer is None:
            with self._buffers_lock:
                buffer = self._buffers.setdefault(tier, _TierBuffer())
        return buffer

    def _dispatch(self, batch: Batch) -> None:
        self._submit(self._process_batch, batch, carried=1)

    def _submit(self, task: Callable[[Any], None], arg: Any, carried: int) -> None:
        try:
            future = self._executor.submit(task, arg)
        except RuntimeError:
            # The pool is gone (shutdown raced with this flush); run inline
            # rather than lose the batch.
            logger.warning("Upload pool is shut down, storing inline")
            task(arg)
            return

        with self._in_flight_lock:
            self._in_flight[future] = carried
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._in_flight_lock:
            self._in_flight.pop(future, None)

    def _upload_queued(self, buffer: _TierBuffer) -> None:
        """Stores the tier's queued size-triggered batches, oldest first."""
        while True:
            with buffer.lock:
                if not buffer.queued:
                    buffer.uploading = False
                    return
                batch = buffer.queued.popleft()
            self._process_batch(batch)

    def _process_batch(self, batch: Batch) -> None:
        try:
            key = self._uploader.store(batch.events, batch.tier)
        except EventReceiverError as e:
            self._metrics.increment(PROCESSING_ERRORS)
            logger.error(
                f"Dropping batch after upload failure: {e}",
                extra={
                    "tier": batch.tier,
                    "events": len(batch),
                    "error": get_error_context(e),
                },
            )
        except Exception:
            self._metrics.increment(PROCESSING_ERRORS)
            logger.exception(
                "Unexpected error storing batch. Dropping it.",
                extra={"tier": batch.tier, "events": len(batch)},
            )
        else:
            self._metrics.increment(BATCHES_STORED)
            logger.info(
                f"Processed batch of {len(batch)} events for tier {batch.tier}",
                extra={"tier": batch.tier, "key": key, "size_bytes": batch.size_bytes},
            )
