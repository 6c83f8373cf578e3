# src/event_receiver/uploader.py

"""
Writes detached batches to the object store.

Each call serializes one batch to a JSON array, picks a fresh key of the form
``<tier>/<YYYY-MM-DD>/<uuid4>.json`` and PUTs it. Transient failures
(throttling, timeouts, 5xx) are retried with exponential backoff; anything
else fails immediately. A batch that still fails is reported to the caller
and is never handed back to the accumulator.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from .clients import S3Client
from .exceptions import (
    S3Error,
    UploadRetriesExhaustedError,
    get_error_context,
    is_retryable_error,
)
from .metrics import UPLOAD_RETRIES, ServiceMetrics
from .schemas import Event

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2.0


def generate_storage_key(tier: str, now: Optional[datetime] = None) -> str:
    """Returns ``<tier>/<UTC date>/<random uuid4>.json``."""
    now = now or datetime.now(timezone.utc)
    return f"{tier}/{now.astimezone(timezone.utc).strftime('%Y-%m-%d')}/{uuid.uuid4()}.json"


def serialize_events(events: Sequence[Event]) -> str:
    """Serializes *events* as a JSON array, preserving their order."""
    return json.dumps([event.to_wire() for event in events], separators=(",", ":"))


class Uploader:
    """Stateless batch writer; safe to call from many threads at once."""

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        metrics: Optional[ServiceMetrics] = None,
        max_attempts: int = MAX_ATTEMPTS,
        initial_backoff_seconds: float = INITIAL_BACKOFF_SECONDS,
        backoff_multiplier: float = BACKOFF_MULTIPLIER,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._s3_client = s3_client
        self._bucket = bucket
        self._metrics = metrics
        self._max_attempts = max_attempts
        self._initial_backoff_seconds = initial_backoff_seconds
        self._backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self._clock = clock

    def store(self, events: Sequence[Event], tier: str) -> str:
        """
        Uploads *events* for *tier* and returns the key that was written.

        Raises:
            NonRetryableError: the store rejected the request outright.
            UploadRetriesExhaustedError: every attempt failed transiently.
        """
        key = generate_storage_key(tier, self._clock())
        body = serialize_events(events)

        attempt = 1
        delay = self._initial_backoff_seconds
        while True:
            try:
                self._s3_client.put_json(bucket=self._bucket, key=key, body=body)
            except S3Error as e:
                if not is_retryable_error(e):
                    raise
                if attempt >= self._max_attempts:
                    raise UploadRetriesExhaustedError(
                        tier=tier, key=key, attempts=attempt
                    ) from e
                logger.warning(
                    f"Transient upload failure, retrying in {delay:g}s",
                    extra={
                        "tier": tier,
                        "key": key,
                        "attempt": attempt,
                        "error": get_error_context(e),
                    },
                )
                if self._metrics is not None:
                    self._metrics.increment(UPLOAD_RETRIES)
                self._sleep(delay)
                delay *= self._backoff_multiplier
                attempt += 1
            else:
                logger.info(
                    f"Successfully stored {len(events)} events",
                    extra={"tier": tier, "key": key, "attempt": attempt},
                )
                return key
