"""
Service counters, published as CloudWatch EMF through Powertools Metrics.

Powertools keeps metric values until they are flushed, which a Lambda does
once per invocation. A long-running service has no invocation boundary, so
the counts are kept here as well and published on demand (after every
scheduled flush and at shutdown).
"""

import logging
import threading
from collections import Counter
from typing import Optional

from aws_lambda_powertools import Metrics
from aws_lambda_powertools.metrics import MetricUnit

logger = logging.getLogger(__name__)

NAMESPACE = "EventReceiver"

INGEST_REQUESTS = "IngestRequests"
ACCEPTED_REQUESTS = "AcceptedRequests"
EVENTS_PROCESSED = "EventsProcessed"
BATCHES_STORED = "BatchesStored"
PROCESSING_ERRORS = "ProcessingErrors"
UPLOAD_RETRIES = "UploadRetries"
EVENT_PROCESSING_TIME = "EventProcessingTime"


class ServiceMetrics:
    """Thread-safe counters that mirror what is emitted to CloudWatch."""

    def __init__(self, service: Optional[str] = None, namespace: str = NAMESPACE):
        self._metrics = Metrics(namespace=namespace, service=service)
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._pending = False

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counts[name] += value
            self._metrics.add_metric(name=name, unit=MetricUnit.Count, value=value)
            self._pending = True

    def record_time(self, name: str, milliseconds: float) -> None:
        with self._lock:
            self._metrics.add_metric(
                name=name, unit=MetricUnit.Milliseconds, value=milliseconds
            )
            self._pending = True

    def count(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def publish(self) -> None:
        """Emits everything recorded since the last publish as one EMF blob."""
        with self._lock:
            if not self._pending:
                return
            try:
                self._metrics.flush_metrics()
            except Exception:
                logger.exception("Failed to publish metrics.")
            self._pending = False
