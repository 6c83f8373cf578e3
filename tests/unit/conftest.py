"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from event_receiver.clients import S3Client
from event_receiver.config import AppConfig, BatchSettings, S3Settings
from event_receiver.metrics import ServiceMetrics
from event_receiver.schemas import Event


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables Powertools reads.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "event-receiver-test")
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "EventReceiverTest")
    yield
    os.environ.clear()
    os.environ.update(original)


class RecordingUploader:
    """Stands in for `Uploader`; remembers every batch it was asked to store."""

    def __init__(self, fail_with: Exception | None = None):
        self.calls: list[tuple[str, list[Event]]] = []
        self.entered = threading.Event()
        self.called = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def store(self, events, tier):
        self.entered.set()
        self.release.wait()
        with self._lock:
            self.calls.append((tier, list(events)))
        self.called.set()
        if self.fail_with is not None:
            raise self.fail_with
        return f"{tier}/2024-03-20/key.json"

    def bodies(self, tier: str | None = None) -> list[list[str]]:
        with self._lock:
            return [
                [event.body for event in events]
                for call_tier, events in self.calls
                if tier is None or call_tier == tier
            ]


@pytest.fixture
def make_event():
    """Factory for events with a fixed timestamp."""

    def _make(body: str = "hi", timestamp: datetime | None = None) -> Event:
        return Event(
            timestamp=timestamp or datetime(2024, 3, 20, 10, 0, tzinfo=timezone.utc),
            body=body,
        )

    return _make


@pytest.fixture
def recording_uploader() -> RecordingUploader:
    return RecordingUploader()


@pytest.fixture
def metrics() -> ServiceMetrics:
    return ServiceMetrics(service="event-receiver-test")


@pytest.fixture
def mock_s3_client() -> MagicMock:
    """Yields a MagicMock shaped like our S3Client wrapper."""
    return MagicMock(spec=S3Client)


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        allowed_customer_tiers=("premium", "standard"),
        s3=S3Settings(
            bucket_name="events-bucket",
            region="eu-west-1",
            access_key="AKIATEST",
            secret_key="secret",
        ),
        batch=BatchSettings(max_batch_size_bytes=1000, max_batch_delay_seconds=60),
        service_name="event-receiver-test",
        log_level="INFO",
        server_host="127.0.0.1",
        server_port=8080,
    )
