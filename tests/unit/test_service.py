# tests/unit/test_service.py

"""
Tests for process wiring: startup bucket verification, component assembly and
graceful shutdown.
"""

import json
import logging
from unittest.mock import patch

import pytest
from aws_lambda_powertools import Logger

from event_receiver.exceptions import (
    BucketUnavailableError,
    S3AccessDeniedError,
    S3BucketNotFoundError,
)
from event_receiver.scheduler import SchedulerState
from event_receiver.service import (
    EventReceiverService,
    configure_logging,
    verify_bucket_access,
)


@pytest.fixture
def service(app_config, mock_s3_client):
    service = EventReceiverService.from_config(app_config, s3_client=mock_s3_client)
    yield service
    service.shutdown()


def test_verify_bucket_access_passes_when_bucket_answers(mock_s3_client):
    verify_bucket_access(mock_s3_client, "events-bucket")
    mock_s3_client.head_bucket.assert_called_once_with("events-bucket")


@pytest.mark.parametrize(
    "failure",
    [S3AccessDeniedError(bucket="events-bucket"), S3BucketNotFoundError(bucket="events-bucket")],
)
def test_verify_bucket_access_is_fatal(mock_s3_client, failure):
    mock_s3_client.head_bucket.side_effect = failure

    with pytest.raises(BucketUnavailableError) as exc_info:
        verify_bucket_access(mock_s3_client, "events-bucket")

    assert exc_info.value.__cause__ is failure


def test_from_config_aborts_when_bucket_is_unreachable(app_config, mock_s3_client):
    mock_s3_client.head_bucket.side_effect = S3AccessDeniedError(bucket="events-bucket")

    with pytest.raises(BucketUnavailableError):
        EventReceiverService.from_config(app_config, s3_client=mock_s3_client)


def test_from_config_builds_boto_client_when_none_given(app_config):
    with patch("event_receiver.service.build_boto_s3_client") as mock_build:
        service = EventReceiverService.from_config(app_config)
        service.shutdown()

    mock_build.assert_called_once_with(app_config.s3)
    mock_build.return_value.head_bucket.assert_called_once_with(Bucket="events-bucket")


def test_end_to_end_ingest_and_shutdown(service, mock_s3_client):
    """An accepted request is written to the bucket by the final drain."""
    service.start()
    assert service.scheduler.state is SchedulerState.RUNNING
    client = service.app.test_client()

    response = client.post(
        "/api/v1/ingest",
        json={"event_timestamp": "2024-03-20T10:00:00.000Z", "body": "hi"},
        headers={"X-Customer-Tier": "premium"},
    )
    assert response.status_code == 202
    assert service.accumulator.pending_event_count("premium") == 1

    assert service.shutdown() is True

    assert service.scheduler.state is SchedulerState.TERMINATED
    assert service.accumulator.closed
    mock_s3_client.put_json.assert_called_once()
    kwargs = mock_s3_client.put_json.call_args.kwargs
    assert kwargs["bucket"] == "events-bucket"
    assert kwargs["key"].startswith("premium/")
    assert json.loads(kwargs["body"]) == [
        {"event_timestamp": "2024-03-20T10:00:00.000Z", "body": "hi"}
    ]


def test_shutdown_is_idempotent(service, mock_s3_client):
    service.start()
    assert service.shutdown() is True
    assert service.shutdown() is True


def test_requests_after_shutdown_fail_with_server_error(service):
    service.start()
    service.shutdown()

    response = service.app.test_client().post(
        "/api/v1/ingest",
        json={"event_timestamp": "2024-03-20T10:00:00.000Z", "body": "late"},
        headers={"X-Customer-Tier": "premium"},
    )

    assert response.status_code == 500
    assert response.get_json()["status"] == "error"


def test_configure_logging_returns_service_logger(app_config):
    package_logger = logging.getLogger("event_receiver")
    original_handlers = list(package_logger.handlers)
    try:
        service_logger = configure_logging(app_config)
        assert isinstance(service_logger, Logger)
        assert service_logger.service == "event-receiver-test"
        assert package_logger.handlers
    finally:
        package_logger.handlers = original_handlers
