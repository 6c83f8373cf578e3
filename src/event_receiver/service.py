"""
Process lifecycle for the Event Receiver service.

This module is the main entry point. It is responsible for:
1.  Configuring AWS Lambda Powertools structured logging for the process.
2.  Building the S3 client from static credentials and verifying, before
    anything else starts, that the destination bucket is reachable.
3.  Wiring the Uploader, BatchAccumulator, FlushScheduler and HTTP app.
4.  Shutting down gracefully: stop the scheduler, drain every buffer within
    the shutdown budget, then close the upload pool.
"""

import logging
import signal
import sys
import threading
from typing import Optional

from aws_lambda_powertools import Logger
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from flask import Flask

from .accumulator import BatchAccumulator
from .api import create_app
from .clients import S3Client, build_boto_s3_client
from .config import AppConfig, get_config
from .exceptions import BucketUnavailableError, EventReceiverError, S3Error, get_error_context
from .metrics import ServiceMetrics
from .scheduler import FlushScheduler
from .uploader import Uploader

logger = logging.getLogger(__name__)


def configure_logging(config: AppConfig) -> Logger:
    """Creates the service Logger and shares its JSON formatting with our modules."""
    service_logger = Logger(service=config.service_name, level=config.log_level)
    copy_config_to_registered_loggers(
        source_logger=service_logger, include={__package__ or "event_receiver"}
    )
    return service_logger


def verify_bucket_access(s3_client: S3Client, bucket: str) -> None:
    """Fails startup unless *bucket* answers a HeadBucket request."""
    logger.info("Verifying S3 bucket access...", extra={"bucket": bucket})
    try:
        s3_client.head_bucket(bucket)
    except S3Error as e:
        logger.error(
            "Failed to access S3 bucket", extra={"bucket": bucket, "error": get_error_context(e)}
        )
        raise BucketUnavailableError(bucket=bucket, reason=e.message) from e
    logger.info("Successfully connected to S3 bucket", extra={"bucket": bucket})


class EventReceiverService:
    """Owns the long-lived components and their start/stop order."""

    def __init__(
        self,
        accumulator: BatchAccumulator,
        scheduler: FlushScheduler,
        app: Flask,
        metrics: ServiceMetrics,
    ):
        self.accumulator = accumulator
        self.scheduler = scheduler
        self.app = app
        self.metrics = metrics
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    @classmethod
    def from_config(
        cls, config: AppConfig, s3_client: Optional[S3Client] = None
    ) -> "EventReceiverService":
        metrics = ServiceMetrics(service=config.service_name)
        if s3_client is None:
            s3_client = S3Client(s3_client=build_boto_s3_client(config.s3))

        verify_bucket_access(s3_client, config.s3.bucket_name)

        uploader = Uploader(s3_client, bucket=config.s3.bucket_name, metrics=metrics)
        accumulator = BatchAccumulator(
            uploader,
            max_batch_size_bytes=config.batch.max_batch_size_bytes,
            metrics=metrics,
            max_workers=config.batch.upload_workers,
        )
        scheduler = FlushScheduler(
            accumulator,
            interval_seconds=config.batch.max_batch_delay_seconds,
            metrics=metrics,
        )
        app = create_app(accumulator, config, metrics)
        return cls(accumulator, scheduler, app, metrics)

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> bool:
        """Stops and drains everything. Returns True if the drain completed in time."""
        with self._shutdown_lock:
            if self._shut_down:
                return True
            self._shut_down = True

        drained = self.scheduler.shutdown()
        self.accumulator.close(cancel_pending=not drained)
        self.metrics.publish()
        return drained


def _exit_on_sigterm(signum, frame):
    # Turn SIGTERM into a normal interpreter exit so the shutdown path runs.
    sys.exit(0)


def main() -> None:
    """Console entry point: load config, start the service and serve HTTP."""
    config = get_config()
    service_logger = configure_logging(config)

    try:
        service = EventReceiverService.from_config(config)
    except EventReceiverError as e:
        service_logger.critical(
            "Service failed to initialize", extra={"error": get_error_context(e)}
        )
        raise

    service.start()
    signal.signal(signal.SIGTERM, _exit_on_sigterm)
    try:
        service.app.run(host=config.server_host, port=config.server_port, threaded=True)
    finally:
        service.shutdown()
