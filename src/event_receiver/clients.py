# src/event_receiver/clients.py

"""
Client wrapper for interacting with the S3 object store.

This class provides a clean, abstracted interface over a raw boto3 client,
making the batching and upload logic easier to read, test, and maintain. Every
botocore failure is translated into one of our own exception types so that
callers can decide on retries from the exception class alone.
"""

import logging
from typing import TYPE_CHECKING, Any, NoReturn, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from .config import S3Settings
from .exceptions import (
    S3AccessDeniedError,
    S3BucketNotFoundError,
    S3Error,
    S3RequestError,
    S3ServiceUnavailableError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5
READ_TIMEOUT_SECONDS = 5

_THROTTLING_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown"}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}
_ACCESS_DENIED_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
_BUCKET_NOT_FOUND_CODES = {"NoSuchBucket"}

# Covers timeouts, refused or dropped connections, proxy and TLS failures.
_NETWORK_ERRORS = (BotoConnectionError, HTTPClientError)


def build_boto_s3_client(settings: S3Settings) -> "S3ClientType":
    """
    Creates a boto3 S3 client with static credentials and fixed timeouts.

    SDK-level retries are disabled: the Uploader owns the retry policy, and
    stacking both would multiply the number of attempts per batch.
    """
    boto_config = Config(
        region_name=settings.region,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
        read_timeout=READ_TIMEOUT_SECONDS,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    return boto3.client(
        "s3",
        region_name=settings.region,
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        config=boto_config,
    )


def classify_client_error(error: ClientError, bucket: str, key: Optional[str] = None) -> S3Error:
    """Maps a botocore ClientError onto our retryable / non-retryable S3 errors."""
    error_code = error.response.get("Error", {}).get("Code", "")
    error_message = error.response.get("Error", {}).get("Message", "")
    status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    context: dict[str, Any] = {
        "aws_error_code": error_code,
        "aws_error_message": error_message,
        "status_code": status_code,
    }

    if error_code in _THROTTLING_CODES or status_code == 429:
        return S3ThrottlingError(bucket=bucket, key=key, context=context)
    if error_code in _TIMEOUT_CODES:
        return S3TimeoutError(bucket=bucket, key=key, context=context)
    if status_code >= 500:
        return S3ServiceUnavailableError(
            bucket=bucket, key=key, status_code=status_code, context=context
        )
    if error_code in _ACCESS_DENIED_CODES or status_code in (401, 403):
        return S3AccessDeniedError(bucket=bucket, key=key, context=context)
    # HeadBucket reports a missing bucket as a bare 404 with no error body.
    if error_code in _BUCKET_NOT_FOUND_CODES or (key is None and status_code == 404):
        return S3BucketNotFoundError(bucket=bucket, key=key, context=context)
    return S3RequestError(
        reason=error_message or error_code or "unknown client error",
        bucket=bucket,
        key=key,
        context=context,
    )


class S3Client:
    """
    A wrapper for S3 client operations used by the event receiver.
    """

    def __init__(self, s3_client: "S3ClientType"):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
        """
        self._client = s3_client

    def put_json(self, bucket: str, key: str, body: str) -> None:
        """Writes *body* as a single ``application/json`` object."""
        logger.debug("Uploading object", extra={"bucket": bucket, "key": key})
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            raise classify_client_error(e, bucket, key) from e
        except _NETWORK_ERRORS as e:
            self._raise_timeout(e, bucket, key)
        logger.debug("Upload (PUT) completed successfully", extra={"bucket": bucket, "key": key})

    def head_bucket(self, bucket: str) -> None:
        """Verifies that *bucket* exists and is reachable with our credentials."""
        try:
            self._client.head_bucket(Bucket=bucket)
        except ClientError as e:
            raise classify_client_error(e, bucket) from e
        except _NETWORK_ERRORS as e:
            self._raise_timeout(e, bucket, None)

    @staticmethod
    def _raise_timeout(error: Exception, bucket: str, key: Optional[str]) -> NoReturn:
        raise S3TimeoutError(
            bucket=bucket,
            key=key,
            context={"connection_error": str(error), "error_type": type(error).__name__},
        ) from error
