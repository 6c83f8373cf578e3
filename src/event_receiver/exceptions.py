# src/event_receiver/exceptions.py

"""
Shared custom exceptions for the Event Receiver service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- EventReceiverError (base)
  - RetryableError (can be retried)
    - S3ThrottlingError
    - S3TimeoutError
    - S3ServiceUnavailableError
  - NonRetryableError (should not be retried)
    - ValidationError
      - InvalidEventError
      - UnauthorizedTierError
    - S3AccessDeniedError
    - S3BucketNotFoundError
    - S3RequestError
    - UploadRetriesExhaustedError
    - AccumulatorClosedError
    - ConfigurationError
    - BucketUnavailableError
"""

from typing import Any, Dict, Optional


class EventReceiverError(Exception):
    """Base exception for all Event Receiver service errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "retryable": is_retryable_error(self),
        }


class RetryableError(EventReceiverError):
    """Base class for errors that can be retried."""

    pass


class NonRetryableError(EventReceiverError):
    """Base class for errors that should not be retried."""

    pass


# === S3-Related Errors ===


class S3Error(EventReceiverError):
    """Base class for S3-related errors."""

    pass


def _s3_context(bucket: str, key: Optional[str], kwargs: Dict[str, Any]) -> Dict[str, Any]:
    # Caller-supplied context first, then our defaults on top
    context: Dict[str, Any] = {}
    if "context" in kwargs:
        context.update(kwargs.pop("context") or {})
    context.update({"bucket": bucket, "key": key})
    return context


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, bucket: str, key: Optional[str] = None, **kwargs):
        message = f"S3 request throttled for s3://{bucket}/{key or ''}"
        context = _s3_context(bucket, key, kwargs)
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations time out or the endpoint cannot be reached."""

    def __init__(self, bucket: str, key: Optional[str] = None, **kwargs):
        message = f"S3 request timed out for s3://{bucket}/{key or ''}"
        context = _s3_context(bucket, key, kwargs)
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


class S3ServiceUnavailableError(S3Error, RetryableError):
    """Raised when S3 answers with a 5xx status."""

    def __init__(self, bucket: str, key: Optional[str] = None, status_code: int = 500, **kwargs):
        message = f"S3 service error {status_code} for s3://{bucket}/{key or ''}"
        context = _s3_context(bucket, key, kwargs)
        context["status_code"] = status_code
        super().__init__(message, error_code="S3_SERVICE_UNAVAILABLE", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when the credentials are rejected or lack permission."""

    def __init__(self, bucket: str, key: Optional[str] = None, **kwargs):
        message = f"Access denied to s3://{bucket}/{key or ''}"
        context = _s3_context(bucket, key, kwargs)
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3BucketNotFoundError(S3Error, NonRetryableError):
    """Raised when the destination bucket does not exist."""

    def __init__(self, bucket: str, key: Optional[str] = None, **kwargs):
        message = f"S3 bucket not found: {bucket}"
        context = _s3_context(bucket, key, kwargs)
        super().__init__(message, error_code="S3_BUCKET_NOT_FOUND", context=context, **kwargs)


class S3RequestError(S3Error, NonRetryableError):
    """Raised for any other client-side S3 failure (malformed request and the like)."""

    def __init__(self, reason: str, bucket: str, key: Optional[str] = None, **kwargs):
        message = f"S3 request rejected: {reason}"
        context = _s3_context(bucket, key, kwargs)
        context["reason"] = reason
        super().__init__(message, error_code="S3_REQUEST_ERROR", context=context, **kwargs)


# === Upload Errors ===


class UploadRetriesExhaustedError(NonRetryableError):
    """Raised when a batch still fails transiently after the final attempt."""

    def __init__(self, tier: str, key: str, attempts: int, **kwargs):
        message = f"Upload for tier '{tier}' failed after {attempts} attempts"
        context = {"tier": tier, "key": key, "attempts": attempts}
        super().__init__(message, error_code="UPLOAD_RETRIES_EXHAUSTED", context=context, **kwargs)


# === Validation Errors ===


class ValidationError(NonRetryableError):
    """Base class for validation errors."""

    pass


class InvalidEventError(ValidationError):
    """Raised when an inbound event fails validation."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "INVALID_EVENT"
        super().__init__(message, **kwargs)


class UnauthorizedTierError(ValidationError):
    """Raised when a customer tier is not on the allow-list."""

    def __init__(self, tier: str, **kwargs):
        super().__init__(
            "Unauthorized customer tier",
            error_code="UNAUTHORIZED_TIER",
            context={"tier": tier},
            **kwargs,
        )


# === Lifecycle Errors ===


class AccumulatorClosedError(NonRetryableError):
    """Raised when an event is admitted after the accumulator was closed."""

    def __init__(self, tier: str, **kwargs):
        super().__init__(
            "Batch accumulator is shut down",
            error_code="ACCUMULATOR_CLOSED",
            context={"tier": tier},
            **kwargs,
        )


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


class BucketUnavailableError(NonRetryableError):
    """Raised at startup when the destination bucket cannot be reached."""

    def __init__(self, bucket: str, reason: str, **kwargs):
        message = f"Failed to access S3 bucket {bucket}: {reason}"
        context = {"bucket": bucket, "reason": reason}
        super().__init__(message, error_code="BUCKET_UNAVAILABLE", context=context, **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, EventReceiverError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
