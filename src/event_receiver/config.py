import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache

from .exceptions import ConfigurationError, ValidationError
from .security import validate_key_segment

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_BATCH_DELAY_SECONDS = 5


@dataclass(frozen=True, slots=True)
class S3Settings:
    """Destination bucket and the static credentials used to reach it."""

    bucket_name: str
    region: str
    access_key: str
    secret_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class BatchSettings:
    """Flush triggers for the batch accumulator."""

    max_batch_size_bytes: int = DEFAULT_MAX_BATCH_SIZE_BYTES
    max_batch_delay_seconds: int = DEFAULT_MAX_BATCH_DELAY_SECONDS
    upload_workers: int = 4


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    allowed_customer_tiers: tuple[str, ...]
    s3: S3Settings

    # --- Optional Variables with Defaults ---
    batch: BatchSettings
    service_name: str
    log_level: str
    server_host: str
    server_port: int

    def is_tier_allowed(self, tier: str) -> bool:
        return tier in self.allowed_customer_tiers

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            raw_tiers = os.environ["APP_ALLOWED_CUSTOMER_TIERS"]
            bucket_name = os.environ["APP_S3_BUCKET_NAME"]
            region = os.environ["APP_S3_REGION"]
            access_key = os.environ["APP_S3_ACCESS_KEY"]
            secret_key = os.environ["APP_S3_SECRET_KEY"]

            allowed_customer_tiers = tuple(
                validate_key_segment(tier.strip())
                for tier in raw_tiers.split(",")
                if tier.strip()
            )
            if not allowed_customer_tiers:
                raise ValueError("APP_ALLOWED_CUSTOMER_TIERS must list at least one tier.")

            for name, value in (
                ("APP_S3_BUCKET_NAME", bucket_name),
                ("APP_S3_REGION", region),
                ("APP_S3_ACCESS_KEY", access_key),
                ("APP_S3_SECRET_KEY", secret_key),
            ):
                if not value.strip():
                    raise ValueError(f"{name} must not be empty.")

            # --- Handle optional and numeric variables with validation ---
            max_batch_size_bytes = int(
                os.getenv("APP_BATCH_MAX_BATCH_SIZE_BYTES", str(DEFAULT_MAX_BATCH_SIZE_BYTES))
            )
            if max_batch_size_bytes <= 0:
                raise ValueError("APP_BATCH_MAX_BATCH_SIZE_BYTES must be a positive integer.")

            max_batch_delay_seconds = int(
                os.getenv("APP_BATCH_MAX_BATCH_DELAY_SECONDS", str(DEFAULT_MAX_BATCH_DELAY_SECONDS))
            )
            if max_batch_delay_seconds <= 0:
                raise ValueError("APP_BATCH_MAX_BATCH_DELAY_SECONDS must be a positive integer.")

            upload_workers = int(os.getenv("APP_BATCH_UPLOAD_WORKERS", "4"))
            if upload_workers <= 0:
                raise ValueError("APP_BATCH_UPLOAD_WORKERS must be a positive integer.")

            service_name = os.getenv("SERVICE_NAME", "event-receiver")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

            server_host = os.getenv("SERVER_HOST", "0.0.0.0")
            server_port = int(os.getenv("SERVER_PORT", "8080"))
            if not 0 < server_port < 65536:
                raise ValueError("SERVER_PORT must be between 1 and 65535.")

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid customer tier in APP_ALLOWED_CUSTOMER_TIERS: {e.message}",
                context=e.context,
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            allowed_customer_tiers=allowed_customer_tiers,
            s3=S3Settings(
                bucket_name=bucket_name,
                region=region,
                access_key=access_key,
                secret_key=secret_key,
            ),
            batch=BatchSettings(
                max_batch_size_bytes=max_batch_size_bytes,
                max_batch_delay_seconds=max_batch_delay_seconds,
                upload_workers=upload_workers,
            ),
            service_name=service_name,
            log_level=log_level,
            server_host=server_host,
            server_port=server_port,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
