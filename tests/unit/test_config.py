# tests/unit/test_config.py

import pytest

# Import the components to be tested
from event_receiver.config import (
    DEFAULT_MAX_BATCH_DELAY_SECONDS,
    DEFAULT_MAX_BATCH_SIZE_BYTES,
    get_config,
)
from event_receiver.exceptions import ConfigurationError

REQUIRED_VARS = {
    "APP_ALLOWED_CUSTOMER_TIERS": "premium,standard",
    "APP_S3_BUCKET_NAME": "test-events-bucket",
    "APP_S3_REGION": "eu-west-1",
    "APP_S3_ACCESS_KEY": "AKIATEST",
    "APP_S3_SECRET_KEY": "super-secret",
}

OPTIONAL_VARS = [
    "APP_BATCH_MAX_BATCH_SIZE_BYTES",
    "APP_BATCH_MAX_BATCH_DELAY_SECONDS",
    "APP_BATCH_UPLOAD_WORKERS",
    "SERVICE_NAME",
    "LOG_LEVEL",
    "SERVER_HOST",
    "SERVER_PORT",
]


@pytest.fixture(autouse=True)
def clear_config_cache():
    """
    Fixture to automatically clear the lru_cache for get_config before each test.
    This ensures that each test gets a fresh configuration object based on its
    own monkeypatched environment, providing perfect test isolation.
    """
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def required_env(monkeypatch):
    """Sets only the required variables; optional ones are removed."""
    for name, value in REQUIRED_VARS.items():
        monkeypatch.setenv(name, value)
    for name in OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)


def test_get_config_happy_path(required_env, monkeypatch):
    """Tests that configuration loads correctly when all env vars are set."""
    # ARRANGE
    monkeypatch.setenv("APP_ALLOWED_CUSTOMER_TIERS", " premium , standard ,, basic ")
    monkeypatch.setenv("APP_BATCH_MAX_BATCH_SIZE_BYTES", "1000")
    monkeypatch.setenv("APP_BATCH_MAX_BATCH_DELAY_SECONDS", "2")
    monkeypatch.setenv("APP_BATCH_UPLOAD_WORKERS", "8")
    monkeypatch.setenv("SERVICE_NAME", "test-service")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("SERVER_PORT", "9090")

    # ACT
    config = get_config()

    # ASSERT
    assert config.allowed_customer_tiers == ("premium", "standard", "basic")
    assert config.is_tier_allowed("basic")
    assert not config.is_tier_allowed("platinum")
    assert config.s3.bucket_name == "test-events-bucket"
    assert config.s3.region == "eu-west-1"
    assert config.s3.access_key == "AKIATEST"
    assert config.s3.secret_key == "super-secret"
    assert config.batch.max_batch_size_bytes == 1000
    assert config.batch.max_batch_delay_seconds == 2
    assert config.batch.upload_workers == 8
    assert config.service_name == "test-service"
    assert config.log_level == "DEBUG"
    assert config.server_port == 9090


def test_get_config_uses_defaults(required_env):
    """Tests that optional variables fall back to their default values."""
    config = get_config()

    assert config.batch.max_batch_size_bytes == DEFAULT_MAX_BATCH_SIZE_BYTES == 5 * 1024 * 1024
    assert config.batch.max_batch_delay_seconds == DEFAULT_MAX_BATCH_DELAY_SECONDS == 5
    assert config.batch.upload_workers == 4
    assert config.service_name == "event-receiver"
    assert config.log_level == "INFO"
    assert config.server_host == "0.0.0.0"
    assert config.server_port == 8080


def test_secret_key_is_not_in_repr(required_env):
    config = get_config()
    assert "super-secret" not in repr(config)


@pytest.mark.parametrize("missing", sorted(REQUIRED_VARS))
def test_get_config_missing_required_env_var(required_env, monkeypatch, missing):
    """Tests that ConfigurationError is raised when a required env var is missing."""
    monkeypatch.delenv(missing)

    with pytest.raises(ConfigurationError) as exc_info:
        get_config()

    assert missing in exc_info.value.message


@pytest.mark.parametrize(
    "name, value",
    [
        ("APP_BATCH_MAX_BATCH_SIZE_BYTES", "not-a-number"),
        ("APP_BATCH_MAX_BATCH_SIZE_BYTES", "0"),
        ("APP_BATCH_MAX_BATCH_DELAY_SECONDS", "-1"),
        ("APP_BATCH_UPLOAD_WORKERS", "0"),
        ("LOG_LEVEL", "LOUD"),
        ("SERVER_PORT", "70000"),
        ("APP_ALLOWED_CUSTOMER_TIERS", " , "),
        ("APP_ALLOWED_CUSTOMER_TIERS", "premium,../etc"),
        ("APP_S3_BUCKET_NAME", "  "),
    ],
)
def test_get_config_invalid_values(required_env, monkeypatch, name, value):
    """Tests that ConfigurationError is raised for invalid values."""
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        get_config()


def test_get_config_caching(required_env):
    """Tests that get_config returns the same instance when called multiple times."""
    config1 = get_config()
    config2 = get_config()

    assert config1 is config2  # Same object instance due to lru_cache
