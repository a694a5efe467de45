"""Configuration for the location update queue."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Paths are relative to the host's working directory; created on first use
LOGS_DIR = Path(os.getenv("LOGS_DIR", "logs"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Persistence
QUEUE_STORAGE_DIR = Path(os.getenv("QUEUE_STORAGE_DIR", "data"))
QUEUE_STORAGE_KEY = os.getenv("QUEUE_STORAGE_KEY", "failedLocationUpdates")

# Queue policy
MAX_QUEUE_SIZE = int(os.getenv("MAX_QUEUE_SIZE", "50"))
MAX_RETRY_COUNT = int(os.getenv("MAX_RETRY_COUNT", "3"))
RETRY_INTERVAL = float(os.getenv("RETRY_INTERVAL", "30"))  # seconds between timer-driven drains
EAGER_DELIVERY = os.getenv("EAGER_DELIVERY", "true").lower() in ("1", "true", "yes")

# Transport
LOGS_API_URL = os.getenv("LOGS_API_URL")
API_TOKEN = os.getenv("API_TOKEN")
TRANSPORT_TIMEOUT = float(os.getenv("TRANSPORT_TIMEOUT", "30"))
APP_CODE = os.getenv("APP_CODE", "976d51")

# Connectivity probe (optional)
CONNECTIVITY_PROBE_URL = os.getenv("CONNECTIVITY_PROBE_URL")
CONNECTIVITY_POLL_INTERVAL = float(os.getenv("CONNECTIVITY_POLL_INTERVAL", "5"))


class ConfigError(ValueError):
    """Raised when the queue is configured with invalid values."""


def check_policy(max_queue_size: int, max_retry_count: int, retry_interval: float) -> list:
    """Return a list of problems with the given queue policy values."""
    errors = []
    if max_queue_size < 1:
        errors.append(f"MAX_QUEUE_SIZE must be at least 1: {max_queue_size}")
    if max_retry_count < 0:
        errors.append(f"MAX_RETRY_COUNT must not be negative: {max_retry_count}")
    if retry_interval <= 0:
        errors.append(f"RETRY_INTERVAL must be positive: {retry_interval}")
    return errors


def validate_config():
    """Validate configuration."""
    errors = check_policy(MAX_QUEUE_SIZE, MAX_RETRY_COUNT, RETRY_INTERVAL)

    if LOGS_API_URL and not LOGS_API_URL.startswith(("http://", "https://")):
        errors.append(f"LOGS_API_URL must be an http(s) URL: {LOGS_API_URL}")

    if TRANSPORT_TIMEOUT <= 0:
        errors.append(f"TRANSPORT_TIMEOUT must be positive: {TRANSPORT_TIMEOUT}")

    if CONNECTIVITY_PROBE_URL and CONNECTIVITY_POLL_INTERVAL <= 0:
        errors.append(f"CONNECTIVITY_POLL_INTERVAL must be positive: {CONNECTIVITY_POLL_INTERVAL}")

    try:
        QUEUE_STORAGE_DIR.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        errors.append(f"Cannot create QUEUE_STORAGE_DIR: {e}")

    if errors:
        raise ConfigError("Config errors:\n  " + "\n  ".join(errors))
