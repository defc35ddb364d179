"""Bootstrap configuration read from the environment.

Values are read once at import. Tests patch the module attributes directly
(e.g. ``patch("renditionworker.config.env.WORK_BASE_DIR", tmp_path)``), so
consumers must read them through the module rather than copying them at import.
"""

import os
import time
from pathlib import Path
from typing import Optional


def string_to_bool(s: Optional[str]) -> bool:
    if s is None:
        return False
    return s.strip().lower() in ("true", "yes", "1", "y", "on")


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _optional_float_env(name: str) -> Optional[float]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# Logging
DEBUG = string_to_bool(os.getenv("DEBUG", "false"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
ENABLE_LOGGING = string_to_bool(os.getenv("ENABLE_LOGGING", "false"))
LOG_DIR = Path(os.getenv("LOG_DIR", "/var/log/renditionworker"))

# Working directories
WORK_BASE_DIR = Path(os.getenv("WORKER_BASE_DIRECTORY", "work"))
ACTIVATION_ID = os.getenv("ACTIVATION_ID", "")

# Names the running action in error locations, e.g. "worker_download"
ACTION_NAME = os.getenv("ACTION_NAME", "worker")

# Hard deadline of the activation (epoch milliseconds), set by the host
ACTIVATION_DEADLINE = _optional_float_env("ACTIVATION_DEADLINE")
TIMEOUT_BUFFER_MS = _int_env("TIMEOUT_BUFFER_MS", 15000)
DISABLE_TIMEOUT_METRICS = string_to_bool(os.getenv("DISABLE_TIMEOUT_METRICS", "false"))
DISABLE_RESOURCE_METRICS = string_to_bool(os.getenv("DISABLE_RESOURCE_METRICS", "false"))
RESOURCE_SAMPLE_INTERVAL = _int_env("RESOURCE_SAMPLE_INTERVAL_MS", 100) / 1000.0

# Storage
DISABLE_RETRIES = string_to_bool(os.getenv("DISABLE_RETRIES", "false"))
ALLOW_LOCAL_SOURCES = string_to_bool(os.getenv("ALLOW_LOCAL_SOURCES", "false"))
MAX_UPLOAD_RETRY_SECONDS = _int_env("MAX_UPLOAD_RETRY_SECONDS", 600)


def activation_id() -> str:
    """Activation identifier used to name the work directory."""
    return ACTIVATION_ID or str(int(time.time() * 1000))


def time_until_deadline() -> Optional[float]:
    """Seconds left until the activation deadline, or None if no deadline is known."""
    if ACTIVATION_DEADLINE is None:
        return None
    return (ACTIVATION_DEADLINE / 1000.0) - time.time()
