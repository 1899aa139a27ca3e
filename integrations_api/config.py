"""
Configuration module for Integrations API
"""

# Application configuration
import os
from pathlib import Path

def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")

def env_list(key: str, default: str = "") -> list:
    return [p.strip() for p in os.getenv(key, default).split(",") if p.strip()]

def _read_version_from_repo(default: str = "dev") -> str:
    try:
        # repo root: integrations_api/.. (one parent up from the package dir)
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        v = version_file.read_text(encoding="utf-8").strip()
        if v:
            return v
    except OSError:
        pass
    return os.getenv("APP_VERSION", default)

API_VERSION = _read_version_from_repo()

# Database configuration
SQLITE_PATH = os.getenv("SQLITE_PATH", "./integrations.db")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{SQLITE_PATH}")

# API configuration
API_PREFIX = "/v1"
APP_PORT = int(os.getenv("APP_PORT", "80"))

# Logging configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
LOG_EXCLUDE_PATHS = set(env_list("LOG_EXCLUDE_PATHS", "/v1/health,/v1/metrics/prometheus"))

# Job orchestration
STALE_JOB_MINUTES = int(os.getenv("STALE_JOB_MINUTES", "15"))
JOB_LIST_LIMIT = int(os.getenv("JOB_LIST_LIMIT", "100"))
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
CLIENT_REFETCH_DELAY_SECONDS = float(os.getenv("CLIENT_REFETCH_DELAY_SECONDS", "2"))

# Worker trigger / dispatch relay
WORKER_TRIGGER_URL = os.getenv("WORKER_TRIGGER_URL", "")
WORKER_TRIGGER_TOKEN = os.getenv("WORKER_TRIGGER_TOKEN", "")
DISPATCH_ENABLED = env_bool("DISPATCH_ENABLED", True)
DISPATCH_TIMEOUT_MS = int(os.getenv("DISPATCH_TIMEOUT_MS", "5000"))
DISPATCH_MAX_ATTEMPTS = int(os.getenv("DISPATCH_MAX_ATTEMPTS", "8"))
DISPATCH_BACKOFF_BASE_SECONDS = float(os.getenv("DISPATCH_BACKOFF_BASE_SECONDS", "2"))
DISPATCH_BACKOFF_MAX_SECONDS = float(os.getenv("DISPATCH_BACKOFF_MAX_SECONDS", "300"))
DISPATCH_POLL_SECONDS = float(os.getenv("DISPATCH_POLL_SECONDS", "5"))
DISPATCH_BATCH_SIZE = int(os.getenv("DISPATCH_BATCH_SIZE", "50"))

# Reaper for jobs nobody resubmits
REAPER_ENABLED = env_bool("REAPER_ENABLED", True)
REAPER_INTERVAL_SECONDS = float(os.getenv("REAPER_INTERVAL_SECONDS", "60"))
REAPER_PENDING_MINUTES = int(os.getenv("REAPER_PENDING_MINUTES", "15"))
REAPER_RUNNING_MINUTES = int(os.getenv("REAPER_RUNNING_MINUTES", "45"))

# Change feed
CHANGE_FEED_QUEUE_SIZE = int(os.getenv("CHANGE_FEED_QUEUE_SIZE", "1000"))
CHANGE_FEED_KEEPALIVE_SECONDS = float(os.getenv("CHANGE_FEED_KEEPALIVE_SECONDS", "15"))

# Default tenant seeded on first boot
DEFAULT_TENANT = os.getenv("DEFAULT_TENANT", "default")
