# integrations_api/auth/keys.py
import hashlib
import os
from typing import Dict, Optional, Tuple

from ..config import DEFAULT_TENANT

# Default development keys (fallback for CI/dev)
DEV_ADMIN_KEY = os.environ.get("DEV_ADMIN_KEY", "DEV_ADMIN_KEY_5a8f9ffdc3")
DEV_USER_KEY = os.environ.get("DEV_USER_KEY", "DEV_USER_KEY_2c9d1a4b61")
DEV_WORKER_KEY = os.environ.get("DEV_WORKER_KEY", "DEV_WORKER_KEY_7e31b0c942")

# Comma-separated additional keys via env
ADMIN_KEYS = {k.strip() for k in os.environ.get("ADMIN_KEYS", "").split(",") if k.strip()}
WORKER_KEYS = {k.strip() for k in os.environ.get("WORKER_KEYS", "").split(",") if k.strip()}

# Always include dev defaults for CI/dev unless explicitly disabled
ALLOW_DEV_KEYS = os.environ.get("ALLOW_DEV_KEYS", "true").lower() in ("1", "true", "yes")

ROLE_SCOPES = {
    "admin": ["admin"],
    "user": ["jobs:read", "jobs:run"],
    "worker": ["worker", "jobs:read"],
}

# (role, bound tenant); tenant None = every tenant
KeyGrant = Tuple[str, Optional[str]]

def get_key_grants() -> Dict[str, KeyGrant]:
    """Get the mapping of env-configured API keys to (role, tenant)"""
    grants: Dict[str, KeyGrant] = {}

    for key in ADMIN_KEYS:
        grants[key] = ("admin", None)
    for key in WORKER_KEYS:
        grants[key] = ("worker", None)

    if ALLOW_DEV_KEYS:
        grants[DEV_ADMIN_KEY] = ("admin", None)
        grants[DEV_USER_KEY] = ("user", DEFAULT_TENANT)
        grants[DEV_WORKER_KEY] = ("worker", None)

    return grants

# Get the current key grants
KEY_GRANTS = get_key_grants()

def get_key_grant(key: str) -> Optional[KeyGrant]:
    """Get the (role, tenant) for a given key, or None if not found"""
    return KEY_GRANTS.get(key)

def hash_key(key: str) -> str:
    """Digest stored in api_keys.hash; plaintext keys are never persisted"""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()
