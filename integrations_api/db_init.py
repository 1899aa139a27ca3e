import logging
from threading import Lock

from .config import DEFAULT_TENANT
from .db import init_db, session_scope

logger = logging.getLogger("integrations_api.db_init")

_initialized = False
_init_lock = Lock()

def seed_default_tenant(factory=None) -> bool:
    """Create the default tenant if missing. Returns True when it was created."""
    from .models.tenant import Tenant

    if not DEFAULT_TENANT:
        return False
    with session_scope(factory) as s:
        if s.get(Tenant, DEFAULT_TENANT) is not None:
            return False
        s.add(Tenant(tenant_id=DEFAULT_TENANT, name="Default Tenant"))
    logger.info("Seeded default tenant %s", DEFAULT_TENANT)
    return True

def init_schema_and_seed(bind=None, factory=None) -> None:
    """
    Ensure DB schema exists and the default tenant is present.
    Safe to call multiple times.
    """
    global _initialized
    if _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        init_db(bind)
        seed_default_tenant(factory)
        _initialized = True
