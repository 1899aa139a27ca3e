# tests/conftest.py
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point the service at a throwaway database before anything imports config
_TMP_DIR = tempfile.mkdtemp(prefix="integrations-api-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ.setdefault("DISPATCH_ENABLED", "false")
os.environ.setdefault("REAPER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from integrations_api.auth.keys import DEV_ADMIN_KEY, DEV_USER_KEY, DEV_WORKER_KEY
from integrations_api.config import DEFAULT_TENANT
from integrations_api.context import build_context
from integrations_api.db import SessionLocal, session_scope
from integrations_api.db_init import init_schema_and_seed
from integrations_api.models import ApiKey, DispatchOutbox, IntegrationJob, Tenant, TenantIntegration
from integrations_api.services.integrations import IntegrationService

T0 = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand"""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(scope="session", autouse=True)
def schema():
    init_schema_and_seed()


@pytest.fixture(autouse=True)
def clean_db(schema):
    yield
    with session_scope() as s:
        s.query(DispatchOutbox).delete()
        s.query(IntegrationJob).delete()
        s.query(TenantIntegration).delete()
        s.query(ApiKey).delete()
        s.query(Tenant).filter(Tenant.tenant_id != DEFAULT_TENANT).delete()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context(clock):
    return build_context(SessionLocal, clock=clock)


@pytest.fixture
def make_integration():
    """Create tenant (if needed) and its provider configuration"""

    def _make(tenant_id: str = DEFAULT_TENANT, provider: str = "acessorias", enabled: bool = True):
        with session_scope() as s:
            if s.get(Tenant, tenant_id) is None:
                s.add(Tenant(tenant_id=tenant_id, name=f"Tenant {tenant_id}"))
                s.flush()
            ti = IntegrationService(s).upsert(tenant_id, provider, is_enabled=enabled)
            return ti.id

    return _make


@pytest.fixture
def client(context):
    """TestClient bound to the test context (lifespan runs inside the with-block)"""
    from fastapi.testclient import TestClient
    from integrations_api.main import app

    app.state.context = context
    with TestClient(app) as test_client:
        yield test_client
    del app.state.context


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {DEV_ADMIN_KEY}"}


@pytest.fixture
def user_headers():
    # Bound to the default tenant
    return {"Authorization": f"Bearer {DEV_USER_KEY}"}


@pytest.fixture
def worker_headers():
    return {"Authorization": f"Bearer {DEV_WORKER_KEY}"}
