import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import IntegrationDisabled, IntegrationNotFound, TenantNotFound
from ..models.integration import TenantIntegration
from ..models.tenant import Tenant

logger = logging.getLogger(__name__)


class IntegrationService:
    """Tenant integration configuration: lookup, upsert, toggle, status mirror"""

    def __init__(self, session: Session):
        self.session = session

    def get(self, integration_id: str) -> TenantIntegration:
        ti = self.session.get(TenantIntegration, integration_id)
        if ti is None:
            raise IntegrationNotFound()
        return ti

    def find(self, tenant_id: str, provider: str) -> Optional[TenantIntegration]:
        stmt = select(TenantIntegration).where(
            TenantIntegration.tenant_id == tenant_id,
            TenantIntegration.provider == provider,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def require_enabled(self, tenant_id: str, provider: str) -> TenantIntegration:
        """Configuration an admission may run against, or the reason it may not."""
        ti = self.find(tenant_id, provider)
        if ti is None:
            raise IntegrationNotFound()
        if not ti.is_enabled:
            raise IntegrationDisabled()
        return ti

    def list(self, tenant_ids: Optional[List[str]] = None) -> List[TenantIntegration]:
        stmt = select(TenantIntegration).order_by(TenantIntegration.tenant_id, TenantIntegration.provider)
        if tenant_ids is not None:
            stmt = stmt.where(TenantIntegration.tenant_id.in_(tenant_ids))
        return list(self.session.execute(stmt).scalars())

    def upsert(self, tenant_id: str, provider: str, is_enabled: bool = True,
               base_url: str = "", config: Optional[dict] = None) -> TenantIntegration:
        if self.session.get(Tenant, tenant_id) is None:
            raise TenantNotFound(f"Tenant {tenant_id} not found")

        ti = self.find(tenant_id, provider)
        if ti is None:
            ti = TenantIntegration(id=str(uuid.uuid4()), tenant_id=tenant_id, provider=provider)
            self.session.add(ti)
            logger.info("Integration configured", extra={"tenant_id": tenant_id, "provider_slug": provider})
        ti.is_enabled = is_enabled
        ti.base_url = base_url
        ti.config = config or {}
        self.session.flush()
        return ti

    def set_enabled(self, integration_id: str, enabled: bool) -> TenantIntegration:
        ti = self.get(integration_id)
        ti.is_enabled = enabled
        self.session.flush()
        logger.info("Integration %s", "enabled" if enabled else "disabled",
                    extra={"tenant_id": ti.tenant_id, "provider_slug": ti.provider})
        return ti


def mirror_integration_status(session: Session, tenant_id: str, provider: str, status: str,
                              error: Optional[str] = None, run_at: Optional[datetime] = None):
    """Copy the latest job outcome onto the tenant's integration row, if configured."""
    ti = IntegrationService(session).find(tenant_id, provider)
    if ti is None:
        return
    ti.last_status = status
    ti.last_error = error
    if run_at is not None:
        ti.last_run = run_at
