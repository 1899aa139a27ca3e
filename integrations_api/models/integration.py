from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, JSON, Text, UniqueConstraint, func
from integrations_api.db import Base

class TenantIntegration(Base):
    """Per-tenant configuration of one provider; admission requires is_enabled."""
    __tablename__ = "tenant_integrations"
    __table_args__ = (UniqueConstraint("tenant_id", "provider", name="uq_tenant_integrations_tenant_provider"),)

    id = Column(String(36), primary_key=True)  # uuid4
    tenant_id = Column(String(64), ForeignKey("tenants.tenant_id"), index=True, nullable=False)
    provider = Column(String(64), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    base_url = Column(String(512), nullable=False, default="")
    config = Column(JSON, nullable=False, default=dict)
    last_run = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(16), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
