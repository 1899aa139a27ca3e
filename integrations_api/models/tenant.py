from sqlalchemy import Column, String, DateTime, func
from integrations_api.db import Base

class Tenant(Base):
    __tablename__ = "tenants"
    tenant_id = Column(String(64), primary_key=True)
    name = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
