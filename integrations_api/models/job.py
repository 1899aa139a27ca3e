from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey, Text, Index
from integrations_api.db import Base
from integrations_api.job_states import ACTIVE_STATUSES, TERMINAL_STATUSES

def active_key_for(tenant_id: str, provider_slug: str) -> str:
    return f"{tenant_id}:{provider_slug}"

class IntegrationJob(Base):
    __tablename__ = "integration_jobs"
    __table_args__ = (
        Index("ix_integration_jobs_key_status", "tenant_id", "provider_slug", "status"),
        Index("ix_integration_jobs_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True)  # uuid4
    tenant_id = Column(String(64), ForeignKey("tenants.tenant_id"), nullable=False)
    provider_slug = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default="pending")  # pending|running|success|error
    progress = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    # "{tenant_id}:{provider_slug}" while pending/running, NULL once terminal.
    # The unique index lets the database reject a second active job per key.
    active_key = Column(String(160), nullable=True, unique=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
