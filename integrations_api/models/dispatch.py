from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Index
from integrations_api.db import Base

class DispatchOutbox(Base):
    """Durable worker-trigger request, written in the same transaction as its job."""
    __tablename__ = "dispatch_outbox"
    __table_args__ = (Index("ix_dispatch_outbox_status_next", "status", "next_attempt_at"),)

    id = Column(String(36), primary_key=True)  # uuid4
    job_id = Column(String(36), ForeignKey("integration_jobs.id"), index=True, nullable=False)
    status = Column(String(16), nullable=False, default="queued")  # queued|delivered|failed
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
