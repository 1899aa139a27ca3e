from pydantic import BaseModel, Field
from typing import Dict, Any, Optional, Literal

from ..utils.timeutil import isoformat

class SubmitRequest(BaseModel):
    # Optional so missing fields surface as 400 from admission rather than 422
    tenant_id: Optional[str] = None
    provider_slug: Optional[str] = None

class SubmitResponse(BaseModel):
    job_id: str
    status: str

class JobOut(BaseModel):
    id: str
    tenant_id: str
    provider_slug: str
    status: str
    progress: int
    attempts: int
    max_attempts: int
    started_at: Optional[str]
    finished_at: Optional[str]
    execution_time_ms: Optional[int]
    error_message: Optional[str]
    payload: Dict[str, Any] = {}
    result: Optional[Any] = None
    created_by: Optional[str]
    created_at: str

class JobUpdate(BaseModel):
    """Worker-reported job mutation"""
    status: Optional[Literal["running", "success", "error"]] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    error_message: Optional[str] = None
    result: Optional[Any] = None

def job_to_dict(job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "tenant_id": job.tenant_id,
        "provider_slug": job.provider_slug,
        "status": job.status,
        "progress": job.progress or 0,
        "attempts": job.attempts or 0,
        "max_attempts": job.max_attempts,
        "started_at": isoformat(job.started_at),
        "finished_at": isoformat(job.finished_at),
        "execution_time_ms": job.execution_time_ms,
        "error_message": job.error_message,
        "payload": job.payload or {},
        "result": job.result,
        "created_by": job.created_by,
        "created_at": isoformat(job.created_at),
    }
