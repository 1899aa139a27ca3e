"""
Jobs API: listing, change feed, and the worker-facing claim/report endpoints
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.responses import StreamingResponse

from ..auth import Principal, ensure_tenant_access, require_scopes, visible_tenants
from ..config import CHANGE_FEED_KEEPALIVE_SECONDS, JOB_LIST_LIMIT
from ..context import ServiceContext
from ..deps import get_context, get_session
from ..schemas.job import JobOut, JobUpdate, job_to_dict
from ..services.change_feed import ChangeFeed

logger = logging.getLogger("integrations_api.api.jobs")

router = APIRouter()

@router.get("/integration-jobs", response_model=List[JobOut])
def list_jobs(
    tenant_id: Optional[str] = Query(None),
    provider_slug: Optional[str] = Query(None),
    limit: int = Query(JOB_LIST_LIMIT, ge=1, le=1000),
    principal: Principal = Depends(require_scopes("jobs:read")),
    context: ServiceContext = Depends(get_context),
    db: Session = Depends(get_session),
) -> List[Dict[str, Any]]:
    """Jobs visible to the caller, newest first"""
    tenants = visible_tenants(principal, tenant_id)
    jobs = context.job_store(db).list_jobs(tenants, provider_slug, limit=limit)
    return [job_to_dict(j) for j in jobs]

async def event_generator(request: Request, feed: ChangeFeed, tenants, keepalive: float) -> AsyncGenerator[str, None]:
    """Server-Sent Events from the job change feed"""
    sub = feed.subscribe(frozenset(tenants) if tenants is not None else None)
    try:
        yield ": connected\n\n"
        while True:
            if await request.is_disconnected():
                break
            change = await sub.get(timeout=keepalive)
            if change is None:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(change.to_dict())}\n\n"
    finally:
        feed.unsubscribe(sub)

@router.get("/integration-jobs/stream")
async def stream_jobs(
    request: Request,
    tenant_id: Optional[str] = Query(None),
    principal: Principal = Depends(require_scopes("jobs:read")),
    context: ServiceContext = Depends(get_context),
):
    """
    SSE endpoint. Accepts the Authorization header, or ?key= for EventSource
    which cannot set custom headers.
    """
    tenants = visible_tenants(principal, tenant_id)
    return StreamingResponse(
        event_generator(request, context.feed, tenants, CHANGE_FEED_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

@router.post("/integration-jobs/claim")
def claim_job(
    _: Principal = Depends(require_scopes("worker")),
    context: ServiceContext = Depends(get_context),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Move the oldest pending job to running and hand it to the calling worker"""
    store = context.job_store(db)
    job = store.claim_next_pending()
    if job is None:
        return {"message": "No pending jobs"}
    store.commit()
    logger.info("Job %s claimed", job.id, extra={
        "component": "jobs",
        "job_id": job.id,
        "tenant_id": job.tenant_id,
        "provider_slug": job.provider_slug,
    })
    return job_to_dict(job)

@router.get("/integration-jobs/{job_id}", response_model=JobOut)
def get_job(
    job_id: str,
    principal: Principal = Depends(require_scopes("jobs:read")),
    context: ServiceContext = Depends(get_context),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    job = context.job_store(db).get(job_id)
    ensure_tenant_access(principal, job.tenant_id)
    return job_to_dict(job)

@router.patch("/integration-jobs/{job_id}", response_model=JobOut)
def report_job(
    job_id: str,
    body: JobUpdate,
    _: Principal = Depends(require_scopes("worker")),
    context: ServiceContext = Depends(get_context),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Worker-reported progress, status or result"""
    store = context.job_store(db)
    job = store.apply_update(job_id, status=body.status, progress=body.progress,
                             error_message=body.error_message, result=body.result)
    store.commit()
    return job_to_dict(job)
