"""
Integration configuration and the admission endpoint.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from ..auth import Principal, ensure_tenant_access, require_admin, require_scopes, visible_tenants
from ..context import ServiceContext
from ..deps import get_context, get_session
from ..schemas.integration import IntegrationOut, IntegrationToggle, IntegrationUpsert, integration_to_dict
from ..schemas.job import SubmitRequest, SubmitResponse
from ..services.admission import AdmissionController
from ..services.integrations import IntegrationService

logger = logging.getLogger("integrations_api.api.integrations")

router = APIRouter()

@router.post("/integrations/run", response_model=SubmitResponse)
def run_integration(
    request: Request,
    body: Optional[SubmitRequest] = Body(None),
    principal: Principal = Depends(require_scopes("jobs:run")),
    context: ServiceContext = Depends(get_context),
) -> Dict[str, str]:
    """Start an integration run for a tenant, unless one is already active"""
    body = body or SubmitRequest()
    tenant_id = (body.tenant_id or "").strip()
    if tenant_id:
        ensure_tenant_access(principal, tenant_id)
        request.state.tenant_id = tenant_id

    result = AdmissionController(context).submit(body.tenant_id, body.provider_slug, principal.actor_id)
    return result.to_dict()

@router.get("/integrations", response_model=List[IntegrationOut])
def list_integrations(
    tenant_id: Optional[str] = Query(None),
    principal: Principal = Depends(require_scopes("jobs:read", "jobs:run")),
    db: Session = Depends(get_session),
) -> List[Dict[str, Any]]:
    tenants = visible_tenants(principal, tenant_id)
    return [integration_to_dict(ti) for ti in IntegrationService(db).list(tenants)]

@router.post("/integrations", response_model=IntegrationOut)
def upsert_integration(
    body: IntegrationUpsert,
    _: Principal = Depends(require_admin()),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Create or replace a tenant's configuration for one provider (admin only)"""
    ti = IntegrationService(db).upsert(body.tenant_id, body.provider, body.is_enabled, body.base_url, body.config)
    db.commit()
    return integration_to_dict(ti)

@router.patch("/integrations/{integration_id}", response_model=IntegrationOut)
def toggle_integration(
    integration_id: str,
    body: IntegrationToggle,
    _: Principal = Depends(require_admin()),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    ti = IntegrationService(db).set_enabled(integration_id, body.is_enabled)
    db.commit()
    return integration_to_dict(ti)
