from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal, require_admin
from ..deps import get_session
from ..models.tenant import Tenant
from ..schemas.tenant import TenantCreate, TenantOut
from ..utils.timeutil import isoformat

router = APIRouter()

def _tenant_to_dict(t: Tenant) -> Dict[str, Any]:
    return {"tenant_id": t.tenant_id, "name": t.name, "created_at": isoformat(t.created_at)}

@router.post("/tenants", response_model=TenantOut, status_code=201)
def create_tenant(body: TenantCreate, _: Principal = Depends(require_admin()),
                  db: Session = Depends(get_session)) -> Dict[str, Any]:
    if db.get(Tenant, body.tenant_id) is not None:
        raise HTTPException(status_code=409, detail="tenant_exists")
    tenant = Tenant(tenant_id=body.tenant_id, name=body.name)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return _tenant_to_dict(tenant)

@router.get("/tenants", response_model=List[TenantOut])
def list_tenants(_: Principal = Depends(require_admin()), db: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    return [_tenant_to_dict(t) for t in db.execute(select(Tenant).order_by(Tenant.tenant_id)).scalars()]
