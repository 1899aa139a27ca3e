from pydantic import BaseModel, Field
from typing import Dict, Any, Optional

from ..utils.timeutil import isoformat

class IntegrationUpsert(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=64)
    provider: str = Field(..., min_length=1, max_length=64)
    is_enabled: bool = True
    base_url: str = ""
    config: Dict[str, Any] = {}

class IntegrationToggle(BaseModel):
    is_enabled: bool

class IntegrationOut(BaseModel):
    id: str
    tenant_id: str
    provider: str
    is_enabled: bool
    base_url: str
    config: Dict[str, Any]
    last_run: Optional[str]
    last_status: Optional[str]
    last_error: Optional[str]

def integration_to_dict(ti) -> Dict[str, Any]:
    return {
        "id": ti.id,
        "tenant_id": ti.tenant_id,
        "provider": ti.provider,
        "is_enabled": bool(ti.is_enabled),
        "base_url": ti.base_url or "",
        "config": ti.config or {},
        "last_run": isoformat(ti.last_run),
        "last_status": ti.last_status,
        "last_error": ti.last_error,
    }
