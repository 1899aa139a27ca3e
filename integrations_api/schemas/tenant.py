from pydantic import BaseModel, Field
from typing import Optional

class TenantCreate(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=64)
    name: str

class TenantOut(TenantCreate):
    created_at: Optional[str]
