# integrations_api/auth/__init__.py
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..deps import get_session
from ..models.apikey import ApiKey
from .keys import ROLE_SCOPES, get_key_grant, hash_key

log = logging.getLogger("integrations_api.auth")

ADMIN_SUPER = {"admin"}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: who it is, what it may do, which tenants it sees"""
    actor_id: str
    scopes: FrozenSet[str] = field(default_factory=frozenset)
    tenant_id: Optional[str] = None  # None = every tenant

    @property
    def is_admin(self) -> bool:
        return bool(self.scopes & ADMIN_SUPER)

    def tenant_scope(self) -> Optional[FrozenSet[str]]:
        """Tenants visible to this caller, or None for all of them."""
        if self.tenant_id is None:
            return None
        return frozenset([self.tenant_id])

    def can_access(self, tenant_id: str) -> bool:
        return self.tenant_id is None or self.tenant_id == tenant_id


def _extract_api_key(request: Request) -> Optional[str]:
    """Extract API key from request headers with multiple fallback formats"""
    # 1) Authorization: Bearer <key>
    auth = request.headers.get("Authorization", "")
    if auth:
        parts = auth.split(None, 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
        # 2) Authorization: <key> (fallback)
        if len(parts) == 1 and parts[0].lower() != "bearer":
            return parts[0].strip()

    # 3) X-API-Key: <key>
    x_key = request.headers.get("X-API-Key")
    if x_key:
        return x_key.strip()

    # 4) ?key=<key>, for EventSource which cannot set headers
    return request.query_params.get("key") or None


def _principal_for_token(token: str, db: Session) -> Optional[Principal]:
    grant = get_key_grant(token)
    if grant is not None:
        role, tenant_id = grant
        return Principal(
            actor_id=f"env-{hash_key(token)[:8]}",
            scopes=frozenset(ROLE_SCOPES[role]),
            tenant_id=tenant_id,
        )

    row = db.execute(select(ApiKey).where(ApiKey.hash == hash_key(token))).scalar_one_or_none()
    if row is None or row.disabled:
        return None
    scopes = row.scopes or []
    if isinstance(scopes, str):
        scopes = [s for s in scopes.replace(" ", ",").split(",") if s]
    return Principal(
        actor_id=row.key_id,
        scopes=frozenset(str(s).lower() for s in scopes),
        tenant_id=row.tenant_id,
    )


def require_key(request: Request, db: Session = Depends(get_session)) -> Principal:
    token = _extract_api_key(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    principal = _principal_for_token(token, db)
    if principal is None:
        log.warning("AUTH: token not recognised")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    request.state.actor_id = principal.actor_id
    return principal


def require_scopes(*allowed: str):
    allowed_set = {s.lower() for s in allowed}

    def dep(principal: Principal = Depends(require_key)) -> Principal:
        # admin is always enough
        if principal.is_admin or principal.scopes & allowed_set:
            return principal
        log.warning("AUTH: scope denied, need=%s token=%s", sorted(allowed_set), sorted(principal.scopes))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden: missing scope")

    return dep


def require_admin():
    """Require admin scope specifically"""
    return require_scopes("admin")


def ensure_tenant_access(principal: Principal, tenant_id: str):
    if not principal.can_access(tenant_id):
        log.warning("AUTH: tenant denied, actor=%s tenant=%s", principal.actor_id, tenant_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden: tenant outside key scope")


def visible_tenants(principal: Principal, requested: Optional[str] = None) -> Optional[List[str]]:
    """Tenant filter for a listing: the requested tenant if allowed, else the caller's scope."""
    if requested:
        ensure_tenant_access(principal, requested)
        return [requested]
    scope = principal.tenant_scope()
    return sorted(scope) if scope is not None else None
