from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, Field, ValidationError
from pharmadash.core.config import settings

# -----------------------------------------------------------------------------
# 1) Claims do token de acesso
# -----------------------------------------------------------------------------

class AccessClaims(BaseModel):
    """
    Identity issued by the authentication service.

    ``pharmacies`` is the resolved pharmacy scope; empty means network-wide.
    """
    sub: str
    roles: List[str] = Field(default_factory=list)
    pharmacies: List[str] = Field(default_factory=list)
    exp: Optional[int] = None

    @property
    def pharmacy_scope(self) -> List[str]:
        return [str(p) for p in self.pharmacies]

ANONYMOUS = AccessClaims(sub="anonymous", roles=["admin"], pharmacies=[])

# -----------------------------------------------------------------------------
# 2) Helpers internos para emitir e decodificar JWT
# -----------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)

def _exp_in(minutes: int) -> int:
    return int((_utcnow() + timedelta(minutes=minutes)).timestamp())

def _decode(token: str, secret: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token."
        )

def create_access_token(
    *, user_id: str, roles: List[str], pharmacies: List[str], minutes: int = 60
) -> str:
    """Issue a token; authentication lives elsewhere, this serves tooling and tests."""
    claims = AccessClaims(sub=user_id, roles=roles, pharmacies=pharmacies, exp=_exp_in(minutes))
    return jwt.encode(claims.model_dump(), settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

def decode_access_token(token: str) -> AccessClaims:
    data = _decode(token, settings.JWT_SECRET)
    try:
        return AccessClaims(**data)
    except ValidationError:
        raise HTTPException(status_code=401, detail="Invalid access token.")

# -----------------------------------------------------------------------------
# 3) Dependências do FastAPI para autenticação/autorização
# -----------------------------------------------------------------------------

def get_current_access(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AccessClaims:
    if not settings.AUTH_ENABLED:
        return ANONYMOUS
    if creds is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
        )
    return decode_access_token(creds.credentials)

def require_roles(*allowed_roles: str):
    def _dep(claims: AccessClaims = Depends(get_current_access)) -> AccessClaims:
        roles = set(map(str.lower, claims.roles or []))
        allowed = set(map(str.lower, allowed_roles))
        if roles.isdisjoint(allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission denied."
            )
        return claims
    return _dep
