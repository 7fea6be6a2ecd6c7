import uuid
from dataclasses import dataclass
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel, Field, model_validator
from clinic_core.core.config import settings
from clinic_core.core.errors import AuthorizationError
from clinic_core.modules.access.permissions import (
    Permission, Role, allowed_permissions, default_permissions, has_all_permissions, has_any_permission,
    validate_permission_set,
)

http_bearer = HTTPBearer(auto_error=False)

class Principal(BaseModel):
    """Authenticated actor context handed to every service call."""
    user_id: uuid.UUID
    role: Role
    clinic_id: uuid.UUID | None = None
    permissions: frozenset[Permission] = Field(default_factory=frozenset)

    @model_validator(mode="after")
    def _clinic_binding(self):
        if self.role == Role.SYSTEM_ADMIN and self.clinic_id is not None:
            raise ValueError("system_admin must not be bound to a clinic")
        if self.role != Role.SYSTEM_ADMIN and self.clinic_id is None:
            raise ValueError(f"{self.role.value} requires a clinic_id")
        excess = self.permissions - allowed_permissions(self.role)
        if excess:
            raise ValueError(f"permissions not allowed for role {self.role.value}: {', '.join(sorted(p.value for p in excess))}")
        return self

    @property
    def is_system(self) -> bool:
        return self.clinic_id is None

@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def principal_from_claims(data: dict) -> Principal:
    try:
        role = Role(data.get("role"))
        clinic_id = data.get("clinic_id")
        raw_permissions = data.get("permissions")
        if raw_permissions is None:
            permissions = default_permissions(role)
        else:
            if not isinstance(raw_permissions, list):
                raise ValueError("permissions must be a list")
            # a token may narrow its role's permissions, never widen them
            problems = validate_permission_set(role, raw_permissions)
            if problems:
                raise ValueError("; ".join(problems))
            permissions = frozenset(Permission(p) for p in raw_permissions)
        return Principal(
            user_id=uuid.UUID(str(data.get("sub") or data.get("user_id"))),
            role=role,
            clinic_id=uuid.UUID(str(clinic_id)) if clinic_id else None,
            permissions=permissions,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid claims: {e}")

async def get_principal(request: Request, creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local dev, a missing token acts as a system admin
    if creds is None and settings.ENV == "local":
        principal = Principal(user_id=uuid.UUID(int=0), role=Role.SYSTEM_ADMIN, permissions=default_permissions(Role.SYSTEM_ADMIN))
    elif creds is None:
        raise HTTPException(status_code=401, detail="Missing token")
    else:
        principal = principal_from_claims(_decode_token(creds.credentials))
    # kept for the error handlers (security events name the actor)
    request.state.principal = principal
    return principal

def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("x-request-id"),
    )

def require_permissions(*needed: Permission):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not has_all_permissions(principal.permissions, needed):
            raise AuthorizationError(f"Missing required permissions: {', '.join(p.value for p in needed)}")
        return principal
    return dep

def require_any_permission(*needed: Permission):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not has_any_permission(principal.permissions, needed):
            raise AuthorizationError(f"Requires one of: {', '.join(p.value for p in needed)}")
        return principal
    return dep
