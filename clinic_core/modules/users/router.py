import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.api.deps import get_audit, get_identity, get_session
from clinic_core.core.security import Principal, RequestMeta, get_principal, get_request_meta, require_permissions
from clinic_core.modules.access.permissions import Permission
from clinic_core.modules.audit.recorder import AuditTrailRecorder
from clinic_core.modules.users.schemas import UserCreate, UserOut, UserUpdate
from clinic_core.modules.users.service import ActorService
from clinic_core.platform.ports.identity_accounts import IdentityAccountPort

router = APIRouter()

def svc(
    session: AsyncSession = Depends(get_session),
    audit: AuditTrailRecorder = Depends(get_audit),
    identity: IdentityAccountPort = Depends(get_identity),
) -> ActorService:
    return ActorService(session, audit, identity)

@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    payload: UserCreate,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ActorService = Depends(svc),
):
    return await service.create_user(payload, principal, meta)

@router.get("", response_model=list[UserOut], dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))])
async def list_users(
    clinic_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    service: ActorService = Depends(svc),
):
    target = clinic_id or principal.clinic_id
    if target is None:
        return []
    return await service.list_for_clinic(target, principal)

@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: ActorService = Depends(svc),
):
    return await service.get_user(user_id, principal)

@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: uuid.UUID,
    patch: UserUpdate,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ActorService = Depends(svc),
):
    return await service.update_user(user_id, patch, principal, meta)

@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ActorService = Depends(svc),
):
    await service.delete_user(user_id, principal, meta)
