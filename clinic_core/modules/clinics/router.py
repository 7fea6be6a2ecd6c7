import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.api.deps import get_audit, get_identity, get_session
from clinic_core.core.security import Principal, RequestMeta, get_principal, get_request_meta
from clinic_core.modules.audit.recorder import AuditTrailRecorder
from clinic_core.modules.audit.schemas import AuditEntryOut
from clinic_core.modules.audit.service import AuditQueryService
from clinic_core.modules.clinics.schemas import (
    ClinicCreate, ClinicFilters, ClinicOut, ClinicUpdate, ProvisioningRetry, StatusChange,
)
from clinic_core.modules.clinics.service import ClinicService
from clinic_core.platform.ports.identity_accounts import IdentityAccountPort

router = APIRouter()

def svc(
    session: AsyncSession = Depends(get_session),
    audit: AuditTrailRecorder = Depends(get_audit),
    identity: IdentityAccountPort = Depends(get_identity),
) -> ClinicService:
    return ClinicService(session, audit, identity)

@router.post("", response_model=ClinicOut, status_code=201)
async def create_clinic(
    payload: ClinicCreate,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ClinicService = Depends(svc),
):
    return await service.create(payload, principal, meta)

@router.get("", response_model=list[ClinicOut])
async def list_clinics(
    principal: Principal = Depends(get_principal),
    service: ClinicService = Depends(svc),
):
    return await service.list(principal)

@router.get("/search", response_model=list[ClinicOut])
async def search_clinics(
    q: str | None = None,
    filters: ClinicFilters = Depends(),
    principal: Principal = Depends(get_principal),
    service: ClinicService = Depends(svc),
):
    return await service.search(q, filters, principal)

@router.get("/provisioning/pending", response_model=list[ClinicOut])
async def pending_provisioning(
    principal: Principal = Depends(get_principal),
    service: ClinicService = Depends(svc),
):
    return await service.list_pending_provisioning(principal)

@router.get("/{clinic_id}", response_model=ClinicOut)
async def get_clinic(
    clinic_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: ClinicService = Depends(svc),
):
    return await service.get(clinic_id, principal)

@router.patch("/{clinic_id}", response_model=ClinicOut)
async def update_clinic(
    clinic_id: uuid.UUID,
    payload: ClinicUpdate,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ClinicService = Depends(svc),
):
    return await service.update(clinic_id, payload.model_dump(exclude_unset=True), principal, meta)

@router.put("/{clinic_id}/status", response_model=ClinicOut)
async def change_status(
    clinic_id: uuid.UUID,
    payload: StatusChange,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ClinicService = Depends(svc),
):
    return await service.toggle_status(clinic_id, payload.status, principal, meta)

@router.delete("/{clinic_id}", status_code=204)
async def delete_clinic(
    clinic_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ClinicService = Depends(svc),
):
    await service.delete(clinic_id, principal, meta)

@router.post("/{clinic_id}/provisioning/retry", response_model=ClinicOut)
async def retry_provisioning(
    clinic_id: uuid.UUID,
    payload: ProvisioningRetry,
    principal: Principal = Depends(get_principal),
    meta: RequestMeta = Depends(get_request_meta),
    service: ClinicService = Depends(svc),
):
    return await service.retry_provisioning(clinic_id, payload.admin_password, principal, meta)

@router.get("/{clinic_id}/audit-logs", response_model=list[AuditEntryOut])
async def clinic_audit_logs(
    clinic_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
):
    return await AuditQueryService(session).get_for_clinic(clinic_id, limit, offset, principal=principal)
