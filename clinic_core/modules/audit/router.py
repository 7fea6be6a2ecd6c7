from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.api.deps import get_session
from clinic_core.core.security import Principal, get_principal
from clinic_core.modules.audit.schemas import AuditEntryOut, AuditLogFilters, AuditLogPage, Pagination
from clinic_core.modules.audit.service import AuditQueryService

router = APIRouter()

@router.get("", response_model=AuditLogPage)
async def list_logs(
    filters: AuditLogFilters = Depends(),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
):
    logs, total = await AuditQueryService(session).list_logs(filters, principal)
    return AuditLogPage(
        logs=[AuditEntryOut.model_validate(entry) for entry in logs],
        pagination=Pagination(
            offset=filters.offset,
            limit=filters.limit,
            total=total,
            has_more=filters.offset + len(logs) < total,
        ),
    )
