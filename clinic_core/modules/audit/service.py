import uuid
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.core.config import settings
from clinic_core.core.errors import AuthorizationError, ValidationError
from clinic_core.core.security import Principal
from clinic_core.modules.access.isolation import can_access, ensure_access
from clinic_core.modules.audit.models import AuditEntry
from clinic_core.modules.audit.repository import AuditRepository
from clinic_core.modules.audit.schemas import AuditLogFilters

def belongs_to_clinic(entry: AuditEntry, clinic_id: str) -> bool:
    # clinic-management entries are system-level: the clinic id lives in
    # resource_id or in details, depending on when the entry was written
    details = entry.details or {}
    return entry.resource_id == clinic_id or details.get("clinic_id") == clinic_id

class AuditQueryService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = AuditRepository(session)

    async def get_for_clinic(self, clinic_id: uuid.UUID | str, limit: int = 50, offset: int = 0,
                             principal: Principal | None = None) -> list[AuditEntry]:
        """Most-recent-first audit entries for one clinic.

        Fetches a ``limit + offset`` window, filters it down to the clinic and
        only then slices ``[offset, offset + limit)``. Pages reaching past
        ``AUDIT_QUERY_MAX_WINDOW`` are rejected rather than cut short.
        """
        if principal is not None:
            ensure_access(principal, clinic_id)
        if limit < 1 or offset < 0:
            return []
        window = limit + offset
        if window > settings.AUDIT_QUERY_MAX_WINDOW:
            raise ValidationError("Invalid pagination", errors=[
                f"offset + limit must not exceed {settings.AUDIT_QUERY_MAX_WINDOW}"])
        clinic_id = str(clinic_id)
        rows = await self.repo.recent_for_clinic(clinic_id, window)
        matching = [row for row in rows if belongs_to_clinic(row, clinic_id)]
        return matching[offset:offset + limit]

    async def list_logs(self, filters: AuditLogFilters, principal: Principal) -> tuple[Sequence[AuditEntry], int]:
        """Filtered audit listing; clinic-bound actors only ever see their own clinic."""
        if not principal.is_system:
            if filters.clinic_id is not None and not can_access(principal.clinic_id, filters.clinic_id):
                raise AuthorizationError("Access denied to logs from other clinics")
            filters = filters.model_copy(update={"clinic_id": principal.clinic_id})
        logs = await self.repo.list(filters)
        total = await self.repo.count(filters)
        return logs, total
