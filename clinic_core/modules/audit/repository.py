import uuid
from typing import Sequence
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.modules.audit.models import AuditEntry
from clinic_core.modules.audit.schemas import AuditLogFilters

def _details_clinic_id():
    return AuditEntry.details["clinic_id"].as_string()

class AuditRepository:
    """Read-only access to audit entries; writes go through AuditTrailRecorder."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def recent_for_clinic(self, clinic_id: str, window: int) -> Sequence[AuditEntry]:
        # candidate rows only: clinic id as resource_id or embedded in details
        q = select(AuditEntry).where(
            or_(AuditEntry.resource_id == clinic_id, _details_clinic_id() == clinic_id)
        ).order_by(AuditEntry.timestamp.desc()).limit(window)
        res = await self.session.execute(q)
        return res.scalars().all()

    def _filtered(self, q, f: AuditLogFilters):
        if f.clinic_id is not None:
            q = q.where(AuditEntry.clinic_id == str(f.clinic_id))
        if f.user_id:
            q = q.where(AuditEntry.user_id == f.user_id)
        if f.action_type:
            q = q.where(AuditEntry.action_type.contains(f.action_type))
        if f.resource_type:
            q = q.where(AuditEntry.resource_type == f.resource_type)
        if f.start_date:
            q = q.where(AuditEntry.timestamp >= f.start_date)
        if f.end_date:
            q = q.where(AuditEntry.timestamp <= f.end_date)
        return q

    async def list(self, f: AuditLogFilters) -> Sequence[AuditEntry]:
        q = self._filtered(select(AuditEntry), f).order_by(AuditEntry.timestamp.desc()).limit(f.limit).offset(f.offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def count(self, f: AuditLogFilters) -> int:
        q = self._filtered(select(func.count()).select_from(AuditEntry), f)
        res = await self.session.execute(q)
        return res.scalar_one()

    async def get(self, entry_id: uuid.UUID) -> AuditEntry | None:
        res = await self.session.execute(select(AuditEntry).where(AuditEntry.id == entry_id))
        return res.scalar_one_or_none()
