import uuid
from typing import Sequence
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.modules.clinics.models import Clinic
from clinic_core.modules.clinics.schemas import ClinicFilters

_SORT_COLUMNS = {
    "name": lambda: func.lower(Clinic.name),
    "city": lambda: func.lower(Clinic.city),
    "created_at": lambda: Clinic.created_at,
}

class ClinicRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Clinic:
        obj = Clinic(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, clinic_id: uuid.UUID) -> Clinic | None:
        res = await self.session.execute(select(Clinic).where(Clinic.id == clinic_id))
        return res.scalar_one_or_none()

    async def find_by_cnpj(self, cnpj: str) -> Clinic | None:
        res = await self.session.execute(select(Clinic).where(Clinic.cnpj == cnpj).limit(1))
        return res.scalar_one_or_none()

    async def find_by_email(self, email: str, exclude_id: uuid.UUID | None = None) -> Clinic | None:
        q = select(Clinic).where(func.lower(Clinic.email) == email.lower())
        if exclude_id is not None:
            q = q.where(Clinic.id != exclude_id)
        res = await self.session.execute(q.limit(1))
        return res.scalar_one_or_none()

    async def list(self) -> Sequence[Clinic]:
        res = await self.session.execute(select(Clinic).order_by(Clinic.created_at.desc()))
        return res.scalars().all()

    async def search(self, query: str | None, f: ClinicFilters) -> Sequence[Clinic]:
        q = select(Clinic)
        term = (query or "").strip().lower()
        if term:
            q = q.where(or_(
                func.lower(Clinic.name).contains(term, autoescape=True),
                func.lower(Clinic.cnpj).contains(term, autoescape=True),
                func.lower(Clinic.email).contains(term, autoescape=True),
            ))
        if f.status != "all":
            q = q.where(Clinic.status == f.status)
        column = _SORT_COLUMNS[f.sort_by]()
        q = q.order_by(column.asc() if f.sort_order == "asc" else column.desc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_by_provisioning_status(self, statuses: tuple[str, ...]) -> Sequence[Clinic]:
        q = select(Clinic).where(Clinic.provisioning_status.in_(statuses)).order_by(Clinic.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def delete(self, obj: Clinic) -> None:
        await self.session.delete(obj)
        await self.session.flush()
