import uuid
from typing import Sequence
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.modules.users.models import User

class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> User:
        obj = User(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, user_id: uuid.UUID) -> User | None:
        res = await self.session.execute(select(User).where(User.id == user_id))
        return res.scalar_one_or_none()

    async def find_by_email(self, email: str) -> User | None:
        res = await self.session.execute(select(User).where(func.lower(User.email) == email.lower()).limit(1))
        return res.scalar_one_or_none()

    async def list_for_clinic(self, clinic_id: uuid.UUID) -> Sequence[User]:
        q = select(User).where(User.clinic_id == clinic_id).order_by(User.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def delete(self, obj: User) -> None:
        await self.session.delete(obj)
        await self.session.flush()
