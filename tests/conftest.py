import os
import uuid

os.environ.setdefault("ENV", "test")
os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinic_core.core.base import Base
from clinic_core.core.security import Principal
from clinic_core.modules.access.permissions import Role, default_permissions
from clinic_core.modules.audit import models as _audit_models  # noqa: F401
from clinic_core.modules.audit.recorder import AuditTrailRecorder
from clinic_core.modules.clinics import models as _clinic_models  # noqa: F401
from clinic_core.modules.users import models as _user_models  # noqa: F401
from clinic_core.platform.adapters.identity_memory import InMemoryIdentityAccounts


@pytest.fixture
async def session_factory(tmp_path):
    # file-backed so audit writes get their own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic_core.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def audit(session_factory):
    recorder = AuditTrailRecorder(session_factory)
    yield recorder
    await recorder.drain()


@pytest.fixture
def identity():
    return InMemoryIdentityAccounts()


@pytest.fixture
def system_admin():
    return Principal(user_id=uuid.uuid4(), role=Role.SYSTEM_ADMIN,
                     permissions=default_permissions(Role.SYSTEM_ADMIN))

