from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_models():
    # In dev-only "create_all" mode build the schema here; otherwise migrations own it.
    if settings.DB_MANAGE == "create_all":
        # register every model on Base.metadata
        from clinic_core.modules.clinics import models as _clinics  # noqa: F401
        from clinic_core.modules.users import models as _users  # noqa: F401
        from clinic_core.modules.audit import models as _audit  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
