from typing import AsyncIterator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_core.modules.audit.recorder import AuditTrailRecorder
from clinic_core.platform.ports.identity_accounts import IdentityAccountPort

# Everything hangs off app.state so each app instance owns its own engine,
# recorder and adapters.

async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session

def get_audit(request: Request) -> AuditTrailRecorder:
    return request.app.state.audit

def get_identity(request: Request) -> IdentityAccountPort:
    return request.app.state.registry.identity_accounts()
