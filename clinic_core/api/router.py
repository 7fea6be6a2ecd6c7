from fastapi import APIRouter, Depends
from clinic_core.core.ratelimit import rate_limit
from clinic_core.modules.clinics.router import router as clinics_router
from clinic_core.modules.users.router import router as users_router
from clinic_core.modules.audit.router import router as audit_router
from clinic_core.modules.validation.router import router as validation_router

api_router = APIRouter(dependencies=[Depends(rate_limit)])
api_router.include_router(clinics_router, prefix="/clinics", tags=["clinics"])
api_router.include_router(users_router, prefix="/users", tags=["users"])
api_router.include_router(audit_router, prefix="/logs", tags=["audit"])
api_router.include_router(validation_router, prefix="/validation", tags=["validation"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
