import logging
import time
from datetime import datetime, timezone
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from clinic_core.api.router import api_router
from clinic_core.core.config import settings
from clinic_core.core.db import SessionLocal, init_models
from clinic_core.core.errors import AuthorizationError, ClinicCoreError
from clinic_core.core.logging import request_id_ctx, setup_logging
from clinic_core.core.ratelimit import RateLimitState
from clinic_core.core.security import get_request_meta
from clinic_core.modules.audit.recorder import AuditTrailRecorder
from clinic_core.platform.provider_registry import ProviderRegistry

setup_logging()
logger = logging.getLogger(__name__)

def _error_body(exc: ClinicCoreError) -> dict:
    return {
        "error": {
            **exc.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id_ctx.get(),
        }
    }

def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    registry: ProviderRegistry | None = None,
    rate_limit: RateLimitState | None = None,
) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)
    app.state.session_factory = session_factory or SessionLocal
    app.state.registry = registry or ProviderRegistry()
    app.state.audit = AuditTrailRecorder(app.state.session_factory)
    app.state.rate_limit = rate_limit or RateLimitState()

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id", "-")
        request_id_ctx.set(rid)
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        logger.info(f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms")
        return response

    @app.exception_handler(ClinicCoreError)
    async def domain_exception_handler(request: Request, exc: ClinicCoreError):
        if isinstance(exc, AuthorizationError):
            principal = getattr(request.state, "principal", None)
            app.state.audit.security_event(
                "permission_denied",
                principal.user_id if principal else None,
                principal.clinic_id if principal else None,
                {"method": request.method, "path": request.url.path, "reason": exc.message},
                get_request_meta(request),
            )
        if exc.status_code >= 500:
            logger.error(f"{exc.code} for {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL_ERROR", "message": "An internal server error occurred.",
                               "timestamp": datetime.now(timezone.utc).isoformat(),
                               "request_id": request_id_ctx.get()}},
        )

    @app.on_event("startup")
    async def on_startup():
        if session_factory is None:
            await init_models()

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.audit.drain()
        await app.state.registry.close()

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app

app = create_app()
