"""FastAPI application factory for OrbitCRM."""

import math
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orbit_crm.common.config import get_settings
from orbit_crm.common.exceptions import OrbitError, RateLimitedError
from orbit_crm.common.logging import get_logger
from orbit_crm.common.schemas import HealthResponse

logger = get_logger("app")


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from orbit_crm.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        from orbit_crm.deps import get_chat_service
        await get_chat_service().drain()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrbitError)
    async def orbit_error_handler(request: Request, exc: OrbitError):
        headers = {}
        if isinstance(exc, RateLimitedError):
            headers["Retry-After"] = str(max(0, math.ceil(exc.reset_at - time.time())))
            headers["X-RateLimit-Reset"] = str(math.ceil(exc.reset_at))
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "message": exc.message, **exc.extra},
            headers=headers,
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        from orbit_crm.deps import get_db
        db_ok = await get_db().ping()
        return HealthResponse(
            status="ok" if db_ok else "degraded",
            version=settings.api_version,
            database="ok" if db_ok else "unavailable",
        )

    # Mount routers
    from orbit_crm.activity.router import router as activity_router
    from orbit_crm.chat.router import router as chat_router
    from orbit_crm.contacts.router import router as contacts_router
    from orbit_crm.documents.router import router as documents_router
    from orbit_crm.invoices.router import router as invoices_router
    from orbit_crm.notifications.router import router as notifications_router
    from orbit_crm.portal.router import router as portal_router
    from orbit_crm.projects.router import router as projects_router
    from orbit_crm.tenants.router import router as tenant_router

    app.include_router(tenant_router, tags=["tenants"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(contacts_router, tags=["contacts"])
    app.include_router(projects_router, tags=["projects"])
    app.include_router(invoices_router, tags=["invoices"])
    app.include_router(documents_router, tags=["documents"])
    app.include_router(activity_router, tags=["activity"])
    app.include_router(portal_router, tags=["portal"])
    app.include_router(notifications_router, tags=["notifications"])

    return app
