"""
Civic Pulse - FastAPI Application Entry Point

Citizen report lifecycle and trust-weighted community voting.

DESIGN PRINCIPLES:
- Reports move through a strict status workflow with a full audit trail
- One vote per user per report; counters never drift from the ledger
- Reputation effects are best effort and never block a report or a vote
- Escalation is an SLA signal, not a status change
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.errors import CivicError, InternalError
from app.core.settings import settings
from app.routes import admin, health, reports, users

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Civic report lifecycle and trust-weighted voting engine",
    debug=settings.DEBUG,
)


@app.exception_handler(CivicError)
async def civic_error_handler(request: Request, exc: CivicError):
    """Map domain errors to their HTTP status codes."""
    if isinstance(exc, InternalError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": "Internal server error", "error": exc.error_code},
        )
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Pydantic validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.method} {request.url.path} -> 422: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc), "error": "validation_error"},
    )


# Global exception handler to catch ALL other exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": "internal_error"},
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# CORS: allowed origins come from settings, never "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_scheduler = None


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Initialize services on application startup.
    - Store backend (Firestore, or in-memory when USE_MOCK_DB)
    - Default department directory
    - Escalation scheduler, when enabled
    """
    global _scheduler
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    from app.services.department_service import get_department_service

    try:
        created = get_department_service().ensure_default_departments()
        if created:
            logger.info(f"[STARTUP] Seeded {created} default department(s)")
    except Exception as e:
        logger.warning(f"[STARTUP] Store initialization failed: {e}. Database operations may fail.")
        return

    if settings.ESCALATION_SCHEDULER_ENABLED:
        from app.services.escalation_engine import EscalationScheduler

        _scheduler = EscalationScheduler()
        _scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the escalation scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
    logger.info(f"Shutting down {settings.APP_NAME}")


# Include routers
app.include_router(health.router)
app.include_router(reports.router)
app.include_router(users.router)
app.include_router(admin.router)


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
    }
