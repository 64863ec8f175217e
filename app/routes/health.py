"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and basic connectivity tests.
"""

from fastapi import APIRouter, Depends, HTTPException

from app.core.settings import settings
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import utcnow


router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/db")
async def database_health(store: ReportStore = Depends(get_report_store)):
    """
    Store connectivity check.
    Performs a lightweight round trip against the configured backend.
    """
    try:
        info = store.ping()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database connection failed: {str(e)}")
    return {"status": "healthy", **info, "timestamp": utcnow().isoformat()}
