"""
Health Check Router
"""

from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from models.schemas import HealthResponse
from services.scraper import scraper_status

router = APIRouter(prefix="/api", tags=["Health"])

API_VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Reports whether the scraper has been built and whether bot challenges
    can be solved (CAPTCHA_API_KEY configured).
    """
    scraper = scraper_status()
    ready = scraper["ready"]

    return HealthResponse(
        status="healthy" if ready else "degraded",
        version=API_VERSION,
        scraper_ready=ready,
        captcha_enabled=scraper.get("captcha_enabled", False),
        timestamp=datetime.utcnow()
    )


@router.get("/health/ready")
async def readiness_check():
    """
    Kubernetes-style readiness probe.
    Returns 200 once the scraper is configured.
    """
    if scraper_status()["ready"]:
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not ready", "reason": "Scraper not configured"}
    )


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes-style liveness probe.
    Returns 200 if the service is running.
    """
    return {"status": "alive"}
