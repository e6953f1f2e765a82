"""
Product Page Scraper API
FastAPI entry point: GET /scrape plus health probes.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# Repo root holds the scraper package
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from routers.scrape import router as scrape_router
from routers.health import router as health_router
from services.scraper import get_product_scraper, reset_product_scraper

API_VERSION = "1.0.0"

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the scraper before serving; ConfigurationError here stops startup."""
    logger.info(
        f"Starting scraper API (env: {os.environ.get('PYTHON_ENV', 'development')}, "
        f"port: {os.environ.get('PORT', '8080')})"
    )
    get_product_scraper()
    yield
    logger.info("Scraper API stopped")
    reset_product_scraper()


app = FastAPI(
    title="Product Page Scraper API",
    description=(
        "Scrapes one marketplace product page by URL or item id, recovering from "
        "bot challenges, overlays and detours, and cross-checks brand and price "
        "against a screenshot."
    ),
    version=API_VERSION,
    lifespan=lifespan
)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Unexpected errors keep the {ok, error} shape of /scrape failures."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    message = "Internal server error" if os.environ.get("PYTHON_ENV") == "production" else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": message}
    )


app.include_router(health_router)
app.include_router(scrape_router)


@app.get("/", include_in_schema=False)
async def root():
    """Service banner."""
    return {
        "name": "Product Page Scraper API",
        "version": API_VERSION,
        "usage": "/scrape?url=<product url> or /scrape?asin=<item id>",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8080)),
        reload=os.environ.get("PYTHON_ENV") != "production",
        log_level=os.environ.get("LOG_LEVEL", "info").lower()
    )
