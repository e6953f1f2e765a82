"""
Scrape Router
One-shot product page scrape by URL or item id.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from scraper import ProductScraper, resolve_locator

from models.schemas import ErrorResponse, ScrapeResponse
from services.scraper import get_product_scraper

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scrape"])


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


@router.get(
    "/scrape",
    response_model=ScrapeResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def scrape_product(
    url: Optional[str] = Query(None, description="Product page URL"),
    asin: Optional[str] = Query(None, description="10-character item id"),
    screenshot: bool = Query(True, description="Include a base64 screenshot"),
    scraper: ProductScraper = Depends(get_product_scraper),
):
    """
    Scrape one product page.

    Navigates to the page, recovers from bot challenges, overlays and
    detours, then extracts the product record and cross-checks brand and
    price against a screenshot. Pages that never become a product page
    come back as pageType=nonProduct with their links and buttons.
    """
    locator = url or asin
    try:
        resolve_locator(locator, scraper.settings.default_domain)
    except ValueError as e:
        return error_response(400, str(e))

    logger.info(f"Scrape request: {locator}")

    try:
        result = await scraper.scrape(locator, include_screenshot=screenshot)
    except ValueError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.error(f"Scrape failed for {locator}: {e}", exc_info=True)
        return error_response(500, str(e) or type(e).__name__)

    return ScrapeResponse.from_result(result)
