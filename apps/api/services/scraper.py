"""
Scraper Service
Process-wide ProductScraper built once from environment settings.
"""

import logging
from typing import Any, Dict, Optional

from scraper import ProductScraper, ScraperSettings

logger = logging.getLogger(__name__)


# Global instance for dependency injection
_product_scraper: Optional[ProductScraper] = None


def get_product_scraper() -> ProductScraper:
    """
    Get or create the scraper instance.

    Raises:
        ConfigurationError: ANTHROPIC_API_KEY (or another required setting) is missing
    """
    global _product_scraper
    if _product_scraper is None:
        settings = ScraperSettings.from_env()
        _product_scraper = ProductScraper(settings)
        logger.info(
            f"Product scraper ready (vision model: {settings.vision_model}, "
            f"captcha solver: {'on' if settings.captcha_enabled else 'off'})"
        )
    return _product_scraper


def reset_product_scraper() -> None:
    global _product_scraper
    _product_scraper = None


def scraper_status() -> Dict[str, Any]:
    """Configuration summary for health checks; never creates the scraper."""
    if _product_scraper is None:
        return {"ready": False}
    settings = _product_scraper.settings
    return {
        "ready": True,
        "vision_model": settings.vision_model,
        "captcha_enabled": settings.captcha_enabled,
        "headless": settings.headless,
        "default_domain": settings.default_domain,
    }
