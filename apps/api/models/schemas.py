"""
Pydantic models for the Product Page Scraper API
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from scraper import ScrapeResult


# =============================================================================
# Base
# =============================================================================

class CamelModel(BaseModel):
    """Snake-case fields, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# =============================================================================
# Product Schemas
# =============================================================================

class SalesRankSchema(CamelModel):
    category: str
    rank: str


class ScrapedData(CamelModel):
    """Fields extracted from the product page DOM"""
    title: str
    brand: str
    item_form: str
    price: str
    description: str
    bullets: List[str] = Field(default_factory=list)
    main_image_url: str
    additional_image_urls: List[str] = Field(default_factory=list)
    rating: str
    review_count: str
    availability: str
    availability_date: str
    sales_rank: SalesRankSchema
    sub_rank: SalesRankSchema
    sources: Dict[str, str] = Field(default_factory=dict, description="Rule that produced each field")


class VisualCheck(CamelModel):
    """Brand and price as read off the screenshot"""
    brand: str
    price: str
    raw_price: str
    ok: bool
    error: Optional[str] = None


# =============================================================================
# Diagnostics / Page Schemas
# =============================================================================

class DiagnosticsSchema(CamelModel):
    navigation_attempts: int = 0
    transient_retries: int = 0
    bounce_attempts: int = 0
    dismissal_attempts: int = 0
    overlay_dismissals: int = 0
    continue_clicks: int = 0
    captcha_attempts: int = 0
    captcha_rounds: int = 0
    solver_ok: Optional[bool] = None
    state_history: List[str] = Field(default_factory=list)
    final_state: str


class PageMeta(CamelModel):
    current_url: str
    title: str


class PageControlSchema(CamelModel):
    """A link or button on a non-product page"""
    tag: str
    text: str = ""
    href: str = ""
    id: str = ""
    classes: str = ""
    name: str = ""
    type: str = ""
    rel: str = ""
    target: str = ""
    role: str = ""
    aria_label: str = ""
    onclick: str = ""


# =============================================================================
# Response Schemas
# =============================================================================

class ScrapeResponse(CamelModel):
    """Response for GET /scrape"""
    ok: bool = True
    url: str
    canonical_url: Optional[str] = None
    page_type: str = Field(..., description="product or nonProduct")
    scraped_data: Optional[ScrapedData] = None
    visual_check: Optional[VisualCheck] = None
    diagnostics: DiagnosticsSchema
    meta: PageMeta
    links: List[PageControlSchema] = Field(default_factory=list)
    buttons: List[PageControlSchema] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    screenshot: Optional[str] = Field(None, description="Base64 PNG of the final page")

    @classmethod
    def from_result(cls, result: ScrapeResult) -> "ScrapeResponse":
        return cls(
            url=result.locator,
            canonical_url=result.canonical_url,
            page_type=result.page_type.value,
            scraped_data=ScrapedData(**result.product.to_dict()) if result.product else None,
            visual_check=VisualCheck(
                brand=result.visual.brand,
                price=result.visual.price,
                raw_price=result.visual.raw_price,
                ok=result.visual.ok,
                error=result.visual.error or None,
            ) if result.visual else None,
            diagnostics=DiagnosticsSchema(**result.diagnostics.to_dict()),
            meta=PageMeta(current_url=result.current_url, title=result.page_title),
            links=[PageControlSchema(**vars(link)) for link in result.links],
            buttons=[PageControlSchema(**vars(button)) for button in result.buttons],
            counts=result.counts,
            screenshot=result.screenshot or None,
        )


class ErrorResponse(BaseModel):
    """Error response for /scrape"""
    ok: bool = False
    error: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    scraper_ready: bool
    captcha_enabled: bool
    timestamp: datetime
