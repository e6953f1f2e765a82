"""
Product Scraper Pipeline
One request, end to end:

    resolve locator -> open session -> navigate -> resolve interstitials
        -> PRODUCT:      extract fields, screenshot, visual cross-check
        -> anything else: screenshot, links and buttons (degraded result)

The session is closed on every exit path.
"""

import asyncio
import base64
import logging
import re
from typing import Optional
from urllib.parse import urlparse

from .captcha import CaptchaSolver
from .classifier import PageClassifier
from .config import ScraperSettings
from .exceptions import Blocked
from .extractor import ProductExtractor, extract_page_controls
from .models import Diagnostics, PageState, PageType, ScrapeResult, TargetLocator
from .navigator import Navigator
from .resolver import InterstitialResolver
from .session import SessionFactory, jitter, open_session
from .vision import VisualCrossChecker

logger = logging.getLogger(__name__)


ITEM_ID_RE = re.compile(r"^[A-Z0-9]{10}$")
URL_ITEM_ID_RE = re.compile(r"/(?:dp|gp/product|gp/aw/d)/([A-Z0-9]{10})", re.IGNORECASE)


def resolve_locator(locator: Optional[str], default_domain: str = "www.amazon.com") -> TargetLocator:
    """
    Turn a caller locator (full URL or bare 10-character item id) into the
    addresses the scraper navigates to.

    Raises:
        ValueError: empty or unusable locator
    """
    value = (locator or "").strip()
    if not value:
        raise ValueError("Missing url or asin")

    if ITEM_ID_RE.match(value.upper()):
        item_id = value.upper()
        canonical = f"https://{default_domain}/dp/{item_id}"
        return TargetLocator(
            locator=value,
            url=canonical,
            canonical_url=canonical,
            item_id=item_id,
            home_url=f"https://{default_domain}/",
        )

    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid url or asin: {value}")

    origin = f"{parsed.scheme}://{parsed.netloc}"
    match = URL_ITEM_ID_RE.search(parsed.path)
    item_id = match.group(1).upper() if match else None
    return TargetLocator(
        locator=value,
        url=value,
        canonical_url=f"{origin}/dp/{item_id}" if item_id else None,
        item_id=item_id,
        home_url=f"{origin}/",
    )


class ProductScraper:
    """
    Scrapes one product page per call.

    Usage:
        scraper = ProductScraper(ScraperSettings.from_env())
        result = await scraper.scrape("B08N5WRWNW")
    """

    def __init__(
        self,
        settings: ScraperSettings,
        session_factory: Optional[SessionFactory] = None,
        vision: Optional[VisualCrossChecker] = None,
        solver: Optional[CaptchaSolver] = None,
        extractor: Optional[ProductExtractor] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.navigator = Navigator(settings)
        self.classifier = PageClassifier()
        self.extractor = extractor or ProductExtractor()
        self.vision = vision if vision is not None else VisualCrossChecker(settings)
        if solver is None and settings.captcha_enabled:
            solver = CaptchaSolver(settings)
        self.resolver = InterstitialResolver(settings, self.navigator, self.classifier, solver)

    async def scrape(self, locator: str, include_screenshot: bool = True) -> ScrapeResult:
        """
        Scrape a product page.

        Args:
            locator: Product URL or bare item id
            include_screenshot: Attach the base64 screenshot to the result

        Returns:
            ScrapeResult with page_type PRODUCT, or NON_PRODUCT when recovery
            gave up (screenshot, counters, links and buttons attached)

        Raises:
            ValueError: unusable locator
            NavigationFailed: transport failures exhausted the retries
            SessionClosed: the browser died mid-request
        """
        target = resolve_locator(locator, self.settings.default_domain)
        diagnostics = Diagnostics()
        logger.info(f"Scraping {target.url}")

        async with open_session(self.settings, self.session_factory) as session:
            try:
                outcome = await session.call_with_active_page(
                    lambda page: self.navigator.navigate(page, target.url)
                )
                status = outcome.status
                diagnostics.navigation_attempts += outcome.attempts
            except Blocked as e:
                logger.warning(f"Navigation blocked, handing page to resolver: {e}")
                status = e.outcome.status if e.outcome is not None else None
                diagnostics.navigation_attempts += e.outcome.attempts if e.outcome is not None else 0

            page, state = await self.resolver.resolve(session, target, status, diagnostics)

            result = ScrapeResult(
                locator=target.locator,
                page_type=PageType.PRODUCT if state == PageState.PRODUCT else PageType.NON_PRODUCT,
                canonical_url=target.canonical_url,
                diagnostics=diagnostics,
            )

            if result.is_product:
                await asyncio.sleep(jitter(*self.settings.stabilize_jitter))
                result.product = await session.call_with_active_page(self.extractor.extract)
                page = session.active_page()
                png = await session.screenshot(page)
                result.visual = await self.vision.check(png, result.product.price)
            else:
                page = session.active_page()
                html = await page.content()
                result.links, result.buttons, result.counts = extract_page_controls(html, page.url)
                png = await session.screenshot(page)

            result.current_url = page.url
            result.page_title = await page.title()
            if include_screenshot:
                result.screenshot = base64.b64encode(png).decode("ascii")

        logger.info(
            f"Scrape of {target.url} finished as {result.page_type.value} "
            f"(states: {' -> '.join(diagnostics.state_history)})"
        )
        return result
