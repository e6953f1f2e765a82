"""
Page Classifier
Decides which state a loaded page represents. First match wins:

    1. TRANSIENT_ERROR            upstream 503/504 or an error-page marker
    2. BOT_CHALLENGE              challenge path, interrogation text, captcha form
    3. CONTINUE_SHOPPING_OVERLAY  a visible dismiss/continue control
    4. DETOUR                     sign-in/help/preferences/mission pages
    5. PRODUCT                    title element + one strong secondary signal
    6. UNKNOWN

Signals are gathered fresh on every call; nothing is cached between
navigations and classifying never touches the page.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .controls import find_dismiss_control
from .models import PageState
from .navigator import is_challenge_url, looks_blocked_text

logger = logging.getLogger(__name__)


TRANSIENT_STATUSES = (503, 504)

TRANSIENT_RE = re.compile(
    r"service unavailable|gateway time-?out|503 service|504 gateway|"
    r"something went wrong on our end",
    re.IGNORECASE,
)

# How much body text the transient marker search looks at
TRANSIENT_SCAN_CHARS = 2000

PRODUCT_PATH_RE = re.compile(r"/(?:dp|gp/product|gp/aw/d)/[A-Z0-9]{10}", re.IGNORECASE)

DETOUR_PATH_RE = re.compile(
    r"^/(?:ap/|gp/navigation|gp/help|help/|customer-preferences|gp/yourstore|"
    r"gp/css/|hz/|gp/mission|mission)",
    re.IGNORECASE,
)

MISSION_RE = re.compile(r"mission", re.IGNORECASE)

TITLE_SELECTORS = ("#productTitle", "#titleSection #title")
BYLINE_SELECTORS = ("#bylineInfo",)
BUY_CTA_SELECTORS = ("#add-to-cart-button", "#buy-now-button")
LAYOUT_SELECTORS = ("#dp", "#dp-container", "#ppd", "#centerCol", "#leftCol")
CAPTCHA_IMAGE_SELECTORS = ('form[action*="validateCaptcha"] img', 'img[src*="captcha" i]')
CAPTCHA_INPUT_SELECTORS = ("#captchacharacters", 'form[action*="validateCaptcha"] input[type="text"]')


def _any(soup: BeautifulSoup, selectors) -> bool:
    return any(soup.select_one(sel) is not None for sel in selectors)


def url_path(url: str) -> str:
    try:
        return urlparse(url or "").path or "/"
    except ValueError:
        return "/"


def is_product_url(url: str) -> bool:
    return bool(PRODUCT_PATH_RE.search(url_path(url)))


def is_detour_url(url: str) -> bool:
    path = url_path(url)
    return bool(DETOUR_PATH_RE.search(path)) and not PRODUCT_PATH_RE.search(path)


def is_mission_detour(url: str, title: str = "") -> bool:
    """Forced interstitials that only break after a hop through the home page."""
    return bool(MISSION_RE.search(url_path(url)) or MISSION_RE.search(title or ""))


@dataclass(frozen=True)
class PageSignals:
    """Everything classification needs, captured in one read of the page."""
    url: str
    title: str = ""
    status: Optional[int] = None
    body_text: str = ""
    has_product_title: bool = False
    has_byline: bool = False
    has_buy_cta: bool = False
    has_layout: bool = False
    has_captcha_form: bool = False
    overlay_visible: bool = False

    @classmethod
    def from_document(
        cls,
        url: str,
        title: str,
        html: str,
        status: Optional[int] = None,
        overlay_visible: bool = False,
    ) -> "PageSignals":
        soup = BeautifulSoup(html or "", "html.parser")
        has_captcha = _any(soup, CAPTCHA_IMAGE_SELECTORS) and _any(soup, CAPTCHA_INPUT_SELECTORS)
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        body = soup.body or soup
        body_text = re.sub(r"\s+", " ", body.get_text(" ")).strip()
        return cls(
            url=url or "",
            title=title or "",
            status=status,
            body_text=body_text,
            has_product_title=_any(soup, TITLE_SELECTORS),
            has_byline=_any(soup, BYLINE_SELECTORS),
            has_buy_cta=_any(soup, BUY_CTA_SELECTORS),
            has_layout=_any(soup, LAYOUT_SELECTORS),
            has_captcha_form=has_captcha,
            overlay_visible=overlay_visible,
        )


def classify_signals(signals: PageSignals) -> PageState:
    """Pure state decision over a signal snapshot."""
    head_text = signals.body_text[:TRANSIENT_SCAN_CHARS]
    if (
        signals.status in TRANSIENT_STATUSES
        or TRANSIENT_RE.search(signals.title)
        or TRANSIENT_RE.search(head_text)
    ):
        return PageState.TRANSIENT_ERROR

    if (
        is_challenge_url(signals.url)
        or looks_blocked_text(signals.title, signals.body_text)
        or signals.has_captcha_form
    ):
        return PageState.BOT_CHALLENGE

    if signals.overlay_visible:
        return PageState.CONTINUE_SHOPPING_OVERLAY

    if is_detour_url(signals.url):
        return PageState.DETOUR

    if signals.has_product_title and (signals.has_byline or signals.has_buy_cta or signals.has_layout):
        return PageState.PRODUCT

    return PageState.UNKNOWN


class PageClassifier:
    """Reads a live page and classifies it."""

    async def inspect(self, page, status: Optional[int] = None) -> Tuple[PageState, PageSignals]:
        title = await page.title()
        html = await page.content()
        overlay_visible = await find_dismiss_control(page) is not None
        signals = PageSignals.from_document(page.url, title, html, status, overlay_visible)
        state = classify_signals(signals)
        logger.info(f"Classified {signals.url} as {state.value}")
        return state, signals

    async def classify(self, page, status: Optional[int] = None) -> PageState:
        state, _ = await self.inspect(page, status)
        return state

    async def is_product(self, page) -> bool:
        return await self.classify(page) == PageState.PRODUCT
