"""
Navigator
Timed, retried page loads with a block-detection probe.

Loads stop at the first committed response; full settle on an adversarial
site is unbounded. After commit we wait for DOM-ready or the product title,
whichever comes first, under a short ceiling.
"""

import asyncio
import logging
import re
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from .config import ScraperSettings
from .exceptions import Blocked, NavigationFailed, SessionClosed, is_closed_target_error
from .models import NavigationOutcome
from .session import jitter

logger = logging.getLogger(__name__)


PRODUCT_TITLE_SELECTOR = "#productTitle, #titleSection #title"

CHALLENGE_PATH_MARKERS = ("/errors/validatecaptcha", "/captcha", "/sorry")

BLOCK_TITLE_RE = re.compile(r"robot check|captcha", re.IGNORECASE)

BLOCK_BODY_RE = re.compile(
    r"enter the characters|type the characters|"
    r"make sure you'?re not a robot|verifying you are human",
    re.IGNORECASE,
)

BODY_TEXT_JS = "() => (document.body && document.body.innerText) || ''"


def is_challenge_url(url: Optional[str]) -> bool:
    """True when the address is one of the known challenge paths."""
    if not url:
        return False
    lowered = url.lower()
    return any(marker in lowered for marker in CHALLENGE_PATH_MARKERS)


def looks_blocked_text(title: str, body_text: str) -> bool:
    return bool(BLOCK_TITLE_RE.search(title or "") or BLOCK_BODY_RE.search(body_text or ""))


async def looks_blocked(page) -> bool:
    """Block probe against URL, title and a quick body-text sniff."""
    if is_challenge_url(page.url):
        return True
    try:
        title = await page.title()
    except PlaywrightError:
        title = ""
    try:
        body_text = await page.evaluate(BODY_TEXT_JS)
    except PlaywrightError as e:
        if is_closed_target_error(e):
            raise
        body_text = ""
    return looks_blocked_text(title, body_text or "")


class Navigator:
    """Loads a locator into a page with bounded retries."""

    def __init__(self, settings: ScraperSettings):
        self.settings = settings

    async def wait_until_ready(self, page, ceiling_ms: Optional[int] = None) -> bool:
        """
        Wait for DOMContentLoaded or the product title marker.

        Returns:
            True if either signal arrived before the ceiling.
        """
        ceiling = ceiling_ms if ceiling_ms is not None else self.settings.ready_ceiling_ms
        waiters = [
            asyncio.ensure_future(page.wait_for_load_state("domcontentloaded", timeout=ceiling)),
            asyncio.ensure_future(page.wait_for_selector(PRODUCT_TITLE_SELECTOR, timeout=ceiling)),
        ]
        ready = False
        try:
            pending = set(waiters)
            while pending and not ready:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                ready = any(not t.cancelled() and t.exception() is None for t in done)
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        return ready

    async def navigate(
        self,
        page,
        url: str,
        retries: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> NavigationOutcome:
        """
        Navigate with retry, jitter and block detection.

        Args:
            page: Playwright page to load into
            url: Address to load
            retries: Extra attempts after the first (default from settings)
            timeout_ms: Per-attempt commit timeout (default from settings)

        Returns:
            NavigationOutcome for the successful attempt

        Raises:
            Blocked: every attempt committed onto a bot challenge
            NavigationFailed: transport errors exhausted the retries
            SessionClosed: the page died during navigation
        """
        retries = self.settings.nav_retries if retries is None else retries
        timeout_ms = self.settings.nav_timeout_ms if timeout_ms is None else timeout_ms
        outcome = NavigationOutcome(url=url)
        last_error: Optional[BaseException] = None

        for attempt in range(retries + 1):
            outcome.attempts = attempt + 1
            outcome.blocked = False
            try:
                await asyncio.sleep(jitter(*self.settings.pre_nav_jitter))
                response = await page.goto(url, timeout=timeout_ms, wait_until="commit")
                outcome.status = response.status if response is not None else None
                await self.wait_until_ready(page)
                await asyncio.sleep(jitter(*self.settings.post_nav_jitter))
                outcome.final_url = page.url

                if await looks_blocked(page):
                    outcome.blocked = True
                    raise Blocked("Blocked by CAPTCHA/anti-bot page", outcome=outcome)

                logger.info(
                    f"Navigated to {outcome.final_url} "
                    f"(status {outcome.status}, attempt {outcome.attempts})"
                )
                return outcome

            except (PlaywrightError, Blocked) as e:
                last_error = e
                if page.is_closed() or is_closed_target_error(e):
                    raise SessionClosed(f"Page closed during navigation: {e}") from e
                logger.warning(f"Navigation attempt {attempt + 1} to {url} failed: {e}")
                if attempt < retries:
                    await asyncio.sleep(jitter(*self.settings.retry_jitter))

        if outcome.blocked:
            raise Blocked(
                f"Still blocked after {outcome.attempts} attempts",
                last_error=last_error,
                outcome=outcome,
            )
        raise NavigationFailed(
            f"Navigation to {url} failed after {outcome.attempts} attempts: {last_error}",
            last_error=last_error,
            outcome=outcome,
        )
