"""
Browser Session Factory
One isolated Chromium process per request: fresh context, fixed viewport,
spoofed client identity and webdriver suppression. Never pooled.
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from playwright.async_api import async_playwright, Error as PlaywrightError

from .config import ScraperSettings
from .exceptions import SessionClosed, is_closed_target_error

logger = logging.getLogger(__name__)


WEBDRIVER_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
"""

BLANK_URLS = ("", "about:blank")


def jitter(base: float, spread: float) -> float:
    """base + random fraction of spread, in seconds."""
    return base + random.random() * spread


class ActivePageResolver:
    """
    Picks the page the scraper should act on from a session's page list.

    Pages are listed oldest first, so the most recent open page with a real
    URL wins; an open blank page is the fallback; no open page at all means
    the session is gone.
    """

    @staticmethod
    def resolve(pages: Sequence[Any]) -> Any:
        open_pages = [p for p in pages if not p.is_closed()]
        for page in reversed(open_pages):
            if (page.url or "") not in BLANK_URLS:
                return page
        if open_pages:
            return open_pages[-1]
        raise SessionClosed("No open page left in session")


class Session:
    """A browser process, its single context and every page it spawned."""

    def __init__(self, settings: ScraperSettings, playwright=None, browser=None, context=None):
        self.settings = settings
        self._playwright = playwright
        self.browser = browser
        self.context = context
        self.closed = False

    @property
    def pages(self) -> List[Any]:
        if self.context is None:
            return []
        return list(self.context.pages)

    def active_page(self):
        """Re-derive the live page after any action that may spawn one."""
        return ActivePageResolver.resolve(self.pages)

    async def adopt_popup(self, timeout_ms: int = 8000):
        """
        Wait briefly for a pop-up after a click and return the active page.

        A missing pop-up is the normal case; the timeout is swallowed.
        """
        try:
            await self.context.wait_for_event("page", timeout=timeout_ms)
        except PlaywrightError:
            pass
        page = self.active_page()
        try:
            await page.bring_to_front()
        except PlaywrightError as e:
            logger.debug(f"bring_to_front failed: {e}")
        return page

    async def call_with_active_page(self, operation: Callable[[Any], Awaitable[Any]]) -> Any:
        """
        Run operation(page) on the active page, retrying once on a fresh
        active page if the first one died underneath it.
        """
        page = self.active_page()
        try:
            return await operation(page)
        except (PlaywrightError, SessionClosed) as e:
            if not (isinstance(e, SessionClosed) or is_closed_target_error(e) or page.is_closed()):
                raise
            logger.warning(f"Page closed mid-operation, adopting active page: {e}")

        page = self.active_page()
        try:
            return await operation(page)
        except PlaywrightError as e:
            if is_closed_target_error(e) or page.is_closed():
                raise SessionClosed(str(e)) from e
            raise

    async def screenshot(self, page, retries: int = 1) -> bytes:
        """Screenshot with a small jittered retry."""
        last_error: Optional[BaseException] = None
        for attempt in range(retries + 1):
            if page.is_closed():
                raise SessionClosed("Page closed before screenshot")
            try:
                return await page.screenshot(
                    type="png",
                    full_page=self.settings.full_page_screenshot,
                )
            except PlaywrightError as e:
                last_error = e
                if is_closed_target_error(e):
                    raise SessionClosed(f"Screenshot failed: {e}") from e
                if attempt < retries:
                    await asyncio.sleep(jitter(0.25, 0.5))
        raise SessionClosed(f"Screenshot failed: {last_error}")

    async def close(self) -> None:
        """Close every page, the context, the browser and the driver."""
        if self.closed:
            return
        self.closed = True

        for page in self.pages:
            try:
                if not page.is_closed():
                    await page.close(run_before_unload=False)
            except Exception as e:
                logger.debug(f"Page close failed: {e}")

        if self.context is not None:
            try:
                await self.context.close()
            except Exception as e:
                logger.debug(f"Context close failed: {e}")

        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as e:
                logger.warning(f"Browser close failed: {e}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Playwright stop failed: {e}")

        logger.info("Browser session closed")


async def launch_session(settings: ScraperSettings) -> Session:
    """Start Playwright and open an isolated browser context with one page."""
    playwright = await async_playwright().start()
    session = Session(settings, playwright=playwright)
    try:
        session.browser = await playwright.chromium.launch(
            headless=settings.headless,
            args=list(settings.launch_args),
        )
        session.context = await session.browser.new_context(
            viewport={"width": settings.viewport_width, "height": settings.viewport_height},
            user_agent=settings.user_agent,
            locale=settings.locale,
            extra_http_headers=dict(settings.extra_headers),
        )
        await session.context.add_init_script(script=WEBDRIVER_INIT_SCRIPT)
        await session.context.new_page()
    except BaseException:
        await session.close()
        raise

    logger.info("Browser session launched")
    return session


SessionFactory = Callable[[ScraperSettings], Awaitable[Session]]


@asynccontextmanager
async def open_session(
    settings: ScraperSettings,
    factory: Optional[SessionFactory] = None,
) -> AsyncIterator[Session]:
    """Session scoped to one request; closed however the block exits."""
    session = await (factory or launch_session)(settings)
    try:
        yield session
    finally:
        await session.close()
