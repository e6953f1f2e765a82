"""
Interstitial Resolver
Drives a page from whatever the site served towards the product page.

Each recovery strategy owns an independent RetryBudget:

    TRANSIENT_ERROR            -> re-navigate to the target
    BOT_CHALLENGE              -> solve the text CAPTCHA (if a solver is configured)
    CONTINUE_SHOPPING_OVERLAY  -> dismiss the overlay
    DETOUR                     -> bounce back to the canonical address (via home for missions)
    UNKNOWN                    -> click any literal "continue shopping" control

The page is re-classified after every strategy. A strategy whose budget is
spent ends the loop; the loop as a whole is also capped at the sum of all
budgets, so a page that never becomes a product page always terminates.
"""

import asyncio
import logging
from typing import Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from .captcha import CaptchaSolver
from .classifier import (
    CAPTCHA_IMAGE_SELECTORS,
    CAPTCHA_INPUT_SELECTORS,
    PageClassifier,
    PageSignals,
    is_mission_detour,
)
from .config import ScraperSettings
from .controls import find_dismiss_control
from .exceptions import Blocked, CaptchaError, NavigationFailed, is_closed_target_error
from .models import Diagnostics, PageState, RetryBudget, TargetLocator
from .navigator import PRODUCT_TITLE_SELECTOR, Navigator
from .session import Session

logger = logging.getLogger(__name__)


CONTINUE_PHRASES = ("continue shopping", "keep shopping")

CLICK_BY_TEXT_JS = """(phrase) => {
  const nodes = Array.from(document.querySelectorAll(
    'button, a, input[type="submit"], input[type="button"], [role="button"]'
  ));
  const target = nodes.find((n) => ((n.innerText || n.value || '') + '').toLowerCase().includes(phrase));
  if (!target) return false;
  if (target.scrollIntoView) target.scrollIntoView({ block: 'center', inline: 'center' });
  target.click();
  return true;
}"""

HOME_LOGO_SELECTOR = "#nav-logo-sprites, #nav-logo a"

CAPTCHA_IMAGE_SELECTOR = ", ".join(CAPTCHA_IMAGE_SELECTORS)
CAPTCHA_INPUT_SELECTOR = ", ".join(CAPTCHA_INPUT_SELECTORS)

CAPTCHA_SUBMIT_SELECTOR = (
    'form[action*="validateCaptcha"] button[type="submit"], '
    'form[action*="validateCaptcha"] input[type="submit"]'
)

SETTLE_POLL_SECONDS = 0.25
CLICK_TIMEOUT_MS = 2000


class InterstitialResolver:
    """Recovery loop over classifier states."""

    def __init__(
        self,
        settings: ScraperSettings,
        navigator: Navigator,
        classifier: PageClassifier,
        solver: Optional[CaptchaSolver] = None,
    ):
        self.settings = settings
        self.navigator = navigator
        self.classifier = classifier
        self.solver = solver

    # =========================================================================
    # Page probes
    # =========================================================================

    async def _has_product_title(self, page) -> bool:
        try:
            return await page.locator(PRODUCT_TITLE_SELECTOR).first.is_visible()
        except PlaywrightError as e:
            if is_closed_target_error(e):
                raise
            return False

    async def _settled(self, page) -> bool:
        """Overlay gone or product title present within the settle window."""
        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.settings.settle_ms / 1000
        while True:
            if await find_dismiss_control(page) is None or await self._has_product_title(page):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(SETTLE_POLL_SECONDS)

    async def _click_by_text(self, page) -> bool:
        for phrase in CONTINUE_PHRASES:
            try:
                if await page.evaluate(CLICK_BY_TEXT_JS, phrase):
                    logger.info(f"Clicked control by text: {phrase!r}")
                    return True
            except PlaywrightError as e:
                if is_closed_target_error(e):
                    raise
                logger.debug(f"Text click failed for {phrase!r}: {e}")
        return False

    async def _navigate(self, session: Session, url: str, diagnostics: Diagnostics) -> Optional[int]:
        """Re-navigation inside the loop; failures fall through to re-classification."""
        try:
            outcome = await session.call_with_active_page(
                lambda page: self.navigator.navigate(page, url)
            )
        except Blocked as e:
            if e.outcome is not None:
                diagnostics.navigation_attempts += e.outcome.attempts
                return e.outcome.status
            return None
        except NavigationFailed as e:
            logger.warning(f"Re-navigation to {url} failed: {e}")
            if e.outcome is not None:
                diagnostics.navigation_attempts += e.outcome.attempts
            return None
        diagnostics.navigation_attempts += outcome.attempts
        return outcome.status

    async def _wait_ready(self, session: Session) -> None:
        await session.call_with_active_page(self.navigator.wait_until_ready)

    # =========================================================================
    # Single-page steps (run through Session.call_with_active_page)
    # =========================================================================

    async def _dismiss_once(self, page) -> bool:
        """
        One dismissal try on one page: dismiss control, then a text scan,
        then Escape.

        Returns:
            True if something was clicked (a pop-up may follow)
        """
        control = await find_dismiss_control(page)
        if control is not None:
            try:
                await control.locator.click(timeout=CLICK_TIMEOUT_MS)
                logger.info(f"Clicked dismiss control ({control.source}): {control.description}")
                return True
            except PlaywrightError as e:
                if is_closed_target_error(e):
                    raise
                logger.warning(f"Dismiss click failed: {e}")

        if await self._click_by_text(page):
            return True

        await page.keyboard.press("Escape")
        logger.info("No dismiss control clicked, pressed Escape")
        return False

    async def _click_home_logo(self, page) -> bool:
        logo = page.locator(HOME_LOGO_SELECTOR).first
        try:
            if not await logo.is_visible():
                return False
            await logo.click(timeout=CLICK_TIMEOUT_MS)
            return True
        except PlaywrightError as e:
            if is_closed_target_error(e):
                raise
            logger.warning(f"Logo click failed: {e}")
            return False

    async def _capture_challenge(self, page) -> Optional[bytes]:
        """Challenge image as PNG, or None when the page has no visible image and input."""
        image = page.locator(CAPTCHA_IMAGE_SELECTOR).first
        field = page.locator(CAPTCHA_INPUT_SELECTOR).first
        try:
            if not (await image.is_visible() and await field.is_visible()):
                return None
            return await image.screenshot(type="png")
        except PlaywrightError as e:
            if is_closed_target_error(e):
                raise
            logger.warning(f"CAPTCHA image capture failed: {e}")
            return None

    async def _submit_answer(self, page, answer: str) -> bool:
        try:
            await page.locator(CAPTCHA_INPUT_SELECTOR).first.fill(answer, timeout=CLICK_TIMEOUT_MS)
            submit = page.locator(CAPTCHA_SUBMIT_SELECTOR).first
            if await submit.is_visible():
                await submit.click(timeout=CLICK_TIMEOUT_MS)
            else:
                await page.keyboard.press("Enter")
            return True
        except PlaywrightError as e:
            if is_closed_target_error(e):
                raise
            logger.warning(f"CAPTCHA answer not submitted: {e}")
            return False

    # =========================================================================
    # Strategies
    # =========================================================================

    async def dismiss_overlay(self, session: Session, budget: RetryBudget, diagnostics: Diagnostics) -> bool:
        """
        Dismiss the continue-shopping overlay or side sheet.

        Each attempt tries, in order: known selectors, role+text in the main
        document, the same inside side-sheet frames, a full-document text
        scan, and finally the Escape key.

        Returns:
            True once the overlay is gone or the product title is showing
        """
        while budget.consume():
            diagnostics.dismissal_attempts += 1

            if await session.call_with_active_page(self._dismiss_once):
                await session.adopt_popup(self.settings.popup_timeout_ms)

            if await session.call_with_active_page(self._settled):
                diagnostics.overlay_dismissals += 1
                return True

            logger.warning(f"Overlay still present after attempt {diagnostics.dismissal_attempts}")
        return False

    async def click_continue_loop(self, session: Session, budget: RetryBudget, diagnostics: Diagnostics) -> int:
        """
        Click literal continue-shopping controls until the product title
        shows up, nothing is left to click, or the budget runs out.

        Returns:
            Number of clicks made
        """
        clicks = 0
        while not budget.exhausted:
            if not await session.call_with_active_page(self._click_by_text):
                break
            budget.consume()
            clicks += 1
            diagnostics.continue_clicks += 1

            await session.adopt_popup(self.settings.popup_timeout_ms)
            await self._wait_ready(session)
            if await session.call_with_active_page(self._has_product_title):
                break
        return clicks

    async def go_home(self, session: Session, target: TargetLocator, diagnostics: Diagnostics) -> None:
        """Hop through the site home via the logo, or by address if there is no logo."""
        if await session.call_with_active_page(self._click_home_logo):
            await session.adopt_popup(self.settings.popup_timeout_ms)
            await self._wait_ready(session)
            logger.info("Went home via logo")
            return

        if target.home_url:
            await self._navigate(session, target.home_url, diagnostics)
            logger.info(f"Went home via {target.home_url}")

    async def bounce_detour(
        self,
        session: Session,
        target: TargetLocator,
        signals: PageSignals,
        diagnostics: Diagnostics,
    ) -> Optional[int]:
        """Re-navigate to the canonical address, via home for mission detours."""
        if is_mission_detour(signals.url, signals.title):
            await self.go_home(session, target, diagnostics)
        destination = target.canonical_url or target.url
        logger.info(f"Bouncing from {signals.url} back to {destination}")
        return await self._navigate(session, destination, diagnostics)

    async def solve_captcha(self, session: Session, diagnostics: Diagnostics) -> bool:
        """
        Screenshot the challenge image, have it solved, type the answer and submit.

        Best effort: any failure short of a closed page sets solver_ok to
        False instead of raising.

        Returns:
            True if an answer was submitted
        """
        png = await session.call_with_active_page(self._capture_challenge)
        if png is None:
            diagnostics.solver_ok = False
            logger.warning("Bot challenge without a visible CAPTCHA image and input")
            return False

        try:
            answer, rounds = await self.solver.solve(png)
        except CaptchaError as e:
            diagnostics.solver_ok = False
            logger.warning(f"CAPTCHA solve failed: {e}")
            return False
        diagnostics.captcha_rounds += rounds

        submitted = await session.call_with_active_page(
            lambda page: self._submit_answer(page, answer)
        )
        if not submitted:
            diagnostics.solver_ok = False
            return False
        diagnostics.solver_ok = True

        await session.adopt_popup(self.settings.popup_timeout_ms)
        await self._wait_ready(session)
        logger.info("CAPTCHA answer submitted")
        return True

    # =========================================================================
    # Loop
    # =========================================================================

    async def resolve(
        self,
        session: Session,
        target: TargetLocator,
        status: Optional[int],
        diagnostics: Diagnostics,
    ) -> Tuple[object, PageState]:
        """
        Run recovery strategies until the page is a product page or a
        budget is spent.

        Args:
            session: Live browser session
            target: Resolved locator
            status: Transport status of the navigation that loaded the page
            diagnostics: Counters updated in place

        Returns:
            (active page, last classified state)
        """
        s = self.settings
        transient = RetryBudget("transient", s.transient_retries)
        captcha = RetryBudget("captcha", s.captcha_attempts)
        dismissals = RetryBudget("dismissals", s.max_dismissals)
        bounces = RetryBudget("bounces", s.max_bounces)
        continues = RetryBudget("continue", s.max_continue_clicks)
        ceiling = sum(b.limit for b in (transient, captcha, dismissals, bounces, continues)) + 1

        state = PageState.UNKNOWN
        for _ in range(ceiling):
            state, signals = await session.call_with_active_page(
                lambda page, status=status: self.classifier.inspect(page, status)
            )
            diagnostics.record_state(state)
            status = None

            if state == PageState.PRODUCT:
                break

            if state == PageState.TRANSIENT_ERROR:
                if not transient.consume():
                    logger.warning("Transient error persisted past retry budget")
                    break
                diagnostics.transient_retries += 1
                status = await self._navigate(session, target.url, diagnostics)

            elif state == PageState.BOT_CHALLENGE:
                if self.solver is None:
                    diagnostics.solver_ok = False
                    logger.warning("Bot challenge and no CAPTCHA solver configured")
                    break
                if not captcha.consume():
                    logger.warning("CAPTCHA budget exhausted")
                    break
                diagnostics.captcha_attempts += 1
                await self.solve_captcha(session, diagnostics)

            elif state == PageState.CONTINUE_SHOPPING_OVERLAY:
                if dismissals.exhausted:
                    logger.warning("Overlay dismissal budget exhausted")
                    break
                await self.dismiss_overlay(session, dismissals, diagnostics)

            elif state == PageState.DETOUR:
                if not bounces.consume():
                    logger.warning("Detour bounce budget exhausted")
                    break
                diagnostics.bounce_attempts += 1
                status = await self.bounce_detour(session, target, signals, diagnostics)

            else:
                if continues.exhausted or not await self.click_continue_loop(session, continues, diagnostics):
                    break

        page = session.active_page()
        logger.info(f"Resolver finished in state {state.value} after {len(diagnostics.state_history)} checks")
        return page, state
