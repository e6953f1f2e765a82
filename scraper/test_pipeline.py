#!/usr/bin/env python3
"""
End-to-end tests of ProductScraper over the in-memory browser.

Scenarios:
    A. stable product page
    B. continue-shopping overlay first (dismissed, or budget exhausted)
    C. permanent bot challenge with no solver configured
"""

import asyncio
import base64
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from scraper.exceptions import NavigationFailed
from scraper.fake_browser import PNG_BYTES, FakeSite, fake_session_factory, fast_settings, sample_documents
from scraper.models import PageType, VisualReading
from scraper.pipeline import ProductScraper, resolve_locator


class StubVision:
    def __init__(self):
        self.calls = []

    async def check(self, screenshot, dom_price=None):
        self.calls.append((screenshot, dom_price))
        return VisualReading(brand="Glow", price="$34.99", raw_price="34 99", ok=True)


class StubSolver:
    def __init__(self):
        self.calls = 0

    async def solve(self, image_bytes):
        self.calls += 1
        return "ABCDEF", 1


def build_scraper(routes, sessions, **overrides):
    site = FakeSite(sample_documents(), routes=routes)
    vision = StubVision()
    scraper = ProductScraper(
        fast_settings(**overrides),
        session_factory=fake_session_factory(site, sessions),
        vision=vision,
    )
    return scraper, vision, site


def assert_cleaned_up(session):
    assert session.closed
    assert session.browser.closed
    assert all(page.is_closed() for page in session.context.pages)


def test_scenario_a_product():
    print("Testing scenario A...")

    sessions = []
    scraper, vision, _ = build_scraper({"/dp/": "product"}, sessions)
    result = asyncio.run(scraper.scrape("B000TEST01"))

    assert result.page_type == PageType.PRODUCT
    assert result.product.title == "Glow Vitamin C Serum, 30 ml"
    assert result.product.brand == "Glow"
    assert result.product.price == "$34.99"
    assert result.visual.brand == "Glow"
    assert vision.calls == [(PNG_BYTES, "$34.99")]
    assert result.canonical_url == "https://www.amazon.com/dp/B000TEST01"
    assert result.current_url == "https://www.amazon.com/dp/B000TEST01"
    assert base64.b64decode(result.screenshot) == PNG_BYTES
    assert result.diagnostics.bounce_attempts == 0
    assert result.diagnostics.dismissal_attempts == 0
    assert result.diagnostics.navigation_attempts == 1
    assert result.links == []
    assert_cleaned_up(sessions[0])
    print("  ✓ Product extracted, zero recovery counters")


def test_scenario_b_overlay_dismissed():
    print("Testing scenario B (dismissed)...")

    sessions = []
    scraper, _, _ = build_scraper({"/dp/": "overlay"}, sessions)
    result = asyncio.run(scraper.scrape("https://www.amazon.com/Glow-Serum/dp/B000TEST01/ref=sr_1_1"))

    assert result.page_type == PageType.PRODUCT
    assert result.diagnostics.dismissal_attempts > 0
    assert result.diagnostics.overlay_dismissals == 1
    assert result.product.item_form == "Liquid"
    assert_cleaned_up(sessions[0])
    print("  ✓ Overlay dismissed, product extracted")


def test_scenario_b_overlay_exhausted():
    print("Testing scenario B (exhausted)...")

    sessions = []
    scraper, vision, _ = build_scraper({"/dp/": "stuck_overlay"}, sessions, max_dismissals=2)
    result = asyncio.run(scraper.scrape("B000TEST01"))

    assert result.page_type == PageType.NON_PRODUCT
    assert result.product is None
    assert result.visual is None
    assert vision.calls == []
    assert result.diagnostics.dismissal_attempts == 2
    assert result.diagnostics.final_state == "continueShoppingOverlay"
    assert result.screenshot
    assert result.counts == {"links": 1, "buttons": 0}
    assert_cleaned_up(sessions[0])
    print("  ✓ Degraded non-product result")


def test_scenario_c_challenge_without_solver():
    print("Testing scenario C...")

    sessions = []
    scraper, _, site = build_scraper({"/dp/": "challenge"}, sessions)
    result = asyncio.run(scraper.scrape("B000TEST01"))

    assert result.page_type == PageType.NON_PRODUCT
    assert result.diagnostics.solver_ok is False
    assert result.diagnostics.final_state == "botChallenge"
    assert result.diagnostics.navigation_attempts == 1 + scraper.settings.nav_retries
    assert len(site.visits) == 1 + scraper.settings.nav_retries
    assert result.current_url == "https://www.amazon.com/errors/validateCaptcha"
    assert result.page_title == "Robot Check"
    assert result.screenshot
    assert result.buttons[0].text == "Continue shopping"
    assert_cleaned_up(sessions[0])
    print("  ✓ Degraded with screenshot and solver_ok False")


def test_formless_challenge_with_solver_degrades():
    print("Testing formless challenge with a solver...")

    sessions = []
    site = FakeSite(sample_documents(), routes={"/dp/": "verify_human"})
    solver = StubSolver()
    scraper = ProductScraper(
        fast_settings(),
        session_factory=fake_session_factory(site, sessions),
        vision=StubVision(),
        solver=solver,
    )
    result = asyncio.run(scraper.scrape("B000TEST01"))

    assert result.page_type == PageType.NON_PRODUCT
    assert result.diagnostics.solver_ok is False
    assert result.diagnostics.final_state == "botChallenge"
    assert solver.calls == 0
    assert result.screenshot
    assert_cleaned_up(sessions[0])
    print("  ✓ Degraded result, solver never called")


def test_navigation_moves_to_surviving_page():
    """The tab navigated first closes itself; the scrape continues on the other page."""
    print("Testing closed tab during navigation...")

    sessions = []
    site = FakeSite(sample_documents(), routes={"/dp/": ["tab_crash", "product"]})
    factory = fake_session_factory(site, sessions)

    async def two_tab_factory(settings):
        session = await factory(settings)
        session.context._open_popup(site.document("home"))
        return session

    scraper = ProductScraper(fast_settings(), session_factory=two_tab_factory, vision=StubVision())
    result = asyncio.run(scraper.scrape("B000TEST01"))

    assert result.page_type == PageType.PRODUCT
    assert result.product.title == "Glow Vitamin C Serum, 30 ml"
    assert result.diagnostics.navigation_attempts == 1
    assert len(site.visits) == 2
    assert_cleaned_up(sessions[0])
    print("  ✓ Navigation retried once on the open page")


def test_transport_failure_propagates_and_cleans_up():
    print("Testing transport failure...")

    sessions = []
    scraper, _, site = build_scraper({"/nowhere/": "product"}, sessions)
    with pytest.raises(NavigationFailed):
        asyncio.run(scraper.scrape("B000TEST01"))
    assert len(site.visits) == 1 + scraper.settings.nav_retries
    assert_cleaned_up(sessions[0])
    print("  ✓ NavigationFailed raised, session closed")


def test_no_screenshot_option():
    print("Testing screenshot opt-out...")

    scraper, _, _ = build_scraper({"/dp/": "product"}, [])
    result = asyncio.run(scraper.scrape("B000TEST01", include_screenshot=False))
    assert result.screenshot == ""
    print("  ✓ Screenshot omitted")


def test_resolve_locator():
    print("Testing locator resolution...")

    target = resolve_locator("b000test01")
    assert target.url == "https://www.amazon.com/dp/B000TEST01"
    assert target.item_id == "B000TEST01"
    assert target.home_url == "https://www.amazon.com/"

    target = resolve_locator("https://www.amazon.co.uk/Some-Thing/dp/B000TEST01?th=1", "www.amazon.com")
    assert target.url == "https://www.amazon.co.uk/Some-Thing/dp/B000TEST01?th=1"
    assert target.canonical_url == "https://www.amazon.co.uk/dp/B000TEST01"
    assert target.home_url == "https://www.amazon.co.uk/"

    target = resolve_locator("https://www.amazon.com/s?k=serum")
    assert target.canonical_url is None and target.item_id is None

    for bad in ("", "   ", None, "not a url", "ftp://example.com/dp/B000TEST01"):
        with pytest.raises(ValueError):
            resolve_locator(bad)
    print("  ✓ Item ids and URLs resolved")


def run_all_tests():
    print("=" * 60)
    print("PIPELINE - SCENARIO TESTS")
    print("=" * 60)

    try:
        test_scenario_a_product()
        test_scenario_b_overlay_dismissed()
        test_scenario_b_overlay_exhausted()
        test_scenario_c_challenge_without_solver()
        test_formless_challenge_with_solver_degrades()
        test_navigation_moves_to_surviving_page()
        test_transport_failure_propagates_and_cleans_up()
        test_no_screenshot_option()
        test_resolve_locator()
        print("ALL TESTS PASSED!")
        return 0
    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
