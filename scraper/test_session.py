#!/usr/bin/env python3
"""
Tests for session handling (active page choice, closed-page retry, cleanup)
and the navigator's retry and block detection.
"""

import asyncio
import sys
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError

sys.path.insert(0, str(Path(__file__).parent.parent))

from scraper.exceptions import Blocked, NavigationFailed, SessionClosed, is_closed_target_error
from scraper.fake_browser import (
    CLOSED_MESSAGE,
    PRODUCT_URL,
    FakeSite,
    fake_session_factory,
    fast_settings,
    sample_documents,
)
from scraper.navigator import Navigator, is_challenge_url, looks_blocked_text
from scraper.session import ActivePageResolver, open_session


class Tab:
    def __init__(self, url, closed=False):
        self.url = url
        self.closed = closed

    def is_closed(self):
        return self.closed


def test_active_page_resolution():
    print("Testing active page choice...")

    old, popup, blank = Tab("https://a/1"), Tab("https://a/2"), Tab("about:blank")
    assert ActivePageResolver.resolve([old, popup, blank]) is popup
    popup.closed = True
    assert ActivePageResolver.resolve([old, popup, blank]) is old
    old.closed = True
    assert ActivePageResolver.resolve([old, popup, blank]) is blank
    blank.closed = True
    with pytest.raises(SessionClosed):
        ActivePageResolver.resolve([old, popup, blank])
    print("  ✓ Most recent open, non-blank page wins")


def test_call_with_active_page_retries_once():
    print("Testing closed-page retry...")

    async def scenario():
        settings = fast_settings()
        site = FakeSite(sample_documents(), routes={"/dp/": "product"})
        async with open_session(settings, fake_session_factory(site)) as session:
            first = session.active_page()
            await first.goto(PRODUCT_URL)
            second = session.context._open_popup(site.document("product"))
            calls = []

            async def flaky(page):
                calls.append(page)
                if len(calls) == 1:
                    page.closed = True
                    raise PlaywrightError(CLOSED_MESSAGE)
                return await page.title()

            title = await session.call_with_active_page(flaky)
            assert calls == [second, first]

            async def always_dead(page):
                raise PlaywrightError(CLOSED_MESSAGE)

            with pytest.raises(SessionClosed):
                await session.call_with_active_page(always_dead)
            return title, session

    title, session = asyncio.run(scenario())
    assert title == "Amazon.com: Glow Vitamin C Serum"
    assert session.closed and session.browser.closed
    print("  ✓ One retry on a fresh page, then SessionClosed")


def test_navigator_retries_then_fails():
    print("Testing navigation retries...")

    async def scenario(routes, **overrides):
        settings = fast_settings(**overrides)
        site = FakeSite(sample_documents(), routes=routes)
        async with open_session(settings, fake_session_factory(site)) as session:
            try:
                return await Navigator(settings).navigate(session.active_page(), PRODUCT_URL), site
            except NavigationFailed as e:
                return e, site

    outcome, site = asyncio.run(scenario({"/dp/": "product"}))
    assert outcome.attempts == 1 and outcome.status == 200 and not outcome.blocked

    error, site = asyncio.run(scenario({"/dp/": "challenge"}, nav_retries=1))
    assert isinstance(error, Blocked)
    assert error.outcome.blocked and error.outcome.attempts == 2
    assert len(site.visits) == 2

    error, site = asyncio.run(scenario({}, nav_retries=2))
    assert type(error) is NavigationFailed
    assert "ERR_NAME_NOT_RESOLVED" in str(error.last_error)
    assert len(site.visits) == 3

    # Blocked once, then through
    outcome, site = asyncio.run(scenario({"/dp/": ["challenge", "product"]}))
    assert outcome.attempts == 2 and not outcome.blocked
    print("  ✓ Retries bounded, block surfaced as Blocked")


def test_block_detection():
    print("Testing block detection...")

    assert is_challenge_url("https://www.amazon.com/errors/validateCaptcha?amzn=x")
    assert is_challenge_url("https://www.amazon.com/sorry/index")
    assert not is_challenge_url(PRODUCT_URL)
    assert not is_challenge_url(None)
    assert looks_blocked_text("Robot Check", "")
    assert looks_blocked_text("", "Type the characters you see in this image")
    assert not looks_blocked_text("Amazon.com: Serum", "Sorry, this item is unavailable")
    assert is_closed_target_error(PlaywrightError(CLOSED_MESSAGE))
    assert not is_closed_target_error(PlaywrightError("Timeout 500ms exceeded"))
    print("  ✓ Challenge address, title and text")


def run_all_tests():
    print("=" * 60)
    print("SESSION / NAVIGATOR - UNIT TESTS")
    print("=" * 60)

    try:
        test_active_page_resolution()
        test_call_with_active_page_retries_once()
        test_navigator_retries_then_fails()
        test_block_detection()
        print("ALL TESTS PASSED!")
        return 0
    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
