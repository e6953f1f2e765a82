#!/usr/bin/env python3
"""
Tests for the CAPTCHA solver client against a mocked HTTP transport.
"""

import asyncio
import io
import sys
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from scraper.captcha import CaptchaSolver, encode_within_limit
from scraper.exceptions import CaptchaError
from scraper.fake_browser import fast_settings


def noisy_png(size=(300, 120)) -> bytes:
    """A PNG that compresses badly, so re-encoding has something to do."""
    image = Image.effect_noise(size, 80).convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def solver_with(handler, **overrides):
    settings = fast_settings(captcha_api_key="k-123", captcha_api_url="https://solver.test", **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CaptchaSolver(settings, client=client)


def test_solve_after_polling():
    print("Testing submit and poll...")

    seen = {"polls": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/in.php":
            form = parse_qs(request.content.decode())
            assert form["key"] == ["k-123"]
            assert form["method"] == ["base64"]
            assert form["json"] == ["1"]
            assert form["body"][0]
            return httpx.Response(200, json={"status": 1, "request": "task-9"})
        assert request.url.path == "/res.php"
        assert request.url.params["id"] == "task-9"
        assert request.url.params["action"] == "get"
        seen["polls"] += 1
        if seen["polls"] < 3:
            return httpx.Response(200, json={"status": 0, "request": "CAPCHA_NOT_READY"})
        return httpx.Response(200, json={"status": 1, "request": " XKCD42 "})

    answer, rounds = asyncio.run(solver_with(handler).solve(b"\x89PNG tiny"))
    assert answer == "XKCD42"
    assert rounds == 3
    print("  ✓ Answer returned after three rounds")


def test_submit_rejected():
    print("Testing rejected submission...")

    def handler(request):
        return httpx.Response(200, json={"status": 0, "request": "ERROR_ZERO_BALANCE"})

    with pytest.raises(CaptchaError, match="ERROR_ZERO_BALANCE"):
        asyncio.run(solver_with(handler).solve(b"img"))
    print("  ✓ CaptchaError raised")


def test_solver_error_and_timeout():
    print("Testing solve error and timeout...")

    def unsolvable(request):
        if request.url.path == "/in.php":
            return httpx.Response(200, json={"status": 1, "request": "t"})
        return httpx.Response(200, json={"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"})

    with pytest.raises(CaptchaError, match="UNSOLVABLE"):
        asyncio.run(solver_with(unsolvable).solve(b"img"))

    def never_ready(request):
        if request.url.path == "/in.php":
            return httpx.Response(200, json={"status": 1, "request": "t"})
        return httpx.Response(200, json={"status": 0, "request": "CAPCHA_NOT_READY"})

    with pytest.raises(CaptchaError, match="4 rounds"):
        asyncio.run(solver_with(never_ready, captcha_poll_rounds=4).solve(b"img"))
    print("  ✓ Both end in CaptchaError")


def test_http_failure():
    print("Testing HTTP failure...")

    def handler(request):
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(CaptchaError, match="submit failed"):
        asyncio.run(solver_with(handler).solve(b"img"))
    print("  ✓ Transport errors wrapped")


def test_requires_key():
    with pytest.raises(CaptchaError):
        CaptchaSolver(fast_settings())


def test_encode_within_limit():
    print("Testing image re-encoding...")

    png = noisy_png()
    assert encode_within_limit(png, len(png)) == png

    limit = len(png) // 2
    encoded = encode_within_limit(png, limit)
    assert encoded is not None
    assert len(encoded) <= limit
    assert encoded[:2] == b"\xff\xd8"  # JPEG

    assert encode_within_limit(png, 10) is None
    print("  ✓ Quality stepped down until under the ceiling")


def run_all_tests():
    print("=" * 60)
    print("CAPTCHA - UNIT TESTS")
    print("=" * 60)

    try:
        test_solve_after_polling()
        test_submit_rejected()
        test_solver_error_and_timeout()
        test_http_failure()
        test_requires_key()
        test_encode_within_limit()
        print("ALL TESTS PASSED!")
        return 0
    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
