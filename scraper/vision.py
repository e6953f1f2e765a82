"""
Visual Cross-Checker
Reads brand and price off the page screenshot with a vision model, as an
independent check on the DOM extraction.

Failures never propagate: a bad response or API error yields a reading with
both fields "unspecified".
"""

import base64
import json
import logging
import re
from typing import Any, Optional

from .config import ScraperSettings
from .exceptions import VisionServiceFailure
from .models import UNSPECIFIED, VisualReading, is_unspecified
from .pricing import normalize_price

logger = logging.getLogger(__name__)


VISION_PROMPT = """You are given a screenshot of an online store product page.
Read the product's brand and its displayed price exactly as shown in the image.

Return ONLY minified JSON with exactly two keys:
{"brand":"...","price":"..."}

Use "unspecified" for anything you cannot see in the image.
Include the currency symbol or code with the price if one is visible."""

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


def strip_code_fences(text: str) -> str:
    text = (text or "").strip()
    text = _FENCE_OPEN_RE.sub("", text)
    return _FENCE_CLOSE_RE.sub("", text).strip()


def _field(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None or is_unspecified(str(value)):
        return UNSPECIFIED
    return str(value).strip()


def parse_reading(text: str, dom_price: Optional[str] = None) -> VisualReading:
    """
    Turn the model's answer into a VisualReading.

    Raises:
        VisionServiceFailure: answer is not a JSON object
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise VisionServiceFailure(f"Unparseable vision output: {cleaned[:200]!r}") from e
    if not isinstance(data, dict):
        raise VisionServiceFailure(f"Vision output is not an object: {cleaned[:200]!r}")

    raw_price = _field(data, "price")
    return VisualReading(
        brand=_field(data, "brand"),
        price=normalize_price(raw_price, dom_price),
        raw_price=raw_price,
        ok=True,
    )


class VisualCrossChecker:
    """
    Sends a screenshot to the Anthropic Messages API.

    Usage:
        checker = VisualCrossChecker(settings)
        reading = await checker.check(png_bytes, dom_price="$34.99")
    """

    def __init__(self, settings: ScraperSettings, client: Any = None):
        self.settings = settings
        self.model = settings.vision_model
        self._client = client
        self._total_tokens_used = 0

    @property
    def client(self):
        """Lazy-load Anthropic client."""
        if self._client is None:
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
            logger.info(f"Vision client initialized with model: {self.model}")
        return self._client

    async def _call_anthropic(self, image_b64: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.settings.vision_max_tokens,
            messages=[{
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": "image/png", "data": image_b64},
                    },
                    {"type": "text", "text": VISION_PROMPT},
                ],
            }],
        )

        if hasattr(response, "usage"):
            input_tokens = getattr(response.usage, "input_tokens", 0)
            output_tokens = getattr(response.usage, "output_tokens", 0)
            self._total_tokens_used += input_tokens + output_tokens
            logger.debug(f"Vision tokens: {input_tokens} input, {output_tokens} output")

        if not response.content:
            raise VisionServiceFailure("Empty response from vision model")
        return response.content[0].text

    async def check(self, screenshot: bytes, dom_price: Optional[str] = None) -> VisualReading:
        """
        Read brand and price from a PNG screenshot.

        Args:
            screenshot: PNG bytes of the product page
            dom_price: DOM price, used to borrow a currency the image lacks

        Returns:
            VisualReading (ok=False with "unspecified" fields on any failure)
        """
        try:
            text = await self._call_anthropic(base64.b64encode(screenshot).decode("ascii"))
            reading = parse_reading(text, dom_price)
        except VisionServiceFailure as e:
            logger.warning(f"Vision check failed: {e}")
            return VisualReading(error=str(e))
        except Exception as e:
            failure = VisionServiceFailure(f"Vision API error: {e}")
            logger.error(str(failure))
            return VisualReading(error=str(failure))

        logger.info(f"Vision reading: brand={reading.brand!r} price={reading.price!r}")
        return reading
