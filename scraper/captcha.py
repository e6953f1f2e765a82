"""
CAPTCHA Solver Client
Text-image CAPTCHA solving through a 2captcha-compatible HTTP service:
submit the base64 image to in.php, then poll res.php until the answer is ready.
"""

import asyncio
import base64
import io
import logging
from typing import Optional, Tuple

import httpx
from PIL import Image

from .config import ScraperSettings
from .exceptions import CaptchaError

logger = logging.getLogger(__name__)


NOT_READY = "CAPCHA_NOT_READY"

JPEG_QUALITIES = (90, 75, 60, 45, 30, 15)


def encode_within_limit(png_bytes: bytes, max_bytes: int) -> Optional[bytes]:
    """
    Re-encode a screenshot as JPEG, stepping quality down until it fits.

    Args:
        png_bytes: Raw screenshot bytes
        max_bytes: Upload ceiling of the solving service

    Returns:
        Encoded bytes, or None if even the lowest quality is too large
    """
    if len(png_bytes) <= max_bytes:
        return png_bytes

    image = Image.open(io.BytesIO(png_bytes)).convert("RGB")
    for quality in JPEG_QUALITIES:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality)
        encoded = buffer.getvalue()
        if len(encoded) <= max_bytes:
            logger.debug(f"CAPTCHA image encoded at quality {quality} ({len(encoded)} bytes)")
            return encoded

    logger.warning(f"CAPTCHA image still over {max_bytes} bytes at lowest quality")
    return None


class CaptchaSolver:
    """
    Async client for the solving service.

    Usage:
        solver = CaptchaSolver(settings)
        text, rounds = await solver.solve(image_bytes)
    """

    def __init__(self, settings: ScraperSettings, client: Optional[httpx.AsyncClient] = None):
        if not settings.captcha_api_key:
            raise CaptchaError("CAPTCHA_API_KEY is not configured")
        self.settings = settings
        self.api_url = settings.captcha_api_url.rstrip("/")
        self._client = client

    async def _post(self, client: httpx.AsyncClient, data: dict) -> dict:
        response = await client.post(f"{self.api_url}/in.php", data=data)
        response.raise_for_status()
        return response.json()

    async def _get(self, client: httpx.AsyncClient, params: dict) -> dict:
        response = await client.get(f"{self.api_url}/res.php", params=params)
        response.raise_for_status()
        return response.json()

    async def solve(self, image_bytes: bytes) -> Tuple[str, int]:
        """
        Solve one image CAPTCHA.

        Returns:
            (answer text, number of poll rounds used)

        Raises:
            CaptchaError: rejected submission, solver error or timeout
        """
        payload = encode_within_limit(image_bytes, self.settings.captcha_max_bytes)
        if payload is None:
            raise CaptchaError("CAPTCHA image too large for solving service")

        client = self._client or httpx.AsyncClient(timeout=30.0)
        try:
            try:
                submitted = await self._post(client, {
                    "key": self.settings.captcha_api_key,
                    "method": "base64",
                    "body": base64.b64encode(payload).decode("ascii"),
                    "json": 1,
                })
            except (httpx.HTTPError, ValueError) as e:
                raise CaptchaError(f"CAPTCHA submit failed: {e}") from e

            if submitted.get("status") != 1:
                raise CaptchaError(f"CAPTCHA submit rejected: {submitted.get('request')}")

            task_id = str(submitted.get("request"))
            logger.info(f"CAPTCHA submitted as task {task_id}")

            for round_number in range(1, self.settings.captcha_poll_rounds + 1):
                await asyncio.sleep(self.settings.captcha_poll_interval)
                try:
                    result = await self._get(client, {
                        "key": self.settings.captcha_api_key,
                        "action": "get",
                        "id": task_id,
                        "json": 1,
                    })
                except (httpx.HTTPError, ValueError) as e:
                    raise CaptchaError(f"CAPTCHA poll failed: {e}") from e

                if result.get("status") == 1:
                    answer = str(result.get("request") or "").strip()
                    logger.info(f"CAPTCHA solved after {round_number} rounds")
                    return answer, round_number

                if result.get("request") != NOT_READY:
                    raise CaptchaError(f"CAPTCHA solve error: {result.get('request')}")

            raise CaptchaError(
                f"CAPTCHA not solved after {self.settings.captcha_poll_rounds} rounds"
            )
        finally:
            if self._client is None:
                await client.aclose()
