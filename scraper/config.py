"""
Scraper Settings
Explicit configuration object built once at process start and passed into
every component that needs a credential, a timeout or a retry budget.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass
class ScraperSettings:
    """Configuration for one scraper process."""

    # Credentials
    anthropic_api_key: Optional[str] = None
    vision_model: str = "claude-3-haiku-20240307"
    vision_max_tokens: int = 200
    captcha_api_key: Optional[str] = None
    captcha_api_url: str = "https://2captcha.com"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Browser
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    extra_headers: Dict[str, str] = field(
        default_factory=lambda: {"accept-language": "en-US,en;q=0.9"}
    )
    launch_args: List[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    full_page_screenshot: bool = False

    # Site
    default_domain: str = "www.amazon.com"

    # Navigation
    nav_timeout_ms: int = 60000
    nav_retries: int = 2
    ready_ceiling_ms: int = 5000
    settle_ms: int = 3000
    popup_timeout_ms: int = 2000

    # Recovery budgets
    transient_retries: int = 2
    max_bounces: int = 3
    max_dismissals: int = 3
    max_continue_clicks: int = 3
    captcha_attempts: int = 2
    captcha_poll_rounds: int = 20
    captcha_poll_interval: float = 5.0
    captcha_max_bytes: int = 100 * 1024

    # Jitter ranges in seconds (base, spread)
    pre_nav_jitter: tuple = (0.25, 0.5)
    post_nav_jitter: tuple = (0.7, 0.6)
    retry_jitter: tuple = (1.0, 1.5)
    stabilize_jitter: tuple = (0.5, 0.5)

    @property
    def captcha_enabled(self) -> bool:
        return bool(self.captcha_api_key)

    @classmethod
    def from_env(cls, require_vision: bool = True) -> "ScraperSettings":
        """
        Build settings from environment variables.

        Args:
            require_vision: Treat a missing ANTHROPIC_API_KEY as fatal.

        Raises:
            ConfigurationError: if a required credential is absent.
        """
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if require_vision and not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY environment variable is required")

        settings = cls(
            anthropic_api_key=api_key,
            vision_model=os.environ.get("VISION_MODEL", cls.vision_model),
            captcha_api_key=os.environ.get("CAPTCHA_API_KEY") or None,
            captcha_api_url=os.environ.get("CAPTCHA_API_URL", cls.captcha_api_url),
            host=os.environ.get("HOST", cls.host),
            port=_env_int("PORT", cls.port),
            headless=_env_bool("HEADLESS", True),
            full_page_screenshot=_env_bool("FULL_PAGE_SCREENSHOT", False),
            default_domain=os.environ.get("DEFAULT_DOMAIN", cls.default_domain),
            nav_timeout_ms=_env_int("NAV_TIMEOUT_MS", cls.nav_timeout_ms),
            nav_retries=_env_int("NAV_RETRIES", cls.nav_retries),
        )

        if not settings.captcha_enabled:
            logger.warning("CAPTCHA_API_KEY not set - bot challenges will not be solved")

        return settings
