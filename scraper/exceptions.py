"""
Error taxonomy for the product page scraper.

Absent product fields are not errors: they carry the "unspecified" sentinel
(see scraper.models.UNSPECIFIED).
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for all scraper failures."""


class ConfigurationError(ScraperError):
    """A required setting (usually a credential) is missing at startup."""


class NavigationFailed(ScraperError):
    """Navigation never succeeded within its retry budget."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None, outcome=None):
        super().__init__(message)
        self.last_error = last_error
        self.outcome = outcome


class Blocked(NavigationFailed):
    """The page committed but kept showing a bot challenge."""


class SessionClosed(ScraperError):
    """The browser, context or every page died mid-operation."""


class VisionServiceFailure(ScraperError):
    """The vision model returned nothing usable."""


class CaptchaError(ScraperError):
    """The CAPTCHA solving service could not produce an answer."""


CLOSED_TARGET_MARKERS = (
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "page has been closed",
)


def is_closed_target_error(error: BaseException) -> bool:
    """True when a driver error means the page/context/browser is gone."""
    message = str(error).lower()
    return any(marker in message for marker in CLOSED_TARGET_MARKERS)
