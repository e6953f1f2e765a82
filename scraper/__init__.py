"""
Product page scraper.

Components:
- ProductScraper: end-to-end pipeline (navigate, recover, extract, cross-check)
- InterstitialResolver: bounded recovery from challenges, overlays and detours
- PageClassifier: page-state decision over a fresh signal snapshot
- ProductExtractor: ordered fallback rules per field
- VisualCrossChecker: brand/price read off the screenshot by a vision model
"""

from .config import ScraperSettings
from .exceptions import (
    ScraperError,
    ConfigurationError,
    NavigationFailed,
    Blocked,
    SessionClosed,
    VisionServiceFailure,
    CaptchaError,
)
from .models import (
    UNSPECIFIED,
    PageState,
    PageType,
    RetryBudget,
    TargetLocator,
    ExtractionResult,
    SalesRank,
    VisualReading,
    Diagnostics,
    PageControl,
    ScrapeResult,
)
from .classifier import PageClassifier, PageSignals, classify_signals
from .extractor import ProductExtractor, FieldRule, extract_page_controls
from .pricing import normalize_price
from .resolver import InterstitialResolver
from .vision import VisualCrossChecker
from .captcha import CaptchaSolver
from .pipeline import ProductScraper, resolve_locator

__all__ = [
    # Configuration and errors
    'ScraperSettings',
    'ScraperError',
    'ConfigurationError',
    'NavigationFailed',
    'Blocked',
    'SessionClosed',
    'VisionServiceFailure',
    'CaptchaError',
    # Models
    'UNSPECIFIED',
    'PageState',
    'PageType',
    'RetryBudget',
    'TargetLocator',
    'ExtractionResult',
    'SalesRank',
    'VisualReading',
    'Diagnostics',
    'PageControl',
    'ScrapeResult',
    # Components
    'PageClassifier',
    'PageSignals',
    'classify_signals',
    'ProductExtractor',
    'FieldRule',
    'extract_page_controls',
    'normalize_price',
    'InterstitialResolver',
    'VisualCrossChecker',
    'CaptchaSolver',
    'ProductScraper',
    'resolve_locator',
]
