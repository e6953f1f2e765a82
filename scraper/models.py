"""
Data models for the product page scraper.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


# Explicit "field absent on this page" marker
UNSPECIFIED = "unspecified"


def is_unspecified(value: Optional[str]) -> bool:
    return value is None or value == UNSPECIFIED or not str(value).strip()


class PageState(str, Enum):
    """What kind of document a page currently shows."""
    PRODUCT = "product"
    BOT_CHALLENGE = "botChallenge"
    CONTINUE_SHOPPING_OVERLAY = "continueShoppingOverlay"
    DETOUR = "detour"
    TRANSIENT_ERROR = "transientError"
    UNKNOWN = "unknown"


class PageType(str, Enum):
    PRODUCT = "product"
    NON_PRODUCT = "nonProduct"


class RetryBudget:
    """
    Small bounded counter for one recovery strategy.

    Usage:
        budget = RetryBudget("bounces", 3)
        while budget.consume():
            ...
    """

    def __init__(self, name: str, limit: int):
        self.name = name
        self.limit = max(0, int(limit))
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def consume(self) -> bool:
        """Take one unit. Returns False (and takes nothing) once exhausted."""
        if self.exhausted:
            return False
        self.used += 1
        return True

    def __repr__(self) -> str:
        return f"RetryBudget({self.name!r}, used={self.used}, limit={self.limit})"


@dataclass(frozen=True)
class TargetLocator:
    """Caller locator resolved to the addresses the scraper navigates to."""
    locator: str
    url: str
    canonical_url: Optional[str] = None
    item_id: Optional[str] = None
    home_url: str = ""


@dataclass
class NavigationOutcome:
    url: str
    final_url: str = ""
    status: Optional[int] = None
    attempts: int = 0
    blocked: bool = False


@dataclass(frozen=True)
class SalesRank:
    category: str = UNSPECIFIED
    rank: str = UNSPECIFIED

    def to_dict(self) -> Dict[str, str]:
        return {"category": self.category, "rank": self.rank}


@dataclass(frozen=True)
class ExtractionResult:
    """Normalized product record. Built once, never mutated."""
    title: str = UNSPECIFIED
    brand: str = UNSPECIFIED
    item_form: str = UNSPECIFIED
    price: str = UNSPECIFIED
    description: str = UNSPECIFIED
    bullets: List[str] = field(default_factory=list)
    main_image_url: str = UNSPECIFIED
    additional_image_urls: List[str] = field(default_factory=list)
    rating: str = UNSPECIFIED
    review_count: str = UNSPECIFIED
    availability: str = UNSPECIFIED
    availability_date: str = UNSPECIFIED
    sales_rank: SalesRank = field(default_factory=SalesRank)
    sub_rank: SalesRank = field(default_factory=SalesRank)
    sources: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass(frozen=True)
class VisualReading:
    """Brand and price as read by the vision model from the page image."""
    brand: str = UNSPECIFIED
    price: str = UNSPECIFIED
    raw_price: str = UNSPECIFIED
    ok: bool = False
    error: str = ""


@dataclass
class Diagnostics:
    """Per-request recovery counters."""
    navigation_attempts: int = 0
    transient_retries: int = 0
    bounce_attempts: int = 0
    dismissal_attempts: int = 0
    overlay_dismissals: int = 0
    continue_clicks: int = 0
    captcha_attempts: int = 0
    captcha_rounds: int = 0
    solver_ok: Optional[bool] = None
    state_history: List[str] = field(default_factory=list)
    final_state: str = PageState.UNKNOWN.value

    def record_state(self, state: PageState) -> None:
        self.state_history.append(state.value)
        self.final_state = state.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageControl:
    """A link or button found on a non-product page."""
    tag: str
    text: str = ""
    href: str = ""
    id: str = ""
    classes: str = ""
    name: str = ""
    type: str = ""
    rel: str = ""
    target: str = ""
    role: str = ""
    aria_label: str = ""
    onclick: str = ""


@dataclass
class ScrapeResult:
    """Everything one scrape produced, ready for the HTTP/CLI boundary."""
    locator: str
    page_type: PageType
    canonical_url: Optional[str] = None
    current_url: str = ""
    page_title: str = ""
    product: Optional[ExtractionResult] = None
    visual: Optional[VisualReading] = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    screenshot: str = ""
    links: List[PageControl] = field(default_factory=list)
    buttons: List[PageControl] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def is_product(self) -> bool:
        return self.page_type == PageType.PRODUCT
