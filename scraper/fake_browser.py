"""
In-memory stand-in for the subset of the Playwright async API the scraper
touches, so the recovery loop and the pipeline can be exercised without a
browser.

Documents are plain HTML evaluated with BeautifulSoup. A FakeSite maps URL
fragments to documents; a document maps CSS selectors of clickable elements
to the document that a click leads to ("popup:<name>" opens it in a new page,
"close" closes the page). on_load and on_escape take the same targets;
intercepted lists selectors whose clicks time out behind a modal.

Usage:
    site = FakeSite({"product": FakeDocument(PRODUCT_URL, PRODUCT_HTML)},
                    routes={"/dp/": "product"})
    scraper = ProductScraper(fast_settings(), session_factory=fake_session_factory(site))
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from .config import ScraperSettings
from .navigator import BODY_TEXT_JS
from .resolver import CLICK_BY_TEXT_JS
from .session import Session

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

CLOSED_MESSAGE = "Target page, context or browser has been closed"

ROLE_SELECTORS = {
    "button": 'button, input[type="submit"], input[type="button"], [role="button"]',
    "link": 'a[href], [role="link"]',
}

TEXT_CLICK_SELECTOR = 'button, a, input[type="submit"], input[type="button"], [role="button"]'


def fast_settings(**overrides) -> ScraperSettings:
    """Settings with every sleep and settle window reduced to nothing."""
    values = dict(
        anthropic_api_key="test-key",
        pre_nav_jitter=(0, 0),
        post_nav_jitter=(0, 0),
        retry_jitter=(0, 0),
        stabilize_jitter=(0, 0),
        settle_ms=0,
        popup_timeout_ms=0,
        ready_ceiling_ms=50,
        captcha_poll_interval=0,
    )
    values.update(overrides)
    return ScraperSettings(**values)


def _is_visible(element) -> bool:
    node = element
    while node is not None and getattr(node, "name", None):
        if node.has_attr("hidden") or (node.get("type") or "").lower() == "hidden":
            return False
        style = (node.get("style") or "").replace(" ", "").lower()
        if "display:none" in style or "visibility:hidden" in style:
            return False
        node = node.parent
    return True


def _accessible_name(element) -> str:
    return (element.get("aria-label") or element.get_text(" ") or element.get("value") or "").strip()


# =============================================================================
# Documents and routing
# =============================================================================

@dataclass
class FakeDocument:
    url: str
    html: str
    title: str = ""
    status: int = 200
    clicks: Dict[str, str] = field(default_factory=dict)
    on_escape: Optional[str] = None
    on_load: Optional[str] = None
    intercepted: List[str] = field(default_factory=list)
    frames: List["FakeDocument"] = field(default_factory=list)

    def __post_init__(self):
        self.soup = BeautifulSoup(self.html, "html.parser")
        if not self.title and self.soup.title is not None:
            self.title = self.soup.title.get_text().strip()


class FakeSite:
    """Named documents plus URL-fragment routes (a list route is served in order, last one repeats)."""

    def __init__(self, documents: Dict[str, FakeDocument], routes: Dict[str, Union[str, Sequence[str]]]):
        self.documents = documents
        self.routes = routes
        self._queues: Dict[str, List[str]] = {}
        self.visits: List[str] = []

    def document(self, name: str) -> FakeDocument:
        return self.documents[name]

    def route(self, url: str) -> FakeDocument:
        self.visits.append(url)
        for pattern, names in self.routes.items():
            if pattern not in url:
                continue
            if isinstance(names, str):
                return self.documents[names]
            queue = self._queues.setdefault(pattern, list(names))
            name = queue.pop(0) if len(queue) > 1 else queue[0]
            return self.documents[name]
        raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")


@dataclass
class FakeResponse:
    status: int


# =============================================================================
# Page API
# =============================================================================

class FakeLocator:
    def __init__(self, scope, selector: Optional[str] = None, role: Optional[str] = None, name=None):
        self.scope = scope
        self.selector = selector
        self.role = role
        self.name = name

    @property
    def first(self) -> "FakeLocator":
        return self

    def _find(self):
        self.scope.page._check_open()
        soup = self.scope.document.soup
        if self.selector is not None:
            return soup.select_one(self.selector)
        for element in soup.select(ROLE_SELECTORS.get(self.role, self.role)):
            if not _is_visible(element):
                continue
            label = _accessible_name(element)
            if self.name is None:
                return element
            if hasattr(self.name, "search") and self.name.search(label):
                return element
            if isinstance(self.name, str) and self.name.lower() in label.lower():
                return element
        return None

    async def is_visible(self, timeout: Optional[int] = None) -> bool:
        element = self._find()
        return element is not None and _is_visible(element)

    async def click(self, timeout: Optional[int] = None) -> None:
        element = self._find()
        if element is None:
            raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {self.selector or self.role}")
        soup = self.scope.document.soup
        if any(element is blocked for sel in self.scope.document.intercepted for blocked in soup.select(sel)):
            raise PlaywrightError(
                f"Timeout {timeout}ms exceeded: <div class=\"a-modal-scroller\"> intercepts pointer events"
            )
        self.scope.page._activate(element, self.scope)

    async def fill(self, value: str, timeout: Optional[int] = None) -> None:
        if self._find() is None:
            raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {self.selector}")
        self.scope.page.filled[self.selector] = value

    async def screenshot(self, **kwargs) -> bytes:
        if self._find() is None:
            raise PlaywrightError(f"Element not found: {self.selector}")
        return PNG_BYTES


class _Scope:
    page: "FakePage"
    document: FakeDocument

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector=selector)

    def get_by_role(self, role: str, name=None) -> FakeLocator:
        return FakeLocator(self, role=role, name=name)


class FakeFrame(_Scope):
    def __init__(self, page: "FakePage", document: FakeDocument):
        self.page = page
        self.document = document
        self.name = document.title
        self.url = document.url


class FakeMainFrame:
    def __init__(self, page: "FakePage"):
        self.page = page

    @property
    def child_frames(self) -> List[FakeFrame]:
        return [FakeFrame(self.page, doc) for doc in self.page.document.frames]


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.pressed: List[str] = []

    async def press(self, key: str) -> None:
        self.page._check_open()
        self.pressed.append(key)
        if key == "Escape" and self.page.document.on_escape:
            self.page._transition(self.page.document.on_escape)


class FakePage(_Scope):
    def __init__(self, context: "FakeContext", document: Optional[FakeDocument] = None):
        self.context = context
        self.page = self
        self.document = document or FakeDocument("about:blank", "<html><body></body></html>")
        self.keyboard = FakeKeyboard(self)
        self.main_frame = FakeMainFrame(self)
        self.filled: Dict[str, str] = {}
        self.screenshots = 0
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise PlaywrightError(CLOSED_MESSAGE)

    @property
    def url(self) -> str:
        return self.document.url

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url: str, timeout: Optional[int] = None, wait_until: Optional[str] = None) -> FakeResponse:
        self._check_open()
        self.document = self.context.browser.site.route(url)
        response = FakeResponse(self.document.status)
        if self.document.on_load:
            self._transition(self.document.on_load)
        return response

    async def title(self) -> str:
        self._check_open()
        return self.document.title

    async def content(self) -> str:
        self._check_open()
        return self.document.html

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None) -> None:
        self._check_open()

    async def wait_for_selector(self, selector: str, timeout: Optional[int] = None):
        element = self.locator(selector)._find()
        if element is None:
            raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return element

    async def evaluate(self, script: str, arg=None):
        self._check_open()
        if script == BODY_TEXT_JS:
            body = self.document.soup.body or self.document.soup
            return re.sub(r"\s+", " ", body.get_text(" ")).strip()
        if script == CLICK_BY_TEXT_JS:
            # innerText or value only, like the in-page script; aria-label is not scanned
            for element in self.document.soup.select(TEXT_CLICK_SELECTOR):
                text = element.get_text(" ").strip() or element.get("value") or ""
                if str(arg).lower() in text.lower():
                    self._activate(element, self)
                    return True
            return False
        raise PlaywrightError(f"Unsupported script in fake page: {script[:40]}")

    async def screenshot(self, **kwargs) -> bytes:
        self._check_open()
        self.screenshots += 1
        return PNG_BYTES

    async def bring_to_front(self) -> None:
        self._check_open()

    async def close(self, run_before_unload: bool = False) -> None:
        self.closed = True

    def _activate(self, element, scope: _Scope) -> None:
        for selector, target in scope.document.clicks.items():
            if any(candidate is element for candidate in scope.document.soup.select(selector)):
                self._transition(target)
                return

    def _transition(self, target: str) -> None:
        if target == "close":
            self.closed = True
        elif target.startswith("popup:"):
            self.context._open_popup(self.context.browser.site.document(target[len("popup:"):]))
        else:
            self.document = self.context.browser.site.document(target)


class FakeContext:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.pages: List[FakePage] = []
        self._new_pages: List[FakePage] = []
        self.init_scripts: List[str] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def add_init_script(self, script: Optional[str] = None) -> None:
        self.init_scripts.append(script)

    async def wait_for_event(self, event: str, timeout: Optional[int] = None):
        if event == "page" and self._new_pages:
            return self._new_pages.pop(0)
        raise PlaywrightError(f'Timeout {timeout}ms exceeded while waiting for event "{event}"')

    def _open_popup(self, document: FakeDocument) -> FakePage:
        page = FakePage(self, document)
        self.pages.append(page)
        self._new_pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True
        for page in self.pages:
            page.closed = True


class FakeBrowser:
    def __init__(self, site: FakeSite):
        self.site = site
        self.contexts: List[FakeContext] = []
        self.closed = False

    async def new_context(self, **kwargs) -> FakeContext:
        context = FakeContext(self)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


def fake_session_factory(site: FakeSite, sessions: Optional[List[Session]] = None):
    """Session factory over a FakeSite; every created session is appended to sessions."""

    async def factory(settings: ScraperSettings) -> Session:
        browser = FakeBrowser(site)
        context = await browser.new_context()
        await context.new_page()
        session = Session(settings, browser=browser, context=context)
        if sessions is not None:
            sessions.append(session)
        return session

    return factory


# =============================================================================
# Sample documents
# =============================================================================

PRODUCT_URL = "https://www.amazon.com/dp/B000TEST01"

PRODUCT_HTML = """<html><head><title>Amazon.com: Glow Vitamin C Serum</title>
<meta name="description" content="Brightening serum">
</head><body><div id="dp">
<div id="leftCol"><div id="imgTagWrapperId">
<img id="landingImage" src="https://m.media-amazon.com/images/I/71main._AC_SX679_.jpg"
  data-old-hires="https://m.media-amazon.com/images/I/71main._AC_SL1500_.jpg"
  data-a-dynamic-image="{&quot;https://m.media-amazon.com/images/I/71main._AC_SX679_.jpg&quot;:[679,679],&quot;https://m.media-amazon.com/images/I/71main._AC_SX425_.jpg&quot;:[425,425]}">
</div></div>
<div id="centerCol">
<span id="productTitle">  Glow Vitamin C Serum, 30 ml  </span>
<a id="bylineInfo" href="/stores/Glow">Visit the Glow Store</a>
<div id="acrPopover" title="4.5 out of 5 stars"><span>4.5</span></div>
<span id="acrCustomerReviewText">1,234 ratings</span>
<div id="corePrice_feature_div"><span class="a-price"><span class="a-offscreen">$34.99</span>
<span aria-hidden="true"><span class="a-price-symbol">$</span><span class="a-price-whole">34.</span><span class="a-price-fraction">99</span></span></span></div>
<table class="a-normal a-spacing-micro">
<tr class="po-brand"><td class="a-span3"><span>Brand</span></td><td class="a-span9"><span>Glow</span></td></tr>
<tr class="po-item_form"><td class="a-span3"><span>Item Form</span></td><td class="a-span9"><span>Liquid</span></td></tr>
</table>
<div id="feature-bullets"><ul>
<li><span class="a-list-item"> Brightens dull skin </span></li>
<li><span class="a-list-item">Fragrance free</span></li>
</ul></div>
<div id="availability"><span> In Stock </span></div>
<input type="submit" id="add-to-cart-button" value="Add to Cart">
</div>
<div id="productDescription"><p>A daily vitamin C serum.</p></div>
<div id="detailBullets_feature_div"><ul>
<li><span class="a-list-item"><span class="a-text-bold">Date First Available &rlm; : &lrm;</span><span>March 3, 2021</span></span></li>
<li><span class="a-list-item"><span class="a-text-bold">Best Sellers Rank:</span> #1,234 in Beauty &amp; Personal Care (See Top 100 in Beauty &amp; Personal Care) #12 in Facial Serums</span></li>
</ul></div>
<img src="https://m.media-amazon.com/images/G/01/sprite._AC_SL1500_.jpg">
<script>P.when('A').register("ImageBlockATF", function(A){ var data = { 'colorImages': { 'initial': [{"hiRes":"https://m.media-amazon.com/images/I/71main._AC_SL1500_.jpg","large":"https://m.media-amazon.com/images/I/71main._AC_.jpg"},{"hiRes":"https://m.media-amazon.com/images/I/81side._AC_SL1500_.jpg","large":"https://m.media-amazon.com/images/I/81side._AC_.jpg"},{"hiRes":null,"large":"https://m.media-amazon.com/images/I/61back._AC_.jpg"}]}, 'colorToAsin': {}}; return data; });</script>
</div></body></html>"""

OVERLAY_HTML = """<html><head><title>Amazon.com Shopping Cart</title></head><body>
<div id="sw-atc-confirmation"><h1>Added to Cart</h1>
<a id="hlb-continue-shopping-announce" href="#">Continue shopping</a>
</div></body></html>"""

SIDE_SHEET_HTML = """<html><head><title>Amazon.com: Glow Vitamin C Serum</title></head><body>
<div id="attach-desktop-sideSheet"><iframe name="attach-sidesheet"></iframe></div>
</body></html>"""

SIDE_SHEET_FRAME_HTML = """<html><body>
<span>Added to cart</span><button>Keep shopping</button>
</body></html>"""

CHALLENGE_URL = "https://www.amazon.com/errors/validateCaptcha"

CHALLENGE_HTML = """<html><head><title>Amazon.com</title></head><body>
<h4>Enter the characters you see below</h4>
<p>Sorry, we just need to make sure you're not a robot.</p>
<form method="get" action="/errors/validateCaptcha">
<img src="https://images-na.ssl-images-amazon.com/captcha/abc/Captcha_xyz.jpg">
<input id="captchacharacters" name="field-keywords" type="text">
<button type="submit" class="a-button-text">Continue shopping</button>
</form>
<a href="/gp/help/customer/display.html">Conditions of Use</a>
</body></html>"""

SIGNIN_HTML = """<html><head><title>Amazon Sign-In</title></head><body>
<form name="signIn"><input type="email" name="email"><input type="submit" id="continue" value="Continue"></form>
</body></html>"""

MISSION_HTML = """<html><head><title>Amazon.com: Mission</title></head><body>
<a id="nav-logo-sprites" href="/">Amazon</a>
<div class="mission-body">Complete your mission</div>
</body></html>"""

HOME_HTML = """<html><head><title>Amazon.com. Spend less. Smile more.</title></head><body>
<a id="nav-logo-sprites" href="/">Amazon</a><a href="/gp/bestsellers">Best Sellers</a>
</body></html>"""

UNAVAILABLE_HTML = """<html><head><title>Service Unavailable Error</title></head><body>
<p>503 Service Unavailable</p></body></html>"""

DEAD_END_HTML = """<html><head><title>Amazon.com</title></head><body>
<h2>Looking for something?</h2>
<button style="display:none">Continue shopping</button>
<a href="/ref=cs_404_link">Amazon Home Page</a>
</body></html>"""


ICON_OVERLAY_HTML = """<html><head><title>Amazon.com Shopping Cart</title></head><body>
<div id="sw-atc-confirmation" class="a-modal-scroller"><h1>Added to Cart</h1>
<button class="a-button-close" aria-label="Continue shopping"><i class="a-icon-close"></i></button>
</div></body></html>"""

TEXT_LINK_OVERLAY_HTML = """<html><head><title>Amazon.com Shopping Cart</title></head><body>
<div id="sw-atc-confirmation" class="a-modal-scroller"><h1>Added to Cart</h1>
<button class="a-button-close" aria-label="Continue shopping"><i class="a-icon-close"></i></button>
<a class="sw-continue-link">Continue shopping</a>
</div></body></html>"""

VERIFY_HUMAN_HTML = """<html><head><title>Amazon.com</title></head><body>
<div id="challenge-running"><p>Verifying you are human. This may take a few seconds.</p></div>
</body></html>"""

TAB_CRASH_HTML = """<html><head><title>Amazon.com</title></head><body></body></html>"""


def sample_documents() -> Dict[str, FakeDocument]:
    """Fresh copies of every sample document, keyed by name."""
    return {
        "product": FakeDocument(PRODUCT_URL, PRODUCT_HTML),
        "overlay": FakeDocument(
            "https://www.amazon.com/cart/smart-wagon?newItems=1",
            OVERLAY_HTML,
            clicks={"#hlb-continue-shopping-announce": "product"},
        ),
        "stuck_overlay": FakeDocument("https://www.amazon.com/cart/smart-wagon", OVERLAY_HTML),
        "popup_overlay": FakeDocument(
            "https://www.amazon.com/cart/smart-wagon",
            OVERLAY_HTML,
            clicks={"#hlb-continue-shopping-announce": "popup:product"},
        ),
        "side_sheet": FakeDocument(
            PRODUCT_URL,
            SIDE_SHEET_HTML,
            frames=[FakeDocument(
                "https://www.amazon.com/cart/add-to-cart/attach-sidesheet",
                SIDE_SHEET_FRAME_HTML,
                title="attach-sidesheet",
                clicks={"button": "product"},
            )],
        ),
        "challenge": FakeDocument(
            CHALLENGE_URL,
            CHALLENGE_HTML,
            title="Robot Check",
            clicks={'form[action*="validateCaptcha"] button[type="submit"]': "product"},
        ),
        "signin": FakeDocument("https://www.amazon.com/ap/signin?openid.return_to=dp", SIGNIN_HTML),
        "mission": FakeDocument(
            "https://www.amazon.com/gp/mission/landing",
            MISSION_HTML,
            clicks={"#nav-logo-sprites": "home"},
        ),
        "home": FakeDocument("https://www.amazon.com/", HOME_HTML),
        "unavailable": FakeDocument(PRODUCT_URL, UNAVAILABLE_HTML, status=503),
        "dead_end": FakeDocument("https://www.amazon.com/s?k=serum", DEAD_END_HTML),
        "escape_overlay": FakeDocument(
            "https://www.amazon.com/cart/smart-wagon",
            ICON_OVERLAY_HTML,
            intercepted=["button.a-button-close"],
            on_escape="product",
        ),
        "text_link_overlay": FakeDocument(
            "https://www.amazon.com/cart/smart-wagon",
            TEXT_LINK_OVERLAY_HTML,
            intercepted=["button.a-button-close"],
            clicks={"a.sw-continue-link": "product"},
        ),
        "stuck_challenge": FakeDocument(
            CHALLENGE_URL,
            CHALLENGE_HTML,
            title="Robot Check",
            intercepted=['form[action*="validateCaptcha"] button[type="submit"]'],
        ),
        "verify_human": FakeDocument(PRODUCT_URL, VERIFY_HUMAN_HTML),
        "tab_crash": FakeDocument(PRODUCT_URL, TAB_CRASH_HTML, on_load="close"),
    }
