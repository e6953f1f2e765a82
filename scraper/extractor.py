"""
Product Extraction Pipeline
Pulls a fixed schema of fields out of a confirmed product page.

Every field is an ordered chain of FieldRule(name, probe, extract) pairs.
Rules run in order against a parsed snapshot of the document; the first rule
whose probe finds something and whose extractor yields non-blank text wins,
and its name is kept in ExtractionResult.sources. Chains are plain tuples so
the fallback order can be inspected and tested directly.

Images are different: four independent sources are merged in priority order,
then filtered, deduplicated and split into primary + secondary.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from .fragments import extract_object, parse_loose_json
from .models import UNSPECIFIED, ExtractionResult, PageControl, SalesRank
from .pricing import BARE_PRICE_RE, CURRENCY_PRICE_RE, format_price, split_price

logger = logging.getLogger(__name__)


# =============================================================================
# Document snapshot
# =============================================================================

_INVISIBLE_RE = re.compile(r"[​‎‏‪-‮﻿]")


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace and drop bidi/zero-width marks."""
    if not text:
        return ""
    text = _INVISIBLE_RE.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


def node_text(node: Any) -> str:
    if node is None:
        return ""
    if isinstance(node, Tag):
        return clean_text(node.get_text(" "))
    return clean_text(str(node))


class ProductDocument:
    """Parsed, read-only snapshot of one page's HTML."""

    def __init__(self, html: str, url: str = ""):
        self.html = html or ""
        self.url = url
        self.soup = BeautifulSoup(self.html, "html.parser")
        self._text: Optional[str] = None

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def select(self, selector: str) -> List[Tag]:
        return self.soup.select(selector)

    @property
    def text(self) -> str:
        """Visible-ish document text (scripts and styles excluded)."""
        if self._text is None:
            parts = [
                s for s in self.soup.find_all(string=True)
                if s.parent is not None and s.parent.name not in ("script", "style", "noscript", "title")
            ]
            self._text = clean_text(" ".join(parts))
        return self._text

    def scripts(self) -> Iterable[str]:
        for script in self.soup.find_all("script"):
            content = script.string or script.get_text()
            if content:
                yield content

    def meta(self, *keys: str) -> Optional[str]:
        """Content of the first <meta name|property|itemprop=key>."""
        for key in keys:
            for attr in ("name", "property", "itemprop"):
                tag = self.soup.find("meta", attrs={attr: key})
                if tag is not None and tag.get("content"):
                    return tag["content"]
        return None


# =============================================================================
# Rule machinery
# =============================================================================

Probe = Callable[[ProductDocument], Any]
Extractor = Callable[[Any], Optional[str]]


@dataclass(frozen=True)
class FieldRule:
    name: str
    probe: Probe
    extract: Extractor = node_text


@dataclass(frozen=True)
class FieldValue:
    value: str = UNSPECIFIED
    rule: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.rule is not None


def run_rules(rules: Sequence[FieldRule], doc: ProductDocument) -> FieldValue:
    """Evaluate a chain in order; first non-blank value wins."""
    for rule in rules:
        try:
            probed = rule.probe(doc)
            if probed is None:
                continue
            value = clean_text(rule.extract(probed))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug(f"Rule {rule.name} failed: {e}")
            continue
        if value:
            return FieldValue(value, rule.name)
    return FieldValue()


def css(selector: str) -> Probe:
    return lambda doc: doc.select_one(selector)


def meta_content(*keys: str) -> Probe:
    return lambda doc: doc.meta(*keys)


def attr(name: str) -> Extractor:
    return lambda node: node.get(name) if isinstance(node, Tag) else None


def table_value(doc: ProductDocument, label: str) -> Optional[str]:
    """Value cell of the first table row whose label cell matches."""
    wanted = label.lower()
    for row in doc.select("tr"):
        cells = row.find_all(["th", "td"], recursive=False)
        if len(cells) < 2:
            continue
        if node_text(cells[0]).rstrip(" :").lower() == wanted:
            return node_text(cells[1])
    return None


def bullet_value(doc: ProductDocument, label: str) -> Optional[str]:
    """Value from a list item shaped like "label: value"."""
    pattern = re.compile(rf"^{re.escape(label)}\s*:\s*(.+)$", re.IGNORECASE)
    for item in doc.select("li"):
        match = pattern.match(node_text(item))
        if match:
            return match.group(1)
    return None


def label_value(label: str) -> Probe:
    return lambda doc: table_value(doc, label) or bullet_value(doc, label)


def attribute_rules(label: str, css_class: str) -> Tuple[FieldRule, ...]:
    """
    Fallback chain for a product-overview attribute such as "Item Form".

    Args:
        label: Human label shown in tables/bullets
        css_class: Row class used by the structured overview table (po-*)
    """
    return (
        FieldRule(f"{css_class}Row", css(f"tr.{css_class} td.a-span9, tr.{css_class} td:nth-of-type(2)")),
        FieldRule("tableRow", lambda doc: table_value(doc, label)),
        FieldRule("bulletItem", lambda doc: bullet_value(doc, label)),
    )


# =============================================================================
# Field-specific extractors
# =============================================================================

_STORE_RE = re.compile(r"^Visit the (.+?) Store$", re.IGNORECASE)
_BRAND_PREFIX_RE = re.compile(r"^Brand\s*:\s*(.+)$", re.IGNORECASE)
_RATING_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*out of\s*5", re.IGNORECASE)
_COUNT_RE = re.compile(r"\d[\d,.]*")
_REVIEWS_TEXT_RE = re.compile(r"(\d[\d,]*)\s+(?:global\s+)?ratings?\b", re.IGNORECASE)
_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?|"
    r"Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?"
)
DATE_RE = re.compile(
    rf"\b{_MONTHS}\s+\d{{1,2}},\s*\d{{4}}\b|\b\d{{1,2}}\s+{_MONTHS}\s+\d{{4}}\b|\b\d{{4}}-\d{{2}}-\d{{2}}\b",
    re.IGNORECASE,
)
_DATE_LABELS_RE = re.compile(r"(?:Date First Available|Release date|Publication date)\s*:?", re.IGNORECASE)
RANK_RE = re.compile(r"#\s?(?P<rank>[\d,]+)\s+in\s+(?P<category>[^#(]+?)(?=\s*\(|\s*#|$)")
_RANK_LABEL = "Best Sellers Rank"


def byline_brand(node: Any) -> Optional[str]:
    text = node_text(node)
    for pattern in (_STORE_RE, _BRAND_PREFIX_RE):
        match = pattern.match(text)
        if match:
            return match.group(1)
    return text


def rating_from_text(node: Any) -> Optional[str]:
    text = node.get("title") if isinstance(node, Tag) and node.get("title") else node_text(node)
    match = _RATING_RE.search(text or "")
    return match.group(1).replace(",", ".") if match else None


def count_from_text(node: Any) -> Optional[str]:
    match = _COUNT_RE.search(node_text(node))
    return re.sub(r"[,.]", "", match.group(0)) if match else None


def date_from_text(node: Any) -> Optional[str]:
    text = node_text(node)
    match = DATE_RE.search(text)
    return match.group(0) if match else text


def text_after_label(doc: ProductDocument, label_re: re.Pattern, window: int = 80) -> Optional[str]:
    match = label_re.search(doc.text)
    if not match:
        return None
    return doc.text[match.end():match.end() + window]


def rank_text_from_bullets(doc: ProductDocument) -> Optional[str]:
    for item in doc.select("li"):
        text = node_text(item)
        if text.lower().startswith(_RANK_LABEL.lower()):
            return text[len(_RANK_LABEL):].lstrip(" :")
    return None


def rank_text_from_document(doc: ProductDocument) -> Optional[str]:
    position = doc.text.find(_RANK_LABEL)
    if position == -1:
        return None
    return doc.text[position + len(_RANK_LABEL):position + len(_RANK_LABEL) + 300].lstrip(" :")


def parse_sales_ranks(text: Optional[str]) -> List[SalesRank]:
    """
    "#1,234 in Beauty (See Top 100 in Beauty) #12 in Lip Glosses"
    -> [SalesRank("Beauty", "1234"), SalesRank("Lip Glosses", "12")]
    """
    ranks = []
    for match in RANK_RE.finditer(clean_text(text)):
        category = clean_text(match.group("category"))
        if category:
            ranks.append(SalesRank(category=category, rank=match.group("rank").replace(",", "")))
    return ranks


# --- price -------------------------------------------------------------------

CORE_PRICE_SELECTORS = (
    "#corePrice_feature_div .a-price .a-offscreen",
    "#corePriceDisplay_desktop_feature_div .a-price .a-offscreen",
    "#apex_desktop .a-price .a-offscreen",
)

PRICE_SELECTORS = (
    ".a-price .a-offscreen",
    "#priceblock_ourprice",
    "#priceblock_dealprice",
    "#price_inside_buybox",
    "#kindle-price",
    "#price",
)

CURRENCY_META_KEYS = ("priceCurrency", "product:price:currency", "og:price:currency")


def _currency_text(text: str) -> Optional[str]:
    """Price text carrying a currency before or after the number ("$34.99", "34,99 €")."""
    match = CURRENCY_PRICE_RE.search(text)
    if match:
        return match.group(0)
    prefix, number, suffix = split_price(text)
    if (prefix or suffix) and number[:1].isdigit():
        return format_price(prefix or suffix, number, suffix=not prefix)
    return None


def first_currency_price(selectors: Sequence[str]) -> Probe:
    def probe(doc: ProductDocument) -> Optional[str]:
        for selector in selectors:
            for node in doc.select(selector):
                price = _currency_text(node_text(node))
                if price:
                    return price
        return None
    return probe


def _bare_price(container: Tag) -> Optional[str]:
    offscreen = node_text(container.select_one(".a-offscreen"))
    if BARE_PRICE_RE.match(offscreen):
        return offscreen
    # "34." in dot-decimal locales, "34," in comma-decimal ones
    whole = node_text(container.select_one(".a-price-whole")).rstrip(".,")
    fraction = node_text(container.select_one(".a-price-fraction"))
    if whole and BARE_PRICE_RE.match(whole):
        return f"{whole}.{fraction}" if fraction.isdigit() else whole
    return None


def price_with_borrowed_currency(doc: ProductDocument) -> Optional[str]:
    """Bare numeric price, prefixed with a nearby symbol or the currency meta tag."""
    for container in doc.select(".a-price"):
        number = _bare_price(container)
        if not number:
            continue
        symbol = (
            node_text(container.select_one(".a-price-symbol"))
            or node_text(doc.select_one(".a-price-symbol"))
            or (doc.meta(*CURRENCY_META_KEYS) or "")
        )
        return format_price(symbol.strip(), number)
    return None


# =============================================================================
# Field chains
# =============================================================================

TITLE_RULES = (
    FieldRule("productTitle", css("#productTitle")),
    FieldRule("titleSection", css("#titleSection #title")),
    FieldRule("metaTitle", meta_content("title", "og:title")),
    FieldRule("documentTitle", css("title")),
)

BRAND_RULES = (
    FieldRule("byline", css("#bylineInfo"), byline_brand),
    FieldRule("overviewRow", css("tr.po-brand td.a-span9, tr.po-brand td:nth-of-type(2)")),
    FieldRule("labelScan", label_value("Brand")),
)

ITEM_FORM_RULES = attribute_rules("Item Form", "po-item_form")

PRICE_RULES = (
    FieldRule("corePrice", first_currency_price(CORE_PRICE_SELECTORS)),
    FieldRule("priceContainer", first_currency_price(PRICE_SELECTORS)),
    FieldRule("borrowedCurrency", price_with_borrowed_currency),
)

DESCRIPTION_RULES = (
    FieldRule("productDescription", css("#productDescription")),
    FieldRule("bookDescription", css("#bookDescription_feature_div")),
    FieldRule("metaDescription", meta_content("description", "og:description")),
)

RATING_RULES = (
    FieldRule("acrPopover", css("#acrPopover"), rating_from_text),
    FieldRule("ratingOutOfText", css('[data-hook="rating-out-of-text"]'), rating_from_text),
    FieldRule("starIcon", css("i.a-icon-star span.a-icon-alt, i.a-icon-star-small span.a-icon-alt"),
              rating_from_text),
    FieldRule("textPattern", lambda doc: doc.text, rating_from_text),
)

REVIEW_COUNT_RULES = (
    FieldRule("customerReviewText", css("#acrCustomerReviewText"), count_from_text),
    FieldRule("totalReviewCount", css('[data-hook="total-review-count"]'), count_from_text),
    FieldRule("textPattern", lambda doc: (_REVIEWS_TEXT_RE.search(doc.text) or [None])[0], count_from_text),
)

AVAILABILITY_RULES = (
    FieldRule("availability", css("#availability span, #availability")),
    FieldRule("outOfStock", css("#outOfStock")),
)

AVAILABILITY_DATE_RULES = (
    FieldRule("detailBullets", lambda doc: bullet_value(doc, "Date First Available"), date_from_text),
    FieldRule("detailTable", lambda doc: table_value(doc, "Date First Available"), date_from_text),
    FieldRule("releaseDate", label_value("Release date"), date_from_text),
    FieldRule("datePattern", lambda doc: text_after_label(doc, _DATE_LABELS_RE),
              lambda text: (DATE_RE.search(text or "") or [None])[0]),
)

SALES_RANK_RULES = (
    FieldRule("detailBullets", rank_text_from_bullets),
    FieldRule("detailTable", lambda doc: table_value(doc, _RANK_LABEL)),
    FieldRule("textPattern", rank_text_from_document),
)

FIELD_RULES: Dict[str, Tuple[FieldRule, ...]] = {
    "title": TITLE_RULES,
    "brand": BRAND_RULES,
    "item_form": ITEM_FORM_RULES,
    "price": PRICE_RULES,
    "description": DESCRIPTION_RULES,
    "rating": RATING_RULES,
    "review_count": REVIEW_COUNT_RULES,
    "availability": AVAILABILITY_RULES,
    "availability_date": AVAILABILITY_DATE_RULES,
}

BULLET_SELECTORS = (
    "#feature-bullets ul li span.a-list-item",
    "#feature-bullets li",
    "#featurebullets_feature_div li",
)


def extract_bullets(doc: ProductDocument) -> List[str]:
    for selector in BULLET_SELECTORS:
        bullets = []
        for node in doc.select(selector):
            text = node_text(node)
            if text and text not in bullets:
                bullets.append(text)
        if bullets:
            return bullets
    return []


# =============================================================================
# Images
# =============================================================================

HIRES_SWEEP_RE = re.compile(r"https://[^\"'\s]+?\._AC_SL\d+_\.jpg(?:\?[^\"'\s]*)?", re.IGNORECASE)

JUNK_IMAGE_MARKERS = (
    "sprite", "360_icon", "play-icon", "overlay", "fmjpg", "fmpng",
    "icon", "transparent-pixel", "grey-pixel",
)

_SIZE_TOKEN_RE = re.compile(r"\._[A-Z0-9_,]+_\.(jpe?g|png|webp)$", re.IGNORECASE)

LANDING_IMAGE_SELECTORS = ("#landingImage", "#imgTagWrapperId img", "#imgBlkFront")


def is_junk_image(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in JUNK_IMAGE_MARKERS)


def base_image_url(url: str) -> str:
    """Drop the size token: ".../I/71abc._AC_SX679_.jpg" -> ".../I/71abc.jpg"."""
    path = url.split("?", 1)[0]
    return _SIZE_TOKEN_RE.sub(lambda m: f".{m.group(1)}", path)


def image_key(url: str) -> str:
    """Identity of an image regardless of size variant or query string."""
    parsed = urlparse(base_image_url(url))
    return parsed.path.lower()


def landing_image(doc: ProductDocument) -> Optional[Tag]:
    for selector in LANDING_IMAGE_SELECTORS:
        node = doc.select_one(selector)
        if node is not None:
            return node
    return None


def images_from_old_hires(doc: ProductDocument) -> List[str]:
    node = landing_image(doc)
    value = node.get("data-old-hires") if node is not None else None
    return [value] if value else []


def images_from_dynamic_attr(doc: ProductDocument) -> List[str]:
    """Keys of the size-keyed mapping, largest declared pixel area first."""
    node = landing_image(doc)
    raw = node.get("data-a-dynamic-image") if node is not None else None
    mapping = parse_loose_json(raw)
    if not isinstance(mapping, dict):
        return []

    def area(item: Tuple[str, Any]) -> int:
        size = item[1]
        try:
            return int(size[0]) * int(size[1])
        except (TypeError, ValueError, IndexError):
            return 0

    return [url for url, _ in sorted(mapping.items(), key=area, reverse=True)]


def images_from_gallery_script(doc: ProductDocument) -> List[str]:
    """hiRes/large URLs from the embedded colorImages gallery object."""
    urls: List[str] = []
    for script in doc.scripts():
        if "colorImages" not in script:
            continue
        gallery = extract_object(script, "'colorImages'") or extract_object(script, '"colorImages"')
        if not isinstance(gallery, dict):
            continue
        for entry in gallery.get("initial") or []:
            if not isinstance(entry, dict):
                continue
            url = entry.get("hiRes") or entry.get("large")
            if isinstance(url, str) and url:
                urls.append(url)
        if urls:
            break
    return urls


def images_from_hires_sweep(doc: ProductDocument) -> List[str]:
    return [m.group(0) for m in HIRES_SWEEP_RE.finditer(doc.html)]


IMAGE_SOURCES: Tuple[Tuple[str, Callable[[ProductDocument], List[str]]], ...] = (
    ("oldHires", images_from_old_hires),
    ("dynamicImage", images_from_dynamic_attr),
    ("colorImages", images_from_gallery_script),
    ("hiResSweep", images_from_hires_sweep),
)


@dataclass
class ImageSet:
    main: str = UNSPECIFIED
    additional: List[str] = field(default_factory=list)
    source: Optional[str] = None


def collect_images(doc: ProductDocument) -> ImageSet:
    """Merge every source, filter junk, dedupe, split primary/secondary."""
    candidates: List[Tuple[str, str]] = []
    for name, source in IMAGE_SOURCES:
        try:
            found = source(doc)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Image source {name} failed: {e}")
            continue
        for url in found:
            url = (url or "").strip()
            if url.startswith("http") and not is_junk_image(url):
                candidates.append((name, url))

    main, main_source = UNSPECIFIED, None
    if candidates:
        main_source, main = candidates[0]
    else:
        node = landing_image(doc)
        src = (node.get("src") or "").strip() if node is not None else ""
        if src.startswith("http") and not is_junk_image(src):
            main, main_source = base_image_url(src), "landingSrc"

    seen = {image_key(main)} if main != UNSPECIFIED else set()
    additional: List[str] = []
    for _, url in candidates:
        key = image_key(url)
        if key in seen:
            continue
        seen.add(key)
        additional.append(url)

    return ImageSet(main=main, additional=additional, source=main_source)


# =============================================================================
# Extractor
# =============================================================================

class ProductExtractor:
    """
    Runs every field chain over a product page.

    Usage:
        extractor = ProductExtractor()
        result = await extractor.extract(page)
    """

    def __init__(self, rules: Optional[Dict[str, Sequence[FieldRule]]] = None):
        self.rules = dict(FIELD_RULES if rules is None else rules)

    def extract_html(self, html: str, url: str = "") -> ExtractionResult:
        doc = ProductDocument(html, url)
        values: Dict[str, str] = {}
        sources: Dict[str, str] = {}

        for field_name, rules in self.rules.items():
            result = run_rules(rules, doc)
            values[field_name] = result.value
            if result.found:
                sources[field_name] = result.rule

        rank_text = run_rules(SALES_RANK_RULES, doc)
        ranks = parse_sales_ranks(rank_text.value) if rank_text.found else []
        if ranks:
            sources["sales_rank"] = rank_text.rule

        images = collect_images(doc)
        if images.source:
            sources["main_image_url"] = images.source

        result = ExtractionResult(
            bullets=extract_bullets(doc),
            main_image_url=images.main,
            additional_image_urls=images.additional,
            sales_rank=ranks[0] if ranks else SalesRank(),
            sub_rank=ranks[1] if len(ranks) > 1 else SalesRank(),
            sources=sources,
            **values,
        )

        missing = [name for name in self.rules if name not in sources]
        if missing:
            logger.info(f"Fields not present on page: {', '.join(missing)}")
        return result

    async def extract(self, page) -> ExtractionResult:
        html = await page.content()
        return self.extract_html(html, page.url)


# =============================================================================
# Non-product pages
# =============================================================================

BUTTON_SELECTOR = 'button, input[type="button"], input[type="submit"], [role="button"]'


def _class_string(node: Tag) -> str:
    classes = node.get("class") or []
    if isinstance(classes, str):
        return clean_text(classes)
    return clean_text(" ".join(classes))


def extract_page_controls(
    html: str,
    base_url: str = "",
    max_links: int = 300,
    max_buttons: int = 300,
) -> Tuple[List[PageControl], List[PageControl], Dict[str, int]]:
    """
    Links and buttons of a page that is not a product page, so the caller can
    see where the site sent them.

    Returns:
        (links deduplicated by href+text, buttons deduplicated by text+id, raw counts)
    """
    soup = BeautifulSoup(html or "", "html.parser")

    def absolute(href: Optional[str]) -> str:
        if not href:
            return ""
        try:
            return urljoin(base_url, href)
        except ValueError:
            return href

    link_nodes = soup.find_all("a")[:max_links]
    button_nodes = soup.select(BUTTON_SELECTOR)[:max_buttons]

    links: List[PageControl] = []
    seen_links = set()
    for node in link_nodes:
        control = PageControl(
            tag="a",
            text=node_text(node),
            href=absolute(node.get("href")),
            id=node.get("id") or "",
            classes=_class_string(node),
            rel=" ".join(node.get("rel") or []) if isinstance(node.get("rel"), list) else node.get("rel") or "",
            target=node.get("target") or "",
            role=node.get("role") or "",
            aria_label=node.get("aria-label") or "",
            onclick=node.get("onclick") or "",
        )
        key = f"{control.href}|{control.text}"
        if control.href and key not in seen_links:
            seen_links.add(key)
            links.append(control)

    buttons: List[PageControl] = []
    seen_buttons = set()
    for node in button_nodes:
        tag = (node.name or "").lower()
        control = PageControl(
            tag=tag,
            text=node_text(node) or clean_text(node.get("value")),
            href=absolute(node.get("href")),
            id=node.get("id") or "",
            classes=_class_string(node),
            name=node.get("name") or "",
            type=node.get("type") or "",
            role=node.get("role") or "",
            aria_label=node.get("aria-label") or "",
            onclick=node.get("onclick") or "",
        )
        key = f"{control.text}|{control.id}"
        if key not in seen_buttons:
            seen_buttons.add(key)
            buttons.append(control)

    counts = {"links": len(link_nodes), "buttons": len(button_nodes)}
    return links, buttons, counts
