"""
Price parsing and normalization.

Display prices on the source site render cents as superscript, so both DOM
text and readings off a page image can arrive as "³⁴⁹⁹", "34 99" or "34,95".
normalize_price() turns any of those into "$34.95"-style strings and is
idempotent on its own output.
"""

import re
from typing import Optional, Tuple

from .models import UNSPECIFIED, is_unspecified


SUPERSCRIPT_DIGITS = str.maketrans("⁰¹²³⁴⁵⁶⁷⁸⁹", "0123456789")
SUBSCRIPT_DIGITS = str.maketrans("₀₁₂₃₄₅₆₇₈₉", "0123456789")
_SCRIPT_DIGIT_RE = re.compile(r"[⁰¹²³⁴⁵⁶⁷⁸⁹₀₁₂₃₄₅₆₇₈₉]")

CURRENCY_SYMBOLS = "$€£¥₹₩₽¢"

# "$", "US$", "CA$", "R$", "USD", "EUR" ...
_CURRENCY_TOKEN = rf"(?:[A-Z]{{3}}|[A-Z]{{0,2}}[{CURRENCY_SYMBOLS}]|[{CURRENCY_SYMBOLS}])"
_PRICE_RE = re.compile(
    rf"^\s*(?P<prefix>{_CURRENCY_TOKEN})?\s*"
    r"(?P<number>\d[\d.,\s]*?)\s*"
    rf"(?P<suffix>{_CURRENCY_TOKEN})?\s*$"
)
_CENTS_GROUP_RE = re.compile(r"^(?P<whole>\d[\d,\s]*?)[\s,](?P<cents>\d{2})$")

# Currency-prefixed numeric text as shown in price containers
CURRENCY_PRICE_RE = re.compile(rf"{_CURRENCY_TOKEN}\s?\d[\d,]*(?:\.\d+)?")
BARE_PRICE_RE = re.compile(r"^\d[\d,]*(?:\.\d+)?$")


def plain_digits(text: str) -> Tuple[str, bool]:
    """
    Replace superscript/subscript numerals with plain digits.

    Returns:
        (converted text, whether any script digit was present)
    """
    had_script = bool(_SCRIPT_DIGIT_RE.search(text))
    return text.translate(SUPERSCRIPT_DIGITS).translate(SUBSCRIPT_DIGITS), had_script


def split_price(text: str) -> Tuple[str, str, str]:
    """
    Split "USD 34.99" / "$34.99" / "34,99 €" into (prefix, number, suffix).

    Unparseable text comes back as ("", text, "").
    """
    match = _PRICE_RE.match(text or "")
    if not match:
        return "", (text or "").strip(), ""
    return match.group("prefix") or "", match.group("number").strip(), match.group("suffix") or ""


def currency_of(price: Optional[str]) -> str:
    """Currency symbol or ISO code carried by a price string ("" if none)."""
    if is_unspecified(price):
        return ""
    prefix, _, suffix = split_price(plain_digits(price)[0])
    return prefix or suffix


def format_price(currency: str, number: str, suffix: bool = False) -> str:
    if not currency:
        return number
    separator = " " if currency[-1].isalpha() else ""
    if suffix:
        return f"{number} {currency}"
    return f"{currency}{separator}{number}"


def _fix_decimal(number: str, had_script: bool) -> str:
    if "." in number:
        return number.replace(" ", "")

    cents = _CENTS_GROUP_RE.match(number)
    if cents:
        whole = re.sub(r"[\s,]", "", cents.group("whole"))
        return f"{whole}.{cents.group('cents')}"

    compact = number.replace(" ", "")
    if had_script:
        digits = compact.replace(",", "")
        if len(digits) > 2:
            return f"{digits[:-2]}.{digits[-2:]}"
    return compact


def normalize_price(raw: Optional[str], dom_price: Optional[str] = None) -> str:
    """
    Normalize a price reading.

    Args:
        raw: Price text, typically the vision model's answer
        dom_price: DOM-derived price used to borrow a missing currency

    Examples:
        normalize_price("34,95", "$1")     -> "$34.95"
        normalize_price("³⁴⁹⁹", "USD 1")   -> "USD 34.99"
        normalize_price("$34.95")          -> "$34.95"
    """
    if is_unspecified(raw):
        return UNSPECIFIED

    text, had_script = plain_digits(str(raw).strip())
    prefix, number, suffix = split_price(text)
    if not number or not number[0].isdigit():
        return text

    number = _fix_decimal(number, had_script)

    currency = prefix or suffix
    if not currency:
        return format_price(currency_of(dom_price), number)
    return format_price(currency, number, suffix=bool(suffix and not prefix))
