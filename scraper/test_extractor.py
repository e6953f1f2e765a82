#!/usr/bin/env python3
"""
Tests for the extraction pipeline: field fallback chains, the image merge
and link/button collection on non-product pages.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scraper.extractor import (
    BRAND_RULES,
    TITLE_RULES,
    FieldRule,
    ProductDocument,
    ProductExtractor,
    attribute_rules,
    base_image_url,
    collect_images,
    extract_page_controls,
    image_key,
    is_junk_image,
    parse_sales_ranks,
    run_rules,
)
from scraper.fake_browser import CHALLENGE_HTML, CHALLENGE_URL, PRODUCT_HTML, PRODUCT_URL, FakeBrowser, FakeSite, sample_documents
from scraper.models import UNSPECIFIED, SalesRank


IMG = "https://m.media-amazon.com/images/I/"


def test_full_product_page():
    """Every field of the sample product page."""
    print("Testing full extraction...")

    result = ProductExtractor().extract_html(PRODUCT_HTML, PRODUCT_URL)

    assert result.title == "Glow Vitamin C Serum, 30 ml"
    assert result.brand == "Glow"
    assert result.item_form == "Liquid"
    assert result.price == "$34.99"
    assert result.description == "A daily vitamin C serum."
    assert result.bullets == ["Brightens dull skin", "Fragrance free"]
    assert result.rating == "4.5"
    assert result.review_count == "1234"
    assert result.availability == "In Stock"
    assert result.availability_date == "March 3, 2021"
    assert result.sales_rank == SalesRank("Beauty & Personal Care", "1234")
    assert result.sub_rank == SalesRank("Facial Serums", "12")
    assert result.sources["title"] == "productTitle"
    assert result.sources["brand"] == "byline"
    assert result.sources["price"] == "corePrice"
    print("  ✓ All fields populated")


def test_image_invariants():
    """Primary excluded from secondaries; junk never present; no duplicate keys."""
    print("Testing image merge...")

    images = collect_images(ProductDocument(PRODUCT_HTML))

    assert images.main == IMG + "71main._AC_SL1500_.jpg"
    assert images.source == "oldHires"
    assert images.additional == [IMG + "81side._AC_SL1500_.jpg", IMG + "61back._AC_.jpg"]

    main_key = image_key(images.main)
    keys = [image_key(url) for url in images.additional]
    assert main_key not in keys
    assert len(keys) == len(set(keys))
    assert not any(is_junk_image(url) for url in images.additional)
    print("  ✓ Primary excluded, junk filtered, deduplicated")


def test_image_source_fallbacks():
    print("Testing image fallbacks...")

    # Dynamic-image mapping only: largest declared area wins
    html = (
        '<img id="landingImage" src="data:image/gif;base64,R0lGOD" data-a-dynamic-image="'
        "{&quot;" + IMG + "small._AC_SX300_.jpg&quot;:[300,300],&quot;"
        + IMG + "big._AC_SX1000_.jpg&quot;:[1000,1000]}\">"
    )
    images = collect_images(ProductDocument(html))
    assert images.main == IMG + "big._AC_SX1000_.jpg"
    assert images.additional == [IMG + "small._AC_SX300_.jpg"]

    # Nothing structured: landing src normalized to its base image
    html = '<img id="landingImage" src="' + IMG + 'only._AC_SY355_.jpg">'
    images = collect_images(ProductDocument(html))
    assert images.main == IMG + "only.jpg"
    assert images.source == "landingSrc"
    assert images.additional == []

    # No images at all
    images = collect_images(ProductDocument("<html><body></body></html>"))
    assert images.main == UNSPECIFIED
    assert images.additional == []
    print("  ✓ Each source used when higher ones are missing")


def test_image_helpers():
    print("Testing image helpers...")

    assert base_image_url(IMG + "71abc._AC_SX679_.jpg") == IMG + "71abc.jpg"
    assert base_image_url(IMG + "71abc._AC_UL1500_.jpg?x=1") == IMG + "71abc.jpg"
    assert image_key(IMG + "71abc._AC_SL1500_.jpg") == image_key(IMG + "71ABC._AC_SX425_.jpg")
    assert is_junk_image("https://m.media-amazon.com/images/G/01/x-locale/360_icon_73x73.png")
    assert is_junk_image("https://m.media-amazon.com/images/I/play-icon-overlay.png")
    assert not is_junk_image(IMG + "71abc._AC_SL1500_.jpg")
    print("  ✓ Size tokens stripped, junk recognised")


def test_fallback_chains():
    """Later rules only fire when earlier ones find nothing."""
    print("Testing fallback order...")

    html = """<html><head><title>Amazon.com: Fallback Title</title>
    <meta name="title" content="Meta Title"></head><body>
    <table><tr><th>Brand</th><td>TableBrand</td></tr></table>
    <ul><li>Item Form : Cream</li></ul>
    <div class="a-price"><span class="a-price-whole">12.</span><span class="a-price-fraction">49</span></div>
    <meta itemprop="priceCurrency" content="EUR">
    <span data-hook="total-review-count">87 global ratings</span>
    <i class="a-icon-star"><span class="a-icon-alt">3,9 out of 5 stars</span></i>
    </body></html>"""
    result = ProductExtractor().extract_html(html)

    assert result.title == "Meta Title"
    assert result.sources["title"] == "metaTitle"
    assert result.brand == "TableBrand"
    assert result.sources["brand"] == "labelScan"
    assert result.item_form == "Cream"
    assert result.sources["item_form"] == "bulletItem"
    assert result.price == "EUR 12.49"
    assert result.sources["price"] == "borrowedCurrency"
    assert result.review_count == "87"
    assert result.rating == "3.9"
    assert result.bullets == []
    assert result.sales_rank == SalesRank()
    print("  ✓ Fallbacks fire in order")


def test_comma_decimal_prices():
    print("Testing comma-decimal prices...")

    html = """<html><body><span class="a-price">
    <span class="a-offscreen">34,99 €</span>
    <span aria-hidden="true"><span class="a-price-whole">34,</span><span class="a-price-fraction">99</span><span class="a-price-symbol">€</span></span>
    </span></body></html>"""
    result = ProductExtractor().extract_html(html)
    assert result.price == "34,99 €"
    assert result.sources["price"] == "priceContainer"

    html = """<html><body><span class="a-price">
    <span class="a-price-whole">34,</span><span class="a-price-fraction">99</span><span class="a-price-symbol">€</span>
    </span></body></html>"""
    result = ProductExtractor().extract_html(html)
    assert result.price == "€34.99"
    assert result.sources["price"] == "borrowedCurrency"
    print("  ✓ Trailing currency kept, whole-part comma dropped")


def test_missing_fields_are_unspecified():
    print("Testing absent fields...")

    result = ProductExtractor().extract_html("<html><body><p>nothing</p></body></html>")
    for name in ("title", "brand", "item_form", "price", "description", "rating",
                 "review_count", "availability", "availability_date", "main_image_url"):
        assert getattr(result, name) == UNSPECIFIED, name
    assert result.additional_image_urls == []
    assert result.sources == {}
    print("  ✓ Sentinel everywhere")


def test_rule_machinery():
    print("Testing rule runner...")

    doc = ProductDocument("<div id='a'>   </div><div id='b'> Beta </div>")
    rules = (
        FieldRule("blank", lambda d: d.select_one("#a")),
        FieldRule("broken", lambda d: d.select_one("#missing").text),
        FieldRule("beta", lambda d: d.select_one("#b")),
    )
    value = run_rules(rules, doc)
    assert value.value == "Beta" and value.rule == "beta"
    assert not run_rules((), doc).found

    assert [r.name for r in TITLE_RULES] == ["productTitle", "titleSection", "metaTitle", "documentTitle"]
    assert BRAND_RULES[0].name == "byline"
    assert [r.name for r in attribute_rules("Skin Type", "po-skin_type")] == [
        "po-skin_typeRow", "tableRow", "bulletItem",
    ]
    print("  ✓ Blank and failing rules skipped")


def test_sales_rank_parsing():
    print("Testing sales rank parsing...")

    ranks = parse_sales_ranks("#2,345 in Books (See Top 100 in Books) #3 in Poetry #10 in Haiku")
    assert ranks[0] == SalesRank("Books", "2345")
    assert ranks[1] == SalesRank("Poetry", "3")
    assert parse_sales_ranks("") == []
    print("  ✓ Primary and secondary ranks")


def test_page_controls():
    """Links and buttons of a non-product page, deduplicated and capped."""
    print("Testing page controls...")

    links, buttons, counts = extract_page_controls(CHALLENGE_HTML, CHALLENGE_URL)
    assert [link.href for link in links] == ["https://www.amazon.com/gp/help/customer/display.html"]
    assert buttons[0].text == "Continue shopping"
    assert counts == {"links": 1, "buttons": 1}

    html = "".join('<a href="/x">Same</a>' for _ in range(5)) + "".join(
        f'<button id="b{i}">Go</button>' for i in range(5)
    )
    links, buttons, counts = extract_page_controls(html, "https://www.amazon.com/", max_buttons=3)
    assert len(links) == 1 and links[0].href == "https://www.amazon.com/x"
    assert len(buttons) == 3
    assert counts == {"links": 5, "buttons": 3}
    print("  ✓ Deduplicated and capped")


def test_extract_from_live_page():
    print("Testing extraction through a page...")

    async def scenario():
        docs = sample_documents()
        browser = FakeBrowser(FakeSite(docs, routes={"/dp/": "product"}))
        context = await browser.new_context()
        page = await context.new_page()
        await page.goto(PRODUCT_URL)
        return await ProductExtractor().extract(page)

    result = asyncio.run(scenario())
    assert result.title == "Glow Vitamin C Serum, 30 ml"
    print("  ✓ Page content extracted")


def run_all_tests():
    print("=" * 60)
    print("EXTRACTOR - UNIT TESTS")
    print("=" * 60)

    try:
        test_full_product_page()
        test_image_invariants()
        test_image_source_fallbacks()
        test_image_helpers()
        test_fallback_chains()
        test_comma_decimal_prices()
        test_missing_fields_are_unspecified()
        test_rule_machinery()
        test_sales_rank_parsing()
        test_page_controls()
        test_extract_from_live_page()
        print("ALL TESTS PASSED!")
        return 0
    except AssertionError as e:
        print(f"\n✗ TEST FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
