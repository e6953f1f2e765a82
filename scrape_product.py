#!/usr/bin/env python3
"""
Product Page Scraper (command line)
Scrapes one product page and writes the same JSON the /scrape endpoint returns.

Usage:
    python scrape_product.py B0TESTASIN --out data/product.json
    python scrape_product.py "https://www.amazon.com/dp/B0TESTASIN" --no-screenshot
"""

import asyncio
import argparse
import json
import logging
import os
import sys
from pathlib import Path

# The response schema lives with the API
sys.path.insert(0, str(Path(__file__).parent / "apps" / "api"))

from scraper import ConfigurationError, ProductScraper, ScraperSettings, resolve_locator
from models.schemas import ScrapeResponse

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


async def scrape_product(locator: str, include_screenshot: bool = True) -> dict:
    settings = ScraperSettings.from_env()
    scraper = ProductScraper(settings)
    result = await scraper.scrape(locator, include_screenshot=include_screenshot)
    return ScrapeResponse.from_result(result).model_dump(by_alias=True, mode="json")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Scrape one product page by URL or item id',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scrape_product.py B0TESTASIN
    python scrape_product.py "https://www.amazon.com/dp/B0TESTASIN" --out product.json
        """
    )
    parser.add_argument('locator', help='Product page URL or 10-character item id')
    parser.add_argument(
        '--out', '-o',
        type=str,
        default=None,
        help='Output JSON file path (default: print to stdout)'
    )
    parser.add_argument(
        '--no-screenshot',
        action='store_true',
        help='Leave the base64 screenshot out of the output'
    )

    args = parser.parse_args()

    try:
        resolve_locator(args.locator)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(2)

    try:
        payload = asyncio.run(scrape_product(args.locator, not args.no_screenshot))
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\n\nScraping interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Scrape failed: {e}", exc_info=True)
        sys.exit(1)

    output = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.out:
        output_path = Path(args.out)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(output, encoding='utf-8')
        print(f"Saved {payload['pageType']} result to {output_path}")
    else:
        print(output)

    if payload['pageType'] != 'product':
        print(f"Page never became a product page (final state: {payload['diagnostics']['finalState']})",
              file=sys.stderr)


if __name__ == '__main__':
    main()
