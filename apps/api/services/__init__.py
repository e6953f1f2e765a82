# Services package
from .scraper import get_product_scraper, reset_product_scraper, scraper_status
