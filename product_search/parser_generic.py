from typing import List, Optional

from bs4 import BeautifulSoup

from .parser_jsonld import extract_structured_products
from .parser_layout import LAYOUT_THRESHOLD, extract_layout_products
from .ranker import dedupe_products, prioritize_products
from .schema import Product
from .url_classifier import is_likely_product_detail_url


def parse_products(html: str, base_url: str) -> List[Product]:
    """
    Candidate products from a search/listing page: JSON-LD first, tile
    anchors when that comes up thin. Keeps detail-looking or priced items,
    ranked.
    """
    soup = BeautifulSoup(html, "lxml")
    items = extract_structured_products(soup, base_url)
    if len(items) < LAYOUT_THRESHOLD:
        items += extract_layout_products(soup, base_url)

    items = [
        p for p in dedupe_products(items)
        if is_likely_product_detail_url(p.url) or p.price > 0
    ]
    return prioritize_products(items)


def extract_detail_product(html: str, page_url: str) -> Optional[Product]:
    """The product a detail page describes, confirmed by its structured data."""
    soup = BeautifulSoup(html, "lxml")
    for prod in extract_structured_products(soup, page_url, fallback_url=page_url):
        return prod
    return None
