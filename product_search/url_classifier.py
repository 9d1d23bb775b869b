"""
Product-detail vs. category classification of store URLs.

Works on the URL path only (no network). Everything after the product
section marker is the residual path; the rules, in order:

1. no marker, or fewer than two residual segments   -> category
2. every residual segment is a known section name   -> category
3. a residual segment carries a detail keyword      -> detail
4. three or more residual segments                  -> detail
5. otherwise, detail only if a segment has a digit  (SKU / variant)

False positives and negatives are expected; callers confirm by fetching
the page before trusting a URL.
"""

import re
from typing import List, Optional
from urllib.parse import urlsplit

STOP_TERMS_VERSION = "2024.09"

PRODUCT_MARKER = "productstore"

STOP_TERMS = frozenset({
    "r3", "supplements", "cleaning-and-laundry", "all-cleaning-and-laundry",
    "personal-care", "home-care", "home-cleaning", "laundry", "skincare",
    "skin-care", "nutrition", "pharmacy", "beauty", "bath-and-body", "home",
    "shop-all", "shop", "categories", "gifts", "clearance", "new-products",
    "product-store", "productstore",
    "healthy-foods-and-drinks", "color-cosmetics", "acne-prevention",
    "premium-skin-care", "hand-soap-sanitizers", "healthy-weight-protein",
    "healthy-snacks", "baking-mixes", "outlet-store", "extra-savings",
    "beauty-specials", "now-trending-seasonal-colors",
})

DETAIL_KEYWORDS = re.compile(r"(product|detail|item|showdetails)", re.I)


def path_segments(url: str) -> List[str]:
    try:
        path = urlsplit(url).path
    except ValueError:
        return []
    return [seg for seg in path.lower().split("/") if seg]


def residual_segments(url: str) -> Optional[List[str]]:
    """Segments after the product marker, or None when the marker is absent."""
    parts = path_segments(url)
    if PRODUCT_MARKER not in parts:
        return None
    return parts[parts.index(PRODUCT_MARKER) + 1:]


def is_likely_product_detail_url(url: Optional[str]) -> bool:
    if not url:
        return False
    rest = residual_segments(url)
    if rest is None or len(rest) < 2:
        return False
    if all(seg in STOP_TERMS for seg in rest):
        return False
    if any(DETAIL_KEYWORDS.search(seg) for seg in rest):
        return True
    if len(rest) >= 3:
        return True
    return any(ch.isdigit() for seg in rest for ch in seg)


def is_category_like(name: str, url: str) -> bool:
    """True when a link's text or target reads as a section rather than an item."""
    label = " ".join((name or "").split()).lower()
    if not label:
        return True
    if label.replace(" ", "-") in STOP_TERMS:
        return True
    rest = residual_segments(url)
    if rest is None:
        rest = path_segments(url)
    if len(rest) <= 1:
        return True
    return all(seg in STOP_TERMS for seg in rest)
