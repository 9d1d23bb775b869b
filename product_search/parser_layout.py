import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .normalizer import make_id, registered_domain
from .schema import Product
from .url_classifier import is_category_like, is_likely_product_detail_url

# below this many JSON-LD products a listing page is also mined for anchors
LAYOUT_THRESHOLD = 3

TILE_PRICE = re.compile(r"\$\s*([0-9]+(?:\.[0-9]{2})?)")


def _squash(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def _absolute(base_url: str, href: Optional[str]) -> Optional[str]:
    if not href or not href.strip():
        return None
    try:
        return urljoin(base_url, href.strip())
    except ValueError:
        return None


def _tile_price(a: Tag) -> float:
    tile = a.find_parent(["li", "article", "div"])
    if tile is None:
        return 0.0
    m = TILE_PRICE.search(_squash(tile.get_text(" ")))
    return float(m.group(1)) if m else 0.0


def extract_layout_products(soup: BeautifulSoup, base_url: str) -> List[Product]:
    """
    Lower-confidence products mined from product-tile anchors when a page
    carries little or no structured data.
    """
    out: List[Product] = []
    for a in soup.find_all("a", href=True):
        href = _absolute(base_url, a["href"])
        if not href or not is_likely_product_detail_url(href):
            continue

        img = a.find("img")
        name = _squash(a.get("title") or a.get_text(" "))
        if not name and img is not None:
            name = _squash(img.get("alt"))
        if not name or is_category_like(name, href):
            continue

        image = None
        if img is not None:
            image = _absolute(base_url, img.get("src") or img.get("data-src"))

        out.append(Product(
            id=make_id(href, name),
            name=name,
            price=_tile_price(a),
            url=href,
            image_url=image,
            domain=registered_domain(href),
            source="layout",
        ))
    return out
