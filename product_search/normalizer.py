import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import tldextract
from slugify import slugify

from .schema import Product
from .url_classifier import is_likely_product_detail_url

# bundled suffix snapshot only, never hits the network
_extract = tldextract.TLDExtract(suffix_list_urls=())

PRICE_NUMBER = re.compile(r"([0-9]+(?:\.[0-9]+)?)")


def as_list(v: Any) -> List[Any]:
    if isinstance(v, list):
        return v
    return [] if v is None else [v]


def _first(v: Any) -> Any:
    return v[0] if isinstance(v, list) and v else v


def registered_domain(url: str) -> str:
    ext = _extract(url or "")
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return ext.domain or ""


def make_id(url: str, name: Optional[str] = None) -> str:
    dom = urlparse(url).netloc
    base = slugify((name or url)[0:80])
    return f"{dom}-{base}" if base else dom


def parse_price(v: Any) -> Optional[float]:
    """Numeric value of a price that may arrive as "$1,299.00", "6.99" or 6.99."""
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        m = PRICE_NUMBER.search(re.sub(r"[,\s]", "", v))
        return float(m.group(1)) if m else None
    return None


def offer_price(offers: Any) -> Optional[float]:
    for offer in as_list(offers):
        if not isinstance(offer, dict):
            continue
        for key in ("price", "lowPrice"):
            if offer.get(key):
                return parse_price(_first(offer[key]))
        spec = _first(offer.get("priceSpecification"))
        if isinstance(spec, dict) and spec.get("price"):
            return parse_price(spec["price"])
    return None


def _resolve(base_url: str, href: Any) -> str:
    href = _first(href)
    if isinstance(href, dict):
        href = href.get("url") or href.get("@id")
    if not isinstance(href, str) or not href.strip():
        return ""
    try:
        return urljoin(base_url, href.strip())
    except ValueError:
        return ""


def _text(v: Any) -> str:
    v = _first(v)
    if isinstance(v, dict):
        v = v.get("name")
    return v.strip() if isinstance(v, str) else ""


def _tags(keywords: Any) -> List[str]:
    if isinstance(keywords, str):
        keywords = keywords.split(",")
    return [k.strip() for k in as_list(keywords) if isinstance(k, str) and k.strip()]


def normalize_product_node(node: Any, base_url: str, fallback_url: str = "") -> Optional[Product]:
    """
    Canonical Product for one JSON-LD node, or None when the node is not a
    usable product: wrong @type, no name, or neither a positive price nor a
    detail-looking URL (likely a category stub).
    """
    if not isinstance(node, dict):
        return None
    types = [str(t) for t in as_list(node.get("@type"))]
    if "Product" not in types:
        return None

    name = _text(node.get("name"))
    if not name:
        return None

    price = offer_price(node.get("offers"))
    url = _resolve(base_url, node.get("url")) or fallback_url
    if not is_likely_product_detail_url(url) and not (price and price > 0):
        return None

    image = _resolve(base_url, node.get("image")) or None
    return Product(
        id=make_id(url or base_url, name),
        name=name,
        price=price if price and price > 0 else 0.0,
        category=_text(node.get("category")),
        description=_text(node.get("description")),
        url=url,
        image_url=image,
        tags=_tags(node.get("keywords")),
        domain=registered_domain(url or base_url),
    )


def merge_products(candidate: Product, found: Product) -> Product:
    """Overlay a page-confirmed record onto a listing candidate."""
    update: Dict[str, Any] = {
        k: v for k, v in found.model_dump().items()
        if v not in (None, "", [], 0)
    }
    update["verified"] = True
    return candidate.model_copy(update=update)
