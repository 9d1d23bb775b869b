from typing import Iterable, List

from .schema import Product
from .url_classifier import is_likely_product_detail_url


def prioritize_products(items: Iterable[Product]) -> List[Product]:
    """
    Detail-looking URLs first, then a known price, then longer names.
    Stable for anything those three don't separate.
    """
    return sorted(
        items,
        key=lambda p: (
            not is_likely_product_detail_url(p.url),
            not p.price > 0,
            -len(p.name),
        ),
    )


def dedupe_products(items: Iterable[Product]) -> List[Product]:
    seen = set()
    out: List[Product] = []
    for p in items:
        key = (p.url or p.name).lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out
