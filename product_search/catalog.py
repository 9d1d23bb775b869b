import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

import orjson
from pydantic import ValidationError

from .discovery import query_tokens
from .schema import Product, SearchQuery

logger = logging.getLogger(__name__)


def _load_products(path: Path) -> List[Product]:
    """
    Products of a catalog document ({"products": [...]}). A missing or
    malformed document reads as an empty catalog; bad records are skipped.
    """
    try:
        doc = orjson.loads(path.read_bytes() or b"{}")
    except FileNotFoundError:
        logger.warning("[catalog] %s not found, catalog is empty", path)
        return []
    except (OSError, orjson.JSONDecodeError) as exc:
        logger.warning("[catalog] could not read %s: %s", path, exc)
        return []

    records = doc.get("products") if isinstance(doc, dict) else None
    if not isinstance(records, list):
        logger.warning("[catalog] %s has no product list", path)
        return []

    products: List[Product] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        record = dict(record)
        if "image" in record:
            record.setdefault("image_url", record.pop("image"))
        record["source"] = "catalog"
        try:
            products.append(Product.model_validate(record))
        except ValidationError as exc:
            logger.debug("[catalog] skipping record %r: %s", record.get("name"), exc)
    logger.info("[catalog] loaded %d products from %s", len(products), path)
    return products


def score_product(p: Product, query: SearchQuery) -> float:
    score = 0.0
    hay = " ".join([p.name, p.description, *p.tags]).lower()
    phrase = (query.term or "").strip().lower()
    if phrase:
        score += 2 * sum(1 for tok in query_tokens(phrase) if tok in hay)
        if phrase in hay:
            score += 3
    if query.category and p.category.lower() == query.category.lower():
        score += 2
    if query.max_price is not None and p.price <= query.max_price:
        score += 1
    if p.rating is not None:
        score += p.rating * 0.2
    return score


class LocalCatalog:
    """Read-only keyword matcher over the on-disk fallback catalog."""

    def __init__(self, path: Union[str, Path], products: Optional[List[Product]] = None):
        self.path = Path(path)
        self._products = products
        self._lock = threading.Lock()

    @property
    def products(self) -> List[Product]:
        with self._lock:
            if self._products is None:
                self._products = _load_products(self.path)
            return self._products

    def search(self, query: SearchQuery) -> List[Product]:
        items = self.products
        if query.max_price is not None:
            items = [p for p in items if p.price <= query.max_price]
        if query.category:
            want = query.category.lower()
            items = [p for p in items if p.category.lower() == want]

        ranked = sorted(items, key=lambda p: -score_product(p, query))
        return ranked[:query.limit]
