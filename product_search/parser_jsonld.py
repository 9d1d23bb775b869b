import json
import logging
from typing import Any, Iterator, List

from bs4 import BeautifulSoup

from .normalizer import as_list, normalize_product_node
from .schema import Product

logger = logging.getLogger(__name__)


def iter_json_ld_blocks(soup: BeautifulSoup) -> Iterator[Any]:
    """Parsed JSON-LD payloads; a malformed block is skipped on its own."""
    for tag in soup.find_all("script", type=lambda t: t and "ld+json" in t.lower()):
        text = (tag.string or tag.get_text() or "").strip()
        if not text:
            continue
        try:
            yield json.loads(text)
        except json.JSONDecodeError as exc:
            logger.debug("[jsonld] skipping malformed block: %s", exc)


def iter_product_nodes(data: Any) -> Iterator[Any]:
    """
    Flatten @graph, ItemList and ListItem wrappers down to candidate nodes.
    """
    if isinstance(data, list):
        for node in data:
            yield from iter_product_nodes(node)
        return
    if not isinstance(data, dict):
        return
    if "@graph" in data:
        yield from iter_product_nodes(data["@graph"])
        return

    types = [str(t) for t in as_list(data.get("@type"))]
    elements = data.get("itemListElement")
    if "ItemList" in types and isinstance(elements, list):
        for el in elements:
            if isinstance(el, dict):
                yield from iter_product_nodes(el.get("item") or el)
        return
    if "ListItem" in types and isinstance(data.get("item"), dict):
        yield from iter_product_nodes(data["item"])
        return
    yield data


def extract_structured_products(soup: BeautifulSoup, base_url: str, fallback_url: str = "") -> List[Product]:
    out: List[Product] = []
    for block in iter_json_ld_blocks(soup):
        for node in iter_product_nodes(block):
            prod = normalize_product_node(node, base_url, fallback_url=fallback_url)
            if prod:
                out.append(prod)
    return out
