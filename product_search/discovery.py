import re
from typing import List, Tuple
from urllib.parse import parse_qs, quote, urljoin, urlsplit

from bs4 import BeautifulSoup

from .url_classifier import PRODUCT_MARKER, is_likely_product_detail_url

# child sitemaps fetched out of a sitemap index
MAX_CHILD_SITEMAPS = 4


# ====================================================================
# Search URLs
# ====================================================================

def fill_template(template: str, term: str) -> str:
    return template.replace("{q}", quote(term or "", safe=""))


def external_search_url(template: str, site: str, term: str) -> str:
    query = f"site:{site}/{PRODUCT_MARKER} {term or ''}".strip()
    return fill_template(template, query)


def default_sitemap_url(search_url: str) -> str:
    parts = urlsplit(search_url)
    return f"{parts.scheme}://{parts.netloc}/sitemap.xml"


# ====================================================================
# Result page links
# ====================================================================

def _unwrap_redirect(url: str) -> str:
    # engines sometimes wrap results as /url?q=<target>
    parts = urlsplit(url)
    if parts.path == "/url":
        target = (parse_qs(parts.query).get("q") or [""])[0]
        if target.startswith("http"):
            return target
    return url


def _on_site(url: str, site: str) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    return host == site or host.endswith("." + site)


def find_detail_links(html: str, site: str, base_url: str) -> List[str]:
    """On-site, detail-looking links of a result page, in page order."""
    soup = BeautifulSoup(html, "lxml")
    found: List[str] = []
    for a in soup.find_all("a", href=True):
        try:
            url = _unwrap_redirect(urljoin(base_url, a["href"].strip()))
        except ValueError:
            continue
        url = url.split("#")[0]
        if not _on_site(url, site) or not is_likely_product_detail_url(url):
            continue
        if url not in found:
            found.append(url)
    return found


# ====================================================================
# Sitemaps
# ====================================================================

def parse_sitemap(xml: str) -> Tuple[bool, List[str]]:
    """(is_sitemap_index, <loc> values) of a sitemap document."""
    soup = BeautifulSoup(xml, "xml")
    is_index = soup.find("sitemapindex") is not None
    locs = [loc.get_text(strip=True) for loc in soup.find_all("loc")]
    return is_index, [loc for loc in locs if loc]


def product_sitemaps(locs: List[str]) -> List[str]:
    return [u for u in locs if "product" in u.lower()][:MAX_CHILD_SITEMAPS]


def product_store_urls(locs: List[str]) -> List[str]:
    marker = f"/{PRODUCT_MARKER}/"
    return list(dict.fromkeys(u for u in locs if marker in u.lower()))


def query_tokens(term: str) -> List[str]:
    return list(dict.fromkeys(t for t in re.split(r"[^a-z0-9]+", (term or "").lower()) if t))


def score_sitemap_urls(urls: List[str], term: str, keep: int) -> List[str]:
    """Detail URLs sharing at least one token with the query, best overlap first."""
    tokens = query_tokens(term)
    scored = []
    for u in urls:
        if not is_likely_product_detail_url(u):
            continue
        slug = u.lower()
        score = sum(1 for t in tokens if t in slug)
        if score > 0:
            scored.append((score, u))
    scored.sort(key=lambda x: -x[0])
    return [u for _, u in scored[:keep]]
