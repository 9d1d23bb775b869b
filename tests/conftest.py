# conftest.py
# Put the repository root on sys.path so the top-level packages
# (product_search, search_api) import without an install.

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from product_search.catalog import LocalCatalog  # noqa: E402
from product_search.config import PipelineConfig  # noqa: E402
from product_search.fetcher import FetchHTTPStatus  # noqa: E402
from product_search.pipeline import ResolutionPipeline  # noqa: E402

CATALOG_PATH = ROOT / "data" / "products.json"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher:
    """Serves canned pages by URL; anything unknown is a 404."""

    def __init__(self, pages=None, clock=None, cost=0.0):
        self.pages = dict(pages or {})
        self.calls = []
        self.timeouts = []
        self.clock = clock
        self.cost = cost

    def fetch(self, url, timeout):
        self.calls.append(url)
        self.timeouts.append(timeout)
        if self.clock is not None and self.cost:
            self.clock.advance(self.cost)
        page = self.pages.get(url)
        if page is None:
            raise FetchHTTPStatus(url, 404)
        if isinstance(page, Exception):
            raise page
        return page


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher(clock):
    return FakeFetcher(clock=clock)


@pytest.fixture
def config():
    return PipelineConfig(
        search_url="https://www.example.com/search?q={q}",
        alt_search_url="https://www.example.com/Search?searchTerm={q}",
        external_search_url="https://search.example.org/results?q={q}",
        sitemap_url="https://www.example.com/sitemap.xml",
        cache_ttl=60,
        sitemap_cache_ttl=600,
        max_time=10,
        fetch_timeout=2,
        concurrency=2,
    )


@pytest.fixture
def catalog():
    return LocalCatalog(CATALOG_PATH)


@pytest.fixture
def make_pipeline(config, catalog, fetcher, clock):
    def _make(**overrides):
        cfg = config.model_copy(update=overrides)
        return ResolutionPipeline(cfg, catalog, fetcher=fetcher, clock=clock)
    return _make
