"""
Query resolution pipeline.

One query runs an ordered list of stages against a shared wall-clock
budget. Each stage is a typed attempt that updates the run and says whether
the loop should go on:

    primary -> alternate -> verify -> external_search -> sitemap

The first stage to confirm detail-page products ends the loop. Whatever
the stages leave behind is filtered, ranked and cached; when nothing
survives (or remote discovery is off, or the budget is gone) the local
catalog answers instead.
"""

import asyncio
import logging
import time
from typing import Callable, List, NamedTuple, Optional, Sequence, Set, Tuple

from .cache import ResultCache, SitemapIndex, query_signature
from .catalog import LocalCatalog
from .config import PipelineConfig, Settings
from .discovery import (
    default_sitemap_url,
    external_search_url,
    fill_template,
    find_detail_links,
    parse_sitemap,
    product_sitemaps,
    product_store_urls,
    score_sitemap_urls,
)
from .fetcher import Fetcher, FetchError, FetchTimeout
from .normalizer import make_id, merge_products, registered_domain
from .parser_generic import extract_detail_product, parse_products
from .ranker import dedupe_products, prioritize_products
from .schema import Product, SearchQuery, SearchResult
from .url_classifier import is_likely_product_detail_url

logger = logging.getLogger(__name__)

REMOTE = "remote"
LOCAL = "local"

# absolute cap on detail pages fetched by one verification pass
MAX_VERIFY_FETCH = 6


class PipelineBudget:
    """Shared deadline for one query. Running out ends the run early, never fails it."""

    def __init__(self, max_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_seconds = max_seconds
        self._clock = clock
        self.started = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def remaining(self) -> float:
        return max(0.0, self.max_seconds - self.elapsed())

    def exhausted(self) -> bool:
        return self.elapsed() >= self.max_seconds


class Resolution:
    """State of one query run as it moves through the stages."""

    def __init__(self, query: SearchQuery, budget: PipelineBudget):
        self.query = query
        self.budget = budget
        self.candidates: List[Product] = []
        self.candidate_stage = ""
        self.products: List[Product] = []
        self.source_url = ""
        self.stage = ""
        self.hydrated: Set[str] = set()

    @property
    def target(self) -> int:
        return max(3, self.query.limit)

    def settle(self, products: List[Product], stage: str, source_url: str):
        self.products = products
        self.stage = stage
        self.source_url = source_url


class StageOutcome(NamedTuple):
    candidates: List[Product]
    should_continue: bool


def _stub(url: str) -> Product:
    return Product(id=make_id(url), name=url, url=url, domain=registered_domain(url))


# ====================================================================
# Stages
# ====================================================================

class Stage:
    name = "stage"

    def enabled(self, pipeline: "ResolutionPipeline") -> bool:
        return True

    async def attempt(self, pipeline: "ResolutionPipeline", run: Resolution) -> StageOutcome:
        raise NotImplementedError


class PrimaryFetch(Stage):
    name = "primary"

    def enabled(self, pipeline):
        return "{q}" in pipeline.config.search_url

    async def attempt(self, pipeline, run):
        url = fill_template(pipeline.config.search_url, run.query.term)
        html = await pipeline.fetch(url, run.budget)
        items = parse_products(html, url) if html else []
        logger.info("[pipeline] primary url=%s html_len=%d items=%d", url, len(html or ""), len(items))
        run.candidates, run.candidate_stage, run.source_url = items, self.name, url
        return StageOutcome(items, True)


class AlternateFetch(Stage):
    name = "alternate"

    def enabled(self, pipeline):
        return "{q}" in pipeline.config.alt_search_url

    async def attempt(self, pipeline, run):
        if any(is_likely_product_detail_url(p.url) for p in run.candidates):
            return StageOutcome([], True)
        url = fill_template(pipeline.config.alt_search_url, run.query.term)
        html = await pipeline.fetch(url, run.budget)
        items = parse_products(html, url) if html else []
        if any(is_likely_product_detail_url(p.url) for p in items):
            logger.info("[pipeline] alternate url used=%s items=%d", url, len(items))
            run.candidates, run.candidate_stage, run.source_url = items, self.name, url
        return StageOutcome(items, True)


class VerifyCandidates(Stage):
    name = "verify"

    async def attempt(self, pipeline, run):
        verified = await pipeline.verify(run, run.candidates, run.target, MAX_VERIFY_FETCH)
        if verified:
            logger.info("[pipeline] verified detail pages: %d", len(verified))
            run.settle(verified, run.candidate_stage, run.source_url)
        return StageOutcome(verified, not verified)


class ExternalSearchFallback(Stage):
    name = "external_search"

    def enabled(self, pipeline):
        return "{q}" in pipeline.config.external_search_url and bool(pipeline.site)

    async def attempt(self, pipeline, run):
        url = external_search_url(pipeline.config.external_search_url, pipeline.site, run.query.term)
        html = await pipeline.fetch(url, run.budget)
        links = find_detail_links(html, pipeline.site, url)[:run.target] if html else []
        verified = await pipeline.verify(run, [_stub(u) for u in links], run.target, MAX_VERIFY_FETCH)
        if verified:
            logger.info("[pipeline] external search fallback used: %d", len(verified))
            run.settle(prioritize_products(verified), self.name, url)
        return StageOutcome(verified, not verified)


class SitemapFallback(Stage):
    name = "sitemap"

    def enabled(self, pipeline):
        return bool(pipeline.sitemap_url)

    async def attempt(self, pipeline, run):
        urls = await pipeline.sitemap_urls(run.budget)
        limit = run.query.limit
        picked = score_sitemap_urls(list(urls), run.query.term, keep=max(3, limit * 3))
        verified = await pipeline.verify(run, [_stub(u) for u in picked], run.target, max(6, limit * 2))
        if verified:
            logger.info("[pipeline] sitemap fallback used: %d", len(verified))
            run.settle(prioritize_products(verified), self.name, pipeline.sitemap_url)
        return StageOutcome(verified, not verified)


DEFAULT_STAGES: Tuple[Stage, ...] = (
    PrimaryFetch(),
    AlternateFetch(),
    VerifyCandidates(),
    ExternalSearchFallback(),
    SitemapFallback(),
)


# ====================================================================
# Orchestrator
# ====================================================================

class ResolutionPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        catalog: LocalCatalog,
        fetcher: Optional[Fetcher] = None,
        results: Optional[ResultCache] = None,
        sitemap_index: Optional[SitemapIndex] = None,
        clock: Callable[[], float] = time.monotonic,
        stages: Sequence[Stage] = DEFAULT_STAGES,
    ):
        self.config = config
        self.catalog = catalog
        self.fetcher = fetcher or Fetcher()
        self.clock = clock
        self.results = results or ResultCache(config.cache_ttl, clock)
        self.sitemap_index = sitemap_index or SitemapIndex(config.sitemap_cache_ttl, clock)
        self.site = registered_domain(config.search_url)
        if config.sitemap_url is None:
            self.sitemap_url = default_sitemap_url(config.search_url)
        else:
            self.sitemap_url = config.sitemap_url

        self.stages = [s for s in stages if s.enabled(self)]
        for stage in stages:
            if stage not in self.stages:
                logger.warning("[pipeline] stage %s disabled by configuration", stage.name)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ResolutionPipeline":
        return cls(settings.pipeline_config(), LocalCatalog(settings.catalog_path), **kwargs)

    async def resolve(self, query: SearchQuery) -> SearchResult:
        if not self.config.enabled:
            logger.info("[pipeline] remote discovery disabled")
            return self.search_local(query)

        key = query_signature(REMOTE, query)
        entry = self.results.get(key)
        if entry is not None:
            return SearchResult(items=list(entry.items), source="web", stage=entry.stage,
                                url=entry.source_url, cached=True)

        run = Resolution(query, PipelineBudget(self.config.max_time, self.clock))
        for stage in self.stages:
            if run.budget.exhausted():
                logger.info("[pipeline] time budget exceeded before %s", stage.name)
                break
            outcome = await stage.attempt(self, run)
            if not outcome.should_continue:
                break

        items = self._finish(run)
        if not items:
            return self.search_local(query)

        self.results.put(key, items, run.source_url, run.stage)
        logger.info("[pipeline] stage=%s url=%s final items=%d", run.stage, run.source_url, len(items))
        return SearchResult(items=items, source="web", stage=run.stage, url=run.source_url)

    def _finish(self, run: Resolution) -> List[Product]:
        query = run.query
        items = [p for p in run.products if is_likely_product_detail_url(p.url)]
        if len(items) != len(run.products):
            logger.info("[pipeline] final filter removed %d non-detail entries", len(run.products) - len(items))
        if query.category:
            want = query.category.lower()
            items = [p for p in items if want in p.category.lower() or want in p.name.lower()]
        if query.max_price is not None:
            items = [p for p in items if p.price <= query.max_price]
        return prioritize_products(dedupe_products(items))[:query.limit]

    def search_local(self, query: SearchQuery) -> SearchResult:
        key = query_signature(LOCAL, query)
        entry = self.results.get(key)
        if entry is not None:
            return SearchResult(items=list(entry.items), source="local", stage=LOCAL, cached=True)
        items = self.catalog.search(query)
        self.results.put(key, items, stage=LOCAL)
        return SearchResult(items=items, source="local", stage=LOCAL)

    # ----------------------------------------------------------------
    # Network helpers shared by the stages
    # ----------------------------------------------------------------

    async def fetch(self, url: str, budget: PipelineBudget) -> Optional[str]:
        """Body of url, or None when it failed or the budget has run out."""
        remaining = budget.remaining()
        if remaining <= 0:
            return None
        timeout = min(self.config.fetch_timeout, remaining)
        try:
            return await asyncio.to_thread(self.fetcher.fetch, url, timeout)
        except FetchTimeout as exc:
            logger.info("[fetch] %s", exc)
        except FetchError as exc:
            logger.warning("[fetch] %s", exc)
        return None

    async def verify(self, run: Resolution, candidates: List[Product], target: int, max_fetch: int) -> List[Product]:
        """
        Fetch detail pages of detail-looking candidates and keep those whose
        structured data confirms a product. Pages go out in waves of
        config.concurrency; a URL is fetched at most once per run.
        """
        queue: List[Product] = []
        seen: Set[str] = set()
        for p in candidates:
            if not p.url or p.url in seen:
                continue
            seen.add(p.url)
            if p.url in run.hydrated or not is_likely_product_detail_url(p.url):
                continue
            queue.append(p)
            if len(queue) >= max_fetch:
                break

        verified: List[Product] = []
        step = max(1, self.config.concurrency)
        for start in range(0, len(queue), step):
            if len(verified) >= target or run.budget.exhausted():
                break
            wave = queue[start:start + step]
            results = await asyncio.gather(*(self._hydrate(run, p) for p in wave))
            verified.extend(p for p in results if p is not None)
        return verified[:target]

    async def _hydrate(self, run: Resolution, candidate: Product) -> Optional[Product]:
        run.hydrated.add(candidate.url)
        html = await self.fetch(candidate.url, run.budget)
        if not html:
            return None
        found = extract_detail_product(html, candidate.url)
        if found is None:
            return None
        return merge_products(candidate, found)

    async def sitemap_urls(self, budget: PipelineBudget) -> Tuple[str, ...]:
        cached = self.sitemap_index.get()
        if cached is not None:
            return cached

        xml = await self.fetch(self.sitemap_url, budget)
        if xml is None:
            return ()
        is_index, locs = parse_sitemap(xml)
        if is_index:
            children = product_sitemaps(locs)
            pages = await asyncio.gather(*(self.fetch(u, budget) for u in children))
            locs = [loc for page in pages if page for loc in parse_sitemap(page)[1]]

        urls = tuple(product_store_urls(locs))
        if not urls:
            # failed child fetches leave the slot empty so the next query retries
            logger.info("[pipeline] sitemap yielded no product urls, not cached")
            return urls
        self.sitemap_index.replace(urls, source_url=self.sitemap_url)
        logger.info("[pipeline] sitemap refreshed: %d product urls", len(urls))
        return urls
