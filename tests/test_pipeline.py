import asyncio

import pytest

from conftest import FakeFetcher
from pages import item_list_page, page, product_node, product_page, sitemap_index, urlset
from product_search.catalog import score_product
from product_search.discovery import external_search_url, fill_template
from product_search.fetcher import FetchTimeout
from product_search.pipeline import (
    MAX_VERIFY_FETCH,
    AlternateFetch,
    PipelineBudget,
    PrimaryFetch,
    Resolution,
    ResolutionPipeline,
)
from product_search.schema import Product, SearchQuery

SHOP = "https://www.example.com"
CITRUS = SHOP + "/productstore/hand-soap/citrus-soap-12oz"
LEMON = SHOP + "/productstore/hand-soap/lemon-soap-8oz"
LOTION = SHOP + "/productstore/skin-care-shop/renew-lotion-16oz"


def primary(config, term):
    return fill_template(config.search_url, term)


def alternate(config, term):
    return fill_template(config.alt_search_url, term)


def resolve(pipeline, **query):
    return asyncio.run(pipeline.resolve(SearchQuery(**query)))


def soap_listing():
    return item_list_page(
        product_node("Citrus Soap", url="/productstore/hand-soap/citrus-soap-12oz"),
        product_node("Lemon Soap", url="/productstore/hand-soap/lemon-soap-8oz"),
    )


def test_budget_tracks_elapsed_time(clock):
    budget = PipelineBudget(5, clock)
    clock.advance(2)
    assert budget.remaining() == 3
    assert not budget.exhausted()
    clock.advance(3)
    assert budget.exhausted()
    assert PipelineBudget(0, clock).exhausted()


def test_zero_budget_goes_local_without_network(make_pipeline, fetcher):
    result = resolve(make_pipeline(max_time=0), term="citrus soap")
    assert fetcher.calls == []
    assert result.source == "local"
    assert result.stage == "local"
    assert result.items[0].name == "Citrus Hand Soap"


def test_disabled_remote_discovery_goes_local(make_pipeline, fetcher):
    result = resolve(make_pipeline(enabled=False), term="detergent")
    assert fetcher.calls == []
    assert result.source == "local"


def test_primary_results_are_verified_ranked_and_cached(make_pipeline, fetcher, config):
    term = "citrus soap"
    fetcher.pages.update({
        primary(config, term): soap_listing(),
        CITRUS: product_page("Citrus Soap", price="$6.99", description="Bright citrus bar"),
        LEMON: product_page("Lemon Soap", price=None),
    })
    pipeline = make_pipeline()

    result = resolve(pipeline, term=term)
    assert result.source == "web"
    assert result.stage == "primary"
    assert result.url == primary(config, term)
    assert result.cached is False
    assert [(p.name, p.price) for p in result.items] == [("Citrus Soap", 6.99), ("Lemon Soap", 0)]
    assert all(p.verified for p in result.items)
    assert result.items[0].description == "Bright citrus bar"
    # primary already had detail candidates, so the alternate endpoint is never tried
    assert alternate(config, term) not in fetcher.calls

    calls = len(fetcher.calls)
    again = resolve(pipeline, term=term)
    assert again.cached is True
    assert again.stage == "primary"
    assert again.items == result.items
    assert len(fetcher.calls) == calls


def test_cache_expires_after_ttl(make_pipeline, fetcher, config, clock):
    term = "citrus soap"
    fetcher.pages.update({primary(config, term): soap_listing(), CITRUS: product_page("Citrus Soap")})
    pipeline = make_pipeline()

    resolve(pipeline, term=term)
    clock.advance(config.cache_ttl)
    result = resolve(pipeline, term=term)
    assert result.cached is False
    assert fetcher.calls.count(primary(config, term)) == 2


def test_empty_remote_result_is_not_cached(make_pipeline, fetcher, config):
    pipeline = make_pipeline()
    first = resolve(pipeline, term="citrus soap")
    assert first.source == "local"
    tried = fetcher.calls.count(primary(config, "citrus soap"))
    assert tried == 1

    second = resolve(pipeline, term="citrus soap")
    assert second.source == "local"
    assert second.cached is True
    assert fetcher.calls.count(primary(config, "citrus soap")) == 2


def test_alternate_endpoint_replaces_empty_primary(make_pipeline, fetcher, config):
    term = "lemon"
    fetcher.pages.update({
        primary(config, term): page(body="<p>No results</p>"),
        alternate(config, term): soap_listing(),
        LEMON: product_page("Lemon Soap", price="5.99"),
        CITRUS: page(body="<h1>gone</h1>"),
    })
    result = resolve(make_pipeline(), term=term)
    assert result.stage == "alternate"
    assert result.url == alternate(config, term)
    assert [p.name for p in result.items] == ["Lemon Soap"]


def test_external_search_fallback(make_pipeline, fetcher, config):
    term = "citrus soap"
    engine = external_search_url(config.external_search_url, "example.com", term)
    fetcher.pages.update({
        engine: page(body=(
            f'<ol><li><h2><a href="{CITRUS}">Citrus Soap</a></h2></li>'
            f'<li><h2><a href="https://elsewhere.com/productstore/hand-soap/citrus-soap-12oz">x</a></h2></li>'
            f'<li><h2><a href="{SHOP}/productstore/hand-soap">Hand soap</a></h2></li></ol>'
        )),
        CITRUS: product_page("Citrus Soap", price="$6.99"),
    })
    result = resolve(make_pipeline(), term=term)

    assert "site%3Aexample.com%2Fproductstore%20citrus%20soap" in engine
    assert result.stage == "external_search"
    assert result.url == engine
    assert [p.url for p in result.items] == [CITRUS]
    assert "https://elsewhere.com/productstore/hand-soap/citrus-soap-12oz" not in fetcher.calls


def test_sitemap_fallback_and_shared_sitemap_index(make_pipeline, fetcher, config):
    child = SHOP + "/sitemap-products-1.xml"
    fetcher.pages.update({
        config.sitemap_url: sitemap_index(SHOP + "/sitemap-pages.xml", child),
        child: urlset(CITRUS, LEMON, LOTION, SHOP + "/about-us"),
        CITRUS: product_page("Citrus Soap", price="$6.99"),
        LOTION: product_page("Renew Lotion", price="$16.99"),
    })
    pipeline = make_pipeline()

    result = resolve(pipeline, term="citrus bar soap")
    assert result.stage == "sitemap"
    assert result.url == config.sitemap_url
    # lemon matches on "soap" only and its detail page is missing
    assert [p.name for p in result.items] == ["Citrus Soap"]
    assert SHOP + "/sitemap-pages.xml" not in fetcher.calls

    lotion = resolve(pipeline, term="renew lotion")
    assert [p.name for p in lotion.items] == ["Renew Lotion"]
    assert fetcher.calls.count(config.sitemap_url) == 1
    assert fetcher.calls.count(child) == 1


def test_each_candidate_is_hydrated_once(make_pipeline, fetcher, config):
    term = "citrus soap"
    engine = external_search_url(config.external_search_url, "example.com", term)
    fetcher.pages.update({
        primary(config, term): item_list_page(product_node("Citrus Soap", url=CITRUS)),
        CITRUS: page(body="<h1>Citrus Soap</h1>"),
        engine: page(body=f'<a href="{CITRUS}">Citrus Soap</a>'),
    })
    result = resolve(make_pipeline(), term=term)
    assert result.source == "local"
    assert fetcher.calls.count(CITRUS) == 1


def test_filters_and_limit_apply_to_remote_results(make_pipeline, fetcher, config):
    term = "soap"
    urls = [SHOP + f"/productstore/hand-soap/soap-{i}" for i in range(4)]
    fetcher.pages[primary(config, term)] = item_list_page(*[
        product_node(f"Soap {i}", url=u) for i, u in enumerate(urls)
    ])
    for i, u in enumerate(urls):
        fetcher.pages[u] = product_page(f"Soap {i}", price=str(4 + i), category="Hand Soap")

    result = resolve(make_pipeline(), term=term, category="hand", max_price=6, limit=2)
    assert [(p.name, p.price) for p in result.items] == [("Soap 0", 4.0), ("Soap 1", 5.0)]

    none_match = resolve(make_pipeline(), term=term, category="lotion")
    assert none_match.source == "local"


def test_budget_running_out_mid_run_returns_local(config, catalog, clock):
    term = "citrus soap"
    fetcher = FakeFetcher({primary(config, term): soap_listing()}, clock=clock, cost=5)
    pipeline = ResolutionPipeline(config.model_copy(update={"max_time": 4}), catalog, fetcher=fetcher, clock=clock)
    result = resolve(pipeline, term=term)
    assert fetcher.calls == [primary(config, term)]
    assert result.source == "local"


def test_fetch_timeout_is_clamped_to_remaining_budget(config, catalog, clock):
    term = "citrus soap"
    fetcher = FakeFetcher({primary(config, term): FetchTimeout(primary(config, term), "Timeout")}, clock=clock)
    pipeline = ResolutionPipeline(config.model_copy(update={"max_time": 1.5}), catalog, fetcher=fetcher, clock=clock)
    resolve(pipeline, term=term)
    assert fetcher.timeouts[0] == 1.5
    assert max(fetcher.timeouts) <= config.fetch_timeout


def test_stage_without_query_placeholder_is_disabled(make_pipeline):
    pipeline = make_pipeline(search_url="https://www.example.com/search", alt_search_url="", sitemap_url="")
    assert [s.name for s in pipeline.stages] == ["verify", "external_search"]
    assert pipeline.site == "example.com"


def test_default_sitemap_url_follows_search_host(make_pipeline):
    assert make_pipeline(sitemap_url=None).sitemap_url == "https://www.example.com/sitemap.xml"


@pytest.mark.parametrize("limit", [1, 3])
def test_unparseable_primary_falls_back_to_catalog(make_pipeline, fetcher, config, limit):
    term = "fragrance-free detergent sensitive skin"
    fetcher.pages[primary(config, term)] = "<html><body><p>Loading...</p></body></html>"
    result = resolve(make_pipeline(), term=term, max_price=25, limit=limit)

    assert result.source == "local"
    assert 0 < len(result.items) <= limit
    query = SearchQuery(term=term, max_price=25, limit=limit)
    scores = [score_product(p, query) for p in result.items]
    assert scores == sorted(scores, reverse=True)
    for p in result.items:
        assert p.price <= 25
        assert {"fragrance-free", "sensitive"} & set(p.tags)


def run_stages(pipeline, run, *stages):
    async def _go():
        for stage in stages:
            await stage.attempt(pipeline, run)
    asyncio.run(_go())


def soap_candidates(n):
    urls = [SHOP + f"/productstore/hand-soap/soap-{i}" for i in range(n)]
    return urls, [Product(name=f"Soap {i}", url=u) for i, u in enumerate(urls)]


def test_alternate_without_detail_links_keeps_primary_candidates(make_pipeline, fetcher, config, clock):
    term = "soap bundle"
    fetcher.pages.update({
        primary(config, term): item_list_page(product_node("Soap Bundle", price="9.99", url="/productstore/hand-soap")),
        alternate(config, term): item_list_page(product_node("Lemon Bundle", price="4.99", url="/productstore/shop-all")),
    })
    pipeline = make_pipeline()
    run = Resolution(SearchQuery(term=term), PipelineBudget(10, clock))

    run_stages(pipeline, run, PrimaryFetch(), AlternateFetch())

    assert alternate(config, term) in fetcher.calls
    assert [p.name for p in run.candidates] == ["Soap Bundle"]
    assert run.candidate_stage == "primary"
    assert run.source_url == primary(config, term)


def test_verify_fetches_at_most_the_cap(make_pipeline, fetcher, clock):
    urls, candidates = soap_candidates(MAX_VERIFY_FETCH + 2)
    for u in urls:
        fetcher.pages[u] = page(body="<h1>Soap</h1>")
    pipeline = make_pipeline()
    run = Resolution(SearchQuery(term="soap"), PipelineBudget(10, clock))

    verified = asyncio.run(pipeline.verify(run, candidates, run.target, MAX_VERIFY_FETCH))

    assert verified == []
    assert sorted(fetcher.calls) == urls[:MAX_VERIFY_FETCH]


def test_verify_stops_after_the_wave_that_reaches_target(make_pipeline, fetcher, clock):
    urls, candidates = soap_candidates(8)
    for i, u in enumerate(urls):
        fetcher.pages[u] = product_page(f"Soap {i}", price="4.99")
    pipeline = make_pipeline()
    run = Resolution(SearchQuery(term="soap"), PipelineBudget(10, clock))

    verified = asyncio.run(pipeline.verify(run, candidates, run.target, MAX_VERIFY_FETCH))

    # concurrency 2: waves [0, 1] and [2, 3], then the target of 3 is met
    assert [p.name for p in verified] == ["Soap 0", "Soap 1", "Soap 2"]
    assert all(p.verified for p in verified)
    assert sorted(fetcher.calls) == urls[:4]


def test_failed_child_sitemaps_are_retried_on_next_query(make_pipeline, fetcher, config, clock):
    child = SHOP + "/sitemap-products-1.xml"
    fetcher.pages.update({
        config.sitemap_url: sitemap_index(child),
        child: FetchTimeout(child, "Timeout"),
        CITRUS: product_page("Citrus Soap", price="$6.99"),
    })
    pipeline = make_pipeline()

    first = resolve(pipeline, term="citrus soap")
    assert first.source == "local"
    assert pipeline.sitemap_index.get() is None

    fetcher.pages[child] = urlset(CITRUS)
    clock.advance(60)
    second = resolve(pipeline, term="citrus soap")
    assert second.stage == "sitemap"
    assert [p.name for p in second.items] == ["Citrus Soap"]
    assert fetcher.calls.count(child) == 2
    assert pipeline.sitemap_index.get() == (CITRUS,)
