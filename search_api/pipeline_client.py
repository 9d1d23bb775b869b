from functools import lru_cache

from product_search.config import get_settings
from product_search.pipeline import ResolutionPipeline


@lru_cache()
def get_pipeline() -> ResolutionPipeline:
    # one pipeline per process so result and sitemap caches are shared across requests
    return ResolutionPipeline.from_settings(get_settings())
