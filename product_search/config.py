import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_SEARCH_URL = "https://www.melaleuca.com/search?q={q}"
DEFAULT_ALT_SEARCH_URL = "https://www.melaleuca.com/Search?searchTerm={q}"
DEFAULT_EXTERNAL_SEARCH_URL = "https://www.bing.com/search?q={q}"


class PipelineConfig(BaseModel):
    """Resolution pipeline knobs, in seconds."""

    search_url: str = DEFAULT_SEARCH_URL
    alt_search_url: str = DEFAULT_ALT_SEARCH_URL
    external_search_url: str = DEFAULT_EXTERNAL_SEARCH_URL
    sitemap_url: Optional[str] = None        # None: derived from search_url
    cache_ttl: float = 15 * 60
    sitemap_cache_ttl: float = 6 * 60 * 60
    max_time: float = 12.0
    fetch_timeout: float = 6.0
    concurrency: int = 3
    enabled: bool = True


class Settings(BaseModel):
    search_url: str = Field(default=DEFAULT_SEARCH_URL, alias="SCRAPE_SEARCH_URL")
    alt_search_url: str = Field(default=DEFAULT_ALT_SEARCH_URL, alias="SCRAPE_ALT_SEARCH_URL")
    external_search_url: str = Field(default=DEFAULT_EXTERNAL_SEARCH_URL, alias="SCRAPE_EXTERNAL_SEARCH_URL")
    sitemap_url: Optional[str] = Field(default=None, alias="SCRAPE_SITEMAP_URL")
    cache_ttl_ms: int = Field(default=15 * 60 * 1000, ge=0, alias="SCRAPE_CACHE_TTL_MS")
    sitemap_cache_ttl_ms: int = Field(default=6 * 60 * 60 * 1000, ge=0, alias="SITEMAP_CACHE_TTL_MS")
    max_time_ms: int = Field(default=12000, ge=0, alias="SCRAPE_MAX_TIME_MS")
    http_timeout_ms: int = Field(default=6000, gt=0, alias="SCRAPE_HTTP_TIMEOUT_MS")
    concurrency: int = Field(default=3, ge=1, alias="SCRAPE_CONCURRENCY")
    disabled: bool = Field(default=False, alias="SCRAPE_DISABLED")
    catalog_path: Path = Field(default=ROOT / "data" / "products.json", alias="CATALOG_PATH")
    env: str = Field(default="local", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            search_url=self.search_url,
            alt_search_url=self.alt_search_url,
            external_search_url=self.external_search_url,
            sitemap_url=self.sitemap_url,
            cache_ttl=self.cache_ttl_ms / 1000,
            sitemap_cache_ttl=self.sitemap_cache_ttl_ms / 1000,
            max_time=self.max_time_ms / 1000,
            fetch_timeout=self.http_timeout_ms / 1000,
            concurrency=self.concurrency,
            enabled=not self.disabled,
        )


def _load_dotenv():
    # Load from repo root if present, otherwise rely on environment variables.
    root_env = ROOT / ".env"
    if root_env.exists():
        load_dotenv(root_env)
    else:
        load_dotenv()


@lru_cache()
def get_settings() -> Settings:
    _load_dotenv()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        invalid = [str(e["loc"][0]) for e in exc.errors()]
        detail = f"Invalid environment variables: {', '.join(invalid)}"
        raise RuntimeError(detail) from exc
