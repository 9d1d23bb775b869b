from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

MIN_LIMIT = 1
MAX_LIMIT = 20
DEFAULT_LIMIT = 3


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""                 # domain + slug of the name, see normalizer.make_id
    name: str = Field(min_length=1)
    price: float = Field(default=0.0, ge=0)   # 0 means unknown
    category: str = ""
    description: str = ""
    url: str = ""                # absolute
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    domain: str = ""             # e.g., "melaleuca.com"
    rating: Optional[float] = None
    source: str = "scrape"       # or "layout", "catalog"
    verified: bool = False


class SearchQuery(BaseModel):
    term: str = ""
    category: Optional[str] = None
    max_price: Optional[float] = Field(default=None, ge=0)
    limit: int = Field(default=DEFAULT_LIMIT, ge=MIN_LIMIT, le=MAX_LIMIT)


class SearchResult(BaseModel):
    items: List[Product]
    source: str                  # "web" or "local"
    stage: str                   # pipeline stage that produced the items
    url: str = ""
    cached: bool = False


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(MIN_LIMIT, min(MAX_LIMIT, int(limit)))
