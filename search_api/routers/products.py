import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from product_search.pipeline import ResolutionPipeline
from product_search.schema import SearchQuery, clamp_limit

from ..models import SearchResponse
from ..pipeline_client import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/products/search", response_model=SearchResponse)
async def search_products(
    q: str = Query(default=""),
    category: Optional[str] = Query(default=None),
    max_price: Optional[float] = Query(default=None, ge=0),
    limit: Optional[int] = Query(default=None),
    pipeline: ResolutionPipeline = Depends(get_pipeline),
):
    """
    Live store search with fallback to the local catalog.
    """
    query = SearchQuery(
        term=q.strip(),
        category=category or None,
        max_price=max_price,
        limit=clamp_limit(limit),
    )
    try:
        result = await pipeline.resolve(query)
    except Exception as exc:
        logger.exception("Search failed for %r", q)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Search failed",
        ) from exc

    logger.info(
        "[search endpoint] q=%r category=%r max_price=%r limit=%d source=%s cached=%s count=%d",
        q, category, max_price, query.limit, result.source, result.cached, len(result.items),
    )
    return SearchResponse(**result.model_dump(), site=pipeline.site, query=q)
