from product_search.schema import SearchResult


# --- GET /api/products/search ---
# Pipeline result plus the store it was resolved against and the echoed query.
class SearchResponse(SearchResult):
    site: str = ""
    query: str = ""
