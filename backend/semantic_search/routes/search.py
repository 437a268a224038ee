"""
Search API endpoint.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from semantic_search.dependencies import ServiceContainer, get_container
from semantic_search.models.search import SearchResponse, SearchResult
from semantic_search.services.store import StoreError
from semantic_search.utils.logger import get_logger

router = APIRouter(tags=["search"])
logger = get_logger(__name__)


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., description="Free-text query"),
    limit: Optional[int] = Query(default=None, ge=1, le=100, description="Maximum results"),
    container: ServiceContainer = Depends(get_container),
) -> SearchResponse:
    """
    Semantic search over indexed declarations.

    The first search against an empty index indexes PROJECT_ROOT first.
    """
    try:
        implicit = await container.ensure_indexed()
        hits = await container.retriever.search(q, limit)
    except StoreError as e:
        logger.error("search_failed", query=q, error=str(e))
        raise HTTPException(status_code=503, detail=f"Search unavailable: {e}")

    return SearchResponse(
        query=q,
        results=[SearchResult.from_hit(hit) for hit in hits],
        implicit_index=implicit,
    )
