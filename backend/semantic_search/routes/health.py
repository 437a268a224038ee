"""
Health check endpoint.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from semantic_search.dependencies import ServiceContainer, get_container
from semantic_search.models.chunk import IndexReport
from semantic_search.services.store import StoreError

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    version: str
    embedding_provider: str
    chunk_count: Optional[int] = None
    indexing: bool = False
    last_index: Optional[IndexReport] = None


@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    """
    Health check endpoint.

    Reports "degraded" when the store cannot be counted.
    """
    status = "ok"
    try:
        chunk_count = await asyncio.to_thread(container.store.count)
    except StoreError:
        status = "degraded"
        chunk_count = None

    return HealthResponse(
        status=status,
        version=container.settings.app_version,
        embedding_provider=container.settings.embedding_provider,
        chunk_count=chunk_count,
        indexing=container.is_indexing,
        last_index=container.last_report,
    )
