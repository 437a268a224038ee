"""
Retriever service - Semantic search over indexed chunks.
"""

import asyncio
from typing import List, Optional

from semantic_search.config import Settings
from semantic_search.models.chunk import SearchHit
from semantic_search.services.store import VectorStore
from semantic_search.utils.embeddings import EmbeddingService
from semantic_search.utils.logger import get_logger

logger = get_logger(__name__)


class Retriever:
    """
    Retrieves the chunks nearest to a free-text query.
    """

    def __init__(self, store: VectorStore, embedder: EmbeddingService, settings: Settings):
        self.store = store
        self.embedder = embedder
        self.default_k = settings.search_limit

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchHit]:
        """
        Retrieve top-k chunks, most similar first.

        A failed query embedding means "no results", not an error. Store
        errors propagate so each caller can decide how to present them.
        """
        k = limit or self.default_k
        if not query or not query.strip():
            return []

        logger.info("retrieving_chunks", query=query, k=k)

        query_embedding = await self.embedder.embed(query)
        if query_embedding is None:
            logger.warning("query_embedding_failed", query=query)
            return []

        hits = await asyncio.to_thread(self.store.search, query_embedding, k)
        logger.info("retrieved_chunks", count=len(hits))
        return hits
