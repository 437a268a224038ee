"""
Embedding Service - Handles text embeddings for vector search.

Providers:
1. OpenAI text-embedding-3-large (3072-d) for real indexes
2. Mock - deterministic hashed bag-of-tokens vectors for offline development and tests

A failed embedding is never raised to the caller: embed() returns None and the
caller decides whether to skip, retry later or give up.
"""

import asyncio
import hashlib
import zlib
from typing import List, Optional, Sequence

import backoff
import numpy as np
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)

from semantic_search.config import ConfigurationError, Settings
from semantic_search.models.chunk import normalize_text
from semantic_search.utils.logger import get_logger

logger = get_logger(__name__)

# Errors worth retrying in place; auth and bad-request errors are not.
TRANSIENT_OPENAI_ERRORS = (
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    InternalServerError,
)


def estimate_tokens(text: str, chars_per_token: int = 3) -> int:
    """Rough token estimation; code tokenizes denser than prose."""
    return len(text) // max(1, chars_per_token)


class EmbeddingService:
    """Generates fixed-width embeddings for chunk text and queries."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.provider = settings.embedding_provider
        self.dimension = settings.embedding_dimension
        self.model = settings.openai_embedding_model
        self.max_chars = settings.embedding_max_tokens * settings.embedding_chars_per_token
        self.concurrency = max(1, settings.embedding_concurrency)
        self.openai_client: Optional[AsyncOpenAI] = None

        if self.provider == "openai":
            if not settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is required for the openai embedding provider")
            self.openai_client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.embedding_timeout_seconds,
                max_retries=0,
            )
            self._request_with_retry = backoff.on_exception(
                backoff.expo,
                TRANSIENT_OPENAI_ERRORS,
                max_tries=max(1, settings.embedding_max_retries),
                logger=None,
            )(self._get_openai_embedding)
            logger.info(
                "embeddings_initialized",
                provider="OpenAI",
                model=self.model,
                dimension=self.dimension,
            )
        else:
            logger.warning(
                "embeddings_initialized",
                provider="mock",
                dimension=self.dimension,
                reason="Mock embedding provider configured",
            )

    def prepare(self, text: str) -> str:
        """Normalize whitespace and cut to the provider input limit."""
        cleaned = normalize_text(text)
        if len(cleaned) > self.max_chars:
            logger.warning(
                "embedding_input_truncated",
                chars=len(cleaned),
                max_chars=self.max_chars,
                estimated_tokens=estimate_tokens(cleaned, self.settings.embedding_chars_per_token),
            )
            cleaned = cleaned[: self.max_chars]
        return cleaned

    async def embed(self, text: str) -> Optional[List[float]]:
        """
        Embed one text.

        Returns:
            A vector of exactly `dimension` floats, or None on any failure.
        """
        prepared = self.prepare(text)
        if not prepared:
            return None

        try:
            if self.provider == "openai":
                vector = await self._request_with_retry(prepared)
            else:
                vector = await asyncio.to_thread(self._get_mock_embedding, prepared)
        except OpenAIError as e:
            error_detail = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.error("embedding_failed", provider=self.provider, error=error_detail)
            return None
        except (AttributeError, TypeError, ValueError) as e:
            # Response did not have the documented shape.
            logger.error("embedding_malformed", provider=self.provider, error=f"{type(e).__name__}: {e}")
            return None

        if vector is None or len(vector) != self.dimension:
            logger.error(
                "embedding_malformed",
                provider=self.provider,
                expected=self.dimension,
                got=None if vector is None else len(vector),
            )
            return None
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            logger.error("embedding_malformed", provider=self.provider, error=str(e))
            return None

    async def embed_many(self, texts: Sequence[str]) -> List[Optional[List[float]]]:
        """Embed several texts concurrently, bounded by embedding_concurrency. Order is preserved."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(text: str) -> Optional[List[float]]:
            async with semaphore:
                return await self.embed(text)

        if not texts:
            return []
        return list(await asyncio.gather(*[_bounded(t) for t in texts]))

    async def _get_openai_embedding(self, text: str) -> Optional[List[float]]:
        """Get one embedding from the OpenAI API."""
        response = await self.openai_client.embeddings.create(input=text, model=self.model)
        data = getattr(response, "data", None) or []
        if not data:
            return None
        return list(data[0].embedding)

    def _get_mock_embedding(self, text: str) -> List[float]:
        """Generate a deterministic fake embedding."""
        dim = self.dimension
        token_cap = 256
        vector = np.zeros(dim, dtype=np.float32)
        tokens = text.split()

        if not tokens:
            tokens = [hashlib.sha256(text.encode("utf-8", errors="ignore")).hexdigest()]

        for token in tokens[:token_cap]:
            token_bytes = token.encode("utf-8", errors="ignore")
            h = zlib.crc32(token_bytes)
            idx = h % dim
            sign = 1.0 if (h & 1) else -1.0
            vector[idx] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm

        return vector.tolist()

    async def close(self) -> None:
        if self.openai_client is not None:
            await self.openai_client.close()
