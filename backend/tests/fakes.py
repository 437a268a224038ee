"""
In-memory stand-ins for the store and the embedding provider.

InMemoryStore keeps the same identity contract as VectorStore: one row per
(filepath, kind, name), a stable id per identity, and ascending negative
inner product ordering.
"""

import hashlib
import math
import os
from typing import Optional, Sequence

from semantic_search.models.chunk import Chunk, SearchHit, normalize_text
from semantic_search.services.store import StoreConnectionError

DIM = 8


def unit_vector(text: str, dimension: int = DIM) -> list[float]:
    """Deterministic unit vector for a text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = [(digest[i % len(digest)] - 127.5) for i in range(dimension)]
    norm = math.sqrt(sum(v * v for v in raw)) or 1.0
    return [v / norm for v in raw]


def axis_vector(index: int, dimension: int = DIM) -> list[float]:
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


class InMemoryStore:
    def __init__(self, dimension: int = DIM):
        self.dimension = dimension
        self.rows: dict[tuple[str, str, str], dict] = {}
        self.upsert_log: list[tuple[str, str, str]] = []
        self.location_updates: list[tuple[str, str, str]] = []
        self.fail = False
        self.closed = False
        self._next_id = 1

    def _check(self) -> None:
        if self.fail:
            raise StoreConnectionError("database unreachable")

    def upsert(self, chunk: Chunk) -> int:
        self._check()
        if chunk.embedding is None or len(chunk.embedding) != self.dimension:
            raise ValueError("bad embedding")
        row = self.rows.get(chunk.identity)
        if row is None:
            row = {"id": self._next_id}
            self._next_id += 1
            self.rows[chunk.identity] = row
        row.update(
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            content=chunk.content,
            content_hash=chunk.content_hash,
            embedding=list(chunk.embedding),
        )
        self.upsert_log.append(chunk.identity)
        return row["id"]

    def update_location(self, chunk: Chunk) -> Optional[int]:
        self._check()
        row = self.rows.get(chunk.identity)
        if row is None:
            return None
        row.update(start_line=chunk.start_line, end_line=chunk.end_line)
        self.location_updates.append(chunk.identity)
        return row["id"]

    def get_content_hashes(self, filepath: str) -> dict[tuple[str, str], Optional[str]]:
        self._check()
        return {
            (kind, name): row["content_hash"]
            for (path, kind, name), row in self.rows.items()
            if path == filepath
        }

    def list_identities(self, root: str) -> list[tuple[str, str, str]]:
        self._check()
        prefix = root.rstrip(os.sep) + os.sep
        return [key for key in self.rows if key[0] == root or key[0].startswith(prefix)]

    def delete_identities(self, identities) -> int:
        self._check()
        deleted = 0
        for key in list(identities):
            if self.rows.pop(key, None) is not None:
                deleted += 1
        return deleted

    def search(self, query_vector: Sequence[float], limit: int = 10) -> list[SearchHit]:
        self._check()
        scored = []
        for (filepath, kind, name), row in self.rows.items():
            score = -sum(a * b for a, b in zip(row["embedding"], query_vector))
            scored.append(
                SearchHit(
                    id=row["id"],
                    filepath=filepath,
                    kind=kind,
                    name=name,
                    start_line=row["start_line"],
                    end_line=row["end_line"],
                    content=row["content"],
                    score=score,
                )
            )
        scored.sort(key=lambda hit: hit.score)
        return scored[:limit]

    def count(self) -> int:
        self._check()
        return len(self.rows)

    def close(self) -> None:
        self.closed = True

    def get(self, filepath: str, kind: str, name: str) -> Optional[dict]:
        return self.rows.get((filepath, kind, name))


class FakeEmbedder:
    """Unit-vector embedder; texts containing a fail marker get None."""

    def __init__(self, dimension: int = DIM, fail_markers: Sequence[str] = ()):
        self.dimension = dimension
        self.fail_markers = list(fail_markers)
        self.calls: list[str] = []
        self.closed = False

    async def embed(self, text: str) -> Optional[list[float]]:
        prepared = normalize_text(text)
        self.calls.append(prepared)
        if not prepared or any(marker in prepared for marker in self.fail_markers):
            return None
        return unit_vector(prepared, self.dimension)

    async def embed_many(self, texts: Sequence[str]) -> list[Optional[list[float]]]:
        return [await self.embed(t) for t in texts]

    async def close(self) -> None:
        self.closed = True
