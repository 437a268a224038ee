"""
Chunk models.
"""

import hashlib
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

_WHITESPACE = re.compile(r"\s+")


class ChunkKind(str, Enum):
    """Kinds of declaration the chunker emits."""
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"


def normalize_text(text: str) -> str:
    """Collapse whitespace runs (newlines included) to single spaces."""
    return _WHITESPACE.sub(" ", text).strip()


class Chunk(BaseModel):
    """A named, line-ranged declaration extracted from one source file."""
    filepath: str = Field(..., description="Absolute path of the origin file")
    kind: ChunkKind = Field(..., description="function, class or method")
    name: str = Field(..., description="Declared name; methods are Class.method")
    start_line: int = Field(..., ge=1, description="Starting line number (1-indexed)")
    end_line: int = Field(..., ge=1, description="Ending line number (1-indexed, inclusive)")
    content: str = Field(..., description="Exact source text of the declaration")
    embedding: Optional[list[float]] = Field(default=None, description="Set once embedded")

    @property
    def identity(self) -> tuple[str, str, str]:
        """Logical identity; unique in the store."""
        return (self.filepath, self.kind.value, self.name)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


class SearchHit(BaseModel):
    """One ranked row returned by a vector search."""
    id: int
    filepath: str
    kind: ChunkKind
    name: str
    start_line: int
    end_line: int
    content: str
    score: float = Field(..., description="Negative inner product; lower ranks first")

    @property
    def similarity(self) -> float:
        return -self.score


class IndexReport(BaseModel):
    """Statistics from one indexing run."""
    root: str
    run_id: str = ""
    files_seen: int = 0
    files_indexed: int = 0
    chunks_found: int = 0
    chunks_upserted: int = 0
    chunks_unchanged: int = 0
    chunks_failed: int = 0
    chunks_pruned: int = 0
    failed_files: list[str] = Field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    seen_identities: set[tuple[str, str, str]] = Field(default_factory=set, exclude=True)
