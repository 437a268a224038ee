"""
API request/response models.
"""

from pydantic import BaseModel, Field
from typing import Optional

from semantic_search.models.chunk import ChunkKind, IndexReport, SearchHit


class IndexRequest(BaseModel):
    """Request to index a project root."""
    root: Optional[str] = Field(default=None, description="Directory to index (default: PROJECT_ROOT)")
    prune: bool = Field(default=False, description="Delete stored chunks no longer present under root")
    wait: bool = Field(default=False, description="Block until the run finishes")


class IndexResponse(BaseModel):
    """Response from an index request."""
    accepted: bool
    root: str
    message: str
    report: Optional[IndexReport] = None


class SearchResult(BaseModel):
    """One ranked chunk, with enough to display it and open it."""
    id: int
    filepath: str
    kind: ChunkKind
    name: str
    start_line: int
    end_line: int
    score: float = Field(..., description="Raw negative inner product")
    similarity: float
    content: str

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchResult":
        return cls(**hit.model_dump(), similarity=hit.similarity)


class SearchResponse(BaseModel):
    """Search results, most similar first."""
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    implicit_index: bool = False
