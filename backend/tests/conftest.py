import logging
import textwrap
from pathlib import Path

import pytest
import structlog

from fakes import DIM, FakeEmbedder, InMemoryStore
from semantic_search.config import Settings
from semantic_search.services.chunker import CodeChunker
from semantic_search.services.file_filter import DefaultFileFilter
from semantic_search.services.indexer import Indexer

# Keep test output readable; log assertions are not part of the suite.
structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        embedding_provider="mock",
        openai_api_key=None,
        embedding_dimension=DIM,
        embedding_concurrency=2,
        project_root=tmp_path,
        skip_unchanged=False,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def make_indexer(store, embedder, settings):
    def _make(**overrides) -> Indexer:
        return Indexer(
            store=overrides.get("store", store),
            embedder=overrides.get("embedder", embedder),
            chunker=CodeChunker(),
            file_filter=DefaultFileFilter(),
            settings=overrides.get("settings", settings),
        )

    return _make


@pytest.fixture
def write_file():
    def _write(path: Path, source: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
        return path

    return _write
