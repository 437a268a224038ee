"""
Service container.

Owns the store handle and the services built on it for one process. The
FastAPI lifespan (or the CLI) creates it, and shutdown() releases it.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union

from fastapi import Request

from semantic_search.config import Settings
from semantic_search.models.chunk import IndexReport
from semantic_search.services.chunker import CodeChunker
from semantic_search.services.file_filter import DefaultFileFilter, FileFilter
from semantic_search.services.indexer import Indexer
from semantic_search.services.retriever import Retriever
from semantic_search.services.store import VectorStore
from semantic_search.utils.embeddings import EmbeddingService
from semantic_search.utils.logger import get_logger

logger = get_logger(__name__)


class IndexingInProgressError(Exception):
    """Raised when an index run is requested while one is running."""

    pass


class ServiceContainer:
    """Wires store, embedder, indexer and retriever together."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[VectorStore] = None,
        embedder: Optional[EmbeddingService] = None,
        file_filter: Optional[FileFilter] = None,
        chunker: Optional[CodeChunker] = None,
    ):
        self.settings = settings
        self.store = store or VectorStore(settings)
        self.embedder = embedder or EmbeddingService(settings)
        self.file_filter = file_filter or DefaultFileFilter(
            entry_point_files=settings.entry_point_files,
            extra_excluded_dirs=settings.extra_excluded_dirs,
        )
        self.indexer = Indexer(
            store=self.store,
            embedder=self.embedder,
            chunker=chunker or CodeChunker(),
            file_filter=self.file_filter,
            settings=settings,
        )
        self.retriever = Retriever(self.store, self.embedder, settings)
        self.last_report: Optional[IndexReport] = None
        self._indexing = False
        self._cancel_event: Optional[asyncio.Event] = None
        self._background_task: Optional[asyncio.Task] = None

    @classmethod
    async def start(cls, settings: Settings) -> "ServiceContainer":
        """
        Validate settings, build services and prepare the schema.

        Raises:
            ConfigurationError, StoreError: startup must not continue.
        """
        settings.validate_for_startup()
        container = cls(settings)
        try:
            await asyncio.to_thread(container.store.initialize)
        except Exception:
            await container.shutdown()
            raise
        return container

    @property
    def is_indexing(self) -> bool:
        return self._indexing

    async def run_index(self, root: Union[str, Path, None] = None, prune: bool = False) -> IndexReport:
        """Run one index pass; only one runs at a time per process."""
        if self._indexing:
            raise IndexingInProgressError("An indexing run is already in progress")
        self._indexing = True
        self._cancel_event = asyncio.Event()
        try:
            report = await self.indexer.index(
                root or self.settings.project_root,
                prune=prune,
                cancel_event=self._cancel_event,
            )
            self.last_report = report
            return report
        finally:
            self._indexing = False
            self._cancel_event = None

    def start_background_index(self, root: Union[str, Path, None] = None, prune: bool = False) -> asyncio.Task:
        """Schedule an index run without blocking the caller."""
        if self._indexing:
            raise IndexingInProgressError("An indexing run is already in progress")

        async def _run() -> None:
            try:
                await self.run_index(root, prune=prune)
            except IndexingInProgressError:
                logger.info("background_index_skipped", reason="already running")
            except Exception as e:
                logger.exception("background_index_failed", error=str(e))

        self._background_task = asyncio.create_task(_run())
        return self._background_task

    async def ensure_indexed(self) -> bool:
        """
        Index the project root when the store is empty.

        Returns True if an implicit run happened.
        """
        if not self.settings.auto_index_on_empty_search or self._indexing:
            return False
        if await asyncio.to_thread(self.store.count) > 0:
            return False
        logger.info("implicit_index_before_search", root=str(self.settings.project_root))
        try:
            await self.run_index(self.settings.project_root)
        except IndexingInProgressError:
            return False
        return True

    async def shutdown(self) -> None:
        """Stop background indexing at a file boundary and release resources."""
        if self._cancel_event is not None:
            self._cancel_event.set()
        task = self._background_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, timeout=30)
            except asyncio.TimeoutError:
                logger.warning("background_index_abandoned")
        await self.embedder.close()
        self.store.close()


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the process-wide container."""
    return request.app.state.container
