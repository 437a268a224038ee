"""
Indexer service - Orchestrates file discovery, chunking, embedding, and storage.
"""

import asyncio
import time
from pathlib import Path
from typing import Optional, Union

from semantic_search.config import Settings
from semantic_search.models.chunk import Chunk, IndexReport
from semantic_search.services.chunker import ChunkParseError, CodeChunker
from semantic_search.services.file_filter import FileFilter, iter_candidate_files
from semantic_search.services.store import VectorStore
from semantic_search.utils.embeddings import EmbeddingService
from semantic_search.utils.logger import get_logger, indexing_run, new_run_id

logger = get_logger(__name__)


class Indexer:
    """
    Manages the indexing process:
    1. Walk the project root and filter candidate files
    2. Extract declaration chunks per file
    3. Generate embeddings (bounded concurrency)
    4. Upsert into the vector store, in discovery order

    Best-effort per file: a parse failure skips the file, an embedding
    failure skips the chunk. Store failures abort the run.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingService,
        chunker: CodeChunker,
        file_filter: FileFilter,
        settings: Settings,
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker
        self.file_filter = file_filter
        self.skip_unchanged = settings.skip_unchanged

    async def index(
        self,
        root: Union[str, Path],
        prune: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IndexReport:
        """
        Index every indexable file under root.

        Args:
            root: Project directory (or a single file).
            prune: Afterwards delete stored chunks under root that were not seen.
            cancel_event: When set, the run stops at the next file boundary.
        """
        root_path = Path(root).resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Index root does not exist: {root_path}")

        report = IndexReport(root=str(root_path), run_id=new_run_id())
        started = time.monotonic()

        with indexing_run(report.run_id):
            logger.info("indexing_started", root=str(root_path), skip_unchanged=self.skip_unchanged)

            files = await asyncio.to_thread(lambda: list(iter_candidate_files(root_path, self.file_filter)))

            for file_path in files:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    logger.warning("indexing_cancelled", processed_files=report.files_seen, total_files=len(files))
                    break
                report.files_seen += 1
                await self._index_file(file_path, report)

            if prune and not report.cancelled:
                report.chunks_pruned = await self._prune(root_path, report)

            report.elapsed_seconds = round(time.monotonic() - started, 3)
            logger.info(
                "indexing_complete",
                files=report.files_seen,
                files_indexed=report.files_indexed,
                failed_files=len(report.failed_files),
                chunks=report.chunks_found,
                upserted=report.chunks_upserted,
                unchanged=report.chunks_unchanged,
                failed_chunks=report.chunks_failed,
                pruned=report.chunks_pruned,
                elapsed_seconds=report.elapsed_seconds,
            )
        return report

    async def _index_file(self, file_path: Path, report: IndexReport) -> None:
        """Extract, embed and upsert one file's chunks."""
        try:
            chunks = await asyncio.to_thread(self.chunker.extract, file_path)
        except ChunkParseError as e:
            logger.warning("file_parse_failed", file_path=str(file_path), error=str(e))
            report.failed_files.append(str(file_path))
            return

        chunks = [c for c in chunks if c.content.strip()]
        report.chunks_found += len(chunks)
        for chunk in chunks:
            report.seen_identities.add(chunk.identity)
        if not chunks:
            logger.debug("no_chunks_in_file", file_path=str(file_path))
            report.files_indexed += 1
            return

        to_embed = await self._filter_unchanged(file_path, chunks, report)

        embeddings = await self.embedder.embed_many([c.content for c in to_embed])
        for chunk, embedding in zip(to_embed, embeddings):
            if embedding is None:
                # Retried naturally on the next run; the upsert is idempotent.
                report.chunks_failed += 1
                logger.warning("chunk_embedding_skipped", file_path=chunk.filepath, kind=chunk.kind.value, name=chunk.name)
                continue
            chunk.embedding = embedding
            await asyncio.to_thread(self.store.upsert, chunk)
            report.chunks_upserted += 1

        report.files_indexed += 1
        logger.debug("file_indexed", file_path=str(file_path), chunks=len(chunks), embedded=len(to_embed))

    async def _filter_unchanged(self, file_path: Path, chunks: list[Chunk], report: IndexReport) -> list[Chunk]:
        """
        Drop chunks whose stored content hash matches; only their line range is refreshed.
        """
        if not self.skip_unchanged:
            return chunks

        stored = await asyncio.to_thread(self.store.get_content_hashes, str(file_path))
        if not stored:
            return chunks

        changed: list[Chunk] = []
        for chunk in chunks:
            if stored.get((chunk.kind.value, chunk.name)) == chunk.content_hash:
                await asyncio.to_thread(self.store.update_location, chunk)
                report.chunks_unchanged += 1
            else:
                changed.append(chunk)
        return changed

    async def _prune(self, root_path: Path, report: IndexReport) -> int:
        """Delete stored identities under root not observed in this run."""
        failed = set(report.failed_files)
        stored = await asyncio.to_thread(self.store.list_identities, str(root_path))
        stale = [
            identity for identity in stored
            if identity not in report.seen_identities and identity[0] not in failed
        ]
        if not stale:
            return 0
        deleted = await asyncio.to_thread(self.store.delete_identities, stale)
        logger.info("stale_chunks_pruned", count=deleted)
        return deleted
