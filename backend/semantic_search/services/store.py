"""
Vector Store - PostgreSQL + pgvector persistence for code chunks.

One row per (filepath, kind, name). Every write is a single-statement
INSERT ... ON CONFLICT upsert in its own transaction, so readers never see a
half-updated chunk and concurrent writers resolve last-write-wins.
"""

import os
from contextlib import contextmanager
from typing import Iterable, Optional, Sequence

from pgvector.sqlalchemy import HALFVEC
from sqlalchemy import create_engine, delete, func, select, text, tuple_, update
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from semantic_search.config import ConfigurationError, Settings
from semantic_search.models.chunk import Chunk, SearchHit
from semantic_search.models.chunk_row import (
    EMBEDDING_INDEX,
    TABLE_NAME,
    UNIQUE_CONSTRAINT,
    build_chunk_table,
)
from semantic_search.utils.logger import get_logger

logger = get_logger(__name__)

# SQLSTATE for insufficient_privilege
INSUFFICIENT_PRIVILEGE = "42501"

# halfvec HNSW indexes support up to 4000 dimensions
MAX_HALFVEC_INDEX_DIMENSION = 4000

DELETE_BATCH_SIZE = 500

_PREPARER = postgresql.dialect().identifier_preparer


class StoreError(Exception):
    """Base error for vector store operations."""

    pass


class StoreConnectionError(StoreError):
    """Raised when the database cannot be reached."""

    pass


class StorePermissionError(StoreError):
    """Raised when the configured role may not create or own the database."""

    pass


def quote_identifier(name: str) -> str:
    """
    Quote a database/role identifier for DDL that cannot take bind parameters.

    Always quotes and doubles embedded quotes, so any string is safe.
    """
    return _PREPARER.quote_identifier(name)


def _pgcode(error: DBAPIError) -> Optional[str]:
    return getattr(error.orig, "pgcode", None)


def _short(error: Exception) -> str:
    orig = getattr(error, "orig", None)
    return str(orig if orig is not None else error).strip()


class VectorStore:
    """
    Owns the SQLAlchemy engine for the chunk table.

    Create one per process (or request scope) and release it with close(),
    or use it as a context manager.
    """

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        self.settings = settings
        self.dimension = settings.embedding_dimension
        self.table = build_chunk_table(self.dimension)
        self.engine = engine or create_engine(
            settings.database_url(),
            pool_pre_ping=True,
            connect_args={"connect_timeout": settings.db_connect_timeout},
        )

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _errors(self, operation: str):
        """Map driver errors onto the store's error types."""
        try:
            yield
        except (OperationalError, InterfaceError) as e:
            logger.error("store_connection_failed", operation=operation, error=_short(e))
            raise StoreConnectionError(f"{operation} failed, database unreachable: {_short(e)}") from e
        except DBAPIError as e:
            if _pgcode(e) == INSUFFICIENT_PRIVILEGE:
                raise StorePermissionError(f"{operation} failed, insufficient privilege: {_short(e)}") from e
            logger.error("store_operation_failed", operation=operation, error=_short(e))
            raise StoreError(f"{operation} failed: {_short(e)}") from e
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Idempotently prepare database, extension, table, constraint and ANN index.

        Safe to call on every start.

        Raises:
            StorePermissionError: the role may not create the database.
            StoreConnectionError: the server is unreachable.
            ConfigurationError: the stored vector width differs from settings.
        """
        self._ensure_database_exists()

        with self._errors("initialize"):
            with self.engine.begin() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

            self.table.metadata.create_all(self.engine, checkfirst=True)

            with self.engine.begin() as conn:
                # Tables created before change detection existed lack this column.
                conn.execute(text(f"ALTER TABLE {TABLE_NAME} ADD COLUMN IF NOT EXISTS content_hash TEXT"))
                conn.execute(
                    text(
                        f"""
                        DO $$
                        BEGIN
                          IF NOT EXISTS (
                            SELECT 1 FROM pg_constraint
                            WHERE conname = '{UNIQUE_CONSTRAINT}'
                              AND conrelid = '{TABLE_NAME}'::regclass
                          ) THEN
                            ALTER TABLE {TABLE_NAME}
                              ADD CONSTRAINT {UNIQUE_CONSTRAINT} UNIQUE (filepath, kind, name);
                          END IF;
                        END
                        $$;
                        """
                    )
                )
                self._check_dimension(conn)
                self._ensure_ann_index(conn)

        logger.info("store_initialized", database=self.settings.db_name, dimension=self.dimension)

    def _check_dimension(self, conn) -> None:
        column_type = conn.execute(
            text(
                "SELECT format_type(a.atttypid, a.atttypmod) FROM pg_attribute a "
                "WHERE a.attrelid = CAST(:table AS regclass) AND a.attname = 'embedding' "
                "AND NOT a.attisdropped"
            ),
            {"table": TABLE_NAME},
        ).scalar_one_or_none()
        expected = f"vector({self.dimension})"
        if column_type != expected:
            raise ConfigurationError(
                f"{TABLE_NAME}.embedding is {column_type} but settings expect {expected}; "
                f"re-create the table or fix EMBEDDING_DIMENSION"
            )

    def _ensure_ann_index(self, conn) -> None:
        dim = int(self.dimension)
        if dim > MAX_HALFVEC_INDEX_DIMENSION:
            logger.warning("ann_index_skipped", dimension=dim, reason="too many dimensions for HNSW")
            return
        m = int(self.settings.hnsw_m)
        ef_construction = int(self.settings.hnsw_ef_construction)
        conn.execute(
            text(
                f"CREATE INDEX IF NOT EXISTS {EMBEDDING_INDEX} ON {TABLE_NAME} "
                f"USING hnsw ((embedding::halfvec({dim})) halfvec_ip_ops) "
                f"WITH (m = {m}, ef_construction = {ef_construction})"
            )
        )

    def _ensure_database_exists(self) -> None:
        """
        Create the target database (owned by the configured user) when missing.

        Uses the maintenance database; if that is not reachable but the target
        database is, there is nothing to do.
        """
        db_name = self.settings.db_name
        user = self.settings.db_user
        admin_engine = create_engine(
            self.settings.database_url(self.settings.db_admin_database),
            isolation_level="AUTOCOMMIT",
            connect_args={"connect_timeout": self.settings.db_connect_timeout},
        )
        remedy = (
            f'Create the database manually (CREATE DATABASE "{db_name}" OWNER "{user}";) '
            f"or connect with a role that has CREATEDB / superuser rights."
        )
        try:
            with admin_engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).first()
                db_q = quote_identifier(db_name)
                user_q = quote_identifier(user)

                if exists is None:
                    self._create_database(conn, db_q, user_q, remedy)
                    logger.info("database_created", database=db_name, owner=user)
                else:
                    try:
                        conn.execute(text(f"ALTER DATABASE {db_q} OWNER TO {user_q}"))
                    except DBAPIError as e:
                        logger.warning("database_owner_unchanged", database=db_name, owner=user, error=_short(e))
        except StorePermissionError:
            raise
        except (OperationalError, InterfaceError) as e:
            logger.warning("admin_database_unreachable", database=self.settings.db_admin_database, error=_short(e))
            self._probe_target(remedy)
        except DBAPIError as e:
            if _pgcode(e) == INSUFFICIENT_PRIVILEGE:
                logger.error("insufficient_privileges", database=db_name, remedy=remedy)
                raise StorePermissionError(f"Insufficient privileges to inspect databases. {remedy}") from e
            raise StoreError(f"Database bootstrap failed: {_short(e)}") from e
        finally:
            admin_engine.dispose()

    def _create_database(self, conn, db_q: str, user_q: str, remedy: str) -> None:
        try:
            conn.execute(text(f"CREATE DATABASE {db_q} OWNER {user_q}"))
            return
        except DBAPIError as e:
            if _pgcode(e) != INSUFFICIENT_PRIVILEGE:
                raise
        # The role may be allowed to grant itself CREATEDB.
        try:
            conn.execute(text(f"ALTER ROLE {user_q} CREATEDB"))
            conn.execute(text(f"CREATE DATABASE {db_q} OWNER {user_q}"))
        except DBAPIError as e:
            if _pgcode(e) == INSUFFICIENT_PRIVILEGE:
                logger.error("insufficient_privileges", database=self.settings.db_name, remedy=remedy)
                raise StorePermissionError(f"Insufficient privileges to create the database. {remedy}") from e
            raise

    def _probe_target(self, remedy: str) -> None:
        with self._errors("connect"):
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        logger.info("target_database_reachable", database=self.settings.db_name, hint=remedy)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate_embedding(self, chunk: Chunk) -> list[float]:
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.identity} has no embedding")
        if len(chunk.embedding) != self.dimension:
            raise ValueError(
                f"Chunk {chunk.identity} embedding has {len(chunk.embedding)} dimensions, expected {self.dimension}"
            )
        return chunk.embedding

    def _upsert_statement(self, chunk: Chunk):
        embedding = self._validate_embedding(chunk)
        t = self.table
        stmt = pg_insert(t).values(
            filepath=chunk.filepath,
            kind=chunk.kind.value,
            name=chunk.name,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            content=chunk.content,
            content_hash=chunk.content_hash,
            embedding=embedding,
        )
        stmt = stmt.on_conflict_do_update(
            constraint=UNIQUE_CONSTRAINT,
            set_={
                "start_line": stmt.excluded.start_line,
                "end_line": stmt.excluded.end_line,
                "content": stmt.excluded.content,
                "content_hash": stmt.excluded.content_hash,
                "embedding": stmt.excluded.embedding,
            },
        ).returning(t.c.id)
        return stmt

    def upsert(self, chunk: Chunk) -> int:
        """
        Insert a chunk, or update the row with the same (filepath, kind, name).

        Returns:
            The row's surrogate id, stable across updates.
        """
        stmt = self._upsert_statement(chunk)
        with self._errors("upsert"):
            with self.engine.begin() as conn:
                return conn.execute(stmt).scalar_one()

    def update_location(self, chunk: Chunk) -> Optional[int]:
        """Move an unchanged chunk's line range. Returns its id, or None if it is not stored."""
        t = self.table
        stmt = (
            update(t)
            .where(t.c.filepath == chunk.filepath, t.c.kind == chunk.kind.value, t.c.name == chunk.name)
            .values(start_line=chunk.start_line, end_line=chunk.end_line)
            .returning(t.c.id)
        )
        with self._errors("update_location"):
            with self.engine.begin() as conn:
                return conn.execute(stmt).scalar_one_or_none()

    def delete_identities(self, identities: Iterable[tuple[str, str, str]]) -> int:
        """Delete rows by (filepath, kind, name). Only the reconciliation pass calls this."""
        keys = list(identities)
        if not keys:
            return 0
        t = self.table
        deleted = 0
        with self._errors("delete"):
            with self.engine.begin() as conn:
                for i in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[i:i + DELETE_BATCH_SIZE]
                    result = conn.execute(
                        delete(t).where(tuple_(t.c.filepath, t.c.kind, t.c.name).in_(batch))
                    )
                    deleted += result.rowcount or 0
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _search_statement(self, query_vector: Sequence[float], limit: int):
        if len(query_vector) != self.dimension:
            raise ValueError(f"Query vector has {len(query_vector)} dimensions, expected {self.dimension}")
        t = self.table
        # Cast matches the expression index so the planner can use HNSW.
        distance = func.cast(t.c.embedding, HALFVEC(self.dimension)).max_inner_product(
            [float(v) for v in query_vector]
        ).label("score")
        return (
            select(t.c.id, t.c.filepath, t.c.kind, t.c.name, t.c.start_line, t.c.end_line, t.c.content, distance)
            .order_by(distance)
            .limit(limit)
        )

    def search(self, query_vector: Sequence[float], limit: int = 10) -> list[SearchHit]:
        """
        Approximate top-k rows by inner product, most similar first.

        score is the raw negative inner product (ascending = more similar).
        """
        if limit < 1:
            return []
        stmt = self._search_statement(query_vector, limit)

        with self._errors("search"):
            with self.engine.begin() as conn:
                conn.execute(
                    text("SELECT set_config('hnsw.ef_search', :value, true)"),
                    {"value": str(int(self.settings.hnsw_ef_search))},
                )
                rows = conn.execute(stmt).mappings().all()

        return [SearchHit.model_validate(dict(row)) for row in rows]

    def get_content_hashes(self, filepath: str) -> dict[tuple[str, str], Optional[str]]:
        """Stored content hash per (kind, name) for one file."""
        t = self.table
        stmt = select(t.c.kind, t.c.name, t.c.content_hash).where(t.c.filepath == filepath)
        with self._errors("get_content_hashes"):
            with self.engine.connect() as conn:
                return {(row.kind, row.name): row.content_hash for row in conn.execute(stmt)}

    def list_identities(self, root: str) -> list[tuple[str, str, str]]:
        """Identities stored for root itself or any file beneath it."""
        t = self.table
        prefix = root.rstrip(os.sep) + os.sep
        stmt = select(t.c.filepath, t.c.kind, t.c.name).where(
            (t.c.filepath == root) | t.c.filepath.startswith(prefix, autoescape=True)
        )
        with self._errors("list_identities"):
            with self.engine.connect() as conn:
                return [(row.filepath, row.kind, row.name) for row in conn.execute(stmt)]

    def count(self) -> int:
        with self._errors("count"):
            with self.engine.connect() as conn:
                return conn.execute(select(func.count()).select_from(self.table)).scalar_one()
