import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import DBAPIError, OperationalError, ProgrammingError

from fakes import DIM
from semantic_search.models.chunk import Chunk, ChunkKind
from semantic_search.services.store import (
    StoreConnectionError,
    StoreError,
    StorePermissionError,
    VectorStore,
    quote_identifier,
)


class _PgError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.fixture
def vector_store(settings):
    store = VectorStore(settings)
    yield store
    store.close()


def _chunk(embedding):
    return Chunk(
        filepath="/repo/mod.py",
        kind=ChunkKind.METHOD,
        name="Cache.get",
        start_line=4,
        end_line=9,
        content="def get(self, key):\n    return self.data[key]",
        embedding=embedding,
    )


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_quote_identifier_always_quotes_and_escapes():
    assert quote_identifier("semantic_search") == '"semantic_search"'
    assert quote_identifier("Code Search") == '"Code Search"'
    assert quote_identifier('evil"; DROP DATABASE x; --') == '"evil""; DROP DATABASE x; --"'


def test_upsert_rejects_missing_or_wrong_width_embedding(vector_store):
    with pytest.raises(ValueError):
        vector_store.upsert(_chunk(None))
    with pytest.raises(ValueError):
        vector_store.upsert(_chunk([0.0] * (DIM - 1)))


def test_upsert_statement_conflicts_on_identity(vector_store):
    sql = _sql(vector_store._upsert_statement(_chunk([0.1] * DIM)))

    assert "INSERT INTO code_chunks" in sql
    assert "ON CONFLICT ON CONSTRAINT unique_code_chunk DO UPDATE" in sql
    assert "embedding = excluded.embedding" in sql
    assert "content_hash = excluded.content_hash" in sql
    assert "RETURNING code_chunks.id" in sql


def test_search_statement_uses_halfvec_inner_product(vector_store):
    sql = _sql(vector_store._search_statement([0.1] * DIM, 5))

    assert f"CAST(code_chunks.embedding AS HALFVEC({DIM}))" in sql
    assert "<#>" in sql
    assert "ORDER BY score" in sql
    assert "LIMIT" in sql


def test_search_validates_arguments_before_querying(vector_store):
    assert vector_store.search([0.1] * DIM, limit=0) == []
    with pytest.raises(ValueError):
        vector_store.search([0.1] * (DIM + 2), limit=5)


def test_delete_nothing_is_a_no_op(vector_store):
    assert vector_store.delete_identities([]) == 0


def test_connection_errors_are_mapped(vector_store):
    with pytest.raises(StoreConnectionError) as exc_info:
        with vector_store._errors("count"):
            raise OperationalError("SELECT 1", {}, _PgError("could not connect to server"))

    assert "could not connect to server" in str(exc_info.value)
    assert isinstance(exc_info.value, StoreError)


def test_privilege_errors_are_mapped(vector_store):
    with pytest.raises(StorePermissionError):
        with vector_store._errors("initialize"):
            raise ProgrammingError("CREATE EXTENSION vector", {}, _PgError("permission denied", "42501"))


def test_other_driver_errors_become_store_errors(vector_store):
    with pytest.raises(StoreError) as exc_info:
        with vector_store._errors("upsert"):
            raise DBAPIError("INSERT", {}, _PgError("value too long", "22001"))

    assert not isinstance(exc_info.value, (StoreConnectionError, StorePermissionError))
