"""
SQLAlchemy table for persisted code chunks.
"""

from pgvector.sqlalchemy import Vector
from sqlalchemy import BigInteger, Column, Integer, MetaData, Table, Text, UniqueConstraint

UNIQUE_CONSTRAINT = "unique_code_chunk"
TABLE_NAME = "code_chunks"
EMBEDDING_INDEX = "code_chunks_embedding_idx"


def build_chunk_table(dimension: int, metadata: MetaData | None = None) -> Table:
    """
    Build the code_chunks table for a given embedding width.

    The width is fixed per deployment, so the table is built at runtime from
    settings instead of at import time.
    """
    return Table(
        TABLE_NAME,
        metadata if metadata is not None else MetaData(),
        Column("id", BigInteger, primary_key=True, autoincrement=True),
        Column("filepath", Text, nullable=False),
        Column("kind", Text, nullable=False),
        Column("name", Text, nullable=False),
        Column("start_line", Integer, nullable=False),
        Column("end_line", Integer, nullable=False),
        Column("content", Text, nullable=False),
        Column("content_hash", Text, nullable=True),
        Column("embedding", Vector(dimension), nullable=False),
        UniqueConstraint("filepath", "kind", "name", name=UNIQUE_CONSTRAINT),
    )
