"""SQLite implementation of the search backend.

Thin wrapper around aiosqlite.Connection with no SQL translation needed,
since application code already uses SQLite-flavored SQL. Lexical ranking
uses FTS5/BM25; semantic ranking uses sqlite-vec's ``vec_distance_cosine``
over the embedding blob stored on each document row.
"""

from __future__ import annotations

import logging
import re
import struct
from typing import TYPE_CHECKING, Any

from devsearch.db.backend import Candidate
from devsearch.db.queries import build_filter_clause

if TYPE_CHECKING:
    import aiosqlite

    from devsearch.db.backend import Cursor, Row
    from devsearch.models.search import SearchFilters

logger = logging.getLogger(__name__)

# BM25 column weights for (title, description, content)
_BM25_WEIGHTS = "10.0, 5.0, 1.0"

_FTS_TOKEN_RE = re.compile(r'"([^"]*)"|(\S+)')

_STOPWORDS = frozenset(
    {"a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "is", "it",
     "of", "on", "or", "the", "to", "with", "about"}
)


def _serialize_f32(vec: list[float]) -> bytes:
    """Serialize a list of floats to a compact binary format for sqlite-vec."""
    return struct.pack(f"{len(vec)}f", *vec)


def _deserialize_f32(blob: bytes) -> list[float]:
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def _has_word_chars(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


def build_fts_query(text: str) -> str:
    """Convert free text to a safe FTS5 query.

    Every bare token and every quoted phrase is wrapped in double quotes so
    FTS5 operators and punctuation are taken literally; terms are implicitly
    ANDed. Stopwords outside phrases are dropped.
    """
    terms: list[str] = []
    for match in _FTS_TOKEN_RE.finditer(text):
        phrase, token = match.group(1), match.group(2)
        if phrase is not None:
            words = phrase.split()
            if words and _has_word_chars(phrase):
                terms.append('"' + " ".join(words) + '"')
            continue
        token = token.replace('"', "")
        if not _has_word_chars(token) or token.lower() in _STOPWORDS:
            continue
        terms.append(f'"{token}"')
    return " ".join(terms)


class SQLiteCursor:
    """Wraps aiosqlite.Cursor to satisfy the Cursor protocol."""

    def __init__(self, cursor: aiosqlite.Cursor) -> None:
        """Initialize with an aiosqlite cursor."""
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        rc = self._cursor.rowcount
        return rc if rc is not None else -1

    async def fetchone(self) -> Row | None:
        """Fetch the next row, or None if exhausted."""
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[Row]:
        """Fetch all remaining rows."""
        return list(await self._cursor.fetchall())


class SQLiteBackend:
    """SQLite implementation of the SearchBackend protocol.

    Passes all calls through to the underlying aiosqlite.Connection.
    The raw connection is exposed as ``_conn`` for SQLite-specific
    operations (extension loading, PRAGMA) that only run during
    connection setup.
    """

    def __init__(self, conn: aiosqlite.Connection, *, vec_enabled: bool = True) -> None:
        """Initialize with an aiosqlite connection."""
        self._conn = conn
        self.vec_enabled = vec_enabled

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Execute a single SQL statement and return a cursor."""
        cursor = await self._conn.execute(sql, params)
        return SQLiteCursor(cursor)

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements (DDL, migrations)."""
        await self._conn.executescript(sql)

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()

    # -- FTS5 search --

    async def fts_search(
        self, text: str, filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """Full-text search via FTS5 BM25.

        FTS5 returns negative BM25 scores where more negative is a better
        match; they are negated so that higher is better.
        """
        fts_query = build_fts_query(text)
        if not fts_query:
            return []

        where, params = build_filter_clause(filters)
        sql = f"""
            SELECT d.id, bm25(search_fts, {_BM25_WEIGHTS}) AS bm25_score, d.updated_at, d.source_id
            FROM search_fts
            JOIN search_documents d ON d.id = search_fts.rowid
            WHERE search_fts MATCH ?{where}
            ORDER BY bm25_score, d.updated_at DESC, d.source_id
            LIMIT ?
        """
        cursor = await self._conn.execute(sql, [fts_query, *params, limit])
        rows = await cursor.fetchall()
        return [Candidate(row[0], -float(row[1]), row[2], row[3]) for row in rows]

    # -- Vector operations (sqlite-vec) --

    async def vector_search(
        self, embedding: list[float], filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """Exact cosine-similarity ranking over filtered documents.

        Documents whose stored vector has a different width than the query
        are skipped. Returns similarity (1 - cosine distance).
        """
        if not self.vec_enabled:
            logger.warning("sqlite-vec not loaded, semantic ranking skipped")
            return []

        blob = _serialize_f32(embedding)
        where, params = build_filter_clause(filters)
        sql = f"""
            SELECT d.id, vec_distance_cosine(d.embedding, ?) AS distance,
                   d.updated_at, d.source_id
            FROM search_documents d
            WHERE d.embedding IS NOT NULL AND length(d.embedding) = ?{where}
            ORDER BY distance, d.updated_at DESC, d.source_id
            LIMIT ?
        """
        cursor = await self._conn.execute(sql, [blob, len(blob), *params, limit])
        rows = await cursor.fetchall()
        return [Candidate(row[0], 1.0 - float(row[1]), row[2], row[3]) for row in rows]

    def encode_embedding(self, embedding: list[float] | None) -> bytes | None:
        """Pack a vector as a float32 blob."""
        return _serialize_f32(embedding) if embedding is not None else None

    def decode_embedding(self, raw: Any) -> list[float] | None:
        """Unpack a float32 blob."""
        return _deserialize_f32(raw) if raw is not None else None

    # -- Schema --

    async def apply_schema(self, *, embedding_dim: int = 1536) -> None:
        """Apply all SQLite DDL: document table, FTS5 index and triggers.

        Embeddings live in a BLOB column, so the width is not part of the DDL.
        """
        from devsearch.db.schema import apply_schema

        await apply_schema(self)
