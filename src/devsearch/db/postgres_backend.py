"""PostgreSQL implementation of the search backend.

Uses asyncpg for async access, pgvector for embeddings, and a weighted
tsvector/GIN index for full-text search. All application SQL uses ``?``
placeholders; this backend translates them to ``$N`` at execute time.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from devsearch.db.backend import Candidate
from devsearch.db.queries import build_filter_clause

if TYPE_CHECKING:
    import asyncpg

    from devsearch.db.backend import Cursor, Row
    from devsearch.models.search import SearchFilters

logger = logging.getLogger(__name__)

# Pre-compiled regex for placeholder translation
_PLACEHOLDER_RE = re.compile(r"\?")


def _translate_placeholders(sql: str) -> str:
    """Convert ``?`` placeholders to ``$1, $2, ...`` for asyncpg."""
    counter = 0

    def _replace(_match: re.Match[str]) -> str:
        nonlocal counter
        counter += 1
        return f"${counter}"

    return _PLACEHOLDER_RE.sub(_replace, sql)


def _encode_vector(vec: list[float]) -> str:
    """Render a vector in pgvector's text format."""
    return "[" + ",".join(str(float(v)) for v in vec) + "]"


def _decode_vector(raw: str) -> list[float]:
    """Parse pgvector's text format."""
    body = raw.strip().lstrip("[").rstrip("]")
    if not body:
        return []
    return [float(v) for v in body.split(",")]


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register the pgvector text codec so vectors travel as list[float]."""
    await conn.set_type_codec(
        "vector",
        encoder=_encode_vector,
        decoder=_decode_vector,
        schema="public",
        format="text",
    )


class PostgresRow:
    """Wraps asyncpg.Record to satisfy the Row protocol."""

    def __init__(self, record: asyncpg.Record) -> None:
        """Initialize with an asyncpg Record."""
        self._record = record

    def __getitem__(self, key: str | int) -> Any:
        """Get a column value by name or position."""
        return self._record[key]

    def keys(self) -> list[str]:
        """Return column names."""
        return list(self._record.keys())


class PostgresCursor:
    """Wraps a list of asyncpg.Record as a Cursor.

    asyncpg returns results eagerly, with no server-side cursor for
    simple queries. This wraps the result list to match the Cursor protocol.
    """

    def __init__(self, rows: list[asyncpg.Record], status: str | None = None) -> None:
        """Initialize with result rows and optional status string."""
        self._rows = rows
        self._index = 0
        self._rowcount = self._parse_rowcount(status)

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        return self._rowcount

    async def fetchone(self) -> Row | None:
        """Fetch the next row, or None if exhausted."""
        if self._index >= len(self._rows):
            return None
        row = PostgresRow(self._rows[self._index])
        self._index += 1
        return row

    async def fetchall(self) -> list[Row]:
        """Fetch all remaining rows."""
        remaining: list[Row] = [PostgresRow(r) for r in self._rows[self._index :]]
        self._index = len(self._rows)
        return remaining

    @staticmethod
    def _parse_rowcount(status: str | None) -> int:
        """Parse affected row count from asyncpg status string.

        Examples: "INSERT 0 1" → 1, "UPDATE 3" → 3, "DELETE 0" → 0.
        """
        if not status:
            return -1
        parts = status.split()
        if len(parts) >= 2:
            try:
                return int(parts[-1])
            except ValueError:
                pass
        return -1


class PostgresBackend:
    """PostgreSQL implementation of the SearchBackend protocol.

    Each ``execute()`` call acquires a connection from the pool, translates
    ``?`` → ``$N`` placeholders, and releases the connection after.
    ``commit()`` is a no-op; asyncpg auto-commits each statement.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize with an asyncpg connection pool."""
        self._pool = pool

    @classmethod
    async def create(cls, url: str) -> PostgresBackend:
        """Create a PostgresBackend from a connection URL.

        The vector extension must exist before pooled connections register
        its codec, so it is created on a one-off connection first.
        """
        import asyncpg as _asyncpg

        conn = await _asyncpg.connect(url)
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        finally:
            await conn.close()

        pool = await _asyncpg.create_pool(url, min_size=2, max_size=10, init=_init_connection)
        return cls(pool)

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Execute a single SQL statement and return a cursor."""
        pg_sql = _translate_placeholders(sql)
        async with self._pool.acquire() as conn:
            # asyncpg.fetch returns list of Records for SELECT
            # asyncpg.execute returns status string for INSERT/UPDATE/DELETE
            stmt = await conn.prepare(pg_sql)
            if stmt.get_attributes():
                rows = await conn.fetch(pg_sql, *params)
                return PostgresCursor(rows)
            status = await conn.execute(pg_sql, *params)
            return PostgresCursor([], status=status)

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements."""
        async with self._pool.acquire() as conn:
            await conn.execute(sql)

    async def commit(self) -> None:
        """No-op: asyncpg auto-commits each statement."""

    async def close(self) -> None:
        """Close the connection pool."""
        await self._pool.close()

    # -- FTS (tsvector + GIN) --

    async def fts_search(
        self, text: str, filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """Full-text search via weighted tsvector + ts_rank_cd.

        ``websearch_to_tsquery`` accepts free text, including quoted phrases,
        without raising on stray operators.
        """
        if not text.strip():
            return []
        where, params = build_filter_clause(filters)
        sql = f"""
            SELECT d.id, ts_rank_cd(d.search_vector, q.query) AS score,
                   d.updated_at, d.source_id
            FROM search_documents d, websearch_to_tsquery('english', ?) AS q(query)
            WHERE d.search_vector @@ q.query{where}
            ORDER BY score DESC, d.updated_at DESC, d.source_id
            LIMIT ?
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(_translate_placeholders(sql), text, *params, limit)
        return [
            Candidate(row["id"], float(row["score"]), row["updated_at"], row["source_id"])
            for row in rows
        ]

    # -- Vector operations (pgvector) --

    async def vector_search(
        self, embedding: list[float], filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """KNN search via pgvector cosine distance. Returns similarity (1 - distance)."""
        where, params = build_filter_clause(filters)
        sql = f"""
            SELECT d.id, d.embedding <=> ?::vector AS distance, d.updated_at, d.source_id
            FROM search_documents d
            WHERE d.embedding IS NOT NULL{where}
            ORDER BY distance, d.updated_at DESC, d.source_id
            LIMIT ?
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(_translate_placeholders(sql), embedding, *params, limit)
        return [
            Candidate(row["id"], 1.0 - float(row["distance"]), row["updated_at"], row["source_id"])
            for row in rows
        ]

    def encode_embedding(self, embedding: list[float] | None) -> list[float] | None:
        """Vectors are passed as lists; the registered codec formats them."""
        return embedding

    def decode_embedding(self, raw: Any) -> list[float] | None:
        """Vectors arrive as lists from the registered codec."""
        if raw is None:
            return None
        if isinstance(raw, str):
            return _decode_vector(raw)
        return [float(v) for v in raw]

    # -- Schema --

    async def apply_schema(self, *, embedding_dim: int = 1536) -> None:
        """Apply all PostgreSQL DDL."""
        async with self._pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER NOT NULL
                )
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS search_documents (
                    id SERIAL PRIMARY KEY,
                    source_type TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    external_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    content TEXT,
                    organization TEXT NOT NULL,
                    project TEXT NOT NULL,
                    repo_name TEXT,
                    status TEXT NOT NULL,
                    author_id TEXT,
                    author_name TEXT,
                    assigned_to_id TEXT,
                    assigned_to_name TEXT,
                    priority INTEGER,
                    item_type TEXT,
                    is_draft INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    closed_at TEXT,
                    url TEXT NOT NULL DEFAULT '',
                    parent_id INTEGER,
                    linked_work_items TEXT NOT NULL DEFAULT '[]',
                    embedding vector({embedding_dim}),
                    indexed_at TEXT NOT NULL,
                    search_vector tsvector,
                    UNIQUE(source_type, source_id)
                )
            """)

            for idx_sql in [
                "CREATE INDEX IF NOT EXISTS idx_docs_org_project"
                " ON search_documents(organization, project)",
                "CREATE INDEX IF NOT EXISTS idx_docs_source_type ON search_documents(source_type)",
                "CREATE INDEX IF NOT EXISTS idx_docs_status ON search_documents(status)",
                "CREATE INDEX IF NOT EXISTS idx_docs_updated ON search_documents(updated_at)",
                "CREATE INDEX IF NOT EXISTS idx_docs_indexed ON search_documents(indexed_at)",
                "CREATE INDEX IF NOT EXISTS idx_docs_fts"
                " ON search_documents USING gin(search_vector)",
                "CREATE INDEX IF NOT EXISTS idx_docs_embedding"
                " ON search_documents USING hnsw(embedding vector_cosine_ops)",
            ]:
                await conn.execute(idx_sql)

            # tsvector trigger: A=title, B=description, C=content
            await conn.execute("""
                CREATE OR REPLACE FUNCTION search_documents_tsv_trigger() RETURNS trigger AS $$
                BEGIN
                    NEW.search_vector :=
                        setweight(to_tsvector('english', COALESCE(NEW.title, '')), 'A') ||
                        setweight(to_tsvector('english', COALESCE(NEW.description, '')), 'B') ||
                        setweight(to_tsvector('english', COALESCE(NEW.content, '')), 'C');
                    RETURN NEW;
                END
                $$ LANGUAGE plpgsql
            """)

            # Drop and recreate trigger to ensure it's current
            await conn.execute("DROP TRIGGER IF EXISTS tsvector_update ON search_documents")
            await conn.execute("""
                CREATE TRIGGER tsvector_update BEFORE INSERT OR UPDATE
                ON search_documents FOR EACH ROW
                EXECUTE FUNCTION search_documents_tsv_trigger()
            """)

            row = await conn.fetchrow("SELECT version FROM schema_version")
            if row is None:
                await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", 1)
