"""Database connection management for the search store."""

import logging
from pathlib import Path

import aiosqlite
import sqlite_vec

from devsearch.config import get_database_url, get_db_path
from devsearch.db.backend import SearchBackend
from devsearch.db.sqlite_backend import SQLiteBackend

logger = logging.getLogger(__name__)


async def create_connection(
    db_path: Path | str | None = None,
    *,
    database_url: str | None = None,
    embedding_dim: int = 1536,
) -> SearchBackend:
    """Create a search backend and make sure its schema exists.

    Dispatches to PostgreSQL when a ``postgresql`` URL is given (or set in
    DEVSEARCH_DATABASE_URL), otherwise SQLite. ``":memory:"`` always uses
    SQLite.
    """
    # Explicit ":memory:" always uses SQLite (used by tests)
    if db_path == ":memory:":
        return await _create_sqlite(":memory:", embedding_dim=embedding_dim)
    url = database_url or get_database_url()
    if url and url.startswith("postgresql"):
        return await _create_postgres(url, embedding_dim=embedding_dim)
    return await _create_sqlite(db_path or get_db_path(), embedding_dim=embedding_dim)


async def _create_sqlite(db_path: Path | str, *, embedding_dim: int) -> SearchBackend:
    """Create a SQLite backend with FTS5 and, when loadable, sqlite-vec."""
    db_path = str(db_path)

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")

    vec_enabled = True
    try:

        def _load_vec() -> None:
            conn._conn.enable_load_extension(True)
            sqlite_vec.load(conn._conn)
            conn._conn.enable_load_extension(False)

        await conn._execute(_load_vec)  # type: ignore[no-untyped-call]
        logger.debug("sqlite-vec extension loaded")
    except Exception:
        vec_enabled = False
        logger.warning("sqlite-vec extension not available, semantic ranking disabled")

    db = SQLiteBackend(conn, vec_enabled=vec_enabled)
    await db.apply_schema(embedding_dim=embedding_dim)
    return db


async def _create_postgres(url: str, *, embedding_dim: int) -> SearchBackend:
    """Create a PostgreSQL backend with pgvector."""
    from devsearch.db.postgres_backend import PostgresBackend

    db = await PostgresBackend.create(url)
    await db.apply_schema(embedding_dim=embedding_dim)
    return db
