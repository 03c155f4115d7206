"""Database backend protocol: thin abstraction over async DB connections.

Application code programs against these protocols. Each backend (SQLite,
Postgres) provides a concrete implementation. SQL dialect differences are
handled inside the backend, not in application code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from devsearch.models.search import SearchFilters


@runtime_checkable
class Row(Protocol):
    """A database row supporting both named and positional access."""

    def __getitem__(self, key: str | int) -> Any:
        """Get a column value by name or position."""
        ...

    def keys(self) -> Any:
        """Return column names."""
        ...


@runtime_checkable
class Cursor(Protocol):
    """Async cursor returned by Database.execute()."""

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        ...

    async def fetchone(self) -> Row | None:
        """Fetch the next row, or None if exhausted."""
        ...

    async def fetchall(self) -> list[Row]:
        """Fetch all remaining rows."""
        ...


@runtime_checkable
class Database(Protocol):
    """Async database backend.

    All application SQL uses ``?`` placeholders and SQLite-flavored syntax.
    Non-SQLite backends translate at execute time (``?`` → ``$N``).
    """

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Execute a single SQL statement and return a cursor."""
        ...

    async def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements (DDL, migrations)."""
        ...

    async def commit(self) -> None:
        """Commit the current transaction."""
        ...

    async def close(self) -> None:
        """Close the database connection."""
        ...


@dataclass(frozen=True)
class Candidate:
    """One document's position in a single ranking.

    ``score`` is always higher-is-better; backends negate or invert their
    native scores before returning.
    """

    doc_id: int
    score: float
    updated_at: str
    source_id: str


@runtime_checkable
class SearchBackend(Database, Protocol):
    """A Database that can also produce lexical and semantic rankings."""

    async def fts_search(
        self, text: str, filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """Rank filtered documents by full-text relevance to ``text``."""
        ...

    async def vector_search(
        self, embedding: list[float], filters: SearchFilters, *, limit: int
    ) -> list[Candidate]:
        """Rank filtered documents with embeddings by cosine similarity."""
        ...

    def encode_embedding(self, embedding: list[float] | None) -> Any:
        """Convert a vector to the backend's column representation."""
        ...

    def decode_embedding(self, raw: Any) -> list[float] | None:
        """Convert a stored column value back to a vector."""
        ...

    async def apply_schema(self, *, embedding_dim: int = 1536) -> None:
        """Create tables, indexes and triggers if missing."""
        ...
