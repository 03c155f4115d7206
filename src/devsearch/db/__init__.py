"""Search store connection, schema and backends."""

from devsearch.db.backend import Candidate, Cursor, Database, Row, SearchBackend
from devsearch.db.connection import create_connection
from devsearch.db.postgres_backend import PostgresBackend
from devsearch.db.sqlite_backend import SQLiteBackend

__all__ = [
    "Candidate",
    "Cursor",
    "Database",
    "PostgresBackend",
    "Row",
    "SQLiteBackend",
    "SearchBackend",
    "create_connection",
]
