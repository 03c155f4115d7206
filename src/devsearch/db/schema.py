"""SQLite DDL for the search store."""

from devsearch.db.backend import Database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS search_documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
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
    embedding BLOB,
    indexed_at TEXT NOT NULL,
    UNIQUE(source_type, source_id)
);

CREATE INDEX IF NOT EXISTS idx_docs_org_project ON search_documents(organization, project);
CREATE INDEX IF NOT EXISTS idx_docs_source_type ON search_documents(source_type);
CREATE INDEX IF NOT EXISTS idx_docs_status ON search_documents(status);
CREATE INDEX IF NOT EXISTS idx_docs_updated ON search_documents(updated_at);
CREATE INDEX IF NOT EXISTS idx_docs_indexed ON search_documents(indexed_at);

CREATE VIRTUAL TABLE IF NOT EXISTS search_fts USING fts5(
    title,
    description,
    content,
    content='search_documents',
    content_rowid='id',
    tokenize='porter unicode61'
);

-- Triggers to keep FTS in sync with the content table
CREATE TRIGGER IF NOT EXISTS search_fts_ai AFTER INSERT ON search_documents BEGIN
    INSERT INTO search_fts(rowid, title, description, content)
    VALUES (new.id, new.title, new.description, new.content);
END;

CREATE TRIGGER IF NOT EXISTS search_fts_ad AFTER DELETE ON search_documents BEGIN
    INSERT INTO search_fts(search_fts, rowid, title, description, content)
    VALUES ('delete', old.id, old.title, old.description, old.content);
END;

CREATE TRIGGER IF NOT EXISTS search_fts_au AFTER UPDATE ON search_documents BEGIN
    INSERT INTO search_fts(search_fts, rowid, title, description, content)
    VALUES ('delete', old.id, old.title, old.description, old.content);
    INSERT INTO search_fts(rowid, title, description, content)
    VALUES (new.id, new.title, new.description, new.content);
END;
"""


async def apply_schema(db: Database) -> None:
    """Apply the database schema."""
    await db.executescript(SCHEMA_SQL)

    cursor = await db.execute("SELECT version FROM schema_version")
    row = await cursor.fetchone()
    if row is None:
        await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    await db.commit()
