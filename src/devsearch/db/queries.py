"""Dialect-neutral SQL helpers shared by the backends and the repository."""

import json
from datetime import UTC, datetime
from typing import Any

from devsearch.db.backend import Row
from devsearch.models.document import SearchDocument, SearchSource
from devsearch.models.search import SearchFilters, SearchResult, expand_statuses

DOCUMENT_COLUMNS = (
    "source_type",
    "source_id",
    "external_id",
    "title",
    "description",
    "content",
    "organization",
    "project",
    "repo_name",
    "status",
    "author_id",
    "author_name",
    "assigned_to_id",
    "assigned_to_name",
    "priority",
    "item_type",
    "is_draft",
    "created_at",
    "updated_at",
    "closed_at",
    "url",
    "parent_id",
    "linked_work_items",
    "embedding",
    "indexed_at",
)

RESULT_COLUMNS = (
    "id",
    "source_type",
    "source_id",
    "external_id",
    "title",
    "description",
    "status",
    "priority",
    "item_type",
    "author_name",
    "url",
    "created_at",
    "updated_at",
)

# Every column except the natural key is overwritten on conflict.
UPSERT_SQL = (
    "INSERT INTO search_documents ("
    + ", ".join(DOCUMENT_COLUMNS)
    + ") VALUES ("
    + ", ".join("?" for _ in DOCUMENT_COLUMNS)
    + ") ON CONFLICT (source_type, source_id) DO UPDATE SET "
    + ", ".join(f"{col} = excluded.{col}" for col in DOCUMENT_COLUMNS[2:])
)


def to_db_timestamp(value: datetime | None) -> str | None:
    """Format a datetime as fixed-width UTC ISO-8601 text.

    Fixed width keeps lexicographic order equal to chronological order.
    Naive datetimes are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_timestamp(raw: Any) -> datetime | None:
    """Parse a stored timestamp back to an aware datetime."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(raw))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def document_params(doc: SearchDocument, embedding: Any, indexed_at: datetime) -> list[Any]:
    """Positional parameters for UPSERT_SQL, in DOCUMENT_COLUMNS order."""
    return [
        doc.source_type.value,
        doc.source_id,
        doc.external_id,
        doc.title,
        doc.description,
        doc.content,
        doc.organization,
        doc.project,
        doc.repo_name,
        doc.status,
        doc.author_id,
        doc.author_name,
        doc.assigned_to_id,
        doc.assigned_to_name,
        doc.priority,
        doc.item_type,
        int(doc.is_draft),
        to_db_timestamp(doc.created_at),
        to_db_timestamp(doc.updated_at),
        to_db_timestamp(doc.closed_at),
        doc.url,
        doc.parent_id,
        json.dumps(doc.linked_work_items),
        embedding,
        to_db_timestamp(indexed_at),
    ]


def row_to_document(row: Row, embedding: list[float] | None = None) -> SearchDocument:
    """Convert a search_documents row to a SearchDocument."""
    created_at = from_db_timestamp(row["created_at"])
    updated_at = from_db_timestamp(row["updated_at"])
    if created_at is None or updated_at is None:
        raise ValueError(f"Document {row['source_id']} is missing timestamps")
    return SearchDocument(
        source_type=SearchSource(row["source_type"]),
        source_id=row["source_id"],
        external_id=row["external_id"],
        title=row["title"],
        description=row["description"],
        content=row["content"],
        organization=row["organization"],
        project=row["project"],
        repo_name=row["repo_name"],
        status=row["status"],
        author_id=row["author_id"],
        author_name=row["author_name"],
        assigned_to_id=row["assigned_to_id"],
        assigned_to_name=row["assigned_to_name"],
        priority=row["priority"],
        item_type=row["item_type"],
        is_draft=bool(row["is_draft"]),
        created_at=created_at,
        updated_at=updated_at,
        closed_at=from_db_timestamp(row["closed_at"]),
        url=row["url"] or "",
        parent_id=row["parent_id"],
        linked_work_items=json.loads(row["linked_work_items"] or "[]"),
        embedding=embedding,
    )


def row_to_result(row: Row, score: float) -> SearchResult:
    """Convert a narrowed search_documents row plus a fused score to a SearchResult."""
    return SearchResult(
        id=row["id"],
        source_type=SearchSource(row["source_type"]),
        source_id=row["source_id"],
        external_id=row["external_id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        item_type=row["item_type"],
        author_name=row["author_name"],
        url=row["url"] or "",
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        score=score,
    )


def build_filter_clause(filters: SearchFilters, alias: str = "d") -> tuple[str, list[Any]]:
    """Translate SearchFilters into an AND-joined WHERE fragment with ``?`` params.

    Returns ``("", [])`` when no filter is set; otherwise the fragment starts
    with `` AND `` so it can be appended to an existing WHERE clause.
    """
    col = f"{alias}." if alias else ""
    clauses: list[str] = []
    params: list[Any] = []

    if filters.source_type is not None:
        clauses.append(f"{col}source_type = ?")
        params.append(filters.source_type.value)
    if filters.organization:
        clauses.append(f"LOWER({col}organization) = ?")
        params.append(filters.organization.lower())
    if filters.project:
        clauses.append(f"LOWER({col}project) = ?")
        params.append(filters.project.lower())
    if filters.repo_name:
        clauses.append(f"LOWER({col}repo_name) = ?")
        params.append(filters.repo_name.lower())
    if filters.status:
        statuses = expand_statuses(filters.status)
        clauses.append(f"LOWER({col}status) IN ({_placeholders(statuses)})")
        params.extend(statuses)
    if filters.priority:
        clauses.append(f"{col}priority IN ({_placeholders(filters.priority)})")
        params.extend(filters.priority)
    if filters.item_type:
        item_types = [t.lower() for t in filters.item_type]
        clauses.append(f"LOWER({col}item_type) IN ({_placeholders(item_types)})")
        params.extend(item_types)
    if filters.author:
        clauses.append(f"(LOWER({col}author_name) LIKE ? OR {col}author_id = ?)")
        params.extend([f"%{filters.author.lower()}%", filters.author])
    if filters.assigned_to:
        clauses.append(f"(LOWER({col}assigned_to_name) LIKE ? OR {col}assigned_to_id = ?)")
        params.extend([f"%{filters.assigned_to.lower()}%", filters.assigned_to])
    if filters.is_draft is not None:
        clauses.append(f"{col}is_draft = ?")
        params.append(int(filters.is_draft))
    if filters.created_after is not None:
        clauses.append(f"{col}created_at >= ?")
        params.append(to_db_timestamp(filters.created_after))
    if filters.created_before is not None:
        clauses.append(f"{col}created_at < ?")
        params.append(to_db_timestamp(filters.created_before))
    if filters.updated_after is not None:
        clauses.append(f"{col}updated_at >= ?")
        params.append(to_db_timestamp(filters.updated_after))

    if not clauses:
        return "", []
    return " AND " + " AND ".join(clauses), params


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)
