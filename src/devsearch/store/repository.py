"""Persistence and hybrid retrieval for search documents."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from devsearch.db.backend import Candidate, SearchBackend
from devsearch.db.queries import (
    DOCUMENT_COLUMNS,
    RESULT_COLUMNS,
    UPSERT_SQL,
    build_filter_clause,
    document_params,
    row_to_document,
    row_to_result,
    to_db_timestamp,
)
from devsearch.embedder.provider import is_zero_vector
from devsearch.errors import DatabaseError
from devsearch.models.document import SearchDocument, SearchSource
from devsearch.models.search import ParsedQuery, SearchFilters, SearchResult
from devsearch.search.fusion import RRF_K, order_candidates, reciprocal_rank_fusion

logger = logging.getLogger(__name__)


@runtime_checkable
class SearchRepository(Protocol):
    """Owns stored search documents and answers hybrid queries over them."""

    async def search(
        self, query: ParsedQuery, embedding: list[float] | None, limit: int
    ) -> list[SearchResult]:
        """Rank filtered documents by lexical and/or semantic relevance."""
        ...

    async def upsert_document(self, doc: SearchDocument) -> None:
        """Insert or fully overwrite one document by (source_type, source_id)."""
        ...

    async def upsert_documents(self, docs: list[SearchDocument]) -> int:
        """Upsert many documents, returning how many were written."""
        ...

    async def delete_document(self, source_type: SearchSource, source_id: str) -> bool:
        """Delete one document. Returns whether it existed."""
        ...

    async def delete_stale_documents(
        self,
        older_than: datetime,
        *,
        organization: str | None = None,
        project: str | None = None,
        source_type: SearchSource | None = None,
    ) -> int:
        """Delete documents last touched strictly before ``older_than``."""
        ...

    async def get_document(
        self, source_type: SearchSource, source_id: str
    ) -> SearchDocument | None:
        """Fetch one document by natural key."""
        ...

    async def count(self, source_type: SearchSource | None = None) -> int:
        """Count stored documents, optionally of one source type."""
        ...


class DatabaseSearchRepository:
    """SearchRepository over a SQLite or PostgreSQL SearchBackend.

    Every write stamps ``indexed_at`` with the injected clock; staleness is
    judged against that column. Storage failures surface as DatabaseError.
    """

    def __init__(
        self,
        db: SearchBackend,
        *,
        rrf_k: int = RRF_K,
        candidate_multiplier: int = 3,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize with a search backend and ranking parameters."""
        self.db = db
        self.rrf_k = rrf_k
        self.candidate_multiplier = candidate_multiplier
        self._clock = clock or (lambda: datetime.now(UTC))

    # -- Writes --

    async def upsert_document(self, doc: SearchDocument) -> None:
        """Insert or fully overwrite one document.

        All-zero vectors are stored as no embedding.
        """
        embedding = None if is_zero_vector(doc.embedding) else doc.embedding
        params = document_params(doc, self.db.encode_embedding(embedding), self._clock())
        try:
            await self.db.execute(UPSERT_SQL, params)
            await self.db.commit()
        except Exception as e:
            raise DatabaseError(f"Failed to upsert {doc.source_id}: {e}") from e

    async def upsert_documents(self, docs: list[SearchDocument]) -> int:
        """Write each document independently; failed writes are logged and skipped."""
        written = 0
        for doc in docs:
            try:
                await self.upsert_document(doc)
            except DatabaseError:
                logger.warning("Skipping document %s", doc.source_id, exc_info=True)
                continue
            written += 1
        return written

    async def delete_document(self, source_type: SearchSource, source_id: str) -> bool:
        """Delete one document by natural key."""
        try:
            cursor = await self.db.execute(
                "DELETE FROM search_documents WHERE source_type = ? AND source_id = ?",
                (source_type.value, source_id),
            )
            await self.db.commit()
        except Exception as e:
            raise DatabaseError(f"Failed to delete {source_id}: {e}") from e
        return cursor.rowcount > 0

    async def delete_stale_documents(
        self,
        older_than: datetime,
        *,
        organization: str | None = None,
        project: str | None = None,
        source_type: SearchSource | None = None,
    ) -> int:
        """Delete documents whose ``indexed_at`` is strictly before ``older_than``.

        Scoping to an organization and/or project keeps one project's sync
        cycle from deleting another project's documents; ``source_type``
        limits the sweep to one kind of record.
        """
        sql = "DELETE FROM search_documents WHERE indexed_at < ?"
        params: list[object] = [to_db_timestamp(older_than)]
        if organization is not None:
            sql += " AND organization = ?"
            params.append(organization)
        if project is not None:
            sql += " AND project = ?"
            params.append(project)
        if source_type is not None:
            sql += " AND source_type = ?"
            params.append(source_type.value)
        try:
            cursor = await self.db.execute(sql, params)
            await self.db.commit()
        except Exception as e:
            raise DatabaseError(f"Failed to delete stale documents: {e}") from e
        deleted = max(cursor.rowcount, 0)
        if deleted:
            logger.info("Deleted %d stale documents", deleted)
        return deleted

    # -- Reads --

    async def get_document(
        self, source_type: SearchSource, source_id: str
    ) -> SearchDocument | None:
        """Fetch one document, including its embedding, by natural key."""
        try:
            cursor = await self.db.execute(
                f"SELECT {', '.join(DOCUMENT_COLUMNS)} FROM search_documents"
                " WHERE source_type = ? AND source_id = ?",
                (source_type.value, source_id),
            )
            row = await cursor.fetchone()
        except Exception as e:
            raise DatabaseError(f"Failed to load {source_id}: {e}") from e
        if row is None:
            return None
        return row_to_document(row, self.db.decode_embedding(row["embedding"]))

    async def count(self, source_type: SearchSource | None = None) -> int:
        """Count stored documents, optionally of one source type."""
        sql = "SELECT COUNT(*) FROM search_documents"
        params: tuple[object, ...] = ()
        if source_type is not None:
            sql += " WHERE source_type = ?"
            params = (source_type.value,)
        try:
            cursor = await self.db.execute(sql, params)
            row = await cursor.fetchone()
        except Exception as e:
            raise DatabaseError(f"Failed to count documents: {e}") from e
        return int(row[0]) if row else 0

    async def search(
        self, query: ParsedQuery, embedding: list[float] | None, limit: int
    ) -> list[SearchResult]:
        """Hybrid retrieval: lexical and semantic rankings fused by RRF.

        Both rankings see the same filtered document set. A single available
        ranking is returned in its own order with its native score. With no
        text and no embedding, filtered documents are listed newest first.
        """
        if limit <= 0:
            return []

        text = query.search_text.strip()
        vector = None if is_zero_vector(embedding) else embedding
        fetch_limit = limit * self.candidate_multiplier

        try:
            scored: list[tuple[Candidate, float]]
            if text and vector is not None:
                lexical = await self.db.fts_search(text, query.filters, limit=fetch_limit)
                semantic = await self.db.vector_search(vector, query.filters, limit=fetch_limit)
                scored = reciprocal_rank_fusion([lexical, semantic], k=self.rrf_k)
            elif text:
                lexical = await self.db.fts_search(text, query.filters, limit=fetch_limit)
                scored = [(c, c.score) for c in order_candidates(lexical)]
            elif vector is not None:
                semantic = await self.db.vector_search(vector, query.filters, limit=fetch_limit)
                scored = [(c, c.score) for c in order_candidates(semantic)]
            else:
                scored = [(c, 0.0) for c in await self._browse(query.filters, limit)]

            return await self._load_results(scored[:limit])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Search failed: {e}") from e

    async def _browse(self, filters: SearchFilters, limit: int) -> list[Candidate]:
        where, params = build_filter_clause(filters)
        cursor = await self.db.execute(
            "SELECT d.id, d.updated_at, d.source_id FROM search_documents d"
            f" WHERE 1 = 1{where}"
            " ORDER BY d.updated_at DESC, d.source_id LIMIT ?",
            [*params, limit],
        )
        rows = await cursor.fetchall()
        return [Candidate(row[0], 0.0, row[1], row[2]) for row in rows]

    async def _load_results(self, scored: list[tuple[Candidate, float]]) -> list[SearchResult]:
        if not scored:
            return []
        ids = [c.doc_id for c, _ in scored]
        cursor = await self.db.execute(
            f"SELECT {', '.join(RESULT_COLUMNS)} FROM search_documents"
            f" WHERE id IN ({', '.join('?' for _ in ids)})",
            ids,
        )
        rows = {row["id"]: row for row in await cursor.fetchall()}
        results: list[SearchResult] = []
        for candidate, score in scored:
            row = rows.get(candidate.doc_id)
            # Deleted between ranking and load
            if row is None:
                continue
            results.append(row_to_result(row, score))
        return results
