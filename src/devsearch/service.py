"""Read path: parse a query, embed its text, retrieve ranked results."""

import logging
from dataclasses import dataclass

from devsearch.embedder.provider import Embedder
from devsearch.models.document import SearchSource
from devsearch.models.search import SearchResult
from devsearch.search.parser import QueryParser
from devsearch.store.repository import SearchRepository

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    """Result-count bounds and the shortest text worth embedding."""

    default_limit: int = 20
    max_limit: int = 100
    min_query_length: int = 2


class SearchService:
    """Answers free-text queries against the search store.

    Stateless per request. Embedding and storage errors propagate to the
    caller unchanged; there is no degraded partial result.
    """

    def __init__(
        self,
        repository: SearchRepository,
        embedder: Embedder | None = None,
        parser: QueryParser | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self.repository = repository
        self.embedder = embedder
        self.parser = parser or QueryParser()
        self.config = config or SearchConfig()

    async def search(self, query_text: str, limit: int | None = None) -> list[SearchResult]:
        """Search with filters parsed out of ``query_text``."""
        if not query_text or not query_text.strip():
            return []

        parsed = self.parser.parse(query_text)
        effective_limit = self._clamp(limit)

        embedding: list[float] | None = None
        text = parsed.search_text.strip()
        if (
            self.embedder is not None
            and not parsed.lexical_only
            and len(text) >= self.config.min_query_length
        ):
            embedding = await self.embedder.embed(text)

        logger.debug(
            "Searching text=%r filters=%s semantic=%s limit=%d",
            text,
            parsed.filters.model_dump(exclude_none=True),
            embedding is not None,
            effective_limit,
        )
        return await self.repository.search(parsed, embedding, effective_limit)

    async def stats(self) -> dict[str, int]:
        """Document counts per source type plus the total."""
        counts = {source.value: await self.repository.count(source) for source in SearchSource}
        counts["total"] = sum(counts.values())
        return counts

    def _clamp(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self.config.default_limit
        return min(limit, self.config.max_limit)
