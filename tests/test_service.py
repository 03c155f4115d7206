"""Tests for SearchService: parsing, embedding decisions and limits."""

import pytest

from devsearch.errors import DatabaseError, EmbeddingError
from devsearch.models.document import SearchSource
from devsearch.search.parser import QueryParser
from devsearch.service import SearchConfig, SearchService
from tests.fakes import MockEmbedder, make_document


class RecordingRepository:
    """Captures what the service asks the repository for."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def search(self, query, embedding, limit):
        if self.fail:
            raise DatabaseError("store offline")
        self.calls.append((query, embedding, limit))
        return []

    async def count(self, source_type=None):
        return {SearchSource.PULL_REQUEST: 3, SearchSource.WORK_ITEM: 4}[source_type]


@pytest.mark.asyncio
async def test_lexical_match_without_embedder(repository):
    """With no embedding provider, a plain keyword still finds the document."""
    await repository.upsert_document(
        make_document("acme/Web/1", "Authentication flow", description="OAuth redirect")
    )
    service = SearchService(repository)

    results = await service.search("authentication")

    assert len(results) == 1
    assert results[0].source_id == "acme/Web/1"
    assert results[0].score > 0


@pytest.mark.asyncio
async def test_end_to_end_hybrid(repository, embedder):
    text = "Payment retries"
    doc = make_document("acme/Web/1", text, embedding=await embedder.embed(text))
    await repository.upsert_document(doc)
    await repository.upsert_document(make_document("acme/Web/2", "Unrelated chore"))
    service = SearchService(repository, embedder)

    results = await service.search("payment retries bugs")

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_filter_only_query_lists_matches(repository):
    await repository.upsert_document(make_document("acme/Web/1", "One", priority=1))
    await repository.upsert_document(make_document("acme/Web/2", "Two", priority=2))
    service = SearchService(repository)

    results = await service.search("priority 1 bugs")

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", "\n\t"])
async def test_blank_query_returns_nothing(query):
    repo = RecordingRepository()
    service = SearchService(repo, MockEmbedder())
    assert await service.search(query) == []
    assert repo.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("requested", "effective"),
    [(None, 20), (0, 20), (-5, 20), (7, 7), (100, 100), (500, 100)],
)
async def test_limit_is_clamped(requested, effective):
    repo = RecordingRepository()
    service = SearchService(repo)

    await service.search("deploy", requested)

    assert repo.calls[0][2] == effective


@pytest.mark.asyncio
async def test_custom_limits():
    repo = RecordingRepository()
    service = SearchService(repo, config=SearchConfig(default_limit=5, max_limit=10))

    await service.search("deploy")
    await service.search("deploy", 50)

    assert [call[2] for call in repo.calls] == [5, 10]


@pytest.mark.asyncio
async def test_search_text_is_embedded():
    repo = RecordingRepository()
    embedder = MockEmbedder()
    service = SearchService(repo, embedder)

    await service.search("PRs about caching")

    assert embedder.calls == ["caching"]
    query, embedding, _ = repo.calls[0]
    assert query.search_text == "caching"
    assert query.filters.source_type == SearchSource.PULL_REQUEST
    assert embedding is not None


@pytest.mark.asyncio
async def test_quoted_phrase_skips_embedding():
    repo = RecordingRepository()
    embedder = MockEmbedder()
    service = SearchService(repo, embedder)

    await service.search('"connection reset"')

    assert embedder.calls == []
    assert repo.calls[0][1] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["priority 1 bugs", "PRs x"])
async def test_short_or_empty_text_skips_embedding(query):
    repo = RecordingRepository()
    embedder = MockEmbedder()
    service = SearchService(repo, embedder)

    await service.search(query)

    assert embedder.calls == []
    assert repo.calls[0][1] is None


@pytest.mark.asyncio
async def test_aliases_come_from_parser():
    repo = RecordingRepository()
    service = SearchService(repo, parser=QueryParser({"gw": "Gateway"}))

    await service.search("gw outage")

    assert repo.calls[0][0].filters.project == "Gateway"


@pytest.mark.asyncio
async def test_embedding_error_propagates():
    service = SearchService(RecordingRepository(), MockEmbedder(fail_on=("outage",)))
    with pytest.raises(EmbeddingError):
        await service.search("outage report")


@pytest.mark.asyncio
async def test_storage_error_propagates():
    service = SearchService(RecordingRepository(fail=True))
    with pytest.raises(DatabaseError):
        await service.search("outage report")


@pytest.mark.asyncio
async def test_stats_counts_per_source():
    service = SearchService(RecordingRepository())
    assert await service.stats() == {"pr": 3, "work_item": 4, "total": 7}


@pytest.mark.asyncio
async def test_stats_on_real_store(repository):
    await repository.upsert_document(make_document("acme/Web/1", "One"))
    await repository.upsert_document(
        make_document("acme/Web/2", "Two", source_type=SearchSource.PULL_REQUEST)
    )
    service = SearchService(repository)
    assert await service.stats() == {"pr": 1, "work_item": 1, "total": 2}
