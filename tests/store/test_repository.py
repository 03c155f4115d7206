"""Tests for DatabaseSearchRepository: upsert, staleness and hybrid retrieval."""

from datetime import timedelta

import pytest

from devsearch.errors import DatabaseError
from devsearch.models.document import SearchSource
from devsearch.models.search import ParsedQuery, SearchFilters
from tests.fakes import BASE_TIME, make_document


def _query(text: str = "", **filters) -> ParsedQuery:
    return ParsedQuery(search_text=text, filters=SearchFilters(**filters))


# --- upsert ---


@pytest.mark.asyncio
async def test_upsert_same_key_overwrites(repository):
    await repository.upsert_document(make_document("acme/Web/1", "First title", priority=1))
    await repository.upsert_document(
        make_document("acme/Web/1", "Second title", priority=3, status="Closed")
    )

    assert await repository.count() == 1
    doc = await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/1")
    assert doc is not None
    assert doc.title == "Second title"
    assert doc.priority == 3
    assert doc.status == "Closed"


@pytest.mark.asyncio
async def test_upsert_overwrite_refreshes_full_text_index(repository):
    await repository.upsert_document(make_document("acme/Web/1", "legacy payment gateway"))
    await repository.upsert_document(make_document("acme/Web/1", "modern checkout flow"))

    assert await repository.search(_query("legacy"), None, 10) == []
    results = await repository.search(_query("checkout"), None, 10)
    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_same_source_id_different_type_is_distinct(repository):
    await repository.upsert_document(make_document("acme/Web/1", "A work item"))
    await repository.upsert_document(
        make_document("acme/Web/1", "A pull request", source_type=SearchSource.PULL_REQUEST)
    )

    assert await repository.count() == 2
    assert await repository.count(SearchSource.PULL_REQUEST) == 1
    assert await repository.count(SearchSource.WORK_ITEM) == 1


@pytest.mark.asyncio
async def test_get_document_round_trips_fields(repository):
    doc = make_document("acme/Web/5", "Round trip", embedding=[0.1, 0.2, 0.3, 0.4])
    doc = doc.model_copy(update={"linked_work_items": [10, 11], "parent_id": 3})
    await repository.upsert_document(doc)

    loaded = await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/5")
    assert loaded is not None
    assert loaded.linked_work_items == [10, 11]
    assert loaded.parent_id == 3
    assert loaded.created_at == BASE_TIME
    assert loaded.embedding == pytest.approx([0.1, 0.2, 0.3, 0.4])


@pytest.mark.asyncio
async def test_zero_vector_stored_as_no_embedding(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Empty", embedding=[0.0] * 4))

    loaded = await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/1")
    assert loaded is not None
    assert loaded.embedding is None


@pytest.mark.asyncio
async def test_get_missing_document(repository):
    assert await repository.get_document(SearchSource.PULL_REQUEST, "nope/1") is None


@pytest.mark.asyncio
async def test_upsert_documents_counts_writes(repository):
    docs = [make_document(f"acme/Web/{i}", f"Doc {i}") for i in range(1, 4)]
    assert await repository.upsert_documents(docs) == 3
    assert await repository.count() == 3


@pytest.mark.asyncio
async def test_delete_document(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Gone soon"))

    assert await repository.delete_document(SearchSource.WORK_ITEM, "acme/Web/1") is True
    assert await repository.delete_document(SearchSource.WORK_ITEM, "acme/Web/1") is False
    assert await repository.count() == 0
    assert await repository.search(_query("gone"), None, 10) == []


# --- staleness ---


@pytest.mark.asyncio
async def test_delete_stale_is_strictly_before_cutoff(repository, clock):
    await repository.upsert_document(make_document("acme/Web/1", "Oldest"))
    middle = clock.advance(hours=1)
    await repository.upsert_document(make_document("acme/Web/2", "Middle"))
    clock.advance(hours=1)
    await repository.upsert_document(make_document("acme/Web/3", "Newest"))

    deleted = await repository.delete_stale_documents(middle)

    assert deleted == 1
    assert await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/1") is None
    assert await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/2") is not None
    assert await repository.get_document(SearchSource.WORK_ITEM, "acme/Web/3") is not None


@pytest.mark.asyncio
async def test_delete_stale_before_everything_deletes_nothing(repository, clock):
    await repository.upsert_document(make_document("acme/Web/1", "Kept"))
    assert await repository.delete_stale_documents(clock.now - timedelta(seconds=1)) == 0
    assert await repository.count() == 1


@pytest.mark.asyncio
async def test_delete_stale_after_everything_deletes_all(repository, clock):
    await repository.upsert_document(make_document("acme/Web/1", "One"))
    await repository.upsert_document(make_document("acme/Web/2", "Two"))
    assert await repository.delete_stale_documents(clock.now + timedelta(microseconds=1)) == 2
    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_delete_stale_scoped_to_project(repository, clock):
    await repository.upsert_document(make_document("acme/Web/1", "Web doc", project="Web"))
    await repository.upsert_document(make_document("acme/Api/2", "Api doc", project="Api"))
    clock.advance(hours=1)

    deleted = await repository.delete_stale_documents(
        clock.now, organization="acme", project="Web"
    )

    assert deleted == 1
    assert await repository.get_document(SearchSource.WORK_ITEM, "acme/Api/2") is not None


@pytest.mark.asyncio
async def test_delete_stale_scoped_to_source_type(repository, clock):
    await repository.upsert_document(
        make_document("acme/Web/1", "Old PR", source_type=SearchSource.PULL_REQUEST)
    )
    await repository.upsert_document(make_document("acme/Web/2", "Old item"))
    clock.advance(hours=1)

    deleted = await repository.delete_stale_documents(
        clock.now, organization="acme", project="Web", source_type=SearchSource.PULL_REQUEST
    )

    assert deleted == 1
    assert await repository.count(SearchSource.WORK_ITEM) == 1
    assert await repository.count(SearchSource.PULL_REQUEST) == 0


@pytest.mark.asyncio
async def test_reupsert_refreshes_last_touch(repository, clock):
    await repository.upsert_document(make_document("acme/Web/1", "Touched again"))
    clock.advance(hours=1)
    cutoff = clock.now
    await repository.upsert_document(make_document("acme/Web/1", "Touched again"))

    assert await repository.delete_stale_documents(cutoff) == 0


# --- lexical ranking ---


@pytest.mark.asyncio
async def test_lexical_only_orders_by_descending_score(repository):
    await repository.upsert_document(
        make_document(
            "acme/Web/1",
            "Refactor settings page",
            content="Touches the authentication middleware among many other unrelated modules",
        )
    )
    await repository.upsert_document(make_document("acme/Web/2", "Authentication token refresh"))
    await repository.upsert_document(make_document("acme/Web/3", "Unrelated cleanup"))

    results = await repository.search(_query("authentication"), None, 10)

    assert [r.source_id for r in results] == ["acme/Web/2", "acme/Web/1"]
    assert results[0].score > results[1].score > 0


@pytest.mark.asyncio
async def test_lexical_search_survives_query_syntax(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Null pointer in C++ parser"))

    results = await repository.search(_query('C++ "null pointer" parser*'), None, 10)

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_lexical_stemming_matches_word_forms(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Deploying the new runners"))

    results = await repository.search(_query("deploy runner"), None, 10)

    assert len(results) == 1


# --- semantic ranking ---


@pytest.mark.asyncio
async def test_semantic_only_orders_by_similarity(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Far", embedding=[0, 1, 0, 0]))
    await repository.upsert_document(
        make_document("acme/Web/2", "Exact", embedding=[1, 0, 0, 0])
    )
    await repository.upsert_document(
        make_document("acme/Web/3", "Close", embedding=[0.8, 0.6, 0, 0])
    )
    await repository.upsert_document(make_document("acme/Web/4", "No vector"))

    results = await repository.search(_query(""), [1.0, 0.0, 0.0, 0.0], 10)

    assert [r.source_id for r in results] == ["acme/Web/2", "acme/Web/3", "acme/Web/1"]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert results[1].score == pytest.approx(0.8, abs=1e-5)
    assert results[2].score == pytest.approx(0.0, abs=1e-5)


@pytest.mark.asyncio
async def test_zero_query_embedding_is_ignored(repository):
    await repository.upsert_document(
        make_document("acme/Web/1", "Vectorized", embedding=[1, 0, 0, 0])
    )

    results = await repository.search(_query("vectorized"), [0.0] * 4, 10)

    assert len(results) == 1
    assert results[0].score > 0


# --- fusion ---


@pytest.mark.asyncio
async def test_fused_score_rewards_agreement(repository):
    await repository.upsert_document(
        make_document("acme/Web/1", "Cache invalidation bug", embedding=[1, 0, 0, 0])
    )
    await repository.upsert_document(
        make_document("acme/Web/2", "Cache warmup", embedding=[0, 1, 0, 0])
    )
    await repository.upsert_document(
        make_document("acme/Web/3", "Slow dashboard", embedding=[0.9, 0.1, 0, 0])
    )

    results = await repository.search(_query("cache invalidation"), [1.0, 0.0, 0.0, 0.0], 10)

    # Lexical: only 1 matches both terms. Semantic: 1, 3, 2.
    assert results[0].source_id == "acme/Web/1"
    assert results[0].score == pytest.approx(2 / 61)


@pytest.mark.asyncio
async def test_fused_ordering_is_deterministic_with_tie_break(repository):
    newer = BASE_TIME + timedelta(days=1)
    for source_id, updated_at in [
        ("acme/Web/3", BASE_TIME),
        ("acme/Web/1", BASE_TIME),
        ("acme/Web/2", newer),
    ]:
        await repository.upsert_document(
            make_document(
                source_id, "Identical title", embedding=[1, 1, 0, 0], updated_at=updated_at
            )
        )

    orders = [
        [r.source_id for r in await repository.search(_query("identical"), [1.0, 1.0, 0, 0], 10)]
        for _ in range(3)
    ]

    assert orders[0] == ["acme/Web/2", "acme/Web/1", "acme/Web/3"]
    assert orders[0] == orders[1] == orders[2]


@pytest.mark.asyncio
async def test_limit_bounds_fused_results(repository):
    for i in range(1, 8):
        await repository.upsert_document(
            make_document(f"acme/Web/{i}", f"Release notes {i}", embedding=[1, i, 0, 0])
        )

    results = await repository.search(_query("release"), [1.0, 0.0, 0.0, 0.0], 3)

    assert len(results) == 3


@pytest.mark.asyncio
async def test_non_positive_limit_returns_nothing(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Anything"))
    assert await repository.search(_query("anything"), None, 0) == []


# --- filters ---


@pytest.mark.asyncio
async def test_filters_apply_to_both_rankings(repository):
    await repository.upsert_document(
        make_document("acme/Web/1", "Login timeout", project="Web", embedding=[1, 0, 0, 0])
    )
    await repository.upsert_document(
        make_document("acme/Api/2", "Login timeout", project="Api", embedding=[1, 0, 0, 0])
    )

    results = await repository.search(_query("login", project="web"), [1.0, 0, 0, 0], 10)

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_status_filter_matches_group_spellings(repository):
    await repository.upsert_document(make_document("acme/Web/1", "Crash report", status="Done"))
    await repository.upsert_document(make_document("acme/Web/2", "Crash report", status="Active"))

    results = await repository.search(_query("crash", status=["completed"]), None, 10)

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_author_filter_is_case_insensitive_substring(repository):
    await repository.upsert_document(
        make_document(
            "acme/Web/1",
            "Bump version",
            source_type=SearchSource.PULL_REQUEST,
            author_name="Alice Smith",
        )
    )
    await repository.upsert_document(
        make_document(
            "acme/Web/2",
            "Bump version",
            source_type=SearchSource.PULL_REQUEST,
            author_name="Bob Jones",
        )
    )

    results = await repository.search(_query("bump", author="alice"), None, 10)

    assert [r.source_id for r in results] == ["acme/Web/1"]


@pytest.mark.asyncio
async def test_filter_only_query_lists_newest_first(repository):
    await repository.upsert_document(
        make_document("acme/Web/1", "Old bug", priority=1, updated_at=BASE_TIME)
    )
    await repository.upsert_document(
        make_document("acme/Web/2", "New bug", priority=1, updated_at=BASE_TIME + timedelta(1))
    )
    await repository.upsert_document(make_document("acme/Web/3", "Other", priority=3))

    results = await repository.search(_query(priority=[1]), None, 10)

    assert [r.source_id for r in results] == ["acme/Web/2", "acme/Web/1"]
    assert all(r.score == 0.0 for r in results)


@pytest.mark.asyncio
async def test_date_filter(repository):
    await repository.upsert_document(
        make_document("acme/Web/1", "Migration", created_at=BASE_TIME - timedelta(days=30))
    )
    await repository.upsert_document(make_document("acme/Web/2", "Migration"))

    results = await repository.search(
        _query("migration", created_after=BASE_TIME - timedelta(days=7)), None, 10
    )

    assert [r.source_id for r in results] == ["acme/Web/2"]


@pytest.mark.asyncio
async def test_result_projection(repository):
    await repository.upsert_document(
        make_document("acme/Web/9", "Projected", description="Details", priority=2)
    )

    (result,) = await repository.search(_query("projected"), None, 10)

    assert result.external_id == 9
    assert result.source_type == SearchSource.WORK_ITEM
    assert result.description == "Details"
    assert result.priority == 2
    assert result.url == "https://example.test/acme/Web/9"
    assert result.updated_at == BASE_TIME


# --- failures ---


@pytest.mark.asyncio
async def test_storage_failure_raises_database_error(repository, db):
    await db.executescript("DROP TABLE search_documents")

    with pytest.raises(DatabaseError):
        await repository.count()
    with pytest.raises(DatabaseError):
        await repository.search(_query("anything"), None, 10)
    with pytest.raises(DatabaseError):
        await repository.upsert_document(make_document("acme/Web/1", "Nowhere"))


@pytest.mark.asyncio
async def test_batch_upsert_skips_failed_writes(repository, db):
    await db.executescript(
        """
        CREATE TRIGGER reject_poison BEFORE INSERT ON search_documents
        WHEN new.title = 'poison'
        BEGIN SELECT RAISE(ABORT, 'rejected'); END;
        """
    )
    docs = [
        make_document("acme/Web/1", "fine"),
        make_document("acme/Web/2", "poison"),
        make_document("acme/Web/3", "also fine"),
    ]

    assert await repository.upsert_documents(docs) == 2
    assert await repository.count() == 2
