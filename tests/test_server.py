"""Tests for server wiring and provider selection."""

from unittest.mock import patch

import pytest
from fastmcp import FastMCP

from devsearch.config import Settings
from devsearch.embedder import GeminiEmbedder, OllamaEmbedder, create_embedder
from devsearch.server import create_server, lifespan
from devsearch.service import SearchService


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(db_path=tmp_path / "search.db", **overrides)


def test_create_embedder_gemini(tmp_path):
    embedder = create_embedder(_settings(tmp_path, gemini_api_key="k", embedding_dim=768))
    assert isinstance(embedder, GeminiEmbedder)
    assert embedder.dimensions == 768


def test_create_embedder_gemini_without_key(tmp_path):
    """Missing API key degrades to lexical-only search."""
    assert create_embedder(_settings(tmp_path)) is None


def test_create_embedder_ollama(tmp_path):
    embedder = create_embedder(_settings(tmp_path, embedding_provider="ollama"))
    assert isinstance(embedder, OllamaEmbedder)


def test_create_embedder_none(tmp_path):
    assert create_embedder(_settings(tmp_path, embedding_provider="none")) is None


def test_create_server():
    server = create_server()
    assert isinstance(server, FastMCP)
    assert server.name == "devsearch"


@pytest.mark.asyncio
async def test_lifespan_without_indexing(tmp_path):
    env = {
        "DEVSEARCH_DB_PATH": str(tmp_path / "data" / "search.db"),
        "DEVSEARCH_EMBEDDING_PROVIDER": "none",
    }
    with patch.dict("os.environ", env, clear=True):
        async with lifespan(create_server()) as state:
            assert isinstance(state["service"], SearchService)
            assert state["worker"] is None
            assert state["embedder"] is None
            assert await state["service"].search("anything") == []

    assert (tmp_path / "data" / "search.db").exists()


@pytest.mark.asyncio
async def test_lifespan_starts_and_stops_worker(tmp_path):
    env = {
        "DEVSEARCH_DB_PATH": str(tmp_path / "search.db"),
        "DEVSEARCH_EMBEDDING_PROVIDER": "none",
        "DEVSEARCH_ADO_PAT": "pat",
        "DEVSEARCH_PROJECTS": "acme/Web",
        "DEVSEARCH_INDEX_INTERVAL": "3600",
    }
    with patch.dict("os.environ", env, clear=True):
        async with lifespan(create_server()) as state:
            worker = state["worker"]
            assert worker is not None
            assert worker.running

    assert not worker.running
