"""Tests for environment-based configuration."""

from pathlib import Path
from unittest.mock import patch

import pytest

from devsearch.config import ProjectRef, Settings, get_project_aliases, get_projects
from devsearch.errors import ConfigError


def test_defaults():
    with patch.dict("os.environ", {}, clear=True):
        settings = Settings.from_env()

    assert settings.embedding_provider == "gemini"
    assert settings.gemini_api_key is None
    assert settings.embedding_dim == 1536
    assert settings.rrf_k == 60
    assert settings.candidate_multiplier == 3
    assert settings.stale_grace_hours == 0.0
    assert settings.embedding_batch_size == 10
    assert settings.fetch_concurrency == 10
    assert settings.index_interval == 900.0
    assert settings.projects == []
    assert settings.database_url is None
    assert settings.db_path == Path("~/.local/share/devsearch/search.db").expanduser()


def test_ollama_defaults_to_its_model_width():
    with patch.dict("os.environ", {"DEVSEARCH_EMBEDDING_PROVIDER": "ollama"}, clear=True):
        settings = Settings.from_env()

    assert settings.ollama_model == "qwen3-embedding:0.6b"
    assert settings.embedding_dim == 1024


def test_values_from_env():
    env = {
        "DEVSEARCH_EMBEDDING_PROVIDER": " Ollama ",
        "DEVSEARCH_EMBEDDING_DIM": "768",
        "DEVSEARCH_RRF_K": "30",
        "DEVSEARCH_STALE_GRACE_HOURS": "1.5",
        "DEVSEARCH_ADO_URL": "https://ado.example.com/",
        "DEVSEARCH_LOG_LEVEL": "debug",
        "DEVSEARCH_DATABASE_URL": "postgresql://u:p@localhost/search",
    }
    with patch.dict("os.environ", env, clear=True):
        settings = Settings.from_env()

    assert settings.embedding_provider == "ollama"
    assert settings.embedding_dim == 768
    assert settings.rrf_k == 30
    assert settings.stale_grace_hours == 1.5
    assert settings.ado_url == "https://ado.example.com"
    assert settings.log_level == "DEBUG"
    assert settings.database_url == "postgresql://u:p@localhost/search"


def test_projects_parsing():
    with patch.dict("os.environ", {"DEVSEARCH_PROJECTS": "acme/Web; acme/Api , acme/Web,"}):
        assert get_projects() == [ProjectRef("acme", "Web"), ProjectRef("acme", "Api")]


@pytest.mark.parametrize("raw", ["acme", "/Web", "acme/ ", "acme/Web,broken"])
def test_invalid_project_entry(raw):
    with patch.dict("os.environ", {"DEVSEARCH_PROJECTS": raw}):
        with pytest.raises(ConfigError):
            get_projects()


def test_project_ref_str():
    assert str(ProjectRef("acme", "Web")) == "acme/Web"


def test_project_aliases_parsing():
    with patch.dict(
        "os.environ", {"DEVSEARCH_PROJECT_ALIASES": "GW=Gateway Platform, bad, web = Web App"}
    ):
        assert get_project_aliases() == {"gw": "Gateway Platform", "web": "Web App"}


@pytest.mark.parametrize(
    "env",
    [
        {"DEVSEARCH_EMBEDDING_DIM": "wide"},
        {"DEVSEARCH_EMBEDDING_DIM": "0"},
        {"DEVSEARCH_RRF_K": "-1"},
        {"DEVSEARCH_INDEX_INTERVAL": "soon"},
        {"DEVSEARCH_STALE_GRACE_HOURS": "-2"},
        {"DEVSEARCH_EMBEDDING_PROVIDER": "openai"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with patch.dict("os.environ", env, clear=True):
        with pytest.raises(ConfigError):
            Settings.from_env()


def test_blank_numeric_uses_default():
    with patch.dict("os.environ", {"DEVSEARCH_RRF_K": "  "}, clear=True):
        assert Settings.from_env().rrf_k == 60
