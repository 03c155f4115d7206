"""Environment-variable-based configuration.

Each setting has a getter that reads its variable. ``Settings.from_env()``
calls them once at startup; everything downstream receives the resolved
``Settings`` value instead of touching the environment.
"""

import os
import re
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict

from devsearch.errors import ConfigError


class ProjectRef(NamedTuple):
    """An upstream organization/project pair to index."""

    organization: str
    project: str

    def __str__(self) -> str:
        return f"{self.organization}/{self.project}"


def get_db_path() -> Path:
    """Return the SQLite database path from DEVSEARCH_DB_PATH."""
    raw = os.environ.get("DEVSEARCH_DB_PATH", "~/.local/share/devsearch/search.db")
    return Path(raw).expanduser()


def get_database_url() -> str | None:
    """Return the database URL from DEVSEARCH_DATABASE_URL, if set."""
    return os.environ.get("DEVSEARCH_DATABASE_URL") or None


def get_embedding_provider() -> str:
    """Return the embedding provider name from DEVSEARCH_EMBEDDING_PROVIDER."""
    return os.environ.get("DEVSEARCH_EMBEDDING_PROVIDER", "gemini").strip().lower()


def get_gemini_api_key() -> str | None:
    """Return the Gemini API key from GEMINI_API_KEY, if set."""
    return os.environ.get("GEMINI_API_KEY") or None


def get_gemini_model() -> str:
    """Return the Gemini embedding model from DEVSEARCH_GEMINI_MODEL."""
    return os.environ.get("DEVSEARCH_GEMINI_MODEL", "gemini-embedding-001")


def get_gemini_url() -> str:
    """Return the Gemini API base URL from DEVSEARCH_GEMINI_URL."""
    return os.environ.get(
        "DEVSEARCH_GEMINI_URL", "https://generativelanguage.googleapis.com/v1beta"
    )


def get_ollama_url() -> str:
    """Return the Ollama API URL from DEVSEARCH_OLLAMA_URL."""
    return os.environ.get("DEVSEARCH_OLLAMA_URL", "http://localhost:11434")


def get_ollama_model() -> str:
    """Return the Ollama embedding model from DEVSEARCH_OLLAMA_MODEL."""
    return os.environ.get("DEVSEARCH_OLLAMA_MODEL", "qwen3-embedding:0.6b")


# Default output width per provider; qwen3-embedding:0.6b tops out at 1024
_DEFAULT_EMBEDDING_DIMS = {"gemini": 1536, "ollama": 1024}


def get_embedding_dim(provider: str = "gemini") -> int:
    """Return the embedding vector dimensions from DEVSEARCH_EMBEDDING_DIM.

    Unset, the width follows the provider's default model.
    """
    return _int_env("DEVSEARCH_EMBEDDING_DIM", _DEFAULT_EMBEDDING_DIMS.get(provider, 1536))


def get_embedding_timeout() -> float:
    """Return the embedding request timeout in seconds from DEVSEARCH_EMBEDDING_TIMEOUT."""
    return _float_env("DEVSEARCH_EMBEDDING_TIMEOUT", 30.0)


def get_ado_url() -> str:
    """Return the Azure DevOps base URL from DEVSEARCH_ADO_URL."""
    return os.environ.get("DEVSEARCH_ADO_URL", "https://dev.azure.com").rstrip("/")


def get_ado_pat() -> str | None:
    """Return the Azure DevOps personal access token from DEVSEARCH_ADO_PAT."""
    return os.environ.get("DEVSEARCH_ADO_PAT") or None


def get_projects() -> list[ProjectRef]:
    """Return the projects to index from DEVSEARCH_PROJECTS.

    Entries are ``org/project`` separated by commas or semicolons.
    """
    raw = os.environ.get("DEVSEARCH_PROJECTS", "")
    projects: list[ProjectRef] = []
    for item in re.split(r"[,;]", raw):
        item = item.strip()
        if not item:
            continue
        org, sep, project = item.partition("/")
        if not sep or not org.strip() or not project.strip():
            raise ConfigError(f"Invalid DEVSEARCH_PROJECTS entry {item!r}, expected org/project")
        ref = ProjectRef(org.strip(), project.strip())
        if ref not in projects:
            projects.append(ref)
    return projects


def get_project_aliases() -> dict[str, str]:
    """Return query-parser project aliases from DEVSEARCH_PROJECT_ALIASES.

    Format: ``alias=Full Project Name`` pairs separated by commas.
    """
    raw = os.environ.get("DEVSEARCH_PROJECT_ALIASES", "")
    aliases: dict[str, str] = {}
    for item in raw.split(","):
        alias, sep, name = item.partition("=")
        if sep and alias.strip() and name.strip():
            aliases[alias.strip().lower()] = name.strip()
    return aliases


def get_index_interval() -> float:
    """Return the index worker tick interval in seconds from DEVSEARCH_INDEX_INTERVAL."""
    return _float_env("DEVSEARCH_INDEX_INTERVAL", 900.0)


def get_rrf_k() -> int:
    """Return the RRF smoothing constant from DEVSEARCH_RRF_K."""
    return _int_env("DEVSEARCH_RRF_K", 60)


def get_candidate_multiplier() -> int:
    """Return the per-ranking candidate fan-out multiplier from DEVSEARCH_CANDIDATE_MULTIPLIER."""
    return _int_env("DEVSEARCH_CANDIDATE_MULTIPLIER", 3)


def get_stale_grace_hours() -> float:
    """Return the staleness grace period in hours from DEVSEARCH_STALE_GRACE_HOURS."""
    return _float_env("DEVSEARCH_STALE_GRACE_HOURS", 0.0)


def get_embedding_batch_size() -> int:
    """Return the documents-per-embedding-call batch size from DEVSEARCH_EMBEDDING_BATCH_SIZE."""
    return _int_env("DEVSEARCH_EMBEDDING_BATCH_SIZE", 10)


def get_fetch_concurrency() -> int:
    """Return the upstream detail-fetch fan-out from DEVSEARCH_FETCH_CONCURRENCY."""
    return _int_env("DEVSEARCH_FETCH_CONCURRENCY", 10)


def get_retention_days() -> int:
    """Return how many days closed records stay indexed from DEVSEARCH_RETENTION_DAYS."""
    return _int_env("DEVSEARCH_RETENTION_DAYS", 30)


def get_log_level() -> str:
    """Return the logging level from DEVSEARCH_LOG_LEVEL."""
    return os.environ.get("DEVSEARCH_LOG_LEVEL", "WARNING").upper()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


class Settings(BaseModel):
    """Configuration resolved once at process start."""

    model_config = ConfigDict(frozen=True)

    db_path: Path
    database_url: str | None = None
    embedding_provider: str = "gemini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-embedding-001"
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "qwen3-embedding:0.6b"
    embedding_dim: int = 1536
    embedding_timeout: float = 30.0
    ado_url: str = "https://dev.azure.com"
    ado_pat: str | None = None
    projects: list[ProjectRef] = []
    project_aliases: dict[str, str] = {}
    index_interval: float = 900.0
    rrf_k: int = 60
    candidate_multiplier: int = 3
    stale_grace_hours: float = 0.0
    embedding_batch_size: int = 10
    fetch_concurrency: int = 10
    retention_days: int = 30
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Read every setting from the environment and validate it."""
        provider = get_embedding_provider()
        settings = cls(
            db_path=get_db_path(),
            database_url=get_database_url(),
            embedding_provider=provider,
            gemini_api_key=get_gemini_api_key(),
            gemini_model=get_gemini_model(),
            gemini_url=get_gemini_url(),
            ollama_url=get_ollama_url(),
            ollama_model=get_ollama_model(),
            embedding_dim=get_embedding_dim(provider),
            embedding_timeout=get_embedding_timeout(),
            ado_url=get_ado_url(),
            ado_pat=get_ado_pat(),
            projects=get_projects(),
            project_aliases=get_project_aliases(),
            index_interval=get_index_interval(),
            rrf_k=get_rrf_k(),
            candidate_multiplier=get_candidate_multiplier(),
            stale_grace_hours=get_stale_grace_hours(),
            embedding_batch_size=get_embedding_batch_size(),
            fetch_concurrency=get_fetch_concurrency(),
            retention_days=get_retention_days(),
            log_level=get_log_level(),
        )
        settings.validate_values()
        return settings

    def validate_values(self) -> None:
        """Raise ConfigError for values no component can work with."""
        if self.embedding_provider not in ("gemini", "ollama", "none"):
            raise ConfigError(
                f"Unknown embedding provider {self.embedding_provider!r}"
                " (expected gemini, ollama or none)"
            )
        positive = {
            "DEVSEARCH_EMBEDDING_DIM": self.embedding_dim,
            "DEVSEARCH_RRF_K": self.rrf_k,
            "DEVSEARCH_CANDIDATE_MULTIPLIER": self.candidate_multiplier,
            "DEVSEARCH_EMBEDDING_BATCH_SIZE": self.embedding_batch_size,
            "DEVSEARCH_FETCH_CONCURRENCY": self.fetch_concurrency,
            "DEVSEARCH_INDEX_INTERVAL": self.index_interval,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        if self.stale_grace_hours < 0:
            raise ConfigError("DEVSEARCH_STALE_GRACE_HOURS must not be negative")
        if self.retention_days < 0:
            raise ConfigError("DEVSEARCH_RETENTION_DAYS must not be negative")
