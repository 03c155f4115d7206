"""Error taxonomy for the search subsystem."""


class SearchError(Exception):
    """Base class for search failures that fit no narrower category."""


class EmbeddingError(SearchError):
    """Generating an embedding vector failed (remote call or response parsing)."""


class DatabaseError(SearchError):
    """The search store failed to read or write."""


class SourceError(SearchError):
    """Fetching records from the upstream provider failed."""


class ConfigError(SearchError):
    """Required configuration is missing or invalid."""
