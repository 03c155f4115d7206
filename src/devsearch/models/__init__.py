"""Search domain models."""

from devsearch.models.document import (
    PullRequestDocument,
    SearchDocument,
    SearchSource,
    WorkItemDocument,
)
from devsearch.models.search import (
    ParsedQuery,
    SearchFilters,
    SearchResult,
    SyncStats,
)

__all__ = [
    "ParsedQuery",
    "PullRequestDocument",
    "SearchDocument",
    "SearchFilters",
    "SearchResult",
    "SearchSource",
    "SyncStats",
    "WorkItemDocument",
]
