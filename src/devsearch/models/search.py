"""Query, filter, result and sync-statistics models."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

from devsearch.models.document import SearchSource

# Canonical status groups and the upstream spellings each one matches.
# Pull requests use active/completed/abandoned; work item states vary by process template.
STATUS_GROUPS: dict[str, tuple[str, ...]] = {
    "active": ("active", "open", "in progress", "committed", "doing"),
    "completed": ("completed", "closed", "resolved", "done"),
    "abandoned": ("abandoned", "removed", "cut"),
    "new": ("new", "proposed", "to do", "approved"),
}


def expand_statuses(statuses: list[str]) -> list[str]:
    """Expand canonical status names to every lower-cased spelling they match."""
    expanded: list[str] = []
    for status in statuses:
        key = status.strip().lower()
        for spelling in STATUS_GROUPS.get(key, (key,)):
            if spelling not in expanded:
                expanded.append(spelling)
    return expanded


class SearchFilters(BaseModel):
    """Structured filters, combined with AND semantics. None means unfiltered."""

    source_type: SearchSource | None = None
    organization: str | None = None
    project: str | None = None
    repo_name: str | None = None
    status: list[str] | None = None
    priority: list[int] | None = None
    item_type: list[str] | None = None
    author: str | None = None
    assigned_to: str | None = None
    is_draft: bool | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None

    def is_empty(self) -> bool:
        """True when no filter is set."""
        return all(value is None for value in self.model_dump().values())


class ParsedQuery(BaseModel):
    """A free-text query split into residual search text and filters."""

    search_text: str = ""
    filters: SearchFilters = SearchFilters()
    lexical_only: bool = False


class SearchResult(BaseModel):
    """A ranked search hit. Score is only comparable within one query."""

    id: int
    source_type: SearchSource
    source_id: str
    external_id: int
    title: str
    description: str | None = None
    status: str
    priority: int | None = None
    item_type: str | None = None
    author_name: str | None = None
    url: str
    created_at: datetime
    updated_at: datetime
    score: float


@dataclass
class SyncStats:
    """Counts from one indexing cycle. Never persisted."""

    prs_indexed: int = 0
    work_items_indexed: int = 0
    documents_deleted: int = 0
    errors: int = 0

    @property
    def total_indexed(self) -> int:
        return self.prs_indexed + self.work_items_indexed

    def merge(self, other: "SyncStats") -> None:
        """Add another cycle's counts into this one."""
        self.prs_indexed += other.prs_indexed
        self.work_items_indexed += other.work_items_indexed
        self.documents_deleted += other.documents_deleted
        self.errors += other.errors
