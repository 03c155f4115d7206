"""Indexed document models and the intermediate records sources produce."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class SearchSource(StrEnum):
    """Kind of upstream record a document was built from."""

    PULL_REQUEST = "pr"
    WORK_ITEM = "work_item"


class SearchDocument(BaseModel):
    """A searchable record, keyed by (source_type, source_id)."""

    source_type: SearchSource
    source_id: str
    external_id: int
    title: str
    description: str | None = None
    content: str | None = None
    organization: str
    project: str
    repo_name: str | None = None
    status: str
    author_id: str | None = None
    author_name: str | None = None
    assigned_to_id: str | None = None
    assigned_to_name: str | None = None
    priority: int | None = None
    item_type: str | None = None
    is_draft: bool = False
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    url: str = ""
    parent_id: int | None = None
    linked_work_items: list[int] = Field(default_factory=list)
    embedding: list[float] | None = None

    @property
    def embedding_text(self) -> str:
        """Text used for generating embeddings."""
        return join_text(self.title, self.description, self.content)


class PullRequestDocument(BaseModel):
    """A pull request as fetched from the upstream provider."""

    id: int
    title: str
    description: str | None = None
    organization: str
    project: str
    repo_name: str
    status: str
    author_id: str | None = None
    author_name: str | None = None
    is_draft: bool = False
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    url: str = ""
    additional_content: str = ""
    linked_work_items: list[int] = Field(default_factory=list)

    @property
    def source_id(self) -> str:
        return f"{self.organization}/{self.project}/{self.repo_name}/{self.id}"

    def to_document(self, embedding: list[float] | None = None) -> SearchDocument:
        """Build the indexed form of this pull request."""
        return SearchDocument(
            source_type=SearchSource.PULL_REQUEST,
            source_id=self.source_id,
            external_id=self.id,
            title=self.title,
            description=self.description,
            content=self.additional_content or None,
            organization=self.organization,
            project=self.project,
            repo_name=self.repo_name,
            status=self.status,
            author_id=self.author_id,
            author_name=self.author_name,
            is_draft=self.is_draft,
            created_at=self.created_at,
            updated_at=self.updated_at,
            closed_at=self.closed_at,
            url=self.url,
            linked_work_items=list(self.linked_work_items),
            embedding=embedding,
        )


class WorkItemDocument(BaseModel):
    """A work item as fetched from the upstream provider."""

    id: int
    title: str
    description: str | None = None
    organization: str
    project: str
    status: str
    author_id: str | None = None
    author_name: str | None = None
    assigned_to_id: str | None = None
    assigned_to_name: str | None = None
    priority: int | None = None
    item_type: str
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    url: str = ""
    parent_id: int | None = None
    additional_content: str = ""

    @property
    def source_id(self) -> str:
        return f"{self.organization}/{self.project}/{self.id}"

    def to_document(self, embedding: list[float] | None = None) -> SearchDocument:
        """Build the indexed form of this work item."""
        return SearchDocument(
            source_type=SearchSource.WORK_ITEM,
            source_id=self.source_id,
            external_id=self.id,
            title=self.title,
            description=self.description,
            content=self.additional_content or None,
            organization=self.organization,
            project=self.project,
            status=self.status,
            author_id=self.author_id,
            author_name=self.author_name,
            assigned_to_id=self.assigned_to_id,
            assigned_to_name=self.assigned_to_name,
            priority=self.priority,
            item_type=self.item_type,
            created_at=self.created_at,
            updated_at=self.updated_at,
            closed_at=self.closed_at,
            url=self.url,
            parent_id=self.parent_id,
            embedding=embedding,
        )


def join_text(*parts: str | None) -> str:
    """Join non-empty text parts with blank lines."""
    return "\n\n".join(p.strip() for p in parts if p and p.strip())
