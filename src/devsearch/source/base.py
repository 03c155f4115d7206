"""Document source protocol."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from devsearch.models.document import PullRequestDocument, WorkItemDocument


@runtime_checkable
class DocumentSource(Protocol):
    """Fetches raw records for one organization/project from the upstream provider."""

    async def fetch_pull_requests(
        self, organization: str, project: str
    ) -> list[PullRequestDocument]:
        """Fetch pull requests with their comment and commit text. Raises SourceError."""
        ...

    async def fetch_work_items(
        self, organization: str, project: str, since: datetime | None = None
    ) -> list[WorkItemDocument]:
        """Fetch work items, optionally only those changed since ``since``. Raises SourceError."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
