"""Azure DevOps REST client producing pull request and work item records."""

import asyncio
import html
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx

from devsearch.errors import SourceError
from devsearch.models.document import PullRequestDocument, WorkItemDocument, join_text

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
PAGE_SIZE = 100
WORK_ITEM_BATCH_SIZE = 200

# Work item states that count as closed for the retention window
CLOSED_STATES = ("Closed", "Done", "Removed", "Resolved", "Completed", "Cut")

WORK_ITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.Description",
    "System.State",
    "System.WorkItemType",
    "System.CreatedBy",
    "System.AssignedTo",
    "System.CreatedDate",
    "System.ChangedDate",
    "System.Parent",
    "Microsoft.VSTS.Common.Priority",
    "Microsoft.VSTS.Common.ClosedDate",
    "Microsoft.VSTS.TCM.ReproSteps",
    "Microsoft.VSTS.Common.AcceptanceCriteria",
]

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6])\s*/?>", re.IGNORECASE)
_BLANK_RE = re.compile(r"\n\s*\n+")


def html_to_text(value: str | None) -> str | None:
    """Reduce an HTML field to plain text."""
    if not value:
        return None
    text = _BLOCK_RE.sub("\n", value)
    text = html.unescape(_TAG_RE.sub("", text))
    lines = [" ".join(line.split()) for line in text.splitlines()]
    text = _BLANK_RE.sub("\n\n", "\n".join(lines)).strip()
    return text or None


def _parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except (TypeError, ValueError) as e:
        raise SourceError(f"Unparseable date {raw!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _identity(value: Any) -> tuple[str | None, str | None]:
    """Return (id, display name) from an identity reference."""
    if not isinstance(value, dict):
        return None, None
    return value.get("id") or value.get("uniqueName"), value.get("displayName")


class AzureDevOpsSource:
    """Fetches pull requests and work items from Azure DevOps.

    Authenticates with a personal access token over Basic auth. Per-PR
    detail requests (threads, commits, linked work items) run concurrently,
    bounded by ``fetch_concurrency``.
    """

    def __init__(
        self,
        pat: str,
        *,
        base_url: str = "https://dev.azure.com",
        fetch_concurrency: int = 10,
        retention_days: int = 30,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize with a PAT and optional HTTP client."""
        self._pat = pat
        self._base_url = base_url.rstrip("/")
        self._fetch_concurrency = fetch_concurrency
        self._retention = timedelta(days=retention_days)
        self._timeout = timeout
        self._http = http_client
        self._clock = clock or (lambda: datetime.now(UTC))

    # -- Pull requests --

    async def fetch_pull_requests(
        self, organization: str, project: str
    ) -> list[PullRequestDocument]:
        """Fetch active PRs plus PRs closed within the retention window."""
        cutoff = self._clock() - self._retention
        raw_prs: list[dict[str, Any]] = []
        skip = 0
        while True:
            data = await self._get(
                self._project_url(organization, project, "_apis/git/pullrequests"),
                params={
                    "searchCriteria.status": "all",
                    "$top": PAGE_SIZE,
                    "$skip": skip,
                },
            )
            page = data.get("value", [])
            for pr in page:
                if pr.get("status") == "active":
                    raw_prs.append(pr)
                    continue
                closed = _parse_date(pr.get("closedDate"))
                if closed is not None and closed >= cutoff:
                    raw_prs.append(pr)
            if len(page) < PAGE_SIZE:
                break
            skip += PAGE_SIZE

        semaphore = asyncio.Semaphore(self._fetch_concurrency)

        async def _bounded(pr: dict[str, Any]) -> PullRequestDocument:
            async with semaphore:
                return await self._build_pull_request(organization, project, pr)

        prs = await asyncio.gather(*(_bounded(pr) for pr in raw_prs))
        logger.debug("Fetched %d pull requests for %s/%s", len(prs), organization, project)
        return list(prs)

    async def _build_pull_request(
        self, organization: str, project: str, pr: dict[str, Any]
    ) -> PullRequestDocument:
        try:
            pr_id = int(pr["pullRequestId"])
            repo = pr["repository"]
            repo_id, repo_name = repo["id"], repo["name"]
        except (KeyError, TypeError, ValueError) as e:
            raise SourceError(f"Malformed pull request in {organization}/{project}") from e

        pr_path = f"_apis/git/repositories/{repo_id}/pullRequests/{pr_id}"
        threads, commits, work_items = await asyncio.gather(
            self._get(self._project_url(organization, project, f"{pr_path}/threads")),
            self._get(self._project_url(organization, project, f"{pr_path}/commits")),
            self._get(self._project_url(organization, project, f"{pr_path}/workitems")),
        )

        comments = [
            comment.get("content", "")
            for thread in threads.get("value", [])
            for comment in thread.get("comments", [])
            if comment.get("commentType") != "system" and not comment.get("isDeleted")
        ]
        messages = [commit.get("comment", "") for commit in commits.get("value", [])]
        linked: list[int] = []
        for ref in work_items.get("value", []):
            try:
                linked.append(int(ref["id"]))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed work item ref on PR %d", pr_id)

        author_id, author_name = _identity(pr.get("createdBy"))
        created = _parse_date(pr.get("creationDate"))
        if created is None:
            raise SourceError(f"Pull request {pr_id} has no creation date")
        closed = _parse_date(pr.get("closedDate"))

        return PullRequestDocument(
            id=pr_id,
            title=pr.get("title") or "",
            description=pr.get("description") or None,
            organization=organization,
            project=project,
            repo_name=repo_name,
            status=pr.get("status") or "active",
            author_id=author_id,
            author_name=author_name,
            is_draft=bool(pr.get("isDraft", False)),
            created_at=created,
            updated_at=closed or created,
            closed_at=closed,
            url=(
                f"{self._base_url}/{quote(organization)}/{quote(project)}"
                f"/_git/{quote(repo_name)}/pullrequest/{pr_id}"
            ),
            additional_content=join_text(*comments, *messages),
            linked_work_items=linked,
        )

    # -- Work items --

    async def fetch_work_items(
        self, organization: str, project: str, since: datetime | None = None
    ) -> list[WorkItemDocument]:
        """Fetch work items via WIQL, then their fields in batches."""
        if since is not None:
            changed = f"[System.ChangedDate] >= '{since.astimezone(UTC).date().isoformat()}'"
        else:
            closed_states = ", ".join(f"'{s}'" for s in CLOSED_STATES)
            changed = (
                f"([System.State] NOT IN ({closed_states})"
                f" OR [System.ChangedDate] >= @Today - {self._retention.days})"
            )
        wiql = (
            "SELECT [System.Id] FROM WorkItems"
            " WHERE [System.TeamProject] = @project"
            f" AND {changed}"
            " ORDER BY [System.ChangedDate] DESC"
        )
        data = await self._post(
            self._project_url(organization, project, "_apis/wit/wiql"), {"query": wiql}
        )
        try:
            ids = [int(ref["id"]) for ref in data.get("workItems", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise SourceError(f"Malformed WIQL response for {organization}/{project}") from e

        items: list[WorkItemDocument] = []
        for start in range(0, len(ids), WORK_ITEM_BATCH_SIZE):
            chunk = ids[start : start + WORK_ITEM_BATCH_SIZE]
            batch = await self._post(
                self._project_url(organization, project, "_apis/wit/workitemsbatch"),
                {"ids": chunk, "fields": WORK_ITEM_FIELDS},
            )
            for raw in batch.get("value", []):
                items.append(self._build_work_item(organization, project, raw))

        logger.debug("Fetched %d work items for %s/%s", len(items), organization, project)
        return items

    def _build_work_item(
        self, organization: str, project: str, raw: dict[str, Any]
    ) -> WorkItemDocument:
        fields = raw.get("fields", {})
        try:
            item_id = int(raw["id"])
            created = _parse_date(fields["System.CreatedDate"])
            changed = _parse_date(fields.get("System.ChangedDate"))
        except (KeyError, TypeError, ValueError) as e:
            raise SourceError(f"Malformed work item in {organization}/{project}") from e
        if created is None:
            raise SourceError(f"Work item {item_id} has no creation date")

        author_id, author_name = _identity(fields.get("System.CreatedBy"))
        assigned_id, assigned_name = _identity(fields.get("System.AssignedTo"))
        try:
            priority = _optional_int(fields.get("Microsoft.VSTS.Common.Priority"))
            parent = _optional_int(fields.get("System.Parent"))
        except (TypeError, ValueError) as e:
            raise SourceError(f"Malformed work item {item_id}") from e

        return WorkItemDocument(
            id=item_id,
            title=fields.get("System.Title") or "",
            description=html_to_text(fields.get("System.Description")),
            organization=organization,
            project=project,
            status=fields.get("System.State") or "New",
            author_id=author_id,
            author_name=author_name,
            assigned_to_id=assigned_id,
            assigned_to_name=assigned_name,
            priority=priority,
            item_type=fields.get("System.WorkItemType") or "Task",
            created_at=created,
            updated_at=changed or created,
            closed_at=_parse_date(fields.get("Microsoft.VSTS.Common.ClosedDate")),
            url=(
                f"{self._base_url}/{quote(organization)}/{quote(project)}"
                f"/_workitems/edit/{item_id}"
            ),
            parent_id=parent,
            additional_content=join_text(
                html_to_text(fields.get("Microsoft.VSTS.TCM.ReproSteps")),
                html_to_text(fields.get("Microsoft.VSTS.Common.AcceptanceCriteria")),
            ),
        )

    # -- HTTP --

    def _project_url(self, organization: str, project: str, path: str) -> str:
        return f"{self._base_url}/{quote(organization)}/{quote(project)}/{path}"

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request("GET", url, params=params)

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", url, json=payload)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        query = {"api-version": API_VERSION, **(params or {})}
        try:
            resp = await self._get_client().request(
                method,
                url,
                params=query,
                json=json,
                auth=("", self._pat),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        except httpx.HTTPStatusError as e:
            raise SourceError(
                f"Azure DevOps {method} {e.request.url.path} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceError(f"Azure DevOps {method} failed: {e}") from e
        return data

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
