"""search and search_stats MCP tools."""

import json
import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.context import Context
from pydantic import Field

from devsearch.errors import SearchError
from devsearch.service import SearchService

logger = logging.getLogger(__name__)


async def run_search(service: SearchService, query: str, limit: int | None = None) -> str:
    """Run a query and render the ranked results as a JSON array.

    Service failures become a ToolError so the caller sees an explicit
    error rather than an empty result list.
    """
    try:
        results = await service.search(query, limit)
    except SearchError as e:
        logger.error("Search failed for %r", query, exc_info=True)
        raise ToolError(f"Search failed: {e}") from e
    return json.dumps([r.model_dump(mode="json") for r in results])


async def run_stats(service: SearchService) -> str:
    """Render per-source document counts as a JSON object."""
    try:
        counts = await service.stats()
    except SearchError as e:
        logger.error("Search stats failed", exc_info=True)
        raise ToolError(f"Search stats failed: {e}") from e
    return json.dumps(counts)


def register_search_tools(mcp: FastMCP) -> None:
    """Register the search and search_stats tools with the MCP server."""

    @mcp.tool()
    async def search(
        query: Annotated[
            str,
            Field(
                description=(
                    "Free-text query. Filters such as 'PRs', 'bugs', 'priority 1', "
                    "'last week', 'author:name' or 'repo:name' are extracted automatically"
                )
            ),
        ],
        limit: Annotated[
            int | None, Field(description="Maximum results to return (1-100)", ge=1, le=100)
        ] = None,
        ctx: Context | None = None,
    ) -> str:
        """Search indexed pull requests and work items.

        Combines full-text relevance with embedding similarity (when an
        embedding provider is configured) using Reciprocal Rank Fusion.
        Returns a JSON array of results, best first, each with a fused score.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        service: SearchService = ctx.lifespan_context["service"]
        return await run_search(service, query, limit)

    @mcp.tool()
    async def search_stats(ctx: Context | None = None) -> str:
        """Count indexed documents per source type."""
        if ctx is None:
            raise RuntimeError("Context not injected")
        service: SearchService = ctx.lifespan_context["service"]
        return await run_stats(service)
