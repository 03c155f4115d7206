"""Upstream document sources."""

from devsearch.source.ado import AzureDevOpsSource
from devsearch.source.base import DocumentSource

__all__ = ["AzureDevOpsSource", "DocumentSource"]
