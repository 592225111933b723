"""Remote catalog access and reconciliation."""

from .client import CatalogClient, GitHubCatalogClient
from .refresh import CatalogRefreshPipeline, ProgressSink

__all__ = ["CatalogClient", "CatalogRefreshPipeline", "GitHubCatalogClient", "ProgressSink"]
