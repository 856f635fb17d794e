"""Repository catalog fetchers."""

from .github import GitHubCatalog, HttpResponse, Transport

__all__ = ["GitHubCatalog", "HttpResponse", "Transport"]
