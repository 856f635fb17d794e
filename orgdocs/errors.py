"""Error taxonomy for orgdocs pipeline runs."""

from __future__ import annotations

from typing import Optional


class OrgDocsError(RuntimeError):
    """Base class for orgdocs failures."""

    fatal = True


class CatalogError(OrgDocsError):
    """Raised when the repository catalog cannot be obtained."""


class CatalogUnavailable(CatalogError):
    """The hosting API stayed unreachable after retries."""


class RateLimited(CatalogError):
    """The hosting API kept rate limiting requests after bounded retries."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthRequired(CatalogError):
    """Credentials are missing or were rejected by the hosting API."""


class InvalidConfiguration(OrgDocsError):
    """Raised when orgdocs.yml or the ignorelist is malformed."""


class PipelineBusy(OrgDocsError):
    """Another pipeline run holds the working tree lock."""

    def __init__(self, lock_path: str, holder: str | None = None) -> None:
        message = f"Another orgdocs run holds {lock_path}"
        if holder:
            message += f" ({holder})"
        super().__init__(message)
        self.lock_path = lock_path
        self.holder = holder


class LinkStoreError(OrgDocsError):
    """The persisted link store cannot be read."""


class SiteBuildFailed(OrgDocsError):
    """The external static-site builder exited unsuccessfully."""


class RepositoryError(OrgDocsError):
    """Per-repository failure that does not abort the run."""

    fatal = False
    stage = "repository"

    def __init__(self, name: str, cause: object) -> None:
        super().__init__(f"{name}: {cause}")
        self.name = name
        self.cause = cause


class RepositorySyncFailed(RepositoryError):
    stage = "sync"


class RepositoryAggregationFailed(RepositoryError):
    stage = "aggregate"


__all__ = [
    "AuthRequired",
    "CatalogError",
    "CatalogUnavailable",
    "InvalidConfiguration",
    "LinkStoreError",
    "OrgDocsError",
    "PipelineBusy",
    "RateLimited",
    "RepositoryAggregationFailed",
    "RepositoryError",
    "RepositorySyncFailed",
    "SiteBuildFailed",
]
