"""Core data models shared across orgdocs components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class RepositoryDescriptor:
    """Catalog entry for a single repository of the organization."""

    name: str
    owner: str
    default_branch: str = "main"
    visibility: str = "public"
    is_fork: bool = False
    is_archived: bool = False
    has_docs_directory: Optional[bool] = None
    last_updated: Optional[datetime] = field(default=None, compare=False)
    clone_url: str = ""
    html_url: str = ""
    docs_probe_error: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def is_private(self) -> bool:
        return self.visibility != "public"


@dataclass(frozen=True)
class IgnoreRules:
    """Ignorelist applied by the inclusion filter."""

    explicit_names: FrozenSet[str] = frozenset()
    patterns: Tuple[str, ...] = ()
    exclude_forks: bool = False
    exclude_archived: bool = False
    exclude_private: bool = False
    require_docs_directory: bool = False


DesiredSet = Tuple[RepositoryDescriptor, ...]


@dataclass(frozen=True)
class LinkedRepository:
    """Persisted record of a synchronized repository snapshot."""

    name: str
    ref: str
    path: str
    source: str = ""
    branch: str = ""
    html_url: str = ""
    synced_at: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class ReconciliationPlan:
    """Add/update/remove operations moving linked state to desired state."""

    to_add: FrozenSet[str] = frozenset()
    to_update: FrozenSet[str] = frozenset()
    to_remove: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_update or self.to_remove)

    def describe(self) -> str:
        return (
            f"{len(self.to_add)} to add, {len(self.to_update)} to update, "
            f"{len(self.to_remove)} to remove"
        )


@dataclass
class ApplyResult:
    """Outcome of applying a reconciliation plan."""

    succeeded: set[str] = field(default_factory=set)
    unchanged: set[str] = field(default_factory=set)
    failed: Dict[str, Exception] = field(default_factory=dict)


@dataclass(frozen=True)
class ContentEntry:
    """Origin of a single file in the aggregated content tree."""

    repository: str
    source_path: str
    ref: str


ContentTree = Mapping[str, ContentEntry]


@dataclass
class AggregationResult:
    """Content tree produced by the aggregator plus per-repository failures."""

    tree: Dict[str, ContentEntry] = field(default_factory=dict)
    failed: Dict[str, Exception] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)

    def paths_for(self, repository: str) -> list[str]:
        return sorted(
            path for path, entry in self.tree.items() if entry.repository == repository
        )


def names_of(items: Iterable[object]) -> FrozenSet[str]:
    """Return the ``name`` attribute of every item as a frozenset."""
    return frozenset(getattr(item, "name") for item in items)


__all__ = [
    "AggregationResult",
    "ApplyResult",
    "ContentEntry",
    "ContentTree",
    "DesiredSet",
    "IgnoreRules",
    "LinkedRepository",
    "ReconciliationPlan",
    "RepositoryDescriptor",
    "names_of",
]
