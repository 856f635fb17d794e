"""Link storage and git snapshot helpers."""

from .git import GitLinker, Snapshot
from .store import InMemoryLinkStore, JsonLinkStore, LinkStore

__all__ = ["GitLinker", "InMemoryLinkStore", "JsonLinkStore", "LinkStore", "Snapshot"]
