"""Durable storage for linked repository records."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional, Protocol

from ..errors import LinkStoreError
from ..logging import get_logger
from ..models import LinkedRepository

_STORE_VERSION = 1


class LinkStore(Protocol):
    """Key-value store of linked repositories keyed by name."""

    def get_all(self) -> Dict[str, LinkedRepository]:
        ...

    def upsert(self, link: LinkedRepository) -> None:
        ...

    def delete(self, name: str) -> None:
        ...


class InMemoryLinkStore:
    """Volatile store used by tests and dry runs."""

    def __init__(self, links: Optional[Dict[str, LinkedRepository]] = None) -> None:
        self._links: Dict[str, LinkedRepository] = dict(links or {})
        self._lock = threading.Lock()

    def get_all(self) -> Dict[str, LinkedRepository]:
        with self._lock:
            return dict(self._links)

    def upsert(self, link: LinkedRepository) -> None:
        with self._lock:
            self._links[link.name] = link

    def delete(self, name: str) -> None:
        with self._lock:
            self._links.pop(name, None)


class JsonLinkStore:
    """Persists link records as JSON, rewriting the file atomically on every change."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._links: Dict[str, LinkedRepository] = self._load(path)
        self.logger = get_logger("links.store")

    @property
    def path(self) -> Path:
        return self._path

    def get_all(self) -> Dict[str, LinkedRepository]:
        with self._lock:
            return dict(self._links)

    def upsert(self, link: LinkedRepository) -> None:
        with self._lock:
            updated = dict(self._links)
            updated[link.name] = link
            self._persist(updated)
            self._links = updated
        self.logger.debug("Recorded link %s at %s", link.name, link.ref)

    def delete(self, name: str) -> None:
        with self._lock:
            if name not in self._links:
                return
            updated = dict(self._links)
            updated.pop(name)
            self._persist(updated)
            self._links = updated
        self.logger.debug("Removed link record %s", name)

    # ------------------------------------------------------------------
    # Internal helpers

    def _persist(self, links: Dict[str, LinkedRepository]) -> None:
        payload = {
            "version": _STORE_VERSION,
            "links": {name: _link_to_dict(link) for name, link in sorted(links.items())},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _load(path: Path) -> Dict[str, LinkedRepository]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            # Unreadable is never treated as empty.
            raise LinkStoreError(f"Link store {path} is unreadable: {exc}") from exc
        if not isinstance(data, dict) or data.get("version") != _STORE_VERSION:
            raise LinkStoreError(f"Link store {path} has an unsupported format")
        entries = data.get("links")
        if not isinstance(entries, dict):
            raise LinkStoreError(f"Link store {path} has no 'links' mapping")
        links: Dict[str, LinkedRepository] = {}
        for name, raw in entries.items():
            link = _link_from_dict(name, raw)
            if link is not None:
                links[name] = link
        return links


def _link_to_dict(link: LinkedRepository) -> Dict[str, object]:
    data = asdict(link)
    data.pop("name", None)
    return data


def _link_from_dict(name: object, payload: object) -> Optional[LinkedRepository]:
    if not isinstance(name, str) or not isinstance(payload, dict):
        return None
    ref = payload.get("ref")
    path = payload.get("path")
    if not isinstance(ref, str) or not isinstance(path, str):
        return None
    return LinkedRepository(
        name=name,
        ref=ref,
        path=path,
        source=str(payload.get("source") or ""),
        branch=str(payload.get("branch") or ""),
        html_url=str(payload.get("html_url") or ""),
        synced_at=payload.get("synced_at") if isinstance(payload.get("synced_at"), str) else None,
    )


__all__ = ["InMemoryLinkStore", "JsonLinkStore", "LinkStore"]
