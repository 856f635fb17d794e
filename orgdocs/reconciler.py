"""Reconciles the desired repository set against linked snapshots."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .errors import RepositorySyncFailed
from .links.git import Snapshot
from .links.store import LinkStore
from .logging import bind, get_logger
from .models import (
    ApplyResult,
    LinkedRepository,
    ReconciliationPlan,
    RepositoryDescriptor,
    names_of,
)

LinkedInput = Union[Mapping[str, LinkedRepository], Iterable[LinkedRepository]]


class Linker(Protocol):
    """Operations the reconciler needs from a snapshot backend."""

    def prepare(
        self, descriptor: RepositoryDescriptor, current: LinkedRepository | None
    ) -> Snapshot:
        ...

    def activate(self, snapshot: Snapshot):  # type: ignore[no-untyped-def]
        ...

    def rollback(self, snapshot: Snapshot, backup) -> None:  # type: ignore[no-untyped-def]
        ...

    def remove(self, name: str) -> None:
        ...

    def discard(self, path) -> None:  # type: ignore[no-untyped-def]
        ...


def compute_plan(
    desired: Iterable[RepositoryDescriptor], linked: LinkedInput
) -> ReconciliationPlan:
    """Diff desired names against linked names.

    Every still-desired repository is refreshed, so ``to_update`` is the full
    intersection rather than only the repositories known to have changed.
    """
    desired_names = names_of(desired)
    linked_names = frozenset(linked) if isinstance(linked, Mapping) else names_of(linked)
    return ReconciliationPlan(
        to_add=desired_names - linked_names,
        to_update=desired_names & linked_names,
        to_remove=linked_names - desired_names,
    )


class _KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())


class LinkReconciler:
    """Applies reconciliation plans against the link store and snapshot directory."""

    def __init__(
        self,
        store: LinkStore,
        linker: Linker,
        *,
        content_remover: Callable[[str], None] | None = None,
        workers: int = 4,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.linker = linker
        self.content_remover = content_remover
        self.workers = max(1, workers)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks = _KeyedLocks()
        self.logger = get_logger("reconciler")

    def reconcile(
        self,
        desired: Iterable[RepositoryDescriptor],
        linked: LinkedInput | None = None,
    ) -> ReconciliationPlan:
        """Compute the plan against ``linked`` or, by default, the store contents."""
        current = self.store.get_all() if linked is None else linked
        plan = compute_plan(desired, current)
        self.logger.info("Reconciliation plan: %s", plan.describe())
        return plan

    def apply(
        self, plan: ReconciliationPlan, desired: Iterable[RepositoryDescriptor]
    ) -> ApplyResult:
        """Execute every operation in ``plan`` independently and collect the outcome."""
        descriptors = {descriptor.name: descriptor for descriptor in desired}
        current = self.store.get_all()
        tasks: List[Tuple[str, str]] = (
            [("add", name) for name in sorted(plan.to_add)]
            + [("update", name) for name in sorted(plan.to_update)]
            + [("remove", name) for name in sorted(plan.to_remove)]
        )
        result = ApplyResult()
        if not tasks:
            return result

        sweep = getattr(self.linker, "sweep", None)
        if callable(sweep):
            try:
                sweep()
            except OSError as exc:
                self.logger.warning("Could not clear leftovers of an earlier run: %s", exc)

        with ThreadPoolExecutor(
            max_workers=min(self.workers, len(tasks)), thread_name_prefix="orgdocs-sync"
        ) as pool:
            futures = {
                pool.submit(
                    self._run_task, action, name, descriptors.get(name), current.get(name)
                ): (action, name)
                for action, name in tasks
            }
            for future in as_completed(futures):
                action, name = futures[future]
                try:
                    changed = future.result()
                except Exception as exc:
                    failure = exc
                    if not isinstance(failure, RepositorySyncFailed):
                        failure = RepositorySyncFailed(name, exc)
                    bind(self.logger, repository=name, stage=failure.stage).warning(
                        "Failed to %s: %s", action, failure.cause
                    )
                    result.failed[name] = failure
                    continue
                result.succeeded.add(name)
                if not changed:
                    result.unchanged.add(name)

        self.logger.info(
            "Applied plan: %d succeeded (%d unchanged), %d failed",
            len(result.succeeded),
            len(result.unchanged),
            len(result.failed),
        )
        return result

    # ------------------------------------------------------------------
    # Per-repository operations

    def _run_task(
        self,
        action: str,
        name: str,
        descriptor: Optional[RepositoryDescriptor],
        current: Optional[LinkedRepository],
    ) -> bool:
        with self._locks.get(name):
            if action == "remove":
                self._remove(name)
                return True
            if descriptor is None:
                raise RepositorySyncFailed(name, "not present in the desired set")
            return self._sync(descriptor, current)

    def _sync(self, descriptor: RepositoryDescriptor, current: Optional[LinkedRepository]) -> bool:
        name = descriptor.name
        if descriptor.docs_probe_error:
            raise RepositorySyncFailed(
                name, f"docs directory check failed: {descriptor.docs_probe_error}"
            )
        try:
            snapshot = self.linker.prepare(descriptor, current)
        except Exception as exc:
            raise RepositorySyncFailed(name, exc) from exc

        if not snapshot.changed:
            return False

        try:
            backup = self.linker.activate(snapshot)
        except Exception as exc:
            self._cleanup(name, snapshot.staged)
            raise RepositorySyncFailed(name, exc) from exc

        link = LinkedRepository(
            name=name,
            ref=snapshot.ref,
            path=str(snapshot.target),
            source=descriptor.clone_url,
            branch=descriptor.default_branch,
            html_url=descriptor.html_url,
            synced_at=self._clock().isoformat().replace("+00:00", "Z"),
        )
        try:
            self.store.upsert(link)
        except Exception as exc:
            try:
                self.linker.rollback(snapshot, backup)
            except Exception as rollback_exc:
                cause = f"{exc}; rollback failed: {rollback_exc}"
                raise RepositorySyncFailed(name, cause) from exc
            raise RepositorySyncFailed(name, exc) from exc

        self._cleanup(name, backup)
        verb = "Linked" if current is None else "Updated"
        self.logger.info("%s %s at %s", verb, name, snapshot.ref[:12])
        return True

    def _remove(self, name: str) -> None:
        if self.content_remover is not None:
            try:
                self.content_remover(name)
            except Exception as exc:
                raise RepositorySyncFailed(name, f"content removal failed: {exc}") from exc
        try:
            self.linker.remove(name)
            self.store.delete(name)
        except Exception as exc:
            raise RepositorySyncFailed(name, exc) from exc
        self.logger.info("Unlinked %s", name)

    def _cleanup(self, name: str, path: Optional[Path]) -> None:
        try:
            self.linker.discard(path)
        except OSError as exc:
            bind(self.logger, repository=name).warning("Could not remove %s: %s", path, exc)


__all__ = ["LinkReconciler", "Linker", "compute_plan"]
