"""Pipeline orchestration for discover/sync/update/build flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .aggregator import ContentAggregator
from .catalog import GitHubCatalog
from .config import resolve_token
from .context import PipelineContext
from .errors import InvalidConfiguration, OrgDocsError, RepositoryError
from .links import GitLinker, JsonLinkStore, LinkStore
from .logging import ContextAdapter, bind, get_logger, new_run_id
from .models import (
    AggregationResult,
    ApplyResult,
    DesiredSet,
    ReconciliationPlan,
    RepositoryDescriptor,
)
from .reconciler import LinkReconciler, Linker
from .selection import partition_catalog
from .site import SiteBuilder

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FATAL = "fatal"


@dataclass
class RunSummary:
    """Outcome of one orchestrator command."""

    command: str
    discovered: int = 0
    desired: List[str] = field(default_factory=list)
    excluded: List[Tuple[str, str]] = field(default_factory=list)
    plan: Optional[ReconciliationPlan] = None
    sync: Optional[ApplyResult] = None
    aggregation: Optional[AggregationResult] = None
    built: bool = False
    failures: List[RepositoryError] = field(default_factory=list)
    error: Optional[OrgDocsError] = None
    run_id: str = field(default_factory=new_run_id)

    @property
    def status(self) -> RunStatus:
        if self.error is not None:
            return RunStatus.FATAL
        if self.failures:
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return {
            RunStatus.SUCCESS: EXIT_SUCCESS,
            RunStatus.PARTIAL: EXIT_PARTIAL,
            RunStatus.FATAL: EXIT_FATAL,
        }[self.status]

    def render(self) -> str:
        """Human-readable summary separating success, partial failure and fatal failure."""
        lines: List[str] = []
        if self.discovered or self.desired:
            lines.append(
                f"Discovered {self.discovered} repositories; {len(self.desired)} in scope, "
                f"{len(self.excluded)} excluded"
            )
        if self.plan is not None:
            lines.append(f"Plan: {self.plan.describe()}")
        if self.sync is not None:
            lines.append(
                f"Sync: {len(self.sync.succeeded)} succeeded "
                f"({len(self.sync.unchanged)} unchanged), {len(self.sync.failed)} failed"
            )
        if self.aggregation is not None:
            repositories = {entry.repository for entry in self.aggregation.tree.values()}
            lines.append(
                f"Content: {len(self.aggregation.tree)} files from {len(repositories)} repositories"
                + (f", removed {len(self.aggregation.removed)} stale" if self.aggregation.removed else "")
            )
        if self.built:
            lines.append("Site build completed")

        status = self.status
        if status is RunStatus.FATAL:
            lines.append(f"{self.command} failed: {self.error}")
        elif status is RunStatus.PARTIAL:
            lines.append(
                f"{self.command} succeeded with {len(self.failures)} repository failures:"
            )
            for failure in sorted(self.failures, key=lambda item: (item.name, item.stage)):
                lines.append(f"  - {failure.name} ({failure.stage}): {failure.cause}")
        else:
            lines.append(f"{self.command} succeeded")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "command": self.command,
            "run_id": self.run_id,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "discovered": self.discovered,
            "desired": list(self.desired),
            "excluded": [{"name": name, "reason": reason} for name, reason in self.excluded],
            "built": self.built,
            "failures": [
                {"name": failure.name, "stage": failure.stage, "cause": str(failure.cause)}
                for failure in self.failures
            ],
            "error": str(self.error) if self.error is not None else None,
        }
        if self.plan is not None:
            payload["plan"] = {
                "to_add": sorted(self.plan.to_add),
                "to_update": sorted(self.plan.to_update),
                "to_remove": sorted(self.plan.to_remove),
            }
        return payload


class Orchestrator:
    """Coordinates the discovery, reconciliation, aggregation and build stages."""

    def __init__(
        self,
        context: PipelineContext,
        *,
        catalog: GitHubCatalog | None = None,
        store: LinkStore | None = None,
        linker: Linker | None = None,
        aggregator: ContentAggregator | None = None,
        builder: SiteBuilder | None = None,
    ) -> None:
        self.context = context
        config = context.config
        self.catalog = catalog or GitHubCatalog(config.github, docs_dir=config.content.docs_dir)
        self._store = store
        self.linker = linker or GitLinker(
            config.repos_path,
            depth=config.sync.depth,
            token=resolve_token(config.github),
        )
        self.aggregator = aggregator or ContentAggregator(
            config.content_path,
            docs_dir=config.content.docs_dir,
            include_readme=config.content.include_readme,
            suffixes=config.content.suffixes or None,
            workers=config.sync.workers,
            templates_dir=config.site.templates_dir,
            site_title=config.site.title or config.organization,
        )
        self.builder = builder or SiteBuilder(config.site_path, config.site.build_command)
        self.logger = get_logger("orchestrator")

    @property
    def store(self) -> LinkStore:
        # Lazy: a corrupt store surfaces inside _guard as a fatal error.
        if self._store is None:
            self._store = JsonLinkStore(self.context.links_path)
        return self._store

    # ------------------------------------------------------------------
    # Commands

    def run_discover(self) -> RunSummary:
        """Fetch the catalog and apply the ignorelist without touching local state."""
        summary = RunSummary(command="discover")
        self._guard(summary, lambda: self._discover(summary))
        return self._finish(summary)

    def run_sync(self) -> RunSummary:
        """Discover, then reconcile the link store against the desired set."""
        summary = RunSummary(command="sync")

        def _run() -> None:
            self.context.lock.ensure_available()
            desired = self._discover(summary)
            with self.context.lock:
                self._sync(summary, desired)

        self._guard(summary, _run)
        return self._finish(summary)

    def run_update(self) -> RunSummary:
        """Re-aggregate the content tree from the current link store."""
        summary = RunSummary(command="update")

        def _run() -> None:
            with self.context.lock:
                self._aggregate(summary)

        self._guard(summary, _run)
        return self._finish(summary)

    def run_build(self) -> RunSummary:
        """Invoke the external site builder on the current content tree."""
        summary = RunSummary(command="build")

        def _run() -> None:
            with self.context.lock:
                self._build(summary)

        self._guard(summary, _run)
        return self._finish(summary)

    def run_pipeline(self, *, build: bool = True) -> RunSummary:
        """discover + sync + update + build as one locked run."""
        summary = RunSummary(command="pipeline")

        def _run() -> None:
            # Probe the lock before touching the API.
            self.context.lock.ensure_available()
            desired = self._discover(summary)
            with self.context.lock:
                self._sync(summary, desired)
                self._aggregate(summary)
                if build:
                    self._build(summary)

        self._guard(summary, _run)
        return self._finish(summary)

    # ------------------------------------------------------------------
    # Stages

    def _discover(self, summary: RunSummary) -> DesiredSet:
        config = self.context.config
        if not config.organization:
            raise InvalidConfiguration("No organization configured (set 'organization' in orgdocs.yml)")
        self.logger.info("Discovering repositories for %s", config.organization)
        catalog = self.catalog.fetch_all(
            config.organization, probe_docs=config.ignore.require_docs_directory
        )
        desired, excluded = partition_catalog(catalog, config.ignore)
        for descriptor, reason in excluded:
            self.logger.debug("Excluding %s: %s", descriptor.name, reason)
        summary.discovered = len(catalog)
        summary.desired = [descriptor.name for descriptor in desired]
        summary.excluded = [(descriptor.name, reason) for descriptor, reason in excluded]
        self.logger.info(
            "%d of %d repositories in scope", len(desired), len(catalog)
        )
        return desired

    def _sync(self, summary: RunSummary, desired: Tuple[RepositoryDescriptor, ...]) -> None:
        reconciler = LinkReconciler(
            self.store,
            self.linker,
            content_remover=self.aggregator.remove_subtree,
            workers=self.context.config.sync.workers,
        )
        plan = reconciler.reconcile(desired)
        summary.plan = plan
        result = reconciler.apply(plan, desired)
        summary.sync = result
        summary.failures.extend(
            error for error in result.failed.values() if isinstance(error, RepositoryError)
        )

    def _aggregate(self, summary: RunSummary) -> None:
        result = self.aggregator.aggregate(self.store.get_all())
        summary.aggregation = result
        summary.failures.extend(
            error for error in result.failed.values() if isinstance(error, RepositoryError)
        )

    def _build(self, summary: RunSummary) -> None:
        self.builder.build()
        summary.built = True

    # ------------------------------------------------------------------
    # Helpers

    def _run_logger(self, summary: RunSummary) -> ContextAdapter:
        return bind(self.logger, command=summary.command, run_id=summary.run_id)

    def _guard(self, summary: RunSummary, action: Callable[[], None]) -> None:
        log = self._run_logger(summary)
        log.debug("Starting %s", summary.command)
        try:
            action()
        except OrgDocsError as exc:
            if not exc.fatal:
                raise
            summary.error = exc
            log.error("%s aborted: %s", summary.command, exc)

    def _finish(self, summary: RunSummary) -> RunSummary:
        log = self._run_logger(summary)
        for failure in summary.failures:
            log.bind(repository=failure.name, stage=failure.stage).warning("%s", failure.cause)
        log.info("%s finished with status %s", summary.command, summary.status.value)
        return summary


__all__ = [
    "EXIT_FATAL",
    "EXIT_PARTIAL",
    "EXIT_SUCCESS",
    "Orchestrator",
    "RunStatus",
    "RunSummary",
]
