"""Aggregates per-repository documentation into the site content tree."""

from __future__ import annotations

import json
import os
import posixpath
import re
import shutil
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader

from .errors import RepositoryAggregationFailed
from .logging import bind, get_logger
from .models import AggregationResult, ContentEntry, LinkedRepository

MANIFEST_FILENAME = ".orgdocs-content.json"
LANDING_PAGE = "index.md"
README = "README.md"
_STAGING_DIRNAME = ".staging"
_MANIFEST_VERSION = 1
_RESERVED_NAMES = frozenset({".", "..", _STAGING_DIRNAME, MANIFEST_FILENAME, LANDING_PAGE})

_INLINE_LINK = re.compile(r"(!?\[[^\]\n]*\]\(\s*)(<[^>\n]*>|[^)\s]+)")
_REFERENCE_LINK = re.compile(r"^( {0,3}\[[^\]\n]+\]:[ \t]*)(<[^>\n]*>|\S+)")
_FENCE = re.compile(r"^ {0,3}(```|~~~)")
_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")

DEFAULT_SUFFIXES: Tuple[str, ...] = (
    ".md",
    ".markdown",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".webp",
    ".ico",
    ".pdf",
)


class ContentAggregator:
    """Copies each linked repository's docs subtree into ``content_dir/<name>/``."""

    def __init__(
        self,
        content_dir: Path,
        *,
        docs_dir: str = "docs",
        include_readme: bool = True,
        suffixes: Sequence[str] | None = None,
        workers: int = 4,
        templates_dir: Path | None = None,
        site_title: str | None = None,
    ) -> None:
        self.content_dir = content_dir
        self.docs_dir = docs_dir.strip("/") or "docs"
        self.include_readme = include_readme
        self.suffixes = tuple(s.lower() for s in suffixes) if suffixes else DEFAULT_SUFFIXES
        self.workers = max(1, workers)
        self.site_title = site_title
        self._env = _create_env(templates_dir)
        self._manifest_lock = threading.Lock()
        self.logger = get_logger("aggregator")

    @property
    def manifest_path(self) -> Path:
        return self.content_dir / MANIFEST_FILENAME

    def aggregate(
        self, linked: Mapping[str, LinkedRepository] | Iterable[LinkedRepository]
    ) -> AggregationResult:
        """Rebuild the content tree so it reflects exactly the linked repositories."""
        links = list(linked.values()) if isinstance(linked, Mapping) else list(linked)
        self.content_dir.mkdir(parents=True, exist_ok=True)
        self._discard(self.content_dir / _STAGING_DIRNAME)

        previous = self.load_manifest()
        manifest: Dict[str, Dict[str, object]] = {}
        result = AggregationResult()

        if links:
            with ThreadPoolExecutor(
                max_workers=min(self.workers, len(links)), thread_name_prefix="orgdocs-aggregate"
            ) as pool:
                futures = {pool.submit(self._aggregate_one, link): link for link in links}
                for future in as_completed(futures):
                    link = futures[future]
                    try:
                        files = future.result()
                    except RepositoryAggregationFailed as exc:
                        bind(self.logger, repository=link.name, stage=exc.stage).warning(
                            "Failed to aggregate: %s", exc.cause
                        )
                        result.failed[link.name] = exc
                        # The previous subtree stays in place; keep its manifest entry.
                        if link.name in previous:
                            manifest[link.name] = previous[link.name]
                        continue
                    if files:
                        manifest[link.name] = {"ref": link.ref, "files": files}

        result.removed = self._prune({link.name for link in links}, result)

        with self._manifest_lock:
            self._write_manifest(manifest)
        result.tree = _tree_from_manifest(manifest)
        self._render_landing_page(links, manifest)
        self.logger.info(
            "Aggregated %d files from %d repositories (%d failed, %d stale removed)",
            len(result.tree),
            len(manifest),
            len(result.failed),
            len(result.removed),
        )
        return result

    def remove_subtree(self, name: str) -> None:
        """Delete the content subtree of ``name`` and forget it in the manifest."""
        target = self._subtree_path(name)
        if target.exists():
            self._discard(target)
        with self._manifest_lock:
            manifest = self.load_manifest()
            if name in manifest:
                manifest.pop(name)
                self._write_manifest(manifest)
        self.logger.debug("Removed content subtree for %s", name)

    def content_tree(self) -> Dict[str, ContentEntry]:
        """Return the content tree recorded by the last aggregation."""
        return _tree_from_manifest(self.load_manifest())

    def load_manifest(self) -> Dict[str, Dict[str, object]]:
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            self.logger.warning("Ignoring unreadable content manifest at %s", self.manifest_path)
            return {}
        if not isinstance(data, dict) or data.get("version") != _MANIFEST_VERSION:
            return {}
        repositories = data.get("repositories")
        if not isinstance(repositories, dict):
            return {}
        return {
            name: entry
            for name, entry in repositories.items()
            if isinstance(name, str) and isinstance(entry, dict)
        }

    # ------------------------------------------------------------------
    # Per-repository work

    def _aggregate_one(self, link: LinkedRepository) -> Dict[str, str]:
        try:
            return self._copy_repository(link)
        except RepositoryAggregationFailed:
            raise
        except Exception as exc:
            raise RepositoryAggregationFailed(link.name, exc) from exc

    def _copy_repository(self, link: LinkedRepository) -> Dict[str, str]:
        snapshot = Path(link.path)
        if not snapshot.is_dir():
            raise RepositoryAggregationFailed(link.name, f"snapshot missing at {snapshot}")
        target = self._subtree_path(link.name)
        root = snapshot.resolve()
        docs_root = snapshot / self.docs_dir
        if docs_root.is_dir() and not _inside(docs_root, root):
            bind(self.logger, repository=link.name).warning(
                "Skipping %s/: it leaves the repository checkout", self.docs_dir
            )
            docs_root = None
        if docs_root is None or not docs_root.is_dir():
            # No usable docs directory: the repository contributes an empty subtree.
            if target.exists():
                self._discard(target)
            self.logger.debug("%s has no %s/ directory", link.name, self.docs_dir)
            return {}

        staging_root = self.content_dir / _STAGING_DIRNAME
        staging_root.mkdir(parents=True, exist_ok=True)
        staged = staging_root / f"{link.name}-{uuid.uuid4().hex[:8]}"
        files: Dict[str, str] = {}
        try:
            for source, relative in self._iter_docs(docs_root):
                self._copy_file(source, staged / relative)
                files[relative] = f"{self.docs_dir}/{relative}"

            readme = snapshot / README
            if self.include_readme and LANDING_PAGE not in files and readme.is_file():
                if _inside(readme, root):
                    self._promote_readme(readme, staged / LANDING_PAGE, link)
                    files[LANDING_PAGE] = README
                else:
                    bind(self.logger, repository=link.name).warning(
                        "Skipping %s: it leaves the repository checkout", README
                    )

            if not files:
                self._discard(staged)
                if target.exists():
                    self._discard(target)
                return {}
            self._swap(staged, target)
        except BaseException:
            self._discard(staged)
            raise
        self.logger.debug("Copied %d files for %s", len(files), link.name)
        return files

    def _iter_docs(self, docs_root: Path) -> Iterator[Tuple[Path, str]]:
        for dirpath, dirnames, filenames in os.walk(docs_root):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
            current = Path(dirpath)
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                source = current / filename
                if source.is_symlink() or source.suffix.lower() not in self.suffixes:
                    continue
                yield source, source.relative_to(docs_root).as_posix()

    def _promote_readme(self, readme: Path, destination: Path, link: LinkedRepository) -> None:
        text = readme.read_text(encoding="utf-8", errors="surrogateescape")
        rewritten = rewrite_readme_links(
            text, docs_dir=self.docs_dir, html_url=link.html_url, ref=link.ref
        )
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(rewritten, encoding="utf-8", errors="surrogateescape")

    @staticmethod
    def _copy_file(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)

    # ------------------------------------------------------------------
    # Tree maintenance

    def _prune(self, keep: set[str], result: AggregationResult) -> List[str]:
        removed: List[str] = []
        if not self.content_dir.exists():
            return removed
        for entry in sorted(self.content_dir.iterdir()):
            if entry.name in _RESERVED_NAMES or entry.name.startswith(f"{MANIFEST_FILENAME}."):
                continue
            if entry.name in keep:
                continue
            try:
                self._discard(entry)
            except OSError as exc:
                failure = RepositoryAggregationFailed(
                    entry.name, f"stale content removal failed: {exc}"
                )
                bind(self.logger, repository=entry.name, stage=failure.stage).warning(
                    "Could not remove stale content: %s", exc
                )
                result.failed[entry.name] = failure
                continue
            removed.append(entry.name)
            self.logger.info("Removed stale content for %s", entry.name)
        return removed

    def _subtree_path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in _RESERVED_NAMES:
            raise RepositoryAggregationFailed(name, "unsafe repository name")
        return self.content_dir / name

    def _swap(self, staged: Path, target: Path) -> None:
        backup: Optional[Path] = None
        if target.exists():
            backup = staged.with_name(f"{staged.name}.old")
            os.replace(target, backup)
        try:
            os.replace(staged, target)
        except BaseException:
            if backup is not None:
                os.replace(backup, target)
            raise
        self._discard(backup)

    def _write_manifest(self, manifest: Mapping[str, Mapping[str, object]]) -> None:
        payload = {"version": _MANIFEST_VERSION, "repositories": dict(sorted(manifest.items()))}
        self.content_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.manifest_path.with_name(f"{MANIFEST_FILENAME}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.manifest_path)

    def _render_landing_page(
        self, links: Sequence[LinkedRepository], manifest: Mapping[str, Mapping[str, object]]
    ) -> None:
        repositories = [
            {
                "name": link.name,
                "html_url": link.html_url,
                "ref": link.ref,
                "short_ref": link.ref[:12],
                "has_docs": link.name in manifest,
            }
            for link in sorted(links, key=lambda item: item.name.lower())
        ]
        template = self._env.get_template("index.md.j2")
        content = template.render(
            title=self.site_title or "Documentation",
            repositories=repositories,
            generated_at=datetime.now(UTC).strftime("%Y-%m-%d %H:%M UTC"),
        )
        (self.content_dir / LANDING_PAGE).write_text(content.rstrip() + "\n", encoding="utf-8")

    @staticmethod
    def _discard(path: Optional[Path]) -> None:
        if path is None or not (path.exists() or path.is_symlink()):
            return
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()


def rewrite_readme_links(
    markdown: str, *, docs_dir: str, html_url: str | None = None, ref: str | None = None
) -> str:
    """Re-point the relative links of a root README served as ``<docs_dir>/index.md``.

    Links into ``docs_dir`` drop that prefix. Other links to files in the
    repository point at ``<html_url>/blob/<ref>/<path>`` when both are known.
    Absolute URLs, anchors, links leaving the repository and fenced code
    blocks are left untouched.
    """
    docs_dir = docs_dir.strip("/")

    def replace(match: re.Match[str]) -> str:
        return match.group(1) + _rewrite_target(match.group(2), docs_dir, html_url, ref)

    output: List[str] = []
    fence: Optional[str] = None
    for line in markdown.splitlines(keepends=True):
        marker = _FENCE.match(line)
        if fence is not None:
            if marker and marker.group(1) == fence:
                fence = None
            output.append(line)
            continue
        if marker:
            fence = marker.group(1)
            output.append(line)
            continue
        line = _INLINE_LINK.sub(replace, line)
        output.append(_REFERENCE_LINK.sub(replace, line))
    return "".join(output)


def _rewrite_target(target: str, docs_dir: str, html_url: str | None, ref: str | None) -> str:
    bracketed = target.startswith("<") and target.endswith(">")
    raw = target[1:-1] if bracketed else target
    if not raw or raw.startswith(("#", "/")) or _SCHEME.match(raw):
        return target
    path, sep, fragment = raw.partition("#")
    normalized = posixpath.normpath(path)
    if normalized in (".", "..") or normalized.startswith("../"):
        return target
    if normalized == docs_dir:
        rewritten = LANDING_PAGE
    elif normalized.startswith(f"{docs_dir}/"):
        rewritten = normalized[len(docs_dir) + 1 :]
    elif html_url and ref:
        rewritten = f"{html_url.rstrip('/')}/blob/{ref}/{normalized}"
    else:
        return target
    rewritten = f"{rewritten}{sep}{fragment}"
    return f"<{rewritten}>" if bracketed else rewritten


def _inside(path: Path, root: Path) -> bool:
    if path.is_symlink():
        return False
    return path.resolve().is_relative_to(root)


def _tree_from_manifest(manifest: Mapping[str, Mapping[str, object]]) -> Dict[str, ContentEntry]:
    tree: Dict[str, ContentEntry] = {}
    for name, entry in manifest.items():
        ref = entry.get("ref")
        files = entry.get("files")
        if not isinstance(ref, str) or not isinstance(files, dict):
            continue
        for relative, source in files.items():
            tree[f"{name}/{relative}"] = ContentEntry(
                repository=name, source_path=str(source), ref=ref
            )
    return tree


def _create_env(templates_dir: Path | None) -> Environment:
    directories: List[str] = []
    if templates_dir:
        directories.append(str(templates_dir))
    directories.append(str(Path(__file__).with_name("templates")))
    loader = FileSystemLoader(list(dict.fromkeys(directories)))
    return Environment(loader=loader, autoescape=False, trim_blocks=True, lstrip_blocks=True)


__all__ = [
    "ContentAggregator",
    "DEFAULT_SUFFIXES",
    "LANDING_PAGE",
    "MANIFEST_FILENAME",
    "rewrite_readme_links",
]
