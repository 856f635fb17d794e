"""Git snapshot management for linked repositories."""

from __future__ import annotations

import base64
import os
import re
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..logging import get_logger
from ..models import LinkedRepository, RepositoryDescriptor

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")
_SHA = re.compile(r"^[0-9a-f]{40}$")

STAGING_DIRNAME = ".staging"
TRASH_DIRNAME = ".trash"
_RESERVED_NAMES = frozenset({".", "..", STAGING_DIRNAME, TRASH_DIRNAME})


@dataclass(frozen=True)
class Snapshot:
    """A prepared checkout for one repository, not yet visible at its final path."""

    name: str
    ref: str
    target: Path
    staged: Optional[Path]

    @property
    def changed(self) -> bool:
        return self.staged is not None


class GitLinker:
    """Clones repository snapshots into staging and swaps them into place atomically."""

    def __init__(
        self,
        repos_dir: Path,
        *,
        depth: int = 1,
        token: str | None = None,
        runner: Callable[..., str] | None = None,
    ) -> None:
        self.repos_dir = repos_dir
        self.depth = depth
        self._token = token
        self._runner = runner or self._default_runner
        self.logger = get_logger("links.git")

    def path_for(self, name: str) -> Path:
        if not _SAFE_NAME.match(name) or name in _RESERVED_NAMES:
            raise ValueError(f"Refusing unsafe repository name: {name!r}")
        return self.repos_dir / name

    def remote_head(self, descriptor: RepositoryDescriptor) -> str:
        """Return the commit sha of the descriptor's default branch upstream."""
        output = self._git(
            [
                "ls-remote",
                descriptor.clone_url,
                f"refs/heads/{descriptor.default_branch}",
            ],
            cwd=self.repos_dir,
            capture_output=True,
        )
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and _SHA.match(parts[0]):
                return parts[0]
        raise RuntimeError(
            f"Branch '{descriptor.default_branch}' not found upstream for {descriptor.full_name}"
        )

    def prepare(
        self, descriptor: RepositoryDescriptor, current: LinkedRepository | None
    ) -> Snapshot:
        """Clone the latest default-branch commit into staging unless already current."""
        target = self.path_for(descriptor.name)
        self.repos_dir.mkdir(parents=True, exist_ok=True)
        head = self.remote_head(descriptor)
        if current is not None and current.ref == head and target.is_dir():
            self.logger.debug("%s already at %s", descriptor.name, head[:12])
            return Snapshot(name=descriptor.name, ref=head, target=target, staged=None)

        staging_root = self.repos_dir / STAGING_DIRNAME
        staging_root.mkdir(parents=True, exist_ok=True)
        staged = staging_root / f"{descriptor.name}-{uuid.uuid4().hex[:8]}"
        try:
            args = ["clone", "--quiet", "--single-branch", "--branch", descriptor.default_branch]
            if self.depth > 0:
                args.extend(["--depth", str(self.depth)])
            args.extend([descriptor.clone_url, str(staged)])
            self._git(args, cwd=self.repos_dir)
            ref = self._git(["rev-parse", "HEAD"], cwd=staged, capture_output=True).strip()
        except BaseException:
            self.discard(staged)
            raise
        self.logger.debug("Staged %s at %s", descriptor.name, ref[:12])
        return Snapshot(name=descriptor.name, ref=ref, target=target, staged=staged)

    def activate(self, snapshot: Snapshot) -> Optional[Path]:
        """Move a staged snapshot to its final path; return the displaced previous checkout."""
        if snapshot.staged is None:
            return None
        backup: Optional[Path] = None
        if snapshot.target.exists():
            backup = self._trash_path(snapshot.name)
            os.replace(snapshot.target, backup)
        try:
            os.replace(snapshot.staged, snapshot.target)
        except BaseException:
            if backup is not None:
                os.replace(backup, snapshot.target)
            raise
        return backup

    def rollback(self, snapshot: Snapshot, backup: Optional[Path]) -> None:
        """Undo :meth:`activate`, restoring the previous checkout if there was one."""
        if snapshot.staged is None:
            return
        if snapshot.target.exists():
            self.discard(snapshot.target)
        if backup is not None and backup.exists():
            os.replace(backup, snapshot.target)

    def remove(self, name: str) -> None:
        """Delete the local checkout for ``name`` if present."""
        target = self.path_for(name)
        if not target.exists():
            return
        trash = self._trash_path(name)
        os.replace(target, trash)
        try:
            self.discard(trash)
        except OSError as exc:
            # The checkout is already out of place; sweep() retries the delete.
            self.logger.warning("Could not delete removed checkout %s: %s", trash, exc)

    def sweep(self) -> None:
        """Drop staging and trash leftovers from interrupted runs."""
        for dirname in (STAGING_DIRNAME, TRASH_DIRNAME):
            leftover = self.repos_dir / dirname
            if leftover.exists():
                self.logger.debug("Removing leftover %s", leftover)
                self.discard(leftover)

    @staticmethod
    def discard(path: Optional[Path]) -> None:
        if path is not None and path.exists():
            shutil.rmtree(path)

    # ------------------------------------------------------------------
    # Helpers

    def _trash_path(self, name: str) -> Path:
        trash_root = self.repos_dir / TRASH_DIRNAME
        trash_root.mkdir(parents=True, exist_ok=True)
        return trash_root / f"{name}-{uuid.uuid4().hex[:8]}"

    def _git(self, args: Iterable[str], *, cwd: Path, capture_output: bool = False) -> str:
        command = ["git"]
        if self._token:
            credentials = base64.b64encode(f"x-access-token:{self._token}".encode()).decode()
            command.extend(["-c", f"http.extraHeader=Authorization: Basic {credentials}"])
        command.extend(args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        return self._runner(command, cwd=cwd, env=env, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        try:
            completed = subprocess.run(
                list(args),
                cwd=str(cwd),
                env=env,
                check=True,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment dependent
            raise RuntimeError("Unable to locate the git executable") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit code {exc.returncode}"
            raise RuntimeError(f"git {_describe(exc.cmd)} failed: {detail}") from exc
        return completed.stdout if capture_output else ""


def _describe(cmd: object) -> str:
    if isinstance(cmd, (list, tuple)):
        parts = [part for part in cmd[1:] if not str(part).startswith("http.extraHeader")]
        return " ".join(str(part) for part in parts if part != "-c")[:120]
    return str(cmd)


__all__ = ["GitLinker", "Snapshot"]
