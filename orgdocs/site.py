"""Hand-off to the external static-site generator."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .config import DEFAULT_BUILD_COMMAND
from .errors import SiteBuildFailed
from .logging import get_logger


class SiteBuilder:
    """Runs the configured build command (``mkdocs build --strict`` by default) in the site root."""

    def __init__(
        self,
        site_root: Path,
        command: Sequence[str] | None = None,
        *,
        runner: Callable[..., str] | None = None,
    ) -> None:
        self.site_root = site_root
        self.command = list(command) if command else list(DEFAULT_BUILD_COMMAND)
        self._runner = runner or self._default_runner
        self.logger = get_logger("site")

    def build(self) -> None:
        if not self.site_root.is_dir():
            raise SiteBuildFailed(f"Site root {self.site_root} does not exist")
        self.logger.info("Building site: %s", " ".join(self.command))
        try:
            output = self._runner(self.command, cwd=self.site_root, capture_output=True)
        except SiteBuildFailed:
            raise
        except (OSError, RuntimeError, subprocess.CalledProcessError) as exc:
            raise SiteBuildFailed(f"Site build failed: {exc}") from exc
        if output.strip():
            self.logger.debug("%s", output.strip())

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        command = list(args)
        try:
            completed = subprocess.run(
                command,
                cwd=str(cwd),
                check=True,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise SiteBuildFailed(f"Site builder '{command[0] if command else ''}' is not installed") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit code {exc.returncode}"
            raise SiteBuildFailed(f"Site build failed: {detail}") from exc
        return completed.stdout if capture_output else ""


__all__ = ["SiteBuilder"]
