"""Explicit per-run context threaded through pipeline components."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import OrgDocsConfig, load_config
from .lock import PipelineLock


@dataclass
class PipelineContext:
    """Working tree, configuration and lock handle for one pipeline run."""

    workdir: Path
    config: OrgDocsConfig
    lock: PipelineLock

    @classmethod
    def load(
        cls,
        workdir: Path | str = ".",
        *,
        config_path: Path | None = None,
        ignorelist: Path | None = None,
        organization: str | None = None,
    ) -> "PipelineContext":
        root = Path(workdir).expanduser().resolve()
        config = load_config(config_path or root, ignorelist=ignorelist)
        # The working tree passed in wins over the config file's directory.
        config.root = root
        if organization:
            config.organization = organization
        return cls(workdir=root, config=config, lock=PipelineLock(root))

    @property
    def links_path(self) -> Path:
        return self.config.state_path / "links.json"


__all__ = ["PipelineContext"]
