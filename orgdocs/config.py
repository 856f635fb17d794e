"""Configuration loading for orgdocs (orgdocs.yml and ignorelists)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import InvalidConfiguration
from .models import IgnoreRules

CONFIG_FILENAME = "orgdocs.yml"
TOKEN_ENV_KEYS = ("ORGDOCS_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
DEFAULT_BUILD_COMMAND = ("mkdocs", "build", "--strict")

_IGNORE_KEYS = {
    "repositories",
    "patterns",
    "exclude_forks",
    "exclude_archived",
    "exclude_private",
    "require_docs_directory",
}


@dataclass
class GitHubConfig:
    """Hosting API settings."""

    api_url: str = "https://api.github.com"
    token: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 5
    backoff_base: float = 1.0
    max_backoff: float = 300.0


@dataclass
class SyncConfig:
    """Reconciler settings."""

    workers: int = 4
    repos_dir: str = ".orgdocs/repos"
    depth: int = 1


@dataclass
class ContentConfig:
    """Aggregator settings."""

    docs_dir: str = "docs"
    content_dir: str = "site/docs/repos"
    include_readme: bool = True
    suffixes: List[str] = field(default_factory=list)


@dataclass
class SiteConfig:
    """External site builder settings."""

    root: str = "site"
    build_command: List[str] = field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND))
    templates_dir: Optional[Path] = None
    title: Optional[str] = None


@dataclass
class OrgDocsConfig:
    """Represents the settings defined in orgdocs.yml."""

    root: Path
    organization: Optional[str] = None
    github: GitHubConfig = field(default_factory=GitHubConfig)
    ignore: IgnoreRules = field(default_factory=IgnoreRules)
    sync: SyncConfig = field(default_factory=SyncConfig)
    content: ContentConfig = field(default_factory=ContentConfig)
    site: SiteConfig = field(default_factory=SiteConfig)

    @property
    def repos_path(self) -> Path:
        return self.root / self.sync.repos_dir

    @property
    def content_path(self) -> Path:
        return self.root / self.content.content_dir

    @property
    def site_path(self) -> Path:
        return self.root / self.site.root

    @property
    def state_path(self) -> Path:
        return self.root / ".orgdocs"


def load_config(config_path: Path, *, ignorelist: Path | None = None) -> OrgDocsConfig:
    """Load configuration from disk.

    ``config_path`` may point at the working tree or at the file itself. A
    missing file yields defaults. ``ignorelist`` replaces the ``ignore``
    section with a standalone document.
    """
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    data: Dict[str, Any] = {}
    if config_file.exists():
        data = _read_mapping(config_file)

    github = _parse_github(_section(data, "github"))
    sync = _parse_sync(_section(data, "sync"))
    content = _parse_content(_section(data, "content"))
    site = _parse_site(_section(data, "site"), root)

    if ignorelist is not None:
        ignore = load_ignorelist(ignorelist)
    else:
        ignore = parse_ignore_rules(_section(data, "ignore"))

    config = OrgDocsConfig(
        root=root,
        organization=_expect_str(data.get("organization"), "organization"),
        github=github,
        ignore=ignore,
        sync=sync,
        content=content,
        site=site,
    )
    _check_content_dir(config)
    return config


def load_ignorelist(path: Path) -> IgnoreRules:
    """Load a standalone ignorelist document."""
    path = path.expanduser()
    if not path.exists():
        raise InvalidConfiguration(f"Ignorelist not found: {path}")
    data = _read_mapping(path)
    # Accept both a bare ignorelist and one nested under ``ignore``.
    if "ignore" in data and not (set(data) & _IGNORE_KEYS):
        data = _section(data, "ignore")
    return parse_ignore_rules(data)


def parse_ignore_rules(data: Dict[str, Any]) -> IgnoreRules:
    """Validate an ignorelist mapping; missing fields default to false/empty."""
    unknown = sorted(set(data) - _IGNORE_KEYS)
    if unknown:
        raise InvalidConfiguration(f"Unknown ignorelist fields: {', '.join(unknown)}")
    names = _expect_str_list(data.get("repositories"), "repositories")
    patterns = _expect_str_list(data.get("patterns"), "patterns")
    return IgnoreRules(
        explicit_names=frozenset(names),
        patterns=tuple(dict.fromkeys(patterns)),
        exclude_forks=_expect_bool(data.get("exclude_forks"), "exclude_forks"),
        exclude_archived=_expect_bool(data.get("exclude_archived"), "exclude_archived"),
        exclude_private=_expect_bool(data.get("exclude_private"), "exclude_private"),
        require_docs_directory=_expect_bool(
            data.get("require_docs_directory"), "require_docs_directory"
        ),
    )


def resolve_token(config: GitHubConfig) -> Optional[str]:
    """Return the configured API token, falling back to the environment."""
    if config.token:
        return config.token
    for key in TOKEN_ENV_KEYS:
        value = os.getenv(key)
        if value:
            return value
    return None


def _parse_github(data: Dict[str, Any]) -> GitHubConfig:
    github = GitHubConfig()
    api_url = _expect_str(data.get("api_url"), "github.api_url")
    if api_url:
        github.api_url = api_url.rstrip("/")
    github.token = _expect_str(data.get("token"), "github.token")
    timeout = _expect_number(data.get("timeout"), "github.timeout")
    if timeout is not None:
        github.timeout = timeout
    retries = _expect_int(data.get("max_retries"), "github.max_retries")
    if retries is not None:
        github.max_retries = retries
    backoff = _expect_number(data.get("backoff_base"), "github.backoff_base")
    if backoff is not None:
        github.backoff_base = backoff
    max_backoff = _expect_number(data.get("max_backoff"), "github.max_backoff")
    if max_backoff is not None:
        github.max_backoff = max_backoff
    return github


def _parse_sync(data: Dict[str, Any]) -> SyncConfig:
    sync = SyncConfig()
    workers = _expect_int(data.get("workers"), "sync.workers")
    if workers is not None:
        if workers < 1:
            raise InvalidConfiguration("sync.workers must be at least 1")
        sync.workers = workers
    repos_dir = _expect_str(data.get("repos_dir"), "sync.repos_dir")
    if repos_dir:
        sync.repos_dir = repos_dir
    depth = _expect_int(data.get("depth"), "sync.depth")
    if depth is not None:
        sync.depth = depth
    return sync


def _parse_content(data: Dict[str, Any]) -> ContentConfig:
    content = ContentConfig()
    docs_dir = _expect_str(data.get("docs_dir"), "content.docs_dir")
    if docs_dir:
        content.docs_dir = docs_dir.strip("/")
    content_dir = _expect_str(data.get("content_dir"), "content.content_dir")
    if content_dir:
        content.content_dir = content_dir
    if data.get("include_readme") is not None:
        content.include_readme = _expect_bool(
            data.get("include_readme"), "content.include_readme"
        )
    content.suffixes = _expect_str_list(data.get("suffixes"), "content.suffixes")
    return content


def _parse_site(data: Dict[str, Any], root: Path) -> SiteConfig:
    site = SiteConfig()
    site_root = _expect_str(data.get("root"), "site.root")
    if site_root:
        site.root = site_root
    command = data.get("build_command")
    if isinstance(command, str):
        site.build_command = command.split()
    elif command is not None:
        site.build_command = _expect_str_list(command, "site.build_command")
    templates_dir = _expect_str(data.get("templates_dir"), "site.templates_dir")
    site.templates_dir = root / templates_dir if templates_dir else None
    site.title = _expect_str(data.get("title"), "site.title")
    return site


def _check_content_dir(config: OrgDocsConfig) -> None:
    """Reject content directories that would swallow other orgdocs or site files.

    Aggregation prunes every entry of the content directory it does not own,
    so it must not be the working tree, the site root, the site's docs
    directory, or contain link state.
    """
    content = config.content_path.resolve()
    protected = (
        config.root,
        config.site_path,
        config.site_path / "docs",
        config.state_path,
        config.repos_path,
    )
    for path in protected:
        if path.resolve().is_relative_to(content):
            raise InvalidConfiguration(
                "content.content_dir must be a dedicated directory; "
                f"{config.content.content_dir!r} would also hold {path}"
            )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_mapping(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise InvalidConfiguration(f"Failed to read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidConfiguration(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise InvalidConfiguration(f"{path.name} must contain a mapping at the root")
    return loaded


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidConfiguration(f"'{key}' must be a mapping")
    return value


def _expect_str(value: Any, key: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidConfiguration(f"'{key}' must be a string")
    return str(value)


def _expect_bool(value: Any, key: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise InvalidConfiguration(f"'{key}' must be true or false")


def _expect_int(value: Any, key: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfiguration(f"'{key}' must be an integer")
    return value


def _expect_number(value: Any, key: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfiguration(f"'{key}' must be a number")
    return float(value)


def _expect_str_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, Sequence):
        raise InvalidConfiguration(f"'{key}' must be a list of strings")
    result: List[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise InvalidConfiguration(f"'{key}' entries must be non-empty strings")
        result.append(item.strip())
    return result


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_BUILD_COMMAND",
    "ContentConfig",
    "GitHubConfig",
    "OrgDocsConfig",
    "SiteConfig",
    "SyncConfig",
    "load_config",
    "load_ignorelist",
    "parse_ignore_rules",
    "resolve_token",
]
