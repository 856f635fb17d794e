"""Tests for orgdocs.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from orgdocs.config import OrgDocsConfig, load_config, load_ignorelist, resolve_token
from orgdocs.errors import InvalidConfiguration
from orgdocs.models import IgnoreRules


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, OrgDocsConfig)
    assert config.root == tmp_path.resolve()
    assert config.organization is None
    assert config.ignore == IgnoreRules()
    assert config.sync.workers == 4
    assert config.content.docs_dir == "docs"
    assert config.site.build_command == ["mkdocs", "build", "--strict"]
    assert config.content_path == tmp_path.resolve() / "site" / "docs" / "repos"


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    (tmp_path / "orgdocs.yml").write_text(
        """
organization: fusabi-lang
github:
  api_url: "https://ghe.example.com/api/v3/"
  token: "secret"
  timeout: 10
  max_retries: 2
ignore:
  repositories: [".github", "infra"]
  patterns:
    - "*-archive"
  exclude_forks: true
  exclude_private: true
sync:
  workers: 8
  repos_dir: state/repos
content:
  docs_dir: /documentation/
  include_readme: false
site:
  root: www
  build_command: "mkdocs build --strict"
  templates_dir: templates
  title: Fusabi Docs
""",
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.organization == "fusabi-lang"
    assert config.github.api_url == "https://ghe.example.com/api/v3"
    assert config.github.token == "secret"
    assert config.github.timeout == pytest.approx(10.0)
    assert config.github.max_retries == 2
    assert config.ignore.explicit_names == frozenset({".github", "infra"})
    assert config.ignore.patterns == ("*-archive",)
    assert config.ignore.exclude_forks is True
    assert config.ignore.exclude_archived is False
    assert config.ignore.exclude_private is True
    assert config.ignore.require_docs_directory is False
    assert config.sync.workers == 8
    assert config.repos_path == tmp_path.resolve() / "state" / "repos"
    assert config.content.docs_dir == "documentation"
    assert config.content.include_readme is False
    assert config.site.build_command == ["mkdocs", "build", "--strict"]
    assert config.site.templates_dir == tmp_path.resolve() / "templates"
    assert config.site.title == "Fusabi Docs"


def test_standalone_ignorelist_overrides_section(tmp_path: Path) -> None:
    (tmp_path / "orgdocs.yml").write_text(
        "organization: acme\nignore:\n  exclude_forks: true\n", encoding="utf-8"
    )
    ignorelist = tmp_path / "ignore.yml"
    ignorelist.write_text(
        "repositories:\n  - legacy\nrequire_docs_directory: true\n", encoding="utf-8"
    )

    config = load_config(tmp_path, ignorelist=ignorelist)

    assert config.ignore.explicit_names == frozenset({"legacy"})
    assert config.ignore.require_docs_directory is True
    assert config.ignore.exclude_forks is False


def test_ignorelist_accepts_nested_ignore_key(tmp_path: Path) -> None:
    path = tmp_path / "ignore.yml"
    path.write_text("ignore:\n  exclude_archived: true\n", encoding="utf-8")

    assert load_ignorelist(path).exclude_archived is True


@pytest.mark.parametrize(
    "body",
    [
        "ignore:\n  exclude_forks: 'yes'\n",
        "ignore:\n  repositories: {a: 1}\n",
        "ignore:\n  patterns: [1, 2]\n",
        "ignore:\n  unknown_flag: true\n",
        "ignore: [a, b]\n",
        "- just\n- a list\n",
        "organization: [broken\n",
        "sync:\n  workers: 0\n",
    ],
)
def test_malformed_configuration_is_rejected(tmp_path: Path, body: str) -> None:
    (tmp_path / "orgdocs.yml").write_text(body, encoding="utf-8")

    with pytest.raises(InvalidConfiguration):
        load_config(tmp_path)


def test_missing_ignorelist_file_is_invalid(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfiguration):
        load_ignorelist(tmp_path / "absent.yml")


def test_resolve_token_prefers_config_then_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("ORGDOCS_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.setenv("GITHUB_TOKEN", "from-env")
    config = load_config(tmp_path)

    assert resolve_token(config.github) == "from-env"

    config.github.token = "explicit"
    assert resolve_token(config.github) == "explicit"


@pytest.mark.parametrize("filename", ["orgdocs.yml", "ignore.yml"])
def test_undecodable_files_are_invalid_configuration(tmp_path: Path, filename: str) -> None:
    path = tmp_path / filename
    path.write_bytes(b"organization: acme\n\xff\xfe\x00broken\n")

    with pytest.raises(InvalidConfiguration, match="Failed to read"):
        if filename == "orgdocs.yml":
            load_config(tmp_path)
        else:
            load_ignorelist(path)


@pytest.mark.parametrize("content_dir", [".", "site", "site/docs", ".orgdocs", "..", "site/"])
def test_content_dir_must_be_dedicated(tmp_path: Path, content_dir: str) -> None:
    (tmp_path / "orgdocs.yml").write_text(
        f"content:\n  content_dir: {content_dir!r}\n", encoding="utf-8"
    )

    with pytest.raises(InvalidConfiguration, match="dedicated directory"):
        load_config(tmp_path)


def test_content_dir_may_sit_anywhere_it_owns(tmp_path: Path) -> None:
    (tmp_path / "orgdocs.yml").write_text(
        "content:\n  content_dir: site/docs/org\n", encoding="utf-8"
    )

    config = load_config(tmp_path)

    assert config.content_path == tmp_path.resolve() / "site" / "docs" / "org"
