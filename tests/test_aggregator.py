"""Tests for the content aggregator."""

from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest

from orgdocs.aggregator import MANIFEST_FILENAME, ContentAggregator, rewrite_readme_links
from orgdocs.errors import RepositoryAggregationFailed
from orgdocs.models import LinkedRepository

REF = "c0ffee" + "0" * 34


def _snapshot(root: Path, name: str, files: Dict[str, str], ref: str = REF) -> LinkedRepository:
    checkout = root / "repos" / name
    for relative, content in files.items():
        path = checkout / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    checkout.mkdir(parents=True, exist_ok=True)
    return LinkedRepository(
        name=name,
        ref=ref,
        path=str(checkout),
        html_url=f"https://github.com/acme/{name}",
    )


def test_aggregate_copies_docs_subtrees(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(
        tmp_path,
        "alpha",
        {
            "docs/index.md": "# Alpha\n",
            "docs/guide/setup.md": "Setup\n",
            "docs/img/logo.png": "png",
            "docs/.hidden.md": "secret",
            "docs/notes.txt": "ignored",
            "src/main.py": "print()",
        },
    )

    result = aggregator.aggregate([alpha])

    content = aggregator.content_dir
    assert result.failed == {}
    assert result.paths_for("alpha") == [
        "alpha/guide/setup.md",
        "alpha/img/logo.png",
        "alpha/index.md",
    ]
    assert (content / "alpha" / "guide" / "setup.md").read_text(encoding="utf-8") == "Setup\n"
    assert not (content / "alpha" / ".hidden.md").exists()
    assert not (content / "alpha" / "notes.txt").exists()
    entry = result.tree["alpha/guide/setup.md"]
    assert entry.repository == "alpha"
    assert entry.source_path == "docs/guide/setup.md"
    assert entry.ref == REF


def test_readme_becomes_landing_page_when_index_missing(
    tmp_path: Path, aggregator: ContentAggregator
) -> None:
    beta = _snapshot(
        tmp_path,
        "beta",
        {
            "README.md": "# Beta\n\nSee [the guide](docs/guide.md) and [code](src/lib.py).\n",
            "docs/guide.md": "Guide\n",
        },
    )

    result = aggregator.aggregate([beta])

    index = (aggregator.content_dir / "beta" / "index.md").read_text(encoding="utf-8")
    assert index == (
        "# Beta\n\nSee [the guide](guide.md) and "
        f"[code](https://github.com/acme/beta/blob/{REF}/src/lib.py).\n"
    )
    assert result.tree["beta/index.md"].source_path == "README.md"


def test_readme_is_skipped_when_disabled(tmp_path: Path) -> None:
    aggregator = ContentAggregator(tmp_path / "content", include_readme=False)
    gamma = _snapshot(tmp_path, "gamma", {"README.md": "# Gamma\n", "docs/a.md": "A\n"})

    result = aggregator.aggregate([gamma])

    assert result.paths_for("gamma") == ["gamma/a.md"]


def test_repository_without_docs_contributes_nothing(
    tmp_path: Path, aggregator: ContentAggregator
) -> None:
    bare = _snapshot(tmp_path, "bare", {"README.md": "# Bare\n"})

    result = aggregator.aggregate([bare])

    assert result.paths_for("bare") == []
    assert result.failed == {}
    assert not (aggregator.content_dir / "bare").exists()


def test_stale_subtrees_are_pruned(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    gamma = _snapshot(tmp_path, "gamma", {"docs/index.md": "G\n"})
    aggregator.aggregate([alpha, gamma])

    result = aggregator.aggregate([alpha])

    assert result.removed == ["gamma"]
    assert not (aggregator.content_dir / "gamma").exists()
    assert all(entry.repository == "alpha" for entry in result.tree.values())


def test_removed_docs_files_disappear(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n", "docs/old.md": "old\n"})
    aggregator.aggregate([alpha])
    (Path(alpha.path) / "docs" / "old.md").unlink()

    result = aggregator.aggregate([alpha])

    assert result.paths_for("alpha") == ["alpha/index.md"]
    assert not (aggregator.content_dir / "alpha" / "old.md").exists()


def test_failed_repository_keeps_previous_content(
    tmp_path: Path, aggregator: ContentAggregator
) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    beta = _snapshot(tmp_path, "beta", {"docs/index.md": "B\n"})
    aggregator.aggregate([alpha, beta])
    missing = LinkedRepository(name="beta", ref=REF, path=str(tmp_path / "gone"))

    result = aggregator.aggregate([alpha, missing])

    assert isinstance(result.failed["beta"], RepositoryAggregationFailed)
    assert result.failed["beta"].stage == "aggregate"
    assert (aggregator.content_dir / "beta" / "index.md").read_text(encoding="utf-8") == "B\n"
    assert result.paths_for("beta") == ["beta/index.md"]
    assert result.paths_for("alpha") == ["alpha/index.md"]


def test_aggregation_is_idempotent(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n", "docs/b.md": "[a](index.md)\n"})

    first = aggregator.aggregate([alpha])
    second = aggregator.aggregate([alpha])

    assert first.tree == second.tree
    assert not (aggregator.content_dir / ".staging").exists() or not any(
        (aggregator.content_dir / ".staging").iterdir()
    )


def test_manifest_and_landing_page(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    bare = _snapshot(tmp_path, "bare", {"src/x.py": ""})

    result = aggregator.aggregate([alpha, bare])

    assert (aggregator.content_dir / MANIFEST_FILENAME).is_file()
    assert aggregator.content_tree() == result.tree
    landing = (aggregator.content_dir / "index.md").read_text(encoding="utf-8")
    assert "[alpha](alpha/index.md)" in landing
    assert "bare" in landing
    assert "[bare](" not in landing


def test_custom_templates_override_landing_page(tmp_path: Path) -> None:
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "index.md.j2").write_text(
        "# {{ title }}\n{% for repo in repositories %}- {{ repo.name }}\n{% endfor %}",
        encoding="utf-8",
    )
    aggregator = ContentAggregator(
        tmp_path / "content", templates_dir=templates, site_title="Acme Docs"
    )

    aggregator.aggregate([_snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})])

    landing = (tmp_path / "content" / "index.md").read_text(encoding="utf-8")
    assert landing == "# Acme Docs\n- alpha\n"


def test_remove_subtree_forgets_manifest_entry(tmp_path: Path, aggregator: ContentAggregator) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    aggregator.aggregate([alpha])

    aggregator.remove_subtree("alpha")
    aggregator.remove_subtree("alpha")

    assert not (aggregator.content_dir / "alpha").exists()
    assert aggregator.content_tree() == {}


def test_documents_are_copied_verbatim(tmp_path: Path, aggregator: ContentAggregator) -> None:
    body = "# Guide\n\nSee [the code](../src/app.py) and ![logo](img/logo.png).\n"
    alpha = _snapshot(tmp_path, "alpha", {"docs/guide.md": body})

    aggregator.aggregate([alpha])

    assert (aggregator.content_dir / "alpha" / "guide.md").read_text(encoding="utf-8") == body


def test_readme_links_follow_the_promoted_page() -> None:
    readme = (
        "# Project\n"
        "[Usage](docs/usage.md#install) [Docs](./docs/) [License](LICENSE)\n"
        "[Site](https://acme.dev) [Top](#project) [Root](/abs.md) [Up](../other/x.md)\n"
        "![logo](<docs/img/logo.png>)\n"
        "\n"
        "```md\n"
        "[kept](docs/usage.md)\n"
        "```\n"
        "[ref]: src/main.py\n"
    )

    rewritten = rewrite_readme_links(
        readme, docs_dir="docs", html_url="https://github.com/acme/beta", ref="abc123"
    )

    assert rewritten.splitlines() == [
        "# Project",
        "[Usage](usage.md#install) [Docs](index.md) "
        "[License](https://github.com/acme/beta/blob/abc123/LICENSE)",
        "[Site](https://acme.dev) [Top](#project) [Root](/abs.md) [Up](../other/x.md)",
        "![logo](<img/logo.png>)",
        "",
        "```md",
        "[kept](docs/usage.md)",
        "```",
        "[ref]: https://github.com/acme/beta/blob/abc123/src/main.py",
    ]


def test_readme_links_outside_docs_stay_relative_without_hosting_url() -> None:
    assert rewrite_readme_links("[code](src/lib.py)", docs_dir="docs") == "[code](src/lib.py)"


def test_dotted_repository_names_get_their_own_subtree(
    tmp_path: Path, aggregator: ContentAggregator
) -> None:
    profile = _snapshot(tmp_path, ".github", {"docs/index.md": "# Profile\n"})
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    aggregator.aggregate([profile, alpha])

    result = aggregator.aggregate([profile, alpha])

    assert result.failed == {}
    assert result.removed == []
    assert result.paths_for(".github") == [".github/index.md"]
    content = aggregator.content_dir / ".github" / "index.md"
    assert content.read_text(encoding="utf-8") == "# Profile\n"


def test_dotted_subtree_is_pruned_once_unlinked(tmp_path: Path, aggregator: ContentAggregator) -> None:
    profile = _snapshot(tmp_path, ".github", {"docs/index.md": "# Profile\n"})
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    aggregator.aggregate([profile, alpha])

    result = aggregator.aggregate([alpha])

    assert result.removed == [".github"]
    assert not (aggregator.content_dir / ".github").exists()
    assert aggregator.manifest_path.is_file()


@pytest.mark.parametrize("name", [".staging", MANIFEST_FILENAME, "index.md", ".."])
def test_reserved_names_are_refused(tmp_path: Path, aggregator: ContentAggregator, name: str) -> None:
    checkout = tmp_path / "repos" / "reserved"
    (checkout / "docs").mkdir(parents=True)
    (checkout / "docs" / "index.md").write_text("x\n", encoding="utf-8")
    link = LinkedRepository(name=name, ref=REF, path=str(checkout))

    result = aggregator.aggregate([link])

    assert "unsafe repository name" in str(result.failed[name])


def test_symlinked_readme_is_not_promoted(tmp_path: Path, aggregator: ContentAggregator) -> None:
    secret = tmp_path / "host-secret.txt"
    secret.write_text("root:password\n", encoding="utf-8")
    beta = _snapshot(tmp_path, "beta", {"docs/guide.md": "Guide\n"})
    (Path(beta.path) / "README.md").symlink_to(secret)

    result = aggregator.aggregate([beta])

    assert result.paths_for("beta") == ["beta/guide.md"]
    assert not (aggregator.content_dir / "beta" / "index.md").exists()


def test_docs_directory_leaving_the_checkout_is_skipped(
    tmp_path: Path, aggregator: ContentAggregator
) -> None:
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    (outside / "private.md").write_text("private\n", encoding="utf-8")
    beta = _snapshot(tmp_path, "beta", {"README.md": "# Beta\n"})
    (Path(beta.path) / "docs").symlink_to(outside, target_is_directory=True)

    result = aggregator.aggregate([beta])

    assert result.failed == {}
    assert result.paths_for("beta") == []
    assert not (aggregator.content_dir / "beta").exists()


def test_stale_removal_failure_is_reported_per_repository(
    tmp_path: Path, aggregator: ContentAggregator, monkeypatch: pytest.MonkeyPatch
) -> None:
    alpha = _snapshot(tmp_path, "alpha", {"docs/index.md": "A\n"})
    gamma = _snapshot(tmp_path, "gamma", {"docs/index.md": "G\n"})
    aggregator.aggregate([alpha, gamma])
    discard = ContentAggregator._discard

    def stubborn(path: Path | None) -> None:
        if path is not None and path.name == "gamma":
            raise PermissionError(f"cannot delete {path}")
        discard(path)

    monkeypatch.setattr(aggregator, "_discard", stubborn)

    result = aggregator.aggregate([alpha])

    assert result.removed == []
    assert isinstance(result.failed["gamma"], RepositoryAggregationFailed)
    assert "stale content removal failed" in str(result.failed["gamma"])
    assert result.paths_for("alpha") == ["alpha/index.md"]
    assert (aggregator.content_dir / "index.md").is_file()
