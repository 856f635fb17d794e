from __future__ import annotations

from pathlib import Path

import pytest

from orgdocs.aggregator import ContentAggregator
from orgdocs.links import GitLinker, InMemoryLinkStore
from tests._fixtures.fakes import FakeGitRemote


@pytest.fixture
def git_remote() -> FakeGitRemote:
    """Provide an in-memory git remote serving published repositories."""
    return FakeGitRemote()


@pytest.fixture
def linker(tmp_path: Path, git_remote: FakeGitRemote) -> GitLinker:
    return GitLinker(tmp_path / "repos", runner=git_remote)


@pytest.fixture
def store() -> InMemoryLinkStore:
    return InMemoryLinkStore()


@pytest.fixture
def aggregator(tmp_path: Path) -> ContentAggregator:
    return ContentAggregator(tmp_path / "site" / "docs" / "repos", workers=2)
