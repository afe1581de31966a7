"""Tests for the git helpers against a throwaway repository."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from workflow_engine.git import GitRepository

pytestmark = pytest.mark.skipif(not GitRepository.git_available(), reason="git not installed")


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    for args in (
        ["init", "-q", "-b", "main"],
        ["config", "user.email", "dev@example.com"],
        ["config", "user.name", "Dev"],
        ["config", "commit.gpgsign", "false"],
    ):
        subprocess.run(["git", *args], cwd=path, check=True, capture_output=True)
    return path


def test_plain_directory_is_not_a_repository(tmp_path: Path) -> None:
    repo = GitRepository(tmp_path / "missing")
    assert repo.is_repository() is False
    assert repo.current_commit_hash() is None


def test_empty_repository_has_no_commit(repo_dir: Path) -> None:
    repo = GitRepository(repo_dir)

    assert repo.is_repository() is True
    assert repo.current_commit_hash() is None
    assert repo.has_uncommitted_changes() is False


def test_commit_roundtrip(repo_dir: Path) -> None:
    repo = GitRepository(repo_dir)
    (repo_dir / "README.md").write_text("hello\n", encoding="utf-8")

    assert repo.has_uncommitted_changes() is True
    assert repo.create_commit("WIP: transition to plan") is True

    assert repo.has_uncommitted_changes() is False
    assert repo.current_branch() == "main"
    commit = repo.current_commit_hash()
    assert commit is not None and len(commit) == 40


def test_nothing_to_commit_returns_false(repo_dir: Path) -> None:
    assert GitRepository(repo_dir).create_commit("empty") is False
