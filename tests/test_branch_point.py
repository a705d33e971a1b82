"""Tests for branch point resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from csflow.topology.branch_point import BranchPointResolver
from csflow.vcs.gateway import RefNotFound
from csflow.vcs.repo import Repository

from conftest import commit_file, git


def _resolver(path: Path) -> BranchPointResolver:
    return BranchPointResolver(Repository(path))


def _start_changeset(clone: Path, name: str, base: str = "origin/master") -> None:
    git(clone, "checkout", "-q", "-b", name, base)


class TestExclusions:
    def test_remote_environment_branches(self, clone: Path):
        assert _resolver(clone).exclusions("e1") == ["^origin/master"]

    def test_promotion_marker_replaces_branch(self, clone: Path):
        _start_changeset(clone, "e1")
        commit_file(clone, "one.txt")
        git(clone, "tag", "cs/e1/to-master")
        assert _resolver(clone).exclusions("e1") == ["^cs/e1/to-master~1"]


class TestBranchPoint:
    def test_linear_history(self, clone: Path):
        base = git(clone, "rev-parse", "origin/master")
        _start_changeset(clone, "e1")
        commit_file(clone, "one.txt")
        commit_file(clone, "two.txt")
        assert _resolver(clone).branch_point("e1") == base

    def test_defaults_to_current_branch(self, clone: Path):
        base = git(clone, "rev-parse", "origin/master")
        _start_changeset(clone, "e2")
        commit_file(clone, "one.txt")
        assert _resolver(clone).branch_point() == base

    def test_no_commits_yet(self, clone: Path):
        base = git(clone, "rev-parse", "origin/master")
        _start_changeset(clone, "e3")
        assert _resolver(clone).branch_point("e3") == base

    def test_merge_short_circuit(self, clone: Path):
        _start_changeset(clone, "side")
        source = commit_file(clone, "side.txt")
        _start_changeset(clone, "e4")
        commit_file(clone, "mine.txt")
        git(clone, "merge", "--no-ff", "-m", "merge side", "side")
        commit_file(clone, "after.txt")
        commit_file(clone, "more.txt")
        assert _resolver(clone).branch_point("e4") == source

    def test_stops_at_other_changeset_head(self, clone: Path):
        _start_changeset(clone, "e5")
        parent_head = commit_file(clone, "e5.txt")
        git(clone, "tag", "cs/e5/head")
        _start_changeset(clone, "e6", "e5")
        commit_file(clone, "e6.txt")
        assert _resolver(clone).branch_point("e6") == parent_head

    def test_own_head_marker_does_not_stop(self, clone: Path):
        base = git(clone, "rev-parse", "origin/master")
        _start_changeset(clone, "e7")
        commit_file(clone, "one.txt")
        commit_file(clone, "two.txt")
        git(clone, "tag", "cs/e7/head")
        assert _resolver(clone).branch_point("cs/e7/head") == base

    def test_not_a_changeset_ref(self, clone: Path):
        with pytest.raises(ValueError):
            _resolver(clone).branch_point("refs/heads/master")

    def test_invalid_ref(self, clone: Path):
        with pytest.raises(RefNotFound):
            _resolver(clone).branch_point("e404")


class TestBranchBasis:
    def test_environment_branch(self, clone: Path):
        base = git(clone, "rev-parse", "origin/master")
        assert _resolver(clone).branch_basis(base) == "master"

    def test_changeset_head(self, local_repo: Path):
        commit = commit_file(local_repo, "x.txt")
        git(local_repo, "tag", "cs/e9/head")
        assert _resolver(local_repo).branch_basis(commit) == "e9"

    def test_promotion_marker(self, local_repo: Path):
        commit = git(local_repo, "rev-parse", "HEAD")
        git(local_repo, "tag", "cs/e9/to-stage")
        assert _resolver(local_repo).branch_basis(commit) == "stage"

    def test_unknown(self, local_repo: Path):
        commit = commit_file(local_repo, "y.txt")
        git(local_repo, "checkout", "-q", "--detach")
        git(local_repo, "branch", "-f", "master", "HEAD~1")
        assert _resolver(local_repo).branch_basis(commit) == "unknown"
        assert _resolver(local_repo).branch_basis(None) == "unknown"
