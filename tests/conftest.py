"""Shared helpers: throwaway git repositories driven through subprocess git."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def git(path: Path, *args: str) -> str:
    """Run git in *path* and return its stripped stdout."""
    result = subprocess.run(
        ["git", *args], cwd=path, capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


def _configure_git_user(path: Path) -> None:
    """Set git user.name, user.email, and disable GPG signing in a temp repo."""
    subprocess.run(["git", "config", "user.email", "test@csflow.dev"], cwd=path, capture_output=True)
    subprocess.run(["git", "config", "user.name", "csflow Test"], cwd=path, capture_output=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"], cwd=path, capture_output=True)
    subprocess.run(["git", "config", "tag.gpgsign", "false"], cwd=path, capture_output=True)


def _init_git_repo(path: Path) -> None:
    """Create a git repo at *path* on ``master`` with one initial commit."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-b", "master"], cwd=path, capture_output=True)
    _configure_git_user(path)
    (path / "init.txt").write_text("init")
    (path / ".csflow").write_text("name: demo\n")
    subprocess.run(["git", "add", "."], cwd=path, capture_output=True)
    subprocess.run(["git", "commit", "-m", "init"], cwd=path, capture_output=True)


def commit_file(path: Path, name: str, content: str | None = None, message: str | None = None) -> str:
    """Write *name*, commit it and return the new commit id."""
    (path / name).write_text(content if content is not None else name)
    git(path, "add", name)
    git(path, "commit", "-m", message or f"add {name}")
    return git(path, "rev-parse", "HEAD")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CSFLOW_DEBUG", "DEBUG", "CSFLOW_NO_ITS", "GITC_NO_EVENTUM", "CSFLOW_CONFIG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def local_repo(tmp_path: Path) -> Path:
    """A standalone repository with one commit on master."""
    path = tmp_path / "repo"
    _init_git_repo(path)
    return path


@pytest.fixture()
def clone(tmp_path: Path) -> Path:
    """A working clone whose ``origin`` is a bare repository."""
    seed = tmp_path / "seed"
    _init_git_repo(seed)
    origin = tmp_path / "origin.git"
    git(tmp_path, "clone", "--bare", str(seed), str(origin))
    work = tmp_path / "work"
    git(tmp_path, "clone", str(origin), str(work))
    _configure_git_user(work)
    return work


@pytest.fixture()
def other_clone(clone: Path, tmp_path: Path) -> Path:
    """A second working clone of the same ``origin`` as :func:`clone`."""
    work = tmp_path / "other"
    git(tmp_path, "clone", str(tmp_path / "origin.git"), str(work))
    _configure_git_user(work)
    return work
