"""Repository — the per-invocation context every csflow component shares.

A :class:`Repository` owns the git gateway and all of the state that is
cached for the lifetime of one command: the ref decoration cache, resolved
changeset names, parsed git configuration, the project name and whether
tags were already fetched.  Call :meth:`Repository.reset` to drop them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from csflow.config import (
    HEAD_TAG,
    PENDING_REVIEW_REF,
    PROJECT_FILE,
    REMOTE,
)
from csflow.vcs.decorations import DecorationCache
from csflow.vcs.gateway import CommandFailed, GitGateway, RefNotFound

logger = logging.getLogger(__name__)

_SHA1 = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")
_PROJECT_NAME = re.compile(r"^\s*name\s*:\s*(.*)$", re.MULTILINE)


@dataclass
class Commit:
    """A single commit from ``git log --pretty=raw``."""

    commit: str
    parents: list[str] = field(default_factory=list)
    message: list[str] = field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


def parse_raw_log(lines: list[str]) -> Iterator[Commit]:
    """Parse ``git log --pretty=raw`` output into :class:`Commit` records."""
    current: Commit | None = None
    in_header = False
    for line in lines:
        if line.startswith("commit "):
            if current is not None:
                yield current
            current = Commit(commit=line.split()[1])
            in_header = True
            continue
        if current is None:
            continue
        if in_header:
            if line == "":
                in_header = False
            elif line.startswith("parent "):
                current.parents.append(line.split()[1])
            continue
        current.message.append(line[4:] if line.startswith("    ") else line)
    if current is not None:
        yield current


class Repository:
    """Query and tag a git repository on behalf of csflow.

    Parameters
    ----------
    path:
        Any directory inside the working tree.  Defaults to the current
        working directory.
    remote:
        Name of the shared remote.
    """

    def __init__(self, path: str | Path | None = None, remote: str = REMOTE) -> None:
        self.git = GitGateway(path)
        self.remote = remote
        self._decorations: DecorationCache | None = None
        self._full_names: dict[str, str] = {}
        self._git_config: dict[str, Any] | None = None
        self._project_name: str | None = None
        self._git_dir: Path | None = None
        self._fetched_tags = False

    @classmethod
    def clone(cls, url: str, dest: str | Path) -> Repository:
        """Clone *url* into *dest* (relative to the caller's directory)."""
        GitGateway().run("clone", url, str(dest))
        logger.info("Cloned %s -> %s", url, dest)
        return cls(dest)

    def reset(self) -> None:
        """Drop every cached lookup so the next call sees fresh state."""
        if self._decorations is not None:
            self._decorations.reset()
        self._full_names.clear()
        self._git_config = None
        self._project_name = None
        self._fetched_tags = False

    # -- Locations ------------------------------------------------------------

    @property
    def path(self) -> Path:
        """The working tree's top-level directory."""
        return self.git.toplevel

    @property
    def git_dir(self) -> Path:
        """Absolute path of the ``.git`` directory (bare repositories too)."""
        if self._git_dir is None:
            raw = self.git.scalar("rev-parse", "--git-dir")
            self._git_dir = (self.path / raw).resolve()
        return self._git_dir

    @property
    def common_dir(self) -> Path:
        raw = self.git.scalar("rev-parse", "--git-common-dir")
        return (self.path / raw).resolve()

    def project_root(self) -> Path:
        """Return the project root; bare repositories don't have one."""
        if self.git_dir.name != ".git":
            raise ValueError("Bare repositories don't have a meaningful project root")
        return self.git_dir.parent

    def project_name(self) -> str | None:
        """Return the project name recorded in the committed ``.csflow`` file."""
        if self._project_name is None:
            text = self.git.scalar("show", f"HEAD:{PROJECT_FILE}")
            if text.startswith("fatal:"):
                return None
            match = _PROJECT_NAME.search(text)
            if match:
                self._project_name = match.group(1).strip()
        return self._project_name

    # -- Decorations ----------------------------------------------------------

    @property
    def decorations(self) -> DecorationCache:
        if self._decorations is None:
            self._decorations = DecorationCache(self.git, self.common_dir)
        return self._decorations

    def decorations_of(self, commit: str) -> set[str]:
        return self.decorations.decorations_of(commit)

    def tag(self, name: str, commit: str = "HEAD", forced: bool = False) -> None:
        """Create a tag, keeping the decoration cache current.

        Always use this rather than running ``git tag`` directly.
        """
        self.decorations.tag(name, commit, forced=forced)

    def untag(self, name: str) -> None:
        self.decorations.untag(name)

    # -- Refs -----------------------------------------------------------------

    def current_branch(self) -> str:
        """Return the name of the checked out branch."""
        return self.git.scalar("rev-parse", "--abbrev-ref", "HEAD")

    def is_valid_ref(self, name: str | None) -> str | None:
        """Return the object id *name* resolves to, or *None*."""
        if name is None:
            return None
        sha = self.git.scalar("rev-parse", "--verify", "--quiet", name)
        if _SHA1.match(sha):
            return sha
        return None

    def resolve(self, name: str) -> str:
        """Like :meth:`is_valid_ref` but raises :class:`RefNotFound`."""
        sha = self.is_valid_ref(name)
        if sha is None:
            raise RefNotFound(name)
        return sha

    def tags(self, pattern: str) -> list[str]:
        """Return tag names matching a ``git tag -l`` glob."""
        return self.git.lines("tag", "-l", pattern)

    def full_changeset_name(self, name: str, missing_ok: bool = False) -> str | None:
        """Return a ref addressing the head of changeset *name*.

        Merged changesets win over pending-review ones, which win over
        open branches.  Raises :class:`RefNotFound` unless *missing_ok*.
        """
        if "/" in name:
            raise ValueError(f"'{name}' doesn't look like a changeset name")
        if name in self._full_names:
            return self._full_names[name]

        for candidate in (
            HEAD_TAG.format(cs=name),
            PENDING_REVIEW_REF.format(cs=name),
            name,
        ):
            if self.is_valid_ref(candidate):
                self._full_names[name] = candidate
                return candidate

        if missing_ok:
            return None
        raise RefNotFound(name, f"Cannot determine a full changeset name for '{name}'")

    def is_merge_commit(self, ref: str) -> bool:
        parents = self.git.scalar("log", "-1", "--no-color", "--pretty=format:%P", ref)
        if not parents or parents.startswith("fatal:"):
            return False
        return len(parents.split()) > 1

    def remote_branch_exists(self, branch: str) -> bool:
        """Return *True* if the remote has a branch named *branch*."""
        remote_branches = self.git.lines("branch", "--no-color", "-r")
        return f"{self.remote}/{branch}" in (b.strip() for b in remote_branches)

    def traverse_commits(self, *log_args: str) -> Iterator[Commit]:
        """Yield each commit ``git log <log_args>`` visits."""
        lines = self.git.lines("log", "--no-color", "--pretty=raw", *log_args)
        yield from parse_raw_log(lines)

    # -- Remote ---------------------------------------------------------------

    def fetch_tags(self) -> None:
        """Fetch tags from the remote, at most once per context.

        Remote tags replace local tags of the same name.
        """
        if self._fetched_tags:
            return
        self._fetched_tags = True
        self.git.run("fetch", "--force", self.remote, "--tags")
        if self._decorations is not None:
            self._decorations.reset()

    def push_tags(self, *names: str, force: bool = True) -> None:
        """Publish tags (or ``:name`` deletions) to the remote."""
        if not names:
            return
        args = ["push"]
        if force:
            args.append("--force")
        self.git.run(*args, self.remote, *names)

    def fetch_and_clean_up(self) -> None:
        """Fetch the remote and do routine repository maintenance."""
        self.git.run("remote", "update", "-p", self.remote)
        self.git.run("gc", "--auto")

    # -- Working tree ---------------------------------------------------------

    def is_clean(self) -> bool:
        """Return *True* if tracked files match the index and HEAD."""
        staged = self.git.lines("diff", "-C", "-M", "--name-status", "--cached")
        changed = self.git.lines("diff", "-C", "-M", "--name-status")
        return not staged and not changed

    def git_config(self) -> dict[str, Any]:
        """Return ``git config -l`` as a nested dictionary."""
        if self._git_config is None:
            config: dict[str, Any] = {}
            for line in self.git.lines("config", "-l"):
                name, _, value = line.partition("=")
                parts = name.split(".")
                here = config
                for part in parts[:-1]:
                    node = here.get(part)
                    if not isinstance(node, dict):
                        node = here[part] = {}
                    here = node
                here[parts[-1]] = value
            self._git_config = config
        return self._git_config

    def config_value(self, key: str) -> str | None:
        try:
            value = self.git.lines("config", "--get", key)
        except CommandFailed:
            return None
        return value[0] if value else None
