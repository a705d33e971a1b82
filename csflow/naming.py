"""Changeset names and the ref naming conventions built on them."""

from __future__ import annotations

import re
from typing import Iterable

from csflow.config import ENVIRONMENTS

_NAME = r"[^/]+"

# Patterns tried by short_ref_name, most specific first
_SHORT_PATTERNS = (
    re.compile(rf"cs/({_NAME})/head"),        # merged changeset
    re.compile(rf"origin/pu/({_NAME})"),      # pending review
    re.compile(rf"^({_NAME})$"),              # already a short name
)

_SORTABLE = re.compile(r"^(\D+)(\d+)(\D*)$")

_NO_NUMBER = 999_999


def environment_pattern(environments: Iterable[str] = ENVIRONMENTS) -> str:
    return "(?:" + "|".join(re.escape(env) for env in environments) + ")"


class RefPatterns:
    """Compiled decoration patterns for one set of environments.

    All patterns match full ref names (``refs/tags/...``,
    ``refs/remotes/...``) and capture the changeset name in group 1.
    """

    def __init__(self, environments: Iterable[str] = ENVIRONMENTS) -> None:
        self.environments = tuple(environments)
        env = environment_pattern(self.environments)
        self.promoted = re.compile(rf"^refs/tags/cs/({_NAME})/to-{env}$")
        self.demoted = re.compile(rf"^refs/tags/cs/({_NAME})/rm-{env}$")
        self.head = re.compile(rf"^refs/tags/cs/({_NAME})/head$")
        self.pending = re.compile(r"^refs/remotes/origin/pu/(.+)$")
        self.env_marker = re.compile(rf"/to-({env})$")
        self.env_branch = re.compile(rf"^refs/remotes/origin/({env})$")
        self.env_snapshot = re.compile(rf"^refs/tags/({env})/[\dTZ_-]{{20}}$")

    def changeset_markers(self) -> tuple[re.Pattern[str], ...]:
        """Patterns naming a changeset, in priority order."""
        return (self.promoted, self.head, self.pending)


def short_ref_name(ref: str | None) -> str | None:
    """Return the changeset name a ref refers to, or *None*.

    This is the inverse of :meth:`Repository.full_changeset_name`.
    """
    if ref is None:
        return None
    for pattern in _SHORT_PATTERNS:
        match = pattern.search(ref)
        if match:
            return match.group(1)
    return None


def changeset_sort_key(name: str) -> tuple[str, int, str]:
    match = _SORTABLE.match(name)
    if match:
        return (match.group(1), int(match.group(2)), match.group(3))
    return (name, _NO_NUMBER, "")


def sort_changesets_by_name(names: Iterable[str]) -> list[str]:
    """Sort changeset names by prefix, then number, then suffix.

    >>> sort_changesets_by_name(["e7386", "e758b", "e758"])
    ['e758', 'e758b', 'e7386']
    """
    return sorted(names, key=changeset_sort_key)


def split_decorations(decorations: str | None) -> list[str]:
    """Split a ``git log --pretty=format:%d`` string into ref names."""
    if decorations is None or len(decorations) < 4:
        return []
    return decorations[2:-1].split(", ")


def parse_changeset_spec(spec: str | None, repo=None) -> tuple[str, str]:
    """Split ``project#changeset`` (or a bare changeset) into its parts.

    With no *spec*, the project and changeset are inferred from *repo*'s
    checked out branch.
    """
    if spec is None:
        if repo is None:
            raise ValueError("A repository is needed to infer the changeset")
        return repo.project_name(), repo.current_branch()

    project, sep, changeset = spec.rpartition("#")
    if sep:
        return project, changeset

    project = repo.project_name() if repo is not None else None
    if not project:
        raise ValueError(
            f"Unable to determine the project for changeset spec '{spec}'.\n"
            "You either need to be inside a csflow repository or specify\n"
            "the full changeset name like project#changeset"
        )
    return project, spec
