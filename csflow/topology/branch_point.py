"""Branch points — where a changeset branch diverged from its parent line.

Given a topology like::

              o-----A
             /
    o---o---X---o---M

where ``A`` is the head of a changeset and ``M`` the head of master, the
branch point of ``A`` is ``X``.  It stays ``X`` after ``A`` is merged.

Topology alone can't tell a sibling changeset from upstream mainline,
because many changesets fork from the same commit, so the walk also
consults ref decorations that follow the changeset naming conventions.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from csflow.config import ENVIRONMENTS, PROMOTED_TAG
from csflow.naming import RefPatterns, short_ref_name
from csflow.vcs.gateway import RefNotFound
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)

_TO_ENV = re.compile(r"/to-(.*)$")


class BranchPointResolver:
    """Find branch points and branch bases for changeset refs.

    Parameters
    ----------
    repo:
        Repository context.
    environments:
        Environment branches whose history bounds the walk.
    """

    def __init__(
        self,
        repo: Repository,
        environments: Iterable[str] = ENVIRONMENTS,
    ) -> None:
        self.repo = repo
        self.environments = tuple(environments)
        self.patterns = RefPatterns(self.environments)

    def exclusions(self, changeset: str) -> list[str]:
        """Return the ``^rev`` arguments that bound a changeset's walk.

        An environment the changeset was promoted to is excluded from the
        commit just before the promotion marker; any other environment is
        excluded through its remote branch.
        """
        promoted = set()
        for tag in self.repo.tags(f"cs/{changeset}/*"):
            match = _TO_ENV.search(tag)
            if match:
                promoted.add(match.group(1))

        excludes = []
        for env in self.environments:
            if env in promoted:
                excludes.append("^" + PROMOTED_TAG.format(cs=changeset, env=env) + "~1")
                continue
            remote_branch = f"{self.repo.remote}/{env}"
            if self.repo.is_valid_ref(remote_branch):
                excludes.append("^" + remote_branch)
            else:
                logger.debug("No %s branch; not excluding it", remote_branch)
        return excludes

    def _is_foreign_marker(self, decoration: str, changeset: str) -> bool:
        for pattern in (self.patterns.head, self.patterns.pending):
            match = pattern.search(decoration)
            if match and match.group(1) != changeset:
                return True
        return False

    def branch_point(self, ref: str | None = None) -> str | None:
        """Return the commit the changeset at *ref* is based on.

        *ref* defaults to the checked out branch.  Returns *None* when the
        ancestry can't be determined.
        """
        if ref is None:
            ref = self.repo.current_branch()
        changeset = short_ref_name(ref)
        if not changeset:
            raise ValueError("You can only find branch points for changeset branches")
        ref_commit = self.repo.is_valid_ref(ref)
        if ref_commit is None:
            raise RefNotFound(ref, "You gave branch_point an invalid ref")

        saw_a_commit = False
        parent: str | None = None
        walk = self.repo.traverse_commits(
            "--first-parent", "--topo-order", ref, *self.exclusions(changeset), "--",
        )
        for commit in walk:
            saw_a_commit = True
            if commit.is_merge:
                # second parent is the merge source
                parent = commit.parents[1]
                break
            decorations = sorted(self.repo.decorations_of(commit.commit))
            if any(self._is_foreign_marker(d, changeset) for d in decorations):
                parent = commit.commit
                break
            parent = commit.parents[0] if commit.parents else None

        if not saw_a_commit:
            # no changeset commits yet
            return ref_commit
        return parent

    def branch_basis(self, commit: str | None) -> str:
        """Return the most specific branch *commit* lies on, or ``"unknown"``.

        Converts an earlier commit on a branch (such as the one tagged
        ``test/2009-12-29T12_13_14``) into that branch's name.
        """
        if not commit:
            return "unknown"
        patterns = (
            self.patterns.env_marker,
            self.patterns.env_branch,
            self.patterns.head,
            self.patterns.env_snapshot,
            self.patterns.pending,
        )
        for decoration in sorted(self.repo.decorations_of(commit)):
            for pattern in patterns:
                match = pattern.search(decoration)
                if match:
                    return match.group(1)
        return "unknown"
