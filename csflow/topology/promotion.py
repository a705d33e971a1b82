"""PromotionGraph — which changesets one set of environment heads lacks."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from csflow.config import BACKSTOP_TAG, ENVIRONMENTS, PROMOTED_TAG
from csflow.naming import RefPatterns
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)


def _as_list(refs: str | Iterable[str]) -> list[str]:
    if isinstance(refs, str):
        return [refs]
    return list(refs)


def missing_changesets(source: Sequence[str], target: Sequence[str]) -> list[str]:
    """Return names in *source* but not *target*, keeping *source*'s order."""
    present = set(target)
    return [name for name in source if name not in present]


class PromotionGraph:
    """Compute promotion order from commit topology and ref decorations.

    Parameters
    ----------
    repo:
        Repository context.
    environments:
        Environments in promotion order.
    backstop:
        Name of a ref shared by every environment; history behind it is
        never walked.  It only bounds traversal cost.
    """

    def __init__(
        self,
        repo: Repository,
        environments: Iterable[str] = ENVIRONMENTS,
        backstop: str = BACKSTOP_TAG,
    ) -> None:
        self.repo = repo
        self.environments = tuple(environments)
        self.backstop = backstop
        self.patterns = RefPatterns(self.environments)

    def backstop_commit(self) -> str | None:
        return self.repo.is_valid_ref(self.backstop)

    def changesets_in(
        self,
        refs: str | Iterable[str],
        backstop: str | None = None,
    ) -> list[str]:
        """Return the changesets reachable from *refs*, children first.

        Walks first-parent history newest first and names each commit by
        its promotion, merged-head or pending-review decoration.  A name is
        listed at its first (newest) occurrence only.  Demotion markers
        claim a name without listing it.
        """
        refs = _as_list(refs)
        if not refs:
            return []

        args = ["log", "--no-color", "--first-parent", "--topo-order", "--pretty=format:%H"]
        if backstop:
            args.append(f"^{backstop}")
        commits = self.repo.git.lines(*args, *refs, "--")

        included: list[str] = []
        seen: set[str] = set()
        for commit in commits:
            decorations = sorted(self.repo.decorations_of(commit))
            if not decorations:
                continue
            for pattern in self.patterns.changeset_markers():
                for decoration in decorations:
                    match = pattern.search(decoration)
                    if match and match.group(1) not in seen:
                        seen.add(match.group(1))
                        included.append(match.group(1))
            for decoration in decorations:
                match = self.patterns.demoted.search(decoration)
                if match:
                    seen.add(match.group(1))
        return included

    def unpromoted(
        self,
        from_refs: str | Iterable[str],
        to_refs: str | Iterable[str],
    ) -> list[str]:
        """Return changesets included in *from_refs* but not yet in *to_refs*.

        ``unpromoted("origin/master", "origin/test")`` answers "what would
        promoting master into test carry along?".  Changesets are listed
        before their dependencies.  Demotions aren't visible in ancestry, so
        callers that care must append them afterwards.
        """
        backstop = self.backstop_commit()
        source = self.changesets_in(from_refs, backstop)
        target = self.changesets_in(to_refs, backstop)
        return missing_changesets(source, target)

    def changeset_merged_to(self, changeset: str) -> list[str]:
        """Return the environments *changeset* has been promoted to."""
        return [
            env for env in self.environments
            if self.repo.is_valid_ref(PROMOTED_TAG.format(cs=changeset, env=env))
        ]

    def environment_preceding(self, environment: str) -> str | None:
        """Return the environment promoted from before *environment*.

        ``environment_preceding("stage")`` is ``"test"``.  The first
        environment has no predecessor.
        """
        try:
            index = self.environments.index(environment)
        except ValueError:
            raise ValueError(f"Unknown environment name: {environment}") from None
        if index == 0:
            return None
        return self.environments[index - 1]
