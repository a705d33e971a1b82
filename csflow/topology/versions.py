"""Version tags — ``version/<branch>/<major>.<minor>`` release numbering.

Only projects with ``use_version_tags`` enabled number their releases.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from csflow.config import VERSION_TAG_PREFIX
from csflow.project_config import ConfigMissing
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)

_VERSION = re.compile(r"^(\d+)\.(\d+)$")


@dataclass(frozen=True)
class BranchVersion:
    major: int = 1
    minor: int = 0

    @property
    def full(self) -> str:
        return f"{self.major}.{self.minor}"


def version_tag_prefix(branch: str) -> str:
    return VERSION_TAG_PREFIX.format(branch=branch)


class VersionTags:
    """Read and derive version tags for environment branches.

    Parameters
    ----------
    repo:
        Repository context.
    enabled:
        The project's ``use_version_tags`` setting.
    """

    def __init__(self, repo: Repository, enabled: bool) -> None:
        self.repo = repo
        self.enabled = enabled

    def current_details(self, branch: str) -> BranchVersion:
        """Return the most recent version tagged for *branch*.

        Defaults to ``1.0`` when the branch has no version tags.
        """
        if not self.enabled:
            raise ConfigMissing("Project not set up to support version tagging")

        prefix = version_tag_prefix(branch)
        versions = []
        for tag in self.repo.tags(f"{prefix}*"):
            match = _VERSION.match(tag[len(prefix):])
            if match:
                versions.append((int(match.group(1)), int(match.group(2))))
            else:
                logger.debug("Ignoring unrecognised version tag %s", tag)
        if not versions:
            return BranchVersion()

        major = max(v[0] for v in versions)
        minor = max(v[1] for v in versions if v[0] == major)
        return BranchVersion(major, minor)

    def current_branch_version(self, branch: str) -> str:
        return self.current_details(branch).full

    def new_branch_version(self, branch: str, new_major_version: bool = False) -> str:
        """Return the version after *branch*'s latest.

        Bumps the minor number, or starts a new major series at ``.0``.
        """
        latest = self.current_details(branch)
        if new_major_version:
            return BranchVersion(latest.major + 1, 0).full
        return BranchVersion(latest.major, latest.minor + 1).full

    def new_version_tag(self, branch: str, new_major_version: bool = False) -> str:
        return version_tag_prefix(branch) + self.new_branch_version(branch, new_major_version)
