"""Changeset topology — branch points, promotion order and version tags."""

from csflow.topology.branch_point import BranchPointResolver
from csflow.topology.promotion import PromotionGraph, missing_changesets
from csflow.topology.versions import BranchVersion, VersionTags, version_tag_prefix

__all__ = [
    "BranchPointResolver",
    "BranchVersion",
    "PromotionGraph",
    "VersionTags",
    "missing_changesets",
    "version_tag_prefix",
]
