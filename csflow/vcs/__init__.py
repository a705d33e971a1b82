"""Git plumbing — command gateway, ref decorations and repository context."""

from csflow.vcs.decorations import DecorationCache
from csflow.vcs.gateway import CommandFailed, GitGateway, RefNotFound
from csflow.vcs.repo import Commit, Repository

__all__ = [
    "Commit",
    "CommandFailed",
    "DecorationCache",
    "GitGateway",
    "RefNotFound",
    "Repository",
]
