"""Who is acting — git identity, per-user blobs and user lookup."""

from __future__ import annotations

import abc
import getpass
import grp
import logging

from csflow.config import USER_TAG
from csflow.ledger.blobs import BlobStore
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)


class UserDirectory:
    """Resolve the acting user's name and e-mail address.

    E-mail addresses of other users come from ``user/<name>`` tags, each
    pointing at a small YAML blob published by :meth:`add_current_user`.
    """

    def __init__(self, repo: Repository, store: BlobStore | None = None) -> None:
        self.repo = repo
        self.store = store or BlobStore(repo)

    def get_user_name(self) -> str:
        name = self.repo.config_value("user.name")
        if name:
            return name
        return self.repo.git_config().get("user", {}).get("name") or getpass.getuser()

    def get_user_email(self, user: str | None = None) -> str:
        """Return *user*'s e-mail address (the acting user's by default)."""
        if not user:
            return self.repo.config_value("user.email") or ""

        self.repo.fetch_tags()
        info = self.store.view_blob(USER_TAG.format(user=user)) or {}
        return (
            info.get("email")
            or self.repo.git_config().get("user", {}).get("email")
            or user
        )

    def add_current_user(self) -> None:
        """Publish the acting user's e-mail address as ``user/<name>``."""
        user = self.get_user_name()
        email = self.get_user_email()
        if not email or user == email:
            raise ValueError("You need to configure a git username and email.")

        blob = self.store.create_blob({"email": email})
        tag = USER_TAG.format(user=user)
        if self.repo.is_valid_ref(f"refs/tags/{tag}"):
            self.repo.untag(tag)
        self.repo.tag(tag, blob)
        self.repo.push_tags(tag)
        logger.info("Published e-mail address for %s", user)


class UserLookup(abc.ABC):
    """Abstract source of the users who may act on changesets."""

    @abc.abstractmethod
    def users(self) -> list[str]:
        """Return known user names."""


class GitTagUserLookup(UserLookup):
    """Users are the names under ``user/*`` tags."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def users(self) -> list[str]:
        prefix = USER_TAG.format(user="")
        return [tag[len(prefix):] for tag in self.repo.tags(prefix + "*")]


class LocalGroupUserLookup(UserLookup):
    """Users are members of a local Unix group."""

    def __init__(self, group: str | None) -> None:
        self.group = group

    def users(self) -> list[str]:
        if not self.group:
            return []
        try:
            return list(grp.getgrnam(self.group).gr_mem)
        except KeyError:
            logger.warning("No local group named %s", self.group)
            return []


def user_lookup_for(method: str, repo: Repository, group: str | None = None) -> UserLookup:
    """Build the lookup named by the ``user_lookup_method`` setting."""
    if method == "GitTag":
        return GitTagUserLookup(repo)
    if method == "LocalGroup":
        return LocalGroupUserLookup(group)
    raise ValueError(f"Unknown user lookup method: {method}")
