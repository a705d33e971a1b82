"""BlobStore — YAML documents stored as git blobs."""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml

from csflow.vcs.gateway import CommandFailed
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)

_OBJECT_ID = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")


def dump(data: Any) -> str:
    """Serialise *data* as block-style YAML, keeping key order."""
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True) + "\n"


class BlobStore:
    """Write and read structured data as loose git objects."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def create_blob(self, data: Any) -> str:
        """Store *data* and return the new blob's object id."""
        command = "git hash-object -w --stdin"
        blob = self.repo.git.scalar("hash-object", "-w", "--stdin", input=dump(data))
        if not _OBJECT_ID.match(blob):
            raise CommandFailed(command, reason=blob or "no object id returned")
        return blob

    def view_blob(self, ref: str) -> Any | None:
        """Return the data stored at *ref*, or *None* if it doesn't exist."""
        output = self.repo.git.scalar("cat-file", "-p", ref)
        if not output or output.startswith("fatal:"):
            return None
        try:
            return yaml.safe_load(output)
        except yaml.YAMLError:
            logger.warning("Blob %s does not hold valid YAML", ref, exc_info=True)
            return None
