"""DecorationCache — which refs point at which commit.

Forking ``git log --decorate`` for every commit in a long walk is slow, so
the cache is built once by reading ref storage directly: first the
``packed-refs`` file, then every loose ref file under ``refs/``.  A loose
ref overrides a packed ref of the same name.  Annotated tags decorate both
the tag object and the commit it points at.

The cache is a snapshot.  It is never reconciled with changes made by other
processes; changes made through :meth:`DecorationCache.tag` and
:meth:`DecorationCache.untag` are applied to it in place.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path

from csflow.vcs.gateway import GitGateway, RefNotFound

logger = logging.getLogger(__name__)

_SYMBOLIC_PREFIX = "ref: "
_PEEL_FORMAT = "--format=%(objectname) %(*objectname) %(refname)"


class DecorationCache:
    """Map commit ids to the set of full ref names decorating them.

    Parameters
    ----------
    git:
        Gateway used for ``git tag`` and ``git rev-parse``.
    git_dir:
        The repository's common ``.git`` directory.
    """

    def __init__(self, git: GitGateway, git_dir: str | Path) -> None:
        self.git = git
        self.git_dir = Path(git_dir)
        self._decorations: dict[str, set[str]] = defaultdict(set)
        self._refs: dict[str, str] = {}
        self._peeled: dict[str, str] = {}
        self._built = False

    # -- Building -------------------------------------------------------------

    def reset(self) -> None:
        """Forget everything; the next lookup rebuilds from disk."""
        self._decorations = defaultdict(set)
        self._refs = {}
        self._peeled = {}
        self._built = False

    def _build(self) -> None:
        self.reset()
        self._built = True
        self._read_packed_refs()
        if self._read_loose_refs():
            self._peel_loose_tags()
        logger.debug(
            "Decoration cache built: %d refs on %d commits",
            len(self._refs), len(self._decorations),
        )

    def _read_packed_refs(self) -> None:
        packed = self.git_dir / "packed-refs"
        if not packed.is_file():
            return
        ref = None
        for line in packed.read_text(encoding="utf-8").splitlines():
            if line.startswith("#"):
                continue
            if line.startswith("^"):
                # peeled commit of the annotated tag on the previous line
                if ref is not None:
                    self._peel(ref, line[1:].strip())
                continue
            commit, _, ref = line.partition(" ")
            if not commit or not ref:
                ref = None
                continue
            ref = ref.strip()
            self._associate(ref, commit)

    def _read_loose_refs(self) -> bool:
        """Read loose refs; return *True* if any of them is a tag."""
        root = self.git_dir / "refs"
        if not root.is_dir():
            return False
        saw_tags = False
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            try:
                commit = path.read_text(encoding="utf-8").strip()
            except OSError:
                logger.debug("Could not read loose ref %s", path, exc_info=True)
                continue
            if not commit or commit.startswith(_SYMBOLIC_PREFIX):
                continue
            ref = "refs/" + path.relative_to(root).as_posix()
            self._associate(ref, commit)
            saw_tags = saw_tags or ref.startswith("refs/tags/")
        return saw_tags

    def _peel_loose_tags(self) -> None:
        # loose annotated tags store the tag object; ask git for its commit
        for line in self.git.lines("for-each-ref", _PEEL_FORMAT, "refs/tags"):
            fields = line.split()
            if len(fields) != 3:
                continue
            obj, commit, ref = fields
            if self._refs.get(ref) == obj and ref not in self._peeled:
                self._peel(ref, commit)

    def _associate(self, ref: str, commit: str) -> None:
        self._dissociate(ref)
        self._refs[ref] = commit
        self._decorations[commit].add(ref)

    def _peel(self, ref: str, commit: str) -> None:
        self._peeled[ref] = commit
        self._decorations[commit].add(ref)

    def _dissociate(self, ref: str) -> None:
        for commit in (self._refs.pop(ref, None), self._peeled.pop(ref, None)):
            if commit is None or commit not in self._decorations:
                continue
            self._decorations[commit].discard(ref)
            if not self._decorations[commit]:
                del self._decorations[commit]

    def _ensure_built(self) -> None:
        if not self._built:
            self._build()

    # -- Queries --------------------------------------------------------------

    def decorations_of(self, commit: str) -> set[str]:
        """Return the full ref names decorating *commit* (empty if none)."""
        self._ensure_built()
        if commit not in self._decorations:
            return set()
        return set(self._decorations[commit])

    def commit_of(self, ref: str) -> str | None:
        """Return the cached commit id for a full ref name."""
        self._ensure_built()
        return self._refs.get(ref)

    # -- Mutation -------------------------------------------------------------

    def tag(self, name: str, commit: str = "HEAD", forced: bool = False) -> None:
        """Create tag *name* at *commit* and record it in the cache."""
        self._ensure_built()
        if commit == "HEAD":
            commit = self.git.scalar("rev-parse", "--verify", "--quiet", "HEAD")
            if not commit:
                raise RefNotFound("HEAD")
        args = ["tag"]
        if forced:
            args.append("-f")
        self.git.run(*args, name, commit)
        self._associate(f"refs/tags/{name}", commit)

    def untag(self, name: str) -> None:
        """Delete tag *name* and remove it from the cache."""
        self._ensure_built()
        commit = self.git.scalar("rev-parse", "--verify", "--quiet", f"refs/tags/{name}")
        if not commit:
            raise RefNotFound(name, f"No tag named '{name}'")
        self.git.run("tag", "-d", name)
        self._dissociate(f"refs/tags/{name}")
