"""ChangesetFlow — the single entry point for changeset workflow operations.

Usage::

    from csflow import ChangesetFlow

    flow = ChangesetFlow("/path/to/clone")
    flow.open_changeset("e1234")
    flow.record_action("e1234", "submit", reviewer="bob", message="Ready")
    flow.record_action("e1234", "pass")
    flow.record_action("e1234", "promote", target="test")
    flow.unpromoted("origin/master", "origin/test")
    flow.branch_point("e1234")
    flow.history("e1234")
    flow.status("e1234")
    flow.purge_changeset("e1234")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from csflow.its import IssueTracker, tracker_for
from csflow.ledger.ledger import MetaDataLedger
from csflow.ledger.models import LedgerEvent
from csflow.ledger.queries import history_status
from csflow.project_config import ConfigMissing, ProjectConfig, load_project_config
from csflow.reversible import failure_warning, reversibly, to_undo
from csflow.topology.branch_point import BranchPointResolver
from csflow.topology.promotion import PromotionGraph
from csflow.topology.versions import VersionTags
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)

# Actions that move a changeset between environments
_TARGETED_ACTIONS = ("promote", "demote")


class ChangesetFlow:
    """The public interface for the changeset workflow.

    Binds one repository context to the project's configuration and wires
    the ledger, the topology engines and the issue tracker together.
    Operations with side effects run through :func:`csflow.reversible.reversibly`
    so a failure part way through leaves no partial state behind.

    Parameters
    ----------
    path:
        Any directory inside the clone.  Defaults to the current directory.
    config:
        Project configuration.  Loaded from the configuration files when
        omitted.
    tracker:
        Issue tracker to notify.  Built from ``default_its`` when omitted.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        config: ProjectConfig | None = None,
        tracker: IssueTracker | None = None,
    ) -> None:
        self.repo = Repository(path)
        if config is None:
            config = load_project_config(
                project_name=self.repo.project_name(),
                project_root=self.repo.path,
            )
        self.config = config

        self.ledger = MetaDataLedger(self.repo)
        self.resolver = BranchPointResolver(self.repo, config.environments)
        self.graph = PromotionGraph(self.repo, config.environments, config.backstop)
        self.versions = VersionTags(self.repo, config.use_version_tags)
        self._tracker = tracker

    @property
    def project(self) -> str | None:
        return self.config.name or self.repo.project_name()

    @property
    def tracker(self) -> IssueTracker | None:
        if self._tracker is None:
            self._tracker = tracker_for(self.config, remote_url=self._remote_url)
        return self._tracker

    def _remote_url(self) -> str | None:
        return self.repo.config_value(f"remote.{self.repo.remote}.url")

    # ------------------------------------------------------------------
    # Workflow operations
    # ------------------------------------------------------------------

    def open_changeset(self, name: str, base: str | None = None) -> int | None:
        """Create branch *name* and record the ``open`` event.

        *base* defaults to the remote branch named by ``open onto``.
        Returns the id of the new ledger event.
        """
        if not name or "/" in name:
            raise ValueError(f"'{name}' is not a valid changeset name")
        if self.repo.is_valid_ref(f"refs/heads/{name}"):
            raise ValueError(f"A branch named {name} already exists")
        if base is None:
            base = self._default_base()

        def unit() -> int | None:
            self.repo.git.run("branch", "--no-track", name, base)
            to_undo(lambda: self.repo.git.run("branch", "-D", name))
            failure_warning(f"Could not open {name}; the branch was removed")

            event_id = self.ledger.append_events({"changeset": name, "action": "open"})
            to_undo(lambda: self.ledger.remove_event(name, event_id))

            self._notify(name, "open", f"Opened changeset {name}")
            return event_id

        event_id = reversibly(unit)
        logger.info("Opened changeset %s onto %s", name, base)
        return event_id

    def _default_base(self) -> str:
        onto = self.config.open_onto
        if self.repo.remote_branch_exists(onto):
            return f"{self.repo.remote}/{onto}"
        return onto

    def record_action(
        self,
        changeset: str,
        action: str,
        target: str | None = None,
        reviewer: str | None = None,
        message: str | None = None,
    ) -> int | None:
        """Record *action* in *changeset*'s ledger and update its issue.

        The ledger event is removed again if anything fails before the
        operation completes.  Issue tracker trouble is only logged.
        Returns the id of the new ledger event.
        """
        if action in _TARGETED_ACTIONS and not target:
            raise ValueError(f"'{action}' needs a target environment")
        if target and target not in self.config.environments:
            raise ValueError(f"Unknown environment name: {target}")

        entry = {"changeset": changeset, "action": action}
        if target:
            entry["target"] = target
        if reviewer:
            entry["reviewer"] = reviewer

        def unit() -> int | None:
            event_id = self.ledger.append_events(entry)
            to_undo(lambda: self.ledger.remove_event(changeset, event_id))
            failure_warning(f"Could not {action} {changeset}; the ledger event was removed")

            self._notify(
                changeset,
                action,
                message or _default_message(changeset, action, target),
                target=target,
                reviewer=reviewer,
            )
            return event_id

        return reversibly(unit)

    def purge_changeset(self, changeset: str) -> int:
        """Remove every trace of *changeset*: its ledger, markers and branch.

        Returns the number of ledger events removed.
        """
        if self.repo.current_branch() == changeset:
            raise ValueError(f"Can't purge {changeset} while it is checked out")

        def unit() -> int:
            self.repo.fetch_tags()
            snapshot = self.ledger.cache_meta_data(changeset)
            removed = self.ledger.remove_all_events(changeset)
            to_undo(lambda: self.ledger.restore_meta_data(snapshot))
            failure_warning(f"Could not purge {changeset}; its ledger was restored")

            markers = self.repo.tags(f"cs/{changeset}/*")
            published = set(self._remote_tags(f"refs/tags/cs/{changeset}/*"))
            for tag in markers:
                self.repo.untag(tag)
            self.repo.push_tags(
                *[f":refs/tags/{tag}" for tag in markers if tag in published],
                force=False,
            )

            if self.repo.is_valid_ref(f"refs/heads/{changeset}"):
                self.repo.git.run("branch", "-D", changeset)
            return removed

        removed = reversibly(unit)
        self.ledger.forget_meta_data()
        logger.info("Purged changeset %s (%d ledger events)", changeset, removed)
        return removed

    def _remote_tags(self, pattern: str) -> list[str]:
        prefix = "refs/tags/"
        names = []
        for line in self.repo.git.lines("ls-remote", "--tags", self.repo.remote, pattern):
            ref = line.split()[-1]
            if ref.startswith(prefix) and not ref.endswith("^{}"):
                names.append(ref[len(prefix):])
        return names

    def _notify(
        self,
        changeset: str,
        action: str,
        message: str,
        target: str | None = None,
        reviewer: str | None = None,
    ) -> str | None:
        tracker = self.tracker
        if tracker is None:
            return None
        try:
            outcome = tracker.transition_state(
                changeset, action, message, target=target, reviewer=reviewer
            )
        except ConfigMissing as exc:
            logger.debug("No %s transition for %s: %s", tracker.label_service, action, exc)
            return None
        logger.info("%s", outcome)
        return outcome

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def branch_point(self, ref: str | None = None) -> str | None:
        return self.resolver.branch_point(ref)

    def unpromoted(
        self,
        from_refs: str | Iterable[str],
        to_refs: str | Iterable[str],
    ) -> list[str]:
        return self.graph.unpromoted(from_refs, to_refs)

    def history(self, changeset: str) -> list[LedgerEvent]:
        return self.ledger.history(self.project, changeset)

    def status(self, changeset: str) -> str | None:
        """Return *changeset*'s status, or *None* if it has no ledger."""
        return history_status(self.history(changeset))


def _default_message(changeset: str, action: str, target: str | None) -> str:
    if target:
        return f"{action} {changeset} to {target}"
    return f"{action} {changeset}"
