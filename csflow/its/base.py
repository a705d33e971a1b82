"""IssueTracker — the capability every issue tracking system provides.

Trackers move an issue through the states configured for each workflow
command (``<service>_statuses`` in the project configuration) and report
what they did as a one-line message.  Failing to reach a tracker never
fails the workflow operation that triggered it.
"""

from __future__ import annotations

import abc
import getpass
import logging
import os
import pwd
import re
from typing import Any

from csflow.project_config import ProjectConfig, its_suppressed

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Raised when an issue tracker rejects or can't complete a request."""


def acting_user_name() -> str:
    """Return the acting user's full name, falling back to the login."""
    try:
        gecos = pwd.getpwuid(os.getuid()).pw_gecos
    except KeyError:
        gecos = ""
    name = gecos.split(",")[0].strip()
    return name or getpass.getuser()


class IssueTracker(abc.ABC):
    """Abstract issue tracking system.

    Parameters
    ----------
    config:
        The project's configuration.
    """

    label_service = ""
    label_issue = "Issue"

    def __init__(self, config: ProjectConfig) -> None:
        self.config = config
        self._issues: dict[str, Any] = {}

    # -- Hooks for concrete trackers -----------------------------------------

    @abc.abstractmethod
    def issue_number(self, changeset_or_issue: Any) -> str | None:
        """Return the issue number for a changeset name or an issue."""

    @abc.abstractmethod
    def issue_state(self, issue: Any) -> str | None:
        """Return the issue's current state as the tracker names it."""

    @abc.abstractmethod
    def _fetch_issue(self, number: str) -> Any:
        """Load an issue; raise :class:`TrackerError` if that fails."""

    @abc.abstractmethod
    def _apply_transition(
        self,
        issue: Any,
        states: dict[str, Any],
        message: str,
        reviewer: str | None,
    ) -> bool:
        """Comment on *issue* and move it to ``states["to"]``.

        Returns *True* if the issue ended up in the target state.
        """

    def enabled(self) -> bool:
        """Return *False* when the project switched this tracker off."""
        return True

    def issue_summary(self, issue: Any) -> str | None:
        return None

    def issue_changeset_uri(self, issue: Any) -> str | None:
        return None

    # -- Shared behaviour -----------------------------------------------------

    def get_issue(self, changeset: str, reload: bool = False) -> Any | None:
        """Return the issue for *changeset*, or *None* if there isn't one.

        Issues are cached per tracker; *reload* refreshes the cache.
        Trouble reaching the tracker is logged, not raised.
        """
        number = self.issue_number(changeset)
        if not number:
            return None
        if number in self._issues and not reload:
            return self._issues[number]
        try:
            issue = self._fetch_issue(number)
        except TrackerError as exc:
            logger.warning("Error accessing %s: %s", self.label_service, exc)
            return None
        self._issues[number] = issue
        return issue

    def transition_state(
        self,
        changeset: str,
        command: str,
        message: str,
        target: str | None = None,
        reviewer: str | None = None,
        issue: Any | None = None,
    ) -> str:
        """Move *changeset*'s issue to the state configured for *command*.

        Returns a message describing the outcome.
        """
        label = f"{self.label_service} {self.label_issue}"
        if its_suppressed():
            return f"Skipping {self.label_service} changes, as requested by CSFLOW_NO_ITS"
        if not self.enabled():
            return f"Skipping {self.label_service} changes as configured for this project"

        states = self.config.states(self.label_service, command, target)
        if not message:
            raise ValueError("No message")
        if issue is None:
            issue = self.get_issue(changeset, reload=True)
        if issue is None:
            return f"NOT CHANGING {label}: changeset not in {self.label_service}?"

        current = self.issue_state(issue)
        if current is not None and not re.fullmatch(states["from"], current, re.IGNORECASE):
            logger.warning("%s is currently '%s'; expected '%s'", label, current, states["from"])

        text = f"{acting_user_name()}: {message}"
        if states.get("flag"):
            text = f"{states['flag']} {text}"
        try:
            changed = self._apply_transition(issue, states, text, reviewer)
        except TrackerError as exc:
            logger.warning("Could not update %s: %s", label, exc)
            return f"NOT CHANGING {label}: {exc}"
        if changed:
            return f"Changed {label} to '{states['to']}'"
        return f"NOT CHANGING {label}: currently '{self.issue_state(issue)}'"
