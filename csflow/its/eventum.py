"""Eventum issues through Eventum's XML-RPC interface."""

from __future__ import annotations

import logging
import re
import xmlrpc.client
from typing import Any

from csflow.its.base import IssueTracker, TrackerError
from csflow.project_config import ProjectConfig

logger = logging.getLogger(__name__)

_CHANGESET = re.compile(r"\Ae(\d+)\w?\Z")

# Target state that closes the issue instead of changing its status
CLOSE = "CLOSE"


class EventumTracker(IssueTracker):
    """Changesets are named ``e<issue number>`` with an optional suffix."""

    label_service = "Eventum"
    label_issue = "Eventum"

    def __init__(self, config: ProjectConfig, proxy: Any | None = None) -> None:
        super().__init__(config)
        self._proxy = proxy
        self.login = config.get("eventum_user", "")
        self.password = config.get("eventum_password", "")

    def enabled(self) -> bool:
        return bool(self.config.eventum_uri)

    @property
    def proxy(self) -> Any:
        if self._proxy is None:
            uri = self.config.eventum_uri.rstrip("/")
            self._proxy = xmlrpc.client.ServerProxy(f"{uri}/rpc/xmlrpc.php", allow_none=True)
        return self._proxy

    def _call(self, method: str, *args: Any) -> Any:
        try:
            return getattr(self.proxy, method)(self.login, self.password, *args)
        except (xmlrpc.client.Error, OSError) as exc:
            raise TrackerError(f"{method}: {exc}") from exc

    def issue_number(self, changeset_or_issue: Any) -> str | None:
        if isinstance(changeset_or_issue, dict):
            return str(changeset_or_issue.get("iss_id"))
        match = _CHANGESET.match(changeset_or_issue or "")
        return match.group(1) if match else None

    def _fetch_issue(self, number: str) -> Any:
        if not self.enabled():
            raise TrackerError("no eventum_uri configured")
        issue = self._call("getIssueDetails", int(number))
        if not issue or not issue.get("iss_summary"):
            raise TrackerError(f"Issue {number} didn't return an object")
        return issue

    def issue_state(self, issue: Any) -> str | None:
        return issue.get("sta_title") if issue else None

    def issue_summary(self, issue: Any) -> str | None:
        return issue.get("iss_summary") if issue else None

    def issue_changeset_uri(self, issue: Any) -> str | None:
        if not issue or not self.config.eventum_uri:
            return None
        return f"{self.config.eventum_uri.rstrip('/')}/view.php?id={issue['iss_id']}"

    def _apply_transition(
        self,
        issue: Any,
        states: dict[str, Any],
        message: str,
        reviewer: str | None,
    ) -> bool:
        number = int(issue["iss_id"])
        to = states["to"]
        if to == CLOSE:
            self._call("closeIssue", number, "closed", 0, False, message)
            issue["sta_title"] = "closed"
            return True

        self._call("addInternalNote", number, message)
        current = self.issue_state(issue) or ""
        if not re.fullmatch(states["from"], current, re.IGNORECASE):
            return False
        self._call("setIssueStatus", number, to)
        issue["sta_title"] = to
        return True
