"""JIRA issues through the REST API."""

from __future__ import annotations

import logging
import re
from typing import Any

import requests

from csflow.its.base import IssueTracker, TrackerError
from csflow.project_config import ProjectConfig

logger = logging.getLogger(__name__)

_TIMEOUT = 30
_DEFAULT_REVIEWER_FIELD = "customfield_10401"


class JiraTracker(IssueTracker):
    """Changesets are named after issue keys, e.g. ``TE-123`` or ``TE-123b``."""

    label_service = "JIRA"
    label_issue = "Issue"

    def __init__(self, config: ProjectConfig, session: requests.Session | None = None) -> None:
        super().__init__(config)
        self.session = session or requests.Session()
        user, password = config.get("jira_user"), config.get("jira_password")
        if user:
            self.session.auth = (user, password or "")

    @property
    def uri(self) -> str | None:
        return self.config.jira_uri.rstrip("/") if self.config.jira_uri else None

    def enabled(self) -> bool:
        return bool(self.uri)

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.uri}/rest/api/2/{path}"
        try:
            response = self.session.request(method, url, timeout=_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise TrackerError(str(exc)) from exc
        if response.status_code >= 400:
            raise TrackerError(f"{method} {url} returned {response.status_code}")
        return response

    def issue_number(self, changeset_or_issue: Any) -> str | None:
        if isinstance(changeset_or_issue, dict):
            return changeset_or_issue.get("key")
        if not changeset_or_issue:
            return None
        return re.sub(r"[a-z]+$", "", changeset_or_issue)

    def _fetch_issue(self, number: str) -> Any:
        if not self.enabled():
            raise TrackerError("no jira_uri configured")
        return self._request("GET", f"issue/{number}").json()

    def issue_state(self, issue: Any) -> str | None:
        if not issue:
            return None
        return issue.get("fields", {}).get("status", {}).get("name")

    def issue_summary(self, issue: Any) -> str | None:
        if not issue:
            return None
        return issue.get("fields", {}).get("summary")

    def issue_changeset_uri(self, issue: Any) -> str | None:
        if not issue or not self.uri:
            return None
        return f"{self.uri}/browse/{issue['key']}"

    def _apply_transition(
        self,
        issue: Any,
        states: dict[str, Any],
        message: str,
        reviewer: str | None,
    ) -> bool:
        key = issue["key"]
        self._request("POST", f"issue/{key}/comment", json={"body": message})

        transitions = self._request("GET", f"issue/{key}/transitions").json()
        wanted = states["to"].lower()
        chosen = next(
            (
                t for t in transitions.get("transitions", [])
                if t.get("to", {}).get("name", "").lower() == wanted
                or t.get("name", "").lower() == wanted
            ),
            None,
        )
        if chosen is None:
            return False
        self._request("POST", f"issue/{key}/transitions", json={"transition": {"id": chosen["id"]}})

        if reviewer:
            field = self.config.get("jira_reviewer_field", _DEFAULT_REVIEWER_FIELD)
            try:
                self._request("PUT", f"issue/{key}", json={"fields": {field: reviewer}})
            except TrackerError as exc:
                logger.warning("Unable to set reviewer: %s", exc)

        issue.setdefault("fields", {})["status"] = {"name": states["to"]}
        return True
