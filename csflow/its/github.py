"""GitHub issues, with workflow states kept as issue labels."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

import requests

from csflow.its.base import IssueTracker, TrackerError
from csflow.project_config import ProjectConfig

logger = logging.getLogger(__name__)

_API = "https://api.github.com"
_TIMEOUT = 30
_REMOTE_URL = re.compile(r"[/:]([^/:]+?)/([^/]+?)(?:\.git)?$")
_TRAILING_NUMBER = re.compile(r"(\d+)[a-z]?$")


class GitHubTracker(IssueTracker):
    """Changesets end in the issue number, e.g. ``fix-login-42``.

    Parameters
    ----------
    config:
        The project's configuration (``github_owner``, ``github_repo``,
        ``github_token``, ``github_statuses``).
    remote_url:
        Called to find ``owner/repo`` when the configuration doesn't name
        them.
    """

    label_service = "Github"
    label_issue = "Issue"

    def __init__(
        self,
        config: ProjectConfig,
        remote_url: Callable[[], str | None] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(config)
        self.remote_url = remote_url
        self.session = session or requests.Session()
        self.session.headers["Accept"] = "application/vnd.github+json"
        if config.github_token:
            self.session.headers["Authorization"] = f"token {config.github_token}"

    def repository(self) -> tuple[str, str]:
        """Return ``(owner, repo)``, defaulting to the cloned remote."""
        owner, repo = self.config.github_owner, self.config.github_repo
        if not (owner and repo) and self.remote_url is not None:
            match = _REMOTE_URL.search(self.remote_url() or "")
            if match:
                owner = owner or match.group(1)
                repo = repo or match.group(2)
        if not (owner and repo):
            raise TrackerError("Can't tell which GitHub repository holds the issues")
        return owner, repo

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        owner, repo = self.repository()
        url = f"{_API}/repos/{owner}/{repo}/{path}"
        try:
            response = self.session.request(method, url, timeout=_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise TrackerError(str(exc)) from exc
        if response.status_code >= 400:
            raise TrackerError(f"{method} {url} returned {response.status_code}")
        return response

    def issue_number(self, changeset_or_issue: Any) -> str | None:
        if isinstance(changeset_or_issue, dict):
            return str(changeset_or_issue.get("number"))
        match = _TRAILING_NUMBER.search(changeset_or_issue or "")
        return match.group(1) if match else None

    def _fetch_issue(self, number: str) -> Any:
        return self._request("GET", f"issues/{number}").json()

    def issue_state(self, issue: Any) -> str | None:
        if not issue or not issue.get("labels"):
            return None
        return issue["labels"][0]["name"]

    def issue_summary(self, issue: Any) -> str | None:
        return issue.get("title") if issue else None

    def issue_changeset_uri(self, issue: Any) -> str | None:
        return issue.get("html_url") if issue else None

    def _state_labels(self) -> set[str]:
        labels = set()
        for entry in self.config.github_statuses.values():
            if "to" in entry:
                labels.add(entry["to"])
            else:
                labels.update(e["to"] for e in entry.values() if isinstance(e, dict) and "to" in e)
        return labels

    def _apply_transition(
        self,
        issue: Any,
        states: dict[str, Any],
        message: str,
        reviewer: str | None,
    ) -> bool:
        number = issue["number"]
        to = states["to"]
        self._request("POST", f"issues/{number}/comments", json={"body": message})

        workflow_labels = self._state_labels()
        for label in issue.get("labels", []):
            if label["name"] in workflow_labels and label["name"] != to:
                self._request("DELETE", f"issues/{number}/labels/{label['name']}")

        labels = self._request("POST", f"issues/{number}/labels", json={"labels": [to]}).json()
        issue["labels"] = [label for label in labels if label["name"] == to] + [
            label for label in labels if label["name"] != to
        ]
        return any(label["name"] == to for label in labels)
