"""Request Tracker tickets through the ``rt`` command-line client."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from typing import Any

from csflow.its.base import IssueTracker, TrackerError
from csflow.project_config import ProjectConfig

logger = logging.getLogger(__name__)

_STATUS = re.compile(r"^Status:\s+(.+?)\s*$", re.IGNORECASE | re.MULTILINE)
_DEFAULT_COMMAND = "/usr/bin/rt"


class RtTracker(IssueTracker):
    """Changeset names carry the ticket number, e.g. ``rt4512``."""

    label_service = "RT"
    label_issue = "RT"

    def __init__(self, config: ProjectConfig) -> None:
        super().__init__(config)
        self.command = config.get("rt_command", _DEFAULT_COMMAND)

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        for key, setting in (
            ("RTSERVER", self.config.rt_url),
            ("RTUSER", self.config.rt_user),
            ("RTPASSWD", self.config.rt_password),
        ):
            if setting:
                env[key] = setting
        return env

    def run_rt(self, *params: str) -> str:
        """Run the ``rt`` client and return its output."""
        cmd = [self.command, *params]
        logger.debug("%s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, env=self._env())
        except OSError as exc:
            raise TrackerError(f"{self.command} failed: {exc}") from exc
        if result.returncode != 0:
            raise TrackerError(f"{' '.join(cmd)} failed: {result.stderr.strip()}")
        return result.stdout.rstrip("\n")

    def issue_number(self, changeset_or_issue: Any) -> str | None:
        if isinstance(changeset_or_issue, dict):
            return changeset_or_issue.get("number")
        digits = re.sub(r"\D", "", changeset_or_issue or "")
        return digits or None

    def _fetch_issue(self, number: str) -> Any:
        return {"number": number, "status": self._status(number)}

    def _status(self, number: str) -> str | None:
        info = self.run_rt("show", "-t", "ticket", "-s", number)
        match = _STATUS.search(info)
        return match.group(1) if match else None

    def issue_state(self, issue: Any) -> str | None:
        return issue.get("status") if issue else None

    def issue_changeset_uri(self, issue: Any) -> str | None:
        if not issue or not self.config.rt_url:
            return None
        return f"{self.config.rt_url.rstrip('/')}/Ticket/Display.html?id={issue['number']}"

    def _apply_transition(
        self,
        issue: Any,
        states: dict[str, Any],
        message: str,
        reviewer: str | None,
    ) -> bool:
        number = issue["number"]
        self.run_rt("comment", number, "-m", message)
        self.run_rt("edit", "-t", "ticket", number, "set", f"status={states['to']}")
        issue["status"] = self._status(number)
        return issue["status"] == states["to"]
