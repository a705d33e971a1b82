"""Issue tracking systems behind a single interface.

The ``default_its`` setting picks the tracker.  A project without one gets
*None*, which callers must accept.
"""

from __future__ import annotations

from typing import Callable

from csflow.its.base import IssueTracker, TrackerError
from csflow.its.eventum import EventumTracker
from csflow.its.github import GitHubTracker
from csflow.its.jira import JiraTracker
from csflow.its.rt import RtTracker
from csflow.project_config import ProjectConfig

TRACKERS: dict[str, type[IssueTracker]] = {
    "eventum": EventumTracker,
    "github": GitHubTracker,
    "jira": JiraTracker,
    "rt": RtTracker,
}


def tracker_for(
    config: ProjectConfig,
    name: str | None = None,
    remote_url: Callable[[], str | None] | None = None,
) -> IssueTracker | None:
    """Build the tracker named *name* (or the project's ``default_its``).

    Returns *None* when no tracker is configured.
    """
    name = name or config.default_its
    if not name:
        return None
    try:
        tracker_class = TRACKERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown issue tracker: {name}") from None
    if tracker_class is GitHubTracker:
        return GitHubTracker(config, remote_url=remote_url)
    return tracker_class(config)


def tracker_for_changeset(
    config: ProjectConfig,
    changeset: str,
    remote_url: Callable[[], str | None] | None = None,
) -> IssueTracker | None:
    """Return the project's tracker if *changeset* names one of its issues."""
    tracker = tracker_for(config, remote_url=remote_url)
    if tracker is None or not tracker.issue_number(changeset):
        return None
    return tracker


__all__ = [
    "EventumTracker",
    "GitHubTracker",
    "IssueTracker",
    "JiraTracker",
    "RtTracker",
    "TRACKERS",
    "TrackerError",
    "tracker_for",
    "tracker_for_changeset",
]
