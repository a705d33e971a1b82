"""Project configuration — layered YAML files validated into ProjectConfig.

Files are merged in this order, later ones overriding earlier ones:

1. ``/etc/csflow/csflow.config``
2. ``<project root>/csflow.config`` (may omit the project-name wrapper)
3. ``~/.csflow/csflow.config``
4. every path listed in ``CSFLOW_CONFIG`` (colon separated)

Each file maps project names to settings; the ``_default`` section applies
to every project.  Built-in defaults sit underneath everything.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from csflow.config import (
    BACKSTOP_TAG,
    ENVIRONMENTS,
    PROJECT_CONFIG_NAME,
    SYSTEM_CONFIG,
    USER_CONFIG,
)

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "_default"

# All known environment variables with defaults
ENV_KEYS: dict[str, dict[str, str]] = {
    "CSFLOW_CONFIG": {"default": "", "description": "Extra config files, colon separated"},
    "CSFLOW_DEBUG": {"default": "", "description": "Echo every git command to stderr"},
    "CSFLOW_LOG_LEVEL": {"default": "INFO", "description": "Logging level"},
    "CSFLOW_NO_ITS": {"default": "", "description": "Skip issue tracker updates"},
}

# Legacy switch that also suppresses issue tracker updates
_LEGACY_NO_ITS = "GITC_NO_EVENTUM"

DEFAULT_CONFIG: dict[str, Any] = {
    "eventum_uri": "https://eventum.example.com",
    "jira_uri": "https://example.atlassian.net/",
    "open onto": "master",
    "eventum_statuses": {
        "open": {
            "from": ".*",
            "to": "in progress",
            "block": ["closed", "completed", "in production"],
        },
        "edit": {"from": ".*", "to": "in progress"},
        "submit": {"from": "in progress|failed", "to": "pending review"},
        "fail": {"from": "pending review", "to": "failed"},
        "pass": {"from": "pending review", "to": "merged"},
        "promote": {
            "test": {"from": "merged", "to": "in test"},
            "stage": {"from": "in test|ready for staging", "to": "in stage"},
            "prod": {"from": "in stage|ready for release", "to": "CLOSE"},
        },
    },
    "jira_statuses": {
        "open": {
            "from": ".*",
            "to": "In Progress",
            "flag": "(*)",
            "block": ["Closed", "Completed", "Released"],
        },
        "edit": {"from": ".*", "to": "In Progress", "flag": "(*)"},
        "submit": {
            "from": "In Progress|Failed|Info Needed",
            "to": "Work Pending Review",
            "flag": "(?)",
        },
        "fail": {"from": "Work Pending Review", "to": "Failed", "flag": "(n)"},
        "pass": {"from": "Work Pending Review", "to": "Work Reviewed", "flag": "(y)"},
        "promote": {
            "test": {"from": "Work Reviewed", "to": "In Test", "flag": "(+)"},
            "stage": {"from": "In Test|Passed in Test", "to": "In Stage", "flag": "(+)"},
            "prod": {"from": "In Stage|Passed in Stage", "to": "Ready for Release", "flag": "(+)"},
        },
    },
}


class ConfigMissing(Exception):
    """Raised when required workflow configuration can't be found."""


class ProjectConfig(BaseModel):
    """Fully merged configuration for one project.

    Unknown keys are kept and reachable through :meth:`get`.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    default_its: Optional[str] = None
    eventum_uri: Optional[str] = None
    jira_uri: Optional[str] = None
    rt_url: Optional[str] = None
    rt_user: Optional[str] = None
    rt_password: Optional[str] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_token: Optional[str] = None
    open_onto: str = Field(default="master", alias="open onto")
    use_version_tags: bool = False
    user_lookup_method: str = "LocalGroup"
    user_lookup_group: Optional[str] = None
    environments: list[str] = Field(default_factory=lambda: list(ENVIRONMENTS))
    backstop: str = BACKSTOP_TAG

    eventum_statuses: dict[str, Any] = Field(default_factory=dict)
    jira_statuses: dict[str, Any] = Field(default_factory=dict)
    github_statuses: dict[str, Any] = Field(default_factory=dict)
    rt_statuses: dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key, default)

    def statuses(self, service: str) -> dict[str, Any]:
        """Return the state table for an issue tracker label such as ``JIRA``."""
        return self.get(f"{service.lower()}_statuses") or {}

    def states(self, service: str, command: str, target: str | None = None) -> dict[str, Any]:
        """Return the ``from``/``to`` transition for *command* (and *target*)."""
        statuses = self.statuses(service).get(command)
        if not statuses:
            raise ConfigMissing(f"No {service} statuses for {command}")

        if target:
            # promotions need another level of lookup
            statuses = statuses.get(target) or {}
            suffix = f" for target {target}"
        else:
            suffix = ""
        if not statuses.get("from"):
            raise ConfigMissing(f"No initial status{suffix}")
        if not statuses.get("to"):
            raise ConfigMissing(f"No final status{suffix}")
        return statuses

    def state_blocked(self, service: str, command: str, state: str) -> bool:
        """Return *True* if *state* is on *command*'s block list."""
        statuses = self.statuses(service).get(command)
        if not statuses:
            raise ConfigMissing(f"No {service} statuses for {command}")
        return state in (statuses.get("block") or [])


def merge(*layers: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries; later layers win."""
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
    return merged


def config_files(project_root: str | Path | None = None) -> list[Path]:
    """Return every configuration file location, in merge order."""
    files = [SYSTEM_CONFIG]
    if project_root is not None:
        files.append(Path(project_root) / PROJECT_CONFIG_NAME)
    files.append(USER_CONFIG.expanduser())
    extra = os.environ.get("CSFLOW_CONFIG", "")
    files.extend(Path(p) for p in extra.split(":") if p)
    return files


def _read_yaml(path: Path) -> dict[str, Any] | None:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a mapping", path)
        return None
    return data


def load_project_config(
    project_name: str | None = None,
    project_root: str | Path | None = None,
    files: list[Path] | None = None,
) -> ProjectConfig:
    """Load and merge configuration for *project_name*.

    Raises :class:`ConfigMissing` if no file provides any settings.
    """
    if files is None:
        files = config_files(project_root)
    project_file = Path(project_root) / PROJECT_CONFIG_NAME if project_root else None

    projects: dict[str, Any] = {}
    for path in files:
        if not path.is_file():
            continue
        data = _read_yaml(path)
        if data is None:
            continue
        # a file in the project root may leave out its own project name
        if path == project_file and project_name and data and project_name not in data:
            data = {project_name: data}
        projects = merge(projects, data)
        logger.debug("Merged config file %s", path)

    if project_name and project_name in projects:
        section = merge(projects.get(DEFAULT_SECTION, {}), projects[project_name])
    elif DEFAULT_SECTION in projects:
        section = projects[DEFAULT_SECTION]
    else:
        section = projects
    if not section:
        raise ConfigMissing("No config found!")

    settings = merge(DEFAULT_CONFIG, section)
    if project_name:
        settings.setdefault("name", project_name)
    return ProjectConfig.model_validate(settings)


def its_suppressed() -> bool:
    """Return *True* when issue tracker updates are switched off."""
    return bool(os.environ.get("CSFLOW_NO_ITS") or os.environ.get(_LEGACY_NO_ITS))


def configure_logging(level: str | int | None = None) -> None:
    """Send csflow log records to stderr at *level*.

    The level defaults to ``CSFLOW_LOG_LEVEL`` (``INFO``) and is forced to
    ``DEBUG`` while the debug toggle is set.
    """
    from csflow.vcs.gateway import debug_enabled

    if level is None:
        level = os.environ.get("CSFLOW_LOG_LEVEL", ENV_KEYS["CSFLOW_LOG_LEVEL"]["default"])
    if debug_enabled():
        level = logging.DEBUG
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("csflow")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
