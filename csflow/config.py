"""Global configuration: ref naming conventions, environments, file locations."""

from pathlib import Path

# Promotion order of the long-lived environment branches
ENVIRONMENTS = ("master", "test", "stage", "prod")

# The shared remote every ledger and marker tag is published to
REMOTE = "origin"

# Well-known common ancestor used to bound history walks
BACKSTOP_TAG = "cvs"

# Ref name templates.  ``{cs}`` is a changeset name, ``{env}`` an environment.
HEAD_TAG = "cs/{cs}/head"
PROMOTED_TAG = "cs/{cs}/to-{env}"
DEMOTED_TAG = "cs/{cs}/rm-{env}"
LEDGER_TAG = "meta/{cs}"
PENDING_REVIEW_REF = REMOTE + "/pu/{cs}"
USER_TAG = "user/{user}"
VERSION_TAG_PREFIX = "version/{branch}/"

# Project marker file committed at the repository root (``name: <project>``)
PROJECT_FILE = ".csflow"

# Configuration files merged in order, later overriding earlier
SYSTEM_CONFIG = Path("/etc/csflow/csflow.config")
PROJECT_CONFIG_NAME = "csflow.config"
USER_CONFIG = Path("~/.csflow/csflow.config")

# Names of ledger actions which don't change a changeset's status
NON_STATUS_ACTIONS = ("touch", "promote", "demote")

# Ledger action -> reported changeset status
ACTION_STATUS = {
    "open": "open",
    "submit": "submitted",
    "review": "reviewing",
    "fail": "failed",
    "pass": "merged",
    "edit": "open",
}
