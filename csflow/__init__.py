"""csflow — changeset promotion workflow on top of git refs and tags."""

__version__ = "1.0.0"

from csflow.facade import ChangesetFlow
from csflow.its import IssueTracker, TrackerError, tracker_for, tracker_for_changeset
from csflow.ledger.ledger import MetaDataLedger, ledger_tag
from csflow.ledger.models import LedgerEvent
from csflow.ledger.queries import (
    history_owner,
    history_reviewer,
    history_status,
    history_submitter,
)
from csflow.project_config import (
    ConfigMissing,
    ProjectConfig,
    configure_logging,
    load_project_config,
)
from csflow.reversible import (
    InterruptedTransaction,
    failure_warning,
    reversibly,
    to_undo,
)
from csflow.topology.branch_point import BranchPointResolver
from csflow.topology.promotion import PromotionGraph
from csflow.topology.versions import VersionTags
from csflow.vcs.gateway import CommandFailed, GitGateway, RefNotFound
from csflow.vcs.repo import Repository

__all__ = [
    "__version__",
    # Facade
    "ChangesetFlow",
    # VCS
    "CommandFailed",
    "GitGateway",
    "RefNotFound",
    "Repository",
    # Topology
    "BranchPointResolver",
    "PromotionGraph",
    "VersionTags",
    # Ledger
    "LedgerEvent",
    "MetaDataLedger",
    "history_owner",
    "history_reviewer",
    "history_status",
    "history_submitter",
    "ledger_tag",
    # Reversible runner
    "InterruptedTransaction",
    "failure_warning",
    "reversibly",
    "to_undo",
    # Configuration
    "ConfigMissing",
    "ProjectConfig",
    "configure_logging",
    "load_project_config",
    # Issue trackers
    "IssueTracker",
    "TrackerError",
    "tracker_for",
    "tracker_for_changeset",
]
