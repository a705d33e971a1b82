"""Changeset ledger — per-changeset event logs stored in ``meta/*`` tags."""

from csflow.ledger.buffer import TagBuffer
from csflow.ledger.ledger import MetaDataLedger, ledger_tag
from csflow.ledger.models import LedgerEvent
from csflow.ledger.queries import (
    history_owner,
    history_reviewer,
    history_status,
    history_submitter,
)
from csflow.ledger.users import (
    GitTagUserLookup,
    LocalGroupUserLookup,
    UserDirectory,
    user_lookup_for,
)

__all__ = [
    "GitTagUserLookup",
    "LedgerEvent",
    "LocalGroupUserLookup",
    "MetaDataLedger",
    "TagBuffer",
    "UserDirectory",
    "history_owner",
    "history_reviewer",
    "history_status",
    "history_submitter",
    "ledger_tag",
    "user_lookup_for",
]
