"""Derived facts about a changeset, computed from its ledger history."""

from __future__ import annotations

from typing import Sequence

from csflow.config import ACTION_STATUS, NON_STATUS_ACTIONS
from csflow.ledger.models import LedgerEvent


def history_owner(history: Sequence[LedgerEvent]) -> str | None:
    """Return the user who opened the changeset."""
    for event in history:
        if event.action == "open":
            return event.user
    return None


def _last_submit(history: Sequence[LedgerEvent]) -> LedgerEvent | None:
    for event in reversed(history):
        if event.action == "submit":
            return event
    return None


def history_reviewer(history: Sequence[LedgerEvent]) -> str | None:
    """Return the reviewer the changeset was most recently submitted to."""
    last = _last_submit(history)
    return last.reviewer if last else None


def history_submitter(history: Sequence[LedgerEvent]) -> str | None:
    """Return the user who most recently submitted the changeset."""
    last = _last_submit(history)
    return last.user if last else None


def history_status(history: Sequence[LedgerEvent]) -> str | None:
    """Return the changeset's current status (``open``, ``merged``, ...).

    Touches, promotions and demotions don't change the status.
    """
    for event in reversed(history):
        if event.action not in NON_STATUS_ACTIONS:
            return ACTION_STATUS.get(event.action)
    return None
