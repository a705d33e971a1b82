"""Pydantic models for the changeset ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class LedgerEvent(BaseModel):
    """One workflow action recorded against a changeset.

    Free-form fields beyond the ones declared here are kept as they were
    written.
    """

    model_config = ConfigDict(extra="allow")

    user: str
    changeset: str
    action: str
    stamp: int
    """Seconds since the epoch when the event was recorded."""

    target: Optional[str] = None
    reviewer: Optional[str] = None

    @property
    def when(self) -> datetime:
        """The stamp as a local datetime."""
        return datetime.fromtimestamp(self.stamp)

    @property
    def stamp_text(self) -> str:
        return self.when.strftime("%Y-%m-%d %H:%M:%S")

    def to_record(self) -> dict[str, Any]:
        """Return the plain mapping stored in the ledger blob."""
        return self.model_dump(exclude_none=True)
