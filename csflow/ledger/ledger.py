"""MetaDataLedger — the append-only event log kept for every changeset.

Each changeset's events live in a single YAML blob referenced by the tag
``meta/<changeset>``.  Writing replaces that tag (delete, then create at
the new blob) and force-pushes it to the shared remote.  There is no
locking: two writers racing on one changeset can silently overwrite each
other's newest event.

Event identifiers are array positions.  Removing an event shifts the ids of
every later event down by one.
"""

from __future__ import annotations

import logging
import re
import time
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Mapping

from csflow.config import LEDGER_TAG
from csflow.ledger.blobs import BlobStore
from csflow.ledger.buffer import ADD, REMOVE, TagBuffer
from csflow.ledger.models import LedgerEvent
from csflow.ledger.queries import history_status
from csflow.ledger.users import UserDirectory
from csflow.naming import changeset_sort_key, sort_changesets_by_name
from csflow.vcs.repo import Repository

logger = logging.getLogger(__name__)

_LEDGER_PREFIX = LEDGER_TAG.format(cs="")
_QUICKFIX = re.compile(r"^meta/quickfix(\d+)$")


def ledger_tag(changeset: str) -> str:
    """Return the tag holding *changeset*'s events (``meta/`` prefix optional)."""
    if changeset.startswith(_LEDGER_PREFIX):
        return changeset
    return LEDGER_TAG.format(cs=changeset)


def _timestamp(value: datetime | str | int | float) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        return datetime.fromisoformat(value).timestamp()
    return float(value)


class MetaDataLedger:
    """Read and write changeset event logs stored in ``meta/*`` tags.

    Parameters
    ----------
    repo:
        Repository context.
    users:
        Resolves the acting user for events that don't name one.
    """

    def __init__(self, repo: Repository, users: UserDirectory | None = None) -> None:
        self.repo = repo
        self.store = BlobStore(repo)
        self.users = users or UserDirectory(repo, self.store)
        self.buffer = TagBuffer()
        self._snapshot: list[tuple[str, str]] | None = None

    # -- Storage --------------------------------------------------------------

    def meta_tags(self, fetch: bool = True) -> list[str]:
        """Return every ledger tag name, fetching remote tags first."""
        if fetch:
            self.repo.fetch_tags()
        return self.repo.tags(_LEDGER_PREFIX + "*")

    def _exists(self, tag: str) -> bool:
        return self.repo.is_valid_ref(f"refs/tags/{tag}") is not None

    def _read(self, tag: str) -> list[dict[str, Any]]:
        events = self.store.view_blob(f"refs/tags/{tag}")
        if events is None:
            return []
        if not isinstance(events, list):
            raise ValueError(f"Ledger {tag} does not hold a list of events")
        return events

    def _replace(self, tag: str, events: list[dict[str, Any]]) -> None:
        blob = self.store.create_blob(events)
        if self._exists(tag):
            self.repo.untag(tag)
        self.repo.tag(tag, blob)

    def flush(self) -> list[str]:
        """Force-push every buffered ledger tag; return the names pushed."""
        names = self.buffer.pending()
        if names:
            self.repo.push_tags(*names)
            logger.debug("Published ledger tags: %s", ", ".join(names))
        self.buffer.clear()
        return names

    # -- Writing --------------------------------------------------------------

    def append_events(
        self,
        entries: Mapping[str, Any] | Iterable[Mapping[str, Any]] | None,
    ) -> int | None:
        """Append events to their changesets' ledgers.

        Each entry needs a ``changeset`` and an ``action``; ``user`` defaults
        to the acting user and ``stamp`` is always the current time.  An
        entry with ``flush`` set to a false value defers publishing until a
        later write (or :meth:`flush`).

        Returns the new event's id when exactly one entry is given.
        """
        if entries is None:
            entries = []
        elif isinstance(entries, Mapping):
            entries = [entries]
        entries = [dict(entry) for entry in entries]

        existing = set(self.meta_tags())
        tags: list[str] = []
        single_id: int | None = None
        flush = True

        for data in entries:
            if "user" not in data:
                data["user"] = self.users.get_user_name()
            changeset = data.get("changeset")
            if not changeset:
                raise ValueError("Ledger entries need a changeset")
            tag = ledger_tag(changeset)

            events = self._read(tag) if tag in existing else []
            event_id = len(events)
            if len(entries) == 1:
                single_id = event_id

            flag = data.pop("flush", None)
            if flag is not None and not flag:
                flush = False
            data["stamp"] = int(time.time())
            event = LedgerEvent.model_validate(data)
            events.append(event.to_record())

            self._replace(tag, events)
            existing.add(tag)
            tags.append(tag)
            logger.info("Recorded %s on %s (event %d)", event.action, changeset, event_id)

        self.buffer.queue(ADD, tags)
        if flush:
            self.flush()
        return single_id

    def remove_events(self, entries: Iterable[Mapping[str, Any]]) -> None:
        """Delete events given as ``{"changeset": ..., "id": ...}`` mappings.

        Later events on the same changeset move down one position.
        """
        self.repo.fetch_tags()
        tags: list[str] = []
        flush = True

        for entry in entries:
            tag = ledger_tag(entry["changeset"])
            if not self._exists(tag):
                return
            events = self._read(tag)
            event_id = int(entry["id"])
            if not 0 <= event_id < len(events):
                raise IndexError(f"{tag} has no event {event_id}")
            del events[event_id]

            self._replace(tag, events)
            tags.append(tag)
            if "flush" in entry and not entry["flush"]:
                flush = False
            logger.info("Removed event %d from %s", event_id, entry["changeset"])

        self.buffer.queue(REMOVE, tags)
        if flush:
            self.flush()

    def remove_event(self, changeset: str, id: int, flush: bool = True) -> None:
        """Delete the event at position *id* from *changeset*'s ledger."""
        self.remove_events([{"changeset": changeset, "id": id, "flush": flush}])

    def remove_all_events(self, changeset: str) -> int:
        """Delete *changeset*'s ledger locally and on the remote.

        Returns the number of events that were deleted.
        """
        self.repo.fetch_tags()
        tag = ledger_tag(changeset)
        if not self._exists(tag):
            return 0
        count = len(self._read(tag))
        self.repo.untag(tag)
        self.buffer.discard(tag)
        self.repo.push_tags(f":refs/tags/{tag}", force=False)
        logger.info("Removed the ledger of %s (%d events)", changeset, count)
        return count

    def remove_project(self) -> int:
        """Delete every changeset ledger in the project."""
        return sum(self.remove_all_events(tag) for tag in self.meta_tags())

    # -- Snapshots ------------------------------------------------------------

    def cache_meta_data(self, *changesets: str) -> list[tuple[str, str]]:
        """Remember where ledger tags point so :meth:`restore_meta_data` can
        put them back.  Defaults to every local ledger tag.

        Each call starts a new snapshot, which is also returned.
        """
        tags = [ledger_tag(cs) for cs in changesets] or self.meta_tags(fetch=False)
        snapshot = []
        for tag in tags:
            blob = self.repo.is_valid_ref(f"refs/tags/{tag}")
            if blob is not None:
                snapshot.append((tag, blob))
        self._snapshot = snapshot
        return list(snapshot)

    def restore_meta_data(self, snapshot: list[tuple[str, str]] | None = None) -> None:
        """Reset ledger tags to their remembered blobs and publish them.

        *snapshot* defaults to the one taken by the last :meth:`cache_meta_data`.
        """
        if snapshot is None:
            if self._snapshot is None:
                raise RuntimeError("You cannot restore meta data without caching any data")
            snapshot = self._snapshot
        for tag, blob in snapshot:
            if self._exists(tag):
                self.repo.untag(tag)
            self.repo.tag(tag, blob)
        self.repo.push_tags(*[tag for tag, _ in snapshot])
        self._snapshot = None

    def forget_meta_data(self) -> None:
        """Drop the last snapshot without restoring it."""
        self._snapshot = None

    # -- Reading --------------------------------------------------------------

    def history(self, project: str | None, changeset: str) -> list[LedgerEvent]:
        """Return *changeset*'s events in the order they were recorded.

        *project* names the project for callers that track several; the
        ledger itself is always the current repository's.
        """
        tag = ledger_tag(changeset)
        if tag not in self.meta_tags():
            return []
        return [LedgerEvent.model_validate(e) for e in self._read(tag)]

    def changesets(self) -> list[str]:
        return [tag[len(_LEDGER_PREFIX):] for tag in self.meta_tags()]

    def unmerged_changesets(self) -> dict[str, list[LedgerEvent]]:
        """Return histories of changesets that have never passed review."""
        unmerged: list[LedgerEvent] = []
        for tag in self.meta_tags():
            events = [LedgerEvent.model_validate(e) for e in self._read(tag)]
            if not any(e.action == "pass" for e in events):
                unmerged.extend(events)

        result: dict[str, list[LedgerEvent]] = defaultdict(list)
        for event in sorted(unmerged, key=lambda e: e.stamp):
            result[event.changeset].append(event)
        return dict(result)

    def changesets_promoted_between(
        self,
        target: str,
        start: datetime | str | int | float,
        end: datetime | str | int | float,
    ) -> list[str]:
        """Return changesets promoted to *target* strictly between two times.

        Times may be datetimes, epoch seconds or ISO strings such as
        ``2024-05-01T13:00:00``.
        """
        start_ts, end_ts = _timestamp(start), _timestamp(end)
        promoted = []
        for tag in self.meta_tags():
            for event in self._read(tag):
                if (
                    event.get("action") == "promote"
                    and event.get("target") == target
                    and start_ts < event.get("stamp", 0) < end_ts
                ):
                    promoted.append(tag[len(_LEDGER_PREFIX):])
                    break
        return promoted

    def highest_quickfix_number(self) -> int:
        """Return the highest number used by a ``quickfixN`` changeset (or 0)."""
        numbers = [
            int(match.group(1))
            for match in map(_QUICKFIX.match, self.meta_tags())
            if match
        ]
        return max(numbers, default=0)

    def changeset_group(self, changeset: str) -> list[str]:
        """Return the open changesets sharing *changeset*'s prefix and number.

        ``e123``, ``e123a`` and ``e123b`` form one group.  Names with no
        numeric part only group with themselves.
        """
        if changeset is None:
            raise ValueError("Cannot determine the changeset group for None")
        prefix, number, _ = changeset_sort_key(changeset)

        group = []
        for name in self.changesets():
            if changeset_sort_key(name)[:2] != (prefix, number):
                continue
            events = [LedgerEvent.model_validate(e) for e in self._read(ledger_tag(name))]
            if history_status(events) == "open":
                group.append(name)
        return sort_changesets_by_name(group)
