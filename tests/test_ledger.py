"""Tests for the changeset ledger (meta/* tags).

Every test works in a clone whose origin is a bare repository, so pushes of
ledger tags can be checked with ``git ls-remote``.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest import mock

import pytest

from csflow.ledger.blobs import BlobStore, dump
from csflow.ledger.buffer import ADD, REMOVE, TagBuffer
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
from csflow.vcs.repo import Repository

from conftest import git


def _remote_tags(clone: Path) -> str:
    return git(clone, "ls-remote", "--tags", "origin")


@pytest.fixture()
def ledger(clone: Path) -> MetaDataLedger:
    return MetaDataLedger(Repository(clone))


def _event(action: str, user: str = "alice", **extra) -> LedgerEvent:
    return LedgerEvent(user=user, changeset="e1", action=action, stamp=1, **extra)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


class TestAppendEvents:
    def test_round_trip(self, ledger: MetaDataLedger, clone: Path):
        event_id = ledger.append_events([{"changeset": "e123", "action": "open", "user": "alice"}])
        assert event_id == 0

        events = ledger.history("proj", "e123")
        assert len(events) == 1
        assert events[0].action == "open"
        assert events[0].user == "alice"
        assert events[0].stamp > 0
        assert "refs/tags/meta/e123" in _remote_tags(clone)

        ledger.remove_event("e123", event_id)
        assert ledger.history("proj", "e123") == []

    def test_ids_are_positions(self, ledger: MetaDataLedger):
        assert ledger.append_events({"changeset": "e1", "action": "open"}) == 0
        assert ledger.append_events({"changeset": "e1", "action": "submit", "reviewer": "bob"}) == 1
        assert ledger.append_events({"changeset": "e1", "action": "pass"}) == 2

        ledger.remove_event("e1", 0)
        actions = [e.action for e in ledger.history(None, "e1")]
        assert actions == ["submit", "pass"]

    def test_user_defaults_to_git_identity(self, ledger: MetaDataLedger):
        ledger.append_events({"changeset": "e1", "action": "open"})
        assert ledger.history(None, "e1")[0].user == "csflow Test"

    def test_stamp_is_current_time(self, ledger: MetaDataLedger):
        before = int(time.time())
        ledger.append_events({"changeset": "e1", "action": "open", "stamp": 5})
        stamp = ledger.history(None, "e1")[0].stamp
        assert before <= stamp <= int(time.time())

    def test_multiple_entries_return_none(self, ledger: MetaDataLedger):
        result = ledger.append_events([
            {"changeset": "e1", "action": "open"},
            {"changeset": "e2", "action": "open"},
        ])
        assert result is None
        assert ledger.changesets() == ["e1", "e2"]

    def test_extra_fields_kept(self, ledger: MetaDataLedger):
        ledger.append_events({"changeset": "e1", "action": "touch", "note": "hello"})
        event = ledger.history(None, "e1")[0]
        assert event.model_extra["note"] == "hello"

    def test_missing_changeset(self, ledger: MetaDataLedger):
        with pytest.raises(ValueError):
            ledger.append_events({"action": "open"})

    def test_deferred_flush(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open", "flush": False})
        assert "meta/e1" in ledger.buffer
        assert "refs/tags/meta/e1" not in _remote_tags(clone)

        assert ledger.flush() == ["meta/e1"]
        assert len(ledger.buffer) == 0
        assert "refs/tags/meta/e1" in _remote_tags(clone)

    def test_later_write_publishes_deferred(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open", "flush": False})
        ledger.append_events({"changeset": "e2", "action": "open"})
        remote = _remote_tags(clone)
        assert "refs/tags/meta/e1" in remote
        assert "refs/tags/meta/e2" in remote

    def test_remove_after_deferred_add_pushes_once(self, ledger: MetaDataLedger, clone: Path):
        with mock.patch.object(ledger.repo, "push_tags", wraps=ledger.repo.push_tags) as push:
            event_id = ledger.append_events({"changeset": "e1", "action": "open", "flush": False})
            ledger.remove_event("e1", event_id)
        assert push.call_count == 1
        assert ledger.history(None, "e1") == []
        local = git(clone, "rev-parse", "refs/tags/meta/e1")
        remote = git(clone, "ls-remote", "origin", "refs/tags/meta/e1").split()[0]
        assert remote == local

    def test_writes_from_another_clone(self, clone: Path, other_clone: Path):
        MetaDataLedger(Repository(clone)).append_events({"changeset": "e1", "action": "open"})
        MetaDataLedger(Repository(other_clone)).append_events({"changeset": "e1", "action": "edit"})

        ledger = MetaDataLedger(Repository(clone))
        assert ledger.append_events({"changeset": "e1", "action": "submit"}) == 2
        assert [e.action for e in ledger.history(None, "e1")] == ["open", "edit", "submit"]

        other = MetaDataLedger(Repository(other_clone))
        assert [e.action for e in other.history(None, "e1")] == ["open", "edit", "submit"]


class TestRemoveEvents:
    def test_out_of_range(self, ledger: MetaDataLedger):
        ledger.append_events({"changeset": "e1", "action": "open"})
        with pytest.raises(IndexError):
            ledger.remove_event("e1", 3)

    def test_missing_ledger_is_ignored(self, ledger: MetaDataLedger):
        ledger.remove_event("e404", 0)
        assert ledger.history(None, "e404") == []

    def test_remove_all_events(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open"})
        ledger.append_events({"changeset": "e1", "action": "touch"})
        assert ledger.remove_all_events("e1") == 2
        assert ledger.history(None, "e1") == []
        assert "refs/tags/meta/e1" not in _remote_tags(clone)
        assert ledger.remove_all_events("e1") == 0

    def test_remove_project(self, ledger: MetaDataLedger):
        ledger.append_events([
            {"changeset": "e1", "action": "open"},
            {"changeset": "e2", "action": "open"},
        ])
        assert ledger.remove_project() == 2
        assert ledger.changesets() == []


class TestSnapshots:
    def test_restore_meta_data(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open"})
        ledger.cache_meta_data("e1")
        ledger.append_events({"changeset": "e1", "action": "submit"})
        assert len(ledger.history(None, "e1")) == 2

        ledger.restore_meta_data()
        assert [e.action for e in ledger.history(None, "e1")] == ["open"]

    def test_restore_after_removal(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open"})
        ledger.cache_meta_data("e1")
        ledger.remove_all_events("e1")
        ledger.restore_meta_data()
        assert len(ledger.history(None, "e1")) == 1
        assert "refs/tags/meta/e1" in _remote_tags(clone)

    def test_restore_without_cache(self, ledger: MetaDataLedger):
        with pytest.raises(RuntimeError):
            ledger.restore_meta_data()

    def test_each_snapshot_starts_fresh(self, ledger: MetaDataLedger, clone: Path):
        ledger.append_events({"changeset": "e1", "action": "open"})
        ledger.append_events({"changeset": "e2", "action": "open"})
        ledger.cache_meta_data("e1")
        ledger.remove_all_events("e1")
        snapshot = ledger.cache_meta_data("e2")
        assert [tag for tag, _ in snapshot] == ["meta/e2"]

        ledger.remove_all_events("e2")
        ledger.restore_meta_data(snapshot)
        assert ledger.changesets() == ["e2"]
        assert "refs/tags/meta/e1" not in _remote_tags(clone)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestLedgerQueries:
    def test_ledger_tag(self):
        assert ledger_tag("e1") == "meta/e1"
        assert ledger_tag("meta/e1") == "meta/e1"

    def test_unmerged_changesets(self, ledger: MetaDataLedger):
        ledger.append_events({"changeset": "e1", "action": "open"})
        ledger.append_events({"changeset": "e2", "action": "open"})
        ledger.append_events({"changeset": "e2", "action": "pass"})
        unmerged = ledger.unmerged_changesets()
        assert list(unmerged) == ["e1"]
        assert unmerged["e1"][0].action == "open"

    def test_changesets_promoted_between(self, ledger: MetaDataLedger):
        ledger.append_events({"changeset": "e1", "action": "promote", "target": "test"})
        ledger.append_events({"changeset": "e2", "action": "promote", "target": "stage"})
        ledger.append_events({"changeset": "e3", "action": "open"})
        now = datetime.now()
        start, end = now - timedelta(minutes=5), now + timedelta(minutes=5)
        assert ledger.changesets_promoted_between("test", start, end) == ["e1"]
        assert ledger.changesets_promoted_between("test", time.time() + 60, time.time() + 120) == []

    def test_highest_quickfix_number(self, ledger: MetaDataLedger):
        assert ledger.highest_quickfix_number() == 0
        ledger.append_events([
            {"changeset": "quickfix3", "action": "open"},
            {"changeset": "quickfix12", "action": "open"},
        ])
        assert ledger.highest_quickfix_number() == 12

    def test_changeset_group(self, ledger: MetaDataLedger):
        ledger.append_events([
            {"changeset": "e100b", "action": "open"},
            {"changeset": "e100", "action": "open"},
            {"changeset": "e100a", "action": "open"},
            {"changeset": "e101", "action": "open"},
        ])
        ledger.append_events({"changeset": "e100b", "action": "pass"})
        assert ledger.changeset_group("e100") == ["e100", "e100a"]


class TestHistoryQueries:
    def test_owner(self):
        history = [_event("open", "alice"), _event("edit", "bob")]
        assert history_owner(history) == "alice"
        assert history_owner([]) is None

    def test_reviewer_and_submitter(self):
        history = [
            _event("open"),
            _event("submit", "alice", reviewer="bob"),
            _event("fail", "bob"),
            _event("submit", "carol", reviewer="dave"),
        ]
        assert history_reviewer(history) == "dave"
        assert history_submitter(history) == "carol"
        assert history_reviewer([_event("open")]) is None

    @pytest.mark.parametrize(
        "actions, expected",
        [
            (["open"], "open"),
            (["open", "submit"], "submitted"),
            (["open", "submit", "review"], "reviewing"),
            (["open", "submit", "fail"], "failed"),
            (["open", "submit", "pass", "promote", "touch"], "merged"),
            (["open", "submit", "fail", "edit", "demote"], "open"),
            ([], None),
        ],
    )
    def test_status(self, actions, expected):
        history = [_event(action, target="test") for action in actions]
        assert history_status(history) == expected


# ---------------------------------------------------------------------------
# Supporting pieces
# ---------------------------------------------------------------------------


class TestTagBuffer:
    def test_dedupes_last_operation_wins(self):
        buffer = TagBuffer()
        buffer.queue(ADD, ["meta/a", "meta/b"])
        buffer.queue(REMOVE, ["meta/a"])
        assert buffer.pending() == ["meta/b", "meta/a"]
        assert buffer.pending(ADD) == ["meta/b"]
        assert buffer.pending(REMOVE) == ["meta/a"]
        assert len(buffer) == 2

    def test_discard_and_clear(self):
        buffer = TagBuffer()
        buffer.queue(ADD, ["meta/a", "meta/b"])
        buffer.discard("meta/a")
        assert "meta/a" not in buffer
        buffer.clear()
        assert len(buffer) == 0


class TestBlobStore:
    def test_dump_is_block_style(self):
        text = dump([{"user": "alice", "action": "open"}])
        assert text.startswith("- user: alice\n  action: open\n")

    def test_round_trip(self, local_repo: Path):
        store = BlobStore(Repository(local_repo))
        blob = store.create_blob({"email": "a@example.com"})
        assert len(blob) == 40
        assert store.view_blob(blob) == {"email": "a@example.com"}

    def test_missing_blob(self, local_repo: Path):
        assert BlobStore(Repository(local_repo)).view_blob("refs/tags/none") is None


class TestUsers:
    def test_user_name(self, clone: Path):
        assert UserDirectory(Repository(clone)).get_user_name() == "csflow Test"

    def test_add_current_user(self, clone: Path):
        git(clone, "config", "user.name", "alice")
        repo = Repository(clone)
        users = UserDirectory(repo)
        users.add_current_user()
        assert "refs/tags/user/alice" in _remote_tags(clone)
        assert users.get_user_email("alice") == "test@csflow.dev"
        assert users.get_user_email() == "test@csflow.dev"
        assert GitTagUserLookup(repo).users() == ["alice"]

    def test_unknown_user_email_falls_back(self, clone: Path):
        users = UserDirectory(Repository(clone))
        assert users.get_user_email("nobody") == "test@csflow.dev"

    def test_local_group_lookup(self):
        assert LocalGroupUserLookup(None).users() == []
        assert LocalGroupUserLookup("no-such-group-csflow").users() == []

    def test_lookup_factory(self, clone: Path):
        repo = Repository(clone)
        assert isinstance(user_lookup_for("GitTag", repo), GitTagUserLookup)
        assert isinstance(user_lookup_for("LocalGroup", repo, "staff"), LocalGroupUserLookup)
        with pytest.raises(ValueError):
            user_lookup_for("Ldap", repo)
