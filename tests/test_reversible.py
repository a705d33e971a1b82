"""Tests for the reversible transaction runner."""

from __future__ import annotations

import logging
import os
import signal
import time

import pytest

from csflow import reversible
from csflow.reversible import (
    InterruptedTransaction,
    failure_warning,
    reversibly,
    to_undo,
)


class Boom(Exception):
    pass


class TestReversibly:
    def test_returns_result(self):
        calls = []

        def unit(a, b=0):
            to_undo(lambda: calls.append("undo"))
            return a + b

        assert reversibly(unit, 2, b=3) == 5
        assert calls == []

    def test_undo_runs_in_reverse(self):
        calls = []

        def unit():
            to_undo(lambda: calls.append("U1"))
            to_undo(lambda: calls.append("U2"))
            raise Boom("fail")

        with pytest.raises(Boom):
            reversibly(unit)
        assert calls == ["U2", "U1"]

    def test_original_exception_reraised_with_note(self):
        error = Boom("original")

        def unit():
            raise error

        with pytest.raises(Boom) as info:
            reversibly(unit)
        assert info.value is error
        assert any("caused rollback" in note for note in info.value.__notes__)

    def test_failure_warning_logged(self, caplog):
        def unit():
            failure_warning("first")
            failure_warning("Could not open e1")
            raise Boom()

        with caplog.at_level(logging.WARNING, logger="csflow.reversible"):
            with pytest.raises(Boom):
                reversibly(unit)
        messages = [r.getMessage() for r in caplog.records]
        assert "Could not open e1" in messages
        assert "first" not in messages

    def test_no_warning_on_success(self, caplog):
        with caplog.at_level(logging.WARNING, logger="csflow.reversible"):
            reversibly(lambda: failure_warning("unused"))
        assert caplog.records == []

    def test_undo_failure_does_not_stop_unwind(self, caplog):
        calls = []

        def broken():
            raise RuntimeError("undo broke")

        def unit():
            to_undo(lambda: calls.append("U1"))
            to_undo(broken)
            to_undo(lambda: calls.append("U3"))
            raise Boom()

        with caplog.at_level(logging.WARNING, logger="csflow.reversible"):
            with pytest.raises(Boom):
                reversibly(unit)
        assert calls == ["U3", "U1"]
        assert any("undo" in r.getMessage().lower() for r in caplog.records)

    def test_nested_failure_isolated(self):
        calls = []

        def inner():
            to_undo(lambda: calls.append("inner"))
            raise Boom()

        def outer():
            to_undo(lambda: calls.append("outer"))
            try:
                reversibly(inner)
            except Boom:
                calls.append("caught")
            return "done"

        assert reversibly(outer) == "done"
        assert calls == ["inner", "caught"]

    def test_outer_failure_after_inner_success(self):
        calls = []

        def inner():
            to_undo(lambda: calls.append("inner"))

        def outer():
            to_undo(lambda: calls.append("outer"))
            reversibly(inner)
            raise Boom()

        with pytest.raises(Boom):
            reversibly(outer)
        # the inner stack is gone once the inner unit succeeded
        assert calls == ["outer"]

    def test_to_undo_outside_raises(self):
        with pytest.raises(RuntimeError):
            to_undo(lambda: None)
        with pytest.raises(RuntimeError):
            failure_warning("nope")

    def test_to_undo_returns_action(self):
        def unit():
            action = lambda: None  # noqa: E731
            assert to_undo(action) is action

        reversibly(unit)

    def test_current_cleared_afterwards(self):
        seen = []
        reversibly(lambda: seen.append(reversible.current()))
        assert seen[0] is not None
        assert reversible.current() is None


class TestInterruption:
    def test_sigint_unwinds(self):
        calls = []

        def unit():
            to_undo(lambda: calls.append("undo"))
            os.kill(os.getpid(), signal.SIGINT)
            time.sleep(5)
            calls.append("not reached")

        with pytest.raises(InterruptedTransaction) as info:
            reversibly(unit)
        assert info.value.signum == signal.SIGINT
        assert info.value.signal_name == "SIGINT"
        assert calls == ["undo"]

    def test_handlers_restored(self):
        before = signal.getsignal(signal.SIGTERM)
        reversibly(lambda: None)
        assert signal.getsignal(signal.SIGTERM) is before

    def test_checkpoint_raises_after_interrupt(self):
        calls = []

        def unit():
            to_undo(lambda: calls.append("undo"))
            reversible.current().interrupt(signal.SIGTERM)
            reversible.checkpoint()

        with pytest.raises(InterruptedTransaction) as info:
            reversibly(unit)
        assert info.value.signal_name == "SIGTERM"
        assert calls == ["undo"]

    def test_interrupt_noticed_when_unit_returns(self):
        calls = []

        def unit():
            to_undo(lambda: calls.append("undo"))
            reversible.current().interrupt(signal.SIGTERM)
            return "finished"

        with pytest.raises(InterruptedTransaction):
            reversibly(unit)
        assert calls == ["undo"]

    def test_checkpoint_outside_is_noop(self):
        reversible.checkpoint()
