"""Reversible computation — undo side effects when a unit of work fails.

Usage::

    from csflow.reversible import failure_warning, reversibly, to_undo

    def open_branch():
        repo.git.run("branch", name, base)
        to_undo(lambda: repo.git.run("branch", "-D", name))
        failure_warning(f"Could not open {name}; the branch was removed")
        ledger.append_events([{...}])

    reversibly(open_branch)

If ``open_branch`` raises, or SIGINT/SIGTERM arrives while it runs, every
registered undo action runs in reverse order and the original exception is
re-raised.  Nested :func:`reversibly` calls each get their own undo stack.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextvars import ContextVar
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_current: ContextVar[Transaction | None] = ContextVar("csflow_transaction", default=None)


class InterruptedTransaction(Exception):
    """Raised when SIGINT or SIGTERM cancels a reversible unit of work."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        try:
            self.signal_name = signal.Signals(signum).name
        except ValueError:
            self.signal_name = f"signal {signum}"
        super().__init__(f"Interrupted by {self.signal_name}")


class Transaction:
    """Undo stack and cancellation state for one :func:`reversibly` call."""

    def __init__(self) -> None:
        self.undo_stack: list[Callable[[], Any]] = []
        self.failure_message: str | None = None
        self.interrupted: int | None = None
        self.unwinding = False

    def to_undo(self, action: Callable[[], Any]) -> None:
        self.undo_stack.append(action)

    def failure_warning(self, message: str) -> None:
        self.failure_message = message

    def interrupt(self, signum: int) -> None:
        self.interrupted = signum

    def checkpoint(self) -> None:
        """Raise :class:`InterruptedTransaction` if a cancellation was received."""
        if self.interrupted is not None and not self.unwinding:
            raise InterruptedTransaction(self.interrupted)

    def rollback(self) -> None:
        """Emit the failure warning and run undo actions newest first."""
        self.unwinding = True
        if self.failure_message is not None:
            logger.warning("%s", self.failure_message)
        for undo in reversed(self.undo_stack):
            try:
                undo()
            except Exception as exc:
                logger.warning("Exception during undo: %s", exc, exc_info=True)
        self.undo_stack.clear()

    def _on_signal(self, signum: int, frame: Any) -> None:
        self.interrupt(signum)
        if self.unwinding:
            logger.warning("Received %s during rollback; continuing to unwind", signum)
            return
        raise InterruptedTransaction(signum)


def current() -> Transaction | None:
    """Return the innermost active transaction, if any."""
    return _current.get()


def _active(caller: str) -> Transaction:
    transaction = _current.get()
    if transaction is None:
        raise RuntimeError(f"{caller}() called outside of reversibly()")
    return transaction


def to_undo(action: Callable[[], Any]) -> Callable[[], Any]:
    """Register *action* to run if the enclosing unit of work fails.

    Returns *action* unchanged so it can be used as a decorator.
    """
    _active("to_undo").to_undo(action)
    return action


def failure_warning(message: str) -> None:
    """Set the warning logged if the enclosing unit fails.  Last call wins."""
    _active("failure_warning").failure_warning(message)


def checkpoint() -> None:
    """Suspension point: abort the active unit if it has been cancelled."""
    transaction = _current.get()
    if transaction is not None:
        transaction.checkpoint()


def _install_handlers(transaction: Transaction) -> dict[int, Any] | None:
    # signal handlers can only be installed from the main thread
    if threading.current_thread() is not threading.main_thread():
        return None
    previous = {}
    for signum in _SIGNALS:
        previous[signum] = signal.signal(signum, transaction._on_signal)
    return previous


def _restore_handlers(previous: dict[int, Any] | None) -> None:
    if previous is None:
        return
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def reversibly(unit: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``unit(*args, **kwargs)`` and undo its side effects on failure.

    Returns whatever *unit* returns.  On failure the warning set through
    :func:`failure_warning` is logged, undo actions registered with
    :func:`to_undo` run in reverse order (an undo action that raises is
    logged and skipped), and the original exception is re-raised with a
    note saying it caused a rollback.
    """
    transaction = Transaction()
    token = _current.set(transaction)
    previous = _install_handlers(transaction)
    try:
        try:
            result = unit(*args, **kwargs)
            transaction.checkpoint()
        except BaseException as exc:
            transaction.rollback()
            exc.add_note(f"The exception that caused rollback was: {exc!r}")
            raise
        return result
    finally:
        _restore_handlers(previous)
        _current.reset(token)
