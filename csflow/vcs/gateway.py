"""GitGateway — the one place csflow launches the ``git`` binary.

Three calling conventions mirror how callers consume a command:

* :meth:`GitGateway.run` — fire-and-forget; any failure raises
  :class:`CommandFailed`.
* :meth:`GitGateway.scalar` — one chomped string of combined output.  The
  exit status is *not* checked; callers validate the value themselves.
* :meth:`GitGateway.lines` — a list of right-stripped output lines;
  failure raises :class:`CommandFailed`.

Every command runs with its working directory pinned to the repository's
top level, except ``clone`` which runs from the caller's directory.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

from csflow import reversible

logger = logging.getLogger(__name__)

_DEBUG_VARS = ("CSFLOW_DEBUG", "DEBUG")


class CommandFailed(Exception):
    """Raised when a git process exits non-zero or is killed by a signal."""

    def __init__(
        self,
        command: str,
        returncode: int | None = None,
        signal: int | None = None,
        output: str = "",
        reason: str | None = None,
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.signal = signal
        self.output = output
        if reason is None:
            if signal is not None:
                reason = f"died with signal {signal}"
            else:
                reason = f"exited with value {returncode}"
        message = f"{command} failed: {reason}"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class RefNotFound(Exception):
    """Raised when a name does not resolve to a valid commit."""

    def __init__(self, ref: str, message: str | None = None) -> None:
        self.ref = ref
        super().__init__(message or f"'{ref}' is not a valid ref")


def debug_enabled() -> bool:
    """Return *True* when the debug toggle is set in the environment."""
    return any(os.environ.get(name) for name in _DEBUG_VARS)


def _describe(args: tuple[str, ...]) -> str:
    return "git " + " ".join(args)


class GitGateway:
    """Execute git commands on behalf of one repository.

    Parameters
    ----------
    path:
        Any directory inside the repository.  Defaults to the current
        working directory.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.start = Path(path if path is not None else os.getcwd()).resolve()
        self._toplevel: Path | None = None

    # -- Locations ------------------------------------------------------------

    @property
    def toplevel(self) -> Path:
        """Absolute path of the working tree's top-level directory."""
        if self._toplevel is None:
            result = subprocess.run(
                ["git", "rev-parse", "--show-toplevel"],
                cwd=self.start,
                capture_output=True,
                text=True,
            )
            top = result.stdout.strip()
            if result.returncode != 0 or not top:
                raise CommandFailed(
                    "git rev-parse --show-toplevel",
                    returncode=result.returncode,
                    reason="Not a git repository (or any of the parent directories): .git",
                )
            self._toplevel = Path(top)
        return self._toplevel

    def _cwd_for(self, args: tuple[str, ...]) -> Path:
        if args and args[0] == "clone":
            return Path(os.getcwd())
        return self.toplevel

    # -- Execution ------------------------------------------------------------

    def _launch(
        self,
        args: tuple[str, ...],
        *,
        merge_stderr: bool,
        input: str | None,
    ) -> subprocess.CompletedProcess[str]:
        command = _describe(args)
        cwd = self._cwd_for(args)
        logger.debug("%s (cwd=%s)", command, cwd)
        if debug_enabled():
            sys.stderr.write(f"> {command}\n")

        reversible.checkpoint()
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise CommandFailed(command, reason=f"failed to execute: {exc}") from exc
        reversible.checkpoint()
        return result

    @staticmethod
    def _check(command: str, result: subprocess.CompletedProcess[str]) -> None:
        if result.returncode == 0:
            return
        output = (result.stderr or result.stdout or "").strip()
        if result.returncode < 0:
            raise CommandFailed(command, signal=-result.returncode, output=output)
        raise CommandFailed(command, returncode=result.returncode, output=output)

    def run(self, *args: str, input: str | None = None) -> None:
        """Run a command to completion, raising :class:`CommandFailed` on failure."""
        result = self._launch(args, merge_stderr=False, input=input)
        self._check(_describe(args), result)
        if result.stdout:
            logger.debug("%s", result.stdout.rstrip("\n"))

    def scalar(self, *args: str, input: str | None = None) -> str:
        """Return the command's combined output with the trailing newline removed.

        A non-zero exit is not treated as an error here: some commands write
        partial output and still fail, so callers must check the value.
        """
        result = self._launch(args, merge_stderr=True, input=input)
        output = result.stdout or ""
        if output.endswith("\n"):
            output = output[:-1]
        return output

    def lines(self, *args: str) -> list[str]:
        """Return the command's output as a list of right-stripped lines."""
        result = self._launch(args, merge_stderr=False, input=None)
        self._check(_describe(args), result)
        return [line.rstrip() for line in result.stdout.splitlines()]

