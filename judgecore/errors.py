"""Exceptions raised by the execution core.

Failures of the submitted code are never raised; they are reported as data
on ``ExecutionResult``. These exceptions are for infrastructure faults only.
"""

from __future__ import annotations


class JudgeError(Exception):
    """Base class for infrastructure failures."""


class WorkspaceError(JudgeError):
    """The scratch directory for a request could not be created or used."""


class ToolchainNotFoundError(JudgeError):
    """A compiler or interpreter binary is not installed on the host."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"Compiler '{binary}' was not found. Make sure {binary} is installed.")
        self.binary = binary


class UnsupportedLanguageError(JudgeError, ValueError):
    pass
