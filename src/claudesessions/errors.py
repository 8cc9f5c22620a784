"""Error taxonomy for claude-sessions.

Single-target operations (kill, send, spawn) raise these directly.
Bulk operations (kill_all, broadcast) collect per-target failures and
raise a single PartialFailure once every target has been attempted.
"""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "SessionError",
    "DuplicateIdError",
    "NotFoundError",
    "InvalidTargetError",
    "SpawnError",
    "PartialFailure",
    "CorruptRecordError",
]


class SessionError(Exception):
    """Base exception for session coordination errors."""

    pass


class DuplicateIdError(SessionError):
    """Raised when a live session already holds the requested id."""

    def __init__(self, session_id: str, pid: int | None = None):
        self.session_id = session_id
        self.pid = pid
        holder = f" (pid {pid})" if pid is not None else ""
        super().__init__(f"Session '{session_id}' is already live{holder}")


class NotFoundError(SessionError):
    """Raised when an operation targets an unknown session id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No session named '{session_id}'")


class InvalidTargetError(SessionError, ValueError):
    """Raised when a message target id is syntactically invalid."""

    def __init__(self, target_id: object, reason: str = ""):
        self.target_id = target_id
        self.reason = reason
        message = f"Invalid target session id {target_id!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SpawnError(SessionError):
    """Raised when a session could not be launched or registered.

    Attributes:
        attempted: Candidate ids tried before giving up (empty when the
            launch itself failed)
    """

    def __init__(self, message: str, attempted: list[str] | None = None):
        self.attempted = list(attempted or [])
        super().__init__(message)


class PartialFailure(SessionError):
    """Raised by bulk operations when some targets failed.

    Attributes:
        succeeded: Ids the operation completed for
        failures: Mapping of id -> failure reason
    """

    def __init__(self, operation: str, succeeded: list[str], failures: dict[str, str]):
        self.operation = operation
        self.succeeded = list(succeeded)
        self.failures = dict(failures)
        super().__init__(
            f"{operation}: {len(self.failures)} of "
            f"{len(self.failures) + len(self.succeeded)} target(s) failed"
        )


class CorruptRecordError(SessionError):
    """Raised when a persisted record cannot be parsed."""

    def __init__(self, path: Path, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt record at {path}: {reason}" if reason else f"Corrupt record at {path}")
