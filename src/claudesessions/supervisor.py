"""Supervisor: terminate sessions and remove their state.

kill() is fire-and-forget. It signals the agent, optionally closes its
window, then deletes the record and the mailbox without waiting for the
process to exit. A record that no longer points at a running process is
simply removed.
"""

from __future__ import annotations

import signal
from typing import Optional

from .backend import TerminalBackend
from .errors import CorruptRecordError, NotFoundError, PartialFailure
from .logging_config import get_logger
from .registry import Registry
from .signals import terminate
from .store import Session
from .validators import ValidationError, validate_session_id

logger = get_logger(__name__)

__all__ = ["Supervisor"]


class Supervisor:
    """Kill sessions by id.

    Args:
        registry: Registry holding the session records
        backends: Backends by name, used to close the session's context
        sig: Signal delivered to the agent process
        close_window: Close the session's context (tmux window) as well
    """

    def __init__(
        self,
        registry: Registry,
        backends: Optional[dict[str, TerminalBackend]] = None,
        sig: signal.Signals = signal.SIGTERM,
        close_window: bool = True,
    ):
        self.registry = registry
        self.backends = dict(backends or {})
        self.sig = sig
        self.close_window = close_window

    def _close_context(self, session: Session) -> None:
        backend = self.backends.get(session.backend)
        if backend is None or not session.host_handle:
            return
        try:
            backend.close(session.host_handle)
        except OSError as e:
            logger.warning(f"Could not close {session.backend} context of '{session.id}': {e}")

    def _remove_state(self, session_id: str, predicate) -> None:
        # Leave a record that a new spawn registered under the same id meanwhile
        if not self.registry.store.remove_if(session_id, predicate):
            return
        if self.registry.mailbox is not None:
            self.registry.mailbox.delete(session_id)

    def kill(self, session_id: str) -> Optional[Session]:
        """Terminate session_id and remove its record and mailbox.

        Returns:
            The removed Session, or None if the record was corrupt

        Raises:
            NotFoundError: If there is no record for session_id (nothing is
                changed on disk)
            PermissionError: If the process belongs to another user; the
                record is left in place
        """
        try:
            session_id = validate_session_id(session_id)
        except ValidationError:
            # A malformed id can never have a record
            raise NotFoundError(str(session_id)) from None
        try:
            session = self.registry.store.get(session_id)
        except CorruptRecordError as e:
            logger.warning(f"{e}; removing")
            self._remove_state(session_id, lambda current: current is None)
            return None

        if session is None:
            raise NotFoundError(session_id)

        if self.registry.is_stale(session):
            logger.debug(f"Session '{session_id}' already exited (pid {session.pid})")
        else:
            terminate(session.pid, self.sig)

        if self.close_window:
            self._close_context(session)

        self._remove_state(session_id, session.same_incarnation)
        logger.info(f"Killed session '{session_id}' (pid {session.pid})")
        return session

    def kill_all(self) -> list[str]:
        """Kill every session, live or stale.

        Every target is attempted before any failure is reported.

        Returns:
            Ids that were killed

        Raises:
            PartialFailure: If some sessions could not be killed
        """
        killed: list[str] = []
        failures: dict[str, str] = {}

        for session_id in self.registry.store.ids():
            try:
                self.kill(session_id)
                killed.append(session_id)
            except NotFoundError:
                # Removed concurrently by another cleanup
                continue
            except (OSError, ValueError) as e:
                logger.warning(f"Could not kill '{session_id}': {e}")
                failures[session_id] = str(e)

        if failures:
            raise PartialFailure("killall", killed, failures)
        return killed
