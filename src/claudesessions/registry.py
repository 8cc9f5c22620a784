"""Registry of live sessions for claude-sessions.

This module provides functionality to:
- Register a session id, refusing ids held by a live process
- List live sessions, reclaiming stale and corrupt records on the way
- Reclaim one record explicitly, or sweep the whole store (reclaim_all)
- Look sessions up by id, pid or host handle

A record is live while its pid is running. Everything else is stale and
carries no authority: it never blocks a registration, never appears in
list_live(), and is removed by whichever process notices it first.
Removal always goes through SessionStore.remove_if() so a record that
another process registered under the same id a moment ago survives.
"""

from __future__ import annotations

import os
import shutil
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Protocol

from .errors import CorruptRecordError, DuplicateIdError
from .logging_config import get_logger
from .store import Session, SessionStore
from .validators import validate_session_id

if TYPE_CHECKING:
    from .mailbox import Mailbox

logger = get_logger(__name__)

__all__ = [
    "SessionStatus",
    "Registry",
    "STAGING_MAX_AGE_SECONDS",
]

# Collisions resolved per register() call before giving up
MAX_REGISTER_RETRIES = 8

# Staging leftovers older than this belong to a crashed writer
STAGING_MAX_AGE_SECONDS = 3600
STAGING_PREFIXES = (".stage-", ".reclaim-", ".claim-", ".trash-")


class SessionStatus(str, Enum):
    """Derived display status of a session record."""

    LIVE = "live"
    STALE = "stale"


class Liveness(Protocol):
    def is_alive(self, pid: int) -> bool: ...


class Registry:
    """Coordinates registration and stale-record reclamation.

    Args:
        store: Session record store
        liveness: Object answering is_alive(pid)
        mailbox: Mailbox whose per-session directories are removed together
            with reclaimed records (optional)
        mailbox_retention_seconds: Age after which reclaim_all() removes a
            mailbox that has no record
    """

    def __init__(
        self,
        store: SessionStore,
        liveness: Liveness,
        mailbox: Optional["Mailbox"] = None,
        mailbox_retention_seconds: int = 7 * 24 * 3600,
    ):
        self.store = store
        self.liveness = liveness
        self.mailbox = mailbox
        self.mailbox_retention_seconds = mailbox_retention_seconds

    def is_stale(self, session: Session) -> bool:
        return not self.liveness.is_alive(session.pid)

    def status(self, session: Session) -> SessionStatus:
        return SessionStatus.STALE if self.is_stale(session) else SessionStatus.LIVE

    def _removable(self, current: Optional[Session]) -> bool:
        return current is None or self.is_stale(current)

    def _drop_mailbox(self, session_id: str) -> None:
        if self.mailbox is None:
            return
        try:
            self.mailbox.delete(session_id)
        except OSError as e:
            logger.warning(f"Could not remove mailbox of {session_id}: {e}")

    def reclaim(self, session_id: str) -> bool:
        """Remove session_id's record and mailbox if the record is stale or corrupt.

        A live record is never removed, even if it replaced a stale one
        after the caller last looked.

        Returns:
            True if a record was reclaimed
        """
        session_id = validate_session_id(session_id)
        if not self.store.remove_if(session_id, self._removable):
            return False
        logger.info(f"Reclaimed stale session '{session_id}'")
        self._drop_mailbox(session_id)
        return True

    def register(self, session: Session) -> Session:
        """Register session under session.id.

        An existing record with the same id is reclaimed transparently when
        it is stale or corrupt.

        Returns:
            The registered session

        Raises:
            DuplicateIdError: If a live session holds the id
            ValidationError: If the id is malformed
        """
        session.id = validate_session_id(session.id)

        for _ in range(MAX_REGISTER_RETRIES):
            if self.store.create(session):
                logger.debug(f"Registered session '{session.id}' (pid {session.pid})")
                return session

            try:
                existing = self.store.get(session.id)
            except CorruptRecordError as e:
                logger.warning(f"{e}; reclaiming")
                existing = None
            else:
                if existing is None:
                    # Removed between our create and get; try again
                    continue
                if not self.is_stale(existing):
                    raise DuplicateIdError(session.id, existing.pid)

            self.reclaim(session.id)

        # Every retry lost to a concurrent registration or reclamation
        holder = self.get_live(session.id)
        raise DuplicateIdError(session.id, holder.pid if holder else None)

    def get(self, session_id: str) -> Optional[Session]:
        """Return the record for session_id, live or stale; None if absent or corrupt."""
        try:
            return self.store.get(session_id)
        except CorruptRecordError as e:
            logger.debug(str(e))
            return None

    def get_live(self, session_id: str) -> Optional[Session]:
        """Return the record for session_id only if its process is alive."""
        session = self.get(session_id)
        if session is None or self.is_stale(session):
            return None
        return session

    def list_live(self) -> list[Session]:
        """Return every live session, reclaiming stale and corrupt records seen.

        Returns:
            Live sessions ordered by start time, then id
        """
        live = []
        for session_id, session in self.store.list():
            if session is not None and not self.is_stale(session):
                live.append(session)
                continue
            try:
                self.reclaim(session_id)
            except OSError as e:
                logger.warning(f"Could not reclaim '{session_id}': {e}")
        live.sort(key=lambda s: (s.started, s.id))
        return live

    def list(self, include_stale: bool = False) -> list[tuple[Session, SessionStatus]]:
        """Return sessions with their status for display.

        Args:
            include_stale: Report stale records instead of reclaiming them

        Returns:
            (session, status) pairs ordered by start time, then id
        """
        if not include_stale:
            return [(session, SessionStatus.LIVE) for session in self.list_live()]

        entries = [
            (session, self.status(session))
            for _, session in self.store.list()
            if session is not None
        ]
        entries.sort(key=lambda entry: (entry[0].started, entry[0].id))
        return entries

    def find_by_pid(self, pids: Iterable[int]) -> Optional[Session]:
        """Return the live session whose pid is the first match in pids.

        pids is usually a process and its ancestors, nearest first.
        """
        by_pid = {session.pid: session for session in self.list_live()}
        for pid in pids:
            if pid in by_pid:
                return by_pid[pid]
        return None

    def find_by_handle(self, handle: str) -> Optional[Session]:
        """Return the live session whose host_handle equals handle."""
        if not handle:
            return None
        for session in self.list_live():
            if session.host_handle == handle:
                return session
        return None

    def _sweep_staging(self, now: float) -> int:
        staging_dir = self.store.staging_dir
        removed = 0
        try:
            entries = list(os.scandir(staging_dir))
        except FileNotFoundError:
            return 0
        for entry in entries:
            if not entry.name.startswith(STAGING_PREFIXES):
                continue
            try:
                if now - entry.stat(follow_symlinks=False).st_mtime < STAGING_MAX_AGE_SECONDS:
                    continue
                path = Path(entry.path)
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(path, ignore_errors=True)
                else:
                    path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove staging leftover {entry.name}: {e}")
        if removed:
            logger.info(f"Removed {removed} staging leftover(s)")
        return removed

    def reclaim_all(self) -> list[str]:
        """Full garbage-collection pass over the storage root.

        Reclaims every stale or corrupt record, prunes orphaned mailboxes
        past the retention window and removes abandoned staging files.

        Returns:
            Ids of reclaimed records
        """
        reclaimed = []
        for session_id, session in self.store.list():
            if session is not None and not self.is_stale(session):
                continue
            try:
                if self.reclaim(session_id):
                    reclaimed.append(session_id)
            except OSError as e:
                logger.warning(f"Could not reclaim '{session_id}': {e}")

        now = time.time()
        if self.mailbox is not None:
            self.mailbox.prune_orphans(
                self.store.ids(), self.mailbox_retention_seconds, now=now
            )
        self._sweep_staging(now)
        return reclaimed
