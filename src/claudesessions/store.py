"""Session store: one JSON file per session record.

Records live in <root>/sessions/<id>.json. Every write is a
create-or-rename of a uniquely named staging file from <root>/.tmp, so a
reader sees either the old record, the new record, or nothing, never a
partial file. No locks are taken.

The store is pure data: it knows nothing about liveness. The registry
decides which records are stale and uses remove_if() to delete them
without racing a concurrent registration.
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .errors import CorruptRecordError
from .logging_config import get_logger
from .utils import atomic_create, atomic_write, dump_json, format_timestamp, load_json, utc_now
from .validators import ValidationError, validate_session_id

logger = get_logger(__name__)

__all__ = [
    "Session",
    "SessionStore",
    "SESSIONS_DIR",
    "STAGING_DIR",
]

SESSIONS_DIR = "sessions"
STAGING_DIR = ".tmp"
RECORD_SUFFIX = ".json"


@dataclass
class Session:
    """One agent session record.

    Attributes:
        id: Session id, unique among live records
        pid: Process id of the agent at spawn time
        cwd: Absolute working directory the session was spawned in
        task: Free-form description of what the session is doing
        started: ISO 8601 UTC timestamp of record creation
        host_handle: Opaque handle of the execution context (tmux pane id, ...)
        backend: Name of the backend that owns host_handle
    """

    id: str
    pid: int
    cwd: str
    task: str = ""
    started: str = field(default_factory=lambda: format_timestamp(utc_now()))
    host_handle: str = ""
    backend: str = ""

    def to_dict(self) -> dict:
        """Convert session to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Create Session from dictionary, ignoring unknown keys.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object, got {type(data).__name__}")
        pid = data["pid"]
        if not isinstance(pid, int) or isinstance(pid, bool):
            raise ValueError(f"pid must be an integer, got {pid!r}")
        return cls(
            id=str(data["id"]),
            pid=pid,
            cwd=str(data["cwd"]),
            task=str(data.get("task", "")),
            started=str(data["started"]),
            host_handle=str(data.get("host_handle", "")),
            backend=str(data.get("backend", "")),
        )

    def same_incarnation(self, other: Optional["Session"]) -> bool:
        """True if other describes the same spawn (id, pid and start time)."""
        return (
            other is not None
            and other.id == self.id
            and other.pid == self.pid
            and other.started == self.started
        )


class SessionStore:
    """Atomic create/read/update/delete of session records.

    Args:
        root: Storage root; sessions/ and .tmp/ are created beneath it
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.sessions_dir = self.root / SESSIONS_DIR
        self.staging_dir = self.root / STAGING_DIR
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        """Path of the record for session_id.

        Raises:
            ValidationError: If session_id could escape the sessions directory
        """
        return self.sessions_dir / f"{validate_session_id(session_id)}{RECORD_SUFFIX}"

    def _read(self, path: Path) -> Session:
        try:
            return Session.from_dict(load_json(path))
        except json.JSONDecodeError as e:
            raise CorruptRecordError(path, f"invalid JSON: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise CorruptRecordError(path, f"invalid record: {e}") from e
        except UnicodeDecodeError as e:
            raise CorruptRecordError(path, f"not UTF-8: {e}") from e

    def put(self, session: Session) -> None:
        """Create or overwrite the record for session.id."""
        atomic_write(
            self.path_for(session.id), dump_json(session.to_dict()), staging_dir=self.staging_dir
        )

    def create(self, session: Session) -> bool:
        """Create the record only if no record with that id exists.

        Returns:
            True if created, False if a record (live or not) already exists
        """
        return atomic_create(
            self.path_for(session.id), dump_json(session.to_dict()), staging_dir=self.staging_dir
        )

    def get(self, session_id: str) -> Optional[Session]:
        """Read a record.

        Returns:
            The Session, or None if there is no record

        Raises:
            CorruptRecordError: If the record exists but cannot be parsed
        """
        path = self.path_for(session_id)
        try:
            return self._read(path)
        except FileNotFoundError:
            return None

    def delete(self, session_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        try:
            self.path_for(session_id).unlink()
            return True
        except FileNotFoundError:
            return False

    def ids(self) -> list[str]:
        """Ids of all stored records, sorted."""
        ids = []
        for path in self.sessions_dir.glob(f"*{RECORD_SUFFIX}"):
            session_id = path.name[: -len(RECORD_SUFFIX)]
            try:
                ids.append(validate_session_id(session_id))
            except ValidationError:
                logger.warning(f"Ignoring foreign file in session store: {path.name}")
        return sorted(ids)

    def list(self) -> list[tuple[str, Optional[Session]]]:
        """All records as (id, session) pairs; session is None when corrupt.

        Records deleted between the directory scan and the read are skipped.
        """
        records: list[tuple[str, Optional[Session]]] = []
        for session_id in self.ids():
            try:
                session = self.get(session_id)
            except CorruptRecordError as e:
                logger.debug(str(e))
                records.append((session_id, None))
                continue
            if session is not None:
                records.append((session_id, session))
        return records

    def remove_if(
        self, session_id: str, predicate: Callable[[Optional[Session]], bool]
    ) -> bool:
        """Compare-and-remove a record.

        The predicate is first checked against the record in place, and a
        record that clearly fails it is never moved. Otherwise the record is
        renamed to a private tombstone (an atomic step that only one caller
        can win), re-read, and deleted only if predicate(record) still
        holds; record is None when the file is corrupt. A record that no
        longer qualifies is linked back into place. This keeps a reclaimer
        that judged an old record stale from deleting a fresh record that
        another process registered under the same id in the meantime.

        Returns:
            True if this call removed the record
        """
        path = self.path_for(session_id)
        try:
            before: Optional[Session] = self._read(path)
        except FileNotFoundError:
            return False
        except CorruptRecordError:
            before = None
        if not predicate(before):
            return False

        tombstone = self.staging_dir / f".reclaim-{session_id}-{uuid.uuid4().hex}"
        try:
            os.rename(path, tombstone)
        except FileNotFoundError:
            return False

        try:
            os.utime(tombstone)
            try:
                current: Optional[Session] = self._read(tombstone)
            except CorruptRecordError:
                current = None

            if predicate(current):
                return True

            try:
                os.link(tombstone, path)
            except FileExistsError:
                # A new record took the id while ours was set aside
                logger.warning(
                    f"Session '{session_id}' was re-registered during reclamation; "
                    f"record for PID {current.pid if current else '?'} dropped"
                )
            return False
        finally:
            try:
                tombstone.unlink()
            except FileNotFoundError:
                pass
