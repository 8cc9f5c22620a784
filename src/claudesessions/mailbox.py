"""Per-session mailboxes for claude-sessions.

This module provides functionality to:
- Queue a message for a session, live or not (send)
- Send one message to every live session (broadcast)
- Drain or peek at a session's pending messages
- Remove mailboxes of reclaimed sessions and prune orphaned ones

Layout: <root>/messages/<session-id>/<time_ns>-<pid>-<rand>.json, one
file per message. A send never appends to an existing file: it stages a
complete message in <root>/.tmp and renames it into the mailbox, so
concurrent senders cannot corrupt each other. File names sort in send
order for any single sending process; across senders the order is only
best effort.
"""

from __future__ import annotations

import json
import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from .errors import InvalidTargetError, PartialFailure
from .logging_config import get_logger
from .store import STAGING_DIR
from .utils import atomic_write, dump_json, format_timestamp, load_json, parse_timestamp, utc_now
from .validators import (
    MAX_MESSAGE_BYTES,
    ValidationError,
    contains_dangerous_unicode,
    validate_message_body,
    validate_session_id,
)

if TYPE_CHECKING:
    from .registry import Registry

logger = get_logger(__name__)

__all__ = [
    "Message",
    "Mailbox",
    "MESSAGES_DIR",
]

MESSAGES_DIR = "messages"
MESSAGE_SUFFIX = ".json"

# Strictly increasing per process so same-sender messages never tie
_clock_lock = threading.Lock()
_last_ns = 0


def _next_sequence_ns() -> int:
    global _last_ns
    with _clock_lock:
        _last_ns = max(time.time_ns(), _last_ns + 1)
        return _last_ns


@dataclass
class Message:
    """A message waiting in (or drained from) a mailbox.

    Attributes:
        sender_id: Session id (or operator name) of the sender
        recipient_id: Session id the message was addressed to
        body: Message text
        timestamp: When the sender wrote it; advisory, never used for ordering
        msg_id: Unique identifier
    """

    sender_id: str
    recipient_id: str
    body: str
    timestamp: datetime = field(default_factory=utc_now)
    msg_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "body": self.body,
            "timestamp": format_timestamp(self.timestamp),
            "msg_id": self.msg_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            sender_id=data["sender_id"],
            recipient_id=data["recipient_id"],
            body=data["body"],
            timestamp=parse_timestamp(data["timestamp"]),
            msg_id=data.get("msg_id") or str(uuid.uuid4()),
        )

    def format_for_display(self) -> str:
        """Format message for terminal display.

        Format: [SENDER][TIMESTAMP]: body
        Example: [widgets-fix-login][2025-11-07 14:30:15]: tests are green
        """
        timestamp_str = self.timestamp.strftime('%Y-%m-%d %H:%M:%S')
        return f"[{self.sender_id}][{timestamp_str}]: {self.body}"


class Mailbox:
    """Filesystem mailboxes shared by every session on the machine.

    Args:
        root: Storage root; messages/ and .tmp/ are created beneath it
        registry: Registry consulted by broadcast() for live sessions
        max_message_bytes: Upper bound on one message body
    """

    def __init__(
        self,
        root: Path,
        registry: Optional["Registry"] = None,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
    ):
        self.root = Path(root)
        self.messages_dir = self.root / MESSAGES_DIR
        self.staging_dir = self.root / STAGING_DIR
        self.registry = registry
        self.max_message_bytes = max_message_bytes
        self.messages_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        """Mailbox directory of session_id (may not exist yet)."""
        return self.messages_dir / validate_session_id(session_id)

    def _entries(self, session_id: str) -> list[Path]:
        box = self.path_for(session_id)
        try:
            names = sorted(
                name
                for name in os.listdir(box)
                if name.endswith(MESSAGE_SUFFIX) and not name.startswith(".")
            )
        except FileNotFoundError:
            return []
        return [box / name for name in names]

    def _read(self, path: Path) -> Optional[Message]:
        try:
            return Message.from_dict(load_json(path))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Dropping unreadable message {path.name}: {e}")
            return None

    def _checked_body(self, body: str, sender_id: str) -> str:
        if isinstance(body, str):
            found, names = contains_dangerous_unicode(body)
            if found:
                logger.warning(f"Removed {', '.join(names)} from message by {sender_id}")
        return validate_message_body(body, max_bytes=self.max_message_bytes)

    def send(self, target_id: str, sender_id: str, body: str) -> Message:
        """Queue a message for target_id.

        The target does not need to be live; the message waits until the
        session drains its mailbox.

        Args:
            target_id: Recipient session id
            sender_id: Sending session id
            body: Message text (sanitized before storage)

        Returns:
            The stored Message

        Raises:
            InvalidTargetError: If target_id is not a valid session id
            ValidationError: If sender_id or body is invalid
        """
        try:
            target_id = validate_session_id(target_id)
        except ValidationError as e:
            raise InvalidTargetError(target_id, str(e)) from e
        sender_id = validate_session_id(sender_id)
        body = self._checked_body(body, sender_id)

        message = Message(sender_id=sender_id, recipient_id=target_id, body=body)
        name = f"{_next_sequence_ns():020d}-{os.getpid()}-{uuid.uuid4().hex[:8]}{MESSAGE_SUFFIX}"
        box = self.path_for(target_id)

        for attempt in range(2):
            box.mkdir(parents=True, exist_ok=True)
            try:
                atomic_write(box / name, dump_json(message.to_dict()), staging_dir=self.staging_dir)
                break
            except FileNotFoundError:
                # Mailbox removed by a concurrent cleanup between mkdir and rename
                if attempt == 1:
                    raise

        logger.debug(f"Queued message {message.msg_id} from {sender_id} to {target_id}")
        return message

    def broadcast(self, sender_id: str, body: str) -> list[str]:
        """Send body to every live session except the sender.

        Returns:
            Ids the message was delivered to

        Raises:
            PartialFailure: If delivery failed for some targets; the others
                still received the message
            ValidationError: If sender_id or body is invalid (nothing sent)
        """
        if self.registry is None:
            raise RuntimeError("broadcast needs a registry to find live sessions")

        sender_id = validate_session_id(sender_id)
        body = self._checked_body(body, sender_id)

        delivered: list[str] = []
        failures: dict[str, str] = {}
        for session in self.registry.list_live():
            if session.id == sender_id:
                continue
            try:
                self.send(session.id, sender_id, body)
                delivered.append(session.id)
            except (OSError, ValueError) as e:
                logger.warning(f"Broadcast to {session.id} failed: {e}")
                failures[session.id] = str(e)

        if failures:
            raise PartialFailure("broadcast", delivered, failures)
        return delivered

    def drain(self, owner_id: str) -> list[Message]:
        """Return and remove every pending message for owner_id.

        Each message is claimed by renaming it out of the mailbox before it
        is read, so two concurrent drains never deliver the same message.
        Messages arriving during the drain are either returned now or left
        for the next drain.

        Returns:
            Messages in mailbox order (per-sender send order)
        """
        messages: list[Message] = []
        for path in self._entries(owner_id):
            claimed = self.staging_dir / f".claim-{uuid.uuid4().hex}-{path.name}"
            try:
                os.rename(path, claimed)
                # Staging age counts from the claim, not from the send
                os.utime(claimed)
            except FileNotFoundError:
                continue
            try:
                message = self._read(claimed)
            finally:
                try:
                    claimed.unlink()
                except FileNotFoundError:
                    pass
            if message is not None:
                messages.append(message)
        return messages

    def peek(self, owner_id: str) -> list[Message]:
        """Return pending messages without removing them."""
        messages = []
        for path in self._entries(owner_id):
            message = self._read(path)
            if message is not None:
                messages.append(message)
        return messages

    def pending(self, owner_id: str) -> int:
        """Number of messages waiting for owner_id."""
        return len(self._entries(owner_id))

    def delete(self, owner_id: str) -> bool:
        """Remove owner_id's mailbox and everything in it.

        Returns:
            False if there was no mailbox
        """
        box = self.path_for(owner_id)
        trash = self.staging_dir / f".trash-{owner_id}-{uuid.uuid4().hex}"
        try:
            os.rename(box, trash)
        except FileNotFoundError:
            return False
        shutil.rmtree(trash, ignore_errors=True)
        logger.debug(f"Deleted mailbox of {owner_id}")
        return True

    def mailbox_ids(self) -> list[str]:
        """Ids that currently have a mailbox directory."""
        ids = []
        try:
            entries = list(self.messages_dir.iterdir())
        except FileNotFoundError:
            return []
        for entry in entries:
            if not entry.is_dir():
                continue
            try:
                ids.append(validate_session_id(entry.name))
            except ValidationError:
                continue
        return sorted(ids)

    def last_activity(self, owner_id: str) -> Optional[float]:
        """Newest modification time in owner_id's mailbox, or None."""
        box = self.path_for(owner_id)
        try:
            newest = box.stat().st_mtime
        except FileNotFoundError:
            return None
        for path in self._entries(owner_id):
            try:
                newest = max(newest, path.stat().st_mtime)
            except FileNotFoundError:
                continue
        return newest

    def prune_orphans(
        self, known_ids: Iterable[str], retention_seconds: int, now: Optional[float] = None
    ) -> list[str]:
        """Delete mailboxes with no session record that have gone quiet.

        Args:
            known_ids: Ids that still have a session record; never pruned
            retention_seconds: Minimum age of the newest message before an
                orphaned mailbox is removed
            now: Current time as a Unix timestamp (default: time.time())

        Returns:
            Ids whose mailbox was removed
        """
        now = time.time() if now is None else now
        known = set(known_ids)
        pruned = []
        for owner_id in self.mailbox_ids():
            if owner_id in known:
                continue
            last = self.last_activity(owner_id)
            if last is None or now - last < retention_seconds:
                continue
            if self.delete(owner_id):
                logger.info(f"Pruned orphaned mailbox of {owner_id}")
                pruned.append(owner_id)
        return pruned
