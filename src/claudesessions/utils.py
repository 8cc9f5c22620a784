"""Common utilities for claude-sessions.

Filesystem helpers shared by the store and the mailbox. Every write to
shared state goes through one of two primitives:

- atomic_write(): temp file + os.replace, for create-or-overwrite
- atomic_create(): temp file + os.link, for create-if-absent

Both stage the content in a caller-supplied directory on the same
filesystem as the destination, so the final rename/link is atomic and a
reader never observes a partially written file.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

__all__ = [
    "atomic_write",
    "atomic_create",
    "load_json",
    "dump_json",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
    "TMP_PREFIX",
]

# Prefix of every staging file; lets cleanup recognise leftovers from crashes
TMP_PREFIX = ".stage-"


def _stage(content: str, staging_dir: Path) -> str:
    """Write content to a fresh temp file and fsync it. Returns its path."""
    staging_dir.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=staging_dir, prefix=TMP_PREFIX, text=True)
    try:
        with os.fdopen(fd, 'w', encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return tmp_path


def atomic_write(filepath: Path, content: str, staging_dir: Path | None = None) -> None:
    """Write content to file atomically using tmp file + rename.

    Args:
        filepath: Path to write to
        content: Content to write
        staging_dir: Directory for the temp file (default: filepath's parent)

    Raises:
        OSError: If write fails
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _stage(content, staging_dir or filepath.parent)
    try:
        os.replace(tmp_path, filepath)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_create(filepath: Path, content: str, staging_dir: Path | None = None) -> bool:
    """Create filepath with content only if it does not already exist.

    The content is staged completely, then hard-linked into place. link(2)
    fails with EEXIST when the destination exists, which makes this an
    atomic create-if-absent that never exposes a partial file.

    Args:
        filepath: Destination path
        content: Content to write
        staging_dir: Directory for the temp file (default: filepath's parent)

    Returns:
        True if the file was created, False if it already existed

    Raises:
        OSError: If staging or linking fails for another reason
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = _stage(content, staging_dir or filepath.parent)
    try:
        os.link(tmp_path, filepath)
        return True
    except FileExistsError:
        return False
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass


def load_json(filepath: Path) -> Any:
    """Load and parse JSON from file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    with open(filepath, encoding="utf-8") as f:
        return json.load(f)


def dump_json(data: Any) -> str:
    """Serialize data the way every persisted artifact is written."""
    return json.dumps(data, indent=2, sort_keys=True)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 string."""
    return dt.isoformat()


def parse_timestamp(ts: str) -> datetime:
    """Parse ISO 8601 timestamp string.

    Naive timestamps are assumed to be UTC.

    Raises:
        ValueError: If timestamp format is invalid
    """
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
