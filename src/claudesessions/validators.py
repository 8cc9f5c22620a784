"""Input validation utilities for claude-sessions.

This module provides validation functions for:
- Session IDs (format, length, allowed characters)
- Message bodies (length, sanitization)
- Working directories handed to the spawner

All validation functions raise ValidationError (a ValueError) with a
message suitable for printing straight to the user.
"""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Any

__all__ = [
    "ValidationError",
    "validate_session_id",
    "validate_message_body",
    "validate_directory",
    "sanitize_message_body",
    "slugify",
    "contains_dangerous_unicode",
    "MAX_SESSION_ID_LENGTH",
    "MAX_MESSAGE_BYTES",
]

MAX_SESSION_ID_LENGTH = 64
MAX_MESSAGE_BYTES = 10 * 1024  # 10KB

# Alphanumeric + hyphens + underscores; ids double as file names
SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")

# Bidirectional text override characters (Trojan Source, CVE-2021-42574)
BIDI_OVERRIDE_CHARS = {
    "\u202a",  # LEFT-TO-RIGHT EMBEDDING
    "\u202b",  # RIGHT-TO-LEFT EMBEDDING
    "\u202c",  # POP DIRECTIONAL FORMATTING
    "\u202d",  # LEFT-TO-RIGHT OVERRIDE
    "\u202e",  # RIGHT-TO-LEFT OVERRIDE
    "\u2066",  # LEFT-TO-RIGHT ISOLATE
    "\u2067",  # RIGHT-TO-LEFT ISOLATE
    "\u2068",  # FIRST STRONG ISOLATE
    "\u2069",  # POP DIRECTIONAL ISOLATE
}

# Zero-width characters (can hide content)
ZERO_WIDTH_CHARS = {
    "\u200b",  # ZERO WIDTH SPACE
    "\u200c",  # ZERO WIDTH NON-JOINER
    "\u200d",  # ZERO WIDTH JOINER
    "\u2060",  # WORD JOINER
    "\ufeff",  # ZERO WIDTH NO-BREAK SPACE (BOM)
}

DANGEROUS_UNICODE_CHARS = BIDI_OVERRIDE_CHARS | ZERO_WIDTH_CHARS


class ValidationError(ValueError):
    """Raised when validation fails."""

    pass


def validate_session_id(session_id: Any) -> str:
    """Validate a session ID.

    Session IDs must:
    - Be non-empty strings
    - Contain only alphanumeric characters, hyphens, and underscores
    - Be at most 64 characters long
    - Not start or end with a hyphen

    Args:
        session_id: Value to validate

    Returns:
        The validated session ID, stripped of surrounding whitespace

    Raises:
        ValidationError: If validation fails with specific reason

    Examples:
        >>> validate_session_id("demo-2")
        'demo-2'
        >>> validate_session_id("../etc")
        Traceback (most recent call last):
        ...
        ValidationError: Session ID contains invalid characters. ...
    """
    if not isinstance(session_id, str):
        raise ValidationError(f"Session ID must be a string, got {type(session_id).__name__}")

    session_id = session_id.strip()
    if not session_id:
        raise ValidationError("Session ID cannot be empty")

    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValidationError(
            f"Session ID too long (max {MAX_SESSION_ID_LENGTH} characters, got {len(session_id)})"
        )

    if not SESSION_ID_PATTERN.match(session_id):
        raise ValidationError(
            f"Session ID contains invalid characters. "
            f"Only alphanumeric, hyphens, and underscores allowed: '{session_id}'"
        )

    if session_id.startswith("-") or session_id.endswith("-"):
        raise ValidationError(f"Session ID cannot start or end with a hyphen: '{session_id}'")

    return session_id


def sanitize_message_body(body: str) -> str:
    """Sanitize a message body before it is written to a mailbox.

    Removes null bytes, control characters other than tab/newline,
    bidirectional overrides and zero-width characters. Normalizes line
    endings and trims trailing whitespace per line.

    Examples:
        >>> sanitize_message_body("Hello\\x00World")
        'HelloWorld'
        >>> sanitize_message_body("  a  \\r\\n  b  ")
        'a\\n  b'
    """
    if not isinstance(body, str):
        body = str(body)

    body = body.replace("\x00", "")

    for char in DANGEROUS_UNICODE_CHARS:
        body = body.replace(char, "")

    body = body.replace("\r\n", "\n").replace("\r", "\n")

    body = "".join(
        char for char in body if char in "\t\n" or ord(char) >= 32 and ord(char) != 127
    )

    lines = [line.rstrip() for line in body.split("\n")]
    return "\n".join(lines).strip()


def validate_message_body(body: Any, max_bytes: int = MAX_MESSAGE_BYTES) -> str:
    """Validate and sanitize a message body.

    Args:
        body: Body to validate
        max_bytes: Maximum UTF-8 encoded size after sanitization

    Returns:
        The sanitized body

    Raises:
        ValidationError: If the body is not a string, is empty after
            sanitization, or is too large
    """
    if not isinstance(body, str):
        raise ValidationError(f"Message body must be a string, got {type(body).__name__}")

    body = sanitize_message_body(body)
    if not body:
        raise ValidationError("Message body cannot be empty")

    size = len(body.encode("utf-8"))
    if size > max_bytes:
        raise ValidationError(
            f"Message body too long (max {max_bytes} bytes, got {size} bytes)"
        )

    return body


def validate_directory(path: Any) -> Path:
    """Validate that path names an existing directory.

    Returns:
        The resolved absolute path

    Raises:
        ValidationError: If the path is empty, missing or not a directory
    """
    if path is None or (isinstance(path, str) and not path.strip()):
        raise ValidationError("Directory cannot be empty")
    if isinstance(path, str) and "\x00" in path:
        raise ValidationError("Directory contains null bytes")

    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ValidationError(f"Directory does not exist: {resolved}")
    if not resolved.is_dir():
        raise ValidationError(f"Not a directory: {resolved}")
    return resolved


def slugify(text: str, max_length: int = MAX_SESSION_ID_LENGTH) -> str:
    """Turn arbitrary text into a session-id-safe slug.

    Examples:
        >>> slugify("Fix the Login Bug!")
        'fix-the-login-bug'
        >>> slugify("feature/JIRA-12")
        'feature-jira-12'
    """
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_INVALID.sub("-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def contains_dangerous_unicode(text: str) -> tuple[bool, list[str]]:
    """Check if text contains bidi-override or zero-width characters.

    Returns:
        Tuple of (has_dangerous, list of found character names)
    """
    found = []
    for char in DANGEROUS_UNICODE_CHARS:
        if char in text:
            try:
                name = unicodedata.name(char)
            except ValueError:
                name = f"U+{ord(char):04X}"
            found.append(name)

    return (len(found) > 0, sorted(found))
