"""Signal sender used by the supervisor.

Delivery is a request, not a confirmation: terminate() returns as soon
as the kernel accepted the signal and never waits for the target to exit.
"""

from __future__ import annotations

import os
import signal

from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["parse_signal", "terminate"]


def parse_signal(value: str | int) -> signal.Signals:
    """Parse a signal given as "TERM", "SIGTERM", "15" or 15.

    Raises:
        ValueError: If value does not name a signal
    """
    if isinstance(value, bool):
        raise ValueError(f"Unknown signal: {value!r}")
    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError:
            raise ValueError(f"Unknown signal number: {value}") from None

    text = str(value).strip().upper()
    if text.isdigit():
        return parse_signal(int(text))
    if not text.startswith("SIG"):
        text = f"SIG{text}"
    try:
        return signal.Signals[text]
    except KeyError:
        raise ValueError(f"Unknown signal: {value!r}") from None


def terminate(pid: int, sig: signal.Signals = signal.SIGTERM) -> bool:
    """Ask process pid to terminate.

    Args:
        pid: Target process id
        sig: Signal to deliver

    Returns:
        True if the signal was delivered, False if the process no longer exists

    Raises:
        PermissionError: If the process exists but belongs to someone else
        ValueError: If pid is not a positive integer
    """
    if not isinstance(pid, int) or pid <= 0:
        # os.kill(0, ...) and negative pids address whole process groups
        raise ValueError(f"PID must be a positive integer, got: {pid}")

    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        logger.debug(f"PID {pid} already gone, {sig.name} not delivered")
        return False

    logger.debug(f"Sent {sig.name} to PID {pid}")
    return True
