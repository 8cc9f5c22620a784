"""Liveness oracle: is a recorded pid still running?

The check is best effort. A pid recycled by the OS for an unrelated
process reads as alive; callers accept that residual risk. The oracle
never raises and never blocks.

Platform Support:
    - Linux: os.kill(pid, 0) plus /proc/<pid>/stat to treat zombies as dead
    - macOS / other POSIX: os.kill(pid, 0)
    - Windows: os.kill(pid, 0) does not test existence there, so OpenProcess is used
"""

from __future__ import annotations

import os
import platform
import subprocess
import sys
from pathlib import Path

from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["LivenessOracle", "ancestor_pids"]

# Conservative upper bound on pid values (2^22, Linux pid_max ceiling)
MAX_PID = 4194304

PS_TIMEOUT_SECONDS = 1


def _is_zombie_linux(pid: int) -> bool:
    """Check the process state letter in /proc/<pid>/stat."""
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return False
    # comm may contain spaces and parens; the state follows the last ')'
    fields = stat.rsplit(")", 1)[-1].split()
    return bool(fields) and fields[0] in ("Z", "X")


def _is_alive_windows(pid: int) -> bool:
    import ctypes

    PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
    STILL_ACTIVE = 259
    kernel32 = ctypes.windll.kernel32
    handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        return False
    try:
        exit_code = ctypes.c_ulong()
        if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
            return False
        return exit_code.value == STILL_ACTIVE
    finally:
        kernel32.CloseHandle(handle)


class LivenessOracle:
    """Answers whether a pid identifies a running process.

    Stateless; one instance can be shared by every component. Tests
    substitute their own object exposing is_alive(pid).
    """

    def __init__(self) -> None:
        self._system = platform.system()

    def is_alive(self, pid: int) -> bool:
        """Return True if pid currently identifies a running process.

        Returns False, never raises, for invalid pids, exited processes
        and zombies awaiting reaping.
        """
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0 or pid > MAX_PID:
            return False

        try:
            if sys.platform == "win32":
                return _is_alive_windows(pid)
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by another user
            return True
        except OSError as e:
            logger.debug(f"Liveness check for PID {pid} failed: {e}")
            return False

        if self._system == "Linux" and _is_zombie_linux(pid):
            return False
        return True


def _parent_pid(pid: int) -> int | None:
    if platform.system() == "Linux":
        try:
            stat = Path(f"/proc/{pid}/stat").read_text()
        except OSError:
            return None
        fields = stat.rsplit(")", 1)[-1].split()
        try:
            return int(fields[2])
        except (IndexError, ValueError):
            return None

    try:
        result = subprocess.run(
            ["ps", "-o", "ppid=", "-p", str(pid)],
            capture_output=True,
            text=True,
            timeout=PS_TIMEOUT_SECONDS,
            env={**os.environ, "LC_ALL": "C"},
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


def ancestor_pids(pid: int | None = None, max_depth: int = 64) -> list[int]:
    """Return pid followed by its ancestors, nearest first.

    Stops at pid 1, on lookup failure, or after max_depth steps.
    """
    current = os.getpid() if pid is None else pid
    chain: list[int] = []
    while current and current > 1 and len(chain) < max_depth:
        if current in chain:
            break
        chain.append(current)
        parent = _parent_pid(current)
        if parent is None:
            break
        current = parent
    return chain
