"""Process backend for claude-sessions.

Launches the agent as a detached OS process in its own session, with no
terminal multiplexer involved. Works anywhere (SSH, CI, Ghostty, iTerm2),
at the cost of having no window to attach to.

Key design decisions:
- The child runs in a new session, so its pid is also its process group id
- stdin is /dev/null; output goes to a per-session log file when requested
- Handles are "pid:<n>"
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Mapping, Optional

from .backend import LaunchResult, TerminalBackend
from .errors import SpawnError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["ProcessBackend", "HANDLE_PREFIX", "parse_handle"]

HANDLE_PREFIX = "pid:"


def parse_handle(handle: str) -> Optional[int]:
    """Extract the pid from a "pid:<n>" handle, or None if malformed."""
    if not handle or not handle.startswith(HANDLE_PREFIX):
        return None
    try:
        pid = int(handle[len(HANDLE_PREFIX):])
    except ValueError:
        return None
    return pid if pid > 0 else None


class ProcessBackend(TerminalBackend):
    """Detached process per session.

    Args:
        log_dir: Directory for per-launch output logs; output is discarded
            when None
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir is not None else None
        # Children started by this instance; polled so they never linger as zombies
        self._children: dict[int, subprocess.Popen] = {}

    @property
    def name(self) -> str:
        return "process"

    def _output_target(self, title: Optional[str]):
        if self.log_dir is None or not title:
            return subprocess.DEVNULL
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return open(self.log_dir / f"{title}.log", "ab")

    def launch(
        self,
        cwd: str,
        command: list[str],
        env: Mapping[str, str] | None = None,
        title: str | None = None,
    ) -> LaunchResult:
        """Start command detached from the calling terminal.

        Raises:
            SpawnError: If the executable is missing or cannot be started
        """
        if not command:
            raise SpawnError("No command to launch")

        child_env = {**os.environ, **(env or {})}
        popen_kwargs: dict = {}
        if sys.platform == "win32":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True

        output = self._output_target(title)
        try:
            proc = subprocess.Popen(
                command,
                cwd=cwd,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                **popen_kwargs,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(f"Cannot start {command[0]!r}: {e}") from e
        except OSError as e:
            raise SpawnError(f"Launch failed: {e}") from e
        finally:
            if output is not subprocess.DEVNULL:
                output.close()

        self._children[proc.pid] = proc
        logger.debug(f"Launched detached pid {proc.pid}: {command[0]}")
        return LaunchResult(pid=proc.pid, handle=f"{HANDLE_PREFIX}{proc.pid}")

    def close(self, handle: str) -> bool:
        """Terminate the process group started for handle."""
        pid = parse_handle(handle)
        if pid is None:
            logger.debug(f"Not a process handle: {handle!r}")
            return False

        try:
            if sys.platform == "win32":
                os.kill(pid, signal.SIGTERM)
            else:
                os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except PermissionError as e:
            logger.warning(f"Cannot close {handle}: {e}")
            return False
        finally:
            proc = self._children.pop(pid, None)
            if proc is not None:
                proc.poll()
        return True
