"""Tmux backend for claude-sessions.

Each session gets its own tmux window. Inside a tmux client the window
is opened in the current server's current session; elsewhere it goes to
a detached session (default "claude") that is created on first use and
can be attached later. The handle stored in the session record is the
pane id (e.g. "%12"), which tmux accepts as a target for every window
command used here.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from typing import Mapping, Optional

from .backend import LaunchResult, TerminalBackend
from .errors import SpawnError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["TmuxBackend", "DEFAULT_TMUX_SESSION"]

DEFAULT_TMUX_SESSION = "claude"

# Timeout for tmux commands (seconds)
TMUX_TIMEOUT_SECONDS = 5

LAUNCH_FORMAT = "#{pane_id} #{pane_pid}"


class TmuxBackend(TerminalBackend):
    """Tmux window per session.

    Args:
        session_name: Detached tmux session used when not running inside tmux
    """

    def __init__(self, session_name: str = DEFAULT_TMUX_SESSION):
        self.session_name = session_name

    @property
    def name(self) -> str:
        return "tmux"

    @staticmethod
    def _inside_tmux() -> bool:
        return bool(os.environ.get("TMUX"))

    def _run(self, args: list[str]) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                ["tmux", *args],
                capture_output=True,
                text=True,
                timeout=TMUX_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"tmux {args[0]} timed out after {TMUX_TIMEOUT_SECONDS}s")
            return None
        except FileNotFoundError:
            logger.debug("tmux not found on PATH")
            return None

    def _window_args(
        self,
        cwd: str,
        command: list[str],
        env: Mapping[str, str] | None,
        title: str | None,
    ) -> list[str]:
        args = ["-P", "-F", LAUNCH_FORMAT, "-c", cwd]
        if title:
            args += ["-n", title]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        args.append(shlex.join(command))
        return args

    @staticmethod
    def _parse_launch_output(stdout: str) -> LaunchResult:
        parts = stdout.strip().split()
        if len(parts) != 2 or not parts[0].startswith("%"):
            raise SpawnError(f"Unexpected tmux output: {stdout.strip()!r}")
        try:
            pid = int(parts[1])
        except ValueError:
            raise SpawnError(f"Unexpected tmux pane pid: {parts[1]!r}") from None
        return LaunchResult(pid=pid, handle=parts[0])

    def launch(
        self,
        cwd: str,
        command: list[str],
        env: Mapping[str, str] | None = None,
        title: str | None = None,
    ) -> LaunchResult:
        """Open a detached tmux window running command.

        Raises:
            SpawnError: If tmux is missing or refused to create the window
        """
        window_args = self._window_args(cwd, command, env, title)

        if self._inside_tmux():
            result = self._run(["new-window", "-d", *window_args])
        else:
            result = None
            has_session = self._run(["has-session", "-t", f"={self.session_name}"])
            if has_session is not None and has_session.returncode != 0:
                result = self._run(
                    ["new-session", "-d", "-s", self.session_name, *window_args]
                )
                if result is not None and result.returncode != 0:
                    # Lost the race to create the session; add a window instead
                    logger.debug(f"tmux new-session failed: {result.stderr.strip()}")
                    result = None
            if result is None or result.returncode != 0:
                result = self._run(
                    ["new-window", "-d", "-t", f"={self.session_name}:", *window_args]
                )

        if result is None:
            raise SpawnError("tmux is not available")
        if result.returncode != 0:
            raise SpawnError(f"tmux new-window failed: {result.stderr.strip() or result.returncode}")

        launched = self._parse_launch_output(result.stdout)
        logger.debug(f"Launched pid {launched.pid} in tmux pane {launched.handle}")
        return launched

    def close(self, handle: str) -> bool:
        """Kill the window containing pane handle."""
        result = self._run(["kill-window", "-t", handle])
        if result is None or result.returncode != 0:
            logger.debug(f"tmux kill-window {handle} failed")
            return False
        return True

    def rename(self, handle: str, title: str) -> bool:
        result = self._run(["rename-window", "-t", handle, title])
        return result is not None and result.returncode == 0

    def attach(self, handle: str) -> bool:
        """Switch the terminal to the window containing pane handle.

        Inside tmux the current client switches to it; outside tmux this
        attaches the terminal and returns when the user detaches.
        """
        selected = self._run(["select-window", "-t", handle])
        if selected is None or selected.returncode != 0:
            return False

        if self._inside_tmux():
            result = self._run(["switch-client", "-t", handle])
            return result is not None and result.returncode == 0

        try:
            return subprocess.run(["tmux", "attach-session", "-t", handle]).returncode == 0
        except FileNotFoundError:
            return False
