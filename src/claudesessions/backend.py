"""Process launcher abstraction for claude-sessions.

A backend starts an agent process in an isolated execution context and
reports the pid plus an opaque handle for that context:
- TmuxBackend: a new tmux window per session
- ProcessBackend: a detached OS process in its own session (no multiplexer)

Auto-detection picks the right backend based on environment variables and config.
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "TerminalBackend",
    "LaunchResult",
    "BACKEND_ENV_VAR",
    "BACKEND_NAMES",
    "detect_backend",
    "get_backend",
]

BACKEND_ENV_VAR = "CLAUDE_SESSIONS_BACKEND"
BACKEND_NAMES = ("tmux", "process")


@dataclass
class LaunchResult:
    """Outcome of a successful launch.

    Attributes:
        pid: Process id of the launched agent
        handle: Backend-specific context handle (tmux pane id, "pid:<n>")
    """

    pid: int
    handle: str


class TerminalBackend(ABC):
    """Abstract base class for process launcher backends.

    Launching is the only operation that must succeed; the others are best
    effort and report failure by returning False.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the backend name (e.g., 'tmux', 'process')."""
        ...

    @abstractmethod
    def launch(
        self,
        cwd: str,
        command: list[str],
        env: Mapping[str, str] | None = None,
        title: str | None = None,
    ) -> LaunchResult:
        """Start command in a new isolated context.

        Args:
            cwd: Working directory of the new process
            command: Program and arguments
            env: Extra environment variables for the child
            title: Label for the context (window name)

        Returns:
            LaunchResult with the pid and context handle

        Raises:
            SpawnError: If the process could not be started
        """
        ...

    @abstractmethod
    def close(self, handle: str) -> bool:
        """Tear down the context identified by handle.

        Returns:
            True if the context was closed
        """
        ...

    def rename(self, handle: str, title: str) -> bool:
        """Relabel the context. Optional; returns False when unsupported."""
        return False

    def attach(self, handle: str) -> bool:
        """Bring the context to the foreground. Optional; returns False when unsupported."""
        return False


def get_backend(name: str, **kwargs) -> TerminalBackend:
    """Instantiate a backend by name.

    Args:
        name: "tmux" or "process"
        **kwargs: Passed to the backend constructor

    Raises:
        ValueError: If name is not a known backend
    """
    name = name.lower().strip()
    if name == "tmux":
        from .tmux_backend import TmuxBackend

        return TmuxBackend(**kwargs)
    if name == "process":
        from .process_backend import ProcessBackend

        return ProcessBackend()
    raise ValueError(f"Unknown backend '{name[:30]}'. Valid backends: {', '.join(BACKEND_NAMES)}")


def detect_backend(configured: str | None = None, tmux_session: str | None = None) -> TerminalBackend:
    """Auto-detect and instantiate the appropriate backend.

    Detection order:
    1. CLAUDE_SESSIONS_BACKEND env var override ("tmux" or "process")
    2. configured (spawn.backend from the config file) if not "auto"
    3. TMUX env var set -> TmuxBackend
    4. tmux on PATH -> TmuxBackend (windows go to a detached session)
    5. Default -> ProcessBackend

    Args:
        configured: Backend name from configuration, or "auto"
        tmux_session: Session name used by TmuxBackend outside tmux

    Returns:
        Instantiated TerminalBackend implementation.
    """
    tmux_kwargs = {"session_name": tmux_session} if tmux_session else {}

    # 1. Environment variable override
    env_backend = os.environ.get(BACKEND_ENV_VAR, "").lower().strip()
    if env_backend:
        if env_backend in BACKEND_NAMES:
            logger.info(f"Using {env_backend} backend ({BACKEND_ENV_VAR} env var)")
            return get_backend(env_backend, **(tmux_kwargs if env_backend == "tmux" else {}))
        # Truncate to prevent log injection with very long values
        logger.warning(
            f"Unknown {BACKEND_ENV_VAR} value '{env_backend[:30]}', falling back to auto-detection"
        )

    # 2. Config file override
    if configured:
        provider = configured.lower().strip()
        if provider in BACKEND_NAMES:
            logger.info(f"Using {provider} backend (config file)")
            return get_backend(provider, **(tmux_kwargs if provider == "tmux" else {}))
        if provider != "auto":
            logger.warning(
                f"Unknown backend '{provider[:30]}' in config, falling back to auto-detection"
            )

    # 3. Running inside tmux
    if os.environ.get("TMUX"):
        logger.info("Using tmux backend (TMUX env var detected)")
        return get_backend("tmux", **tmux_kwargs)

    # 4. tmux installed
    if shutil.which("tmux"):
        logger.info("Using tmux backend (tmux found on PATH)")
        return get_backend("tmux", **tmux_kwargs)

    # 5. Default: detached process
    logger.info("Using process backend (default - no tmux available)")
    return get_backend("process")
