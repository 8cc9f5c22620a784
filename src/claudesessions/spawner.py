"""Spawner: launch an agent and register it under a unique id.

The child process is launched first and registered second, so no record
ever names a pid that was never valid. If every candidate id is held by
a live session the launched context is closed again and SpawnError is
raised.

Ids are derived by a pluggable strategy. The default one turns
~/git/widgets + "fix login" into "widgets-fix-login", falling back to the
current branch when there is no task, and appends -2, -3, ... on
collision.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, Protocol

from .backend import LaunchResult, TerminalBackend
from .errors import DuplicateIdError, SpawnError
from .logging_config import get_logger
from .project import ROOT_ENV_VAR, get_current_branch, get_repo_name
from .registry import Registry
from .store import Session
from .validators import (
    MAX_SESSION_ID_LENGTH,
    ValidationError,
    slugify,
    validate_directory,
    validate_session_id,
)

logger = get_logger(__name__)

__all__ = [
    "IdStrategy",
    "SuffixIdStrategy",
    "Spawner",
    "SESSION_ID_ENV_VAR",
    "SESSION_TASK_ENV_VAR",
]

SESSION_ID_ENV_VAR = "CLAUDE_SESSION_ID"
SESSION_TASK_ENV_VAR = "CLAUDE_SESSION_TASK"

DEFAULT_MAX_ATTEMPTS = 20
FALLBACK_BASE_ID = "session"


class IdStrategy(Protocol):
    """Derives session ids for a spawn."""

    def base_id(self, cwd: Path, task: str, name: Optional[str] = None) -> str:
        """Preferred id for a session spawned in cwd for task."""
        ...

    def candidates(self, base: str, attempts: int) -> Iterator[str]:
        """Ids to try in order, starting with base."""
        ...


class SuffixIdStrategy:
    """<repo>-<task> ids with numeric suffixes on collision."""

    def base_id(self, cwd: Path, task: str, name: Optional[str] = None) -> str:
        if name:
            return validate_session_id(name)

        repo = slugify(get_repo_name(cwd))
        detail = slugify(task) if task.strip() else slugify(get_current_branch(cwd) or "")
        base = "-".join(part for part in (repo, detail) if part)
        base = slugify(base) or FALLBACK_BASE_ID
        return base

    def candidates(self, base: str, attempts: int) -> Iterator[str]:
        for n in range(1, attempts + 1):
            if n == 1:
                yield base
                continue
            suffix = f"-{n}"
            # Keep the suffix when the base is already at the length limit
            stem = base[: MAX_SESSION_ID_LENGTH - len(suffix)].rstrip("-_") or FALLBACK_BASE_ID
            yield f"{stem}{suffix}"


class Spawner:
    """Launch agent processes and register them.

    Args:
        registry: Registry the new sessions are recorded in
        backend: Backend that starts the processes
        command: Agent program and fixed arguments; the task is appended
        id_strategy: Id derivation strategy (default SuffixIdStrategy)
        max_attempts: Candidate ids tried before giving up
    """

    def __init__(
        self,
        registry: Registry,
        backend: TerminalBackend,
        command: Optional[list[str]] = None,
        id_strategy: Optional[IdStrategy] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.registry = registry
        self.backend = backend
        self.command = list(command) if command else ["claude"]
        self.id_strategy = id_strategy or SuffixIdStrategy()
        self.max_attempts = max_attempts

    def _child_env(self, task: str) -> dict[str, str]:
        return {
            ROOT_ENV_VAR: str(self.registry.store.root),
            SESSION_TASK_ENV_VAR: task,
        }

    def spawn(self, cwd: str | Path, task: str = "", name: Optional[str] = None) -> Session:
        """Launch an agent in cwd and register it.

        Args:
            cwd: Existing directory to run the agent in
            task: Free-form task description, passed to the agent
            name: Explicit base id (suffixed on collision like a derived one)

        Returns:
            The registered Session

        Raises:
            SpawnError: If cwd is invalid, the launch fails, or no candidate
                id could be registered
        """
        try:
            directory = validate_directory(cwd)
        except ValidationError as e:
            raise SpawnError(str(e)) from e

        task = task.strip()
        try:
            base = self.id_strategy.base_id(directory, task, name)
        except ValidationError as e:
            raise SpawnError(f"Invalid session name: {e}") from e

        command = [*self.command, task] if task else list(self.command)
        launched = self.backend.launch(
            str(directory), command, env=self._child_env(task), title=base
        )

        try:
            registered = self._register_first_free(base, launched, directory, task)
        except (OSError, ValueError) as e:
            self.backend.close(launched.handle)
            raise SpawnError(f"Could not register session '{base}': {e}") from e
        except BaseException:
            self.backend.close(launched.handle)
            raise

        if registered.id != base:
            self.backend.rename(launched.handle, registered.id)
        logger.info(f"Spawned session '{registered.id}' (pid {registered.pid})")
        return registered

    def _register_first_free(
        self, base: str, launched: LaunchResult, directory: Path, task: str
    ) -> Session:
        attempted: list[str] = []
        last_error: Optional[DuplicateIdError] = None
        for candidate in self.id_strategy.candidates(base, self.max_attempts):
            attempted.append(candidate)
            session = Session(
                id=candidate,
                pid=launched.pid,
                cwd=str(directory),
                task=task,
                host_handle=launched.handle,
                backend=self.backend.name,
            )
            try:
                return self.registry.register(session)
            except DuplicateIdError as e:
                last_error = e

        raise SpawnError(
            f"No free session id after {len(attempted)} attempts starting at '{base}'",
            attempted=attempted,
        ) from last_error
