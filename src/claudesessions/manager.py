"""High-level facade wiring the claude-sessions components together.

SessionManager builds the store, liveness oracle, registry, mailbox,
spawner and supervisor from configuration and exposes the operations
the command line offers.

Usage:
    manager = SessionManager.from_config()
    session = manager.spawn("~/git/widgets", "fix login")   # widgets-fix-login
    manager.send(session.id, "operator", "tests are green on main")
"""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Optional

from .backend import TerminalBackend, detect_backend, get_backend
from .config import ClaudeSessionsConfig, get_config
from .errors import NotFoundError, SpawnError
from .liveness import LivenessOracle, ancestor_pids
from .logging_config import get_logger
from .mailbox import Mailbox, Message
from .project import find_named_repo, get_sessions_root
from .registry import Registry, SessionStatus
from .signals import parse_signal
from .spawner import SESSION_ID_ENV_VAR, IdStrategy, Spawner
from .store import Session, SessionStore
from .supervisor import Supervisor
from .validators import ValidationError, validate_session_id

logger = get_logger(__name__)

__all__ = ["SessionManager"]


class SessionManager:
    """Facade over registry, mailbox, spawner and supervisor.

    Components are public attributes so callers can reach the lower-level
    API directly.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: Registry,
        mailbox: Mailbox,
        spawner: Spawner,
        supervisor: Supervisor,
        repos_dir: Optional[Path] = None,
    ):
        self.store = store
        self.registry = registry
        self.mailbox = mailbox
        self.spawner = spawner
        self.supervisor = supervisor
        self.repos_dir = Path(repos_dir) if repos_dir else Path.home() / "git"

    @property
    def root(self) -> Path:
        return self.store.root

    @classmethod
    def from_config(
        cls,
        config: Optional[ClaudeSessionsConfig] = None,
        root: Optional[Path] = None,
        backend: Optional[TerminalBackend] = None,
        liveness=None,
        id_strategy: Optional[IdStrategy] = None,
    ) -> "SessionManager":
        """Build a manager from configuration.

        Args:
            config: Configuration (default: get_config())
            root: Storage root override
            backend: Launcher for new sessions (default: detect_backend())
            liveness: Liveness oracle (default: LivenessOracle())
            id_strategy: Session id strategy (default: SuffixIdStrategy)
        """
        config = config or get_config()
        root = get_sessions_root(root, config=config)

        store = SessionStore(root)
        mailbox = Mailbox(root, max_message_bytes=config.mailbox.max_message_bytes)
        registry = Registry(
            store,
            liveness or LivenessOracle(),
            mailbox=mailbox,
            mailbox_retention_seconds=config.mailbox.retention_seconds,
        )
        mailbox.registry = registry

        if backend is None:
            backend = detect_backend(config.spawn.backend, tmux_session=config.spawn.tmux_session)

        spawner = Spawner(
            registry,
            backend,
            command=shlex.split(config.spawn.command),
            id_strategy=id_strategy,
            max_attempts=config.spawn.max_attempts,
        )
        supervisor = Supervisor(
            registry,
            backends=cls._backends_for(backend, config),
            sig=parse_signal(config.supervisor.signal),
            close_window=config.supervisor.close_window,
        )
        repos_dir = Path(config.spawn.repos_dir).expanduser()
        return cls(store, registry, mailbox, spawner, supervisor, repos_dir=repos_dir)

    @staticmethod
    def _backends_for(
        launcher: TerminalBackend, config: ClaudeSessionsConfig
    ) -> dict[str, TerminalBackend]:
        # Records may come from either launcher; close each with its own
        backends = {launcher.name: launcher}
        for name in ("tmux", "process"):
            if name not in backends:
                kwargs = {"session_name": config.spawn.tmux_session} if name == "tmux" else {}
                backends[name] = get_backend(name, **kwargs)
        return backends

    # Sessions

    def list(self, include_stale: bool = False) -> list[tuple[Session, SessionStatus]]:
        return self.registry.list(include_stale=include_stale)

    def list_live(self) -> list[Session]:
        return self.registry.list_live()

    def spawn(self, cwd: str | Path, task: str = "", name: Optional[str] = None) -> Session:
        return self.spawner.spawn(cwd, task, name=name)

    def spawn_repo(self, repo: str, task: str = "", name: Optional[str] = None) -> Session:
        """Spawn a session in the repository called repo under repos_dir.

        Raises:
            SpawnError: If there is no such repository
        """
        path = find_named_repo(repo, self.repos_dir)
        if path is None:
            raise SpawnError(f"No repository named '{repo}' under {self.repos_dir}")
        return self.spawn(path, task, name=name)

    def kill(self, session_id: str) -> Optional[Session]:
        return self.supervisor.kill(session_id)

    def kill_all(self) -> list[str]:
        return self.supervisor.kill_all()

    def cleanup(self) -> list[str]:
        """Reclaim stale records, prune orphaned mailboxes and staging leftovers."""
        return self.registry.reclaim_all()

    def attach(self, session_id: str) -> bool:
        """Bring a live session's window to the foreground.

        Raises:
            NotFoundError: If no live session has that id
        """
        session = self.registry.get_live(session_id)
        if session is None:
            raise NotFoundError(session_id)
        backend = self.supervisor.backends.get(session.backend)
        if backend is None:
            return False
        return backend.attach(session.host_handle)

    # Messaging

    def send(self, target_id: str, sender_id: str, body: str) -> Message:
        return self.mailbox.send(target_id, sender_id, body)

    def broadcast(self, sender_id: str, body: str) -> list[str]:
        return self.mailbox.broadcast(sender_id, body)

    def inbox(self, session_id: str) -> list[Message]:
        return self.mailbox.drain(session_id)

    def peek(self, session_id: str) -> list[Message]:
        return self.mailbox.peek(session_id)

    # Identity

    def whoami(self) -> Optional[str]:
        """Id of the session the calling process belongs to, or None.

        Checked in order: CLAUDE_SESSION_ID, the tmux pane (TMUX_PANE)
        against recorded tmux handles, then this process and its ancestors
        against live session pids.
        """
        explicit = os.environ.get(SESSION_ID_ENV_VAR, "").strip()
        if explicit:
            try:
                return validate_session_id(explicit)
            except ValidationError:
                logger.warning(f"Ignoring invalid {SESSION_ID_ENV_VAR}: {explicit[:64]!r}")

        pane = os.environ.get("TMUX_PANE")
        if pane:
            session = self.registry.find_by_handle(pane)
            if session is not None:
                return session.id

        session = self.registry.find_by_pid(ancestor_pids())
        return session.id if session is not None else None
