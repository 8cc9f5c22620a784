"""Pytest configuration and shared fixtures for claude-sessions tests.

This module provides:
- An isolated storage root per test (CLAUDE_SESSIONS_DIR points at it)
- A fake liveness oracle driven by a set of "alive" pids
- A fake backend that hands out fresh pids instead of starting processes
- Ready-wired store / registry / mailbox / manager objects
- Temporary config files (YAML, TOML)
"""

import itertools
import threading
from pathlib import Path

import pytest

from claudesessions.backend import LaunchResult, TerminalBackend
from claudesessions.config import ClaudeSessionsConfig, reset_config
from claudesessions.mailbox import Mailbox
from claudesessions.manager import SessionManager
from claudesessions.registry import Registry
from claudesessions.store import Session, SessionStore


class FakeLiveness:
    """Liveness oracle answering from a mutable set of pids."""

    def __init__(self, alive=()):
        self.alive = set(alive)
        self._lock = threading.Lock()

    def is_alive(self, pid):
        with self._lock:
            return pid in self.alive

    def start(self, pid):
        with self._lock:
            self.alive.add(pid)

    def exit(self, pid):
        with self._lock:
            self.alive.discard(pid)


class FakeBackend(TerminalBackend):
    """Backend that records launches and marks each new pid alive."""

    def __init__(self, liveness=None, first_pid=40000, name="tmux"):
        self.liveness = liveness
        self._pids = itertools.count(first_pid)
        self._lock = threading.Lock()
        self._name = name
        self.launches = []
        self.closed = []
        self.renamed = []
        self.attached = []

    @property
    def name(self):
        return self._name

    def launch(self, cwd, command, env=None, title=None):
        with self._lock:
            pid = next(self._pids)
            self.launches.append(
                {"cwd": cwd, "command": list(command), "env": dict(env or {}), "title": title}
            )
        if self.liveness is not None:
            self.liveness.start(pid)
        return LaunchResult(pid=pid, handle=f"%{pid}")

    def close(self, handle):
        self.closed.append(handle)
        if self.liveness is not None and handle.startswith("%"):
            self.liveness.exit(int(handle[1:]))
        return True

    def rename(self, handle, title):
        self.renamed.append((handle, title))
        return True

    def attach(self, handle):
        self.attached.append(handle)
        return True


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.claude-sessions and tmux."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("CLAUDE_SESSIONS_DIR", str(tmp_path / "root"))
    for var in ("CLAUDE_SESSION_ID", "CLAUDE_SESSIONS_BACKEND", "TMUX", "TMUX_PANE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def root(tmp_path):
    """Storage root for the test."""
    path = tmp_path / "root"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def liveness():
    return FakeLiveness()


@pytest.fixture
def store(root):
    return SessionStore(root)


@pytest.fixture
def mailbox(root):
    return Mailbox(root)


@pytest.fixture
def registry(store, liveness, mailbox):
    registry = Registry(store, liveness, mailbox=mailbox)
    mailbox.registry = registry
    return registry


@pytest.fixture
def backend(liveness):
    return FakeBackend(liveness)


@pytest.fixture
def manager(root, liveness, backend):
    """SessionManager on the isolated root with fake liveness and backend."""
    return SessionManager.from_config(
        config=ClaudeSessionsConfig(),
        root=root,
        backend=backend,
        liveness=liveness,
    )


@pytest.fixture
def workdir(tmp_path):
    """A directory named like a repository to spawn sessions in."""
    path = tmp_path / "widgets"
    path.mkdir()
    (path / ".git").mkdir()
    return path


@pytest.fixture
def make_session(liveness):
    """Factory for Session records; alive=True marks the pid as running."""

    def _make(session_id, pid, alive=True, **kwargs):
        if alive:
            liveness.start(pid)
        kwargs.setdefault("cwd", "/tmp")
        return Session(id=session_id, pid=pid, **kwargs)

    return _make


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary directory for config files."""
    config_dir = tmp_path / "configs"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def sample_yaml_config():
    """Provide a sample YAML config string."""
    return """# claude-sessions configuration
spawn:
  command: claude --continue
  backend: process
  max_attempts: 5

mailbox:
  retention_seconds: 3600

supervisor:
  signal: INT
  close_window: false

logging:
  level: DEBUG
"""


@pytest.fixture
def sample_toml_config():
    """Provide a sample TOML config string."""
    return """# claude-sessions configuration

[spawn]
command = "claude"
backend = "tmux"
tmux_session = "agents"

[mailbox]
max_message_bytes = 2048
"""


@pytest.fixture
def write_config(temp_config_dir):
    """Factory fixture to write config files.

    Returns:
        callable: Function that writes config and returns path
    """

    def _write_config(content: str, filename: str = ".claude-sessions.yaml") -> Path:
        config_path = temp_config_dir / filename
        config_path.write_text(content)
        return config_path

    return _write_config
