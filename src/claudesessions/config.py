"""Configuration system for claude-sessions.

This module provides the configuration layer that:
- Defines configuration schema using dataclasses
- Supports loading from YAML and TOML files
- Provides sensible defaults for all settings
- Validates configuration values
- Implements a thread-safe singleton

Configuration files are searched in the following order:
1. Explicit path provided to load_config()
2. .claude-sessions.yaml / .claude-sessions.toml in the current directory
   or any parent directory
3. config.yaml / config.toml in the user directory (~/.claude-sessions)
4. Default values

Example configuration (.claude-sessions.yaml):
    sessions:
      root: ~/.claude-sessions

    spawn:
      command: claude
      backend: auto
      max_attempts: 20
      tmux_session: claude

    mailbox:
      retention_seconds: 604800
      max_message_bytes: 10240

    supervisor:
      signal: TERM
      close_window: true

    logging:
      level: WARNING

Example configuration (.claude-sessions.toml):
    [spawn]
    command = "claude --continue"
    backend = "tmux"

    [mailbox]
    retention_seconds = 86400
"""

from __future__ import annotations

import shlex
import threading
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

# YAML DoS prevention limits
MAX_CONFIG_FILE_SIZE_BYTES = 1 * 1024 * 1024  # 1MB
MAX_YAML_NESTING_DEPTH = 10

CONFIG_FILE_NAMES = (".claude-sessions.yaml", ".claude-sessions.yml", ".claude-sessions.toml")
USER_CONFIG_FILE_NAMES = ("config.yaml", "config.yml", "config.toml")
DEFAULT_ROOT_NAME = ".claude-sessions"

__all__ = [
    "SessionsConfig",
    "SpawnConfig",
    "MailboxConfig",
    "SupervisorConfig",
    "LoggingConfig",
    "ClaudeSessionsConfig",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "find_config_file",
    "ConfigValidationError",
]


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class SessionsConfig:
    """Where shared session state lives.

    Attributes:
        root: Storage root holding sessions/, messages/ and .tmp/
            (None = CLAUDE_SESSIONS_DIR or ~/.claude-sessions)
    """

    root: str | None = None

    def validate(self) -> None:
        if self.root is not None:
            if not isinstance(self.root, str) or not self.root.strip():
                raise ConfigValidationError("sessions.root cannot be empty")
            if "\x00" in self.root:
                raise ConfigValidationError("sessions.root contains null bytes")


@dataclass
class SpawnConfig:
    """Configuration for launching new sessions.

    Attributes:
        command: Agent command line; the task is appended as one argument
        backend: Launcher to use ("auto", "tmux", "process")
        max_attempts: Candidate ids tried before spawn gives up
        tmux_session: Detached tmux session used when not already inside tmux
        repos_dir: Directory holding the repositories `repo <name>` spawns in
    """

    command: str = "claude"
    backend: str = "auto"
    max_attempts: int = 20
    tmux_session: str = "claude"
    repos_dir: str = "~/git"

    def validate(self) -> None:
        """Validate spawn configuration.

        Raises:
            ConfigValidationError: If validation fails
        """
        if not isinstance(self.command, str) or not self.command.strip():
            raise ConfigValidationError("spawn.command cannot be empty")
        try:
            shlex.split(self.command)
        except ValueError as e:
            raise ConfigValidationError(f"spawn.command is not a valid command line: {e}") from e

        valid_backends = ("auto", "tmux", "process")
        if not isinstance(self.backend, str) or self.backend.lower() not in valid_backends:
            raise ConfigValidationError(
                f"spawn.backend must be one of {valid_backends}, got '{self.backend}'"
            )
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ConfigValidationError(f"spawn.max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_attempts > 1000:
            raise ConfigValidationError(
                f"spawn.max_attempts too high (max 1000), got {self.max_attempts}"
            )
        if not isinstance(self.tmux_session, str) or not self.tmux_session.strip():
            raise ConfigValidationError("spawn.tmux_session cannot be empty")
        if any(c in self.tmux_session for c in ":."):
            raise ConfigValidationError(
                f"spawn.tmux_session cannot contain ':' or '.', got '{self.tmux_session}'"
            )
        if not isinstance(self.repos_dir, str) or not self.repos_dir.strip():
            raise ConfigValidationError("spawn.repos_dir cannot be empty")


@dataclass
class MailboxConfig:
    """Configuration for per-session mailboxes.

    Attributes:
        retention_seconds: How long a mailbox without any session record is
            kept after its newest message before cleanup removes it
        max_message_bytes: Maximum size of one message body
    """

    retention_seconds: int = 7 * 24 * 3600
    max_message_bytes: int = 10 * 1024

    def validate(self) -> None:
        if not isinstance(self.retention_seconds, int) or self.retention_seconds < 60:
            raise ConfigValidationError(
                f"mailbox.retention_seconds too low (min 60s), got {self.retention_seconds}"
            )
        if not isinstance(self.max_message_bytes, int) or self.max_message_bytes < 1:
            raise ConfigValidationError(
                f"mailbox.max_message_bytes must be > 0, got {self.max_message_bytes}"
            )
        if self.max_message_bytes > 1024 * 1024:
            raise ConfigValidationError(
                f"mailbox.max_message_bytes too high (max 1MB), got {self.max_message_bytes}"
            )


@dataclass
class SupervisorConfig:
    """Configuration for kill/killall.

    Attributes:
        signal: Signal sent to the agent process (name like "TERM" or a number)
        close_window: Whether to also close the session's tmux window
    """

    signal: str = "TERM"
    close_window: bool = True

    def validate(self) -> None:
        from .signals import parse_signal

        try:
            parse_signal(self.signal)
        except ValueError as e:
            raise ConfigValidationError(f"supervisor.signal: {e}") from e
        if not isinstance(self.close_window, bool):
            raise ConfigValidationError(
                f"supervisor.close_window must be a boolean, got {type(self.close_window).__name__}"
            )


@dataclass
class LoggingConfig:
    """Configuration for the CLI's logging setup.

    Attributes:
        level: Log level name
        file: Optional log file (appended to)
    """

    level: str = "WARNING"
    file: str | None = None

    def validate(self) -> None:
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if not isinstance(self.level, str) or self.level.upper() not in valid_levels:
            raise ConfigValidationError(f"logging.level must be one of {valid_levels}, got '{self.level}'")


@dataclass
class ClaudeSessionsConfig:
    """Complete configuration for claude-sessions.

    Attributes:
        sessions: Storage configuration
        spawn: Spawner configuration
        mailbox: Mailbox configuration
        supervisor: Kill/killall configuration
        logging: Logging configuration
        source: File the configuration was loaded from (None = defaults)
    """

    sessions: SessionsConfig = field(default_factory=SessionsConfig)
    spawn: SpawnConfig = field(default_factory=SpawnConfig)
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Path | None = None

    def validate(self) -> None:
        """Validate all configuration sections.

        Raises:
            ConfigValidationError: If any validation fails
        """
        self.sessions.validate()
        self.spawn.validate()
        self.mailbox.validate()
        self.supervisor.validate()
        self.logging.validate()

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "sessions": asdict(self.sessions),
            "spawn": asdict(self.spawn),
            "mailbox": asdict(self.mailbox),
            "supervisor": asdict(self.supervisor),
            "logging": asdict(self.logging),
        }


def _check_yaml_nesting_depth(
    obj: Any, current_depth: int = 0, max_depth: int = MAX_YAML_NESTING_DEPTH
) -> None:
    """Reject deeply nested YAML structures.

    Raises:
        ConfigValidationError: If nesting depth exceeds max_depth
    """
    if current_depth > max_depth:
        raise ConfigValidationError(f"YAML nesting depth exceeds maximum of {max_depth} levels")

    if isinstance(obj, dict):
        for value in obj.values():
            _check_yaml_nesting_depth(value, current_depth + 1, max_depth)
    elif isinstance(obj, list):
        for item in obj:
            _check_yaml_nesting_depth(item, current_depth + 1, max_depth)


def _user_config_dir() -> Path:
    return Path.home() / DEFAULT_ROOT_NAME


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find a configuration file.

    Searches the start directory and its parents for a project file, then
    falls back to the user configuration directory.

    Args:
        start_path: Starting directory for search (None = current directory)

    Returns:
        Path to configuration file if found, None otherwise
    """
    search_path = (start_path or Path.cwd()).resolve()

    for directory in [search_path] + list(search_path.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate

    user_dir = _user_config_dir()
    for name in USER_CONFIG_FILE_NAMES:
        candidate = user_dir / name
        if candidate.is_file():
            return candidate

    return None


def _check_file_size(path: Path) -> None:
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ConfigValidationError(f"Failed to check file size for {path}: {e}") from e
    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigValidationError(
            f"Configuration file too large: {file_size} bytes "
            f"(max {MAX_CONFIG_FILE_SIZE_BYTES} bytes)"
        )


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from YAML file.

    Raises:
        ConfigValidationError: If YAML parsing fails
    """
    _check_file_size(path)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to load YAML file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Top level of {path} must be a mapping")
    _check_yaml_nesting_depth(data)
    return data


def _load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        ConfigValidationError: If TOML parsing fails
    """
    _check_file_size(path)

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(f"Failed to parse TOML file {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to load TOML file {path}: {e}") from e


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigValidationError(f"Section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _dict_to_config(data: dict[str, Any]) -> ClaudeSessionsConfig:
    """Convert dictionary to ClaudeSessionsConfig.

    Unknown keys inside a section are rejected so typos surface early.

    Raises:
        ConfigValidationError: If conversion fails
    """
    sections = {
        "sessions": SessionsConfig,
        "spawn": SpawnConfig,
        "mailbox": MailboxConfig,
        "supervisor": SupervisorConfig,
        "logging": LoggingConfig,
    }
    unknown = set(data) - set(sections)
    if unknown:
        raise ConfigValidationError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")

    built: dict[str, Any] = {}
    for name, cls in sections.items():
        values = _section(data, name)
        try:
            built[name] = cls(**values)
        except TypeError as e:
            raise ConfigValidationError(f"Invalid keys in section '{name}': {e}") from e

    return ClaudeSessionsConfig(**built)


def load_config(config_path: Path | None = None) -> ClaudeSessionsConfig:
    """Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to configuration file

    Returns:
        Loaded and validated configuration

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    config_dict: dict[str, Any] = {}

    if config_path is not None:
        file_to_load: Path | None = Path(config_path)
        if not file_to_load.exists():
            raise ConfigValidationError(f"Configuration file not found: {file_to_load}")
    else:
        file_to_load = find_config_file()

    if file_to_load is not None:
        suffix = file_to_load.suffix.lower()

        if suffix in (".yaml", ".yml"):
            config_dict = _load_yaml_config(file_to_load)
        elif suffix == ".toml":
            config_dict = _load_toml_config(file_to_load)
        else:
            raise ConfigValidationError(
                f"Unsupported configuration file format: {suffix}. "
                "Supported formats: .yaml, .yml, .toml"
            )

    config = _dict_to_config(config_dict)
    config.source = file_to_load
    config.validate()

    return config


# Global configuration singleton
_config_instance: ClaudeSessionsConfig | None = None
_config_lock = threading.Lock()


def get_config() -> ClaudeSessionsConfig:
    """Get singleton configuration instance.

    Lazy-loads configuration on first access. Thread-safe.
    """
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            # Double-check pattern
            if _config_instance is None:
                _config_instance = load_config()

    return _config_instance


def reload_config(config_path: Path | None = None) -> ClaudeSessionsConfig:
    """Force reload configuration from disk.

    Thread-safe. Used by the CLI when --config is given, and by tests.

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    global _config_instance

    with _config_lock:
        _config_instance = load_config(config_path)
        return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config_instance

    with _config_lock:
        _config_instance = None
