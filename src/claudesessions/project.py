"""Storage-root and repository detection for claude-sessions.

The storage root is shared by every session on the machine, independent
of the directory a command runs in. Priority order:
1. Explicit root parameter (if provided)
2. CLAUDE_SESSIONS_DIR environment variable
3. sessions.root from the configuration file
4. ~/.claude-sessions

Repository helpers feed session id derivation: a session spawned in
~/git/widgets on branch fix-login becomes "widgets-fix-login".
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Optional

from .config import DEFAULT_ROOT_NAME, ClaudeSessionsConfig, get_config
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "ROOT_ENV_VAR",
    "get_sessions_root",
    "find_repo_root",
    "get_repo_name",
    "get_current_branch",
    "find_named_repo",
]

ROOT_ENV_VAR = "CLAUDE_SESSIONS_DIR"

# Git lookups are best effort; never let a wedged git block a spawn
GIT_TIMEOUT_SECONDS = 2


def get_sessions_root(
    root: Optional[Path] = None, config: Optional[ClaudeSessionsConfig] = None
) -> Path:
    """Get the shared storage root.

    Args:
        root: Optional explicit root path
        config: Configuration to read sessions.root from (default: get_config())

    Returns:
        Absolute path of the storage root (not created here)
    """
    if root is not None:
        return Path(root).expanduser().resolve()

    env_root = os.getenv(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).expanduser().resolve()

    configured = (config or get_config()).sessions.root
    if configured:
        return Path(configured).expanduser().resolve()

    return (Path.home() / DEFAULT_ROOT_NAME).resolve()


def find_repo_root(start_path: Optional[Path] = None, max_depth: int = 32) -> Optional[Path]:
    """Find the enclosing git work tree by searching for a .git entry.

    Args:
        start_path: Directory to start searching from (default: cwd)
        max_depth: Maximum number of parent directories to check

    Returns:
        Path to the repository root if found, None otherwise
    """
    current = (start_path or Path.cwd()).resolve()

    for _ in range(max_depth):
        if (current / ".git").exists():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def get_repo_name(path: Path) -> str:
    """Name of the repository containing path, or the directory name."""
    repo_root = find_repo_root(path)
    return (repo_root or Path(path).resolve()).name


def find_named_repo(name: str, repos_dir: str | Path) -> Optional[Path]:
    """Directory of the repository called name directly under repos_dir.

    Args:
        name: Repository directory name, e.g. "widgets"
        repos_dir: Parent directory of the repositories (~ is expanded)

    Returns:
        Absolute path of the repository, or None if name is not a plain
        directory name or there is no such directory
    """
    name = name.strip()
    separators = {sep for sep in (os.sep, os.altsep, "/") if sep}
    if name in ("", ".", "..") or any(sep in name for sep in separators):
        return None

    path = Path(repos_dir).expanduser() / name
    return path.resolve() if path.is_dir() else None


def get_current_branch(path: Path) -> Optional[str]:
    """Current git branch at path.

    Returns:
        Branch name, or None outside a repository, on a detached HEAD, or
        when git is unavailable
    """
    try:
        result = subprocess.run(
            ["git", "-C", str(path), "rev-parse", "--abbrev-ref", "HEAD"],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            env={**os.environ, "LC_ALL": "C"},
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        logger.debug(f"git branch lookup failed in {path}: {e}")
        return None

    if result.returncode != 0:
        return None

    branch = result.stdout.strip()
    if not branch or branch == "HEAD":
        return None
    return branch
