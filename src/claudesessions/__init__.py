"""claude-sessions - Coordination layer for concurrent Claude Code sessions.

This package lets independently launched agent processes find and talk to
each other through shared filesystem state only:
- Session registry with automatic reclamation of records whose process died
- Per-session mailboxes with send, broadcast and drain
- Spawning into tmux windows (or detached processes) with unique ids
- Killing sessions and cleaning up their state

There is no daemon, no lock server and no network; every operation is a
short-lived process working on files under ~/.claude-sessions.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "store",
    "registry",
    "mailbox",
    "spawner",
    "supervisor",
    "manager",
    "cli",
]
