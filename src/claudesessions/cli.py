"""Command-line interface for claude-sessions.

This module provides the main CLI entry point and command handlers for
all claude-sessions operations, plus the single-purpose console scripts
(claude-ls, claude-spawn, claude-repo, claude-send, ...) that map onto the
subcommands.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import NoReturn, Optional

from claudesessions.config import (
    ClaudeSessionsConfig,
    ConfigValidationError,
    find_config_file,
    get_config,
    load_config,
    reload_config,
)
from claudesessions.errors import (
    NotFoundError,
    PartialFailure,
    SessionError,
)
from claudesessions.logging_config import setup_logging
from claudesessions.manager import SessionManager
from claudesessions.store import Session
from claudesessions.validators import ValidationError

__all__ = ["main"]

# Sender used when a message is sent from outside any session
OPERATOR_ID = "operator"

# Column width for the task column of `ls`
MAX_TASK_DISPLAY = 40


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _report_partial(e: PartialFailure) -> NoReturn:
    for session_id, reason in sorted(e.failures.items()):
        print(f"  {session_id}: {reason}", file=sys.stderr)
    _fail(str(e))


def _get_manager(args: argparse.Namespace) -> SessionManager:
    """Build the SessionManager for this invocation."""
    root = Path(args.root) if getattr(args, "root", None) else None
    return SessionManager.from_config(root=root)


def _resolve_sender(manager: SessionManager, explicit: Optional[str]) -> str:
    return explicit or manager.whoami() or OPERATOR_ID


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def cmd_ls(args: argparse.Namespace) -> None:
    """List sessions."""
    manager = _get_manager(args)
    try:
        entries = manager.list(include_stale=args.all)
    except OSError as e:
        _fail(f"Cannot read sessions: {e}")

    if args.json:
        print(json.dumps(
            [
                {
                    **session.to_dict(),
                    "status": status.value,
                    "pending": manager.mailbox.pending(session.id),
                }
                for session, status in entries
            ],
            indent=2,
        ))
        sys.exit(0)

    if not entries:
        print("No sessions" if args.all else "No live sessions")
        sys.exit(0)

    id_width = max(len("ID"), *(len(session.id) for session, _ in entries))
    print(f"{'ID':<{id_width}}  {'PID':>7}  {'STATUS':<6}  {'MSGS':>4}  {'STARTED':<20}  TASK")
    for session, status in entries:
        print(
            f"{session.id:<{id_width}}  {session.pid:>7}  {status.value:<6}  "
            f"{manager.mailbox.pending(session.id):>4}  "
            f"{session.started[:19]:<20}  {_truncate(session.task, MAX_TASK_DISPLAY)}"
        )
    sys.exit(0)


def _print_spawned(session: Session, as_json: bool) -> NoReturn:
    if as_json:
        print(json.dumps(session.to_dict(), indent=2))
    else:
        print(session.id)
    sys.exit(0)


def cmd_spawn(args: argparse.Namespace) -> None:
    """Launch a new session."""
    manager = _get_manager(args)
    task = " ".join(args.task).strip()
    try:
        session = manager.spawn(args.cwd, task, name=args.name)
    except (SessionError, ValidationError) as e:
        _fail(str(e))

    _print_spawned(session, args.json)


def cmd_repo(args: argparse.Namespace) -> None:
    """Launch a new session in a named repository."""
    manager = _get_manager(args)
    task = " ".join(args.task).strip()
    try:
        session = manager.spawn_repo(args.repo, task, name=args.name)
    except (SessionError, ValidationError) as e:
        _fail(str(e))

    _print_spawned(session, args.json)


def cmd_send(args: argparse.Namespace) -> None:
    """Queue a message for one session."""
    manager = _get_manager(args)
    body = " ".join(args.message)
    try:
        sender = _resolve_sender(manager, args.sender)
        manager.send(args.target, sender, body)
    except (SessionError, ValidationError) as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Cannot write message: {e}")

    if manager.registry.get_live(args.target) is None:
        print(f"Note: '{args.target}' is not live; the message waits in its mailbox", file=sys.stderr)
    print(f"Message queued for {args.target}")
    sys.exit(0)


def cmd_broadcast(args: argparse.Namespace) -> None:
    """Send a message to every live session."""
    manager = _get_manager(args)
    body = " ".join(args.message)
    try:
        sender = _resolve_sender(manager, args.sender)
        delivered = manager.broadcast(sender, body)
    except PartialFailure as e:
        print(f"Delivered to {len(e.succeeded)} session(s)")
        _report_partial(e)
    except (SessionError, ValidationError) as e:
        _fail(str(e))

    print(f"Delivered to {len(delivered)} session(s)")
    sys.exit(0)


def cmd_inbox(args: argparse.Namespace) -> None:
    """Show (and by default consume) pending messages."""
    manager = _get_manager(args)
    owner = args.owner or manager.whoami()
    if not owner:
        _fail("Not running inside a session; pass --as <session-id>")

    try:
        messages = manager.peek(owner) if args.peek else manager.inbox(owner)
    except ValidationError as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Cannot read mailbox: {e}")

    if args.json:
        print(json.dumps([message.to_dict() for message in messages], indent=2))
    elif not messages:
        print("No messages")
    else:
        for message in messages:
            print(message.format_for_display())
    sys.exit(0)


def cmd_cleanup(args: argparse.Namespace) -> None:
    """Reclaim stale sessions and leftovers."""
    manager = _get_manager(args)
    try:
        reclaimed = manager.cleanup()
    except OSError as e:
        _fail(f"Cleanup failed: {e}")

    print(f"Reclaimed {len(reclaimed)} stale session(s)")
    for session_id in reclaimed:
        print(f"  {session_id}")
    sys.exit(0)


def cmd_kill(args: argparse.Namespace) -> None:
    """Terminate one session."""
    manager = _get_manager(args)
    try:
        manager.kill(args.session_id)
    except NotFoundError as e:
        _fail(str(e))
    except PermissionError as e:
        _fail(f"Not allowed to signal '{args.session_id}': {e}")
    except (SessionError, ValidationError, OSError) as e:
        _fail(str(e))

    print(f"Killed {args.session_id}")
    sys.exit(0)


def cmd_killall(args: argparse.Namespace) -> None:
    """Terminate every session."""
    manager = _get_manager(args)
    try:
        killed = manager.kill_all()
    except PartialFailure as e:
        print(f"Killed {len(e.succeeded)} session(s)")
        _report_partial(e)

    print(f"Killed {len(killed)} session(s)")
    sys.exit(0)


def cmd_attach(args: argparse.Namespace) -> None:
    """Switch to a session's window."""
    manager = _get_manager(args)
    try:
        attached = manager.attach(args.session_id)
    except (NotFoundError, ValidationError) as e:
        _fail(str(e))

    if not attached:
        _fail(f"Cannot attach to '{args.session_id}' (no window for this session)")
    sys.exit(0)


def cmd_whoami(args: argparse.Namespace) -> None:
    """Print the id of the current session."""
    manager = _get_manager(args)
    session_id = manager.whoami()
    if not session_id:
        print("Not running inside a session", file=sys.stderr)
        sys.exit(1)
    print(session_id)
    sys.exit(0)


def cmd_config_show(args: argparse.Namespace) -> None:
    """Display current configuration."""
    try:
        config = load_config(Path(args.file)) if args.file else get_config()
    except ConfigValidationError as e:
        _fail(f"Error loading config: {e}")

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
        sys.exit(0)

    source = str(config.source) if config.source else "defaults (no config file found)"
    print(f"Configuration source: {source}")
    print()
    for section, values in config.to_dict().items():
        print(f"{section}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
        print()
    sys.exit(0)


def cmd_config_validate(args: argparse.Namespace) -> None:
    """Validate a configuration file."""
    config_path = Path(args.file) if args.file else find_config_file()
    if not config_path:
        print("No config file found to validate", file=sys.stderr)
        sys.exit(1)

    print(f"Validating: {config_path}")
    try:
        load_config(config_path)
    except ConfigValidationError as e:
        print(f"Invalid: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Config file is valid: {config_path}")
    sys.exit(0)


def _common_options(suppress_defaults: bool) -> argparse.ArgumentParser:
    # Subcommands repeat the global options without overwriting values
    # given before the subcommand name
    default = argparse.SUPPRESS if suppress_defaults else None
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--root",
        type=str,
        default=default,
        help="Storage root (default: $CLAUDE_SESSIONS_DIR or ~/.claude-sessions)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=default,
        help="Configuration file (default: search for .claude-sessions.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=default,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: logging.level from config)",
    )
    return parser


def build_parser() -> argparse.ArgumentParser:
    """Build the claude-sessions argument parser."""
    parser = argparse.ArgumentParser(
        prog="claude-sessions",
        description="claude-sessions - coordinate concurrent Claude Code sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[_common_options(suppress_defaults=False)],
    )
    common = [_common_options(suppress_defaults=True)]
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # ls command
    ls_parser = subparsers.add_parser("ls", parents=common, help="List live sessions")
    ls_parser.add_argument(
        "--all",
        action="store_true",
        help="Include stale sessions instead of reclaiming them",
    )
    ls_parser.add_argument("--json", action="store_true", help="Output as JSON")
    ls_parser.set_defaults(func=cmd_ls)

    # spawn command
    spawn_parser = subparsers.add_parser("spawn", parents=common, help="Launch a new session")
    spawn_parser.add_argument(
        "--cwd",
        type=str,
        default=".",
        help="Directory to run the session in (default: current directory)",
    )
    spawn_parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Session id to use instead of <repo>-<task>",
    )
    spawn_parser.add_argument("--json", action="store_true", help="Output as JSON")
    spawn_parser.add_argument("task", nargs="*", help="Task description")
    spawn_parser.set_defaults(func=cmd_spawn)

    # repo command
    repo_parser = subparsers.add_parser(
        "repo", parents=common, help="Launch a new session in a repository under spawn.repos_dir"
    )
    repo_parser.add_argument("repo", type=str, help="Repository directory name, e.g. widgets")
    repo_parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Session id to use instead of <repo>-<task>",
    )
    repo_parser.add_argument("--json", action="store_true", help="Output as JSON")
    repo_parser.add_argument("task", nargs="*", help="Task description")
    repo_parser.set_defaults(func=cmd_repo)

    # send command
    send_parser = subparsers.add_parser("send", parents=common, help="Send a message to a session")
    send_parser.add_argument("target", type=str, help="Target session id")
    send_parser.add_argument("message", nargs="+", help="Message text")
    send_parser.add_argument(
        "--from",
        dest="sender",
        type=str,
        default=None,
        help="Sender id (default: current session, else 'operator')",
    )
    send_parser.set_defaults(func=cmd_send)

    # broadcast command
    broadcast_parser = subparsers.add_parser(
        "broadcast", parents=common, help="Send a message to every live session"
    )
    broadcast_parser.add_argument("message", nargs="+", help="Message text")
    broadcast_parser.add_argument(
        "--from",
        dest="sender",
        type=str,
        default=None,
        help="Sender id (default: current session, else 'operator')",
    )
    broadcast_parser.set_defaults(func=cmd_broadcast)

    # inbox command
    inbox_parser = subparsers.add_parser("inbox", parents=common, help="Read pending messages")
    inbox_parser.add_argument(
        "--peek",
        action="store_true",
        help="Show messages without removing them",
    )
    inbox_parser.add_argument(
        "--as",
        dest="owner",
        type=str,
        default=None,
        help="Read the mailbox of this session (default: current session)",
    )
    inbox_parser.add_argument("--json", action="store_true", help="Output as JSON")
    inbox_parser.set_defaults(func=cmd_inbox)

    # cleanup command
    cleanup_parser = subparsers.add_parser(
        "cleanup", parents=common, help="Reclaim stale sessions and orphaned mailboxes"
    )
    cleanup_parser.set_defaults(func=cmd_cleanup)

    # kill command
    kill_parser = subparsers.add_parser("kill", parents=common, help="Terminate a session")
    kill_parser.add_argument("session_id", type=str, help="Session id")
    kill_parser.set_defaults(func=cmd_kill)

    # killall command
    killall_parser = subparsers.add_parser("killall", parents=common, help="Terminate every session")
    killall_parser.set_defaults(func=cmd_killall)

    # attach command
    attach_parser = subparsers.add_parser(
        "attach", parents=common, help="Switch to a session's tmux window"
    )
    attach_parser.add_argument("session_id", type=str, help="Session id")
    attach_parser.set_defaults(func=cmd_attach)

    # whoami command
    whoami_parser = subparsers.add_parser(
        "whoami", parents=common, help="Print the id of the current session"
    )
    whoami_parser.set_defaults(func=cmd_whoami)

    # config command group
    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config command")

    config_show_parser = config_subparsers.add_parser("show", help="Display current configuration")
    config_show_parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="Path to config file (default: search for .claude-sessions.yaml)",
    )
    config_show_parser.add_argument("--json", action="store_true", help="Output as JSON")
    config_show_parser.set_defaults(func=cmd_config_show)

    config_validate_parser = config_subparsers.add_parser(
        "validate", help="Validate configuration file"
    )
    config_validate_parser.add_argument(
        "file",
        nargs="?",
        default=None,
        help="Path to config file (default: search for .claude-sessions.yaml)",
    )
    config_validate_parser.set_defaults(func=cmd_config_validate)

    return parser


def _configure(args: argparse.Namespace) -> ClaudeSessionsConfig:
    """Load configuration and set up logging for this invocation."""
    try:
        config = reload_config(Path(args.config)) if args.config else get_config()
    except ConfigValidationError as e:
        _fail(f"Invalid configuration: {e}")

    try:
        setup_logging(level=args.log_level or config.logging.level, log_file=config.logging.file)
    except (ValueError, OSError) as e:
        _fail(f"Cannot set up logging: {e}")
    return config


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Main entry point for the claude-sessions CLI.

    Parses command-line arguments and dispatches to appropriate handler.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command or not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    if args.command != "config":
        _configure(args)

    # Execute the command
    args.func(args)
    sys.exit(0)


def _alias(command: str) -> NoReturn:
    main([command, *sys.argv[1:]])


def ls_main() -> NoReturn:
    _alias("ls")


def spawn_main() -> NoReturn:
    _alias("spawn")


def repo_main() -> NoReturn:
    _alias("repo")


def send_main() -> NoReturn:
    _alias("send")


def broadcast_main() -> NoReturn:
    _alias("broadcast")


def inbox_main() -> NoReturn:
    _alias("inbox")


def cleanup_main() -> NoReturn:
    _alias("cleanup")


def kill_main() -> NoReturn:
    _alias("kill")


def killall_main() -> NoReturn:
    _alias("killall")


def attach_main() -> NoReturn:
    _alias("attach")


def whoami_main() -> NoReturn:
    _alias("whoami")


if __name__ == "__main__":
    main()
