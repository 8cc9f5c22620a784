"""Unit tests for the CLI module.

Tests cover:
- All commands: ls, spawn, repo, send, broadcast, inbox, cleanup, kill, killall,
  attach, whoami, config show / validate
- Output formatting (text and JSON)
- Error handling and exit codes
- Console script aliases
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from claudesessions import cli
from claudesessions.cli import build_parser, main
from claudesessions.errors import PartialFailure


@pytest.fixture(autouse=True)
def cli_manager(manager):
    """Route every command to the fake-backed manager."""
    with patch("claudesessions.cli._get_manager", return_value=manager), \
            patch("claudesessions.supervisor.terminate"), \
            patch("claudesessions.manager.ancestor_pids", return_value=[]):
        yield manager


def run(capsys, *argv):
    """Run main() and return (exit code, stdout, stderr)."""
    with pytest.raises(SystemExit) as exc_info:
        main(list(argv))
    captured = capsys.readouterr()
    return exc_info.value.code, captured.out, captured.err


class TestParser:
    """Tests for argument parsing."""

    def test_global_options_before_and_after_command(self):
        parser = build_parser()
        args = parser.parse_args(["--root", "/a", "ls"])
        assert args.root == "/a"
        args = parser.parse_args(["ls", "--root", "/b"])
        assert args.root == "/b"

    def test_no_command_prints_help(self, capsys):
        code, out, _ = run(capsys)
        assert code == 1
        assert "usage:" in out

    def test_unknown_command(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["frobnicate"])
        assert exc_info.value.code == 2


class TestLs:
    """Tests for the ls command."""

    def test_empty(self, capsys):
        code, out, _ = run(capsys, "ls")
        assert code == 0
        assert "No live sessions" in out

    def test_table(self, capsys, cli_manager, workdir):
        cli_manager.spawn(workdir, "fix login")
        code, out, _ = run(capsys, "ls")
        assert code == 0
        assert "widgets-fix-login" in out
        assert "live" in out
        assert "fix login" in out

    def test_json(self, capsys, cli_manager, workdir):
        session = cli_manager.spawn(workdir, "fix login")
        code, out, _ = run(capsys, "ls", "--json")
        assert code == 0
        data = json.loads(out)
        assert data[0]["id"] == session.id
        assert data[0]["pid"] == session.pid
        assert data[0]["status"] == "live"
        assert data[0]["pending"] == 0

    def test_pending_message_count(self, capsys, cli_manager, workdir):
        session = cli_manager.spawn(workdir, "fix login")
        cli_manager.send(session.id, "operator", "one")
        cli_manager.send(session.id, "operator", "two")
        code, out, _ = run(capsys, "ls", "--json")
        assert json.loads(out)[0]["pending"] == 2
        code, out, _ = run(capsys, "ls")
        assert "MSGS" in out

    def test_stale_hidden_and_reclaimed(self, capsys, cli_manager, liveness, workdir):
        session = cli_manager.spawn(workdir, "fix login")
        liveness.exit(session.pid)
        code, out, _ = run(capsys, "ls")
        assert "No live sessions" in out
        assert cli_manager.store.ids() == []

    def test_all_shows_stale(self, capsys, cli_manager, liveness, workdir):
        session = cli_manager.spawn(workdir, "fix login")
        liveness.exit(session.pid)
        code, out, _ = run(capsys, "ls", "--all")
        assert "stale" in out
        assert cli_manager.store.ids() == [session.id]


class TestSpawn:
    """Tests for the spawn command."""

    def test_prints_id(self, capsys, backend, workdir):
        code, out, _ = run(capsys, "spawn", "--cwd", str(workdir), "fix", "login")
        assert code == 0
        assert out.strip() == "widgets-fix-login"
        assert backend.launches[0]["env"]["CLAUDE_SESSION_TASK"] == "fix login"

    def test_name_and_json(self, capsys, workdir):
        code, out, _ = run(capsys, "spawn", "--cwd", str(workdir), "--name", "demo", "--json")
        assert code == 0
        assert json.loads(out)["id"] == "demo"

    def test_missing_directory(self, capsys, tmp_path):
        code, _, err = run(capsys, "spawn", "--cwd", str(tmp_path / "missing"), "task")
        assert code == 1
        assert err.startswith("Error:")

    def test_invalid_name(self, capsys, workdir):
        code, _, err = run(capsys, "spawn", "--cwd", str(workdir), "--name", "../evil")
        assert code == 1
        assert "Invalid session name" in err


class TestRepo:
    """Tests for the repo command."""

    @pytest.fixture
    def repos(self):
        repos_dir = Path.home() / "git"
        (repos_dir / "widgets" / ".git").mkdir(parents=True)
        return repos_dir

    def test_spawns_in_named_repo(self, capsys, backend, repos):
        code, out, _ = run(capsys, "repo", "widgets", "fix", "login")
        assert code == 0
        assert out.strip() == "widgets-fix-login"
        assert backend.launches[0]["cwd"] == str((repos / "widgets").resolve())

    def test_name_and_json(self, capsys, repos):
        code, out, _ = run(capsys, "repo", "widgets", "--name", "demo", "--json")
        assert code == 0
        assert json.loads(out)["id"] == "demo"

    def test_unknown_repo(self, capsys, backend, repos):
        code, _, err = run(capsys, "repo", "gadgets", "task")
        assert code == 1
        assert "No repository named 'gadgets'" in err
        assert backend.launches == []

    def test_path_is_not_a_repo_name(self, capsys, backend, repos):
        code, _, err = run(capsys, "repo", "../git", "task")
        assert code == 1
        assert backend.launches == []

    def test_alias(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["claude-repo", "widgets", "fix"])
        with patch.object(cli, "main") as mock_main:
            cli.repo_main()
        mock_main.assert_called_once_with(["repo", "widgets", "fix"])


class TestMessaging:
    """Tests for send / broadcast / inbox."""

    def test_send_and_inbox(self, capsys, cli_manager, workdir):
        cli_manager.spawn(workdir, "", name="B")
        code, out, err = run(capsys, "send", "B", "hello", "there", "--from", "A")
        assert code == 0
        assert "Message queued for B" in out
        assert err == ""

        code, out, _ = run(capsys, "inbox", "--as", "B")
        assert code == 0
        assert "[A][" in out
        assert out.rstrip().endswith("hello there")

        code, out, _ = run(capsys, "inbox", "--as", "B")
        assert "No messages" in out

    def test_send_to_absent_session_notes_it(self, capsys):
        code, out, err = run(capsys, "send", "later", "ping")
        assert code == 0
        assert "not live" in err

    def test_send_default_sender_is_operator(self, capsys, cli_manager):
        run(capsys, "send", "B", "ping")
        assert cli_manager.peek("B")[0].sender_id == "operator"

    def test_send_sender_from_environment(self, capsys, cli_manager, monkeypatch):
        monkeypatch.setenv("CLAUDE_SESSION_ID", "A")
        run(capsys, "send", "B", "ping")
        assert cli_manager.peek("B")[0].sender_id == "A"

    def test_send_invalid_target(self, capsys):
        code, _, err = run(capsys, "send", "a/b", "ping")
        assert code == 1
        assert "Invalid target" in err

    def test_send_empty_body(self, capsys):
        code, _, err = run(capsys, "send", "B", "\x00")
        assert code == 1
        assert "Error:" in err

    def test_inbox_peek_and_json(self, capsys, cli_manager):
        cli_manager.send("B", "A", "keep me")
        code, out, _ = run(capsys, "inbox", "--as", "B", "--peek", "--json")
        assert code == 0
        assert json.loads(out)[0]["body"] == "keep me"
        assert len(cli_manager.peek("B")) == 1

    def test_inbox_outside_session(self, capsys):
        code, _, err = run(capsys, "inbox")
        assert code == 1
        assert "--as" in err

    def test_broadcast(self, capsys, cli_manager, workdir):
        for name in ("A", "B", "C"):
            cli_manager.spawn(workdir, "", name=name)
        code, out, _ = run(capsys, "broadcast", "--from", "A", "deploy", "done")
        assert code == 0
        assert "Delivered to 2 session(s)" in out
        assert cli_manager.peek("A") == []

    def test_broadcast_partial_failure(self, capsys, cli_manager):
        error = PartialFailure("broadcast", ["B"], {"C": "disk full"})
        with patch.object(cli_manager, "broadcast", side_effect=error):
            code, out, err = run(capsys, "broadcast", "hi")
        assert code == 1
        assert "Delivered to 1 session(s)" in out
        assert "C: disk full" in err


class TestLifecycle:
    """Tests for cleanup / kill / killall / attach / whoami."""

    def test_cleanup(self, capsys, cli_manager, liveness, workdir):
        session = cli_manager.spawn(workdir, "fix login")
        liveness.exit(session.pid)
        code, out, _ = run(capsys, "cleanup")
        assert code == 0
        assert "Reclaimed 1 stale session(s)" in out
        assert session.id in out

    def test_kill(self, capsys, cli_manager, workdir):
        cli_manager.spawn(workdir, "", name="demo")
        code, out, _ = run(capsys, "kill", "demo")
        assert code == 0
        assert "Killed demo" in out
        assert cli_manager.list_live() == []

    def test_kill_unknown(self, capsys):
        code, _, err = run(capsys, "kill", "ghost")
        assert code == 1
        assert "ghost" in err

    def test_kill_permission_denied(self, capsys, cli_manager, workdir):
        cli_manager.spawn(workdir, "", name="demo")
        with patch("claudesessions.supervisor.terminate", side_effect=PermissionError("EPERM")):
            code, _, err = run(capsys, "kill", "demo")
        assert code == 1
        assert "Not allowed" in err
        assert cli_manager.store.ids() == ["demo"]

    def test_killall(self, capsys, cli_manager, workdir):
        cli_manager.spawn(workdir, "", name="A")
        cli_manager.spawn(workdir, "", name="B")
        code, out, _ = run(capsys, "killall")
        assert code == 0
        assert "Killed 2 session(s)" in out

    def test_attach(self, capsys, cli_manager, backend, workdir):
        session = cli_manager.spawn(workdir, "", name="demo")
        code, _, _ = run(capsys, "attach", "demo")
        assert code == 0
        assert backend.attached == [session.host_handle]

    def test_attach_unknown(self, capsys):
        code, _, err = run(capsys, "attach", "ghost")
        assert code == 1
        assert "ghost" in err

    def test_whoami(self, capsys, monkeypatch):
        monkeypatch.setenv("CLAUDE_SESSION_ID", "demo")
        code, out, _ = run(capsys, "whoami")
        assert code == 0
        assert out.strip() == "demo"

    def test_whoami_outside_session(self, capsys):
        code, _, err = run(capsys, "whoami")
        assert code == 1
        assert "Not running inside a session" in err


class TestConfigCommands:
    """Tests for config show / validate."""

    def test_show_defaults(self, capsys):
        code, out, _ = run(capsys, "config", "show")
        assert code == 0
        assert "defaults (no config file found)" in out
        assert "spawn:" in out

    def test_show_json_from_file(self, capsys, write_config, sample_yaml_config):
        path = write_config(sample_yaml_config)
        code, out, _ = run(capsys, "config", "show", "--file", str(path), "--json")
        assert code == 0
        assert json.loads(out)["spawn"]["backend"] == "process"

    def test_validate_good(self, capsys, write_config, sample_toml_config):
        path = write_config(sample_toml_config, ".claude-sessions.toml")
        code, out, _ = run(capsys, "config", "validate", str(path))
        assert code == 0
        assert "valid" in out

    def test_validate_bad(self, capsys, write_config):
        path = write_config("spawn:\n  backend: screen\n")
        code, _, err = run(capsys, "config", "validate", str(path))
        assert code == 1
        assert "Invalid" in err

    def test_validate_nothing_found(self, capsys):
        code, _, err = run(capsys, "config", "validate")
        assert code == 1
        assert "No config file" in err

    def test_bad_config_option(self, capsys, write_config):
        path = write_config("logging:\n  level: LOUD\n")
        code, _, err = run(capsys, "--config", str(path), "ls")
        assert code == 1
        assert "Invalid configuration" in err


class TestAliases:
    """Tests for the single-purpose console scripts."""

    def test_alias_prepends_command(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["claude-send", "B", "hi"])
        with patch.object(cli, "main") as mock_main:
            cli.send_main()
        mock_main.assert_called_once_with(["send", "B", "hi"])

    def test_ls_alias_runs(self, capsys, monkeypatch):
        monkeypatch.setattr("sys.argv", ["claude-ls", "--json"])
        with pytest.raises(SystemExit) as exc_info:
            cli.ls_main()
        assert exc_info.value.code == 0
        assert json.loads(capsys.readouterr().out) == []
