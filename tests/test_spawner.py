"""Unit tests for the spawner and id strategy.

Tests cover:
- Id derivation from repo, task, branch and explicit names
- Collision suffixes and the retry bound
- Launch-then-register ordering and cleanup on exhaustion
- Child environment and command line
- Concurrent spawns of the same id
"""

import threading
from unittest.mock import patch

import pytest

from claudesessions.errors import DuplicateIdError, SpawnError
from claudesessions.spawner import SESSION_TASK_ENV_VAR, Spawner, SuffixIdStrategy


@pytest.fixture
def spawner(registry, backend):
    return Spawner(registry, backend, command=["claude"], max_attempts=5)


class TestSuffixIdStrategy:
    """Tests for SuffixIdStrategy."""

    def test_repo_and_task(self, workdir):
        assert SuffixIdStrategy().base_id(workdir, "Fix the login bug") == "widgets-fix-the-login-bug"

    def test_repo_and_branch_without_task(self, workdir):
        with patch("claudesessions.spawner.get_current_branch", return_value="feature/JIRA-12"):
            assert SuffixIdStrategy().base_id(workdir, "") == "widgets-feature-jira-12"

    def test_repo_only_without_task_or_branch(self, workdir):
        with patch("claudesessions.spawner.get_current_branch", return_value=None):
            assert SuffixIdStrategy().base_id(workdir, "") == "widgets"

    def test_repo_root_found_from_subdirectory(self, workdir):
        sub = workdir / "src" / "pkg"
        sub.mkdir(parents=True)
        assert SuffixIdStrategy().base_id(sub, "x").startswith("widgets-")

    def test_explicit_name_wins(self, workdir):
        assert SuffixIdStrategy().base_id(workdir, "task", name="demo") == "demo"

    def test_long_base_is_truncated(self, workdir):
        base = SuffixIdStrategy().base_id(workdir, "word " * 40)
        assert len(base) <= 64
        assert not base.endswith("-")

    def test_candidates(self):
        assert list(SuffixIdStrategy().candidates("demo", 4)) == ["demo", "demo-2", "demo-3", "demo-4"]

    def test_candidates_stay_within_length_limit(self):
        base = "a" * 64
        candidates = list(SuffixIdStrategy().candidates(base, 12))
        assert candidates[0] == base
        assert all(len(c) <= 64 for c in candidates)
        assert candidates[-1].endswith("-12")
        assert len(set(candidates)) == 12

    def test_candidates_for_stem_of_only_separators(self):
        assert list(SuffixIdStrategy().candidates("_", 3)) == ["_", "session-2", "session-3"]


class TestSpawn:
    """Tests for Spawner.spawn."""

    def test_spawn_registers_launched_pid(self, spawner, backend, registry, workdir):
        session = spawner.spawn(workdir, "fix login")
        assert session.id == "widgets-fix-login"
        assert session.pid == 40000
        assert session.host_handle == "%40000"
        assert session.backend == "tmux"
        assert session.cwd == str(workdir.resolve())
        assert registry.get_live(session.id) == session

    def test_launch_happens_before_registration(self, spawner, backend, registry, workdir):
        order = []
        real_launch = backend.launch
        real_register = registry.register

        def launch(*args, **kwargs):
            order.append("launch")
            return real_launch(*args, **kwargs)

        def register(session):
            order.append("register")
            return real_register(session)

        with patch.object(backend, "launch", side_effect=launch), \
                patch.object(registry, "register", side_effect=register):
            spawner.spawn(workdir, "x")
        assert order == ["launch", "register"]

    def test_command_and_environment(self, spawner, backend, registry, workdir):
        spawner.spawn(workdir, "fix login")
        (launch,) = backend.launches
        assert launch["command"] == ["claude", "fix login"]
        assert launch["cwd"] == str(workdir.resolve())
        assert launch["env"][SESSION_TASK_ENV_VAR] == "fix login"
        assert launch["env"]["CLAUDE_SESSIONS_DIR"] == str(registry.store.root)
        assert launch["title"] == "widgets-fix-login"

    def test_empty_task_is_not_passed(self, spawner, backend, workdir):
        spawner.spawn(workdir, "", name="idle")
        assert backend.launches[0]["command"] == ["claude"]

    def test_collision_gets_suffix_and_window_renamed(self, spawner, backend, workdir):
        first = spawner.spawn(workdir, "", name="demo")
        second = spawner.spawn(workdir, "", name="demo")
        assert (first.id, second.id) == ("demo", "demo-2")
        assert backend.renamed == [(second.host_handle, "demo-2")]

    def test_stale_id_is_reused(self, spawner, liveness, workdir):
        first = spawner.spawn(workdir, "", name="demo")
        liveness.exit(first.pid)
        assert spawner.spawn(workdir, "", name="demo").id == "demo"

    def test_exhaustion_closes_context_and_raises(self, registry, backend, workdir):
        spawner = Spawner(registry, backend, max_attempts=3)
        for _ in range(3):
            spawner.spawn(workdir, "", name="demo")

        with pytest.raises(SpawnError) as exc_info:
            spawner.spawn(workdir, "", name="demo")

        assert exc_info.value.attempted == ["demo", "demo-2", "demo-3"]
        assert isinstance(exc_info.value.__cause__, DuplicateIdError)
        assert backend.closed == ["%40003"]
        assert sorted(registry.store.ids()) == ["demo", "demo-2", "demo-3"]

    def test_missing_directory(self, spawner, backend, tmp_path):
        with pytest.raises(SpawnError):
            spawner.spawn(tmp_path / "missing", "x")
        assert backend.launches == []

    def test_directory_is_a_file(self, spawner, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("")
        with pytest.raises(SpawnError):
            spawner.spawn(path, "x")

    def test_invalid_name(self, spawner, backend, workdir):
        with pytest.raises(SpawnError):
            spawner.spawn(workdir, "x", name="no spaces allowed")
        assert backend.launches == []

    def test_launch_failure_registers_nothing(self, registry, backend, workdir):
        with patch.object(backend, "launch", side_effect=SpawnError("tmux is not available")):
            with pytest.raises(SpawnError):
                Spawner(registry, backend).spawn(workdir, "x")
        assert registry.store.ids() == []

    def test_store_failure_closes_context(self, spawner, backend, registry, workdir):
        with patch.object(registry.store, "create", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(SpawnError, match="No space left") as exc_info:
                spawner.spawn(workdir, "fix login")
        assert isinstance(exc_info.value.__cause__, OSError)
        assert backend.closed == ["%40000"]
        assert registry.store.ids() == []

    def test_unexpected_error_closes_context(self, spawner, backend, registry, workdir):
        with patch.object(registry, "register", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                spawner.spawn(workdir, "fix login")
        assert backend.closed == ["%40000"]

    def test_collision_on_single_underscore_name(self, spawner, backend, workdir):
        first = spawner.spawn(workdir, "", name="_")
        second = spawner.spawn(workdir, "", name="_")
        assert (first.id, second.id) == ("_", "session-2")
        assert backend.closed == []


def test_concurrent_spawns_get_distinct_ids(registry, backend, workdir):
    """Two simultaneous spawns of 'demo' end up as demo and demo-2."""
    spawner = Spawner(registry, backend)
    barrier = threading.Barrier(2)
    results = []
    errors = []
    lock = threading.Lock()

    def spawn():
        barrier.wait()
        try:
            session = spawner.spawn(workdir, "", name="demo")
        except Exception as e:  # surfaced through the assertion below
            errors.append(e)
            return
        with lock:
            results.append(session)

    threads = [threading.Thread(target=spawn) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(s.id for s in results) == ["demo", "demo-2"]
    assert sorted(s.id for s in registry.list_live()) == ["demo", "demo-2"]
