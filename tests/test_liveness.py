"""Tests for the liveness oracle and process ancestry helper."""

import os
import subprocess
import sys
import time
from unittest.mock import patch

import pytest

from claudesessions import liveness as liveness_module
from claudesessions.liveness import LivenessOracle, ancestor_pids


@pytest.fixture
def oracle():
    return LivenessOracle()


class TestIsAlive:
    """Tests for LivenessOracle.is_alive."""

    def test_current_process_is_alive(self, oracle):
        assert oracle.is_alive(os.getpid())

    @pytest.mark.parametrize("pid", [0, -1, -4242, True, False, "123", None, 10**9])
    def test_invalid_pids_are_dead(self, oracle, pid):
        assert oracle.is_alive(pid) is False

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")
    def test_exited_process_is_dead(self, oracle):
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait()
        assert oracle.is_alive(proc.pid) is False

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")
    def test_permission_error_means_alive(self, oracle):
        with patch("claudesessions.liveness.os.kill", side_effect=PermissionError):
            assert oracle.is_alive(12345) is True

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")
    def test_process_lookup_error_means_dead(self, oracle):
        with patch("claudesessions.liveness.os.kill", side_effect=ProcessLookupError):
            assert oracle.is_alive(12345) is False

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")
    def test_other_os_error_means_dead(self, oracle):
        with patch("claudesessions.liveness.os.kill", side_effect=OSError("boom")):
            assert oracle.is_alive(12345) is False

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="/proc is Linux only")
    def test_zombie_is_dead(self, oracle):
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        try:
            # Not reaped yet: the child lingers as a zombie
            deadline = time.monotonic() + 5
            while not liveness_module._is_zombie_linux(proc.pid):
                if time.monotonic() > deadline:
                    pytest.skip("child did not exit in time")
                time.sleep(0.01)
            assert oracle.is_alive(proc.pid) is False
        finally:
            proc.wait()

    def test_zombie_parsing_handles_parens_in_name(self, tmp_path):
        stat = "4242 (weird) name)) Z 1 4242 4242 0 -1"
        with patch("claudesessions.liveness.Path.read_text", return_value=stat):
            assert liveness_module._is_zombie_linux(4242) is True


class TestAncestorPids:
    """Tests for ancestor_pids."""

    def test_starts_with_given_pid(self):
        chain = ancestor_pids()
        assert chain[0] == os.getpid()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")
    def test_includes_parent(self):
        chain = ancestor_pids()
        if len(chain) > 1:
            assert chain[1] == os.getppid()

    def test_stops_on_cycle(self):
        with patch("claudesessions.liveness._parent_pid", side_effect=lambda pid: 10 if pid == 11 else 11):
            assert ancestor_pids(10) == [10, 11]

    def test_respects_max_depth(self):
        with patch("claudesessions.liveness._parent_pid", side_effect=lambda pid: pid + 1):
            assert ancestor_pids(100, max_depth=3) == [100, 101, 102]

    def test_stops_when_parent_unknown(self):
        with patch("claudesessions.liveness._parent_pid", return_value=None):
            assert ancestor_pids(500) == [500]
