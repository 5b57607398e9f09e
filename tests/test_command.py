"""Tests for deriving the child process from a session."""

from __future__ import annotations

from types import SimpleNamespace

from shellgate.command import build_process_spec, merge_environment
from shellgate.types import ProcessSpec


def _session(raw_command: str = "", environment: list[str] | None = None):
    return SimpleNamespace(raw_command=raw_command, environment=environment or [])


class TestBuildProcessSpec:
    def test_command_runs_under_shell_dash_c(self):
        spec = build_process_spec(_session("ls -la | wc -l"), "bash", environ={})

        assert spec.argv == ["bash", "-c", "ls -la | wc -l"]

    def test_empty_command_starts_bare_shell(self):
        spec = build_process_spec(_session(""), "bash", environ={})

        assert spec.argv == ["bash"]
        assert spec.args == ()

    def test_command_passed_verbatim(self):
        raw = """echo "a  b" 'c;d' $HOME && exit 3"""

        spec = build_process_spec(_session(raw), "/bin/sh", environ={})

        assert spec.args == ("-c", raw)

    def test_inherits_server_environment(self):
        spec = build_process_spec(_session("env"), "sh", environ={"PATH": "/bin", "HOME": "/root"})

        assert spec.env == {"PATH": "/bin", "HOME": "/root"}

    def test_client_environment_overrides(self):
        session = _session("env", ["HOME=/home/alice", "LANG=C.UTF-8"])

        spec = build_process_spec(session, "sh", environ={"PATH": "/bin", "HOME": "/root"})

        assert spec.env == {"PATH": "/bin", "HOME": "/home/alice", "LANG": "C.UTF-8"}

    def test_does_not_mutate_base(self):
        base = {"A": "1"}

        build_process_spec(_session("true", ["A=2"]), "sh", environ=base)

        assert base == {"A": "1"}


class TestMergeEnvironment:
    def test_later_entries_win(self):
        assert merge_environment({}, ["X=1", "X=2"]) == {"X": "2"}

    def test_value_may_contain_equals(self):
        assert merge_environment({}, ["OPTS=a=b=c"]) == {"OPTS": "a=b=c"}

    def test_empty_value_is_kept(self):
        assert merge_environment({"X": "1"}, ["X="]) == {"X": ""}

    def test_malformed_entries_skipped(self):
        assert merge_environment({}, ["NOEQUALS", "=value", "OK=1"]) == {"OK": "1"}


class TestProcessSpec:
    def test_with_env_returns_copy(self):
        spec = ProcessSpec(executable="sh", env={"A": "1"})

        extended = spec.with_env(SSH_AUTH_SOCK="/tmp/agent")

        assert extended.env == {"A": "1", "SSH_AUTH_SOCK": "/tmp/agent"}
        assert spec.env == {"A": "1"}
