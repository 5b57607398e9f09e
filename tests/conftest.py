"""Shared test fixtures for shellgate."""

from __future__ import annotations

import asyncio
import os

import pytest

from shellgate.types import AuditLogEntry, PtyRequest, WindowSize

# ---------------------------------------------------------------------------
# Shared helpers (plain functions and classes, importable by test files)
# ---------------------------------------------------------------------------

TEST_PATH = os.environ.get("PATH", "/usr/bin:/bin")


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Bypasses config.toml, .env and environment variables entirely. The shell
    is ``/bin/sh`` and never installed on demand.

    Usage::

        s = make_settings(shell=ShellConfig(path="/nonexistent"))
        s = make_settings(session=SessionConfig(pty_drain_grace=0.2))
    """
    from shellgate.config import (
        AuthConfig,
        LoggingConfig,
        ServerConfig,
        SessionConfig,
        Settings,
        ShellConfig,
    )

    defaults = {
        "server": ServerConfig(),
        "shell": ShellConfig(path="/bin/sh", install_missing=False),
        "auth": AuthConfig(),
        "session": SessionConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


class FakeWriter:
    """Collects everything written; optionally fails like a closed channel."""

    def __init__(self, *, fail: bool = False) -> None:
        self.data = bytearray()
        self.fail = fail

    def write(self, data: bytes) -> None:
        if self.fail:
            raise BrokenPipeError("channel closed")
        self.data += data

    async def drain(self) -> None:
        if self.fail:
            raise BrokenPipeError("channel closed")

    def text(self) -> str:
        return self.data.decode(errors="replace")


class FakeAgentListener:
    def __init__(self, path: str) -> None:
        self._path = path
        self.closed = False

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """In-memory Session. Must be created inside a running event loop.

    ``stdin`` is fed up front and closed unless ``keep_stdin_open`` is set,
    in which case the test drives it with :meth:`send` / :meth:`send_eof`.
    """

    def __init__(
        self,
        raw_command: str = "",
        *,
        environment: list[str] | None = None,
        stdin: bytes = b"",
        keep_stdin_open: bool = False,
        pty: PtyRequest | None = None,
        agent_requested: bool = False,
        agent_error: Exception | None = None,
        agent_path: str = "/tmp/agent.sock",
        user: str = "tester",
        remote_address: str = "127.0.0.1:40000",
        fail_exit: bool = False,
    ) -> None:
        self.user = user
        self.raw_command = raw_command
        self.environment = list(environment or [])
        self.remote_address = remote_address
        self.pty = pty
        self.agent_requested = agent_requested

        self.stdin = asyncio.StreamReader()
        if stdin:
            self.stdin.feed_data(stdin)
        if not keep_stdin_open:
            self.stdin.feed_eof()
        self.stdout = FakeWriter()
        self.stderr = FakeWriter()

        self.exit_calls: list[int] = []
        self.closed = False
        self.agent_listener: FakeAgentListener | None = None
        self._agent_error = agent_error
        self._agent_path = agent_path
        self._fail_exit = fail_exit
        self._resizes: asyncio.Queue[WindowSize | None] = asyncio.Queue()

    # -- test controls --

    def send(self, data: bytes) -> None:
        self.stdin.feed_data(data)

    def send_eof(self) -> None:
        self.stdin.feed_eof()

    def resize(self, width: int, height: int) -> None:
        self._resizes.put_nowait(WindowSize(width=width, height=height))

    # -- Session protocol --

    async def window_changes(self):
        while (size := await self._resizes.get()) is not None:
            yield size

    async def open_agent_listener(self) -> FakeAgentListener:
        if self._agent_error is not None:
            raise self._agent_error
        self.agent_listener = FakeAgentListener(self._agent_path)
        return self.agent_listener

    def exit(self, status: int) -> None:
        self.exit_calls.append(status)
        if self._fail_exit:
            raise ConnectionResetError("peer went away")

    def close(self) -> None:
        self.closed = True
        self._resizes.put_nowait(None)


def stream_lines(entries: list[AuditLogEntry], stream: str) -> list[str]:
    return [e.text for e in entries if e.stream == stream]


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults, so no config.toml
    or .env on the machine running the tests can leak in.
    """
    monkeypatch.setattr("shellgate.config._settings", make_settings())


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def audit_entries() -> list[AuditLogEntry]:
    """Recording audit sink: pass ``audit_entries.append`` where a sink is expected."""
    return []


@pytest.fixture
def test_env() -> dict[str, str]:
    """Minimal inherited environment for spawned children."""
    return {"PATH": TEST_PATH}
