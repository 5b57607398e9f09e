"""Data models shared by the session execution engine."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Literal, Protocol, TypeAlias, runtime_checkable

StreamName: TypeAlias = Literal["stdin", "stdout", "stderr"]
ExitKind: TypeAlias = Literal["exited", "signaled", "start_failed"]


# ---------------------------------------------------------------------------
# Byte channels
# ---------------------------------------------------------------------------


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteWriter(Protocol):
    def write(self, data: bytes) -> object: ...

    async def drain(self) -> None: ...


# ---------------------------------------------------------------------------
# Session (owned by the transport, consumed by the dispatcher)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PtyRequest:
    term: str  # e.g. "xterm-256color"; empty when the client sent none
    width: int  # columns
    height: int  # rows


@dataclass(frozen=True)
class WindowSize:
    width: int
    height: int


@runtime_checkable
class AgentListener(Protocol):
    """A forwarded credential-agent socket the child can reach via SSH_AUTH_SOCK."""

    @property
    def path(self) -> str: ...

    def close(self) -> None: ...


@runtime_checkable
class Session(Protocol):
    """One authenticated inbound session, as seen by the dispatcher.

    ``raw_command`` is empty for an interactive shell. ``environment`` holds
    ``KEY=VALUE`` strings in the order the client sent them. ``stdin`` is the
    client's input, ``stdout``/``stderr`` go back to the client.
    """

    user: str
    raw_command: str
    environment: list[str]
    remote_address: str
    stdin: ByteReader
    stdout: ByteWriter
    stderr: ByteWriter
    pty: PtyRequest | None
    agent_requested: bool

    def window_changes(self) -> AsyncIterator[WindowSize]: ...

    async def open_agent_listener(self) -> AgentListener: ...

    def exit(self, status: int) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Process description and outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessSpec:
    executable: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def with_env(self, **extra: str) -> ProcessSpec:
        """Return a copy with ``extra`` merged over the environment."""
        return replace(self, env={**self.env, **extra})


@dataclass(frozen=True)
class ExitOutcome:
    """How a session's child process ended.

    ``status`` is the value reported to the client: the exit code for a
    clean exit, 1 for a signal or a process that never started.
    """

    kind: ExitKind
    code: int = 0
    signal: int | None = None
    error: BaseException | None = None

    @classmethod
    def exited(cls, code: int, error: BaseException | None = None) -> ExitOutcome:
        return cls(kind="exited", code=code, error=error)

    @classmethod
    def signaled(cls, signal: int) -> ExitOutcome:
        return cls(kind="signaled", code=1, signal=signal)

    @classmethod
    def start_failed(cls, error: BaseException) -> ExitOutcome:
        return cls(kind="start_failed", code=1, error=error)

    @property
    def status(self) -> int:
        return self.code


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogEntry:
    session_id: str
    stream: StreamName
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


AuditSink: TypeAlias = Callable[[AuditLogEntry], None]
