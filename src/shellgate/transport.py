"""SSH transport binding — adapts asyncssh to the session execution engine.

asyncssh owns key exchange, authentication, channel multiplexing and the
SFTP wire format. This module only:
  - turns each exec/shell channel into a :class:`~shellgate.types.Session`
    and hands it to the SessionDispatcher
  - plugs the authorization gate into public-key auth
  - logs the SFTP subsystem's lifecycle and how it ended
  - starts the listener with the configured host key
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncssh

from shellgate.auth import AuthorizedKeySet, authorize
from shellgate.config import Settings
from shellgate.dispatcher import SessionDispatcher
from shellgate.logger import logger
from shellgate.types import ByteWriter, PtyRequest, WindowSize


class AgentForwardingError(Exception):
    """The client asked for agent forwarding but no socket is available."""


def format_peer(peername: Any) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        host, port = peername[0], peername[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(peername or "")


# ---------------------------------------------------------------------------
# Session adapter
# ---------------------------------------------------------------------------


class _ForwardedAgent:
    """Agent socket created by asyncssh when the client requested forwarding.

    The listener belongs to the SSH connection and is torn down with it.
    """

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        pass


class _SessionInput:
    """Client input with out-of-band channel requests peeled off.

    asyncssh delivers terminal resizes, breaks and signals as exceptions
    raised from ``stdin.read``. Resizes go to the session's resize queue;
    the rest are logged and skipped.
    """

    def __init__(
        self,
        stdin: asyncssh.SSHReader[bytes],
        on_resize: Callable[[WindowSize], None],
    ) -> None:
        self._stdin = stdin
        self._on_resize = on_resize

    async def read(self, n: int = -1) -> bytes:
        while True:
            try:
                return await self._stdin.read(n)
            except asyncssh.TerminalSizeChanged as exc:
                self._on_resize(WindowSize(width=exc.width, height=exc.height))
            except (asyncssh.BreakReceived, asyncssh.SignalReceived) as exc:
                logger.debug("ignoring channel request", request=type(exc).__name__)


class SSHProcessSession:
    """A :class:`~shellgate.types.Session` backed by an asyncssh server process."""

    def __init__(self, process: asyncssh.SSHServerProcess[bytes]) -> None:
        self._process = process
        self._resizes: asyncio.Queue[WindowSize | None] = asyncio.Queue()
        chan = process.channel

        self.user: str = process.get_extra_info("username") or ""
        self.raw_command: str = chan.get_command() or ""
        self.environment: list[str] = [f"{k}={v}" for k, v in chan.get_environment().items()]
        self.remote_address: str = format_peer(process.get_extra_info("peername"))
        self.stdin = _SessionInput(process.stdin, self._resizes.put_nowait)
        self.stdout: ByteWriter = process.stdout
        self.stderr: ByteWriter = process.stderr

        term_type = chan.get_terminal_type()
        if term_type is None:
            self.pty: PtyRequest | None = None
        else:
            width, height, _, _ = chan.get_terminal_size()
            self.pty = PtyRequest(term=term_type, width=width, height=height)

        self._agent_path: str | None = chan.get_agent_path()
        self.agent_requested = self._agent_path is not None

    async def window_changes(self) -> AsyncIterator[WindowSize]:
        while (size := await self._resizes.get()) is not None:
            yield size

    async def open_agent_listener(self) -> _ForwardedAgent:
        if not self._agent_path:
            raise AgentForwardingError("no agent socket for this connection")
        return _ForwardedAgent(self._agent_path)

    def exit(self, status: int) -> None:
        self._process.exit(status)

    def close(self) -> None:
        self._resizes.put_nowait(None)
        self._process.close()


def make_process_handler(
    dispatcher: SessionDispatcher,
) -> Callable[[asyncssh.SSHServerProcess[bytes]], Coroutine[Any, Any, None]]:
    async def _handle(process: asyncssh.SSHServerProcess[bytes]) -> None:
        await dispatcher.handle(SSHProcessSession(process))

    return _handle


# ---------------------------------------------------------------------------
# Connection-level callbacks
# ---------------------------------------------------------------------------


@dataclass
class ConnectionStatus:
    """How an SSH connection ended, shared with the subsystems running on it."""

    error: Exception | None = None


class ShellgateSSHServer(asyncssh.SSHServer):
    """Per-connection auth and forwarding policy.

    With no authorized key set installed, authentication is disabled.
    """

    def __init__(
        self,
        authorized_keys: AuthorizedKeySet | None,
        *,
        allow_port_forwarding: bool = True,
    ) -> None:
        self._authorized_keys = authorized_keys
        self._allow_port_forwarding = allow_port_forwarding
        self._remote_address = ""
        self.status = ConnectionStatus()

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._remote_address = format_peer(conn.get_extra_info("peername"))
        conn.set_extra_info(connection_status=self.status)
        logger.debug("connection opened", remote_address=self._remote_address)

    def connection_lost(self, exc: Exception | None) -> None:
        self.status.error = exc
        if exc is not None:
            logger.debug("connection lost", remote_address=self._remote_address, error=str(exc))

    def begin_auth(self, username: str) -> bool:
        return self._authorized_keys is not None

    def public_key_auth_supported(self) -> bool:
        return self._authorized_keys is not None

    def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        if self._authorized_keys is None:
            return True
        return authorize(
            key, self._authorized_keys, remote_address=self._remote_address, user=username
        )

    def connection_requested(
        self, dest_host: str, dest_port: int, orig_host: str, orig_port: int
    ) -> bool:
        if self._allow_port_forwarding:
            logger.info("Accepted forward", host=dest_host, port=dest_port)
        return self._allow_port_forwarding

    def server_requested(self, listen_host: str, listen_port: int) -> bool:
        if self._allow_port_forwarding:
            logger.info("attempt to bind granted", host=listen_host, port=listen_port)
        return self._allow_port_forwarding


# ---------------------------------------------------------------------------
# SFTP subsystem
# ---------------------------------------------------------------------------


class AuditedSFTPServer(asyncssh.SFTPServer):
    """asyncssh's SFTP server with a session audit trail.

    asyncssh reports a client that vanishes mid-session the same way as a
    clean exit, so the outcome is read from the connection status instead:
    the subsystem ended with an error if its connection was lost with one.
    """

    def __init__(self, chan: asyncssh.SSHServerChannel) -> None:
        super().__init__(chan)
        # Captured now: the channel drops its connection once it closes
        self._status: ConnectionStatus = (
            chan.get_extra_info("connection_status") or ConnectionStatus()
        )
        self._start = time.monotonic()
        self._log = logger.bind(
            session_id=str(uuid.uuid4()),
            remote_address=format_peer(chan.get_extra_info("peername")),
            user=chan.get_extra_info("username"),
            subsystem="sftp",
        )
        self._log.info("SFTP session started")

    def exit(self) -> None:
        error = self._status.error
        if error is None:
            self._log.info("sftp client exited session")
        else:
            self._log.error("sftp server completed with error", error=str(error))
        self._log.info("SFTP session closed", duration=f"{time.monotonic() - self._start:.3f}s")
        super().exit()


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


def load_host_key(path: Path | None) -> asyncssh.SSHKey:
    """Read the host key at ``path``, creating it there if missing.

    Without a path an ephemeral key is generated, so clients will see a new
    host key on every restart.
    """
    if path is not None and path.exists():
        return asyncssh.read_private_key(str(path))

    key = asyncssh.generate_private_key("ssh-ed25519")
    if path is None:
        logger.warning("no host key configured, using an ephemeral key")
        return key

    path.parent.mkdir(parents=True, exist_ok=True)
    key.write_private_key(str(path))
    path.chmod(0o600)
    logger.info("generated host key", path=str(path))
    return key


async def start_server(
    settings: Settings,
    dispatcher: SessionDispatcher,
    authorized_keys: AuthorizedKeySet | None,
    *,
    port: int,
    host: str | None = None,
) -> asyncssh.SSHAcceptor:
    host_key = load_host_key(settings.server.host_key_path)
    allow_forwarding = settings.server.allow_port_forwarding

    return await asyncssh.listen(
        host if host is not None else settings.server.host,
        port,
        server_factory=lambda: ShellgateSSHServer(
            authorized_keys, allow_port_forwarding=allow_forwarding
        ),
        process_factory=make_process_handler(dispatcher),
        sftp_factory=AuditedSFTPServer,
        server_host_keys=[host_key],
        encoding=None,
        line_editor=False,
        agent_forwarding=settings.server.agent_forwarding,
    )
