"""Server lifecycle — startup validation, serving, signal handling, shutdown.

Startup runs in three phases (see :meth:`ShellgateApp.prepare`):
  1. Bootstrap: the configured shell must be on PATH (installed if allowed)
  2. Port: ``server.port`` or its environment override
  3. Auth: the authorized key set, or None to run unauthenticated

Any failure there is fatal; nothing is listening yet.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Mapping
from dataclasses import dataclass

import asyncssh

from shellgate.auth import AuthorizedKeySet, KeyLoadError, load_authorized_keys
from shellgate.config import ConfigError, Settings, get_settings, resolve_listen_port
from shellgate.dispatcher import SessionDispatcher
from shellgate.host import ShellNotFoundError, assert_shell
from shellgate.logger import logger, set_level
from shellgate.transport import start_server

STARTUP_ERRORS = (ConfigError, KeyLoadError, ShellNotFoundError)

# Force-exit if a graceful shutdown hangs
_SHUTDOWN_WATCHDOG_SECONDS = 10


@dataclass(frozen=True)
class StartupPlan:
    shell_path: str
    port: int
    authorized_keys: AuthorizedKeySet | None


class ShellgateApp:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self._environ = environ
        self._acceptor: asyncssh.SSHAcceptor | None = None
        self._stopped: asyncio.Event | None = None
        self._shutting_down = False

    def prepare(self) -> StartupPlan:
        """Validate the host and load startup state.

        Raises ConfigError, KeyLoadError or ShellNotFoundError.
        """
        s = self.settings
        shell_path = assert_shell(s.shell.path, install_missing=s.shell.install_missing)
        port = resolve_listen_port(s, self._environ)

        keys = load_authorized_keys(s.auth.authorized_keys_path)
        if keys is None:
            logger.warning(
                "running without authentication",
                authorized_keys_path=str(s.auth.authorized_keys_path),
            )
        return StartupPlan(shell_path=shell_path, port=port, authorized_keys=keys)

    def check(self) -> bool:
        """Run the startup validation without serving. Returns True when it passes."""
        try:
            plan = self.prepare()
        except STARTUP_ERRORS as exc:
            logger.error("startup check failed", error=str(exc))
            return False
        logger.info(
            "startup check passed",
            shell=plan.shell_path,
            port=plan.port,
            authentication=plan.authorized_keys is not None,
        )
        return True

    async def run(self) -> None:
        """Serve until a shutdown signal arrives."""
        set_level(self.settings.logging.level)
        plan = self.prepare()

        self._stopped = asyncio.Event()
        dispatcher = SessionDispatcher(self.settings, environ=self._environ)
        self._acceptor = await start_server(
            self.settings, dispatcher, plan.authorized_keys, port=plan.port
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self.shutdown(s.name)),
            )

        logger.info(
            "Starting ssh server",
            host=self.settings.server.host,
            port=self._acceptor.get_port(),
            shell=plan.shell_path,
        )
        await self._stopped.wait()
        logger.info("Server stopped")

    async def shutdown(self, sig_name: str = "") -> None:
        """Stop accepting connections. Second call force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        loop = asyncio.get_running_loop()
        loop.call_later(_SHUTDOWN_WATCHDOG_SECONDS, lambda: os._exit(1))

        if self._acceptor is not None:
            self._acceptor.close()
        if self._stopped is not None:
            self._stopped.set()
