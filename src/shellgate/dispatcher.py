"""Per-session control flow.

For each inbound session the dispatcher builds the child process, wires up
agent forwarding when asked, picks the PTY or pipe bridge, and reports the
exit status. Two guarantees hold on every path, including failures: the
status is reported exactly once, and the session is closed.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping

import structlog

from shellgate.audit import AuditTrail, log_audit_entry
from shellgate.bridge import run_pipe_bridge, run_pty_bridge
from shellgate.command import build_process_spec
from shellgate.config import Settings
from shellgate.exit_status import describe_start_failure
from shellgate.logger import logger
from shellgate.types import AgentListener, AuditSink, ExitOutcome, Session

FAILURE_STATUS = 1
INTERNAL_ERROR_MESSAGE = "internal error"


class SessionDispatcher:
    """Runs sessions against one server's settings.

    Holds no per-session state, so a single instance serves every session
    concurrently.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        audit_sink: AuditSink = log_audit_entry,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings
        self._audit_sink = audit_sink
        self._environ = environ

    async def handle(self, session: Session) -> ExitOutcome | None:
        """Run ``session`` to completion. Returns the outcome when a child ran."""
        session_id = str(uuid.uuid4())
        start = time.monotonic()
        log = logger.bind(
            session_id=session_id,
            remote_address=session.remote_address,
            user=session.user,
        )
        log.info("SSH session started", command=session.raw_command)

        listener: AgentListener | None = None
        try:
            spec = build_process_spec(session, self._settings.shell.path, self._environ)

            if session.agent_requested:
                log.info("agent requested")
                try:
                    listener = await session.open_agent_listener()
                except Exception:
                    log.exception("failed to start agent")
                    await _send_error(session, INTERNAL_ERROR_MESSAGE, log)
                    _report(session, FAILURE_STATUS, log)
                    return None
                spec = spec.with_env(SSH_AUTH_SOCK=listener.path)

            trail = AuditTrail(session_id, self._audit_sink)
            chunk_size = self._settings.session.copy_chunk_size
            try:
                if session.pty is not None:
                    log.info("handling PTY session", term=session.pty.term)
                    outcome = await run_pty_bridge(
                        session,
                        spec,
                        trail,
                        drain_grace=self._settings.session.pty_drain_grace,
                        chunk_size=chunk_size,
                        log=log,
                    )
                else:
                    log.info("handling non PTY session")
                    outcome = await run_pipe_bridge(
                        session, spec, trail, chunk_size=chunk_size, log=log
                    )
            except Exception:
                log.exception("session failed")
                await _send_error(session, INTERNAL_ERROR_MESSAGE, log)
                _report(session, FAILURE_STATUS, log)
                return None

            if outcome.kind == "start_failed":
                assert outcome.error is not None
                await _send_error(session, describe_start_failure(outcome.error), log)
            _report(session, outcome.status, log)
            return outcome
        finally:
            if listener is not None:
                listener.close()
            session.close()
            log.info("SSH session closed", duration=f"{time.monotonic() - start:.3f}s")


async def _send_error(session: Session, message: str, log: structlog.stdlib.BoundLogger) -> None:
    try:
        session.stderr.write(f"{message}\n".encode())
        await session.stderr.drain()
    except Exception as exc:
        log.debug("failed to write error back to session", error=str(exc))


def _report(session: Session, status: int, log: structlog.stdlib.BoundLogger) -> None:
    try:
        session.exit(status)
    except Exception as exc:
        log.debug("failed to send exit status", status=status, error=str(exc))
