"""Non-interactive sessions — three pipes between the session and the child.

Both output copies are joined before the process is waited on, so every
byte the child wrote reaches the client before the exit status does. The
input copy is not joined: the child may exit while input is still flowing.
"""

from __future__ import annotations

import asyncio

import structlog

from shellgate.audit import AuditTrail, LoggingWriter
from shellgate.bridge._io import DEFAULT_CHUNK_SIZE, close_writer, copy_stream
from shellgate.exit_status import translate
from shellgate.logger import logger
from shellgate.types import ByteReader, ExitOutcome, ProcessSpec, Session, StreamName


async def _forward_stdin(
    source: ByteReader,
    stdin: asyncio.StreamWriter,
    audited: LoggingWriter,
    log: structlog.stdlib.BoundLogger,
    chunk_size: int,
) -> None:
    try:
        await copy_stream(source, audited, chunk_size=chunk_size)
    except OSError as exc:
        log.debug("failed to write session to stdin", error=str(exc))
    except Exception:
        log.exception("stdin copy failed")
    finally:
        audited.flush()
        # EOF for children that read until end of input
        close_writer(stdin)


async def _forward_output(
    source: asyncio.StreamReader,
    dest: LoggingWriter,
    stream: StreamName,
    log: structlog.stdlib.BoundLogger,
    chunk_size: int,
) -> None:
    try:
        await copy_stream(source, dest, chunk_size=chunk_size)
    except OSError as exc:
        log.debug(f"failed to write {stream} to session", error=str(exc))
    except Exception:
        log.exception(f"{stream} copy failed")
    finally:
        dest.flush()


async def run_pipe_bridge(
    session: Session,
    spec: ProcessSpec,
    trail: AuditTrail,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    log: structlog.stdlib.BoundLogger = logger,
) -> ExitOutcome:
    """Run ``spec`` with piped stdio and stream it to ``session``.

    A child that fails to start yields ``ExitOutcome.start_failed``.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=spec.env,
        )
    except OSError as exc:
        log.warning("couldn't start command", command=spec.argv, error=str(exc))
        return ExitOutcome.start_failed(exc)

    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    stdin_task = asyncio.create_task(
        _forward_stdin(
            session.stdin, proc.stdin, trail.writer(proc.stdin, "stdin"), log, chunk_size
        )
    )
    try:
        await asyncio.gather(
            _forward_output(
                proc.stdout, trail.writer(session.stdout, "stdout"), "stdout", log, chunk_size
            ),
            _forward_output(
                proc.stderr, trail.writer(session.stderr, "stderr"), "stderr", log, chunk_size
            ),
        )
        returncode = await proc.wait()
    finally:
        if not stdin_task.done():
            stdin_task.cancel()
        await asyncio.gather(stdin_task, return_exceptions=True)

    outcome = translate(returncode)
    log.info("command exited", status=outcome.status, kind=outcome.kind)
    return outcome
