"""Interactive sessions — run the child on a pseudo-terminal.

Lifecycle: allocate → attach → stream → drain → exit.

Output draining is bounded: once the child has exited, the output copy gets
``drain_grace`` seconds to finish and is then abandoned. Background
grandchildren can hold the terminal open indefinitely, so an unbounded join
could hang the session forever.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import fcntl
import os
import pty
import struct
import termios
from collections.abc import AsyncIterator

import structlog

from shellgate.audit import AuditTrail, LoggingWriter
from shellgate.bridge._io import DEFAULT_CHUNK_SIZE, FdStreams, copy_stream, open_fd_streams
from shellgate.exit_status import translate
from shellgate.logger import logger
from shellgate.types import ByteReader, ExitOutcome, ProcessSpec, Session, WindowSize

DEFAULT_DRAIN_GRACE = 1.0


class PtyAllocationError(Exception):
    """The host could not provide a pseudo-terminal. Fatal to the session."""


def set_winsize(fd: int, width: int, height: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", height, width, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); fd 0 is already the pty slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


async def _apply_resizes(
    changes: AsyncIterator[WindowSize],
    fd: int,
    log: structlog.stdlib.BoundLogger,
) -> None:
    async for size in changes:
        try:
            set_winsize(fd, size.width, size.height)
        except OSError as exc:
            log.debug("Failed to resize pty", error=str(exc))
            continue
        log.debug("Resized pty", width=size.width, height=size.height)


async def _copy_input(
    source: ByteReader,
    dest: LoggingWriter,
    log: structlog.stdlib.BoundLogger,
    chunk_size: int,
) -> None:
    try:
        await copy_stream(source, dest, chunk_size=chunk_size)
    except OSError as exc:
        log.debug("pty input closed", error=str(exc))
    except Exception:
        log.exception("pty input copy failed")
    finally:
        dest.flush()


async def _copy_output(
    source: asyncio.StreamReader,
    dest: LoggingWriter,
    log: structlog.stdlib.BoundLogger,
    chunk_size: int,
) -> None:
    try:
        await copy_stream(source, dest, chunk_size=chunk_size)
    except OSError as exc:
        # EIO is how Linux reports that the last slave descriptor closed
        if exc.errno != errno.EIO:
            log.debug("pty output closed", error=str(exc))
    except Exception:
        log.exception("pty output copy failed")
    finally:
        dest.flush()


async def run_pty_bridge(
    session: Session,
    spec: ProcessSpec,
    trail: AuditTrail,
    *,
    drain_grace: float = DEFAULT_DRAIN_GRACE,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    log: structlog.stdlib.BoundLogger = logger,
) -> ExitOutcome:
    """Run ``spec`` attached to a new pseudo-terminal and stream it to ``session``.

    Raises PtyAllocationError if no terminal could be allocated. A child that
    fails to start yields ``ExitOutcome.start_failed`` without any streaming.
    """
    request = session.pty
    try:
        master, slave = pty.openpty()
    except OSError as exc:
        log.error("Failed to allocate pty", error=str(exc))
        raise PtyAllocationError(str(exc)) from exc

    slave_fd: int | None = slave
    streams: FdStreams | None = None
    tasks: list[asyncio.Task[None]] = []
    try:
        env = spec.env
        if request is not None:
            if request.width > 0 and request.height > 0:
                set_winsize(master, request.width, request.height)
            if request.term:
                env = {**env, "TERM": request.term}

        try:
            proc = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=slave,
                stdout=slave,
                stderr=slave,
                env=env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except OSError as exc:
            log.warning("Failed to start pty session", command=spec.argv, error=str(exc))
            return ExitOutcome.start_failed(exc)
        finally:
            # The child holds its own copy; ours would keep the terminal open
            os.close(slave)
            slave_fd = None

        log.debug("pty child started", pid=proc.pid)
        streams = await open_fd_streams(os.dup(master), os.dup(master))

        pty_in = trail.writer(streams.writer, "stdin")
        session_out = trail.writer(session.stdout, "stdout")

        tasks.append(asyncio.create_task(_apply_resizes(session.window_changes(), master, log)))
        tasks.append(asyncio.create_task(_copy_input(session.stdin, pty_in, log, chunk_size)))
        output_task = asyncio.create_task(
            _copy_output(streams.reader, session_out, log, chunk_size)
        )
        tasks.append(output_task)

        returncode = await proc.wait()

        try:
            await asyncio.wait_for(asyncio.shield(output_task), drain_grace)
            log.debug("stdout finished")
        except TimeoutError:
            log.info("stdout didn't finish within grace period", grace=drain_grace)

        outcome = translate(returncode)
        log.info("pty command exited", status=outcome.status, kind=outcome.kind)
        return outcome
    finally:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if streams is not None:
            streams.close()
        for fd in (slave_fd, master):
            if fd is not None:
                with contextlib.suppress(OSError):
                    os.close(fd)
