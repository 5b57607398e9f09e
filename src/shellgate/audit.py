"""Pass-through I/O wrappers that mirror session traffic into the audit log.

The wrappers never alter the bytes flowing through them: ``write`` and
``read`` return exactly what the wrapped primitive returns and let its
exceptions propagate. As a side effect, traffic is split on newlines and
each complete line becomes one AuditLogEntry. A trailing partial line stays
buffered until :meth:`LineAuditor.flush`, which the owner calls when the
stream is closing.

Content is decoded as UTF-8 with replacement; the audit stream is a reading
aid, not a lossless copy.
"""

from __future__ import annotations

from shellgate.logger import logger
from shellgate.types import AuditLogEntry, AuditSink, ByteReader, ByteWriter, StreamName


def log_audit_entry(entry: AuditLogEntry) -> None:
    """Default sink: one structured log line per audited line."""
    logger.info(entry.text, session_id=entry.session_id, stream=entry.stream)


class LineAuditor:
    """Accumulates bytes and emits one audit entry per completed line."""

    def __init__(self, session_id: str, stream: StreamName, sink: AuditSink) -> None:
        self.session_id = session_id
        self.stream = stream
        self._sink = sink
        self._buf = bytearray()

    def feed(self, data: bytes) -> None:
        if not data:
            return
        self._buf += data
        while (idx := self._buf.find(b"\n")) >= 0:
            line = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            self._emit(line)

    def flush(self) -> None:
        """Emit whatever is buffered, even without a trailing newline."""
        if self._buf:
            line = bytes(self._buf)
            self._buf.clear()
            self._emit(line)

    @property
    def pending(self) -> bytes:
        return bytes(self._buf)

    def _emit(self, line: bytes) -> None:
        # Terminals end lines with \r\n
        text = line.decode("utf-8", errors="replace").removesuffix("\r")
        try:
            self._sink(AuditLogEntry(session_id=self.session_id, stream=self.stream, text=text))
        except Exception:
            logger.exception("Audit sink failed", session_id=self.session_id, stream=self.stream)


class LoggingWriter:
    """Wraps a writer; everything written is also fed to a LineAuditor."""

    def __init__(self, writer: ByteWriter, auditor: LineAuditor) -> None:
        self._writer = writer
        self.auditor = auditor

    def write(self, data: bytes) -> object:
        result = self._writer.write(data)
        self.auditor.feed(data)
        return result

    async def drain(self) -> None:
        await self._writer.drain()

    def flush(self) -> None:
        self.auditor.flush()


class LoggingReader:
    """Wraps a reader; everything read is also fed to a LineAuditor.

    Only reached through :meth:`AuditTrail.reader`, which the server itself
    does not use.
    """

    def __init__(self, reader: ByteReader, auditor: LineAuditor) -> None:
        self._reader = reader
        self.auditor = auditor

    async def read(self, n: int = -1) -> bytes:
        data = await self._reader.read(n)
        self.auditor.feed(data)
        return data

    def flush(self) -> None:
        self.auditor.flush()


class AuditTrail:
    """Per-session factory for audited streams, bound to one session id."""

    def __init__(self, session_id: str, sink: AuditSink = log_audit_entry) -> None:
        self.session_id = session_id
        self._sink = sink

    def writer(self, writer: ByteWriter, stream: StreamName) -> LoggingWriter:
        return LoggingWriter(writer, LineAuditor(self.session_id, stream, self._sink))

    def reader(self, reader: ByteReader, stream: StreamName) -> LoggingReader:
        """Audit the read side of a stream.

        Test-facing: the bridges audit every stream where it is written, so
        nothing in the server calls this. It is kept for callers that only
        hold the reading end.
        """
        return LoggingReader(reader, LineAuditor(self.session_id, stream, self._sink))
