"""Copy loops shared by both bridges.

A copy loop runs until its source reports EOF or an I/O call raises. There
is no other cancellation signal: closing a descriptor is what ends a loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import os
from dataclasses import dataclass

from shellgate.types import ByteReader, ByteWriter

DEFAULT_CHUNK_SIZE = 32768


async def copy_stream(
    reader: ByteReader,
    writer: ByteWriter,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy ``reader`` into ``writer`` until EOF. Returns the byte count."""
    total = 0
    while True:
        data = await reader.read(chunk_size)
        if not data:
            return total
        writer.write(data)
        await writer.drain()
        total += len(data)


def close_writer(writer: object) -> None:
    """Signal end-of-input on a writer, ignoring an already-closed peer."""
    with contextlib.suppress(OSError):
        if isinstance(writer, asyncio.StreamWriter):
            writer.close()
        elif (write_eof := getattr(writer, "write_eof", None)) is not None:
            write_eof()


class _EIOAsEOFProtocol(asyncio.StreamReaderProtocol):
    """A terminal master raises EIO once the slave side is gone; treat it as EOF.

    Passing EIO through would make the reader raise before handing out the
    output still sitting in its buffer.
    """

    def connection_lost(self, exc: Exception | None) -> None:
        if isinstance(exc, OSError) and exc.errno == errno.EIO:
            exc = None
        super().connection_lost(exc)


@dataclass
class FdStreams:
    """asyncio streams over a pair of raw descriptors."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    _read_transport: asyncio.ReadTransport

    def close(self) -> None:
        self._read_transport.close()
        with contextlib.suppress(OSError):
            self.writer.close()


async def open_fd_streams(read_fd: int, write_fd: int) -> FdStreams:
    """Attach asyncio streams to two descriptors (pipes or terminal devices).

    Both descriptors belong to the returned transports from here on and are
    closed by :meth:`FdStreams.close`.
    """
    loop = asyncio.get_running_loop()

    read_file = os.fdopen(read_fd, "rb", buffering=0)
    write_file = os.fdopen(write_fd, "wb", buffering=0)

    reader = asyncio.StreamReader()
    try:
        r_transport, _ = await loop.connect_read_pipe(lambda: _EIOAsEOFProtocol(reader), read_file)
    except BaseException:
        read_file.close()
        write_file.close()
        raise

    try:
        w_transport, w_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, write_file
        )
    except BaseException:
        r_transport.close()
        write_file.close()
        raise
    writer = asyncio.StreamWriter(w_transport, w_protocol, None, loop)
    return FdStreams(reader=reader, writer=writer, _read_transport=r_transport)
