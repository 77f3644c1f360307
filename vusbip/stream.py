"""Exact-length reads and writes on binary streams, and the errors they raise."""

from __future__ import annotations

from typing import BinaryIO


class StreamError(Exception):
    """Data could not be read from or written to a stream."""


class IncompleteReadError(StreamError):
    """Fewer bytes than requested were read from a stream."""


class IncompleteWriteError(StreamError):
    """Fewer bytes than given were written to a stream."""


class ProtocolError(ValueError):
    """A message is inconsistent with its own fields and cannot be encoded."""


def read(reader: BinaryIO, length: int) -> bytes:
    """Read exactly ``length`` bytes with a single read call.

    Raises EOFError when nothing is left, IncompleteReadError when only part
    of the data arrived, and StreamError when the reader itself fails.
    """
    try:
        data = reader.read(length)
    except OSError as exc:
        raise StreamError(f"unable to read data from stream: {exc}") from exc
    if not data:
        raise EOFError("end of stream reached")
    if len(data) != length:
        raise IncompleteReadError(
            f"incomplete data read from stream: expected {length} bytes, got {len(data)}"
        )
    return bytes(data)


def write(writer: BinaryIO, data: bytes) -> None:
    """Write all of ``data`` to ``writer`` and flush it if it can be flushed.

    Raises StreamError when the writer fails and IncompleteWriteError when it
    reports a short write.
    """
    try:
        written = writer.write(data)
        flush = getattr(writer, "flush", None)
        if flush is not None:
            flush()
    except OSError as exc:
        raise StreamError(f"unable to write data to stream: {exc}") from exc
    if written is not None and written < len(data):
        raise IncompleteWriteError(
            f"incomplete data write to stream: expected {len(data)} bytes, wrote {written}"
        )