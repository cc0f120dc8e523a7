from __future__ import annotations

import struct
from typing import BinaryIO

from .constants import BUFFER_SIZE, INT_FORMAT, INT_MAX, INT_MIN, INT_SIZE
from .errors import FramingError, StreamClosed

_INT = struct.Struct(INT_FORMAT)


def send_int(stream: BinaryIO, n: int) -> None:
    """Write ``n`` as a big-endian int32 and flush.

    Write or flush failures surface as ``OSError`` from the stream.
    """
    if not INT_MIN <= n <= INT_MAX:
        raise FramingError(f"integer {n} does not fit in int32")
    stream.write(_INT.pack(n))
    stream.flush()


def send_bytes(stream: BinaryIO, data: bytes) -> int:
    """Write a length-prefixed blob, at most BUFFER_SIZE bytes per write.

    Chunking only bounds the size of a single write; the receiver sees one
    blob no matter how many chunks were used.
    """
    send_int(stream, len(data))
    view = memoryview(data)
    for start in range(0, len(view), BUFFER_SIZE):
        stream.write(view[start : start + BUFFER_SIZE])
        stream.flush()
    return len(data)


def receive_int(stream: BinaryIO) -> int:
    (n,) = _INT.unpack(_read_exact(stream, INT_SIZE))
    return n


def receive_bytes(stream: BinaryIO) -> bytes:
    size = receive_int(stream)
    if size < 0:
        raise FramingError(f"negative blob length {size}")
    return _read_exact(stream, size)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    # a single read may return fewer bytes than asked for
    buf = bytearray()
    while len(buf) < size:
        chunk = stream.read(min(BUFFER_SIZE, size - len(buf)))
        if not chunk:
            raise StreamClosed(size, len(buf))
        buf += chunk
    return bytes(buf)
