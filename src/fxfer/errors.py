from __future__ import annotations


class FxferError(Exception):
    pass


class UsageError(FxferError):
    """Positional arguments did not describe a valid client or server run."""


class StreamClosed(FxferError, EOFError):
    """The peer closed the stream before a full frame arrived."""

    def __init__(self, expected: int, received: int):
        super().__init__(f"stream closed after {received} of {expected} bytes")
        self.expected = expected
        self.received = received


class FramingError(FxferError, ValueError):
    pass


class UnsafeFileName(FxferError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"refusing to store file under name {name!r}")
        self.name = name
