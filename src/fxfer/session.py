from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from .errors import FramingError, FxferError, StreamClosed, UnsafeFileName
from .framing import receive_bytes, receive_int
from .fsm import Event, next_state
from .net import Connection

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TransferMetrics:
    files_ok: int = 0
    files_failed: int = 0
    bytes_transferred: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1_000_000) / self.duration_s


class SessionState(enum.Enum):
    READ_FILE_COUNT = enum.auto()
    READ_FILE_NAME = enum.auto()
    READ_FILE_CONTENT = enum.auto()
    WRITE_FILE = enum.auto()
    ADVANCE_FILE = enum.auto()
    HANDLE_ERROR = enum.auto()
    EXIT = enum.auto()


TRANSITIONS = {
    # a declared count of zero finishes without reading a file unit
    (SessionState.READ_FILE_COUNT, Event.OK): SessionState.ADVANCE_FILE,
    (SessionState.READ_FILE_COUNT, Event.ERROR): SessionState.HANDLE_ERROR,
    (SessionState.READ_FILE_NAME, Event.OK): SessionState.READ_FILE_CONTENT,
    (SessionState.READ_FILE_NAME, Event.ERROR): SessionState.HANDLE_ERROR,
    (SessionState.READ_FILE_CONTENT, Event.OK): SessionState.WRITE_FILE,
    (SessionState.READ_FILE_CONTENT, Event.ERROR): SessionState.HANDLE_ERROR,
    (SessionState.WRITE_FILE, Event.OK): SessionState.ADVANCE_FILE,
    (SessionState.WRITE_FILE, Event.ERROR): SessionState.HANDLE_ERROR,
    (SessionState.ADVANCE_FILE, Event.MORE): SessionState.READ_FILE_NAME,
    (SessionState.ADVANCE_FILE, Event.DONE): SessionState.EXIT,
    (SessionState.HANDLE_ERROR, Event.OK): SessionState.EXIT,
}


def transition(state: SessionState, event: Event) -> SessionState:
    return next_state(TRANSITIONS, state, event)


def check_file_name(name: str) -> str:
    """Accept only a bare file name that stays inside the storage directory."""
    separators = {"/", "\\", os.sep} | ({os.altsep} if os.altsep else set())
    if name in ("", ".", "..") or "\x00" in name or any(sep in name for sep in separators):
        raise UnsafeFileName(name)
    return name


@dataclass(slots=True, eq=False)
class ReceiveSession:
    """Receives one client's batch and stores each file under ``storage_dir``.

    Any read or write failure ends the whole session; there is no per-file
    recovery on the receiving side.
    """

    conn: Connection
    storage_dir: Path
    state: SessionState = SessionState.READ_FILE_COUNT
    expected: int = 0
    current: int = 0
    file_name: str = ""
    content: bytes = b""
    received: list[str] = field(default_factory=list)
    error: BaseException | None = None
    metrics: TransferMetrics = field(default_factory=TransferMetrics)

    @property
    def closed_by_peer(self) -> bool:
        return isinstance(self.error, StreamClosed)

    def run(self) -> TransferMetrics:
        handlers = {
            SessionState.READ_FILE_COUNT: self._read_file_count,
            SessionState.READ_FILE_NAME: self._read_file_name,
            SessionState.READ_FILE_CONTENT: self._read_file_content,
            SessionState.WRITE_FILE: self._write_file,
            SessionState.ADVANCE_FILE: self._advance_file,
            SessionState.HANDLE_ERROR: self._handle_error,
        }
        try:
            while self.state is not SessionState.EXIT:
                self.state = transition(self.state, handlers[self.state]())
        finally:
            self.conn.close()
            self.metrics.end_ts = time.monotonic()
        logger.debug("session with %s finished: %d of %d files", self.conn.label, self.current, self.expected)
        return self.metrics

    def _read_file_count(self) -> Event:
        try:
            count = receive_int(self.conn.reader)
            if count < 0:
                raise FramingError(f"negative file count {count}")
        except (OSError, FxferError) as exc:
            self.error = exc
            return Event.ERROR
        self.expected = count
        return Event.OK

    def _read_file_name(self) -> Event:
        try:
            self.file_name = check_file_name(os.fsdecode(receive_bytes(self.conn.reader)))
        except (OSError, FxferError) as exc:
            self.error = exc
            return Event.ERROR
        return Event.OK

    def _read_file_content(self) -> Event:
        try:
            self.content = receive_bytes(self.conn.reader)
        except (OSError, FxferError) as exc:
            self.error = exc
            return Event.ERROR
        return Event.OK

    def _write_file(self) -> Event:
        try:
            with open(self.storage_dir / self.file_name, "wb") as f:
                f.write(self.content)
        except OSError as exc:
            self.error = exc
            return Event.ERROR
        logger.info("created file %s in %s", self.file_name, self.storage_dir)
        self.received.append(self.file_name)
        self.metrics.files_ok += 1
        self.metrics.bytes_transferred += len(self.content)
        self.content = b""
        self.current += 1
        return Event.OK

    def _advance_file(self) -> Event:
        return Event.DONE if self.current == self.expected else Event.MORE

    def _handle_error(self) -> Event:
        self.content = b""
        if isinstance(self.error, EOFError):
            logger.warning("Client closed connection: %s", self.error)
        else:
            logger.error("Error: %s", self.error)
        if self.current < self.expected:
            self.metrics.files_failed += 1
        return Event.OK
