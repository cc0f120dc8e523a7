from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Sequence

from .constants import CLIENT_ARGUMENTS
from .errors import FxferError, UsageError
from .framing import send_bytes, send_int
from .fsm import Event, next_state
from .net import Connection, join_host_port, parse_port
from .session import TransferMetrics

logger = logging.getLogger(__name__)


class ClientState(enum.Enum):
    VALIDATE_ARGS = enum.auto()
    PARSE_ADDRESS = enum.auto()
    CONNECT = enum.auto()
    SEND_FILE_COUNT = enum.auto()
    OPEN_FILE = enum.auto()
    SEND_FILE_NAME = enum.auto()
    SEND_FILE_CONTENT = enum.auto()
    ADVANCE_FILE = enum.auto()
    HANDLE_FILE_ERROR = enum.auto()
    HANDLE_FATAL_ERROR = enum.auto()
    TERMINATE = enum.auto()


TRANSITIONS = {
    (ClientState.VALIDATE_ARGS, Event.OK): ClientState.PARSE_ADDRESS,
    (ClientState.VALIDATE_ARGS, Event.ERROR): ClientState.HANDLE_FATAL_ERROR,
    (ClientState.PARSE_ADDRESS, Event.OK): ClientState.CONNECT,
    (ClientState.CONNECT, Event.OK): ClientState.SEND_FILE_COUNT,
    (ClientState.CONNECT, Event.ERROR): ClientState.HANDLE_FATAL_ERROR,
    (ClientState.SEND_FILE_COUNT, Event.OK): ClientState.OPEN_FILE,
    (ClientState.SEND_FILE_COUNT, Event.ERROR): ClientState.HANDLE_FATAL_ERROR,
    (ClientState.OPEN_FILE, Event.OK): ClientState.SEND_FILE_NAME,
    (ClientState.OPEN_FILE, Event.FILE_ERROR): ClientState.HANDLE_FILE_ERROR,
    (ClientState.SEND_FILE_NAME, Event.OK): ClientState.SEND_FILE_CONTENT,
    (ClientState.SEND_FILE_NAME, Event.ERROR): ClientState.HANDLE_FATAL_ERROR,
    (ClientState.SEND_FILE_CONTENT, Event.OK): ClientState.ADVANCE_FILE,
    (ClientState.SEND_FILE_CONTENT, Event.FILE_ERROR): ClientState.HANDLE_FILE_ERROR,
    (ClientState.SEND_FILE_CONTENT, Event.ERROR): ClientState.HANDLE_FATAL_ERROR,
    (ClientState.ADVANCE_FILE, Event.MORE): ClientState.OPEN_FILE,
    (ClientState.ADVANCE_FILE, Event.DONE): ClientState.TERMINATE,
    (ClientState.HANDLE_FILE_ERROR, Event.OK): ClientState.ADVANCE_FILE,
    (ClientState.HANDLE_FATAL_ERROR, Event.OK): ClientState.TERMINATE,
}


def transition(state: ClientState, event: Event) -> ClientState:
    return next_state(TRANSITIONS, state, event)


def open_for_read(path: str) -> BinaryIO:
    return open(path, "rb")


@dataclass(slots=True)
class ClientTransfer:
    """Pushes every path in ``args[2:]`` to the server at ``args[0]:args[1]``.

    The file count goes out before any file is opened, so a file that cannot
    be opened or read afterwards leaves the server expecting one more file
    unit than it will get. The server notices when this client disconnects.
    """

    args: Sequence[str]
    dial: Callable[[str], Connection] = Connection.dial
    opener: Callable[[str], BinaryIO] = open_for_read
    state: ClientState = ClientState.VALIDATE_ARGS
    host: str = ""
    port: int = 0
    address: str = ""
    paths: list[str] = field(default_factory=list)
    current: int = 0
    conn: Connection | None = None
    file: BinaryIO | None = None
    error: BaseException | None = None
    fatal_error: BaseException | None = None
    metrics: TransferMetrics = field(default_factory=TransferMetrics)

    def run(self) -> TransferMetrics:
        handlers = {
            ClientState.VALIDATE_ARGS: self._validate_args,
            ClientState.PARSE_ADDRESS: self._parse_address,
            ClientState.CONNECT: self._connect,
            ClientState.SEND_FILE_COUNT: self._send_file_count,
            ClientState.OPEN_FILE: self._open_file,
            ClientState.SEND_FILE_NAME: self._send_file_name,
            ClientState.SEND_FILE_CONTENT: self._send_file_content,
            ClientState.ADVANCE_FILE: self._advance_file,
            ClientState.HANDLE_FILE_ERROR: self._handle_file_error,
            ClientState.HANDLE_FATAL_ERROR: self._handle_fatal_error,
        }
        try:
            while self.state is not ClientState.TERMINATE:
                self.state = transition(self.state, handlers[self.state]())
        finally:
            self._terminate()
        return self.metrics

    def _validate_args(self) -> Event:
        if len(self.args) < CLIENT_ARGUMENTS:
            self.error = UsageError("invalid number of arguments, <host> <port> <file1> ... <fileN>")
            return Event.ERROR
        self.host = self.args[0]
        try:
            self.port = parse_port(self.args[1])
        except ValueError as exc:
            self.error = UsageError(f"invalid port {self.args[1]!r}: {exc}")
            return Event.ERROR
        self.paths = list(self.args[2:])
        return Event.OK

    def _parse_address(self) -> Event:
        self.address = join_host_port(self.host, self.port)
        return Event.OK

    def _connect(self) -> Event:
        try:
            self.conn = self.dial(self.address)
        except (OSError, ValueError) as exc:
            self.error = exc
            return Event.ERROR
        logger.debug("connected to %s", self.address)
        return Event.OK

    def _send_file_count(self) -> Event:
        assert self.conn is not None
        try:
            send_int(self.conn.writer, len(self.paths))
        except (OSError, FxferError) as exc:
            self.error = exc
            return Event.ERROR
        self.current = 0
        return Event.OK

    def _open_file(self) -> Event:
        try:
            self.file = self.opener(self.paths[self.current])
        except OSError as exc:
            self.error = exc
            return Event.FILE_ERROR
        return Event.OK

    def _send_file_name(self) -> Event:
        assert self.conn is not None
        name = os.path.basename(self.paths[self.current])
        try:
            send_bytes(self.conn.writer, os.fsencode(name))
        except (OSError, FxferError) as exc:
            self._close_file()
            self.error = exc
            return Event.ERROR
        return Event.OK

    def _send_file_content(self) -> Event:
        assert self.conn is not None and self.file is not None
        try:
            data = self.file.read()
        except OSError as exc:
            self._close_file()
            self.error = exc
            return Event.FILE_ERROR
        try:
            sent = send_bytes(self.conn.writer, data)
        except (OSError, FxferError) as exc:
            self.error = exc
            return Event.ERROR
        finally:
            self._close_file()
        logger.info("Sent file %s", self.paths[self.current])
        self.metrics.files_ok += 1
        self.metrics.bytes_transferred += sent
        return Event.OK

    def _advance_file(self) -> Event:
        self.current += 1
        return Event.MORE if self.current < len(self.paths) else Event.DONE

    def _handle_file_error(self) -> Event:
        logger.error("Error: %s", self.error)
        self.metrics.files_failed += 1
        return Event.OK

    def _handle_fatal_error(self) -> Event:
        logger.error("Fatal Error: %s", self.error)
        self.fatal_error = self.error
        return Event.OK

    def _close_file(self) -> None:
        if self.file is not None:
            self.file.close()
            self.file = None

    def _terminate(self) -> None:
        self._close_file()
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self.metrics.end_ts = time.monotonic()
        logger.info("Client Exiting...")
