from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from .constants import SERVER_ARGUMENTS, STORAGE_DIR_MODE
from .errors import UsageError
from .fsm import Event, next_state
from .net import Connection, Listener, join_host_port, parse_port
from .session import ReceiveSession
from .shutdown import ShutdownToken, ShutdownWatcher

logger = logging.getLogger(__name__)


class ServerState(enum.Enum):
    INITIALIZE = enum.auto()
    VALIDATE_ARGS = enum.auto()
    PARSE_ADDRESS = enum.auto()
    ENSURE_STORAGE_DIR = enum.auto()
    BIND_LISTEN = enum.auto()
    ACCEPT = enum.auto()
    FATAL_ERROR = enum.auto()
    TERMINATE = enum.auto()


TRANSITIONS = {
    (ServerState.INITIALIZE, Event.OK): ServerState.VALIDATE_ARGS,
    (ServerState.VALIDATE_ARGS, Event.OK): ServerState.PARSE_ADDRESS,
    (ServerState.VALIDATE_ARGS, Event.ERROR): ServerState.FATAL_ERROR,
    (ServerState.PARSE_ADDRESS, Event.OK): ServerState.ENSURE_STORAGE_DIR,
    (ServerState.ENSURE_STORAGE_DIR, Event.OK): ServerState.BIND_LISTEN,
    (ServerState.ENSURE_STORAGE_DIR, Event.ERROR): ServerState.FATAL_ERROR,
    (ServerState.BIND_LISTEN, Event.OK): ServerState.ACCEPT,
    (ServerState.BIND_LISTEN, Event.ERROR): ServerState.FATAL_ERROR,
    (ServerState.ACCEPT, Event.MORE): ServerState.ACCEPT,
    (ServerState.ACCEPT, Event.DONE): ServerState.TERMINATE,
    (ServerState.FATAL_ERROR, Event.OK): ServerState.TERMINATE,
}


def transition(state: ServerState, event: Event) -> ServerState:
    return next_state(TRANSITIONS, state, event)


@dataclass(slots=True)
class Server:
    """Accepts connections on ``args[0]:args[1]`` and stores files in ``args[2]``.

    Each accepted connection gets its own thread running a ReceiveSession.
    Requesting shutdown on ``token`` closes the listener; sessions already
    running are left to finish on their own. ``sessions`` and ``threads``
    hold live sessions only; finished ones are handed to ``on_session_done``.
    """

    args: Sequence[str]
    token: ShutdownToken = field(default_factory=ShutdownToken)
    on_session_done: Callable[[ReceiveSession], None] | None = None
    bind: Callable[[str], Listener] = Listener.bind
    state: ServerState = ServerState.INITIALIZE
    host: str = ""
    port: int = 0
    address: str = ""
    storage_dir: Path | None = None
    listener: Listener | None = None
    watcher: ShutdownWatcher | None = None
    sessions: list[ReceiveSession] = field(default_factory=list)
    threads: list[threading.Thread] = field(default_factory=list)
    started: int = 0
    error: BaseException | None = None
    fatal_error: BaseException | None = None
    ready: threading.Event = field(default_factory=threading.Event)
    _dispatched: threading.Condition = field(default_factory=threading.Condition, init=False, repr=False)

    def run(self) -> None:
        handlers = {
            ServerState.INITIALIZE: self._initialize,
            ServerState.VALIDATE_ARGS: self._validate_args,
            ServerState.PARSE_ADDRESS: self._parse_address,
            ServerState.ENSURE_STORAGE_DIR: self._ensure_storage_dir,
            ServerState.BIND_LISTEN: self._bind_listen,
            ServerState.ACCEPT: self._accept,
            ServerState.FATAL_ERROR: self._fatal_error,
        }
        try:
            while self.state is not ServerState.TERMINATE:
                self.state = transition(self.state, handlers[self.state]())
        finally:
            self._terminate()

    def wait_for_sessions(self, count: int = 0, timeout: float | None = None) -> bool:
        """Wait until ``count`` sessions have started and none is still running.

        Returns False if that did not happen within ``timeout``.
        """
        with self._dispatched:
            return self._dispatched.wait_for(lambda: self.started >= count and not self.threads, timeout)

    def _initialize(self) -> Event:
        self.watcher = ShutdownWatcher(self.token, self._close_listener)
        self.watcher.start()
        return Event.OK

    def _validate_args(self) -> Event:
        if len(self.args) != SERVER_ARGUMENTS:
            self.error = UsageError("invalid number of arguments, <host> <port> <storage directory>")
            return Event.ERROR
        self.host = self.args[0]
        try:
            self.port = parse_port(self.args[1])
        except ValueError as exc:
            self.error = UsageError(f"invalid port {self.args[1]!r}: {exc}")
            return Event.ERROR
        self.storage_dir = Path(self.args[2])
        return Event.OK

    def _parse_address(self) -> Event:
        self.address = join_host_port(self.host, self.port)
        return Event.OK

    def _ensure_storage_dir(self) -> Event:
        assert self.storage_dir is not None
        try:
            self.storage_dir.mkdir(mode=STORAGE_DIR_MODE, exist_ok=True)
        except OSError as exc:
            self.error = exc
            return Event.ERROR
        return Event.OK

    def _bind_listen(self) -> Event:
        try:
            self.listener = self.bind(self.address)
        except (OSError, ValueError) as exc:
            self.error = exc
            return Event.ERROR
        # the watcher may have fired before there was a listener to close
        if self.token.requested:
            self.listener.close()
        logger.info("Server Listening on %s", self.listener.address)
        self.ready.set()
        return Event.OK

    def _accept(self) -> Event:
        assert self.listener is not None
        if self.token.requested:
            return Event.DONE
        try:
            conn = self.listener.accept()
        except OSError as exc:
            if self.token.requested or self.listener.closed:
                logger.info("Server closed connection")
                return Event.DONE
            logger.warning("accept failed: %s", exc)
            return Event.MORE
        if self.token.requested:
            conn.close()
            return Event.DONE
        self._dispatch(conn)
        return Event.MORE

    def _dispatch(self, conn: Connection) -> None:
        assert self.storage_dir is not None
        session = ReceiveSession(conn, self.storage_dir)
        thread = threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"fxfer-session-{conn.label}",
            daemon=False,
        )
        with self._dispatched:
            self.sessions.append(session)
            self.threads.append(thread)
            self.started += 1
            thread.start()
            self._dispatched.notify_all()
        logger.info("accepted connection from %s", conn.label)

    def _run_session(self, session: ReceiveSession) -> None:
        try:
            session.run()
        finally:
            if self.on_session_done is not None:
                self.on_session_done(session)
            # only sessions still running are kept
            with self._dispatched:
                self.sessions.remove(session)
                self.threads.remove(threading.current_thread())
                self._dispatched.notify_all()

    def _fatal_error(self) -> Event:
        logger.error("Fatal Error: %s", self.error)
        self.fatal_error = self.error
        return Event.OK

    def _close_listener(self) -> None:
        if self.listener is not None:
            self.listener.close()

    def _terminate(self) -> None:
        self._close_listener()
        self.ready.set()
        logger.info("Server Exiting...")
