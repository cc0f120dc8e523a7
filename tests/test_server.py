from __future__ import annotations

import logging
import socket
import threading

import pytest

from fxfer.errors import UsageError
from fxfer.framing import send_int
from fxfer.fsm import Event
from fxfer.net import Connection, Listener
from fxfer.server import Server, ServerState, transition
from fxfer.shutdown import ShutdownToken, ShutdownWatcher


def run_in_thread(server: Server) -> threading.Thread:
    t = threading.Thread(target=server.run, daemon=True)
    t.start()
    return t


def test_transition_table():
    assert transition(ServerState.INITIALIZE, Event.OK) is ServerState.VALIDATE_ARGS
    assert transition(ServerState.ACCEPT, Event.MORE) is ServerState.ACCEPT
    assert transition(ServerState.ACCEPT, Event.DONE) is ServerState.TERMINATE
    assert transition(ServerState.BIND_LISTEN, Event.ERROR) is ServerState.FATAL_ERROR
    assert transition(ServerState.FATAL_ERROR, Event.OK) is ServerState.TERMINATE
    with pytest.raises(ValueError):
        transition(ServerState.ACCEPT, Event.ERROR)


def test_watcher_fires_once_token_is_set():
    token = ShutdownToken()
    fired = threading.Event()
    watcher = ShutdownWatcher(token, fired.set)
    watcher.start()
    assert not fired.wait(timeout=0.05)
    token.request()
    assert fired.wait(timeout=5)
    watcher.join(timeout=5)
    assert token.requested


@pytest.mark.parametrize("args", [[], ["127.0.0.1", "0"], ["127.0.0.1", "0", "dir", "extra"], ["h", "x", "dir"]])
def test_bad_args_are_fatal(args, caplog):
    server = Server(args)
    server.run()
    assert server.state is ServerState.TERMINATE
    assert isinstance(server.fatal_error, UsageError)
    assert server.listener is None
    assert "Fatal Error" in caplog.text


def test_storage_dir_is_created(tmp_path):
    storage = tmp_path / "incoming"
    server = Server(["127.0.0.1", "0", str(storage)])
    t = run_in_thread(server)
    assert server.ready.wait(timeout=5)
    assert storage.is_dir()
    server.token.request()
    t.join(timeout=5)
    assert not t.is_alive()


def test_storage_dir_creation_failure_is_fatal(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    server = Server(["127.0.0.1", "0", str(blocker)])
    server.run()
    assert isinstance(server.fatal_error, OSError)
    assert server.listener is None


def test_bind_failure_is_fatal(tmp_path):
    taken = Listener.bind("127.0.0.1:0")
    try:
        port = taken.address.rsplit(":", 1)[1]
        server = Server(["127.0.0.1", port, str(tmp_path)])
        server.run()
        assert isinstance(server.fatal_error, OSError)
    finally:
        taken.close()


def test_shutdown_with_no_connections(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    server = Server(["127.0.0.1", "0", str(tmp_path)])
    t = run_in_thread(server)
    assert server.ready.wait(timeout=5)
    assert "Server Listening on 127.0.0.1:" in caplog.text

    server.token.request()
    t.join(timeout=5)

    assert not t.is_alive()
    assert server.state is ServerState.TERMINATE
    assert server.fatal_error is None
    assert server.listener is not None and server.listener.closed
    assert server.sessions == []
    assert "Server Exiting..." in caplog.text
    assert "Fatal Error" not in caplog.text


def test_shutdown_requested_before_start(tmp_path):
    token = ShutdownToken()
    token.request()
    server = Server(["127.0.0.1", "0", str(tmp_path)], token)
    t = run_in_thread(server)
    t.join(timeout=5)
    assert not t.is_alive()
    assert server.fatal_error is None


class ScriptedListener:
    """Stands in for a Listener; each accept() runs the next step."""

    def __init__(self, *steps):
        self.address = "127.0.0.1:0"
        self.closed = False
        self.steps = list(steps)
        self.remotes: list[Connection] = []

    def accept(self) -> Connection:
        return self.steps.pop(0)()

    def close(self) -> None:
        self.closed = True

    def connection(self, count: int) -> Connection:
        a, b = socket.socketpair()
        remote = Connection(b)
        send_int(remote.writer, count)
        self.remotes.append(remote)
        return Connection(a)


def test_transient_accept_error_is_survived(tmp_path, caplog):
    token = ShutdownToken()

    def fail():
        raise ConnectionAbortedError("aborted before accept")

    def stop():
        token.request()
        raise OSError("listener closed")

    listener = ScriptedListener(fail, lambda: listener.connection(0), stop)
    server = Server(["127.0.0.1", "0", str(tmp_path)], token, bind=lambda address: listener)
    server.run()

    assert "accept failed: aborted before accept" in caplog.text
    assert server.wait_for_sessions(count=1, timeout=5)
    assert server.started == 1
    assert server.fatal_error is None
    assert server.state is ServerState.TERMINATE
    assert listener.steps == []
    for remote in listener.remotes:
        remote.close()


def test_connection_after_shutdown_is_not_dispatched(tmp_path):
    token = ShutdownToken()

    def accept_then_stop():
        conn = listener.connection(1)
        token.request()
        return conn

    listener = ScriptedListener(accept_then_stop)
    server = Server(["127.0.0.1", "0", str(tmp_path)], token, bind=lambda address: listener)
    server.run()

    assert server.state is ServerState.TERMINATE
    assert server.fatal_error is None
    assert server.started == 0
    assert server.sessions == [] and server.threads == []
    assert listener.closed
    [remote] = listener.remotes
    assert remote.reader.read() == b""
    remote.close()
