from __future__ import annotations

import socket
import threading
import time
from pathlib import Path

import pytest

from fxfer.net import Connection, split_host_port
from fxfer.server import Server
from fxfer.session import ReceiveSession


@pytest.fixture
def socket_pair():
    """A connected (local Connection, remote Connection) pair with no listener."""
    a, b = socket.socketpair()
    local, remote = Connection(a), Connection(b)
    yield local, remote
    local.close()
    remote.close()


class RunningServer:
    def __init__(self, storage_dir: Path):
        self.storage_dir = storage_dir
        self.finished: list[ReceiveSession] = []
        self.server = Server(["127.0.0.1", "0", str(storage_dir)], on_session_done=self.finished.append)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    def start(self) -> "RunningServer":
        self.thread.start()
        assert self.server.ready.wait(timeout=5)
        assert self.server.listener is not None
        return self

    @property
    def host_port(self) -> tuple[str, str]:
        assert self.server.listener is not None
        host, port = split_host_port(self.server.listener.address)
        return host, str(port)

    def stop(self) -> None:
        self.server.token.request()
        self.thread.join(timeout=5)


@pytest.fixture
def running_server(tmp_path):
    rs = RunningServer(tmp_path / "storage").start()
    yield rs
    rs.stop()


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def wait_until():
    return _wait_until
