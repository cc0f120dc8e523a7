from __future__ import annotations

import contextlib
import socket
from typing import BinaryIO, Tuple


def bracket_host(host: str) -> str:
    """Wrap an IPv6 literal in brackets so it can be joined with a port."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


def join_host_port(host: str, port: int | str) -> str:
    return f"{bracket_host(host)}:{port}"


def split_host_port(address: str) -> Tuple[str, int]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or address[end + 1 : end + 2] != ":":
            raise ValueError(f"malformed address {address!r}")
        host, port = address[1:end], address[end + 2 :]
    else:
        host, sep, port = address.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"malformed address {address!r}")
    return host, int(port)


def parse_port(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise ValueError(f"port {port} out of range")
    return port


def _family_for(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class Connection:
    """A connected stream socket with buffered reader/writer halves."""

    def __init__(self, sock: socket.socket):
        try:
            self.peer = sock.getpeername()
        except OSError:
            # peer reset between accept and here
            sock.close()
            raise
        self.sock = sock
        self.reader: BinaryIO = sock.makefile("rb")
        self.writer: BinaryIO = sock.makefile("wb")

    @property
    def label(self) -> str:
        if isinstance(self.peer, tuple):
            return join_host_port(*self.peer[:2])
        return str(self.peer) or "local"

    @classmethod
    def dial(cls, address: str) -> "Connection":
        host, port = split_host_port(address)
        return cls(socket.create_connection((host, port)))

    def close(self) -> None:
        self.reader.close()
        # unflushed bytes after a failed write cannot be delivered anyway
        with contextlib.suppress(OSError):
            self.writer.close()
        self.sock.close()


class Listener:
    def __init__(self, sock: socket.socket):
        self.sock = sock
        host, port = sock.getsockname()[:2]
        self.address = join_host_port(host, port)

    @classmethod
    def bind(cls, address: str) -> "Listener":
        host, port = split_host_port(address)
        return cls(socket.create_server((host, port), family=_family_for(host)))

    @property
    def closed(self) -> bool:
        return self.sock.fileno() == -1

    def accept(self) -> Connection:
        sock, _ = self.sock.accept()
        return Connection(sock)

    def close(self) -> None:
        # close() alone does not wake a thread blocked in accept() on Linux
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        self.sock.close()
