from __future__ import annotations

import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from .client import ClientTransfer
from .net import split_host_port
from .server import Server


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    files: int
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float


def run_benchmark(*, files: int = 4, size_bytes: int = 5_000_000) -> BenchmarkResult:
    """Push ``files`` generated files through a loopback server and time the client."""
    payload = b"A" * size_bytes

    with tempfile.TemporaryDirectory() as tmp:
        outbox = Path(tmp, "outbox")
        outbox.mkdir()
        inbox = Path(tmp, "inbox")
        paths = []
        for i in range(files):
            p = outbox / f"bench-{i}.bin"
            p.write_bytes(payload)
            paths.append(str(p))

        server = Server(["127.0.0.1", "0", str(inbox)])
        t = threading.Thread(target=server.run, daemon=True)
        t.start()
        try:
            server.ready.wait(timeout=10.0)
            if server.listener is None:
                raise RuntimeError(f"benchmark server failed to start: {server.fatal_error}")
            host, port = split_host_port(server.listener.address)

            client = ClientTransfer([host, str(port), *paths])
            metrics = client.run()
            if client.fatal_error is not None:
                raise RuntimeError(f"benchmark transfer failed: {client.fatal_error}")
            server.wait_for_sessions(count=1, timeout=30.0)
        finally:
            server.token.request()
            t.join(timeout=10.0)

        for p in paths:
            assert (inbox / Path(p).name).stat().st_size == size_bytes

    duration_s = max(0.001, metrics.duration_s)
    throughput_mbps = (files * size_bytes * 8 / 1_000_000) / duration_s

    return BenchmarkResult(
        files=files,
        bytes_transferred=files * size_bytes,
        duration_s=duration_s,
        throughput_mbps=throughput_mbps,
    )
