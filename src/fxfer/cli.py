from __future__ import annotations

import argparse
import json
import logging
import signal
from dataclasses import asdict

from .bench import run_benchmark
from .client import ClientTransfer
from .constants import DEFAULT_LOG_LEVEL, LOG_FORMAT
from .server import Server
from .shutdown import ShutdownToken


def install_signal_handlers(token: ShutdownToken) -> None:
    def request_shutdown(signum, frame):
        token.request()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)


def cmd_client(args: argparse.Namespace) -> int:
    transfer = ClientTransfer(args.args)
    transfer.run()
    return 1 if transfer.fatal_error is not None else 0


def cmd_server(args: argparse.Namespace) -> int:
    token = ShutdownToken()
    install_signal_handlers(token)
    server = Server(args.args, token)
    server.run()
    # a second interrupt while sessions drain stops the process
    signal.signal(signal.SIGINT, signal.default_int_handler)
    server.wait_for_sessions()
    return 1 if server.fatal_error is not None else 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(files=args.files, size_bytes=args.size_bytes)
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fxfer", description="Point-to-point file transfer over TCP.")
    p.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    client = sub.add_parser("client", help="send files to a server")
    client.add_argument("args", nargs="*", metavar="ARG", help="<host> <port> <file1> [file2 ...]")
    client.set_defaults(func=cmd_client)

    server = sub.add_parser("server", help="receive files until interrupted")
    server.add_argument("args", nargs="*", metavar="ARG", help="<host> <port> <storageDir>")
    server.set_defaults(func=cmd_server)

    bench = sub.add_parser("bench", help="loopback transfer benchmark")
    bench.add_argument("--files", type=int, default=4)
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.add_argument("--json", action="store_true")
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
