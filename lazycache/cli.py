"""lazycache command line entry."""

from __future__ import annotations

import argparse
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import requests

from lazycache.connections import ConnectionPool, LineServer
from lazycache.core.logging_config import configure_logging
from lazycache.core.utils import lifetime_from_env, parse_duration, split_host_port
from lazycache.sessions import SessionPool


def _serve(host: str, port: int) -> None:
    def _echo(peer: str, line: str) -> None:
        print(f"{peer}: {line}", flush=True)

    server = LineServer(host, port, on_line=_echo)
    print(f"📡 Listening on {server.address}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()


def _dial(address: str, workers: int, lifetime: float, linger: float) -> int:
    failures = 0
    failures_lock = threading.Lock()

    with ConnectionPool(lifetime=lifetime) as pool:
        pool.cache.on_delete = _announce_close(pool.cache.on_delete)

        def _write(idx: int) -> None:
            nonlocal failures
            try:
                pool.send_line(address, str(idx))
                print(f"✅ wrote {idx}", flush=True)
            except OSError as exc:
                with failures_lock:
                    failures += 1
                print(f"❌ worker {idx}: {exc}", flush=True)

        with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            list(executor.map(_write, range(workers)))

        if linger > 0:
            print(f"⏳ Holding pool open for {linger:.1f}s", flush=True)
            time.sleep(linger)

    return 1 if failures else 0


def _announce_close(callback):
    def _wrapped(address, conn):
        print(f"🔌 Closing connection {address}", flush=True)
        callback(address, conn)

    return _wrapped


def _fetch(urls: list[str], lifetime: float, workers: int) -> int:
    failures = 0

    with SessionPool(lifetime=lifetime) as pool:
        def _get(url: str) -> tuple[str, str]:
            try:
                resp = pool.get(url)
                return url, f"{resp.status_code} ({len(resp.content)} bytes)"
            except (requests.RequestException, ValueError) as exc:
                return url, f"error: {exc}"

        with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            for url, status in executor.map(_get, urls):
                if status.startswith("error"):
                    failures += 1
                print(f"{url} -> {status}", flush=True)

    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="lazycache demo tools")
    parser.add_argument("--serve", action="store_true", help="Run the line-reading TCP server")
    parser.add_argument("--host", default="127.0.0.1", help="Listen host for --serve")
    parser.add_argument("--port", type=int, default=8080, help="Listen port for --serve")
    parser.add_argument("--dial", metavar="HOST:PORT", help="Share one pooled connection across workers")
    parser.add_argument("--fetch", nargs="+", metavar="URL", help="GET URLs through the session pool")
    parser.add_argument("--workers", type=int, default=10, help="Concurrent workers (default 10)")
    parser.add_argument(
        "--lifetime",
        default=None,
        help="Idle lifetime, e.g. 10s or 500ms (default: LAZYCACHE_LIFETIME or 10s)",
    )
    parser.add_argument("--linger", default="0", help="Keep the pool open this long before exiting")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else None)

    try:
        lifetime = parse_duration(args.lifetime) if args.lifetime else lifetime_from_env(default=10.0)
        linger = parse_duration(args.linger)
        if args.dial:
            split_host_port(args.dial)
    except ValueError as exc:
        parser.error(str(exc))

    if args.serve:
        _serve(args.host, args.port)
        return 0
    if args.dial:
        return _dial(args.dial, args.workers, lifetime, linger)
    if args.fetch:
        return _fetch(args.fetch, lifetime, args.workers)

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
