"""Tests for the pooled TCP connections and the line server."""

from __future__ import annotations

import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from lazycache import Context, ContextCancelled
from lazycache.connections import ConnectionPool, PooledConnection

from conftest import drain


def _closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class _FakeConnection:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.lines: list[str] = []
        self.closed = False

    def send_line(self, line: str) -> None:
        if self.fail:
            raise BrokenPipeError("broken pipe")
        self.lines.append(line)

    def close(self) -> None:
        self.closed = True


class TestConnectionPool:
    def test_workers_share_one_connection(self, line_server):
        with ConnectionPool(lifetime=10) as pool:
            with ThreadPoolExecutor(max_workers=10) as executor:
                list(executor.map(lambda i: pool.send_line(line_server.address, str(i)), range(10)))

            received = drain(line_server.lines, 10)
            assert sorted(int(line) for _, line in received) == list(range(10))
            assert len({peer for peer, _ in received}) == 1
            assert len(pool.cache) == 1

    def test_idle_connection_is_closed(self, line_server):
        pool = ConnectionPool(lifetime=0.1)
        conn = pool.get(line_server.address)
        assert isinstance(conn, PooledConnection)

        deadline = time.monotonic() + 5
        while line_server.address in pool.cache and time.monotonic() < deadline:
            time.sleep(0.02)
        assert line_server.address not in pool.cache
        assert conn.sock.fileno() == -1

    def test_close_closes_connections(self, line_server):
        pool = ConnectionPool(lifetime=0)
        conn = pool.get(line_server.address)
        pool.close()
        assert len(pool.cache) == 0
        assert conn.sock.fileno() == -1

    def test_failed_dial_is_not_cached(self):
        pool = ConnectionPool(lifetime=10, connect_timeout=1)
        address = f"127.0.0.1:{_closed_port()}"
        with pytest.raises(OSError):
            pool.get(address)
        assert address not in pool.cache

    def test_cancelled_context_aborts_dial(self, line_server):
        pool = ConnectionPool(lifetime=10)
        ctx = Context.background().with_cancel()
        ctx.cancel()
        with pytest.raises(ContextCancelled):
            pool.get(line_server.address, ctx)
        assert len(pool.cache) == 0

    def test_broken_connection_is_replaced(self):
        pool = ConnectionPool(lifetime=10)
        broken, healthy = _FakeConnection(fail=True), _FakeConnection()
        dialed = iter([broken, healthy])
        pool._dial = lambda ctx, address: next(dialed)

        pool.send_line("example:1", "hello")

        assert broken.closed
        assert healthy.lines == ["hello"]
        assert pool.get("example:1") is healthy

    def test_late_failure_keeps_newer_connection(self):
        pool = ConnectionPool(lifetime=10)
        stale, healthy = _FakeConnection(), _FakeConnection()
        dialed = iter([stale, healthy])
        pool._dial = lambda ctx, address: next(dialed)

        def _fail_after_replacement(line):
            # Another worker already swapped in a fresh connection.
            pool.cache.delete("example:1")
            assert pool.get("example:1") is healthy
            raise ConnectionResetError("reset")

        stale.send_line = _fail_after_replacement
        pool.send_line("example:1", "x")

        assert stale.closed
        assert not healthy.closed
        assert healthy.lines == ["x"]
        assert pool.get("example:1") is healthy

    def test_gives_up_after_retries(self):
        pool = ConnectionPool(lifetime=10)
        calls = []

        def _dial(ctx, address):
            calls.append(address)
            return _FakeConnection(fail=True)

        pool._dial = _dial
        with pytest.raises(BrokenPipeError):
            pool.send_line("example:1", "hello")
        assert len(calls) == 2
        assert "example:1" not in pool.cache


class TestLineServer:
    def test_reads_lines_per_connection(self, line_server):
        host, port = line_server.address.split(":")
        with socket.create_connection((host, int(port)), timeout=5) as sock:
            sock.sendall(b"first\nsecond\r\n")
            received = drain(line_server.lines, 2)
        assert [line for _, line in received] == ["first", "second"]

    def test_shutdown_stops_accepting(self, line_server):
        address = line_server.address
        line_server.shutdown()
        host, port = address.split(":")
        with pytest.raises(OSError):
            socket.create_connection((host, int(port)), timeout=1)

    def test_pooled_connection_serialises_writes(self):
        left, right = socket.socketpair()
        conn = PooledConnection(address="pair", sock=left)
        threads = [threading.Thread(target=conn.send_line, args=(f"line-{i}" * 50,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        conn.close()

        data = b""
        while True:
            chunk = right.recv(65536)
            if not chunk:
                break
            data += chunk
        right.close()
        lines = data.decode().splitlines()
        assert sorted(lines) == sorted(f"line-{i}" * 50 for i in range(8))
