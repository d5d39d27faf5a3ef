"""Pooled TCP connections keyed by address, plus a line-oriented listener."""

from __future__ import annotations

import logging
import socket
import socketserver
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from lazycache.core.cache import LazyCache
from lazycache.core.context import Context
from lazycache.core.retry import retry
from lazycache.core.utils import split_host_port

logger = logging.getLogger("lazycache.connections")


@dataclass
class PooledConnection:
    address: str
    sock: socket.socket
    write_lock: threading.Lock = field(default_factory=threading.Lock)

    def send_line(self, line: str) -> None:
        payload = line.rstrip("\n").encode("utf-8") + b"\n"
        with self.write_lock:
            self.sock.sendall(payload)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as exc:
            logger.debug("Closing %s failed: %s", self.address, exc)


class ConnectionPool:
    """One shared TCP connection per ``host:port``, closed after idling."""

    def __init__(self, lifetime: float = 10.0, connect_timeout: float = 5.0):
        self.connect_timeout = connect_timeout
        self.cache: LazyCache[str, PooledConnection] = LazyCache(lifetime, on_delete=self._on_delete)

    def get(self, address: str, ctx: Context | None = None) -> PooledConnection:
        return self.cache.get_or_construct(ctx, address, self._dial)

    @retry(max_attempts=2, base_delay=0.05, retryable=(OSError,))
    def send_line(self, address: str, line: str, ctx: Context | None = None) -> None:
        conn = self.get(address, ctx)
        try:
            conn.send_line(line)
        except OSError:
            # Drop the broken connection so the next attempt redials.
            self.cache.delete(address, expected=conn)
            raise

    def close(self) -> None:
        self.cache.clear()

    def __enter__(self) -> ConnectionPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _dial(self, ctx: Context, address: str) -> PooledConnection:
        ctx.raise_if_done()
        host, port = split_host_port(address)
        timeout = ctx.remaining()
        if timeout is None:
            timeout = self.connect_timeout
        logger.info("Connecting to %s", address)
        sock = socket.create_connection((host, port), timeout=timeout)
        sock.settimeout(None)
        return PooledConnection(address=address, sock=sock)

    @staticmethod
    def _on_delete(address: str, conn: PooledConnection) -> None:
        logger.info("Closing connection to %s", address)
        conn.close()


class _LineHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        peer = "%s:%s" % self.client_address[:2]
        logger.info("Accepted connection from %s", peer)
        for raw in self.rfile:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            logger.info("Read line from %s: %s", peer, line)
            if self.server.on_line is not None:  # type: ignore[attr-defined]
                self.server.on_line(peer, line)  # type: ignore[attr-defined]
        logger.info("Connection from %s closed", peer)


class _ThreadingServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class LineServer:
    """Threaded TCP listener that reads newline-delimited lines per client.

    ``on_line(peer, line)`` is called for every line received, from the
    connection's handler thread.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        on_line: Optional[Callable[[str, str], None]] = None,
    ):
        self._server = _ThreadingServer((host, port), _LineHandler)
        self._server.on_line = on_line  # type: ignore[attr-defined]
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> str:
        host, port = self._server.server_address[:2]
        return f"{host}:{port}"

    def serve_forever(self) -> None:
        logger.info("Listening on %s", self.address)
        self._server.serve_forever()

    def start(self) -> LineServer:
        self._thread = threading.Thread(target=self.serve_forever, name="lazycache-line-server", daemon=True)
        self._thread.start()
        return self

    def shutdown(self) -> None:
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join()
            self._thread = None
        self._server.server_close()

    def __enter__(self) -> LineServer:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
