"""Shared fixtures for the lazycache test suite."""

from __future__ import annotations

import queue
import threading

import pytest

from lazycache.connections import LineServer


class CountingConstructor:
    """Constructor double that records calls and can block until released."""

    def __init__(self, value="value", error: BaseException | None = None, block: bool = False):
        self.value = value
        self.error = error
        self.calls = 0
        self.contexts = []
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()
        self._lock = threading.Lock()

    def __call__(self, ctx, key):
        with self._lock:
            self.calls += 1
            self.contexts.append(ctx)
        self.started.set()
        self.release.wait(5)
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture()
def make_ctor():
    return CountingConstructor


@pytest.fixture()
def line_server():
    """Line server on an ephemeral port; received lines land in ``server.lines``."""
    lines: queue.Queue = queue.Queue()
    server = LineServer("127.0.0.1", 0, on_line=lambda peer, line: lines.put((peer, line)))
    server.lines = lines
    server.start()
    yield server
    server.shutdown()


def drain(lines: queue.Queue, count: int, timeout: float = 5.0) -> list[tuple[str, str]]:
    return [lines.get(timeout=timeout) for _ in range(count)]
