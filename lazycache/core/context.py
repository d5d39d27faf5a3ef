"""Caller context: cancellation and deadline carrier passed to constructors."""

from __future__ import annotations

import threading
import time


class Context:
    """Cancellation signal plus optional deadline for one caller.

    Deadlines are monotonic timestamps and are detected lazily: a context whose
    deadline has passed reports ``done()`` and ``DeadlineExceeded`` without a
    background timer.
    """

    def __init__(self, deadline: float | None = None, parent: Context | None = None):
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._error: ContextCancelled | None = None
        self._children: list[Context] = []
        self._parent = parent

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_cancel(self) -> Context:
        return Context(parent=self)

    def with_timeout(self, seconds: float) -> Context:
        return Context(deadline=time.monotonic() + max(0.0, seconds), parent=self)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def error(self) -> ContextCancelled | None:
        with self._lock:
            if self._error is None and self._expired():
                self._error = DeadlineExceeded("context deadline exceeded")
            return self._error

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "context cancelled") -> None:
        """Cancel this context and its descendants.

        Children created with ``with_cancel()`` stay registered on their parent
        until cancelled, so callers should cancel them when done.
        """
        with self._lock:
            if self._error is None:
                self._error = ContextCancelled(reason)
            children = list(self._children)
            self._children.clear()
        self._cancelled.set()
        for child in children:
            child.cancel(reason)
        if self._parent is not None:
            self._parent._detach(self)

    def done(self) -> bool:
        return self.error is not None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or past the deadline; return ``done()``."""
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._cancelled.wait(timeout)
        return self.done()

    def raise_if_done(self) -> None:
        err = self.error
        if err is not None:
            raise err

    def _expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _attach(self, child: Context) -> None:
        with self._lock:
            cancelled = self._cancelled.is_set()
            if not cancelled:
                # Children past their deadline no longer need cancel propagation.
                self._children = [c for c in self._children if not c._expired()]
                self._children.append(child)
        if cancelled:
            child.cancel()

    def _detach(self, child: Context) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)


class ContextCancelled(RuntimeError):
    """Raised when work is abandoned because its context was cancelled."""


class DeadlineExceeded(ContextCancelled, TimeoutError):
    """Raised when a context deadline passes before the work completes."""
