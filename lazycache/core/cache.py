"""Lazily populated, thread-safe cache with coalesced construction and idle expiry."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import timedelta
from types import TracebackType
from typing import Callable, Generic, Hashable, Optional, TypeVar

from .context import Context
from .utils import parse_duration

logger = logging.getLogger("lazycache.cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_ANY = object()


class _Entry(Generic[V]):
    """One generation of a key: pending, then live, then unlinked.

    ``value``/``error`` are written once, before ``ready`` is set. ``live`` and
    ``deadline`` are only touched while holding the owning cache's lock.
    ``unlinked`` doubles as the watcher's cancellation signal.
    """

    __slots__ = ("value", "error", "traceback", "ready", "unlinked", "live", "deadline")

    def __init__(self) -> None:
        self.value: Optional[V] = None
        self.error: Optional[BaseException] = None
        self.traceback: Optional[TracebackType] = None
        self.ready = threading.Event()
        self.unlinked = threading.Event()
        self.live = False
        self.deadline: Optional[float] = None

    def result(self) -> V:
        self.ready.wait()
        if self.error is not None:
            # Every waiter starts from the constructor's traceback, not the last raise.
            raise self.error.with_traceback(self.traceback)
        return self.value  # type: ignore[return-value]


class LazyCache(Generic[K, V]):
    """Key/value cache whose values are built on first request.

    Concurrent requests for an absent key share a single constructor call.
    With a non-zero ``lifetime`` (seconds), an entry that is not requested for
    that long is removed; every request for a live key restarts its idle timer.
    ``on_delete(key, value)`` runs once for every successfully constructed
    entry when it leaves the cache, whether by expiry or :meth:`delete`.

    Waiting callers are not released early when their own context is
    cancelled: the context is handed to the constructor, and only deletion or
    expiry ends an entry. A caller that needs to bound its wait should bound
    the constructor through the context it passes in.

    Args:
        lifetime: Idle lifetime (seconds, ``timedelta`` or ``"10s"``); 0 disables expiry.
        on_delete: Optional callback invoked outside the lock after removal.
    """

    def __init__(
        self,
        lifetime: float | timedelta | str = 0,
        on_delete: Optional[Callable[[K, V], None]] = None,
    ):
        self._lifetime = parse_duration(lifetime)
        self.on_delete = on_delete
        self._entries: dict[K, _Entry[V]] = {}
        self._lock = threading.Lock()

    @property
    def lifetime(self) -> float:
        return self._lifetime

    @lifetime.setter
    def lifetime(self, value: float | timedelta | str) -> None:
        seconds = parse_duration(value)
        with self._lock:
            self._lifetime = seconds

    def get_or_construct(
        self,
        ctx: Optional[Context],
        key: K,
        constructor: Optional[Callable[[Context, K], V]],
    ) -> V:
        """Return the value for ``key``, constructing it if absent.

        Exceptions raised by ``constructor`` are re-raised unchanged to every
        caller waiting on that attempt and are never cached.
        """
        if constructor is None:
            raise ConstructorMissing("constructor not provided")
        if ctx is None:
            ctx = Context.background()

        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = _Entry()
                self._entries[key] = entry
            elif entry.deadline is not None and self._lifetime:
                entry.deadline = time.monotonic() + self._lifetime

        if not owner:
            return entry.result()
        return self._construct(ctx, key, constructor, entry)

    async def aget_or_construct(
        self,
        ctx: Optional[Context],
        key: K,
        constructor: Optional[Callable[[Context, K], V]],
    ) -> V:
        return await asyncio.to_thread(self.get_or_construct, ctx, key, constructor)

    def delete(self, key: K, expected: object = _ANY) -> bool:
        """Remove ``key``; returns False when nothing was removed.

        With ``expected``, the entry is removed only if it is live and holds
        exactly that value, so a caller discarding a broken value cannot evict
        a newer generation someone else has already built.

        Deleting an entry that is still being constructed unlinks it at once;
        its ``on_delete`` call is then made by the constructing caller once the
        value exists, and skipped if construction fails.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if expected is not _ANY and not (entry.live and entry.value is expected):
                return False
            del self._entries[key]
            entry.unlinked.set()
            live = entry.live

        logger.debug("Deleted %r", key)
        if live:
            self._notify_deleted(key, entry.value)  # type: ignore[arg-type]
        return True

    def clear(self) -> None:
        """Delete every key currently in the cache.

        Every key is removed even when ``on_delete`` raises; the first such
        error is re-raised once all keys are gone.
        """
        with self._lock:
            keys = list(self._entries)
        first_error: Exception | None = None
        for key in keys:
            try:
                self.delete(key)
            except Exception as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def _construct(
        self,
        ctx: Context,
        key: K,
        constructor: Callable[[Context, K], V],
        entry: _Entry[V],
    ) -> V:
        logger.debug("Constructing %r", key)
        try:
            value = constructor(ctx, key)
        except BaseException as exc:
            with self._lock:
                self._unlink(key, entry)
            entry.error = exc
            entry.traceback = exc.__traceback__
            entry.ready.set()
            raise

        watch = False
        with self._lock:
            entry.value = value
            orphaned = entry.unlinked.is_set()
            if not orphaned:
                entry.live = True
                if self._lifetime:
                    entry.deadline = time.monotonic() + self._lifetime
                    watch = True
        entry.ready.set()

        if orphaned:
            logger.debug("%r was deleted during construction", key)
            self._notify_deleted(key, value)
        elif watch:
            threading.Thread(
                target=self._watch,
                args=(key, entry),
                name=f"lazycache-expiry-{key!r}",
                daemon=True,
            ).start()
        return value

    def _watch(self, key: K, entry: _Entry[V]) -> None:
        while True:
            with self._lock:
                if entry.unlinked.is_set():
                    return
                remaining = entry.deadline - time.monotonic()  # type: ignore[operator]
                if remaining <= 0:
                    self._unlink(key, entry)
                    break
            if entry.unlinked.wait(remaining):
                return

        logger.debug("Expired %r after %.3fs idle", key, self._lifetime)
        try:
            self._notify_deleted(key, entry.value)  # type: ignore[arg-type]
        except Exception as exc:
            logger.warning("on_delete for expired %r raised: %s", key, exc)

    def _unlink(self, key: K, entry: _Entry[V]) -> None:
        # Caller holds self._lock. Only the generation that owns ``entry`` is removed.
        entry.unlinked.set()
        if self._entries.get(key) is entry:
            del self._entries[key]

    def _notify_deleted(self, key: K, value: V) -> None:
        callback = self.on_delete
        if callback is not None:
            callback(key, value)


class LazyCacheError(Exception):
    """Base class for lazycache errors."""


class ConstructorMissing(LazyCacheError):
    """Raised when ``get_or_construct`` is called without a constructor."""
