"""Shared ``requests`` sessions per origin, closed after an idle period."""

from __future__ import annotations

import logging
from typing import Any

import requests

from lazycache.core.cache import LazyCache
from lazycache.core.context import Context
from lazycache.core.retry import retry
from lazycache.core.utils import lifetime_from_env, origin_of

logger = logging.getLogger("lazycache.sessions")

DEFAULT_HEADERS = {"User-Agent": "lazycache/0.1"}


class SessionPool:
    """Lazily opens one :class:`requests.Session` per ``scheme://host[:port]``."""

    def __init__(
        self,
        lifetime: float | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ):
        if lifetime is None:
            lifetime = lifetime_from_env(default=300.0)
        self.timeout = timeout
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.cache: LazyCache[str, requests.Session] = LazyCache(lifetime, on_delete=self._close_session)

    def session_for(self, url: str, ctx: Context | None = None) -> requests.Session:
        return self.cache.get_or_construct(ctx, origin_of(url), self._open_session)

    @retry(max_attempts=2, base_delay=0.1, retryable=(requests.ConnectionError,))
    def get(self, url: str, ctx: Context | None = None, **kwargs: Any) -> requests.Response:
        origin = origin_of(url)
        session = self.session_for(url, ctx)
        timeout = kwargs.pop("timeout", None)
        if timeout is None and ctx is not None:
            timeout = ctx.remaining()
        if timeout is None:
            timeout = self.timeout
        try:
            return session.get(url, timeout=timeout, **kwargs)
        except requests.ConnectionError:
            self.cache.delete(origin, expected=session)
            raise

    def close(self) -> None:
        self.cache.clear()

    def __enter__(self) -> SessionPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _open_session(self, ctx: Context, origin: str) -> requests.Session:
        ctx.raise_if_done()
        logger.info("Opening session for %s", origin)
        session = requests.Session()
        session.headers.update(self.headers)
        return session

    @staticmethod
    def _close_session(origin: str, session: requests.Session) -> None:
        logger.info("Closing idle session for %s", origin)
        session.close()
