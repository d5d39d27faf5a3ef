"""lazycache: lazily constructed, coalesced, idle-expiring cache."""

from .core import (
    ConstructorMissing,
    Context,
    ContextCancelled,
    DeadlineExceeded,
    LazyCache,
    LazyCacheError,
)
from .core.logging_config import configure_logging

configure_logging()

__all__ = [
    "LazyCache",
    "LazyCacheError",
    "ConstructorMissing",
    "Context",
    "ContextCancelled",
    "DeadlineExceeded",
    "configure_logging",
]
__version__ = "0.1.0"
