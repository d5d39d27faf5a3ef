from .cache import ConstructorMissing, LazyCache, LazyCacheError
from .context import Context, ContextCancelled, DeadlineExceeded

__all__ = [
    "LazyCache",
    "LazyCacheError",
    "ConstructorMissing",
    "Context",
    "ContextCancelled",
    "DeadlineExceeded",
]
