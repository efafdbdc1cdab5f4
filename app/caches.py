"""Process-wide TTL caches shared across requests."""

import threading
import time
from typing import Callable, Generic, Optional, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="caches")

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Thread-safe single-value cache that keeps serving its last good value.

    The loader is called when the value is older than ``ttl_seconds``. Only one
    thread runs the loader at a time; while it does, other readers get the
    stale value instead of waiting. Before the first successful load there is
    nothing to serve, so readers queue behind the loading thread.

    If the loader raises and a previous value exists, the previous value is
    returned and the next refresh is attempted on the following read.
    """

    def __init__(self, loader: Callable[[], T], ttl_seconds: float, *, name: str = "cache",
                 clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize with a loader, a TTL (seconds) and an injectable monotonic clock."""
        self._loader = loader
        self.ttl = ttl_seconds
        self.name = name
        self._clock = clock
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None
        # _state_lock guards _value/_loaded_at; _refresh_lock is held for the whole load.
        self._state_lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    def _fresh(self) -> bool:
        """Return True if a cached value exists and is within TTL."""
        if self._loaded_at is None:
            return False
        return self._clock() - self._loaded_at < self.ttl

    def get(self) -> T:
        """Return the cached value, refreshing it when stale."""
        with self._state_lock:
            if self._fresh():
                return self._value  # type: ignore[return-value]
            has_value = self._loaded_at is not None
            stale = self._value

        if not self._refresh_lock.acquire(blocking=not has_value):
            logger.debug("Refresh in progress; serving stale value", extra={"cache": self.name})
            return stale  # type: ignore[return-value]
        try:
            with self._state_lock:
                if self._fresh():
                    return self._value  # type: ignore[return-value]
                has_value = self._loaded_at is not None
                stale = self._value
            try:
                value = self._loader()
            except Exception as exc:
                if not has_value:
                    raise
                logger.warning("Cache refresh failed; serving last good value",
                               extra={"cache": self.name, "error": str(exc)})
                return stale  # type: ignore[return-value]
            with self._state_lock:
                self._value = value
                self._loaded_at = self._clock()
            logger.debug("Cache refreshed", extra={"cache": self.name})
            return value
        finally:
            self._refresh_lock.release()
