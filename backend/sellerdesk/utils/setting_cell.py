from __future__ import annotations

import threading
import time
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

_UNSET = object()


class SettingCell(Generic[T]):
    """Lazily loaded value with an optional TTL and explicit invalidation.

    Owned by whoever creates it (the app factory stores one per app), so
    tests and multiple apps in one process never share a cached value.
    """

    def __init__(self, loader: Callable[[], T], *, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._ttl = float(ttl_seconds) if ttl_seconds else None
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Any = _UNSET
        self._loaded_at = 0.0

    def _fresh(self) -> bool:
        if self._value is _UNSET:
            return False
        if self._ttl is None:
            return True
        return (self._clock() - self._loaded_at) < self._ttl

    def get(self) -> T:
        with self._lock:
            if self._fresh():
                return self._value
        value = self._loader()
        with self._lock:
            self._value = value
            self._loaded_at = self._clock()
        return value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._loaded_at = self._clock()

    def invalidate(self) -> None:
        with self._lock:
            self._value = _UNSET
            self._loaded_at = 0.0

    def refresh(self) -> T:
        self.invalidate()
        return self.get()

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._value is not _UNSET
