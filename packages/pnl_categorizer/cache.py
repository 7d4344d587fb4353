"""In-process TTL cache shared by the rate provider and the rule engine.

Entries are immutable snapshots keyed by content, so concurrent batches may
race on ``set``; the last writer wins. The cache is an explicit object passed
into the components that use it, which lets tests inject a fake clock and
inspect or invalidate entries directly.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

from .logging_setup import get_logger

_logger = get_logger("pnl_categorizer.cache")


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """A small thread-safe mapping whose entries expire after ``ttl_sec``.

    Parameters
    ----------
    ttl_sec:
        Lifetime applied by :meth:`set` when no explicit ``ttl_sec`` is given.
    clock:
        Monotonic time source; defaults to :func:`time.monotonic`.
    name:
        Label used in log lines.
    """

    def __init__(
        self,
        ttl_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if ttl_sec <= 0:
            raise ValueError("ttl_sec must be positive")
        self._ttl = float(ttl_sec)
        self._clock = clock
        self._name = name
        self._entries: dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    @property
    def ttl_sec(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                _logger.debug("%s:expired key=%r", self._name, key)
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, *, ttl_sec: float | None = None) -> None:
        ttl = self._ttl if ttl_sec is None else float(ttl_sec)
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            _logger.debug("%s:invalidate key=%r", self._name, key)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for e in self._entries.values() if e.expires_at > now)


__all__ = ["TTLCache"]
