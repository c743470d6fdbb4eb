"""Shared failure counter for one batch."""

from __future__ import annotations

import threading


class ErrorCounter:
    """Counts failed hosts. Safe to increment from any task or thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._count
