from __future__ import annotations

import threading
from typing import Dict


class Metrics:
    """
    In-process counters and gauges.

    Passed into components that accept a metrics capability (anything with
    `inc` and `set_gauge`); nothing reads or writes module-level state.
    """

    def __init__(self, namespace: str = "ctgvault") -> None:
        self._ns = namespace
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}

    def _key(self, name: str) -> str:
        return f"{self._ns}_{name}" if self._ns else name

    def inc(self, name: str, value: int = 1) -> None:
        key = self._key(name)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(value)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[self._key(name)] = float(value)

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(self._key(name), 0)

    def gauge(self, name: str) -> float | None:
        with self._lock:
            return self._gauges.get(self._key(name))

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {"counters": dict(self._counters), "gauges": dict(self._gauges)}
