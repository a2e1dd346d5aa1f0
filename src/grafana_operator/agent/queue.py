"""
Work queue.

A delayed, de-duplicating queue of reconcile requests.

Rules
A request is queued at most once. Adding it again keeps the earlier due time.
Failed requests back off exponentially per request until forget is called.
Entries in the heap can go stale when a request is re-added earlier, so pop
checks each entry against the authoritative due map.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from grafana_operator.core.types import ObjectKey, ResourceKind


@dataclass(frozen=True, order=True)
class ReconcileRequest:
    kind: ResourceKind
    key: ObjectKey

    def __str__(self) -> str:
        return f"{self.kind.value} {self.key}"


class WorkQueue:
    def __init__(
        self,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base = backoff_base_seconds
        self._max = backoff_max_seconds
        self._clock = clock
        self._heap: list[tuple[float, int, ReconcileRequest]] = []
        self._due: dict[ReconcileRequest, float] = {}
        self._failures: dict[ReconcileRequest, int] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._wakeup = threading.Event()

    def add(self, request: ReconcileRequest, delay: float = 0.0) -> None:
        """Queue request after delay seconds, unless it is already due sooner."""
        due = self._clock() + max(0.0, delay)
        with self._lock:
            current = self._due.get(request)
            if current is not None and current <= due:
                return
            self._due[request] = due
            heapq.heappush(self._heap, (due, next(self._seq), request))
        self._wakeup.set()

    def add_rate_limited(self, request: ReconcileRequest) -> float:
        """Queue request with exponential backoff and return the delay used."""
        with self._lock:
            failures = self._failures.get(request, 0)
            self._failures[request] = failures + 1
        delay = min(self._max, self._base * (2**failures))
        self.add(request, delay)
        return delay

    def forget(self, request: ReconcileRequest) -> None:
        """Reset the backoff for request."""
        with self._lock:
            self._failures.pop(request, None)

    def failures(self, request: ReconcileRequest) -> int:
        with self._lock:
            return self._failures.get(request, 0)

    def pop_due(self, now: float | None = None) -> ReconcileRequest | None:
        """Remove and return the earliest request that is due, or None."""
        now = self._clock() if now is None else now
        with self._lock:
            while self._heap:
                due, _, request = self._heap[0]
                if self._due.get(request) != due:
                    heapq.heappop(self._heap)
                    continue
                if due > now:
                    return None
                heapq.heappop(self._heap)
                del self._due[request]
                return request
            return None

    def next_due(self) -> float | None:
        """Clock time of the earliest queued request, None when empty."""
        with self._lock:
            return min(self._due.values()) if self._due else None

    def wake(self) -> None:
        """Release a blocked wait without adding anything."""
        self._wakeup.set()

    def wait(self, timeout: float) -> None:
        """Block up to timeout seconds or until something is added."""
        self._wakeup.wait(timeout)
        self._wakeup.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._due)

    def __contains__(self, request: object) -> bool:
        with self._lock:
            return request in self._due
