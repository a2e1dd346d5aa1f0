"""
Reconcile context.

A context travels with one reconcile invocation. It carries a cancellation
flag the scheduler can set from another thread and an optional deadline.

Checks happen at safe points: before reading the store and before calling the
remote platform. Timeouts for blocking calls are clipped to the remaining time.
A caller blocked on an in flight call registers an event with watch, and cancel
sets it so the caller wakes up immediately.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from grafana_operator.core.errors import ReconcileCancelled


@dataclass
class ReconcileContext:
    deadline: float | None = None
    clock: Callable[[], float] = time.monotonic
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    _watchers: list[threading.Event] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> ReconcileContext:
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            watchers = list(self._watchers)
        for event in watchers:
            event.set()

    def watch(self, event: threading.Event) -> None:
        """Set event when the context is cancelled, now or later."""
        with self._lock:
            self._watchers.append(event)
            cancelled = self._cancelled.is_set()
        if cancelled:
            event.set()

    def unwatch(self, event: threading.Event) -> None:
        with self._lock:
            if event in self._watchers:
                self._watchers.remove(event)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ReconcileCancelled("reconcile cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ReconcileCancelled("reconcile deadline exceeded")

    def timeout(self, upper_bound: float) -> float:
        """Timeout for a blocking call, never above upper_bound or the remaining time."""
        remaining = self.remaining()
        if remaining is None:
            return upper_bound
        return min(upper_bound, remaining)
