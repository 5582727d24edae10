"""Single-threaded tick scheduler backed by a min-heap of due times."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger("configflow.scheduler")

Clock = Callable[[], datetime]

# Upper bound on one sleep so stop requests are noticed promptly
MAX_IDLE_SECONDS = 1.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ScheduledTask:
    """A queued unit of work. Periodic tasks carry an ``interval``."""

    name: str
    due_at: datetime
    fn: Callable[..., Any]
    interval: timedelta | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def periodic(self) -> bool:
        return self.interval is not None


class Scheduler:
    """Runs periodic ticks and one-shot deferred tasks in due order.

    Tasks execute on the caller's thread inside ``run_pending``. Periodic
    tasks receive ``now``; one-shot tasks receive ``now`` plus their payload
    as keyword arguments.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or utc_now
        self._heap: list[tuple[datetime, int, ScheduledTask]] = []
        self._seq = itertools.count()
        self._closed = False

    def _push(self, task: ScheduledTask) -> ScheduledTask:
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")
        heapq.heappush(self._heap, (task.due_at, next(self._seq), task))
        return task

    def every(
        self,
        name: str,
        interval: timedelta | float,
        fn: Callable[[datetime], Any],
        start: datetime | None = None,
    ) -> ScheduledTask:
        """Register a periodic tick. First run is one interval after ``start``."""
        if not isinstance(interval, timedelta):
            interval = timedelta(seconds=interval)
        if interval <= timedelta(0):
            raise ValueError(f"Interval for {name} must be positive")
        first = (start or self.clock()) + interval
        return self._push(ScheduledTask(name=name, due_at=first, fn=fn, interval=interval))

    def call_at(
        self,
        name: str,
        due_at: datetime,
        fn: Callable[..., Any],
        payload: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Register a one-shot task that fires once ``due_at`` has passed."""
        return self._push(
            ScheduledTask(name=name, due_at=due_at, fn=fn, payload=dict(payload or {}))
        )

    def cancel(self, name: str) -> int:
        """Cancel queued tasks called ``name``. Returns how many were cancelled."""
        cancelled = 0
        for _, _, task in self._heap:
            if task.name == name and not task.cancelled:
                task.cancelled = True
                cancelled += 1
        return cancelled

    def next_due(self) -> datetime | None:
        for due_at, _, task in sorted(self._heap):
            if not task.cancelled:
                return due_at
        return None

    def run_pending(self, now: datetime | None = None) -> int:
        """Run every task due at ``now``. Returns the number executed."""
        now = now or self.clock()
        ran = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, task = heapq.heappop(self._heap)
            if task.cancelled:
                continue
            try:
                if task.periodic:
                    task.fn(now)
                else:
                    task.fn(now, **task.payload)
            except Exception:
                logger.exception("Task %s failed", task.name)
            ran += 1
            if task.periodic and not self._closed:
                # Skip missed intervals rather than replaying them
                task.due_at = task.due_at + task.interval
                while task.due_at <= now:
                    task.due_at += task.interval
                self._push(task)
        return ran

    def run_forever(self, stop_event: threading.Event) -> None:
        """Run until ``stop_event`` is set, sleeping until the next due time."""
        logger.info("Scheduler running with %d tasks", len(self._heap))
        while not stop_event.is_set():
            self.run_pending()
            due = self.next_due()
            if due is None:
                wait = MAX_IDLE_SECONDS
            else:
                wait = min(MAX_IDLE_SECONDS, max(0.0, (due - self.clock()).total_seconds()))
            stop_event.wait(wait)
        logger.info("Scheduler stopped")

    def pending(self) -> list[ScheduledTask]:
        return [t for _, _, t in sorted(self._heap) if not t.cancelled]

    def shutdown(self) -> list[ScheduledTask]:
        """Drop every queued task. Returns the abandoned one-shot tasks."""
        abandoned = [t for t in self.pending() if not t.periodic]
        self._heap.clear()
        self._closed = True
        for task in abandoned:
            logger.warning("Abandoned %s (was due %s)", task.name, task.due_at.isoformat())
        return abandoned

    def __len__(self) -> int:
        return len(self.pending())
