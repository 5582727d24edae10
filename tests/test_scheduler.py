"""Tests for the tick scheduler."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from configflow.core.scheduler import Scheduler

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _scheduler():
    return Scheduler(clock=lambda: T0)


class TestPeriodic:
    def test_first_run_after_one_interval(self):
        sched = _scheduler()
        calls = []
        sched.every("tick", 10, calls.append)

        assert sched.run_pending(T0 + timedelta(seconds=9)) == 0
        assert sched.run_pending(T0 + timedelta(seconds=10)) == 1
        assert calls == [T0 + timedelta(seconds=10)]
        assert sched.next_due() == T0 + timedelta(seconds=20)

    def test_missed_intervals_are_skipped(self):
        sched = _scheduler()
        calls = []
        sched.every("tick", timedelta(seconds=10), calls.append)

        sched.run_pending(T0 + timedelta(seconds=35))

        assert len(calls) == 1
        assert sched.next_due() == T0 + timedelta(seconds=40)

    def test_non_positive_interval(self):
        with pytest.raises(ValueError):
            _scheduler().every("tick", 0, lambda now: None)

    def test_failure_does_not_stop_schedule(self):
        sched = _scheduler()

        def boom(now):
            raise RuntimeError("tick failed")

        sched.every("bad", 10, boom)
        assert sched.run_pending(T0 + timedelta(seconds=10)) == 1
        assert len(sched) == 1


class TestOneShot:
    def test_payload_passed_as_kwargs(self):
        sched = _scheduler()
        seen = {}

        def handler(now, session_id, backup_id):
            seen.update(now=now, session_id=session_id, backup_id=backup_id)

        sched.call_at("validate", T0 + timedelta(minutes=2), handler, {"session_id": "s1", "backup_id": "b1"})
        sched.run_pending(T0 + timedelta(minutes=3))

        assert seen == {"now": T0 + timedelta(minutes=3), "session_id": "s1", "backup_id": "b1"}
        assert len(sched) == 0

    def test_due_order(self):
        sched = _scheduler()
        order = []
        sched.call_at("late", T0 + timedelta(seconds=20), lambda now: order.append("late"))
        sched.call_at("early", T0 + timedelta(seconds=5), lambda now: order.append("early"))
        sched.call_at("tie", T0 + timedelta(seconds=5), lambda now: order.append("tie"))

        sched.run_pending(T0 + timedelta(seconds=30))

        assert order == ["early", "tie", "late"]

    def test_cancelled_tasks_skipped(self):
        sched = _scheduler()
        calls = []
        task = sched.call_at("x", T0, lambda now: calls.append(now))
        task.cancelled = True
        assert sched.run_pending(T0) == 0
        assert sched.next_due() is None

    def test_cancel_by_name(self):
        sched = _scheduler()
        calls = []
        sched.call_at("validate:s1", T0, lambda now: calls.append("s1"))
        sched.call_at("validate:s2", T0, lambda now: calls.append("s2"))

        assert sched.cancel("validate:s1") == 1
        assert sched.cancel("validate:s1") == 0
        assert [t.name for t in sched.pending()] == ["validate:s2"]
        assert sched.run_pending(T0) == 1
        assert calls == ["s2"]


class TestShutdown:
    def test_returns_abandoned_one_shots(self):
        sched = _scheduler()
        sched.every("tick", 10, lambda now: None)
        sched.call_at("validate:s1", T0 + timedelta(minutes=2), lambda now: None)

        abandoned = sched.shutdown()

        assert [t.name for t in abandoned] == ["validate:s1"]
        assert len(sched) == 0
        with pytest.raises(RuntimeError):
            sched.call_at("late", T0, lambda now: None)

    def test_run_forever_exits_on_stop(self):
        sched = Scheduler()
        stop = threading.Event()
        calls = []

        def tick(now):
            calls.append(now)
            stop.set()

        sched.call_at("once", datetime.now(timezone.utc), tick)
        worker = threading.Thread(target=sched.run_forever, args=(stop,))
        worker.start()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(calls) == 1
