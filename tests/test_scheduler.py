"""Tests for the background alert scheduler."""
import pytest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from monitor.scheduler import AlertScheduler
from models.enums import FrequencyBucket


class MockDispatcher:
    def send_digest(self, user_id, channel, subject, text):
        return True


class MockEngine:
    def __init__(self, users=("u1", "u2"), fail_for=()):
        self.users = list(users)
        self.fail_for = set(fail_for)
        self.resolved_for = []
        self.dispatcher = MockDispatcher()

    def known_users(self):
        return self.users

    def auto_resolve_alerts(self, user_id):
        if user_id in self.fail_for:
            raise RuntimeError("db locked")
        self.resolved_for.append(user_id)
        return ["x"]


class MockDigestQueue:
    def __init__(self, fail=False):
        self.flushed = []
        self.fail = fail

    def flush(self, bucket, send):
        if self.fail:
            raise RuntimeError("queue unavailable")
        self.flushed.append(bucket)
        return 2


def test_registers_jobs():
    sched = AlertScheduler(MockEngine(), MockDigestQueue(), {"weekly_digest_day": "Monday"})
    sched._register_jobs()
    assert len(sched.jobs) == 3


def test_without_digest_queue_only_auto_resolves():
    sched = AlertScheduler(MockEngine())
    sched._register_jobs()
    assert len(sched.jobs) == 1
    assert sched.flush_job(FrequencyBucket.DAILY) == 0


def test_invalid_weekday():
    sched = AlertScheduler(MockEngine(), MockDigestQueue(), {"weekly_digest_day": "someday"})
    with pytest.raises(ValueError):
        sched._register_jobs()


def test_auto_resolve_job_covers_every_user():
    engine = MockEngine(users=["u1", "u2", "u3"], fail_for=["u2"])
    total = AlertScheduler(engine).auto_resolve_job()
    assert engine.resolved_for == ["u1", "u3"]
    assert total == 2


def test_flush_job():
    queue = MockDigestQueue()
    sched = AlertScheduler(MockEngine(), queue)
    assert sched.flush_job(FrequencyBucket.WEEKLY) == 2
    assert queue.flushed == [FrequencyBucket.WEEKLY]


def test_flush_job_failure_is_logged_not_raised():
    sched = AlertScheduler(MockEngine(), MockDigestQueue(fail=True))
    assert sched.flush_job(FrequencyBucket.DAILY) == 0
    assert sched._consecutive_failures == 1


def test_stop_clears_jobs():
    sched = AlertScheduler(MockEngine(), MockDigestQueue())
    sched._register_jobs()
    sched.stop()
    assert sched.jobs == []
