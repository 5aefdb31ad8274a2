from datetime import datetime, timezone

import pytest

from timed_exam.app import create_app
from timed_exam.config import TestConfig
from timed_exam.models import db
from timed_exam.results_store import ResultsStore


class ManualClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class ManualHandle:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Stands in for an event loop's call_later, driven by a ManualClock."""

    def __init__(self, clock):
        self.clock = clock
        self._handles = []
        self._seq = 0

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.clock.now + delay, self._seq, callback, args)
        self._seq += 1
        self._handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds):
        target = self.clock.now + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.clock.now = max(self.clock.now, handle.when)
            handle.callback(*handle.args)
        self.clock.now = target


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store_clock():
    return FixedClock(datetime(2026, 1, 5, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(app, store_clock):
    with app.app_context():
        yield ResultsStore(clock=store_clock)
