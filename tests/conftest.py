import pytest


class FakeLoop:
    """
    Manual-clock stand-in for GLibLoop. Timers fire only when ``advance``
    moves time past them; worker-thread tasks run inline; idle callbacks
    queue until the loop is pumped.
    """

    def __init__(self, start=1000.0):
        self.time = float(start)
        self._timers = {}
        self._next_id = 1
        self._idle = []

    def now(self):
        return self.time

    def timeout_add(self, interval_ms, callback, *args):
        source_id = self._next_id
        self._next_id += 1
        self._timers[source_id] = [self.time + interval_ms / 1000.0, interval_ms, callback, args]
        return source_id

    def idle_add(self, callback, *args):
        self._idle.append((callback, args))
        return 0

    def source_remove(self, source_id):
        self._timers.pop(source_id, None)

    def run_in_thread(self, task):
        task()

    @property
    def timer_count(self):
        return len(self._timers)

    def run_idle(self):
        while self._idle:
            callback, args = self._idle.pop(0)
            callback(*args)

    def advance(self, seconds):
        target = self.time + seconds
        self.run_idle()
        while True:
            due = [(t[0], sid) for sid, t in self._timers.items() if t[0] <= target + 1e-9]
            if not due:
                break
            when, sid = min(due)
            self.time = max(self.time, when)
            due_at, interval_ms, callback, args = self._timers[sid]
            keep = callback(*args)
            # A callback may have removed its own source.
            if sid in self._timers:
                if keep:
                    self._timers[sid][0] = due_at + interval_ms / 1000.0
                else:
                    del self._timers[sid]
            self.run_idle()
        self.time = target
        self.run_idle()


@pytest.fixture
def loop():
    return FakeLoop()
