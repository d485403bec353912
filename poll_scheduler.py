import logging

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    Repeating re-evaluation timer with two speeds.

    Polling alone is enough to follow the player; push notifications and log
    hints only make it faster for a while (``burst``).
    """

    def __init__(self, loop, tick, transition_ms=510, steady_ms=3000, hold_fast=None):
        self.loop = loop
        self.tick = tick
        self.transition_ms = int(transition_ms)
        self.steady_ms = int(steady_ms)
        # Asked before a burst reverts; True keeps the fast interval.
        self.hold_fast = hold_fast
        self.interval_ms = 0
        self._source = 0
        self._revert_source = 0

    @property
    def running(self):
        return bool(self._source)

    @property
    def is_fast(self):
        return self.running and self.interval_ms == self.transition_ms

    def set_interval(self, interval_ms):
        interval_ms = int(interval_ms)
        # Re-arming an unchanged timer would push the next tick back every
        # time a hint arrives; under a chatty log the tick would never fire.
        if self._source and interval_ms == self.interval_ms:
            return
        if self._source:
            self.loop.source_remove(self._source)
        self.interval_ms = interval_ms
        self._source = self.loop.timeout_add(interval_ms, self._on_tick)
        logger.debug("Poll interval -> %sms", interval_ms)

    def use_transition(self):
        self.set_interval(self.transition_ms)

    def use_steady(self):
        self._cancel_revert()
        self.set_interval(self.steady_ms)

    def start(self):
        self.use_transition()

    def burst(self, seconds):
        self.use_transition()
        self._cancel_revert()
        self._revert_source = self.loop.timeout_add(int(float(seconds) * 1000), self._on_burst_end)

    def stop(self):
        self._cancel_revert()
        if self._source:
            self.loop.source_remove(self._source)
            self._source = 0
        self.interval_ms = 0

    def _cancel_revert(self):
        if self._revert_source:
            self.loop.source_remove(self._revert_source)
            self._revert_source = 0

    def _on_burst_end(self):
        self._revert_source = 0
        if not self._source:
            return False
        if callable(self.hold_fast) and self.hold_fast():
            return False
        self.set_interval(self.steady_ms)
        return False

    def _on_tick(self):
        try:
            self.tick()
        except Exception:
            # A failing check must not kill the timer; next tick retries.
            logger.exception("Poll tick failed")
        return True
