from poll_scheduler import PollScheduler


def _make(loop, hold=False):
    ticks = []
    poller = PollScheduler(loop, lambda: ticks.append(loop.now()), transition_ms=510, steady_ms=3000, hold_fast=lambda: hold)
    return poller, ticks


def test_unchanged_interval_does_not_push_back_next_tick(loop):
    poller, ticks = _make(loop)
    poller.start()
    loop.advance(0.3)
    poller.use_transition()
    loop.advance(0.3)
    assert len(ticks) == 1


def test_burst_reverts_to_steady(loop):
    poller, _ = _make(loop)
    poller.use_steady()
    poller.burst(2.0)
    assert poller.is_fast
    loop.advance(2.1)
    assert poller.interval_ms == 3000
    assert not poller.is_fast


def test_burst_holds_fast_while_transition_pending(loop):
    poller, _ = _make(loop, hold=True)
    poller.start()
    poller.burst(2.0)
    loop.advance(2.1)
    assert poller.is_fast


def test_use_steady_cancels_burst_revert(loop):
    poller, _ = _make(loop)
    poller.burst(1.0)
    poller.use_steady()
    assert loop.timer_count == 1


def test_stop_removes_all_sources(loop):
    poller, ticks = _make(loop)
    poller.burst(1.0)
    poller.stop()
    assert loop.timer_count == 0
    assert not poller.running
    loop.advance(5.0)
    assert ticks == []


def test_failing_tick_keeps_polling(loop):
    calls = []

    def tick():
        calls.append(1)
        raise RuntimeError("boom")

    poller = PollScheduler(loop, tick, transition_ms=500, steady_ms=3000)
    poller.start()
    loop.advance(1.1)
    assert len(calls) == 2
    assert poller.running
