import asyncio

from auroraguard.scheduler import LoopScheduler, VirtualScheduler


def test_virtual_scheduler_fires_in_due_order():
    s = VirtualScheduler()
    fired = []
    s.call_later(2.0, lambda: fired.append("b"))
    s.call_later(1.0, lambda: fired.append("a"))
    assert s.advance(0.5) == 0
    assert s.advance(2.0) == 2
    assert fired == ["a", "b"]
    assert s.now() == 2.5


def test_virtual_scheduler_cancel():
    s = VirtualScheduler()
    fired = []
    handle = s.call_later(1.0, lambda: fired.append(1))
    assert s.pending == 1
    handle.cancel()
    assert handle.cancelled
    assert s.pending == 0
    assert s.advance(5.0) == 0
    assert fired == []


def test_virtual_scheduler_timer_scheduled_from_callback():
    s = VirtualScheduler()
    fired = []

    def first():
        fired.append("first")
        s.call_later(1.0, lambda: fired.append("second"))

    s.call_later(1.0, first)
    s.advance(3.0)
    assert fired == ["first", "second"]


def test_loop_scheduler_call_later_and_cancel():
    async def scenario():
        s = LoopScheduler()
        fired = []
        s.call_later(0.01, lambda: fired.append("kept"))
        s.call_later(0.01, lambda: fired.append("cancelled")).cancel()
        await asyncio.sleep(0.05)
        return fired

    assert asyncio.run(scenario()) == ["kept"]
