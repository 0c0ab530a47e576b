import asyncio

import pytest

from crosslink.core.scheduler import AsyncioScheduler, Debouncer, ManualScheduler


def _make_debouncer(delay=0.1):
    scheduler = ManualScheduler()
    delivered = []
    return scheduler, delivered, Debouncer(scheduler, delay, delivered.append)


def test_manual_scheduler_fires_in_due_order():
    scheduler = ManualScheduler()
    calls = []
    scheduler.call_later(0.2, lambda: calls.append("late"))
    scheduler.call_later(0.1, lambda: calls.append("early"))

    assert scheduler.advance(0.05) == 0
    assert scheduler.advance(0.2) == 2
    assert calls == ["early", "late"]
    assert scheduler.now == pytest.approx(0.25)


def test_manual_scheduler_skips_cancelled_timers():
    scheduler = ManualScheduler()
    calls = []
    timer = scheduler.call_later(0.1, lambda: calls.append("x"))
    timer.cancel()

    assert scheduler.pending() == 0
    assert scheduler.advance(1.0) == 0
    assert calls == []


def test_manual_scheduler_survives_failing_callback():
    scheduler = ManualScheduler()
    calls = []

    def boom():
        raise RuntimeError("nope")

    scheduler.call_later(0.1, boom)
    scheduler.call_later(0.1, lambda: calls.append("after"))

    assert scheduler.advance(0.1) == 2
    assert calls == ["after"]


def test_debouncer_delivers_only_latest_payload():
    scheduler, delivered, debouncer = _make_debouncer(0.1)

    debouncer.trigger(1)
    scheduler.advance(0.03)
    debouncer.trigger(2)
    scheduler.advance(0.03)
    debouncer.trigger(3)

    assert delivered == []
    assert debouncer.pending

    scheduler.advance(0.1)
    assert delivered == [3]
    assert not debouncer.pending


def test_debouncer_window_is_fixed_from_first_trigger():
    scheduler, delivered, debouncer = _make_debouncer(0.1)

    debouncer.trigger("a")
    scheduler.advance(0.09)
    debouncer.trigger("b")
    scheduler.advance(0.02)

    assert delivered == ["b"]


def test_debouncer_opens_new_window_after_delivery():
    scheduler, delivered, debouncer = _make_debouncer(0.1)

    debouncer.trigger("a")
    scheduler.advance(0.1)
    debouncer.trigger("b")
    scheduler.advance(0.1)

    assert delivered == ["a", "b"]


def test_debouncer_cancel_drops_pending_payload():
    scheduler, delivered, debouncer = _make_debouncer(0.1)

    debouncer.trigger("a")
    debouncer.cancel()
    scheduler.advance(1.0)

    assert delivered == []


def test_debouncer_zero_delay_is_synchronous():
    scheduler, delivered, debouncer = _make_debouncer(0)

    debouncer.trigger("now")

    assert delivered == ["now"]
    assert scheduler.pending() == 0


def test_asyncio_scheduler_debounces_on_running_loop():
    delivered = []

    async def run():
        debouncer = Debouncer(AsyncioScheduler(), 0.01, delivered.append)
        debouncer.trigger("a")
        debouncer.trigger("b")
        await asyncio.sleep(0.05)

    asyncio.run(run())

    assert delivered == ["b"]
