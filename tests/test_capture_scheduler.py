"""Delayed capture task ownership: fire, cancel, supersede."""

import asyncio

from sippay.services.orders.capture import CaptureScheduler


def test_armed_task_fires_after_delay():
    fired = []

    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.01)

        async def capture(transaction_id):
            fired.append(transaction_id)

        task = scheduler.arm("T1", capture)
        assert scheduler.pending("T1")
        await task
        assert not scheduler.pending("T1")

    asyncio.run(scenario())
    assert fired == ["T1"]


def test_cancel_before_firing_prevents_capture():
    fired = []

    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.2)

        async def capture(transaction_id):
            fired.append(transaction_id)

        scheduler.arm("T1", capture)
        assert await scheduler.cancel("T1") is True
        assert not scheduler.pending("T1")
        await asyncio.sleep(0.3)

    asyncio.run(scenario())
    assert fired == []


def test_cancel_without_pending_task_is_a_noop():
    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.01)
        return await scheduler.cancel("unknown")

    assert asyncio.run(scenario()) is False


def test_arming_again_supersedes_previous_task():
    fired = []

    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.05)

        async def first(transaction_id):
            fired.append(("first", transaction_id))

        async def second(transaction_id):
            fired.append(("second", transaction_id))

        old = scheduler.arm("T1", first)
        new = scheduler.arm("T1", second)
        await asyncio.wait({old, new})
        assert old.cancelled()

    asyncio.run(scenario())
    assert fired == [("second", "T1")]


def test_cancel_waits_for_a_capture_already_in_flight():
    events = []

    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.0)
        started = asyncio.Event()

        async def slow_capture(transaction_id):
            started.set()
            await asyncio.sleep(0.05)
            events.append("captured")

        scheduler.arm("T1", slow_capture)
        await started.wait()
        cancelled = await scheduler.cancel("T1")
        events.append("cancel_returned")
        return cancelled

    assert asyncio.run(scenario()) is False
    assert events == ["captured", "cancel_returned"]


def test_failing_callback_is_contained():
    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=0.0)

        async def broken(transaction_id):
            raise RuntimeError("provider down")

        task = scheduler.arm("T1", broken)
        await task
        return task.exception()

    assert asyncio.run(scenario()) is None


def test_shutdown_cancels_everything():
    fired = []

    async def scenario():
        scheduler = CaptureScheduler(delay_seconds=1.0)

        async def capture(transaction_id):
            fired.append(transaction_id)

        scheduler.arm("T1", capture)
        scheduler.arm("T2", capture)
        await scheduler.shutdown()
        assert not scheduler.pending("T1")
        assert not scheduler.pending("T2")

    asyncio.run(scenario())
    assert fired == []
