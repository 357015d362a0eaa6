import asyncio

from aura_runner.runner.lockdown import Lockdown
from aura_runner.runner.notifications import Notifier


class DeniedFullscreen:
    async def request_fullscreen(self):
        raise PermissionError("fullscreen requires a user gesture")

    async def exit_fullscreen(self):
        raise AssertionError("never entered fullscreen")


class TestNotifier:
    def test_subscribers_see_notify_and_dismiss(self):
        async def scenario():
            notifier = Notifier()
            queue = notifier.subscribe()
            toast = notifier.error("Error submitting exam")
            notifier.dismiss(toast.id)
            notifier.dismiss(toast.id)
            events = [queue.get_nowait() for _ in range(queue.qsize())]
            return toast, events, notifier.active

        toast, events, active = asyncio.run(scenario())
        assert events == [
            {"event": "notify", "id": toast.id, "kind": "error", "message": "Error submitting exam", "ttl": None},
            {"event": "dismiss", "id": toast.id},
        ]
        assert active == []

    def test_ttl_expires(self):
        async def scenario():
            notifier = Notifier()
            notifier.warning("5 minutes remaining!", ttl=0.01)
            notifier.success("Exam submitted successfully")
            await asyncio.sleep(0.05)
            return [n.message for n in notifier.active], len(notifier.history)

        assert asyncio.run(scenario()) == (["Exam submitted successfully"], 2)

    def test_unsubscribed_queue_gets_nothing(self):
        async def scenario():
            notifier = Notifier()
            queue = notifier.subscribe()
            notifier.unsubscribe(queue)
            notifier.info("AI teacher feedback generated successfully!")
            return queue.empty()

        assert asyncio.run(scenario()) is True


class TestLockdown:
    def test_inactive_lockdown_suppresses_nothing(self):
        lockdown = Lockdown()
        assert lockdown.should_suppress("contextmenu") is False
        assert lockdown.should_suppress("keydown", "c", ctrl=True) is False

    def test_engaged_lockdown(self):
        lockdown = Lockdown()
        asyncio.run(lockdown.engage())
        assert lockdown.is_fullscreen is False
        assert lockdown.should_suppress("contextmenu")
        assert lockdown.should_suppress("paste")
        assert lockdown.should_suppress("keydown", "a", meta=True)
        assert lockdown.should_suppress("keydown", "V", ctrl=True)
        assert not lockdown.should_suppress("keydown", "x", ctrl=True)
        assert not lockdown.should_suppress("keydown", "c")

        asyncio.run(lockdown.release())
        assert not lockdown.should_suppress("copy")

    def test_denied_fullscreen_still_engages(self):
        lockdown = Lockdown(DeniedFullscreen())
        asyncio.run(lockdown.engage())
        assert lockdown.engaged
        assert lockdown.is_fullscreen is False
        asyncio.run(lockdown.release())
        assert not lockdown.engaged
