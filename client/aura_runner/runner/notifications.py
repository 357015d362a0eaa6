import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Literal


logger = logging.getLogger(__name__)

NotificationKind = Literal["success", "info", "warning", "error"]

_ids = itertools.count(1)


@dataclass
class Notification:
    kind: NotificationKind
    message: str
    ttl: float | None = None
    id: int = field(default_factory=lambda: next(_ids))

    def to_dict(self) -> dict:
        return {"id": self.id, "kind": self.kind, "message": self.message, "ttl": self.ttl}


class Notifier:
    """Toast-style notifications for one exam session.

    Subscribers get ``{"event": "notify" | "dismiss", ...}`` dicts on their
    queue. A notification with a ttl is dismissed automatically once it
    expires; without one it stays until ``dismiss`` is called.
    """

    def __init__(self) -> None:
        self._active: dict[int, Notification] = {}
        self._subscribers: list[asyncio.Queue] = []
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self.history: list[Notification] = []

    @property
    def active(self) -> list[Notification]:
        return list(self._active.values())

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def notify(self, kind: NotificationKind, message: str, ttl: float | None = None) -> Notification:
        notification = Notification(kind=kind, message=message, ttl=ttl)
        self._active[notification.id] = notification
        self.history.append(notification)
        self._publish({"event": "notify", **notification.to_dict()})
        if ttl is not None:
            loop = asyncio.get_running_loop()
            self._timers[notification.id] = loop.call_later(ttl, self.dismiss, notification.id)
        logger.debug("Notification raised", extra={"kind": kind, "text": message})
        return notification

    def success(self, message: str, ttl: float | None = None) -> Notification:
        return self.notify("success", message, ttl)

    def info(self, message: str, ttl: float | None = None) -> Notification:
        return self.notify("info", message, ttl)

    def warning(self, message: str, ttl: float | None = None) -> Notification:
        return self.notify("warning", message, ttl)

    def error(self, message: str, ttl: float | None = None) -> Notification:
        return self.notify("error", message, ttl)

    def dismiss(self, notification_id: int) -> None:
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()
        if self._active.pop(notification_id, None) is not None:
            self._publish({"event": "dismiss", "id": notification_id})

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _publish(self, event: dict) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)
