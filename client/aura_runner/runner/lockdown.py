"""
Exam lockdown: fullscreen request plus context-menu / clipboard suppression.

This is a UX deterrent only. Everything here runs on the candidate's machine
and is trivially bypassed; exam integrity has to be enforced by the server
or a native sandbox, never by this module.
"""

import logging
from typing import Protocol


logger = logging.getLogger(__name__)

SUPPRESSED_SHORTCUT_KEYS = frozenset({"c", "v", "a"})


class FullscreenController(Protocol):
    async def request_fullscreen(self) -> bool: ...

    async def exit_fullscreen(self) -> None: ...


class NullFullscreen:
    """Used when no front end is attached; fullscreen is simply unavailable."""

    async def request_fullscreen(self) -> bool:
        return False

    async def exit_fullscreen(self) -> None:
        return None


class Lockdown:
    def __init__(self, fullscreen: FullscreenController | None = None) -> None:
        self._fullscreen = fullscreen or NullFullscreen()
        self.engaged = False
        self.is_fullscreen = False

    async def engage(self) -> None:
        self.engaged = True
        try:
            self.is_fullscreen = bool(await self._fullscreen.request_fullscreen())
        except Exception as exc:
            # denial is expected (user gesture required, unsupported, ...)
            logger.info("Fullscreen request refused", extra={"error": str(exc)})
            self.is_fullscreen = False
        if not self.is_fullscreen:
            logger.debug("Continuing without fullscreen")

    async def release(self) -> None:
        if not self.engaged and not self.is_fullscreen:
            return
        self.engaged = False
        if self.is_fullscreen:
            try:
                await self._fullscreen.exit_fullscreen()
            except Exception as exc:
                logger.info("Fullscreen exit failed", extra={"error": str(exc)})
            self.is_fullscreen = False

    def should_suppress(
        self,
        event_type: str,
        key: str | None = None,
        ctrl: bool = False,
        meta: bool = False,
    ) -> bool:
        if not self.engaged:
            return False
        if event_type in ("contextmenu", "copy", "paste"):
            return True
        if event_type == "keydown" and (ctrl or meta):
            return (key or "").lower() in SUPPRESSED_SHORTCUT_KEYS
        return False
