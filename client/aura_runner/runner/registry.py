import asyncio
import logging
import time
from typing import Callable

from aura_runner.core.api_client import ApiClient
from aura_runner.core.config import settings
from aura_runner.core.errors import SessionNotFound, StartError
from aura_runner.runner.lockdown import FullscreenController, Lockdown
from aura_runner.runner.notifications import Notifier
from aura_runner.runner.session import ExamSession, Navigator, SessionState


logger = logging.getLogger(__name__)

LIVE_STATES = (SessionState.ACTIVE, SessionState.SUBMITTING)


class RunnerRegistry:
    """Owns the live exam sessions of this host, one per attempt."""

    def __init__(
        self,
        api: ApiClient,
        fullscreen: FullscreenController | None = None,
        navigate: Navigator | None = None,
        session_factory: Callable[..., ExamSession] = ExamSession,
        retention_seconds: float | None = None,
    ) -> None:
        self.api = api
        self._fullscreen = fullscreen
        self._navigate = navigate
        self._session_factory = session_factory
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.FINISHED_SESSION_RETENTION_SECONDS
        )
        self._sessions: dict[str, ExamSession] = {}
        self._starting: set[str] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    async def start(self, simulation_id: str, notifier: Notifier | None = None) -> ExamSession:
        await self.prune()
        if simulation_id in self._starting or any(
            s.simulation_id == simulation_id and s.state in LIVE_STATES and not s.closed
            for s in self._sessions.values()
        ):
            raise StartError("An attempt for this simulation is already running", reason=StartError.ALREADY_RUNNING)
        self._starting.add(simulation_id)
        try:
            session = self._session_factory(
                self.api,
                notifier=notifier or Notifier(),
                lockdown=Lockdown(self._fullscreen),
                navigate=self._navigate,
            )
            await session.start(simulation_id)
        finally:
            self._starting.discard(simulation_id)
        self._sessions[session.id] = session
        logger.info("Exam session registered", extra={"session_id": session.id, "simulation_id": simulation_id})
        return session

    def get(self, session_id: str) -> ExamSession:
        try:
            return self._sessions[session_id]
        except KeyError as exc:
            raise SessionNotFound(session_id) from exc

    async def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        await session.close()
        logger.info("Exam session removed", extra={"session_id": session_id})

    async def prune(self, now: float | None = None) -> int:
        """Close and drop sessions that finished more than ``retention_seconds`` ago."""
        now = now if now is not None else time.monotonic()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.finished_at is not None and now - session.finished_at >= self.retention_seconds
        ]
        for session_id in expired:
            await self._sessions.pop(session_id).close()
        if expired:
            logger.info("Pruned finished exam sessions", extra={"count": len(expired)})
        return len(expired)

    async def shutdown(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
