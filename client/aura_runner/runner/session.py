from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from aura_runner.core.api_client import ApiClient
from aura_runner.core.config import settings
from aura_runner.core.errors import ApiNetworkError, SessionStateError, StartError, SubmitError
from aura_runner.runner.lockdown import Lockdown
from aura_runner.runner.notifications import Notifier
from aura_runner.schemas.envelope import ApiEnvelope
from aura_runner.schemas.simulation import (
    ProgressPayload,
    Question,
    Section,
    SessionPayload,
    SubmitPayload,
    SubmitResult,
)


logger = logging.getLogger(__name__)

Navigator = Callable[[str], Any]


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


WARNING_MESSAGES = {
    600: "10 minutes remaining!",
    300: "5 minutes remaining!",
    60: "1 minute remaining!",
}


def warning_message(seconds: int) -> str:
    if seconds in WARNING_MESSAGES:
        return WARNING_MESSAGES[seconds]
    if seconds >= 60:
        minutes = seconds // 60
        return f"{minutes} minutes remaining!"
    return f"{seconds} seconds remaining!"


def format_time(seconds: int) -> str:
    hours, rest = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _start_failure_reason(envelope: ApiEnvelope) -> str:
    code = (envelope.error_code or "").upper()
    text = envelope.error_message.lower()
    if envelope.status_code == 404 or "NOT_FOUND" in code:
        return StartError.NOT_FOUND
    if envelope.status_code == 409 or "ALREADY" in code or "already" in text:
        return StartError.ALREADY_ATTEMPTED
    if envelope.status_code in (401, 403) or "FORBIDDEN" in code or "ACCESS" in code:
        return StartError.ACCESS_DENIED
    return StartError.UNKNOWN


class ExamSession:
    """In-memory state of one timed exam attempt.

    The server owns the attempt; this object mirrors it, runs the countdown
    and autosave loops and performs the final submit. All mutation happens on
    the event loop, so no locking is involved: ``is_submitting`` is the only
    guard and it keeps the manual "Finish" and the time-expiry submit from
    both reaching the server.
    """

    def __init__(
        self,
        api: ApiClient,
        notifier: Notifier | None = None,
        lockdown: Lockdown | None = None,
        navigate: Navigator | None = None,
        *,
        tick_interval: float | None = None,
        autosave_interval: float | None = None,
        warning_thresholds: list[int] | None = None,
        warning_seconds: float | None = None,
    ) -> None:
        self.api = api
        self.notifier = notifier or Notifier()
        self.lockdown = lockdown or Lockdown()
        self._navigate = navigate
        self.tick_interval = tick_interval if tick_interval is not None else settings.TICK_INTERVAL_SECONDS
        self.autosave_interval = (
            autosave_interval if autosave_interval is not None else settings.AUTOSAVE_INTERVAL_SECONDS
        )
        self.warning_thresholds = frozenset(
            warning_thresholds if warning_thresholds is not None else settings.WARNING_THRESHOLDS
        )
        self.warning_seconds = (
            warning_seconds if warning_seconds is not None else settings.WARNING_DISPLAY_SECONDS
        )

        self.state = SessionState.LOADING
        self.id: str | None = None
        self.simulation_id: str | None = None
        self.title = ""
        self.duration = 0
        self.sections: list[Section] = []
        self.time_remaining = 0
        self.current_section = 0
        self.current_question = 0
        self.answers: dict[str, str] = {}
        self.auto_save = True

        self.is_submitting = False
        self.result: SubmitResult | None = None
        self.last_error: str | None = None
        self.last_saved_at: float | None = None
        self.redirect_to: str | None = None
        self.finished_at: float | None = None

        self._question_ids: set[str] = set()
        self._expired = False
        self._closed = False
        self._countdown_task: asyncio.Task | None = None
        self._autosave_task: asyncio.Task | None = None
        self._pending_saves: set[asyncio.Task] = set()

    # Lifecycle

    async def start(self, simulation_id: str) -> "ExamSession":
        if self.state != SessionState.LOADING:
            raise SessionStateError("Exam session already started")
        self.simulation_id = simulation_id
        try:
            envelope = await self.api.start_simulation(simulation_id)
        except ApiNetworkError as exc:
            await self._fail_start(exc.message, StartError.UNKNOWN)
        if not envelope.success:
            await self._fail_start(envelope.error_message, _start_failure_reason(envelope))
        try:
            payload = SessionPayload.model_validate(envelope.data)
        except ValidationError as exc:
            logger.error("Invalid exam session payload", extra={"simulation_id": simulation_id, "error": str(exc)})
            await self._fail_start("Invalid exam session payload", StartError.UNKNOWN)

        self._load(payload)
        self.state = SessionState.ACTIVE
        await self.lockdown.engage()
        self._countdown_task = asyncio.create_task(self._run_countdown())
        if self.auto_save:
            self._autosave_task = asyncio.create_task(self._run_autosave())
        logger.info(
            "Exam session started",
            extra={
                "session_id": self.id,
                "simulation_id": simulation_id,
                "time_remaining": self.time_remaining,
                "question_count": self.total_questions,
            },
        )
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stop_loops(include_saves=True)
        await self.lockdown.release()
        self.notifier.close()
        logger.debug("Exam session closed", extra={"session_id": self.id, "state": self.state.value})

    @property
    def closed(self) -> bool:
        return self._closed

    # Answers and navigation

    def answer(self, question_id: str, value: str) -> None:
        self._require_open()
        if question_id not in self._question_ids:
            raise KeyError(question_id)
        self.answers[question_id] = value

    def next(self) -> bool:
        self._require_open()
        if self.is_last_question:
            return False
        if self.current_question >= len(self.current_section_data.questions) - 1:
            self.current_section += 1
            self.current_question = 0
        else:
            self.current_question += 1
        self._schedule_save()
        return True

    def previous(self) -> bool:
        self._require_open()
        if self.is_first_question:
            return False
        if self.current_question > 0:
            self.current_question -= 1
        else:
            self.current_section -= 1
            self.current_question = len(self.current_section_data.questions) - 1
        self._schedule_save()
        return True

    def goto(self, section: int, question: int) -> None:
        self._require_open()
        if not 0 <= section < len(self.sections):
            raise IndexError(f"section {section} out of range")
        if not 0 <= question < len(self.sections[section].questions):
            raise IndexError(f"question {question} out of range")
        self.current_section = section
        self.current_question = question
        self._schedule_save()

    def set_auto_save(self, enabled: bool) -> None:
        self.auto_save = enabled
        running = self._autosave_task is not None and not self._autosave_task.done()
        if enabled and not running and self._is_live():
            self._autosave_task = asyncio.create_task(self._run_autosave())
        elif not enabled and running:
            self._autosave_task.cancel()
            self._autosave_task = None

    # Timer

    async def tick(self) -> int:
        if not self._is_live() or self._expired:
            return self.time_remaining
        self.time_remaining = max(0, self.time_remaining - 1)
        if self.time_remaining in self.warning_thresholds:
            self.notifier.warning(warning_message(self.time_remaining), ttl=self.warning_seconds)
        if self.time_remaining == 0:
            await self._expire()
        return self.time_remaining

    async def _expire(self) -> None:
        self._expired = True
        logger.info("Exam time expired, submitting", extra={"session_id": self.id})
        try:
            await self.submit()
        except SubmitError:
            # left active at 0s; the user can still press "Finish"
            logger.warning("Submit on time expiry failed", extra={"session_id": self.id})

    async def _run_countdown(self) -> None:
        if self.time_remaining <= 0:
            await self._expire()
            return
        while self._is_live() and not self._expired:
            await asyncio.sleep(self.tick_interval)
            await self.tick()

    # Progress

    def progress_payload(self) -> ProgressPayload:
        return ProgressPayload(
            answers=dict(self.answers),
            current_section=self.current_section,
            current_question=self.current_question,
            time_remaining=self.time_remaining,
        )

    async def save_progress(self) -> bool:
        if self.id is None or self.state != SessionState.ACTIVE:
            return False
        payload = self.progress_payload()
        try:
            envelope = await self.api.save_progress(self.id, payload)
        except ApiNetworkError as exc:
            logger.warning("Progress save failed", extra={"session_id": self.id, "error": exc.message})
            return False
        if not envelope.success:
            logger.warning(
                "Progress save rejected",
                extra={"session_id": self.id, "error": envelope.error_message},
            )
            return False
        self.last_saved_at = time.time()
        logger.debug("Progress saved", extra={"session_id": self.id, "answered": len(payload.answers)})
        return True

    async def _run_autosave(self) -> None:
        while self._is_live() and self.auto_save:
            await asyncio.sleep(self.autosave_interval)
            if self.state != SessionState.ACTIVE or not self.auto_save or self._closed:
                continue
            try:
                await self.save_progress()
            except Exception:
                logger.exception("Autosave failed for session %s", self.id)

    def _schedule_save(self) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.save_progress())
        except RuntimeError:
            logger.debug("No running loop, progress save skipped", extra={"session_id": self.id})
            return
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    # Submission

    @property
    def time_spent(self) -> int:
        return max(0, self.duration * 60 - self.time_remaining)

    async def submit(self) -> SubmitResult | None:
        """Submit every answer. Returns ``None`` when a submit is already in flight."""
        if self.is_submitting:
            return None
        if self.state != SessionState.ACTIVE:
            raise SessionStateError(f"Cannot submit an exam session in state {self.state.value}")
        self.is_submitting = True
        self.state = SessionState.SUBMITTING
        payload = SubmitPayload(answers=dict(self.answers), time_spent=self.time_spent)
        try:
            result = await self._send_submit(payload)
        except SubmitError as exc:
            self._submit_failed(exc)
            raise
        except asyncio.CancelledError:
            self.state = SessionState.ACTIVE
            raise
        except Exception as exc:
            logger.exception("Unexpected error while submitting session %s", self.id)
            error = SubmitError(str(exc) or type(exc).__name__, code="UNEXPECTED")
            self._submit_failed(error)
            raise error from exc
        finally:
            self.is_submitting = False

        self.state = SessionState.COMPLETED
        self.result = result
        self.finished_at = time.monotonic()
        self.last_error = None
        logger.info(
            "Exam submitted",
            extra={"session_id": self.id, "result_id": result.result_id, "time_spent": payload.time_spent},
        )
        self.notifier.success("Exam submitted successfully")
        if result.teacher_feedback_id:
            self.notifier.info("AI teacher feedback generated successfully!")
        await self._stop_loops(include_saves=False)
        await self.lockdown.release()
        await self._go(f"{settings.RESULTS_PATH}/{result.result_id}")
        return result

    def _submit_failed(self, exc: SubmitError) -> None:
        # back to active so "Finish" can be pressed again
        self.state = SessionState.ACTIVE
        self.last_error = exc.message
        logger.error("Exam submit failed", extra={"session_id": self.id, "error": exc.message, "code": exc.code})
        self.notifier.error("Error submitting exam")

    async def _send_submit(self, payload: SubmitPayload) -> SubmitResult:
        try:
            envelope = await self.api.submit_simulation(self.id, payload)
        except ApiNetworkError as exc:
            raise SubmitError(exc.message, code=exc.code) from exc
        if not envelope.success:
            raise SubmitError(envelope.error_message, code=envelope.error_code)
        try:
            return SubmitResult.model_validate(envelope.data)
        except ValidationError as exc:
            raise SubmitError("Malformed submit response", code="INVALID_RESPONSE") from exc

    # Views

    @property
    def is_fullscreen(self) -> bool:
        return self.lockdown.is_fullscreen

    @property
    def current_section_data(self) -> Section:
        return self.sections[self.current_section]

    @property
    def current_question_data(self) -> Question | None:
        if not self.sections:
            return None
        questions = self.current_section_data.questions
        if self.current_question < len(questions):
            return questions[self.current_question]
        return None

    @property
    def total_questions(self) -> int:
        return sum(len(section.questions) for section in self.sections)

    @property
    def current_question_number(self) -> int:
        if not self.sections:
            return 0
        before = sum(len(section.questions) for section in self.sections[: self.current_section])
        return before + self.current_question + 1

    @property
    def progress(self) -> float:
        total = self.total_questions
        return (self.current_question_number / total) * 100 if total else 0.0

    @property
    def answered_count(self) -> int:
        return sum(1 for qid in self.answers if qid in self._question_ids)

    @property
    def is_first_question(self) -> bool:
        return self.current_section == 0 and self.current_question == 0

    @property
    def is_last_question(self) -> bool:
        return (
            self.current_section >= len(self.sections) - 1
            and self.current_question >= len(self.current_section_data.questions) - 1
        )

    @property
    def position(self) -> str:
        if self.is_first_question and self.is_last_question:
            return "only"
        if self.is_first_question:
            return "first"
        if self.is_last_question:
            return "last"
        return "middle"

    def snapshot(self) -> dict:
        question = self.current_question_data
        return {
            "id": self.id,
            "simulationId": self.simulation_id,
            "title": self.title,
            "duration": self.duration,
            "state": self.state.value,
            "timeRemaining": self.time_remaining,
            "formattedTime": format_time(self.time_remaining),
            "currentSection": self.current_section,
            "currentQuestion": self.current_question,
            "sectionName": self.current_section_data.name if self.sections else None,
            "question": question.model_dump(by_alias=True) if question else None,
            "questionNumber": self.current_question_number,
            "totalQuestions": self.total_questions,
            "progress": round(self.progress, 2),
            "position": self.position if self.sections else None,
            "answers": dict(self.answers),
            "answeredCount": self.answered_count,
            "isFullscreen": self.is_fullscreen,
            "autoSave": self.auto_save,
            "isSubmitting": self.is_submitting,
            "lastError": self.last_error,
            "resultId": self.result.result_id if self.result else None,
            "redirectTo": self.redirect_to,
            "notifications": [n.to_dict() for n in self.notifier.active],
        }

    # Internals

    def _load(self, payload: SessionPayload) -> None:
        self.id = payload.id
        self.simulation_id = payload.simulation_id
        self.title = payload.title
        self.duration = payload.duration
        self.sections = payload.sections
        self.time_remaining = payload.time_remaining
        self.current_section = payload.current_section
        self.current_question = payload.current_question
        self.auto_save = payload.auto_save
        self._question_ids = {q.id for section in payload.sections for q in section.questions}
        self.answers = {qid: value for qid, value in payload.answers.items() if qid in self._question_ids}

    async def _fail_start(self, message: str, reason: str) -> None:
        self.state = SessionState.FAILED
        self.last_error = message
        logger.error(
            "Error starting exam",
            extra={"simulation_id": self.simulation_id, "reason": reason, "error": message},
        )
        self.notifier.error("Error starting exam")
        await self._go(settings.SIMULATIONS_PATH)
        raise StartError(message, reason=reason)

    async def _go(self, path: str) -> None:
        self.redirect_to = path
        if self._navigate is None:
            return
        outcome = self._navigate(path)
        if inspect.isawaitable(outcome):
            await outcome

    def _is_live(self) -> bool:
        return not self._closed and self.state in (SessionState.ACTIVE, SessionState.SUBMITTING)

    def _require_open(self) -> None:
        if self._closed or self.state not in (SessionState.ACTIVE, SessionState.SUBMITTING):
            raise SessionStateError(f"Exam session is {self.state.value}")

    async def _stop_loops(self, include_saves: bool) -> None:
        current = asyncio.current_task()
        tasks = [t for t in (self._countdown_task, self._autosave_task) if t is not None]
        if include_saves:
            tasks.extend(self._pending_saves)
        to_wait = []
        for task in tasks:
            if task is current or task.done():
                continue
            task.cancel()
            to_wait.append(task)
        if to_wait:
            await asyncio.gather(*to_wait, return_exceptions=True)
        self._autosave_task = None
