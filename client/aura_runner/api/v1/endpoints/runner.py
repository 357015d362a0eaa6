import logging

from fastapi import APIRouter, Depends, HTTPException, status

from aura_runner.api.deps import get_exam_session, get_registry, require_user
from aura_runner.core.config import settings
from aura_runner.core.errors import SessionNotFound, SessionStateError, StartError, SubmitError
from aura_runner.runner.registry import RunnerRegistry
from aura_runner.runner.session import ExamSession
from aura_runner.schemas.simulation import (
    AnswerRequest,
    GotoRequest,
    LockdownEventRequest,
    LockdownEventResponse,
    StartSessionRequest,
    SubmitResponse,
)


router = APIRouter(prefix="/runner", tags=["runner"], dependencies=[Depends(require_user)])

logger = logging.getLogger(__name__)

_START_ERROR_STATUS = {
    StartError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    StartError.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    StartError.ALREADY_ATTEMPTED: status.HTTP_409_CONFLICT,
    StartError.ALREADY_RUNNING: status.HTTP_409_CONFLICT,
}


def _state_conflict(exc: SessionStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("/sessions")
async def start_session(
    payload: StartSessionRequest,
    registry: RunnerRegistry = Depends(get_registry),
) -> dict:
    try:
        session = await registry.start(payload.simulation_id)
    except StartError as exc:
        code = _START_ERROR_STATUS.get(exc.reason, status.HTTP_400_BAD_REQUEST)
        raise HTTPException(
            status_code=code,
            detail={"message": exc.message, "reason": exc.reason, "redirect_to": settings.SIMULATIONS_PATH},
        ) from exc
    return session.snapshot()


@router.get("/sessions/{session_id}")
async def get_session(session: ExamSession = Depends(get_exam_session)) -> dict:
    return session.snapshot()


@router.put("/sessions/{session_id}/answers/{question_id}")
async def answer_question(
    question_id: str,
    payload: AnswerRequest,
    session: ExamSession = Depends(get_exam_session),
) -> dict:
    try:
        session.answer(question_id, payload.answer)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not in this exam") from exc
    except SessionStateError as exc:
        raise _state_conflict(exc) from exc
    return {"saved": True, "answeredCount": session.answered_count}


@router.post("/sessions/{session_id}/next")
async def next_question(session: ExamSession = Depends(get_exam_session)) -> dict:
    try:
        moved = session.next()
    except SessionStateError as exc:
        raise _state_conflict(exc) from exc
    return {"moved": moved, **session.snapshot()}


@router.post("/sessions/{session_id}/previous")
async def previous_question(session: ExamSession = Depends(get_exam_session)) -> dict:
    try:
        moved = session.previous()
    except SessionStateError as exc:
        raise _state_conflict(exc) from exc
    return {"moved": moved, **session.snapshot()}


@router.post("/sessions/{session_id}/goto")
async def goto_question(payload: GotoRequest, session: ExamSession = Depends(get_exam_session)) -> dict:
    try:
        session.goto(payload.section, payload.question)
    except IndexError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SessionStateError as exc:
        raise _state_conflict(exc) from exc
    return session.snapshot()


@router.post("/sessions/{session_id}/submit", response_model=SubmitResponse)
async def submit_session(session: ExamSession = Depends(get_exam_session)) -> SubmitResponse:
    try:
        result = await session.submit()
    except SessionStateError as exc:
        raise _state_conflict(exc) from exc
    except SubmitError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Submission already in progress")
    return SubmitResponse(
        result_id=result.result_id,
        teacher_feedback_id=result.teacher_feedback_id,
        redirect_to=session.redirect_to or "",
    )


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, registry: RunnerRegistry = Depends(get_registry)) -> dict:
    try:
        await registry.remove(session_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam session not found") from exc
    return {"closed": True}


@router.post("/sessions/{session_id}/lockdown", response_model=LockdownEventResponse)
async def check_lockdown_event(
    payload: LockdownEventRequest,
    session: ExamSession = Depends(get_exam_session),
) -> LockdownEventResponse:
    suppress = session.lockdown.should_suppress(payload.type, payload.key, payload.ctrl, payload.meta)
    return LockdownEventResponse(suppress=suppress)
