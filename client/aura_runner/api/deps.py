from fastapi import Depends, HTTPException, Request, status

from aura_runner.core.auth import AuthSession
from aura_runner.core.errors import SessionNotFound
from aura_runner.runner.registry import RunnerRegistry
from aura_runner.runner.session import ExamSession


def get_registry(request: Request) -> RunnerRegistry:
    return request.app.state.registry


def get_auth(request: Request) -> AuthSession:
    return request.app.state.auth


def get_exam_session(session_id: str, registry: RunnerRegistry = Depends(get_registry)) -> ExamSession:
    try:
        return registry.get(session_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam session not found") from exc


def require_user(auth: AuthSession = Depends(get_auth)) -> AuthSession:
    if not auth.is_authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not signed in")
    return auth
